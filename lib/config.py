from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    product_name: str = 'Parley'
    payment_url: str = 'https://pay.parley.chat'

    # OpenAI settings (transcription and the secondary text provider)
    openai_api_key: str = ''
    transcription_model: str = 'whisper-1'

    # Grok settings (primary text provider, OpenAI-compatible API)
    grok_api_key: str = ''
    grok_base_url: str = 'https://api.x.ai/v1'
    grok_model: str = 'grok-3-latest'
    generation_temperature: float = 0.0
    generation_max_tokens: int = 2000

    # Twilio settings
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_phone_number: str = ''

    # Storage settings
    storage_backend: str = 'supabase'
    supabase_url: str = ''
    supabase_key: str = ''

    # Credits
    trial_credits: int = 9
    low_balance_threshold: int = 10
    excess_usage_threshold: int = 2

    # Conversation and pagination
    max_sms_length: int = 1600
    max_inbound_length: int = 1000
    max_turn_length: int = 2000
    history_window: int = 10
    continuation_ttl_hours: int = 24

    # Provider routing heuristics
    history_turn_threshold: int = 5
    long_message_chars: int = 500

    # Audio attachments
    max_audio_bytes: int = 25 * 1024 * 1024
    download_timeout_seconds: float = 30.0
    supported_audio_types: List[str] = [
        'audio/wav',
        'audio/x-wav',
        'audio/mp3',
        'audio/mp4',
        'audio/mpeg',
        'audio/mpga',
        'audio/webm',
        'audio/ogg',
        'audio/m4a',
    ]

    # Deferred notifications
    notification_delay_seconds: float = 1.0

    @property
    def twilio_auth(self) -> tuple:
        return (self.twilio_account_sid, self.twilio_auth_token)

@lru_cache()
def get_settings() -> Settings:
    return Settings()
