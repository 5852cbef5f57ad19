import asyncio
import logging
import tempfile
from typing import Dict, List, Optional

from openai import OpenAI

from lib.error_handler import ProviderUnavailableError

logger = logging.getLogger(__name__)

def style_prompt(max_length: int) -> str:
    return (
        "You are a helpful assistant. Always reply using plain text only: no Markdown, "
        "no asterisks, no bullet points and no special formatting. "
        f"Keep your responses under {max_length} characters. Write clearly and directly."
    )

class ChatProvider:
    """A text generation backend the router can send a conversation to."""

    name = 'base'

    async def get_conversational_response(
        self,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> str:
        raise NotImplementedError

class GrokProvider(ChatProvider):
    """xAI Grok through its OpenAI-compatible chat completions endpoint."""

    name = 'grok'

    def __init__(
        self,
        client: OpenAI,
        model: str = 'grok-3-latest',
        max_length: int = 1600,
        temperature: float = 0.0,
        max_tokens: int = 2000
    ):
        self.client = client
        self.model = model
        self.max_length = max_length
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _build_messages(self, message: str, history: List[Dict[str, str]]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": style_prompt(self.max_length)},
            *history,
            {"role": "user", "content": message}
        ]

    async def get_conversational_response(
        self,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> str:
        options = options or {}
        messages = self._build_messages(message, history)
        logger.info(f"Sending request to Grok: {len(messages)} messages, model {self.model}")

        try:
            loop = asyncio.get_event_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    stream=False,
                    temperature=options.get('temperature', self.temperature),
                    max_tokens=options.get('max_tokens', self.max_tokens)
                )
            )
        except Exception as e:
            logger.error(f"Grok API error: {str(e)}")
            raise ProviderUnavailableError(f"Grok request failed: {str(e)}", provider=self.name) from e

        if not response.choices or not response.choices[0].message.content:
            logger.error("Unexpected response structure from Grok")
            raise ProviderUnavailableError("Grok returned an empty response", provider=self.name)

        content = response.choices[0].message.content.strip()
        logger.info(f"Received response from Grok: {len(content)} characters")
        return content

class OpenAITextProvider(ChatProvider):
    """Declared secondary text provider. Text generation is not wired up for it."""

    name = 'openai'

    async def get_conversational_response(
        self,
        message: str,
        history: List[Dict[str, str]],
        options: Optional[Dict] = None
    ) -> str:
        raise ProviderUnavailableError("OpenAI text processing is not available", provider=self.name)

class WhisperTranscriber:
    def __init__(self, client: OpenAI, model: str = 'whisper-1'):
        self.client = client
        self.model = model

    async def transcribe(self, audio_data: bytes, extension: str = 'wav') -> str:
        """
        Transcribe an audio payload using OpenAI Whisper API
        """
        if not audio_data:
            raise ProviderUnavailableError("Audio payload is empty", provider='whisper')

        logger.info(f"Transcribing {len(audio_data)} bytes with {self.model}...")
        try:
            with tempfile.NamedTemporaryFile(suffix=f'.{extension}') as temp_file:
                temp_file.write(audio_data)
                temp_file.flush()

                with open(temp_file.name, 'rb') as audio_file:
                    loop = asyncio.get_event_loop()
                    transcript = await loop.run_in_executor(
                        None,
                        lambda: self.client.audio.transcriptions.create(
                            model=self.model,
                            file=audio_file,
                            response_format="text"
                        )
                    )
        except Exception as e:
            logger.error(f"Transcription failed: {str(e)}")
            raise ProviderUnavailableError(f"Transcription failed: {str(e)}", provider='whisper') from e

        text = str(transcript).strip()
        logger.info(f"Transcription complete: {text[:50]}...")
        return text

def create_openai_client(api_key: str, base_url: Optional[str] = None) -> OpenAI:
    # The SDK refuses to construct without a key; a placeholder lets the app
    # boot and fail per request instead
    return OpenAI(api_key=api_key or 'missing', base_url=base_url)
