import pytest
from unittest.mock import AsyncMock, MagicMock
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from api.routes import build_services, create_app
from api.services.audio import AudioService
from api.services.chat import ProviderRouter
from api.services.commands import CommandInterpreter
from api.services.continuation import ContinuationManager
from api.services.dialogue import DialogueOrchestrator
from api.services.ledger import CreditLedger
from api.services.notifications import NotificationComposer
from api.services.storage import ConversationStore
from lib.config import Settings
from lib.database import create_repositories
from lib.error_handler import ProviderUnavailableError
from lib.twilio_client import TwilioClient

@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        storage_backend='memory',
        payment_url='https://pay.test',
        notification_delay_seconds=0,
        twilio_account_sid='AC123',
        twilio_auth_token='token',
        twilio_phone_number='+15550000000'
    )

@pytest.fixture
def repositories(settings):
    return create_repositories(settings)

@pytest.fixture
def ledger(repositories):
    return CreditLedger(repositories.accounts, trial_credits=9, low_balance_threshold=10, excess_usage_threshold=2)

@pytest.fixture
def store(repositories):
    return ConversationStore(repositories.turns)

@pytest.fixture
def continuations(repositories):
    return ContinuationManager(repositories.continuations)

@pytest.fixture
def grok():
    provider = MagicMock()
    provider.name = 'grok'
    provider.get_conversational_response = AsyncMock(return_value="Test response")
    return provider

@pytest.fixture
def openai_text():
    provider = MagicMock()
    provider.name = 'openai'
    provider.get_conversational_response = AsyncMock(
        side_effect=ProviderUnavailableError("not available", provider='openai')
    )
    return provider

@pytest.fixture
def router(grok, openai_text):
    return ProviderRouter({'grok': grok, 'openai': openai_text})

@pytest.fixture
def transcriber():
    mock_transcriber = MagicMock()
    mock_transcriber.transcribe = AsyncMock(return_value="Test transcription")
    return mock_transcriber

@pytest.fixture
def audio(transcriber, settings):
    return AudioService(transcriber, supported_types=settings.supported_audio_types)

@pytest.fixture
def commands(ledger, store, continuations):
    return CommandInterpreter(ledger, store, continuations, product_name='Parley')

@pytest.fixture
def composer():
    return NotificationComposer('Parley', 'https://pay.test', trial_credits=9, low_balance_threshold=10)

@pytest.fixture
def twilio_api():
    api = MagicMock()
    api.messages.create.return_value = MagicMock(sid='SM123')
    return api

@pytest.fixture
def gateway(twilio_api):
    return TwilioClient('AC123', 'token', '+15550000000', client=twilio_api)

@pytest.fixture
def services(settings, repositories, grok, openai_text, transcriber, gateway):
    built = build_services(
        settings,
        repositories=repositories,
        providers={'grok': grok, 'openai': openai_text},
        transcriber=transcriber,
        gateway=gateway
    )
    yield built
    built.notifier.stop()

@pytest.fixture
def test_client(services):
    app = create_app(services)
    app.config['TESTING'] = True
    return app.test_client()

@pytest.fixture
def orchestrator(ledger, store, continuations, router, audio, commands, composer):
    return DialogueOrchestrator(
        ledger,
        store,
        continuations,
        router,
        audio,
        commands,
        composer,
        history_window=10,
        payment_url='https://pay.test'
    )
