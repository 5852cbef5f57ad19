from dataclasses import dataclass
from datetime import timedelta
import asyncio
import logging
import sys

from flask import Flask, Response, jsonify, request

from api.services.audio import AudioService
from api.services.chat import ProviderRouter
from api.services.commands import CommandInterpreter
from api.services.continuation import ContinuationManager
from api.services.dialogue import DialogueOrchestrator
from api.services.ledger import CreditLedger
from api.services.notifications import NotificationComposer, NotificationWorker
from api.services.payments import PaymentService
from api.services.storage import ConversationStore
from api.sms_handler import SMSHandler
from lib.config import Settings, get_settings
from lib.database import create_repositories
from lib.error_handler import AppError, InvalidPayloadError
from lib.openai_client import GrokProvider, OpenAITextProvider, WhisperTranscriber, create_openai_client
from lib.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

def configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
        force=True  # Ensure our config takes precedence
    )

@dataclass
class Services:
    settings: Settings
    storage_backend: str
    ledger: CreditLedger
    conversations: ConversationStore
    continuations: ContinuationManager
    router: ProviderRouter
    audio: AudioService
    commands: CommandInterpreter
    composer: NotificationComposer
    notifier: NotificationWorker
    orchestrator: DialogueOrchestrator
    payments: PaymentService
    gateway: TwilioClient
    sms_handler: SMSHandler

def build_services(settings: Settings, repositories=None, providers=None, transcriber=None, gateway=None) -> Services:
    """Construct every component once; collaborators can be swapped in for tests"""
    logger.info("Initializing services...")
    repositories = repositories or create_repositories(settings)

    if providers is None:
        grok_client = create_openai_client(settings.grok_api_key, base_url=settings.grok_base_url)
        providers = {
            'grok': GrokProvider(
                grok_client,
                model=settings.grok_model,
                max_length=settings.max_sms_length,
                temperature=settings.generation_temperature,
                max_tokens=settings.generation_max_tokens
            ),
            'openai': OpenAITextProvider(),
        }
    if transcriber is None:
        transcriber = WhisperTranscriber(
            create_openai_client(settings.openai_api_key),
            model=settings.transcription_model
        )
    if gateway is None:
        gateway = TwilioClient(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number
        )

    ledger = CreditLedger(
        repositories.accounts,
        trial_credits=settings.trial_credits,
        low_balance_threshold=settings.low_balance_threshold,
        excess_usage_threshold=settings.excess_usage_threshold
    )
    conversations = ConversationStore(repositories.turns, max_content_length=settings.max_turn_length)
    continuations = ContinuationManager(
        repositories.continuations,
        max_length=settings.max_sms_length,
        ttl=timedelta(hours=settings.continuation_ttl_hours)
    )
    router = ProviderRouter(
        providers,
        history_turn_threshold=settings.history_turn_threshold,
        long_message_chars=settings.long_message_chars
    )
    audio = AudioService(
        transcriber,
        supported_types=settings.supported_audio_types,
        max_bytes=settings.max_audio_bytes,
        timeout_seconds=settings.download_timeout_seconds,
        auth=settings.twilio_auth
    )
    commands = CommandInterpreter(ledger, conversations, continuations, product_name=settings.product_name)
    composer = NotificationComposer(
        settings.product_name,
        settings.payment_url,
        settings.trial_credits,
        settings.low_balance_threshold
    )
    notifier = NotificationWorker(gateway, delay_seconds=settings.notification_delay_seconds)
    orchestrator = DialogueOrchestrator(
        ledger,
        conversations,
        continuations,
        router,
        audio,
        commands,
        composer,
        history_window=settings.history_window,
        payment_url=settings.payment_url
    )
    payments = PaymentService(ledger, notifier, composer)
    sms_handler = SMSHandler(orchestrator, gateway, notifier, max_inbound_length=settings.max_inbound_length)

    logger.info(f"All services initialized successfully (storage: {repositories.backend})")
    return Services(
        settings=settings,
        storage_backend=repositories.backend,
        ledger=ledger,
        conversations=conversations,
        continuations=continuations,
        router=router,
        audio=audio,
        commands=commands,
        composer=composer,
        notifier=notifier,
        orchestrator=orchestrator,
        payments=payments,
        gateway=gateway,
        sms_handler=sms_handler,
    )

def create_app(services: Services = None) -> Flask:
    app = Flask(__name__)
    services = services or build_services(get_settings())
    services.notifier.start()
    app.extensions['services'] = services

    @app.route("/sms", methods=['POST'])
    def handle_sms():
        """Handle incoming SMS webhooks from Twilio"""
        logger.info("Received webhook from Twilio")
        webhook_data = request.form.to_dict(flat=False)

        try:
            twiml, outcome = asyncio.run(services.sms_handler.handle_incoming_message(webhook_data))
        except InvalidPayloadError as e:
            logger.warning(f"Inbound SMS validation failed: {e.message}")
            return jsonify({'error': e.message}), 400

        response = Response(twiml, mimetype='text/xml')
        # Notifications go out only once the reply is on the wire
        response.call_on_close(lambda: services.sms_handler.schedule_notifications(outcome))
        return response

    @app.route("/payments/credit", methods=['POST'])
    def credit_payment():
        """Apply a payment that the processor has already settled"""
        data = request.get_json(silent=True) or {}
        phone = data.get('phone')
        if not phone:
            return jsonify({'success': False, 'error': 'Phone number is required'}), 400

        try:
            account = services.payments.apply_payment(
                phone,
                data.get('amount_paid'),
                data.get('credits')
            )
        except InvalidPayloadError as e:
            return jsonify({'success': False, 'error': e.message}), 400
        except AppError as e:
            logger.error(f"Payment processing failed: {e.message}")
            return jsonify({'success': False, 'error': e.user_message}), e.status_code

        return jsonify({
            'success': True,
            'data': {'phone': account.phone, 'balance': account.balance}
        })

    @app.route("/payments/balance", methods=['POST'])
    def check_balance():
        data = request.get_json(silent=True) or {}
        phone = data.get('phone')
        if not phone:
            return jsonify({'success': False, 'message': 'Phone number is required'}), 400

        account = services.ledger.get_account(phone)
        if account is None:
            return jsonify({'success': False, 'message': 'User not found'}), 404

        return jsonify({
            'success': True,
            'data': {
                'phone': account.phone,
                'balance': account.balance,
                'usage_count': account.usage_count,
                'credit_status': account.credit_status,
            }
        })

    @app.route('/status', methods=['GET'])
    def status():
        """Check service status"""
        return {
            'storage_backend': services.storage_backend,
            'providers': sorted(services.router.providers),
            'primary_provider': services.router.primary,
            'notification_worker': services.notifier.running,
        }, 200

    @app.route('/', methods=['GET'])
    def root():
        """Basic health check"""
        return {'status': 'healthy'}

    return app
