from typing import Any, Dict, Tuple
import logging

from pydantic import ValidationError

from api.services.dialogue import DialogueOutcome, DialogueState
from lib.error_handler import ErrorHandler, InvalidPayloadError
from lib.models import InboundMessage

logger = logging.getLogger(__name__)

class SMSHandler:
    def __init__(self, orchestrator, gateway, notifier, max_inbound_length: int = 1000):
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.notifier = notifier
        self.max_inbound_length = max_inbound_length

    def parse(self, webhook_data: Dict[str, Any]) -> InboundMessage:
        """Validate the Twilio form fields; nothing is mutated on failure"""
        # Werkzeug's to_dict(flat=False) hands us lists
        flat = {k: v[0] if isinstance(v, list) and v else v for k, v in webhook_data.items()}
        try:
            message = InboundMessage.model_validate(flat)
        except ValidationError as e:
            reasons = '; '.join(err['msg'] for err in e.errors())
            raise InvalidPayloadError(f"Invalid inbound message: {reasons}") from e

        if message.body and len(message.body) > self.max_inbound_length:
            raise InvalidPayloadError(f"Message body too long (max {self.max_inbound_length} characters)")
        if message.media_url and not message.media_content_type:
            logger.warning(f"Media from {message.from_number} has no content type")
        return message

    async def handle_incoming_message(self, webhook_data: Dict[str, Any]) -> Tuple[str, DialogueOutcome]:
        """Handle incoming SMS webhook from Twilio. Returns the TwiML envelope and the outcome."""
        message = self.parse(webhook_data)
        logger.info(f"Processing message from {message.from_number} (media: {bool(message.media_url)})")

        try:
            outcome = await self.orchestrator.handle(message)
        except Exception as e:
            outcome = DialogueOutcome(ErrorHandler.handle_sms_error(e), DialogueState.FAILED)

        return self.gateway.build_reply_envelope(outcome.reply), outcome

    def schedule_notifications(self, outcome: DialogueOutcome) -> DialogueState:
        """Queue the outcome's notifications. Call only after the reply has been written."""
        if not outcome.notifications:
            return outcome.state
        try:
            self.notifier.enqueue_all(outcome.notifications)
        except Exception as e:
            logger.error(f"Failed to queue notifications: {str(e)}")
            return outcome.state
        return DialogueState.NOTIFICATIONS_SCHEDULED
