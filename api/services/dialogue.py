"""End-to-end handling of one inbound message.

The orchestrator walks a message through a fixed sequence of states::

    IDLE -> VALIDATED -> TRANSCRIBED -> COMMAND_CHECKED -> ADMITTED -> GENERATED
         -> PAGINATED -> PERSISTED -> REPLIED -> NOTIFICATIONS_SCHEDULED

``COMMAND_HANDLED``, ``REJECTED``, ``BLOCKED`` and ``FAILED`` end the walk early
with an immediate reply. There is no backtracking. Notifications are computed
here but handed back to the transport layer, which queues them only once the
reply has been written.
"""

import logging
import time
from enum import Enum
from typing import NamedTuple, Tuple

from api import messages
from api.services.audio import TranscriptionStatus
from lib.error_handler import AllProvidersFailedError, ErrorHandler, PersistenceError
from lib.models import InboundMessage, Role, TurnType

logger = logging.getLogger(__name__)

class DialogueState(str, Enum):
    IDLE = 'idle'
    VALIDATED = 'validated'
    TRANSCRIBED = 'transcribed'
    COMMAND_CHECKED = 'command_checked'
    COMMAND_HANDLED = 'command_handled'
    REJECTED = 'rejected'
    BLOCKED = 'blocked'
    ADMITTED = 'admitted'
    GENERATED = 'generated'
    PAGINATED = 'paginated'
    PERSISTED = 'persisted'
    REPLIED = 'replied'
    NOTIFICATIONS_SCHEDULED = 'notifications_scheduled'
    FAILED = 'failed'

class DialogueOutcome(NamedTuple):
    reply: str
    state: DialogueState
    notifications: Tuple = ()

class DialogueOrchestrator:
    def __init__(
        self,
        ledger,
        conversations,
        continuations,
        router,
        audio,
        commands,
        composer,
        history_window: int = 10,
        payment_url: str = ''
    ):
        self.ledger = ledger
        self.conversations = conversations
        self.continuations = continuations
        self.router = router
        self.audio = audio
        self.commands = commands
        self.composer = composer
        self.history_window = history_window
        self.payment_url = payment_url

    def _advance(self, phone: str, state: DialogueState) -> DialogueState:
        logger.debug(f"{phone}: {state.value}")
        return state

    def _finish(self, phone: str, reply: str, state: DialogueState, notifications: Tuple = ()) -> DialogueOutcome:
        logger.info(f"Message from {phone} finished in state {state.value}")
        return DialogueOutcome(reply, state, notifications)

    async def handle(self, message: InboundMessage) -> DialogueOutcome:
        phone = message.from_number
        self._advance(phone, DialogueState.VALIDATED)

        text = (message.body or '').strip()
        turn_type = TurnType.TEXT
        metadata = {}

        if message.media_url:
            result = await self.audio.transcribe(message.media_url, message.media_content_type)
            self._advance(phone, DialogueState.TRANSCRIBED)

            if result.status == TranscriptionStatus.TOO_LARGE:
                return self._finish(phone, messages.audio_too_large(), DialogueState.REJECTED)
            if result.status == TranscriptionStatus.OK:
                text = f"{text} {result.text}" if text else result.text
                turn_type = TurnType.AUDIO
                metadata = {'media_url': message.media_url, 'transcription': result.text}
            elif not text:
                if result.status == TranscriptionStatus.UNSUPPORTED:
                    return self._finish(phone, messages.unsupported_media(), DialogueState.REJECTED)
                logger.warning(f"Could not transcribe attachment from {phone} ({result.status.value})")
                return self._finish(phone, messages.audio_failed(), DialogueState.REJECTED)
            else:
                logger.warning(f"Ignoring attachment from {phone} ({result.status.value}), using text only")

        if not text:
            return self._finish(phone, messages.empty_message(), DialogueState.REJECTED)

        try:
            command_reply = self.commands.interpret(phone, text)
        except PersistenceError as e:
            return self._finish(phone, ErrorHandler.handle_storage_error(e), DialogueState.FAILED)
        if command_reply is not None:
            return self._finish(phone, command_reply, DialogueState.COMMAND_HANDLED)
        self._advance(phone, DialogueState.COMMAND_CHECKED)

        try:
            admission = self.ledger.admit(phone)
        except PersistenceError as e:
            return self._finish(phone, ErrorHandler.handle_storage_error(e), DialogueState.FAILED)
        if not admission.admitted:
            return self._finish(phone, messages.blocked(self.payment_url, phone), DialogueState.BLOCKED)
        self._advance(phone, DialogueState.ADMITTED)

        started = time.monotonic()
        try:
            history = self.conversations.history(phone, self.history_window)
            user_turn = self.conversations.append(phone, Role.USER, text, turn_type, metadata)
        except PersistenceError as e:
            return self._abort(phone, e)

        try:
            reply = await self.router.route(text, history)
        except AllProvidersFailedError as e:
            # The user turn stays; no assistant turn is written
            return self._finish(phone, ErrorHandler.handle_generation_error(e), DialogueState.FAILED)
        self._advance(phone, DialogueState.GENERATED)

        continuation = None
        try:
            outbound, continuation = self.continuations.split(phone, reply, origin_turn_id=user_turn.id)
            self._advance(phone, DialogueState.PAGINATED)
            self.conversations.append(
                phone,
                Role.ASSISTANT,
                reply,
                TurnType.TEXT,
                {
                    'processing_ms': int((time.monotonic() - started) * 1000),
                    'paginated': continuation is not None,
                }
            )
        except PersistenceError as e:
            if continuation is not None:
                self._discard(continuation)
            return self._abort(phone, e)
        self._advance(phone, DialogueState.PERSISTED)

        notifications = tuple(
            self.composer.for_event(event, phone)
            for event in self.ledger.threshold_events(admission.account)
        )
        return self._finish(phone, outbound, DialogueState.REPLIED, notifications)

    def _abort(self, phone: str, error: PersistenceError) -> DialogueOutcome:
        """Persistence failed after admission: give the credit back and apologise."""
        try:
            self.ledger.refund(phone)
        except PersistenceError as refund_error:
            logger.error(f"Could not refund credit for {phone}: {str(refund_error)}")
        return self._finish(phone, ErrorHandler.handle_storage_error(error), DialogueState.FAILED)

    def _discard(self, continuation) -> None:
        try:
            self.continuations.discard(continuation)
        except PersistenceError as discard_error:
            logger.error(f"Could not discard continuation {continuation.id}: {str(discard_error)}")
