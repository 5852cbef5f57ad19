import logging
from datetime import timedelta
from typing import Optional, Tuple

from api.messages import CONTINUATION_MARKER
from lib.models import Continuation

logger = logging.getLogger(__name__)

class ContinuationManager:
    """Splits replies that exceed one outbound segment and serves the rest on MORE.

    Only the newest unexpired continuation for a phone is reachable; older or
    expired rows stay in storage until the sweep removes them.
    """

    def __init__(
        self,
        continuation_repository,
        max_length: int = 1600,
        ttl: timedelta = timedelta(hours=24),
        marker: str = CONTINUATION_MARKER
    ):
        if max_length <= len(marker):
            raise ValueError(f"max_length must exceed the continuation marker ({len(marker)} characters)")
        self.continuations = continuation_repository
        self.max_length = max_length
        self.ttl = ttl
        self.marker = marker

    def finalize(
        self,
        phone: str,
        reply: str,
        max_length: Optional[int] = None,
        origin_turn_id: Optional[str] = None
    ) -> str:
        outbound, _ = self.split(phone, reply, max_length=max_length, origin_turn_id=origin_turn_id)
        return outbound

    def split(
        self,
        phone: str,
        reply: str,
        max_length: Optional[int] = None,
        origin_turn_id: Optional[str] = None
    ) -> Tuple[str, Optional[Continuation]]:
        """Like ``finalize`` but also returns the continuation it stored, if any."""
        max_length = max_length or self.max_length
        if len(reply) <= max_length:
            return reply, None
        if max_length <= len(self.marker):
            raise ValueError(f"max_length must exceed the continuation marker ({len(self.marker)} characters)")

        allowed = max_length - len(self.marker)
        head, remainder = reply[:allowed], reply[allowed:]
        continuation = self.continuations.insert(
            phone,
            remainder,
            ttl=self.ttl,
            origin_turn_id=origin_turn_id
        )
        logger.info(
            f"Reply for {phone} split at {allowed} characters; "
            f"{len(remainder)} characters saved as part {continuation.sequence_index}"
        )
        return head + self.marker, continuation

    def discard(self, continuation: Continuation) -> bool:
        """Remove a continuation whose reply never reached the user"""
        removed = self.continuations.delete(continuation.id)
        logger.info(f"Discarded continuation {continuation.id} for {continuation.phone}")
        return removed

    def pending(self, phone: str) -> Optional[Continuation]:
        return self.continuations.latest_active(phone)

    def purge(self, phone: str) -> int:
        removed = self.continuations.delete_for(phone)
        logger.info(f"Deleted {removed} continuations for {phone}")
        return removed

    def sweep_expired(self) -> int:
        removed = self.continuations.delete_expired()
        logger.info(f"Continuation sweep removed {removed} expired rows")
        return removed
