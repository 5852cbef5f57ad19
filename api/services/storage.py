import logging
from typing import Any, Dict, List, Optional

from lib.error_handler import InvalidPayloadError
from lib.models import ConversationTurn, Role, TurnType

logger = logging.getLogger(__name__)

class ConversationStore:
    def __init__(self, turn_repository, max_content_length: int = 2000):
        self.turns = turn_repository
        self.max_content_length = max_content_length

    def append(
        self,
        phone: str,
        role: Role,
        content: str,
        turn_type: TurnType = TurnType.TEXT,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ConversationTurn:
        """Write one immutable turn to the account's history"""
        content = (content or '').strip()
        if not content:
            raise InvalidPayloadError("Cannot store turn: message content is required")

        if len(content) > self.max_content_length:
            logger.warning(
                f"Truncating {role.value} turn for {phone} from {len(content)} "
                f"to {self.max_content_length} characters"
            )
            content = content[:self.max_content_length]

        turn = self.turns.insert(phone, Role(role), content, TurnType(turn_type), metadata)
        logger.info(f"Stored {turn.role.value} turn {turn.id} for {phone}")
        return turn

    def history(self, phone: str, limit: int = 10) -> List[Dict[str, str]]:
        """Most recent turns, oldest first, as generation context"""
        return [turn.as_context() for turn in self.turns.recent(phone, limit)]

    def purge(self, phone: str) -> int:
        removed = self.turns.delete_for(phone)
        logger.info(f"Deleted {removed} conversation turns for {phone}")
        return removed
