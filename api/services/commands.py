import logging
from enum import Enum
from typing import Optional

from api import messages
from lib.error_handler import PersistenceError

logger = logging.getLogger(__name__)

class Command(str, Enum):
    STOP = 'stop'
    ACCOUNT = 'account'
    DELETE_HISTORY = 'delete history'
    DELETE_ACCOUNT = 'delete account'
    MORE = 'more'

def normalize(text: Optional[str]) -> str:
    return ' '.join((text or '').split()).casefold()

def parse_command(text: Optional[str]) -> Optional[Command]:
    """Return the session command ``text`` names, or None for ordinary chat."""
    try:
        return Command(normalize(text))
    except ValueError:
        return None

class CommandInterpreter:
    def __init__(self, ledger, conversation_store, continuation_manager, product_name: str = 'Parley'):
        self.ledger = ledger
        self.conversations = conversation_store
        self.continuations = continuation_manager
        self.product_name = product_name
        self._handlers = {
            Command.STOP: self._stop,
            Command.ACCOUNT: self._account,
            Command.DELETE_HISTORY: self._delete_history,
            Command.DELETE_ACCOUNT: self._delete_account,
            Command.MORE: self._more,
        }

    def interpret(self, phone: str, text: str) -> Optional[str]:
        """Run the command in ``text`` and return its reply, or None if it is not one."""
        command = parse_command(text)
        if command is None:
            return None
        logger.info(f"Handling {command.value!r} command for {phone}")
        return self._handlers[command](phone)

    def _stop(self, phone: str) -> str:
        return messages.opted_out(self.product_name)

    def _account(self, phone: str) -> str:
        return messages.account_summary(self.ledger.balance(phone))

    def _delete_history(self, phone: str) -> str:
        self.conversations.purge(phone)
        return messages.history_deleted()

    def _delete_account(self, phone: str) -> str:
        # Every step runs even if an earlier one fails
        steps = (
            ('conversation turns', lambda: self.conversations.purge(phone)),
            ('continuations', lambda: self.continuations.purge(phone)),
            ('account', lambda: self.ledger.delete_account(phone)),
        )
        failures = []
        for label, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(f"Failed to delete {label} for {phone}: {str(e)}")
                failures.append(label)

        if failures:
            raise PersistenceError(f"Account deletion incomplete for {phone}: {', '.join(failures)}")
        logger.info(f"Deleted account and all data for {phone}")
        return messages.account_deleted()

    def _more(self, phone: str) -> str:
        continuation = self.continuations.pending(phone)
        if continuation is None:
            return messages.nothing_pending()
        # A long remainder is split again and chained to the next part
        return self.continuations.finalize(
            phone,
            continuation.content,
            origin_turn_id=continuation.origin_turn_id
        )
