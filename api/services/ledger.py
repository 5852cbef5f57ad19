import logging
from enum import Enum
from typing import List, NamedTuple, Optional

from lib.error_handler import InvalidPayloadError
from lib.models import Account

logger = logging.getLogger(__name__)

class LedgerEvent(str, Enum):
    FIRST_MESSAGE = 'first_message'
    LOW_BALANCE = 'low_balance'
    EXCESS_USAGE = 'excess_usage'

class Admission(NamedTuple):
    admitted: bool
    account: Optional[Account]
    created: bool = False

class CreditLedger:
    """Decides whether a message may be answered and keeps balances.

    The repository performs every balance change atomically, so two
    simultaneous messages from one phone can neither push the balance below
    zero nor spend the same credit twice.
    """

    def __init__(
        self,
        account_repository,
        trial_credits: int = 9,
        low_balance_threshold: int = 10,
        excess_usage_threshold: int = 2
    ):
        self.accounts = account_repository
        self.trial_credits = trial_credits
        self.low_balance_threshold = low_balance_threshold
        self.excess_usage_threshold = excess_usage_threshold

    def admit(self, phone: str) -> Admission:
        if self.accounts.get(phone) is None:
            created = self.accounts.create(phone, balance=self.trial_credits, usage_count=1)
            if created is not None:
                logger.info(f"New account created for {phone} with {self.trial_credits} credits")
                return Admission(admitted=True, account=created, created=True)
            # Another request created it first; charge it like any existing account
            logger.info(f"Account for {phone} appeared concurrently, consuming credit instead")

        consumed = self.accounts.try_consume(phone)
        if consumed is None:
            snapshot = self.accounts.get(phone)
            logger.warning(f"Account {phone} blocked due to insufficient credits")
            return Admission(admitted=False, account=snapshot)

        logger.info(f"Credit consumed for {phone}: {consumed.balance} remaining, usage {consumed.usage_count}")
        return Admission(admitted=True, account=consumed)

    def credit(self, phone: str, amount: int) -> Account:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidPayloadError("Credit amount must be a positive integer")
        account = self.accounts.add_credits(phone, amount)
        logger.info(f"Added {amount} credits to {phone}, balance now {account.balance}")
        return account

    def refund(self, phone: str) -> Optional[Account]:
        account = self.accounts.refund(phone)
        if account is not None:
            logger.info(f"Refunded one credit to {phone}, balance now {account.balance}")
        return account

    def balance(self, phone: str) -> int:
        account = self.accounts.get(phone)
        return account.balance if account else 0

    def get_account(self, phone: str) -> Optional[Account]:
        return self.accounts.get(phone)

    def delete_account(self, phone: str) -> bool:
        deleted = self.accounts.delete(phone)
        logger.info(f"Account {phone} {'deleted' if deleted else 'not found for deletion'}")
        return deleted

    def threshold_events(self, account: Account) -> List[LedgerEvent]:
        """Advisory events for the post-transaction snapshot."""
        events = []
        if account.usage_count == 1:
            events.append(LedgerEvent.FIRST_MESSAGE)
        if account.balance == self.low_balance_threshold:
            events.append(LedgerEvent.LOW_BALANCE)
        if account.balance < self.excess_usage_threshold:
            events.append(LedgerEvent.EXCESS_USAGE)
        return events
