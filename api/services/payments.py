import logging

from lib.error_handler import InvalidPayloadError
from lib.models import Account

logger = logging.getLogger(__name__)

class PaymentService:
    """Applies payments the processor has already settled.

    Capturing the charge happens elsewhere; this only grants the purchased
    credits and queues the confirmation SMS.
    """

    def __init__(self, ledger, notifier, composer):
        self.ledger = ledger
        self.notifier = notifier
        self.composer = composer

    def apply_payment(self, phone: str, amount_paid: float, credits_granted: int) -> Account:
        if isinstance(amount_paid, bool) or not isinstance(amount_paid, (int, float)) or amount_paid <= 0:
            raise InvalidPayloadError("Amount paid must be a positive number")

        logger.info(f"Applying payment of {amount_paid} for {credits_granted} credits to {phone}")
        account = self.ledger.credit(phone, credits_granted)
        self.notifier.enqueue(self.composer.purchase_confirmation(phone, account.balance))
        return account
