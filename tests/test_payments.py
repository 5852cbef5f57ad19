import pytest
from unittest.mock import MagicMock

from api.services.notifications import NotificationKind
from api.services.payments import PaymentService
from lib.error_handler import InvalidPayloadError

TEST_PHONE = "+1234567890"

@pytest.fixture
def notifier():
    return MagicMock()

@pytest.fixture
def payments(ledger, notifier, composer):
    return PaymentService(ledger, notifier, composer)

def test_payment_credits_account_and_confirms(payments, ledger, notifier):
    ledger.admit(TEST_PHONE)
    ledger.admit(TEST_PHONE)

    account = payments.apply_payment(TEST_PHONE, 5.0, 50)

    assert account.balance == 58
    assert account.usage_count == 0
    notification = notifier.enqueue.call_args.args[0]
    assert notification.kind == NotificationKind.PURCHASE_CONFIRMATION
    assert notification.phone == TEST_PHONE
    assert "58 credits" in notification.text

def test_payment_creates_missing_account(payments, ledger):
    payments.apply_payment(TEST_PHONE, 10, 100)
    assert ledger.balance(TEST_PHONE) == 100

@pytest.mark.parametrize("amount_paid,credits", [
    (0, 50),
    (-1, 50),
    (None, 50),
    ("5", 50),
    (5, 0),
    (5, -10),
])
def test_invalid_payment_rejected(payments, ledger, notifier, amount_paid, credits):
    with pytest.raises(InvalidPayloadError):
        payments.apply_payment(TEST_PHONE, amount_paid, credits)

    assert ledger.get_account(TEST_PHONE) is None
    notifier.enqueue.assert_not_called()
