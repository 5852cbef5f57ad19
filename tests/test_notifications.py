import pytest
from unittest.mock import MagicMock

from api.services.ledger import LedgerEvent
from api.services.notifications import Notification, NotificationKind, NotificationWorker
from lib.error_handler import CarrierError

TEST_PHONE = "+1234567890"

def test_composer_texts(composer):
    welcome = composer.for_event(LedgerEvent.FIRST_MESSAGE, TEST_PHONE)
    assert welcome.kind == NotificationKind.WELCOME
    assert "Welcome to Parley! You have 9 trial credits remaining." in welcome.text
    assert f"https://pay.test/{TEST_PHONE}" in welcome.text

    low = composer.for_event(LedgerEvent.LOW_BALANCE, TEST_PHONE)
    assert low.kind == NotificationKind.LOW_BALANCE
    assert "all but 10 Parley credits" in low.text

    excess = composer.for_event(LedgerEvent.EXCESS_USAGE, TEST_PHONE)
    assert excess.kind == NotificationKind.EXCESS_USAGE
    assert excess.text.startswith("You are almost out of credits.")

def test_purchase_confirmation(composer):
    confirmation = composer.purchase_confirmation(TEST_PHONE, 59)
    assert confirmation.kind == NotificationKind.PURCHASE_CONFIRMATION
    assert "updated to 59 credits" in confirmation.text

def test_worker_sends_in_background(gateway, twilio_api):
    worker = NotificationWorker(gateway, delay_seconds=0)
    worker.start()
    try:
        worker.enqueue(Notification(NotificationKind.WELCOME, TEST_PHONE, "Welcome!"))
        worker.drain()
    finally:
        worker.stop()

    twilio_api.messages.create.assert_called_once_with(
        body="Welcome!",
        from_='+15550000000',
        to=TEST_PHONE
    )
    assert not worker.running

def test_delivery_failure_is_contained():
    gateway = MagicMock()
    gateway.send_message.side_effect = [CarrierError("Recipient has opted out of messages."), 'SM456']
    worker = NotificationWorker(gateway, delay_seconds=0)
    worker.start()
    try:
        worker.enqueue_all([
            Notification(NotificationKind.WELCOME, TEST_PHONE, "first"),
            Notification(NotificationKind.LOW_BALANCE, TEST_PHONE, "second"),
        ])
        worker.drain()
        assert worker.running
    finally:
        worker.stop()

    assert gateway.send_message.call_count == 2

def test_deliver_reports_result():
    gateway = MagicMock()
    worker = NotificationWorker(gateway)
    notification = Notification(NotificationKind.EXCESS_USAGE, TEST_PHONE, "top up")

    assert worker.deliver(notification) is True
    gateway.send_message.side_effect = CarrierError("boom")
    assert worker.deliver(notification) is False

def test_start_is_idempotent(gateway):
    worker = NotificationWorker(gateway, delay_seconds=0)
    worker.start()
    thread = worker._thread
    worker.start()
    try:
        assert worker._thread is thread
    finally:
        worker.stop()
