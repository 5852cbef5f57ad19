import logging
import queue
import threading
import time
from enum import Enum
from typing import Iterable, NamedTuple, Optional

from api import messages
from api.services.ledger import LedgerEvent

logger = logging.getLogger(__name__)

class NotificationKind(str, Enum):
    WELCOME = 'welcome'
    LOW_BALANCE = 'low_balance'
    EXCESS_USAGE = 'excess_usage'
    PURCHASE_CONFIRMATION = 'purchase_confirmation'

class Notification(NamedTuple):
    kind: NotificationKind
    phone: str
    text: str

class NotificationComposer:
    """Turns ledger events into the SMS texts the worker sends."""

    def __init__(
        self,
        product_name: str,
        payment_url: str,
        trial_credits: int,
        low_balance_threshold: int
    ):
        self.product_name = product_name
        self.payment_url = payment_url
        self.trial_credits = trial_credits
        self.low_balance_threshold = low_balance_threshold

    def for_event(self, event: LedgerEvent, phone: str) -> Notification:
        if event == LedgerEvent.FIRST_MESSAGE:
            text = messages.welcome(self.product_name, self.trial_credits, self.payment_url, phone)
            return Notification(NotificationKind.WELCOME, phone, text)
        if event == LedgerEvent.LOW_BALANCE:
            text = messages.low_balance(self.product_name, self.low_balance_threshold, self.payment_url, phone)
            return Notification(NotificationKind.LOW_BALANCE, phone, text)
        if event == LedgerEvent.EXCESS_USAGE:
            return Notification(NotificationKind.EXCESS_USAGE, phone, messages.excess_usage(self.payment_url, phone))
        raise ValueError(f"No notification for ledger event {event!r}")

    def purchase_confirmation(self, phone: str, balance: int) -> Notification:
        text = messages.purchase_confirmed(self.product_name, balance, self.low_balance_threshold)
        return Notification(NotificationKind.PURCHASE_CONFIRMATION, phone, text)

_STOP = object()

class NotificationWorker:
    """Sends queued notifications from a background thread.

    Each notification waits ``delay_seconds`` before it is sent. Delivery
    failures are logged and dropped; nothing is retried and nothing reaches
    the user's reply.
    """

    def __init__(self, gateway, delay_seconds: float = 1.0):
        self.gateway = gateway
        self.delay_seconds = delay_seconds
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name="notification-worker", daemon=True)
            self._thread.start()
            logger.info("Notification worker started")

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self.running:
                return
            self._queue.put(_STOP)
            self._thread.join(timeout)
            self._thread = None
            logger.info("Notification worker stopped")

    def enqueue(self, notification: Notification) -> None:
        self._queue.put(notification)
        logger.info(f"Queued {notification.kind.value} notification for {notification.phone}")

    def enqueue_all(self, notifications: Iterable[Notification]) -> None:
        for notification in notifications:
            self.enqueue(notification)

    def drain(self) -> None:
        """Block until every queued notification has been handled."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self.delay_seconds:
                    time.sleep(self.delay_seconds)
                self.deliver(item)
            finally:
                self._queue.task_done()

    def deliver(self, notification: Notification) -> bool:
        try:
            self.gateway.send_message(notification.phone, notification.text)
            logger.info(f"{notification.kind.value} notification sent to {notification.phone}")
            return True
        except Exception as e:
            logger.error(f"Failed to send {notification.kind.value} notification to {notification.phone}: {str(e)}")
            return False
