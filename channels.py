"""In-process publish/subscribe channels.

Replaces stringly-typed global events with explicit channel objects. A
channel delivers each published payload to its current listeners
synchronously; publishing is fire-and-forget and zero listeners is fine.
"""

from datetime import datetime, timezone
from typing import Callable, Generic, List, NamedTuple, TypeVar

from pydantic import BaseModel, Field

from database import BabyNotification, Reminder
from logger_config import setup_logger

logger = setup_logger(__name__, 'channels.log')

T = TypeVar("T")

Listener = Callable[[T], None]


class Channel(Generic[T]):
    """A typed broadcast channel."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A callable that unsubscribes the listener again.
        """
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        """Remove a listener. Returns False when it was not subscribed."""
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, payload: T) -> int:
        """Deliver a payload to every listener.

        A failing listener is logged and does not stop delivery to the rest.

        Returns:
            int: Number of listeners that handled the payload without error
        """
        delivered = 0
        # Copy so listeners may unsubscribe while being called
        for listener in list(self._listeners):
            try:
                listener(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Listener on '{self.name}' failed: {e}", exc_info=True)
        return delivered


class SchedulerFailure(BaseModel):
    """Transient failure notice shown by the foreground UI."""

    operation: str
    reason: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UnreadSnapshot(NamedTuple):
    """A user's unread baby notifications after a change, newest first."""

    user_id: str
    notifications: List[BabyNotification]


class AppChannels:
    """The channels a foreground application instance listens on."""

    def __init__(self):
        self.baby_notification: Channel[BabyNotification] = Channel("babyNotification")
        self.mobile_notification_popup: Channel[Reminder] = Channel("mobileNotificationPopup")
        self.unread_notifications: Channel[UnreadSnapshot] = Channel("unreadNotifications")
        self.failures: Channel[SchedulerFailure] = Channel("schedulerFailure")
