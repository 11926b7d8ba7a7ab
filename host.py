"""Host platform model for the background worker.

The worker never touches the operating system directly. It talks to three
host services, each modeled here:

- NotificationCenter: displays native notifications; a notification with
  the tag of a visible one replaces it instead of stacking
- Clients: the open application windows (tabs) the worker can message,
  focus, or open
- SyncManager: pending background-sync registrations, fired by the host
  when connectivity returns
"""

import asyncio
import inspect
import uuid
import webbrowser
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin, urlsplit

from config import settings
from logger_config import setup_logger
from schemas import NotificationOptions, NotificationData

logger = setup_logger(__name__, 'worker.log')


class NotificationDisplayError(Exception):
    """The host refused to display a notification."""


class DisplayedNotification:
    """A notification currently (or formerly) visible in the tray."""

    def __init__(self, title: str, options: NotificationOptions, center: "NotificationCenter"):
        self.id = str(uuid.uuid4())
        self.title = title
        self.options = options
        self.shown_at = datetime.now(timezone.utc)
        self.closed = False
        self._center = center

    @property
    def tag(self) -> str:
        return self.options.tag

    @property
    def data(self) -> NotificationData:
        return self.options.data

    def close(self):
        """Remove from the tray. Closing twice is harmless."""
        self.closed = True
        self._center._discard(self)

    def __repr__(self):
        return f"<DisplayedNotification(tag={self.tag}, title={self.title!r}, closed={self.closed})>"


class NotificationCenter:
    """The host's notification tray."""

    def __init__(self, permission: str = "granted"):
        self.permission = permission
        self._visible: Dict[str, DisplayedNotification] = {}
        self.shown_count = 0

    async def show_notification(self, title: str, options: NotificationOptions) -> DisplayedNotification:
        """Display a notification, replacing a visible one with the same tag.

        Raises:
            NotificationDisplayError: When notification permission is not granted
        """
        if self.permission != "granted":
            raise NotificationDisplayError(f"Notification permission is '{self.permission}'")

        previous = self._visible.get(options.tag)
        if previous is not None:
            previous.closed = True
            logger.info(f"Replacing visible notification with tag '{options.tag}'")

        notification = DisplayedNotification(title, options, self)
        self._visible[options.tag] = notification
        self.shown_count += 1
        logger.info(f"Showing notification '{title}' (tag={options.tag})")
        return notification

    def get_notifications(self, tag: Optional[str] = None) -> List[DisplayedNotification]:
        """Visible notifications, optionally filtered by tag."""
        if tag is not None:
            found = self._visible.get(tag)
            return [found] if found else []
        return list(self._visible.values())

    def _discard(self, notification: DisplayedNotification):
        if self._visible.get(notification.tag) is notification:
            del self._visible[notification.tag]


MessageHandler = Callable[[dict], Optional[Awaitable[None]]]


class WindowClient:
    """An open application window the worker can reach."""

    def __init__(self, url: str, on_message: Optional[MessageHandler] = None, controlled: bool = True):
        self.id = str(uuid.uuid4())
        self.url = url
        self.controlled = controlled
        self.focused = False
        self.messages: List[dict] = []
        self._on_message = on_message

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def shows(self, route: str) -> bool:
        """True when this window is displaying the given route."""
        return self.path.rstrip('/') == route.rstrip('/')

    async def focus(self) -> "WindowClient":
        self.focused = True
        await self._send({"type": "FOCUS"})
        return self

    async def post_message(self, message: dict):
        self.messages.append(message)
        if self._on_message is not None:
            result = self._on_message(message)
            if inspect.isawaitable(result):
                await result
        await self._send(message)

    async def _send(self, message: dict):
        """Transport hook for windows living outside this process."""

    def __repr__(self):
        return f"<WindowClient(id={self.id}, url={self.url}, focused={self.focused})>"


Opener = Callable[[str], Awaitable[None]]


async def open_in_browser(url: str):
    """Open a route of the application in the desktop browser."""
    target = urljoin(settings.APP_BASE_URL, url)
    await asyncio.to_thread(webbrowser.open, target)


class Clients:
    """Registry of application windows."""

    def __init__(self, opener: Optional[Opener] = None):
        self._windows: Dict[str, WindowClient] = {}
        self._opener = opener

    def attach(self, window: WindowClient) -> WindowClient:
        self._windows[window.id] = window
        return window

    def detach(self, window: WindowClient):
        self._windows.pop(window.id, None)

    async def match_all(self, include_uncontrolled: bool = False) -> List[WindowClient]:
        windows = list(self._windows.values())
        if include_uncontrolled:
            return windows
        return [w for w in windows if w.controlled]

    async def open_window(self, url: str) -> WindowClient:
        """Open a new application window at url."""
        window = WindowClient(url)
        if self._opener is not None:
            await self._opener(url)
        self.attach(window)
        logger.info(f"Opened window at {url}")
        return window


class SyncManager:
    """Pending background-sync registrations, keyed by tag."""

    def __init__(self):
        self._pending: List[str] = []

    def register(self, tag: str):
        """Request a sync; registering a pending tag again keeps one registration."""
        if tag not in self._pending:
            self._pending.append(tag)
            logger.info(f"Background sync registered: {tag}")

    def pending_tags(self) -> List[str]:
        return list(self._pending)

    def is_pending(self, tag: str) -> bool:
        return tag in self._pending

    def complete(self, tag: str):
        if tag in self._pending:
            self._pending.remove(tag)
