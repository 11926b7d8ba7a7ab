"""Action Router.

Dispatches a user interaction with a delivered notification:

- "mark-read": close, then tell every open window which notification was
  read; no window is focused or opened
- "dismiss": close, nothing else
- anything else (the body was tapped): close, then focus a window already
  showing the target route or open a new one there

close() is always the first operation so a failure further on never
leaves a stuck notification in the tray.
"""

from typing import Optional

from config import settings
from host import Clients, DisplayedNotification, WindowClient
from logger_config import setup_logger
from schemas import DISMISS_ACTION, MARK_READ_ACTION, MarkNotificationReadMessage

logger = setup_logger(__name__, 'worker.log')


class ActionRouter:
    """Routes notification clicks back into the live application."""

    def __init__(self, clients: Clients, home_route: Optional[str] = None):
        self.clients = clients
        self.home_route = home_route or settings.HOME_ROUTE

    async def route(self, notification: DisplayedNotification, action: Optional[str] = None):
        notification.close()

        try:
            if action == MARK_READ_ACTION:
                await self._broadcast_mark_read(notification)
            elif action == DISMISS_ACTION:
                logger.info(f"Notification '{notification.tag}' dismissed")
            else:
                await self._focus_or_open(notification)
        except Exception as e:
            logger.error(f"Error routing '{action or 'default'}' click on '{notification.tag}': {e}", exc_info=True)

    async def _broadcast_mark_read(self, notification: DisplayedNotification) -> int:
        notification_id = notification.data.notification_id
        if not notification_id:
            logger.info(f"Notification '{notification.tag}' marked read without an id; nothing to broadcast")
            return 0

        message = MarkNotificationReadMessage(notification_id=notification_id).model_dump(by_alias=True)
        windows = await self.clients.match_all(include_uncontrolled=True)
        delivered = 0
        for window in windows:
            # One unreachable window must not starve the others
            try:
                await window.post_message(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to message window {window.id}: {e}")
        logger.info(f"Broadcast mark-read for {notification_id} to {delivered}/{len(windows)} window(s)")
        return delivered

    async def _focus_or_open(self, notification: DisplayedNotification) -> WindowClient:
        target = notification.data.url or self.home_route
        for window in await self.clients.match_all(include_uncontrolled=True):
            if window.shows(target):
                logger.info(f"Focusing existing window at {target}")
                return await window.focus()
        return await self.clients.open_window(target)
