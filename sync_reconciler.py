"""Background Sync Reconciler.

When connectivity returns, the host fires the `notification-sync` tag and
the worker catches up on notification work it missed while offline.

Replay policy: every reminder that is due, not completed and never rendered
is displayed now and then flagged delivered. A reminder the host refuses
to display stays undelivered and is retried on the next sync. Running twice
for one reconnection is harmless; a store error propagates so the host keeps
the registration pending and runs it again.
"""

from typing import Callable, Optional

from sqlalchemy.orm import Session

import crud
from config import settings
from database import Reminder
from logger_config import setup_logger
from push_handler import PushRenderer
from schemas import NotificationData, NotificationPayload

logger = setup_logger(__name__, 'worker.log')


def payload_for_reminder(reminder: Reminder) -> NotificationPayload:
    """Build the notification payload of a persisted reminder."""
    extra = reminder.data or {}
    return NotificationPayload(
        title=reminder.title,
        body=reminder.body or "",
        tag=f"reminder-{reminder.type.value}",
        data=NotificationData(
            url=extra.get('url') or settings.HOME_ROUTE,
            notification_id=extra.get('notificationId') or reminder.id,
            category=extra.get('category') or reminder.type.value,
            week=extra.get('week'),
        ),
    )


class SyncReconciler:
    """Replays undelivered reminders on the notification sync tag."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        renderer: PushRenderer,
        tag: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.renderer = renderer
        self.tag = tag or settings.SYNC_TAG

    def handles(self, tag: str) -> bool:
        return tag == self.tag

    async def reconcile(self) -> int:
        """Render every due, undelivered reminder.

        Returns:
            int: Number of reminders rendered in this run
        """
        db = self.session_factory()
        try:
            reminders = crud.get_undelivered_due_reminders(db)
            if not reminders:
                logger.debug("Background sync: nothing to replay")
                return 0

            logger.info(f"Background sync: replaying {len(reminders)} reminder(s)")
            delivered = 0
            for reminder in reminders:
                shown = await self.renderer.render(payload_for_reminder(reminder))
                if shown is None:
                    logger.warning(f"Reminder {reminder.id} not shown; will retry on next sync")
                    continue
                crud.mark_reminder_delivered(db, reminder.id)
                delivered += 1
            return delivered
        finally:
            db.close()
