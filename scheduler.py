"""Client Notification Scheduler.

Runs in the foreground application (not the background worker). While
running, every tick:

1. decides whether today's baby notification is due for the user
   (enabled, not muted, within peak hours, none generated yet today)
2. if due, requests copy from the content service, persists it, publishes
   it on the babyNotification channel and queues a system notification
   for the worker
3. checks time-of-day reminders (water intake, development updates)
4. reminds of doctor appointments starting within the user's window and
   sends the periodic message from the baby

Every reminder from steps 3 and 4 is published on the
mobileNotificationPopup channel and queued for the worker. A time-of-day
slot missed by a late tick still fires within REMINDER_SLOT_GRACE_MINUTES.

Subscribers to the unreadNotifications channel get a fresh unread list
whenever a notification is created or marked read.

Ticks never overlap: a firing while a tick is still in flight is skipped,
so the read-check-then-write day dedup is never raced by this process.
Content or store failures are published as a transient SchedulerFailure
and retried on the next tick.
"""

import asyncio
import enum
import math
from datetime import datetime, date, time, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from channels import AppChannels, SchedulerFailure, UnreadSnapshot
from config import settings
from content_client import ContentClient, ContentGenerationError
from database import BabyNotification, Reminder, ReminderType, UserProfile
from host import SyncManager
from logger_config import setup_logger
from pregnancy_data import calculate_current_week, category_for_day, development_message
from schemas import MarkNotificationReadMessage, PlayNotificationSoundMessage, worker_message_adapter

logger = setup_logger(__name__, 'scheduler.log')

WorkerPort = Callable[[dict], Awaitable[None]]

DEFAULT_PEAK_HOURS = (9, 21)


class SchedulerState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """UTC start (inclusive) and end (exclusive) of a local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def in_peak_hours(hour: int, start: int, end: int) -> bool:
    """Inclusive hour window; a window with start > end wraps past midnight."""
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


class NotificationScheduler:
    """Per-user notification scheduler with an explicit start/stop lifecycle."""

    def __init__(
        self,
        user_id: str,
        session_factory: Callable[[], Session],
        content_client: ContentClient,
        channels: Optional[AppChannels] = None,
        post_to_worker: Optional[WorkerPort] = None,
        sync_manager: Optional[SyncManager] = None,
        interval: Optional[float] = None,
        tz: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.content_client = content_client
        self.channels = channels or AppChannels()
        self.post_to_worker = post_to_worker
        self.sync_manager = sync_manager
        self.interval = interval if interval is not None else settings.SCHEDULER_CHECK_INTERVAL
        self.tz = ZoneInfo(tz or settings.TIMEZONE)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

    # lifecycle

    @property
    def state(self) -> SchedulerState:
        if self._task is not None and not self._task.done():
            return SchedulerState.RUNNING
        return SchedulerState.STOPPED

    def start(self) -> bool:
        """Start the recurring timer. Starting a running scheduler is a no-op.

        Returns:
            bool: True if a timer was started by this call
        """
        if self.state == SchedulerState.RUNNING:
            logger.debug(f"Scheduler for {self.user_id} already running")
            return False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Scheduler started for {self.user_id} (interval {self.interval}s)")
        return True

    def stop(self) -> bool:
        """Stop the timer. Stopping a stopped scheduler is a no-op."""
        if self.state == SchedulerState.STOPPED:
            self._task = None
            return False
        self._task.cancel()
        self._task = None
        logger.info(f"Scheduler stopped for {self.user_id}")
        return True

    async def _run(self):
        iteration = 0
        while True:
            iteration += 1
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in scheduler iteration {iteration}: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def tick(self) -> bool:
        """Run one check. Skipped if the previous tick is still in flight.

        Returns:
            bool: False when the tick was skipped
        """
        if self._tick_lock.locked():
            logger.info(f"Scheduler tick for {self.user_id} still in flight, skipping")
            return False
        async with self._tick_lock:
            now = self.clock()
            await self.check_baby_notification(now)
            await self.check_reminders(now)
            await self.check_appointments(now)
            await self.check_baby_messages(now)
        return True

    # baby notifications

    def _baby_notification_due(self, db: Session, profile: Optional[UserProfile], now: datetime) -> bool:
        if profile is not None:
            if not profile.baby_notifications_enabled or profile.muted:
                return False
            peak_start, peak_end = profile.peak_start_hour, profile.peak_end_hour
        else:
            peak_start, peak_end = DEFAULT_PEAK_HOURS

        local_now = now.astimezone(self.tz)
        if not in_peak_hours(local_now.hour, peak_start, peak_end):
            return False

        start, end = day_bounds(local_now.date(), self.tz)
        return not crud.has_baby_notification_between(db, self.user_id, start, end)

    async def check_baby_notification(self, now: Optional[datetime] = None) -> Optional[BabyNotification]:
        """Generate today's baby notification if it is due.

        Returns:
            The new notification, or None if none was due or generation failed
        """
        now = now or self.clock()
        db = self.session_factory()
        try:
            profile = crud.get_user_profile(db, self.user_id)
            if not self._baby_notification_due(db, profile, now):
                return None

            local_day = now.astimezone(self.tz).date()
            week = calculate_current_week(profile.due_date if profile else None, local_day)
            category = category_for_day(local_day)

            try:
                message = await self.content_client.generate_baby_notification(week, category)
                notification, reminder = crud.create_baby_notification_with_reminder(db, {
                    'user_id': self.user_id,
                    'category': category,
                    'week': week,
                    'message': message,
                    'timestamp': now,
                }, {
                    'user_id': self.user_id,
                    'type': ReminderType.BABY_MESSAGE,
                    'title': 'Message from Baby',
                    'body': message,
                    'scheduled_time': now,
                    'data': {'category': category, 'week': week},
                })
            except (ContentGenerationError, SQLAlchemyError) as e:
                db.rollback()
                self._report_failure('generate_baby_notification', e)
                return None
        finally:
            db.close()

        logger.info(f"Baby notification {notification.id} ({category}, week {week}) for {self.user_id}")
        self.channels.baby_notification.publish(notification)
        self._publish_unread()
        await self._hand_off(reminder)
        return notification

    # time-of-day reminders

    def _latest_slot(self, slots: Iterable[str], local_now: datetime) -> Optional[Tuple[str, datetime]]:
        """Today's most recent HH:MM slot that has started, with its local start."""
        latest = None
        for slot in slots:
            try:
                slot_time = datetime.strptime(slot, '%H:%M').time()
            except ValueError:
                logger.warning(f"Ignoring invalid reminder time {slot!r} for {self.user_id}")
                continue
            start = datetime.combine(local_now.date(), slot_time, tzinfo=self.tz)
            if start <= local_now and (latest is None or start > latest[1]):
                latest = (slot, start)
        return latest

    def _slot_due(
        self, db: Session, reminder_type: ReminderType, local_now: datetime, slots: Iterable[str]
    ) -> Optional[str]:
        """The slot to fire now, if any.

        A slot stays due from its time until REMINDER_SLOT_GRACE_MINUTES later
        (never past midnight), unless a reminder of this type was created in
        that window already.
        """
        latest = self._latest_slot(slots, local_now)
        if latest is None:
            return None
        slot, slot_start = latest

        _, day_end = day_bounds(local_now.date(), self.tz)
        window_end = min(slot_start + timedelta(minutes=settings.REMINDER_SLOT_GRACE_MINUTES), day_end)
        if local_now >= window_end:
            return None
        if crud.has_reminder_between(db, self.user_id, reminder_type, slot_start, window_end):
            return None
        return slot

    def _due_reminders(self, db: Session, profile: UserProfile, now: datetime) -> List[dict]:
        local_now = now.astimezone(self.tz)
        due = []

        if profile.water_intake_enabled:
            slot = self._slot_due(db, ReminderType.WATER_INTAKE, local_now, profile.water_intake_times or [])
            if slot is not None:
                due.append({
                    'type': ReminderType.WATER_INTAKE,
                    'title': 'Time to Hydrate!',
                    'body': 'Your baby needs you to stay hydrated! Drink a glass of water now.',
                    'data': {'time': slot},
                })

        if profile.development_enabled:
            week = calculate_current_week(profile.due_date, local_now.date())
            slots = (
                (ReminderType.BABY_DEVELOPMENT_MORNING, profile.morning_time, 'morning',
                 'Good Morning! Baby Development Update'),
                (ReminderType.BABY_DEVELOPMENT_NIGHT, profile.night_time, 'night',
                 'Good Night! Baby Development Summary'),
            )
            for reminder_type, slot, time_of_day, title in slots:
                if self._slot_due(db, reminder_type, local_now, [slot]) is not None:
                    due.append({
                        'type': reminder_type,
                        'title': title,
                        'body': development_message(
                            week, time_of_day,
                            include_size=profile.include_size,
                            include_milestones=profile.include_milestones,
                            include_tips=profile.include_tips,
                        ),
                        'data': {'week': week, 'time_of_day': time_of_day},
                    })
        return due

    async def check_reminders(self, now: Optional[datetime] = None) -> List[Reminder]:
        """Create the time-of-day reminders whose slot is due."""
        now = now or self.clock()
        created = []
        db = self.session_factory()
        try:
            profile = crud.get_user_profile(db, self.user_id)
            if profile is None:
                return []
            for fields in self._due_reminders(db, profile, now):
                try:
                    created.append(crud.create_reminder(db, {
                        **fields, 'user_id': self.user_id, 'scheduled_time': now,
                    }))
                except SQLAlchemyError as e:
                    db.rollback()
                    self._report_failure(f"create_{fields['type'].value}_reminder", e)
        finally:
            db.close()

        for reminder in created:
            await self._deliver(reminder)
        return created

    # appointments and baby messages

    async def check_appointments(self, now: Optional[datetime] = None) -> List[Reminder]:
        """Remind once of each appointment starting within the user's reminder window."""
        now = now or self.clock()
        created = []
        db = self.session_factory()
        try:
            profile = crud.get_user_profile(db, self.user_id)
            if profile is None or not profile.appointment_reminders_enabled:
                return []
            until = now + timedelta(hours=profile.appointment_reminder_hours)
            for appointment in crud.get_appointments_awaiting_reminder(db, self.user_id, now, until):
                hours = max(1, math.ceil((crud.as_utc(appointment.starts_at) - now).total_seconds() / 3600))
                try:
                    created.append(crud.create_appointment_reminder(db, appointment, {
                        'user_id': self.user_id,
                        'type': ReminderType.DOCTOR_APPOINTMENT,
                        'title': 'Doctor Appointment Reminder',
                        'body': (
                            f"You have a doctor appointment in {hours} hour{'s' if hours != 1 else ''}: "
                            f"{appointment.title}"
                        ),
                        'scheduled_time': now,
                        'data': {'appointmentId': appointment.id, 'location': appointment.location},
                    }))
                except SQLAlchemyError as e:
                    db.rollback()
                    self._report_failure('create_doctor_appointment_reminder', e)
        finally:
            db.close()

        for reminder in created:
            await self._deliver(reminder)
        return created

    async def check_baby_messages(self, now: Optional[datetime] = None) -> Optional[Reminder]:
        """Send a message from the baby every baby_message_frequency_hours.

        The copy (and speech audio, when the content service has it) comes
        from the content service; a failure is reported and retried next tick.
        """
        now = now or self.clock()
        db = self.session_factory()
        try:
            profile = crud.get_user_profile(db, self.user_id)
            if profile is None or not profile.baby_messages_enabled:
                return None
            last = profile.last_baby_message_at
            if last is not None and now - crud.as_utc(last) < timedelta(hours=profile.baby_message_frequency_hours):
                return None

            week = calculate_current_week(profile.due_date, now.astimezone(self.tz).date())
            try:
                chat = await self.content_client.generate_baby_message(week)
                data = {'week': week}
                if chat.audio:
                    data['audio'] = chat.audio
                reminder = crud.create_baby_message_reminder(db, profile, {
                    'user_id': self.user_id,
                    'type': ReminderType.BABY_MESSAGE,
                    'title': 'Message from Baby',
                    'body': chat.text,
                    'scheduled_time': now,
                    'data': data,
                })
            except (ContentGenerationError, SQLAlchemyError) as e:
                db.rollback()
                self._report_failure('generate_baby_message', e)
                return None
        finally:
            db.close()

        await self._deliver(reminder)
        return reminder

    # fan-out

    async def _deliver(self, reminder: Reminder):
        logger.info(f"Reminder {reminder.id} ({reminder.type.value}) for {self.user_id}")
        self.channels.mobile_notification_popup.publish(reminder)
        await self._hand_off(reminder)

    async def _hand_off(self, reminder: Reminder):
        """Queue the system notification and ask the worker for the sound cue."""
        if self.sync_manager is not None:
            self.sync_manager.register(settings.SYNC_TAG)
        if self.post_to_worker is None:
            return
        message = PlayNotificationSoundMessage(notification_type=reminder.type.value)
        try:
            await self.post_to_worker(message.model_dump(by_alias=True))
        except Exception as e:
            # A missing sound never blocks the notification itself
            logger.warning(f"Could not request sound for {reminder.id}: {e}")

    def _report_failure(self, operation: str, error: Exception):
        logger.error(f"Scheduler {operation} failed for {self.user_id}: {error}")
        self.channels.failures.publish(SchedulerFailure(operation=operation, reason=str(error)))

    # imperative operations

    def get_unread_notifications(self) -> List[BabyNotification]:
        db = self.session_factory()
        try:
            return crud.get_unread_notifications(db, self.user_id)
        finally:
            db.close()

    def mark_notification_read(self, notification_id: str) -> Optional[BabyNotification]:
        db = self.session_factory()
        try:
            notification = crud.mark_notification_read(db, notification_id, self.user_id)
        finally:
            db.close()
        if notification is not None:
            self._publish_unread()
        return notification

    def subscribe_to_notifications(
        self, listener: Callable[[List[BabyNotification]], None]
    ) -> Callable[[], None]:
        """Live view of this user's unread baby notifications.

        The listener receives the current unread list immediately and again
        after every notification this scheduler creates or marks read.

        Returns:
            A callable that ends the subscription.
        """
        def relay(snapshot: UnreadSnapshot):
            if snapshot.user_id == self.user_id:
                listener(snapshot.notifications)

        unsubscribe = self.channels.unread_notifications.subscribe(relay)
        listener(self.get_unread_notifications())
        return unsubscribe

    def _publish_unread(self):
        if not self.channels.unread_notifications.listener_count:
            return
        try:
            unread = self.get_unread_notifications()
        except SQLAlchemyError as e:
            logger.warning(f"Could not refresh unread notifications for {self.user_id}: {e}")
            return
        self.channels.unread_notifications.publish(UnreadSnapshot(self.user_id, unread))

    def get_reminders(self, limit: int = 50) -> List[Reminder]:
        db = self.session_factory()
        try:
            return crud.get_reminders_by_user(db, self.user_id, limit)
        finally:
            db.close()

    def mark_reminder_completed(self, reminder_id: str) -> Optional[Reminder]:
        db = self.session_factory()
        try:
            return crud.mark_reminder_completed(db, reminder_id, self.user_id)
        finally:
            db.close()

    def handle_worker_message(self, message: dict) -> bool:
        """Apply a message broadcast by the worker to this application instance.

        MARK_NOTIFICATION_READ marks the baby notification read, or completes
        the reminder with that id. Replaying it changes nothing.

        Returns:
            bool: True if the message referred to a record of this user
        """
        try:
            parsed = worker_message_adapter.validate_python(message)
        except ValidationError:
            logger.warning(f"Ignoring malformed worker message: {message!r}")
            return False
        if not isinstance(parsed, MarkNotificationReadMessage):
            return False

        if self.mark_notification_read(parsed.notification_id) is not None:
            return True
        return self.mark_reminder_completed(parsed.notification_id) is not None
