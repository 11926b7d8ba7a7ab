"""Client notification scheduler tests."""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import SQLAlchemyError

import crud
import database
from channels import AppChannels
from config import settings
from content_client import BabyChatMessage, ContentGenerationError
from database import ReminderType
from host import SyncManager
from scheduler import NotificationScheduler, SchedulerState, day_bounds, in_peak_hours


class FakeContentClient:
    def __init__(self, error=None):
        self.calls = []
        self.error = error
        self.release = None

    async def generate_baby_notification(self, week, category):
        self.calls.append((week, category))
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return f"Hi mama! Week {week} is all about {category}."

    async def generate_baby_message(self, week):
        self.calls.append((week, None))
        if self.error is not None:
            raise self.error
        return BabyChatMessage(text=f"Week {week}: I can hear your heartbeat!", audio="data:audio/wav;base64,UklGRg==")


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def _scheduler(now, content=None, **kwargs):
    return NotificationScheduler(
        'user-1',
        database.SessionLocal,
        content or FakeContentClient(),
        channels=kwargs.pop('channels', AppChannels()),
        clock=Clock(now),
        tz='UTC',
        **kwargs,
    )


def test_day_bounds_follow_local_calendar_day():
    start, end = day_bounds(date(2025, 3, 10), ZoneInfo('Asia/Kolkata'))

    assert start == datetime(2025, 3, 9, 18, 30, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)


@pytest.mark.asyncio
async def test_baby_notification_generated_once_per_day(db, noon):
    content = FakeContentClient()
    received = []
    channels = AppChannels()
    channels.baby_notification.subscribe(received.append)
    scheduler = _scheduler(noon, content, channels=channels)

    assert await scheduler.tick() is True
    scheduler.clock.now = noon + timedelta(hours=3)
    assert await scheduler.tick() is True

    assert len(content.calls) == 1
    assert len(received) == 1
    unread = crud.get_unread_notifications(db, 'user-1')
    assert [n.id for n in unread] == [received[0].id]
    assert unread[0].message.startswith("Hi mama!")


@pytest.mark.asyncio
async def test_baby_notification_uses_due_date_week_and_day_category(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'due_date': noon.date() + timedelta(weeks=20)})
    content = FakeContentClient()

    await _scheduler(noon, content).check_baby_notification()

    # 2025-03-10 is day 69 of the year: 69 % 3 == 0
    assert content.calls == [(20, 'nutrition')]


@pytest.mark.asyncio
async def test_baby_notification_queued_for_worker(db, noon):
    post = AsyncMock()
    sync_manager = SyncManager()
    scheduler = _scheduler(noon, post_to_worker=post, sync_manager=sync_manager)

    notification = await scheduler.check_baby_notification()

    reminder = crud.get_reminders_by_user(db, 'user-1')[0]
    assert reminder.type == ReminderType.BABY_MESSAGE
    assert reminder.data['notificationId'] == notification.id
    assert sync_manager.is_pending(settings.SYNC_TAG)
    post.assert_awaited_once_with({"type": "PLAY_NOTIFICATION_SOUND", "notificationType": "baby_message"})


@pytest.mark.asyncio
async def test_sound_request_failure_does_not_block_notification(db, noon):
    post = AsyncMock(side_effect=RuntimeError("worker gone"))

    notification = await _scheduler(noon, post_to_worker=post).check_baby_notification()

    assert notification is not None


@pytest.mark.asyncio
async def test_muted_or_disabled_user_gets_no_baby_notification(db, noon):
    content = FakeContentClient()
    crud.upsert_user_profile(db, 'user-1', {'muted': True})
    assert await _scheduler(noon, content).check_baby_notification() is None

    crud.upsert_user_profile(db, 'user-1', {'muted': False, 'baby_notifications_enabled': False})
    assert await _scheduler(noon, content).check_baby_notification() is None
    assert content.calls == []


@pytest.mark.asyncio
async def test_no_baby_notification_outside_peak_hours(db, noon):
    content = FakeContentClient()

    early = noon.replace(hour=6)
    assert await _scheduler(early, content).check_baby_notification() is None

    crud.upsert_user_profile(db, 'user-1', {'peak_start_hour': 5})
    assert await _scheduler(early, content).check_baby_notification() is not None


@pytest.mark.asyncio
async def test_content_failure_is_published_and_retried(db, noon):
    content = FakeContentClient(error=ContentGenerationError("content service down"))
    failures = []
    channels = AppChannels()
    channels.failures.subscribe(failures.append)
    scheduler = _scheduler(noon, content, channels=channels)

    assert await scheduler.check_baby_notification() is None
    assert len(failures) == 1
    assert failures[0].operation == 'generate_baby_notification'
    assert "content service down" in failures[0].reason
    assert crud.get_unread_notifications(db, 'user-1') == []

    content.error = None
    assert await scheduler.check_baby_notification() is not None
    assert len(crud.get_unread_notifications(db, 'user-1')) == 1


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(db, noon):
    content = FakeContentClient()
    content.release = asyncio.Event()
    scheduler = _scheduler(noon, content)

    first = asyncio.create_task(scheduler.tick())
    for _ in range(5):
        await asyncio.sleep(0)

    assert await scheduler.tick() is False

    content.release.set()
    assert await first is True
    assert len(content.calls) == 1


@pytest.mark.asyncio
async def test_water_reminders_once_per_slot(db, noon):
    crud.upsert_user_profile(db, 'user-1', {
        'baby_notifications_enabled': False,
        'water_intake_enabled': True,
    })
    popups = []
    channels = AppChannels()
    channels.mobile_notification_popup.subscribe(popups.append)
    scheduler = _scheduler(noon, channels=channels)

    await scheduler.tick()
    scheduler.clock.now = noon + timedelta(seconds=30)
    await scheduler.tick()
    scheduler.clock.now = noon + timedelta(minutes=1)
    await scheduler.tick()
    scheduler.clock.now = noon.replace(hour=15)
    await scheduler.tick()

    assert [r.type for r in popups] == [ReminderType.WATER_INTAKE, ReminderType.WATER_INTAKE]
    assert popups[0].title == "Time to Hydrate!"
    assert [r.data['time'] for r in popups] == ["12:00", "15:00"]


@pytest.mark.asyncio
async def test_development_updates_at_configured_times(db, noon):
    crud.upsert_user_profile(db, 'user-1', {
        'baby_notifications_enabled': False,
        'development_enabled': True,
        'due_date': noon.date() + timedelta(weeks=20),
        'include_tips': False,
    })
    scheduler = _scheduler(noon.replace(hour=8))

    morning = await scheduler.check_reminders()
    night = await scheduler.check_reminders(noon.replace(hour=20))

    assert [r.type for r in morning] == [ReminderType.BABY_DEVELOPMENT_MORNING]
    assert "Week 20" in morning[0].body
    assert "Tip:" not in morning[0].body
    assert [r.type for r in night] == [ReminderType.BABY_DEVELOPMENT_NIGHT]


@pytest.mark.asyncio
async def test_reminders_require_a_profile(db, noon):
    assert await _scheduler(noon).check_reminders() == []


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'baby_notifications_enabled': False})
    scheduler = _scheduler(noon, interval=3600)

    assert scheduler.state == SchedulerState.STOPPED
    assert scheduler.start() is True
    assert scheduler.start() is False
    assert scheduler.state == SchedulerState.RUNNING

    assert scheduler.stop() is True
    assert scheduler.stop() is False
    assert scheduler.state == SchedulerState.STOPPED
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_running_scheduler_ticks_immediately(db, noon):
    content = FakeContentClient()
    scheduler = _scheduler(noon, content, interval=3600)

    scheduler.start()
    for _ in range(5):
        await asyncio.sleep(0)
    scheduler.stop()
    await asyncio.sleep(0)

    assert len(content.calls) == 1


def test_worker_mark_read_message_is_idempotent(db, noon):
    notification = crud.create_baby_notification(db, {
        'user_id': 'user-1', 'category': 'symptoms', 'week': 12, 'message': 'Rest up!',
    })
    reminder = crud.create_reminder(db, {
        'user_id': 'user-1', 'type': 'medication', 'title': 'Folic acid', 'scheduled_time': noon,
    })
    scheduler = _scheduler(noon)

    message = {"type": "MARK_NOTIFICATION_READ", "notificationId": notification.id}
    assert scheduler.handle_worker_message(message) is True
    assert scheduler.handle_worker_message(message) is True
    assert scheduler.get_unread_notifications() == []

    assert scheduler.handle_worker_message(
        {"type": "MARK_NOTIFICATION_READ", "notificationId": reminder.id}
    ) is True
    assert scheduler.get_reminders()[0].completed is True

    assert scheduler.handle_worker_message({"type": "MARK_NOTIFICATION_READ", "notificationId": "nope"}) is False
    assert scheduler.handle_worker_message({"type": "SKIP_WAITING"}) is False
    assert scheduler.handle_worker_message({"type": "UNKNOWN"}) is False


@pytest.mark.asyncio
async def test_unread_subscription_follows_changes(db, noon):
    channels = AppChannels()
    scheduler = _scheduler(noon, channels=channels)
    other = _scheduler(noon, channels=channels)
    other.user_id = 'user-2'
    snapshots = []

    unsubscribe = scheduler.subscribe_to_notifications(snapshots.append)
    assert snapshots == [[]]

    notification = await scheduler.check_baby_notification()
    assert [n.id for n in snapshots[-1]] == [notification.id]

    # another user's changes are not delivered
    await other.check_baby_notification()
    assert len(snapshots) == 2

    scheduler.mark_notification_read(notification.id)
    assert snapshots[-1] == []

    unsubscribe()
    scheduler.clock.now = noon + timedelta(days=1)
    await scheduler.check_baby_notification()
    assert len(snapshots) == 3


def test_peak_hours_may_wrap_past_midnight():
    assert in_peak_hours(12, 9, 21)
    assert not in_peak_hours(22, 9, 21)
    assert in_peak_hours(23, 22, 6)
    assert in_peak_hours(3, 22, 6)
    assert not in_peak_hours(12, 22, 6)


@pytest.mark.asyncio
async def test_overnight_peak_window_gets_baby_notification(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'peak_start_hour': 22, 'peak_end_hour': 6})

    assert await _scheduler(noon).check_baby_notification() is None
    assert await _scheduler(noon.replace(hour=23)).check_baby_notification() is not None


@pytest.mark.asyncio
async def test_failed_reminder_write_leaves_no_notification(db, noon, monkeypatch):
    build_reminder = crud._build_reminder
    attempts = []

    def flaky_build_reminder(reminder_data):
        attempts.append(reminder_data)
        if len(attempts) == 1:
            raise SQLAlchemyError("reminders table is locked")
        return build_reminder(reminder_data)

    monkeypatch.setattr(crud, '_build_reminder', flaky_build_reminder)
    published = []
    channels = AppChannels()
    channels.baby_notification.subscribe(published.append)
    scheduler = _scheduler(noon, channels=channels)

    assert await scheduler.check_baby_notification() is None
    assert crud.get_unread_notifications(db, 'user-1') == []

    notification = await scheduler.check_baby_notification()
    assert [n.id for n in crud.get_unread_notifications(db, 'user-1')] == [notification.id]
    assert published == [notification]


@pytest.mark.asyncio
async def test_late_tick_still_fires_missed_slot(db, noon):
    crud.upsert_user_profile(db, 'user-1', {
        'baby_notifications_enabled': False,
        'water_intake_enabled': True,
        'water_intake_times': ['09:00'],
    })
    nine = noon.replace(hour=9)
    scheduler = _scheduler(nine - timedelta(seconds=10))

    assert await scheduler.check_reminders() == []
    late = await scheduler.check_reminders(nine + timedelta(minutes=1, seconds=5))
    again = await scheduler.check_reminders(nine + timedelta(minutes=30))
    expired = await scheduler.check_reminders(nine + timedelta(minutes=settings.REMINDER_SLOT_GRACE_MINUTES))

    assert [r.data['time'] for r in late] == ['09:00']
    assert again == []
    assert expired == []


@pytest.mark.asyncio
async def test_appointment_reminded_once_within_window(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'baby_notifications_enabled': False, 'appointment_reminder_hours': 24})
    soon = crud.create_appointment(db, {
        'user_id': 'user-1', 'title': 'Glucose test', 'starts_at': noon + timedelta(hours=5, minutes=30),
    })
    crud.create_appointment(db, {
        'user_id': 'user-1', 'title': 'Anatomy scan', 'starts_at': noon + timedelta(days=3),
    })
    crud.create_appointment(db, {
        'user_id': 'user-1', 'title': 'Booking visit', 'starts_at': noon - timedelta(hours=1),
    })
    popups = []
    channels = AppChannels()
    channels.mobile_notification_popup.subscribe(popups.append)
    scheduler = _scheduler(noon, channels=channels)

    await scheduler.tick()
    scheduler.clock.now = noon + timedelta(hours=1)
    await scheduler.tick()

    assert [r.type for r in popups] == [ReminderType.DOCTOR_APPOINTMENT]
    assert popups[0].body == "You have a doctor appointment in 6 hours: Glucose test"
    assert popups[0].data['appointmentId'] == soon.id
    db.expire_all()
    assert [a.reminder_sent for a in crud.get_appointments_by_user(db, 'user-1')] == [False, True, False]


@pytest.mark.asyncio
async def test_appointment_reminders_can_be_disabled(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'appointment_reminders_enabled': False})
    crud.create_appointment(db, {'user_id': 'user-1', 'title': 'Glucose test', 'starts_at': noon + timedelta(hours=2)})

    assert await _scheduler(noon).check_appointments() == []


@pytest.mark.asyncio
async def test_baby_messages_follow_frequency(db, noon):
    crud.upsert_user_profile(db, 'user-1', {
        'baby_notifications_enabled': False,
        'baby_messages_enabled': True,
        'baby_message_frequency_hours': 6,
        'due_date': noon.date() + timedelta(weeks=22),
    })
    content = FakeContentClient()
    post = AsyncMock()
    scheduler = _scheduler(noon, content, post_to_worker=post)

    first = await scheduler.check_baby_messages()
    assert await scheduler.check_baby_messages(noon + timedelta(hours=5)) is None
    second = await scheduler.check_baby_messages(noon + timedelta(hours=6))

    assert content.calls == [(18, None), (18, None)]
    assert first.type == ReminderType.BABY_MESSAGE
    assert first.body == "Week 18: I can hear your heartbeat!"
    assert first.data == {'week': 18, 'audio': "data:audio/wav;base64,UklGRg=="}
    assert second is not None
    post.assert_awaited_with({"type": "PLAY_NOTIFICATION_SOUND", "notificationType": "baby_message"})


@pytest.mark.asyncio
async def test_baby_message_failure_is_reported_and_retried(db, noon):
    crud.upsert_user_profile(db, 'user-1', {'baby_notifications_enabled': False, 'baby_messages_enabled': True})
    content = FakeContentClient(error=ContentGenerationError("speech model overloaded"))
    failures = []
    channels = AppChannels()
    channels.failures.subscribe(failures.append)
    scheduler = _scheduler(noon, content, channels=channels)

    assert await scheduler.check_baby_messages() is None
    assert [f.operation for f in failures] == ['generate_baby_message']

    content.error = None
    assert await scheduler.check_baby_messages(noon + timedelta(minutes=1)) is not None
