"""CRUD operations for the notification store.

This module provides database operations for reminders, baby notifications,
appointments and user profiles. Every user-scoped read or write is filtered
by user_id, so a record is only ever visible to the user that owns it.

IMPORTANT: All datetime parameters are normalized to timezone-aware UTC
before they reach the database.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple
import uuid

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from database import (
    Reminder, BabyNotification, UserProfile, Appointment, ReminderType, NotificationCategory,
)
from logger_config import setup_logger

logger = setup_logger(__name__, 'crud.log')


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Reminders

def _build_reminder(reminder_data: dict) -> Reminder:
    now = datetime.now(timezone.utc)

    reminder_type = reminder_data['type']
    if isinstance(reminder_type, str):
        reminder_type = ReminderType(reminder_type)

    return Reminder(
        id=reminder_data.get('id') or str(uuid.uuid4()),
        user_id=reminder_data['user_id'],
        type=reminder_type,
        title=reminder_data['title'],
        body=reminder_data.get('body', ''),
        scheduled_time=as_utc(reminder_data['scheduled_time']),
        completed=False,
        delivered=False,
        data=reminder_data.get('data') or {},
        created_at=now,
        updated_at=now
    )


def create_reminder(db: Session, reminder_data: dict) -> Reminder:
    """Create a new reminder.

    Args:
        db: Database session
        reminder_data: Dictionary with reminder fields
            - user_id: str
            - type: ReminderType or its string value
            - title: str
            - body: Optional[str]
            - scheduled_time: datetime
            - data: Optional[dict]

    Returns:
        Reminder: Created reminder, not completed and not yet delivered
    """
    db_reminder = _build_reminder(reminder_data)
    db.add(db_reminder)
    db.commit()
    db.refresh(db_reminder)
    return db_reminder


def get_reminders_by_user(db: Session, user_id: str, limit: int = 50) -> List[Reminder]:
    """Get a user's reminders, newest scheduled time first."""
    return (
        db.query(Reminder)
        .filter(Reminder.user_id == user_id)
        .order_by(Reminder.scheduled_time.desc())
        .limit(limit)
        .all()
    )


def get_reminder(db: Session, reminder_id: str, user_id: str) -> Optional[Reminder]:
    """Get a specific reminder owned by user_id."""
    return db.query(Reminder).filter(
        Reminder.id == reminder_id,
        Reminder.user_id == user_id
    ).first()


def mark_reminder_completed(db: Session, reminder_id: str, user_id: str) -> Optional[Reminder]:
    """Mark a reminder as completed.

    Completing an already completed reminder is a no-op: completed
    reminders are immutable.

    Returns:
        Optional[Reminder]: The reminder, or None if not found for this user
    """
    reminder = get_reminder(db, reminder_id, user_id)
    if not reminder:
        return None
    if reminder.completed:
        return reminder

    reminder.completed = True
    reminder.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(reminder)
    logger.info(f"Reminder {reminder_id} completed by {user_id}")
    return reminder


def has_reminder_between(
    db: Session,
    user_id: str,
    reminder_type: ReminderType,
    start: datetime,
    end: datetime
) -> bool:
    """Check whether a reminder of this type is scheduled in [start, end)."""
    return db.query(Reminder.id).filter(
        Reminder.user_id == user_id,
        Reminder.type == reminder_type,
        Reminder.scheduled_time >= as_utc(start),
        Reminder.scheduled_time < as_utc(end)
    ).first() is not None


def get_undelivered_due_reminders(db: Session, now: Optional[datetime] = None) -> List[Reminder]:
    """Get reminders that are due, not completed and never rendered.

    Used by background sync to catch up on work missed while offline.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    return db.query(Reminder).filter(
        Reminder.completed.is_(False),
        Reminder.delivered.is_(False),
        Reminder.scheduled_time <= now
    ).order_by(Reminder.scheduled_time).all()


def mark_reminder_delivered(db: Session, reminder_id: str) -> bool:
    """Flag a reminder as rendered by the worker."""
    reminder = db.query(Reminder).filter(Reminder.id == reminder_id).first()
    if not reminder:
        return False
    reminder.delivered = True
    reminder.updated_at = datetime.now(timezone.utc)
    db.commit()
    return True


# Baby notifications

def _build_baby_notification(notification_data: dict) -> BabyNotification:
    category = notification_data['category']
    if isinstance(category, str):
        category = NotificationCategory(category)

    return BabyNotification(
        id=notification_data.get('id') or f"notification-{uuid.uuid4().hex}",
        user_id=notification_data['user_id'],
        category=category,
        week=notification_data['week'],
        message=notification_data['message'],
        timestamp=as_utc(notification_data.get('timestamp') or datetime.now(timezone.utc)),
        read=False
    )


def create_baby_notification(db: Session, notification_data: dict) -> BabyNotification:
    """Persist a generated baby notification as unread.

    Args:
        db: Database session
        notification_data: Dictionary with
            - user_id: str
            - category: NotificationCategory or its string value
            - week: int
            - message: str
            - timestamp: Optional[datetime] (defaults to now)
    """
    notification = _build_baby_notification(notification_data)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def create_baby_notification_with_reminder(
    db: Session,
    notification_data: dict,
    reminder_data: dict
) -> Tuple[BabyNotification, Reminder]:
    """Persist a baby notification and the reminder that delivers it in one commit.

    The reminder's data gets the notification id under ``notificationId``.
    Either both rows are stored or neither is.
    """
    notification = _build_baby_notification(notification_data)
    db.add(notification)

    reminder = _build_reminder({
        **reminder_data,
        'data': {**(reminder_data.get('data') or {}), 'notificationId': notification.id},
    })
    db.add(reminder)

    db.commit()
    db.refresh(notification)
    db.refresh(reminder)
    return notification, reminder


def get_baby_notification(db: Session, notification_id: str, user_id: str) -> Optional[BabyNotification]:
    return db.query(BabyNotification).filter(
        BabyNotification.id == notification_id,
        BabyNotification.user_id == user_id
    ).first()


def get_unread_notifications(db: Session, user_id: str) -> List[BabyNotification]:
    """Get a user's unread baby notifications, newest first."""
    return (
        db.query(BabyNotification)
        .filter(BabyNotification.user_id == user_id, BabyNotification.read.is_(False))
        .order_by(BabyNotification.timestamp.desc())
        .all()
    )


def mark_notification_read(db: Session, notification_id: str, user_id: str) -> Optional[BabyNotification]:
    """Flip read=True. Applying it to an already read notification is a no-op."""
    notification = get_baby_notification(db, notification_id, user_id)
    if not notification:
        return None
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def has_baby_notification_between(db: Session, user_id: str, start: datetime, end: datetime) -> bool:
    """Check whether a baby notification was generated in [start, end)."""
    return db.query(BabyNotification.id).filter(
        BabyNotification.user_id == user_id,
        BabyNotification.timestamp >= as_utc(start),
        BabyNotification.timestamp < as_utc(end)
    ).first() is not None


# Appointments

def create_appointment(db: Session, appointment_data: dict) -> Appointment:
    """Store a doctor appointment; its advance reminder is still to be sent."""
    appointment = Appointment(
        id=appointment_data.get('id') or str(uuid.uuid4()),
        user_id=appointment_data['user_id'],
        title=appointment_data['title'],
        starts_at=as_utc(appointment_data['starts_at']),
        location=appointment_data.get('location', ''),
        notes=appointment_data.get('notes', ''),
        reminder_sent=False,
        created_at=datetime.now(timezone.utc)
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


def get_appointments_by_user(db: Session, user_id: str) -> List[Appointment]:
    """Get a user's appointments, soonest first."""
    return (
        db.query(Appointment)
        .filter(Appointment.user_id == user_id)
        .order_by(Appointment.starts_at)
        .all()
    )


def get_appointments_awaiting_reminder(
    db: Session,
    user_id: str,
    now: datetime,
    until: datetime
) -> List[Appointment]:
    """Appointments starting in (now, until] whose reminder was not sent yet."""
    return db.query(Appointment).filter(
        Appointment.user_id == user_id,
        Appointment.reminder_sent.is_(False),
        Appointment.starts_at > as_utc(now),
        Appointment.starts_at <= as_utc(until)
    ).order_by(Appointment.starts_at).all()


def create_appointment_reminder(db: Session, appointment: Appointment, reminder_data: dict) -> Reminder:
    """Create the appointment's reminder and flag it sent, in one commit."""
    reminder = _build_reminder(reminder_data)
    db.add(reminder)
    appointment.reminder_sent = True
    db.commit()
    db.refresh(reminder)
    return reminder


def create_baby_message_reminder(db: Session, profile: UserProfile, reminder_data: dict) -> Reminder:
    """Create a baby message reminder and record it as the user's latest, in one commit."""
    reminder = _build_reminder(reminder_data)
    db.add(reminder)
    profile.last_baby_message_at = reminder.scheduled_time
    db.commit()
    db.refresh(reminder)
    return reminder

# User profiles

def get_user_profile(db: Session, user_id: str) -> Optional[UserProfile]:
    return db.query(UserProfile).filter(UserProfile.user_id == user_id).first()


def upsert_user_profile(db: Session, user_id: str, updates: dict) -> UserProfile:
    """Create the profile if needed and apply the provided fields.

    None values are ignored so that partial updates keep existing settings.
    """
    profile = get_user_profile(db, user_id)
    if not profile:
        profile = UserProfile(user_id=user_id)
        db.add(profile)

    for key, value in updates.items():
        if value is None:
            continue
        setattr(profile, key, value)
        # JSON columns need explicit change tracking
        if key == 'water_intake_times':
            flag_modified(profile, 'water_intake_times')

    db.commit()
    db.refresh(profile)
    return profile
