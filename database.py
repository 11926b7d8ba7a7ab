"""Database module for the notification service.

This module defines the SQLAlchemy models of the persistent store and
database session management.

Tables:
- reminders: completable, task-like records (hydration, appointments, ...)
- baby_notifications: generated read/unread contextual messages
- appointments: doctor appointments awaiting their advance reminder
- user_profiles: per-user pregnancy and notification preferences

IMPORTANT: every datetime column is timezone-aware and stored in UTC.
"""

from sqlalchemy import (
    create_engine, Column, String, Integer, Boolean, Date, DateTime, JSON, Text,
    Enum as SQLEnum, Index,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import enum

from config import settings

# SQLAlchemy Base
Base = declarative_base()


class ReminderType(str, enum.Enum):
    """Reminder categories; each one has its own sound cue"""
    WATER_INTAKE = "water_intake"
    DOCTOR_APPOINTMENT = "doctor_appointment"
    BABY_MESSAGE = "baby_message"
    MEDICATION = "medication"
    EXERCISE = "exercise"
    BABY_DEVELOPMENT_MORNING = "baby_development_morning"
    BABY_DEVELOPMENT_NIGHT = "baby_development_night"


class NotificationCategory(str, enum.Enum):
    """Scopes of generated baby notifications"""
    NUTRITION = "nutrition"
    EXERCISE = "exercise"
    SYMPTOMS = "symptoms"


class Reminder(Base):
    """Reminder model.

    A completed reminder is immutable; crud refuses further updates.
    `delivered` flips once the background worker rendered it as a system
    notification, which is what background sync replays against.
    """

    __tablename__ = "reminders"

    id = Column(String, primary_key=True, doc="Unique reminder ID (UUID)")
    user_id = Column(String, nullable=False, index=True, doc="Owning user")

    type = Column(SQLEnum(ReminderType), nullable=False, doc="Reminder category")
    title = Column(String, nullable=False)
    body = Column(Text, default="")

    scheduled_time = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="When the reminder is due (timezone-aware)"
    )

    completed = Column(Boolean, default=False, nullable=False)
    delivered = Column(Boolean, default=False, nullable=False)
    data = Column(JSON, default=dict, doc="Extra payload forwarded to the notification")

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_reminder_user_time', 'user_id', 'scheduled_time'),
        Index('idx_reminder_pending', 'completed', 'delivered', 'scheduled_time'),
    )

    def __repr__(self):
        return (
            f"<Reminder(id={self.id}, user={self.user_id}, type={self.type.value}, "
            f"scheduled={self.scheduled_time}, completed={self.completed})>"
        )


class BabyNotification(Base):
    """Generated contextual message tied to a pregnancy week and category."""

    __tablename__ = "baby_notifications"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    category = Column(SQLEnum(NotificationCategory), nullable=False)
    week = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    read = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index('idx_baby_user_time', 'user_id', 'timestamp'),
    )

    def __repr__(self):
        return (
            f"<BabyNotification(id={self.id}, user={self.user_id}, "
            f"category={self.category.value}, week={self.week}, read={self.read})>"
        )


class UserProfile(Base):
    """Pregnancy and notification preferences of one user."""

    __tablename__ = "user_profiles"

    user_id = Column(String, primary_key=True)
    due_date = Column(Date, nullable=True)

    baby_notifications_enabled = Column(Boolean, default=True, nullable=False)
    muted = Column(Boolean, default=False, nullable=False)
    peak_start_hour = Column(Integer, default=9, nullable=False)
    peak_end_hour = Column(Integer, default=21, nullable=False)

    water_intake_enabled = Column(Boolean, default=False, nullable=False)
    water_intake_times = Column(JSON, default=lambda: ["09:00", "12:00", "15:00", "18:00"])

    development_enabled = Column(Boolean, default=False, nullable=False)
    morning_time = Column(String, default="08:00", nullable=False)
    night_time = Column(String, default="20:00", nullable=False)
    include_size = Column(Boolean, default=True, nullable=False)
    include_milestones = Column(Boolean, default=True, nullable=False)
    include_tips = Column(Boolean, default=True, nullable=False)

    appointment_reminders_enabled = Column(Boolean, default=True, nullable=False)
    appointment_reminder_hours = Column(Integer, default=24, nullable=False)

    baby_messages_enabled = Column(Boolean, default=False, nullable=False)
    baby_message_frequency_hours = Column(Integer, default=6, nullable=False)
    last_baby_message_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<UserProfile(user={self.user_id}, due_date={self.due_date})>"


class Appointment(Base):
    """A doctor appointment, reminded once within the user's appointment_reminder_hours."""

    __tablename__ = "appointments"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    location = Column(String, default="")
    notes = Column(Text, default="")
    reminder_sent = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('idx_appointment_pending', 'user_id', 'reminder_sent', 'starts_at'),
    )

    def __repr__(self):
        return f"<Appointment(id={self.id}, user={self.user_id}, starts_at={self.starts_at})>"


def _engine_kwargs(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    kwargs = {"connect_args": {"check_same_thread": False}}
    # In-memory databases only exist per connection, so share a single one
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return kwargs


# Database Engine Setup
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,  # Set to True for SQL debugging
    **_engine_kwargs(settings.DATABASE_URL)
)

# Session Factory
# Objects stay readable after commit; they are handed to channel listeners
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    """Database session dependency for FastAPI.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables
Base.metadata.create_all(bind=engine)
