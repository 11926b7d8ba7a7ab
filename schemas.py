"""Pydantic schemas for the notification service.

This module defines:
- the push payload wire format and the notification options built from it
- the messages exchanged between the worker and application windows
- request and response schemas for the REST API

IMPORTANT: wire names are camelCase (``notificationId``); Python attributes
are snake_case. Always dump with ``by_alias=True`` before sending.
"""

from datetime import datetime, date, timezone
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from database import ReminderType, NotificationCategory

MARK_READ_ACTION = "mark-read"
DISMISS_ACTION = "dismiss"

DEFAULT_ICON = "/images/icon.png"


class NotificationData(BaseModel):
    """Data attached to a rendered notification and returned on click."""

    url: str = Field(default="/home", description="Route opened when the body is tapped")
    notification_id: Optional[str] = Field(None, alias="notificationId")
    category: Optional[str] = None
    week: Optional[int] = None

    class Config:
        populate_by_name = True


class NotificationAction(BaseModel):
    """A button shown on the native notification."""

    action: str
    title: str
    icon: str = DEFAULT_ICON


# Fixed at two, in this order
NOTIFICATION_ACTIONS: List[NotificationAction] = [
    NotificationAction(action=MARK_READ_ACTION, title="Mark as Read"),
    NotificationAction(action=DISMISS_ACTION, title="Dismiss"),
]


class NotificationPayload(BaseModel):
    """Push payload after merging over the defaults.

    Every field has a default so that an empty or partial push still renders.
    Unknown fields sent by the server are ignored.
    """

    title: str = "Bloom Journey"
    body: str = "You have a new reminder!"
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_ICON
    tag: str = "bloom-journey-notification"
    data: NotificationData = Field(default_factory=NotificationData)

    class Config:
        extra = "ignore"


class NotificationOptions(BaseModel):
    """Options handed to the host when displaying a notification."""

    body: str
    icon: str
    badge: str
    tag: str
    data: NotificationData
    require_interaction: bool = True
    silent: bool = False
    vibrate: List[int] = Field(default_factory=lambda: [200, 100, 200])
    actions: List[NotificationAction] = Field(default_factory=lambda: list(NOTIFICATION_ACTIONS))


# Worker <-> application messages

class MarkNotificationReadMessage(BaseModel):
    """Worker -> window: a notification was marked read from the system tray."""

    type: Literal["MARK_NOTIFICATION_READ"] = "MARK_NOTIFICATION_READ"
    notification_id: str = Field(..., alias="notificationId")

    class Config:
        populate_by_name = True


class PlayNotificationSoundMessage(BaseModel):
    """Application -> worker: play the cue of a notification type."""

    type: Literal["PLAY_NOTIFICATION_SOUND"] = "PLAY_NOTIFICATION_SOUND"
    notification_type: str = Field(..., alias="notificationType")

    class Config:
        populate_by_name = True


class SkipWaitingMessage(BaseModel):
    """Application -> worker: activate a waiting worker immediately."""

    type: Literal["SKIP_WAITING"] = "SKIP_WAITING"


WorkerMessage = Annotated[
    Union[MarkNotificationReadMessage, PlayNotificationSoundMessage, SkipWaitingMessage],
    Field(discriminator="type"),
]
worker_message_adapter = TypeAdapter(WorkerMessage)


# REST API schemas

class ReminderCreate(BaseModel):
    """Schema for creating a reminder through the API."""

    user_id: str = Field(..., min_length=1)
    type: ReminderType
    title: str = Field(..., min_length=1, max_length=200)
    body: str = ""
    # Pydantic auto-parses ISO datetime strings
    scheduled_time: datetime = Field(
        ...,
        description="When the reminder is due (ISO 8601 format)",
        examples=["2025-10-26T15:00:00Z"]
    )
    data: Dict = Field(default_factory=dict)


class ReminderResponse(BaseModel):
    """Schema for reminder responses."""

    id: str
    user_id: str
    type: ReminderType
    title: str
    body: str
    scheduled_time: datetime
    completed: bool
    delivered: bool
    data: Dict = Field(default_factory=dict)

    class Config:
        from_attributes = True
        json_encoders = {
            datetime: lambda v: (
                v.replace(tzinfo=timezone.utc).isoformat() if not v.tzinfo else v.isoformat()
            )
        }


class BabyNotificationResponse(BaseModel):
    """Schema for baby notification responses."""

    id: str
    user_id: str
    category: NotificationCategory
    week: int
    message: str
    timestamp: datetime
    read: bool

    class Config:
        from_attributes = True


class UserSettingsUpdate(BaseModel):
    """Partial update of a user's notification preferences."""

    due_date: Optional[date] = None
    baby_notifications_enabled: Optional[bool] = None
    muted: Optional[bool] = None
    peak_start_hour: Optional[int] = Field(None, ge=0, le=23)
    peak_end_hour: Optional[int] = Field(None, ge=0, le=23)
    water_intake_enabled: Optional[bool] = None
    water_intake_times: Optional[List[str]] = None
    development_enabled: Optional[bool] = None
    morning_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    night_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    include_size: Optional[bool] = None
    include_milestones: Optional[bool] = None
    include_tips: Optional[bool] = None
    appointment_reminders_enabled: Optional[bool] = None
    appointment_reminder_hours: Optional[int] = Field(None, ge=1, le=168)
    baby_messages_enabled: Optional[bool] = None
    baby_message_frequency_hours: Optional[int] = Field(None, ge=1, le=24)


class UserSettingsResponse(BaseModel):
    """Schema for user preference responses."""

    user_id: str
    due_date: Optional[date] = None
    baby_notifications_enabled: bool
    muted: bool
    peak_start_hour: int
    peak_end_hour: int
    water_intake_enabled: bool
    water_intake_times: List[str]
    development_enabled: bool
    morning_time: str
    night_time: str
    include_size: bool
    include_milestones: bool
    include_tips: bool
    appointment_reminders_enabled: bool
    appointment_reminder_hours: int
    baby_messages_enabled: bool
    baby_message_frequency_hours: int
    last_baby_message_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentCreate(BaseModel):
    """Schema for adding a doctor appointment."""

    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    starts_at: datetime = Field(..., examples=["2025-10-27T10:30:00Z"])
    location: str = ""
    notes: str = ""


class AppointmentResponse(BaseModel):
    id: str
    user_id: str
    title: str
    starts_at: datetime
    location: str
    notes: str
    reminder_sent: bool

    class Config:
        from_attributes = True


class CacheUpdateRequest(BaseModel):
    """A newer offline cache generation to install."""

    asset_cache_name: str = Field(..., min_length=1, examples=["bloom-journey-v2"])


class NotificationClickRequest(BaseModel):
    """Simulated user interaction with a visible notification."""

    action: Optional[str] = Field(None, description="mark-read, dismiss, or empty for the body")
