"""MCP tool tests; the tools are plain functions over the shared database."""

from datetime import date, timedelta, timezone

import crud
import mcp_server


def test_parse_datetime_to_utc():
    parsed = mcp_server.parse_datetime_to_utc("2025-11-06T15:00:00+05:30")

    assert parsed.tzinfo == timezone.utc
    assert (parsed.hour, parsed.minute) == (9, 30)
    assert mcp_server.parse_datetime_to_utc("2025-11-06T15:00:00").hour == 15


def test_create_list_and_complete_reminder(db):
    created = mcp_server.create_reminder("user-1", "medication", "Folic acid", "2025-11-06T08:00:00Z")
    assert created.startswith("✓ Reminder created successfully!")

    reminder = crud.get_reminders_by_user(db, "user-1")[0]
    listing = mcp_server.list_reminders("user-1")
    assert "[PENDING] Folic acid" in listing
    assert reminder.id in listing

    assert "completed" in mcp_server.complete_reminder(reminder.id, "user-1")
    assert "[COMPLETED]" in mcp_server.list_reminders("user-1")
    assert mcp_server.complete_reminder("missing", "user-1") == "✗ Reminder not found."


def test_create_reminder_with_bad_type():
    assert mcp_server.create_reminder("user-1", "karaoke", "Sing", "2025-11-06T08:00:00Z").startswith("✗")
    assert mcp_server.list_reminders("user-1") == "No reminders found."


def test_unread_notifications_tools(db):
    notification = crud.create_baby_notification(db, {
        'user_id': 'user-1', 'category': 'exercise', 'week': 24, 'message': 'A short walk helps us both!',
    })

    listing = mcp_server.list_unread_notifications("user-1")
    assert "[exercise] week 24" in listing
    assert notification.id in listing

    assert "marked as read" in mcp_server.mark_notification_read(notification.id, "user-1")
    assert mcp_server.list_unread_notifications("user-1") == "No unread notifications. ✓"
    assert mcp_server.mark_notification_read("missing", "user-1") == "✗ Notification not found."


def test_development_update_respects_preferences(db):
    crud.upsert_user_profile(db, "user-1", {
        'due_date': date.today() + timedelta(weeks=10),
        'include_size': False,
    })

    update = mcp_server.get_development_update("user-1", "night")

    assert "Week 30" in update
    assert "Size:" not in update
    assert "Key Milestone:" in update
    assert "Week 12" in mcp_server.get_development_update("nobody")
