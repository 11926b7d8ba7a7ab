"""MCP Server for Bloom Journey notifications.

This module provides MCP tools for AI agents (the companion chat) to read
and act on a user's reminders and baby notifications. Uses the same
database as the REST API for data consistency.

Transport Support:
- stdio: Standard input/output (local process communication)
- sse: Server-Sent Events over HTTP (network access, scalable)
"""

from mcp.server.fastmcp import FastMCP
from datetime import datetime, timezone
import os
import crud
import database
from config import settings
from database import ReminderType
from logger_config import setup_logger
from pregnancy_data import calculate_current_week, development_message

logger = setup_logger(__name__, 'mcp.log')
logger.info("MCP Server initialized")

# Create FastMCP server with host and port from settings
mcp = FastMCP(
    "BloomJourneyNotifications",
    host=settings.MCP_HOST,
    port=settings.MCP_PORT
)


def parse_datetime_to_utc(datetime_str: str) -> datetime:
    """Parse an ISO datetime string and convert to UTC.

    Handles "2025-11-06T15:00:00+05:30", "2025-11-06T15:00:00Z" and naive
    strings, which are taken to be UTC.
    """
    dt = datetime.fromisoformat(datetime_str.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@mcp.tool()
def create_reminder(
    user_id: str,
    reminder_type: str,
    title: str,
    scheduled_time: str,
    body: str = ""
) -> str:
    """Create a reminder for a user.

    Args:
        user_id: Owning user
        reminder_type: One of water_intake, doctor_appointment, baby_message,
            medication, exercise, baby_development_morning, baby_development_night
        title: Reminder title
        scheduled_time: When the reminder is due - ISO format (e.g., "2025-10-26T15:00:00Z")
        body: Optional notification body

    Returns:
        Success message with reminder ID, or error message
    """
    db = database.SessionLocal()
    try:
        logger.info(f"Creating {reminder_type} reminder: {title} | Due: {scheduled_time}")
        reminder = crud.create_reminder(db, {
            'user_id': user_id,
            'type': ReminderType(reminder_type),
            'title': title,
            'body': body,
            'scheduled_time': parse_datetime_to_utc(scheduled_time),
        })
        return (
            f"✓ Reminder created successfully!\n"
            f"ID: {reminder.id}\n"
            f"Type: {reminder.type.value}\n"
            f"Due: {reminder.scheduled_time.isoformat()}"
        )
    except Exception as e:
        return f"✗ Error creating reminder: {str(e)}"
    finally:
        db.close()


@mcp.tool()
def list_reminders(user_id: str, limit: int = 50) -> str:
    """List reminders for a user, newest first.

    Args:
        user_id: Owning user
        limit: Maximum number of results (default: 50, max: 1000)

    Returns:
        Formatted list of reminders or message if none found
    """
    db = database.SessionLocal()
    try:
        reminders = crud.get_reminders_by_user(db, user_id, min(limit, 1000))

        if not reminders:
            return "No reminders found."

        result = [f"Found {len(reminders)} reminder(s):\n"]
        for r in reminders:
            status = "COMPLETED" if r.completed else "PENDING"
            result.append(
                f"\n• [{status}] {r.title}\n"
                f"  ID: {r.id}\n"
                f"  Type: {r.type.value}\n"
                f"  Due: {r.scheduled_time.strftime('%Y-%m-%d %H:%M')}"
            )
            if r.body:
                result.append(f"  Body: {r.body}")

        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def complete_reminder(reminder_id: str, user_id: str) -> str:
    """Mark a reminder as completed.

    Args:
        reminder_id: Reminder UUID
        user_id: Owning user

    Returns:
        Success or error message
    """
    db = database.SessionLocal()
    try:
        reminder = crud.mark_reminder_completed(db, reminder_id, user_id)
        if not reminder:
            return "✗ Reminder not found."
        return f"✓ Reminder '{reminder.title}' completed."
    finally:
        db.close()


@mcp.tool()
def list_unread_notifications(user_id: str) -> str:
    """List unread baby notifications for a user.

    Args:
        user_id: Owning user

    Returns:
        Formatted list of unread notifications or message if none
    """
    db = database.SessionLocal()
    try:
        notifications = crud.get_unread_notifications(db, user_id)

        if not notifications:
            return "No unread notifications. ✓"

        result = [f"{len(notifications)} unread notification(s):\n"]
        for n in notifications:
            result.append(
                f"\n• [{n.category.value}] week {n.week}\n"
                f"  ID: {n.id}\n"
                f"  {n.message}"
            )
        return "\n".join(result)
    finally:
        db.close()


@mcp.tool()
def mark_notification_read(notification_id: str, user_id: str) -> str:
    """Mark a baby notification as read.

    Args:
        notification_id: Notification ID
        user_id: Owning user
    """
    db = database.SessionLocal()
    try:
        notification = crud.mark_notification_read(db, notification_id, user_id)
        if not notification:
            return "✗ Notification not found."
        return f"✓ Notification {notification_id} marked as read."
    finally:
        db.close()


@mcp.tool()
def get_development_update(user_id: str, time_of_day: str = "morning") -> str:
    """Describe the baby's development for the user's current pregnancy week.

    Args:
        user_id: Owning user
        time_of_day: "morning" or "night"
    """
    db = database.SessionLocal()
    try:
        profile = crud.get_user_profile(db, user_id)
        week = calculate_current_week(profile.due_date if profile else None)
        if profile is None:
            return development_message(week, time_of_day)
        return development_message(
            week, time_of_day,
            include_size=profile.include_size,
            include_milestones=profile.include_milestones,
            include_tips=profile.include_tips,
        )
    finally:
        db.close()


if __name__ == "__main__":
    # Get transport from environment or config
    transport = os.getenv("MCP_TRANSPORT", settings.MCP_TRANSPORT).lower()

    if transport == "sse":
        host = settings.MCP_HOST
        port = settings.MCP_PORT

        print(f"Starting MCP server with SSE transport on {host}:{port}")
        print(f"SSE endpoint: http://{host}:{port}/sse")

        mcp.run(transport="sse")
    else:
        print("Starting MCP server with stdio transport")
        mcp.run(transport="stdio")
