"""Push Reception & Rendering.

Turns an incoming push message into a fully populated native notification.

Delivery must never raise: an exception here would drop the push with no
user-visible trace. Therefore:
- a missing, unparseable or invalid body falls back to the default payload
- a body object is merged over the defaults field by field (shallow merge);
  a field that fails validation keeps its default, the others still apply
- a display refusal from the host is logged, not retried
"""

import json
from typing import Any, Optional, Union

from pydantic import ValidationError

from host import DisplayedNotification, NotificationCenter
from logger_config import setup_logger
from schemas import NotificationOptions, NotificationPayload

logger = setup_logger(__name__, 'worker.log')

DEFAULT_PAYLOAD = NotificationPayload()


class PushMessage:
    """An opaque push message, optionally carrying a body."""

    def __init__(self, body: Optional[Union[bytes, str]] = None):
        self.body = body

    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode('utf-8')
        return self.body or ""

    def json(self) -> Any:
        return json.loads(self.text())


def parse_push_payload(message: Optional[PushMessage]) -> NotificationPayload:
    """Merge the push body over the default payload.

    Top-level fields present in the body replace the default; absent fields
    keep it. Each field is validated on its own, so one invalid field falls
    back to its default without discarding the rest. A body that is not a
    JSON object yields the default payload.
    """
    if message is None or message.body in (None, b"", ""):
        return DEFAULT_PAYLOAD.model_copy(deep=True)

    try:
        body = message.json()
        if not isinstance(body, dict):
            raise ValueError(f"push body is a {type(body).__name__}, not an object")
    except ValueError as e:
        logger.error(f"Error parsing notification data, using defaults: {e}")
        return DEFAULT_PAYLOAD.model_copy(deep=True)

    fields = {}
    for name in NotificationPayload.model_fields:
        if name not in body:
            continue
        try:
            fields[name] = getattr(NotificationPayload.model_validate({name: body[name]}), name)
        except ValidationError as e:
            logger.error(f"Invalid notification field '{name}', using its default: {e}")
    return DEFAULT_PAYLOAD.model_copy(update=fields, deep=True)


def build_options(payload: NotificationPayload) -> NotificationOptions:
    """Native notification options: sticky, audible, vibrating, two actions."""
    return NotificationOptions(
        body=payload.body,
        icon=payload.icon,
        badge=payload.badge,
        tag=payload.tag,
        data=payload.data,
    )


class PushRenderer:
    """Renders payloads through the host notification center."""

    def __init__(self, notification_center: NotificationCenter):
        self.notification_center = notification_center

    async def render(self, payload: NotificationPayload) -> Optional[DisplayedNotification]:
        """Display a payload. Never raises.

        Returns:
            The displayed notification, or None if the host refused it
        """
        try:
            return await self.notification_center.show_notification(payload.title, build_options(payload))
        except Exception as e:
            logger.error(f"Failed to show notification '{payload.title}': {e}")
            return None

    async def handle(self, message: Optional[PushMessage]) -> Optional[DisplayedNotification]:
        """Parse and render one push message."""
        logger.info("Push notification received")
        payload = parse_push_payload(message)
        return await self.render(payload)
