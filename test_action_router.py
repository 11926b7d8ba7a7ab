"""Notification click routing tests."""

from unittest.mock import AsyncMock

import pytest

from action_router import ActionRouter
from host import Clients, NotificationCenter, WindowClient
from push_handler import build_options
from schemas import NotificationData, NotificationPayload


async def _shown(url="/home", notification_id="notification-1"):
    center = NotificationCenter()
    payload = NotificationPayload(data=NotificationData(url=url, notification_id=notification_id))
    return center, await center.show_notification(payload.title, build_options(payload))


@pytest.mark.asyncio
async def test_mark_read_broadcasts_to_every_window():
    center, notification = await _shown()
    clients = Clients()
    home = clients.attach(WindowClient("http://app.test/home"))
    chat = clients.attach(WindowClient("http://app.test/chat", controlled=False))

    await ActionRouter(clients).route(notification, "mark-read")

    expected = {"type": "MARK_NOTIFICATION_READ", "notificationId": "notification-1"}
    assert home.messages == [expected]
    assert chat.messages == [expected]
    assert not home.focused
    assert notification.closed
    assert center.get_notifications() == []


@pytest.mark.asyncio
async def test_one_failing_window_does_not_starve_the_others():
    _, notification = await _shown()
    clients = Clients()

    def explode(message):
        raise RuntimeError("tab crashed")

    clients.attach(WindowClient("http://app.test/home", on_message=explode))
    healthy = clients.attach(WindowClient("http://app.test/profile"))

    await ActionRouter(clients).route(notification, "mark-read")

    assert len(healthy.messages) == 1


@pytest.mark.asyncio
async def test_mark_read_without_id_only_closes():
    _, notification = await _shown(notification_id=None)
    clients = Clients()
    window = clients.attach(WindowClient("http://app.test/home"))

    await ActionRouter(clients).route(notification, "mark-read")

    assert notification.closed
    assert window.messages == []


@pytest.mark.asyncio
async def test_dismiss_only_closes():
    _, notification = await _shown()
    opener = AsyncMock()
    clients = Clients(opener=opener)
    window = clients.attach(WindowClient("http://app.test/home"))

    await ActionRouter(clients).route(notification, "dismiss")

    assert notification.closed
    assert window.messages == []
    assert not window.focused
    opener.assert_not_awaited()


@pytest.mark.asyncio
async def test_body_click_focuses_window_on_target_route():
    _, notification = await _shown(url="/timeline")
    opener = AsyncMock()
    clients = Clients(opener=opener)
    other = clients.attach(WindowClient("http://app.test/home"))
    target = clients.attach(WindowClient("http://app.test/timeline/"))

    await ActionRouter(clients).route(notification, "")

    assert target.focused
    assert not other.focused
    opener.assert_not_awaited()


@pytest.mark.asyncio
async def test_body_click_opens_window_when_none_matches():
    _, notification = await _shown(url="")
    opener = AsyncMock()
    clients = Clients(opener=opener)

    await ActionRouter(clients).route(notification, None)

    opener.assert_awaited_once_with("/home")
    assert [w.path for w in await clients.match_all()] == ["/home"]
    assert notification.closed


@pytest.mark.asyncio
async def test_routing_errors_are_logged_after_close():
    _, notification = await _shown()
    clients = Clients(opener=AsyncMock(side_effect=OSError("no browser")))

    await ActionRouter(clients).route(notification, "")

    assert notification.closed
