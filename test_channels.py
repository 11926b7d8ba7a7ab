"""Publish/subscribe channel tests."""

from channels import AppChannels, Channel, SchedulerFailure


def test_publish_reaches_every_listener():
    channel = Channel("babyNotification")
    first, second = [], []
    channel.subscribe(first.append)
    channel.subscribe(second.append)

    assert channel.publish("hello") == 2
    assert first == ["hello"]
    assert second == ["hello"]


def test_publish_without_listeners_is_fine():
    assert Channel("mobileNotificationPopup").publish(object()) == 0


def test_failing_listener_does_not_stop_delivery():
    channel = Channel("babyNotification")
    received = []

    def broken(payload):
        raise ValueError("listener bug")

    channel.subscribe(broken)
    channel.subscribe(received.append)

    assert channel.publish(1) == 1
    assert received == [1]


def test_unsubscribe():
    channel = Channel("babyNotification")
    received = []
    unsubscribe = channel.subscribe(received.append)
    channel.subscribe(received.append)

    assert channel.listener_count == 1
    unsubscribe()
    channel.publish(1)

    assert received == []
    assert channel.unsubscribe(received.append) is False


def test_app_channels_are_independent():
    channels = AppChannels()
    failures = []
    channels.failures.subscribe(failures.append)

    channels.baby_notification.publish("ignored")
    channels.failures.publish(SchedulerFailure(operation="tick", reason="boom"))

    assert [f.operation for f in failures] == ["tick"]
    assert failures[0].occurred_at.tzinfo is not None
    assert channels.mobile_notification_popup.name == "mobileNotificationPopup"
