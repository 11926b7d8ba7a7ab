"""Content service client tests."""

import json

import httpx
import pytest

from content_client import ContentClient, ContentGenerationError


def _client(handler):
    return ContentClient(base_url="http://content.test", timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_generate_baby_notification():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"message": "Mama, I can hear your heartbeat!"})

    message = await _client(handler).generate_baby_notification(20, "symptoms")

    assert message == "Mama, I can hear your heartbeat!"
    assert requests[0].url.path == "/baby-notification"
    assert json.loads(requests[0].content) == {"week": 20, "category": "symptoms"}


@pytest.mark.asyncio
async def test_generate_baby_message_with_audio():
    def handler(request):
        return httpx.Response(200, json={"text": "Good morning!", "audio": "data:audio/wav;base64,AAAA"})

    message = await _client(handler).generate_baby_message(12)

    assert message.text == "Good morning!"
    assert message.audio.startswith("data:audio/wav")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="model overloaded"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"unexpected": True}),
])
async def test_bad_responses_raise(response):
    with pytest.raises(ContentGenerationError):
        await _client(lambda request: response).generate_baby_notification(20, "exercise")


@pytest.mark.asyncio
async def test_network_errors_raise():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ContentGenerationError):
        await _client(handler).generate_baby_notification(20, "nutrition")


@pytest.mark.asyncio
async def test_is_reachable():
    assert await _client(lambda request: httpx.Response(200, json={"status": "ok"})).is_reachable() is True
    assert await _client(lambda request: httpx.Response(503)).is_reachable() is False

    def offline(request):
        raise httpx.ConnectError("offline", request=request)

    assert await _client(offline).is_reachable() is False
