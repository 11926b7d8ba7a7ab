"""Offline cache lifecycle tests."""

import httpx
import pytest

from cache_manager import (
    CacheAccessError, CacheInstallError, CacheLifecycleManager, CacheState, CacheStorage,
)

ROUTES = ["/", "/home", "/profile"]


def _manager(storage, handler):
    return CacheLifecycleManager(
        storage,
        asset_cache_name="bloom-journey-v2",
        notification_cache_name="notifications-v1",
        routes=ROUTES,
        base_url="http://app.test",
        transport=httpx.MockTransport(handler),
    )


def _ok(request):
    return httpx.Response(200, text=f"<html>{request.url.path}</html>")


@pytest.mark.asyncio
async def test_install_caches_every_route():
    storage = CacheStorage()
    manager = _manager(storage, _ok)

    await manager.install()

    assert manager.state == CacheState.INSTALLED
    cache = await storage.open("bloom-journey-v2")
    assert sorted(await cache.keys()) == sorted(ROUTES)
    assert (await cache.match("/home")).content == b"<html>/home</html>"


@pytest.mark.asyncio
async def test_failed_route_fails_install_without_partial_cache():
    def handler(request):
        if request.url.path == "/profile":
            return httpx.Response(404)
        return _ok(request)

    storage = CacheStorage()
    manager = _manager(storage, handler)

    with pytest.raises(CacheInstallError):
        await manager.install()
    assert not await storage.has("bloom-journey-v2")


@pytest.mark.asyncio
async def test_network_error_fails_install():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    with pytest.raises(CacheInstallError):
        await _manager(CacheStorage(), handler).install()


@pytest.mark.asyncio
async def test_activate_deletes_stale_generations():
    storage = CacheStorage()
    await storage.open("bloom-journey-v1")
    await storage.open("notifications-v0")
    manager = _manager(storage, _ok)
    await manager.install()
    await manager.open_cache("notifications-v1")

    deleted = await manager.activate()

    assert sorted(deleted) == ["bloom-journey-v1", "notifications-v0"]
    assert sorted(await storage.keys()) == ["bloom-journey-v2", "notifications-v1"]
    assert manager.state == CacheState.ACTIVE


@pytest.mark.asyncio
async def test_only_managed_generations_can_be_opened():
    manager = _manager(CacheStorage(), _ok)

    with pytest.raises(CacheAccessError):
        await manager.open_cache("someone-elses-cache")



@pytest.mark.asyncio
async def test_next_generation_shares_storage_and_routes():
    storage = CacheStorage()
    current = _manager(storage, _ok)
    await current.install()
    await current.activate()

    newer = current.next_generation("bloom-journey-v3")
    await newer.install()
    await newer.activate()
    current.supersede()

    assert newer.routes == ROUTES
    assert sorted(await storage.keys()) == ["bloom-journey-v3"]
    assert current.state == CacheState.SUPERSEDED
    assert newer.state == CacheState.ACTIVE
