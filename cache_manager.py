"""Cache Lifecycle Manager.

Owns the versioned offline cache used by the worker:

    INSTALLING -> INSTALLED -> ACTIVE -> SUPERSEDED

- install: populate the current asset generation with the offline routes;
  any failed fetch fails the whole install and nothing is stored
- activate: delete every generation that is neither the current asset
  generation nor the current notification generation
- open_cache is the only way into cache storage, and only for those two names
- a newer generation is installed beside the active one (next_generation);
  once it activates, the manager it replaced is SUPERSEDED
"""

import enum
from typing import Dict, List, Optional

import httpx

from config import settings
from logger_config import setup_logger

logger = setup_logger(__name__, 'worker.log')


class CacheInstallError(Exception):
    """An offline route could not be fetched during install."""


class CacheAccessError(Exception):
    """A cache outside the managed generations was requested."""


class CacheState(str, enum.Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class CachedResponse:
    def __init__(self, url: str, status_code: int, content: bytes, headers: Optional[dict] = None):
        self.url = url
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


class Cache:
    """One named cache generation: route -> response."""

    def __init__(self, name: str):
        self.name = name
        self._entries: Dict[str, CachedResponse] = {}

    async def put(self, route: str, response: CachedResponse):
        self._entries[route] = response

    async def match(self, route: str) -> Optional[CachedResponse]:
        return self._entries.get(route)

    async def keys(self) -> List[str]:
        return list(self._entries)


class CacheStorage:
    """Host cache storage holding every generation ever opened."""

    def __init__(self):
        self._caches: Dict[str, Cache] = {}

    async def open(self, name: str) -> Cache:
        if name not in self._caches:
            self._caches[name] = Cache(name)
        return self._caches[name]

    async def keys(self) -> List[str]:
        return list(self._caches)

    async def delete(self, name: str) -> bool:
        return self._caches.pop(name, None) is not None

    async def has(self, name: str) -> bool:
        return name in self._caches


class CacheLifecycleManager:
    """Installs, activates and evicts offline cache generations."""

    def __init__(
        self,
        storage: CacheStorage,
        asset_cache_name: Optional[str] = None,
        notification_cache_name: Optional[str] = None,
        routes: Optional[List[str]] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self.asset_cache_name = asset_cache_name or settings.ASSET_CACHE_NAME
        self.notification_cache_name = notification_cache_name or settings.NOTIFICATION_CACHE_NAME
        self.routes = list(routes if routes is not None else settings.OFFLINE_ROUTES)
        self.base_url = base_url or settings.APP_BASE_URL
        self._transport = transport
        self.state: Optional[CacheState] = None

    @property
    def allowed_generations(self) -> tuple:
        return (self.asset_cache_name, self.notification_cache_name)

    async def open_cache(self, name: str) -> Cache:
        """Open one of the two managed generations.

        Raises:
            CacheAccessError: For any other cache name
        """
        if name not in self.allowed_generations:
            raise CacheAccessError(f"Cache '{name}' is not a managed generation")
        return await self.storage.open(name)

    async def _fetch_all(self) -> Dict[str, CachedResponse]:
        fetched = {}
        async with httpx.AsyncClient(base_url=self.base_url, transport=self._transport, timeout=30.0) as client:
            for route in self.routes:
                try:
                    response = await client.get(route)
                except httpx.HTTPError as e:
                    raise CacheInstallError(f"Failed to fetch {route}: {e}") from e
                if not response.is_success:
                    raise CacheInstallError(f"Failed to fetch {route}: HTTP {response.status_code}")
                fetched[route] = CachedResponse(
                    url=str(response.url),
                    status_code=response.status_code,
                    content=response.content,
                    headers=dict(response.headers),
                )
        return fetched

    async def install(self):
        """Populate the asset generation with every offline route.

        All routes are fetched before anything is written, so a failed install
        leaves no partial generation behind.

        Raises:
            CacheInstallError: If any route cannot be fetched
        """
        self.state = CacheState.INSTALLING
        logger.info(f"Installing cache '{self.asset_cache_name}' with {len(self.routes)} routes")
        fetched = await self._fetch_all()

        cache = await self.open_cache(self.asset_cache_name)
        for route, response in fetched.items():
            await cache.put(route, response)

        self.state = CacheState.INSTALLED
        logger.info(f"Cache '{self.asset_cache_name}' installed")

    async def activate(self) -> List[str]:
        """Delete stale generations.

        Returns:
            List[str]: Names of the deleted generations
        """
        deleted = []
        for name in await self.storage.keys():
            if name not in self.allowed_generations:
                await self.storage.delete(name)
                deleted.append(name)
                logger.info(f"Deleted stale cache generation '{name}'")

        self.state = CacheState.ACTIVE
        return deleted

    def next_generation(self, asset_cache_name: str) -> "CacheLifecycleManager":
        """A manager for a newer asset generation over the same storage, routes and origin."""
        return CacheLifecycleManager(
            self.storage,
            asset_cache_name=asset_cache_name,
            notification_cache_name=self.notification_cache_name,
            routes=self.routes,
            base_url=self.base_url,
            transport=self._transport,
        )

    def supersede(self):
        """A newer worker generation took over."""
        self.state = CacheState.SUPERSEDED
