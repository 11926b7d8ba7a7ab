"""Background worker event interface.

The worker is single-threaded and event-driven. The host may suspend it
between events, cancelling any work it was not told about. Each handler
therefore hands its asynchronous work to ``event.wait_until(...)`` and
returns ``event.lifetime()``, which the host MUST await before it is
allowed to suspend the worker:

    await worker.on_push(PushEvent(PushMessage(body)))

Handlers:
- on_install:            populate the offline cache (failure fails install)
- on_activate:           evict stale cache generations
- update_cache:          install a newer cache generation; it replaces the
                         active one once SKIP_WAITING is received
- on_push:               render a push message as a native notification
- on_notification_click: route a click back into the application
- on_sync:               replay missed notification work
- on_message:            messages from application windows
"""

import asyncio
import enum
from typing import Awaitable, Callable, List, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.orm import Session

from action_router import ActionRouter
from audio_cues import AudioCueSynthesizer
from cache_manager import CacheInstallError, CacheLifecycleManager, CacheStorage
from host import Clients, DisplayedNotification, NotificationCenter, Opener, SyncManager, WindowClient
from logger_config import setup_logger
from push_handler import PushMessage, PushRenderer
from schemas import PlayNotificationSoundMessage, SkipWaitingMessage, worker_message_adapter
from sync_reconciler import SyncReconciler

logger = setup_logger(__name__, 'worker.log')


class ExtendableEvent:
    """Base event carrying the lifecycle-extension handle."""

    def __init__(self):
        self._pending: List[asyncio.Future] = []

    def wait_until(self, awaitable: Awaitable) -> asyncio.Future:
        """Keep the worker alive until awaitable settles."""
        future = asyncio.ensure_future(awaitable)
        self._pending.append(future)
        return future

    async def lifetime(self):
        """Settle every registered piece of work, including work registered late.

        Raises:
            The first exception raised by registered work, after all of it settled
        """
        errors = []
        settled = 0
        while settled < len(self._pending):
            batch = self._pending[settled:]
            settled = len(self._pending)
            results = await asyncio.gather(*batch, return_exceptions=True)
            errors.extend(r for r in results if isinstance(r, BaseException))
        if errors:
            raise errors[0]


class InstallEvent(ExtendableEvent):
    pass


class ActivateEvent(ExtendableEvent):
    pass


class PushEvent(ExtendableEvent):
    def __init__(self, data: Optional[PushMessage] = None):
        super().__init__()
        self.data = data


class NotificationClickEvent(ExtendableEvent):
    def __init__(self, notification: DisplayedNotification, action: str = ""):
        super().__init__()
        self.notification = notification
        self.action = action


class SyncEvent(ExtendableEvent):
    def __init__(self, tag: str, last_chance: bool = False):
        super().__init__()
        self.tag = tag
        self.last_chance = last_chance


class MessageEvent(ExtendableEvent):
    def __init__(self, data, source: Optional[WindowClient] = None):
        super().__init__()
        self.data = data
        self.source = source


class WorkerState(str, enum.Enum):
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


class ServiceWorker:
    """The background worker: one handler per event kind."""

    def __init__(
        self,
        notification_center: NotificationCenter,
        clients: Clients,
        sync_manager: SyncManager,
        cache_manager: CacheLifecycleManager,
        reconciler: SyncReconciler,
        synthesizer: AudioCueSynthesizer,
    ):
        self.notification_center = notification_center
        self.clients = clients
        self.sync_manager = sync_manager
        self.cache_manager = cache_manager
        self.reconciler = reconciler
        self.synthesizer = synthesizer
        self.renderer = reconciler.renderer
        self.router = ActionRouter(clients)
        self.state = WorkerState.PARSED
        self.skip_waiting_requested = False
        self.waiting_cache_manager: Optional[CacheLifecycleManager] = None

    # install / activate

    def on_install(self, event: InstallEvent) -> Awaitable[None]:
        logger.info("Worker installing...")
        self.state = WorkerState.INSTALLING
        event.wait_until(self._install())
        return event.lifetime()

    async def _install(self):
        try:
            await self.cache_manager.install()
        except Exception:
            self.state = WorkerState.REDUNDANT
            raise
        self.state = WorkerState.INSTALLED

    def on_activate(self, event: ActivateEvent) -> Awaitable[None]:
        logger.info("Worker activating...")
        self.state = WorkerState.ACTIVATING
        event.wait_until(self._activate())
        return event.lifetime()

    async def _activate(self):
        await self.cache_manager.activate()
        self.state = WorkerState.ACTIVATED

    async def skip_waiting(self):
        """Activate a waiting cache generation now, or the next one as soon as it installs."""
        self.skip_waiting_requested = True
        logger.info("Worker will skip waiting")
        if self.waiting_cache_manager is not None:
            await self._activate_waiting_cache()

    async def update_cache(self, asset_cache_name: str) -> bool:
        """Install a newer asset cache generation next to the active one.

        The new generation waits until skip-waiting is requested. It then
        becomes active, evicts the old generation, and the old manager is
        superseded.

        Returns:
            bool: False if the new generation could not be installed
        """
        candidate = self.cache_manager.next_generation(asset_cache_name)
        try:
            await candidate.install()
        except CacheInstallError as e:
            logger.error(f"Cache update to '{asset_cache_name}' failed: {e}")
            return False

        self.waiting_cache_manager = candidate
        logger.info(f"Cache generation '{asset_cache_name}' installed and waiting")
        if self.skip_waiting_requested:
            await self._activate_waiting_cache()
        return True

    async def _activate_waiting_cache(self):
        incoming, previous = self.waiting_cache_manager, self.cache_manager
        self.waiting_cache_manager = None
        self.skip_waiting_requested = False

        self.cache_manager = incoming
        await incoming.activate()
        previous.supersede()
        logger.info(f"Cache generation '{incoming.asset_cache_name}' replaced '{previous.asset_cache_name}'")

    # push / click / sync / message

    def on_push(self, event: PushEvent) -> Awaitable[None]:
        event.wait_until(self.renderer.handle(event.data))
        return event.lifetime()

    def on_notification_click(self, event: NotificationClickEvent) -> Awaitable[None]:
        logger.info(f"Notification clicked: tag={event.notification.tag} action={event.action or 'default'}")
        event.wait_until(self.router.route(event.notification, event.action))
        return event.lifetime()

    def on_sync(self, event: SyncEvent) -> Awaitable[None]:
        logger.info(f"Background sync: {event.tag}")
        if self.reconciler.handles(event.tag):
            event.wait_until(self.reconciler.reconcile())
        else:
            logger.info(f"Ignoring sync for unknown tag '{event.tag}'")
        return event.lifetime()

    def on_message(self, event: MessageEvent) -> Awaitable[None]:
        try:
            message = worker_message_adapter.validate_python(event.data)
        except ValidationError:
            logger.warning(f"Worker received unknown message: {event.data!r}")
            return event.lifetime()

        if isinstance(message, PlayNotificationSoundMessage):
            event.wait_until(self.synthesizer.play_async(message.notification_type))
        elif isinstance(message, SkipWaitingMessage):
            event.wait_until(self.skip_waiting())
        else:
            logger.info(f"Worker ignoring message of type {message.type}")
        return event.lifetime()


def build_worker(
    session_factory: Callable[[], Session],
    opener: Optional[Opener] = None,
    notification_center: Optional[NotificationCenter] = None,
    cache_transport: Optional[httpx.AsyncBaseTransport] = None,
    player=None,
) -> ServiceWorker:
    """Wire a worker to fresh host services."""
    notification_center = notification_center or NotificationCenter()
    renderer = PushRenderer(notification_center)
    return ServiceWorker(
        notification_center=notification_center,
        clients=Clients(opener=opener),
        sync_manager=SyncManager(),
        cache_manager=CacheLifecycleManager(CacheStorage(), transport=cache_transport),
        reconciler=SyncReconciler(session_factory, renderer),
        synthesizer=AudioCueSynthesizer(player=player),
    )
