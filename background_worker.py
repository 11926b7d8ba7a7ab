"""Background Worker host for the notification service.

The API server process owns the single service worker of a store: windows
connect to it, pushes render through it and background sync replays into
it. This module brings that worker up and keeps its sync going:

- installs and activates it (populating the offline cache); a failed
  install is logged and the host keeps running without an offline cache
- registers the sync tag, so anything left undelivered by a previous run
  is replayed on the first successful connectivity check
- checks the content service every CONNECTIVITY_CHECK_INTERVAL seconds and,
  when it is reachable, fires every pending background-sync tag

A sync registration is completed only when its handler settled without
error; otherwise it stays pending and is fired again on the next check.
"""

import asyncio
from typing import Optional

from config import settings
from content_client import ContentClient
from logger_config import setup_logger
from worker import ActivateEvent, InstallEvent, ServiceWorker, SyncEvent

# Configure logging
logger = setup_logger(__name__, 'worker.log')


async def install_worker(worker: ServiceWorker) -> bool:
    """Install, then activate, the worker.

    Returns:
        bool: False if the install failed; the worker is then left redundant
        and never activated, but still handles push, click, sync and messages
    """
    try:
        await worker.on_install(InstallEvent())
    except Exception as e:
        logger.error(f"Worker install failed, continuing without offline cache: {e}")
        return False
    await worker.on_activate(ActivateEvent())
    logger.info(f"Worker active, cache generations: {sorted(worker.cache_manager.allowed_generations)}")
    return True


async def fire_pending_syncs(worker: ServiceWorker) -> int:
    """Dispatch a SyncEvent for each pending tag.

    Returns:
        int: Number of registrations completed
    """
    completed = 0
    for tag in worker.sync_manager.pending_tags():
        try:
            await worker.on_sync(SyncEvent(tag))
        except Exception as e:
            logger.error(f"Sync '{tag}' failed, keeping it registered: {e}", exc_info=True)
            continue
        worker.sync_manager.complete(tag)
        completed += 1
    return completed


async def connectivity_loop(worker: ServiceWorker, content_client: ContentClient, interval: Optional[float] = None):
    """Fire pending syncs whenever the content service is reachable. Runs until cancelled."""
    interval = interval or settings.CONNECTIVITY_CHECK_INTERVAL
    iteration = 0
    while True:
        try:
            iteration += 1
            if worker.sync_manager.pending_tags():
                if await content_client.is_reachable():
                    await fire_pending_syncs(worker)
                else:
                    logger.debug(f"Offline, {len(worker.sync_manager.pending_tags())} sync(s) pending")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in connectivity loop iteration {iteration}: {str(e)}", exc_info=True)

        await asyncio.sleep(interval)


async def start_worker_host(
    worker: ServiceWorker,
    content_client: ContentClient,
    install: bool = True,
    interval: Optional[float] = None,
) -> asyncio.Task:
    """Bring the worker up and start its connectivity loop.

    Returns:
        asyncio.Task: The running loop; cancel it on shutdown
    """
    if install:
        await install_worker(worker)
    worker.sync_manager.register(settings.SYNC_TAG)
    logger.info("Background worker host started")
    return asyncio.get_running_loop().create_task(connectivity_loop(worker, content_client, interval))
