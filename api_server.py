"""FastAPI REST API server for Bloom Journey notifications.

This module is the foreground host of the notification subsystem:

- REST endpoints over reminders, baby notifications, appointments and
  user settings
- per-user notification schedulers with explicit start/stop
- the one background worker of the store, driven through HTTP for push,
  notification clicks, background sync, window messages and cache updates
- application windows connected over WebSocket at /ws/clients

IMPORTANT: Pydantic automatically converts ISO datetime strings to datetime objects.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Set

from fastapi import FastAPI, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

import crud
import schemas
import database
from background_worker import start_worker_host
from channels import AppChannels, SchedulerFailure, UnreadSnapshot
from config import settings
from content_client import ContentClient
from database import BabyNotification, Reminder
from host import WindowClient, open_in_browser
from logger_config import setup_logger
from push_handler import PushMessage
from scheduler import NotificationScheduler
from worker import (
    ActivateEvent, InstallEvent, MessageEvent, NotificationClickEvent, PushEvent, ServiceWorker,
    SyncEvent, build_worker,
)

logger = setup_logger(__name__, 'api.log')


class WebSocketWindowClient(WindowClient):
    """An application window connected over WebSocket."""

    def __init__(self, websocket: WebSocket, url: str, user_id: Optional[str] = None, on_message=None):
        super().__init__(url, on_message=on_message)
        self.websocket = websocket
        self.user_id = user_id

    async def _send(self, message: dict):
        await self.websocket.send_json(message)

    async def send_event(self, message: dict):
        """Push an application event (not a worker message) to the window."""
        try:
            await self._send(message)
        except Exception as e:
            logger.warning(f"Could not deliver {message.get('type')} to window {self.id}: {e}")


class NotificationRuntime:
    """Everything one server process shares: worker, channels, schedulers."""

    def __init__(self, worker: ServiceWorker, content_client: ContentClient, channels: AppChannels):
        self.worker = worker
        self.content_client = content_client
        self.channels = channels
        self.schedulers: Dict[str, NotificationScheduler] = {}
        self._tasks: Set[asyncio.Task] = set()

        channels.baby_notification.subscribe(self._forward_baby_notification)
        channels.mobile_notification_popup.subscribe(self._forward_popup)
        channels.unread_notifications.subscribe(self._forward_unread)
        channels.failures.subscribe(self._forward_failure)

    def scheduler_for(self, user_id: str) -> NotificationScheduler:
        scheduler = self.schedulers.get(user_id)
        if scheduler is None:
            scheduler = NotificationScheduler(
                user_id,
                database.SessionLocal,
                self.content_client,
                channels=self.channels,
                post_to_worker=self.post_to_worker,
                sync_manager=self.worker.sync_manager,
            )
            self.schedulers[user_id] = scheduler
        return scheduler

    async def post_to_worker(self, message: dict):
        await self.worker.on_message(MessageEvent(message))

    def stop_all(self):
        for scheduler in self.schedulers.values():
            scheduler.stop()

    # channel fan-out to connected windows

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _broadcast(self, user_id: Optional[str], message: dict):
        self._spawn(self._send_to_windows(user_id, message))

    async def _send_to_windows(self, user_id: Optional[str], message: dict):
        for window in await self.worker.clients.match_all(include_uncontrolled=True):
            if not isinstance(window, WebSocketWindowClient):
                continue
            if user_id is not None and window.user_id != user_id:
                continue
            await window.send_event(message)

    def _forward_baby_notification(self, notification: BabyNotification):
        payload = schemas.BabyNotificationResponse.model_validate(notification).model_dump(mode="json")
        self._broadcast(notification.user_id, {"type": "BABY_NOTIFICATION", "notification": payload})

    def _forward_popup(self, reminder: Reminder):
        payload = schemas.ReminderResponse.model_validate(reminder).model_dump(mode="json")
        self._broadcast(reminder.user_id, {"type": "MOBILE_NOTIFICATION_POPUP", "reminder": payload})

    def _forward_unread(self, snapshot: UnreadSnapshot):
        payload = [
            schemas.BabyNotificationResponse.model_validate(n).model_dump(mode="json")
            for n in snapshot.notifications
        ]
        self._broadcast(snapshot.user_id, {"type": "UNREAD_NOTIFICATIONS", "notifications": payload})

    def _forward_failure(self, failure: SchedulerFailure):
        self._broadcast(None, {"type": "SCHEDULER_FAILURE", **failure.model_dump(mode="json")})


def get_runtime(request: Request) -> NotificationRuntime:
    return request.app.state.runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = NotificationRuntime(
        worker=build_worker(database.SessionLocal, opener=open_in_browser),
        content_client=ContentClient(),
        channels=AppChannels(),
    )
    app.state.runtime = runtime

    sync_task = await start_worker_host(
        runtime.worker, runtime.content_client, install=settings.WORKER_INSTALL_ON_STARTUP
    )
    logger.info("Notification runtime started")
    try:
        yield
    finally:
        runtime.stop_all()
        sync_task.cancel()
        try:
            await sync_task
        except asyncio.CancelledError:
            pass
        logger.info("Notification runtime stopped")


# Create FastAPI application
app = FastAPI(
    title="Bloom Journey Notification API",
    description="Pregnancy companion notifications: reminders, baby messages and a background worker",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_BASE_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    """Root endpoint - service information"""
    return {
        "service": "Bloom Journey Notification API",
        "version": "1.0.0",
        "status": "healthy",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "reminders": "/reminders",
            "notifications": "/notifications/unread",
            "worker": "/worker/notifications"
        }
    }


@app.get("/health")
def health_check(runtime: NotificationRuntime = Depends(get_runtime)):
    """Health check endpoint for monitoring"""
    return {
        "status": "healthy",
        "service": "bloom_notifications",
        "database": settings.DATABASE_URL.split("://")[0],
        "worker_state": runtime.worker.state.value,
        "pending_syncs": runtime.worker.sync_manager.pending_tags()
    }


# Reminders

@app.post("/reminders", response_model=schemas.ReminderResponse, status_code=201)
def create_reminder(
    reminder: schemas.ReminderCreate,
    db: Session = Depends(database.get_db)
):
    """Create a new reminder.

    Request body example:
    ```json
    {
        "user_id": "user-123",
        "type": "doctor_appointment",
        "title": "Prenatal checkup",
        "body": "Bring your ultrasound results",
        "scheduled_time": "2025-10-26T15:00:00Z"
    }
    ```
    """
    try:
        return crud.create_reminder(db, reminder.model_dump())
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Error creating reminder: {str(e)}")


@app.get("/reminders", response_model=List[schemas.ReminderResponse])
def list_reminders(
    user_id: str = Query(..., description="Owning user"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum number of results"),
    db: Session = Depends(database.get_db)
):
    """List a user's reminders, newest scheduled time first."""
    return crud.get_reminders_by_user(db, user_id, limit)


@app.put("/reminders/{reminder_id}/complete", response_model=schemas.ReminderResponse)
def complete_reminder(
    reminder_id: str,
    user_id: str = Query(..., description="Owning user"),
    db: Session = Depends(database.get_db)
):
    """Mark a reminder completed. Completing it again changes nothing."""
    reminder = crud.mark_reminder_completed(db, reminder_id, user_id)
    if not reminder:
        raise HTTPException(status_code=404, detail="Reminder not found")
    return reminder


# Appointments

@app.post("/appointments", response_model=schemas.AppointmentResponse, status_code=201)
def create_appointment(
    appointment: schemas.AppointmentCreate,
    db: Session = Depends(database.get_db)
):
    """Add a doctor appointment; the user's scheduler reminds of it ahead of time."""
    try:
        return crud.create_appointment(db, appointment.model_dump())
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Error creating appointment: {str(e)}")


@app.get("/appointments", response_model=List[schemas.AppointmentResponse])
def list_appointments(
    user_id: str = Query(..., description="Owning user"),
    db: Session = Depends(database.get_db)
):
    return crud.get_appointments_by_user(db, user_id)

# Baby notifications

@app.get("/notifications/unread", response_model=List[schemas.BabyNotificationResponse])
def list_unread_notifications(
    user_id: str = Query(..., description="Owning user"),
    db: Session = Depends(database.get_db)
):
    """Unread baby notifications, newest first."""
    return crud.get_unread_notifications(db, user_id)


@app.put("/notifications/{notification_id}/read", response_model=schemas.BabyNotificationResponse)
def mark_notification_read(
    notification_id: str,
    user_id: str = Query(..., description="Owning user"),
    db: Session = Depends(database.get_db)
):
    notification = crud.mark_notification_read(db, notification_id, user_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


# User settings

@app.get("/users/{user_id}/settings", response_model=schemas.UserSettingsResponse)
def get_user_settings(user_id: str, db: Session = Depends(database.get_db)):
    profile = crud.get_user_profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User settings not found")
    return profile


@app.put("/users/{user_id}/settings", response_model=schemas.UserSettingsResponse)
def update_user_settings(
    user_id: str,
    updates: schemas.UserSettingsUpdate,
    db: Session = Depends(database.get_db)
):
    """Create or partially update a user's preferences.

    Only provided fields will be updated.
    """
    return crud.upsert_user_profile(db, user_id, updates.model_dump(exclude_unset=True))


# Scheduler lifecycle

def _scheduler_status(scheduler: NotificationScheduler, changed: bool) -> dict:
    return {"user_id": scheduler.user_id, "state": scheduler.state.value, "changed": changed}


@app.post("/scheduler/{user_id}/start")
async def start_scheduler(user_id: str, runtime: NotificationRuntime = Depends(get_runtime)):
    """Start the user's scheduler. Starting it twice keeps a single timer."""
    scheduler = runtime.scheduler_for(user_id)
    return _scheduler_status(scheduler, scheduler.start())


@app.post("/scheduler/{user_id}/stop")
async def stop_scheduler(user_id: str, runtime: NotificationRuntime = Depends(get_runtime)):
    scheduler = runtime.scheduler_for(user_id)
    return _scheduler_status(scheduler, scheduler.stop())


@app.post("/scheduler/{user_id}/tick")
async def tick_scheduler(user_id: str, runtime: NotificationRuntime = Depends(get_runtime)):
    """Run one scheduler check immediately."""
    scheduler = runtime.scheduler_for(user_id)
    ran = await scheduler.tick()
    return {"user_id": user_id, "ran": ran}


# Background worker

def _describe(notification) -> dict:
    return {
        "id": notification.id,
        "title": notification.title,
        "body": notification.options.body,
        "tag": notification.tag,
        "data": notification.data.model_dump(by_alias=True),
        "actions": [a.action for a in notification.options.actions],
    }


@app.post("/worker/install")
async def install_worker(runtime: NotificationRuntime = Depends(get_runtime)):
    try:
        await runtime.worker.on_install(InstallEvent())
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Worker install failed: {str(e)}")
    return {"state": runtime.worker.state.value}


@app.post("/worker/activate")
async def activate_worker(runtime: NotificationRuntime = Depends(get_runtime)):
    await runtime.worker.on_activate(ActivateEvent())
    return {"state": runtime.worker.state.value}


@app.post("/worker/update")
async def update_worker_cache(
    update: schemas.CacheUpdateRequest,
    runtime: NotificationRuntime = Depends(get_runtime)
):
    """Install a new offline cache generation.

    It replaces the active one at once if the worker was told to skip
    waiting, otherwise on the next SKIP_WAITING message.
    """
    worker = runtime.worker
    if update.asset_cache_name == worker.cache_manager.asset_cache_name:
        raise HTTPException(status_code=409, detail="Cache generation already active")
    if not await worker.update_cache(update.asset_cache_name):
        raise HTTPException(status_code=502, detail=f"Cache update to '{update.asset_cache_name}' failed")
    return {
        "active": worker.cache_manager.asset_cache_name,
        "waiting": worker.waiting_cache_manager.asset_cache_name if worker.waiting_cache_manager else None,
    }


@app.post("/push", status_code=202)
async def receive_push(request: Request, runtime: NotificationRuntime = Depends(get_runtime)):
    """Deliver a push message; the raw request body is the push payload."""
    body = await request.body()
    await runtime.worker.on_push(PushEvent(PushMessage(body or None)))
    visible = runtime.worker.notification_center.get_notifications()
    return {"status": "delivered", "visible": [_describe(n) for n in visible]}


@app.get("/worker/notifications")
async def list_visible_notifications(
    tag: Optional[str] = Query(None),
    runtime: NotificationRuntime = Depends(get_runtime)
):
    return [_describe(n) for n in runtime.worker.notification_center.get_notifications(tag)]


@app.post("/worker/notifications/{tag}/click")
async def click_notification(
    tag: str,
    click: schemas.NotificationClickRequest,
    runtime: NotificationRuntime = Depends(get_runtime)
):
    """Simulate the user tapping a visible notification or one of its buttons."""
    visible = runtime.worker.notification_center.get_notifications(tag)
    if not visible:
        raise HTTPException(status_code=404, detail="Notification not found")
    await runtime.worker.on_notification_click(NotificationClickEvent(visible[0], click.action or ""))
    return {"tag": tag, "action": click.action or "default", "closed": visible[0].closed}


@app.post("/worker/sync/{tag}")
async def fire_sync(tag: str, runtime: NotificationRuntime = Depends(get_runtime)):
    """Fire a background sync now; the registration completes only on success."""
    try:
        await runtime.worker.on_sync(SyncEvent(tag))
    except Exception as e:
        runtime.worker.sync_manager.register(tag)
        raise HTTPException(status_code=503, detail=f"Sync '{tag}' failed: {str(e)}")
    runtime.worker.sync_manager.complete(tag)
    return {"tag": tag, "status": "completed"}


@app.post("/worker/messages", status_code=202)
async def post_worker_message(message: dict, runtime: NotificationRuntime = Depends(get_runtime)):
    await runtime.worker.on_message(MessageEvent(message))
    return {"status": "accepted"}


@app.websocket("/ws/clients")
async def window_client(
    websocket: WebSocket,
    url: str = Query(settings.HOME_ROUTE),
    user_id: Optional[str] = Query(None)
):
    """An application window: receives worker messages, sends window messages."""
    runtime: NotificationRuntime = websocket.app.state.runtime

    on_message = runtime.scheduler_for(user_id).handle_worker_message if user_id else None
    window = runtime.worker.clients.attach(
        WebSocketWindowClient(websocket, url, user_id=user_id, on_message=on_message)
    )
    logger.info(f"Window {window.id} connected at {url}")
    try:
        await websocket.accept()
        while True:
            data = await websocket.receive_json()
            await runtime.worker.on_message(MessageEvent(data, source=window))
    except WebSocketDisconnect:
        logger.info(f"Window {window.id} disconnected")
    finally:
        runtime.worker.clients.detach(window)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
