"""
Main FastAPI application for Streamrelay.
"""
import asyncio
import os
from contextlib import asynccontextmanager
from typing import Awaitable, Callable
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text

from app.config import settings
from app.middleware.correlation import CorrelationIdMiddleware, bind_correlation_id
from app.constants import (
    TASK_MONITOR_CHECK_INTERVAL_SECONDS,
    RETENTION_CLEANUP_INTERVAL_SECONDS,
    BOT_CLIENT_INIT_RETRY_SECONDS,
    SHUTDOWN_GRACE_SECONDS,
)
from app.database import init_db, close_db, AsyncSessionLocal
from app.utils.logger import setup_logger
from app.utils.errors import AppError, app_error_handler
from app.clients import ClientRegistry, TwitchClient
from app.services import (
    NotificationQueue,
    NotificationDispatcher,
    NotificationWorker,
    TwitchTokenService,
    LiveStatusService,
    ChannelStateTracker,
    EventSubHandler,
    SubscriptionReconciler,
    CalendarSyncService,
    RetentionService,
)
from app.api import webhooks, notifications


def validate_secrets():
    """
    Validate that required secrets are properly configured.
    Logs warnings for missing/weak secrets but allows auto-generation.
    """
    secret = settings.twitch.webhook_secret
    if not secret:
        logger.error("TWITCH__WEBHOOK_SECRET is not set - every EventSub delivery will be rejected")
    elif not 10 <= len(secret) <= 100:
        logger.warning(f"TWITCH__WEBHOOK_SECRET must be 10-100 chars (got {len(secret)}) - Twitch will refuse it")

    if not settings.twitch.client_id or not settings.twitch.client_secret:
        logger.warning("Twitch client credentials are not configured - EventSub and calendar sync will fail")
    if not settings.server.webhook_url:
        logger.warning("SERVER__WEBHOOK_URL is not set - Twitch cannot reach the webhook endpoint")

    # Check encryption key
    enc_env = os.getenv("CONFIG_ENCRYPTION_KEY")
    enc_file = settings.data_dir / ".encryption_key"

    if not enc_env and not enc_file.exists():
        logger.info("No encryption key configured - auto-generating secure key")

    # Verify data directory is writable (needed for auto-generated keys)
    data_dir = settings.data_dir
    if not data_dir.exists():
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created {data_dir} directory for persistent storage")
        except PermissionError:
            logger.error(f"Cannot create {data_dir} directory - auto-generated secrets will be lost on restart!")
    elif not os.access(data_dir, os.W_OK):
        logger.error(f"{data_dir} directory is not writable - auto-generated secrets will be lost on restart!")


class BackgroundTaskMonitor:
    """
    Monitors and restarts background tasks if they die unexpectedly.
    """

    def __init__(self, app: FastAPI):
        self.app = app
        self._tasks: dict[str, asyncio.Task] = {}
        self._task_factories: dict[str, Callable[[], Awaitable[None]]] = {}
        self._monitor_task: asyncio.Task | None = None
        self._running = False

    def register_task(self, name: str, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """
        Register and start a background task.

        Args:
            name: Unique name for the task
            factory: Coroutine factory that creates the task

        Returns:
            The created asyncio.Task
        """
        self._task_factories[name] = factory
        task = asyncio.create_task(factory(), name=name)
        self._tasks[name] = task
        logger.info(f"Background task '{name}' started")
        return task

    def get_task(self, name: str) -> asyncio.Task | None:
        return self._tasks.get(name)

    async def start_monitoring(self, check_interval: float = TASK_MONITOR_CHECK_INTERVAL_SECONDS):
        """Start the task monitor."""
        self._running = True
        self._monitor_task = asyncio.create_task(
            self._monitor_loop(check_interval),
            name="task_monitor"
        )

    async def stop_monitoring(self):
        """Stop restarting tasks; the tasks themselves keep running."""
        self._running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    async def stop(self):
        """Stop all tasks and the monitor."""
        await self.stop_monitoring()

        # Cancel all registered tasks
        for name, task in self._tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.debug(f"Background task '{name}' stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def _monitor_loop(self, check_interval: float):
        """Monitor tasks and restart if needed."""
        while self._running:
            try:
                await asyncio.sleep(check_interval)

                for name, task in list(self._tasks.items()):
                    if task.done():
                        # Check if task completed with an exception
                        try:
                            exc = task.exception()
                            if exc:
                                logger.error(f"Background task '{name}' crashed: {exc}")
                        except asyncio.CancelledError:
                            logger.debug(f"Background task '{name}' was cancelled")
                            continue  # Don't restart cancelled tasks

                        # Restart the task
                        if name in self._task_factories:
                            logger.warning(f"Restarting background task '{name}'")
                            self._tasks[name] = asyncio.create_task(
                                self._task_factories[name](),
                                name=name
                            )
                        else:
                            logger.error(f"Cannot restart task '{name}' - no factory registered")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in task monitor: {e}")


async def eventsub_sync_loop(app: FastAPI):
    """Background task that reconciles EventSub subscriptions (first pass right after startup)."""
    while True:
        try:
            with bind_correlation_id():
                await app.state.subscription_reconciler.sync_all()
        except asyncio.CancelledError:
            logger.debug("EventSub sync task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in EventSub sync task: {e}")
        await asyncio.sleep(settings.sync.eventsub_interval_seconds)


async def calendar_sync_loop(app: FastAPI):
    """Background task that mirrors Twitch schedules into Discord."""
    while True:
        try:
            with bind_correlation_id():
                await app.state.calendar_sync.sync_all()
        except asyncio.CancelledError:
            logger.debug("Calendar sync task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in calendar sync task: {e}")
        await asyncio.sleep(settings.sync.calendar_interval_seconds)


async def retention_cleanup_loop(app: FastAPI):
    """Background task that runs retention cleanup hourly."""
    while True:
        try:
            # Sleep for 1 hour between cleanups
            await asyncio.sleep(RETENTION_CLEANUP_INTERVAL_SECONDS)

            retention_service = RetentionService(settings.history)
            async with AsyncSessionLocal() as db:
                await retention_service.cleanup_old_data(db)
        except asyncio.CancelledError:
            logger.debug("Retention cleanup task cancelled")
            raise  # Re-raise to properly signal cancellation
        except Exception as e:
            logger.error(f"Error in retention cleanup task: {e}")
            # Continue loop to retry on next interval


async def bot_client_init_loop(app: FastAPI):
    """Background task that installs the Telegram/Discord clients once they can be reached."""
    while True:
        try:
            complete = await app.state.clients.initialize_missing(
                settings.telegram.bot_token, settings.discord.bot_token
            )
            if complete:
                logger.info("All configured bot clients initialized")
                return
        except asyncio.CancelledError:
            logger.debug("Bot client init task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error initializing bot clients: {e}")
        await asyncio.sleep(BOT_CLIENT_INIT_RETRY_SECONDS)


async def notification_worker_loop(app: FastAPI):
    """Background task running the retry queue worker."""
    with bind_correlation_id("retry-worker"):
        await app.state.notification_worker.run()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager."""
    # Startup
    setup_logger()
    logger.info("Starting Streamrelay...")

    # Validate secrets early
    validate_secrets()

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    twitch = TwitchClient(
        client_id=settings.twitch.client_id,
        client_secret=settings.twitch.client_secret,
        callback_url=settings.server.eventsub_callback,
        webhook_secret=settings.twitch.webhook_secret,
    )
    clients = ClientRegistry()

    retry_config = settings.notification_retry
    queue = NotificationQueue(AsyncSessionLocal)
    dispatcher = NotificationDispatcher(AsyncSessionLocal, clients, queue, retry_config)
    tokens = TwitchTokenService(twitch, AsyncSessionLocal)
    live_status = LiveStatusService(twitch, tokens)

    # Store services in app state
    app.state.twitch = twitch
    app.state.clients = clients
    app.state.notification_queue = queue
    app.state.dispatcher = dispatcher
    app.state.notification_worker = NotificationWorker(queue, dispatcher, AsyncSessionLocal, retry_config)
    app.state.eventsub_handler = EventSubHandler(
        AsyncSessionLocal, dispatcher, twitch, tokens, live_status, ChannelStateTracker()
    )
    app.state.subscription_reconciler = SubscriptionReconciler(twitch, AsyncSessionLocal)
    app.state.calendar_sync = CalendarSyncService(twitch, tokens, clients, AsyncSessionLocal)

    # Initialize background task monitor
    task_monitor = BackgroundTaskMonitor(app)
    app.state.task_monitor = task_monitor

    # Register and start background tasks
    task_monitor.register_task("bot_client_init", lambda: bot_client_init_loop(app))
    if retry_config.enabled:
        task_monitor.register_task("notification_worker", lambda: notification_worker_loop(app))
    else:
        logger.info("Notification retries disabled - failed deliveries are only logged")
    task_monitor.register_task("eventsub_sync", lambda: eventsub_sync_loop(app))
    task_monitor.register_task("calendar_sync", lambda: calendar_sync_loop(app))
    task_monitor.register_task("retention_cleanup", lambda: retention_cleanup_loop(app))

    # Start task monitor (checks every 60s)
    await task_monitor.start_monitoring(check_interval=TASK_MONITOR_CHECK_INTERVAL_SECONDS)
    logger.info("Background task monitor started")

    logger.info("Streamrelay started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Streamrelay...")

    # No more restarts; let the worker finish its in-flight batch
    await task_monitor.stop_monitoring()
    app.state.notification_worker.stop()
    worker_task = task_monitor.get_task("notification_worker")
    if worker_task and not worker_task.done():
        try:
            await asyncio.wait_for(asyncio.shield(worker_task), timeout=SHUTDOWN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                f"Retry worker still busy after {SHUTDOWN_GRACE_SECONDS}s - "
                "unfinished tasks will be reclaimed on next start"
            )
        except Exception as e:
            logger.error(f"Retry worker ended with an error: {e}")

    await task_monitor.stop()
    logger.debug("Background tasks stopped")

    await clients.close()
    await twitch.close()

    await close_db()
    logger.info("Streamrelay shut down complete")


# Create FastAPI app
app = FastAPI(
    title="Streamrelay",
    description="Twitch stream notifications for Telegram and Discord",
    version=settings.app_version,
    lifespan=lifespan
)

app.add_exception_handler(AppError, app_error_handler)

# Correlation ID middleware (first, to capture all requests)
app.add_middleware(CorrelationIdMiddleware)

# Include routers
app.include_router(webhooks.router)
app.include_router(notifications.router)


@app.get("/api/status/health")
async def health_check():
    """Combined health check endpoint (no auth required)."""
    return {
        "status": "healthy",
        "version": settings.app_version
    }


@app.get("/api/status/live")
async def liveness_check():
    """
    Liveness probe - checks if the process is alive.
    Should return 200 if the app is running, regardless of dependencies.
    """
    return {"status": "alive"}


@app.get("/api/status/ready")
async def readiness_check(request: Request):
    """
    Readiness probe - checks database connectivity and the background tasks.
    """
    checks = {
        "database": False,
        "eventsub_handler": False,
        "task_monitor": False,
    }

    # Check database connectivity
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
            checks["database"] = True
    except Exception as e:
        logger.warning(f"Readiness check - database failed: {e}")

    if getattr(request.app.state, "eventsub_handler", None) is not None:
        checks["eventsub_handler"] = True

    task_monitor = getattr(request.app.state, "task_monitor", None)
    if task_monitor is not None and task_monitor.running:
        checks["task_monitor"] = True

    if all(checks.values()):
        return {"status": "ready", "checks": checks}
    return JSONResponse(status_code=503, content={"status": "not_ready", "checks": checks})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
