"""
Catering SMS - Main Application Entry Point

Interprets guardians' SMS into attendance cancellations. Runs the inbox
dispatcher next to a small FastAPI app serving the audit and attendance
queries of the staff UI.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catering_sms.api.attendance import router as attendance_router
from catering_sms.api.messages import router as messages_router
from catering_sms.config.settings import get_settings
from catering_sms.infrastructure.database import async_session_factory, init_database
from catering_sms.infrastructure.dispatcher import MessageDispatcher
from catering_sms.infrastructure.notifications import NotificationListener, to_asyncpg_dsn
from catering_sms.infrastructure.scheduler import schedule_recheck, start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Starts the dispatcher with its wake-up sources and stops them on shutdown.
    """
    # Startup
    logger.info("Starting Catering SMS...")

    logger.info("Initializing database...")
    await init_database()
    logger.info("Database initialized")

    dispatcher = None
    listener = None
    task = None

    if settings.run_dispatcher:
        dispatcher = MessageDispatcher(async_session_factory, settings)
        app.state.dispatcher = dispatcher

        dsn = to_asyncpg_dsn(settings.database_url)
        if dsn:
            listener = NotificationListener(dsn, settings.notify_channel, dispatcher.wake)
            try:
                await listener.start()
            except Exception as e:
                logger.exception(f"Could not listen for notifications, relying on periodic re-checks: {e}")
                listener = None
        else:
            logger.info("Database has no LISTEN support, relying on periodic re-checks")

        schedule_recheck(dispatcher.recheck, settings.recheck_interval_seconds)
        await start_scheduler()

        task = asyncio.create_task(dispatcher.run_forever())
        logger.info("Dispatcher started")

    yield

    # Shutdown
    logger.info("Shutting down...")
    if dispatcher is not None:
        dispatcher.stop()
        await task
    if listener is not None:
        await listener.stop()
    await stop_scheduler()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Catering SMS",
    description="Turns guardians' SMS into attendance cancellations",
    version="1.0.0",
    lifespan=lifespan
)

# Register routers
app.include_router(messages_router, tags=["Messages"])
app.include_router(attendance_router, tags=["Attendance"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Catering SMS",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "processing": "/messages/{id}/processing",
            "effective_attendance": "/attendance/{target}/effective",
            "health": "/health"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "catering_sms.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
