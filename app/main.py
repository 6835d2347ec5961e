"""
FastAPI application entry point
"""
from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings, get_cors_origins
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import setup_logging
from app.db.mongodb import connect_to_mongodb, close_mongodb_connection, is_connected
from app.api.routers import auth, users, subscriptions, promo_codes, notifications, progress, logs
from app.services.payment_event_service import PaymentEventProcessor
from app.services.reminder_scheduler import ReminderScheduler
from app.services.subscription_service import configure_stripe
from app.utils.firebase_utils import initialize_firebase
from app.utils.push_utils import PushDispatcher
from app.utils.redis_utils import is_redis_available

setup_logging()
logger = logging.getLogger(__name__)


def _start_reminders(dispatcher: Optional[PushDispatcher]) -> Optional[ReminderScheduler]:
    if not settings.SCHEDULER_ENABLED:
        logger.info("Reminder scheduler disabled (SCHEDULER_ENABLED=false)")
        return None
    if dispatcher is None:
        logger.warning("Reminder scheduler not started: push notifications are not configured")
        return None
    scheduler = ReminderScheduler(dispatcher)
    scheduler.start()
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect providers, build the shared services and run the reminder scheduler"""
    connect_to_mongodb()
    configure_stripe()

    firebase_app = initialize_firebase()
    dispatcher = PushDispatcher(firebase_app) if firebase_app is not None else None
    app.state.dispatcher = dispatcher
    app.state.payment_processor = PaymentEventProcessor(dispatcher=dispatcher)
    app.state.reminder_scheduler = _start_reminders(dispatcher)

    yield

    if app.state.reminder_scheduler is not None:
        app.state.reminder_scheduler.stop()
    close_mongodb_connection()


app = FastAPI(
    title=settings.APP_NAME,
    description="Accounts, subscriptions, promo codes and progress reminders for the fitness app",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

for router_module in (auth, users, subscriptions, promo_codes, notifications, progress, logs):
    app.include_router(router_module.router)


@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.APP_VERSION, "status": "running"}


@app.get("/api/health")
def health_check(request: Request):
    """Liveness plus the state of each backing service"""
    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    return {
        "status": "healthy",
        "mongodb": "connected" if is_connected() else "disconnected",
        "redis": "connected" if is_redis_available() else "unavailable",
        "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
