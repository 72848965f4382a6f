"""
Unified backend entry point for the appointment reminder service.

Architecture:
- One Python process, one asyncio event loop
- Two peer services running concurrently:
  1. FastAPI (operator HTTP surface for the reminder scheduler)
  2. APScheduler (daily appointment reminder run, on the same loop)

We use FastAPI's lifespan to manage startup/shutdown. The lifespan is the
composition root: it builds the one SchedulerSupervisor for this process and
stores it on app.state, where the routes find it.

Run with: python main.py [--no-scheduler] [--port PORT]
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Set up import paths before any local imports
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")  # Local overrides (gitignored)
load_dotenv()  # Fallback to .env

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reminders import build_reminder_service, close_engine, is_configured, ping
from reminders.config import (
    check_required_env_vars,
    get_api_port,
    get_frontend_url,
    get_reminder_settings,
    is_scheduler_disabled,
)
from web_api.routes.reminders import router as reminders_router

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

if os.environ.get("SENTRY_DSN"):
    sentry_sdk.init(
        dsn=os.environ["SENTRY_DSN"],
        environment=os.environ.get("APP_ENV", "development"),
        traces_sample_rate=0.0,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Builds the reminder pipeline, validates the cron trigger (an invalid
    trigger aborts startup) and arms it unless disabled.
    """
    ok, warnings = check_required_env_vars()
    for warning in warnings:
        logger.warning(warning)
    if not ok:
        raise RuntimeError("Missing required environment variables")
    if not is_configured():
        logger.warning("DATABASE_URL not set; reminder runs will fail until it is configured")

    service = build_reminder_service(get_reminder_settings())
    supervisor = service.supervisor
    supervisor.initialize()

    if is_scheduler_disabled():
        logger.info("Reminder scheduler disabled (--no-scheduler or DISABLE_REMINDER_SCHEDULER=true)")
    else:
        supervisor.start()

    app.state.reminder_supervisor = supervisor

    yield  # FastAPI runs here, scheduler fires alongside it

    logger.info("Shutting down reminder scheduler...")
    supervisor.shutdown()
    await close_engine()  # Close database connections


# Create FastAPI app with lifespan
app = FastAPI(
    title="Government Appointment Reminder Service",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        get_frontend_url(),
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reminders_router)


@app.get("/health")
async def health():
    """Process liveness; scheduler health lives at /api/reminders/health."""
    supervisor = getattr(app.state, "reminder_supervisor", None)
    return {
        "status": "ok",
        "database": "ok" if await ping() else "unavailable",
        "scheduler": supervisor.health_check()["status"] if supervisor else None,
    }


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Government Appointment Reminder Service")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Keep the daily reminder trigger disarmed (manual triggers still work)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=get_api_port(),
        help="Port to run the server on (default: 8000)",
    )
    args = parser.parse_args()

    # Set env var so it persists across uvicorn reloads
    if args.no_scheduler:
        os.environ["DISABLE_REMINDER_SCHEDULER"] = "true"

    # Pass app object directly (not string) to avoid module reimport issues
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
    )
