"""
Reminder scheduler operator routes.

Endpoints:
- GET /api/reminders/status - Scheduler state and last run statistics
- GET /api/reminders/health - Health check (503 when unhealthy)
- GET /api/reminders/debug - Detailed scheduler information
- GET /api/reminders/statistics - Dry-run counts for a date (default: tomorrow)
- POST /api/reminders/trigger - Run the reminder batch now
- POST /api/reminders/restart - Stop and re-arm the daily trigger
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from reminders.notifications import (
    AppointmentFetchError,
    NotInitializedError,
    RunInProgressError,
    SchedulerSupervisor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reminders", tags=["reminders"])


# --- Pydantic models ---


class TriggerRequest(BaseModel):
    """Request body for a manual reminder run."""

    reason: str | None = None
    targetDate: date | None = None


# --- Dependencies ---


def get_supervisor(request: Request) -> SchedulerSupervisor:
    """The supervisor created by the application's lifespan."""
    supervisor = getattr(request.app.state, "reminder_supervisor", None)
    if supervisor is None:
        raise HTTPException(503, "Reminder scheduler is not configured")
    return supervisor


# --- Routes ---


@router.get("/status")
async def get_status(supervisor: SchedulerSupervisor = Depends(get_supervisor)):
    return supervisor.get_status().to_dict(supervisor.clock.tz_name)


@router.get("/health")
async def get_health(supervisor: SchedulerSupervisor = Depends(get_supervisor)):
    health = supervisor.health_check()
    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(health, status_code=status_code)


@router.get("/debug")
async def get_debug_info(supervisor: SchedulerSupervisor = Depends(get_supervisor)):
    return supervisor.get_debug_info()


@router.get("/statistics")
async def get_statistics(
    target_date: date | None = None,
    supervisor: SchedulerSupervisor = Depends(get_supervisor),
):
    try:
        stats = await supervisor.processor.get_statistics(target_date)
    except AppointmentFetchError as e:
        logger.error(f"Reminder statistics unavailable: {e}")
        raise HTTPException(502, "Could not load appointments")
    return stats.to_dict()


@router.post("/trigger")
async def trigger_reminders(
    body: TriggerRequest,
    supervisor: SchedulerSupervisor = Depends(get_supervisor),
):
    try:
        stats = await supervisor.trigger_manually(body.reason, body.targetDate)
    except NotInitializedError:
        raise HTTPException(503, "Reminder scheduler is not initialized")
    except RunInProgressError:
        raise HTTPException(409, "A reminder run is already in progress")
    except AppointmentFetchError:
        raise HTTPException(502, "Could not load appointments for the reminder run")
    return {"success": True, "stats": stats.to_dict()}


@router.post("/restart")
async def restart_scheduler(supervisor: SchedulerSupervisor = Depends(get_supervisor)):
    try:
        supervisor.restart()
    except NotInitializedError:
        raise HTTPException(503, "Reminder scheduler is not initialized")
    return supervisor.get_status().to_dict(supervisor.clock.tz_name)
