from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from clipit.config import logger
from clipit.core.maintenance.cleanup import CLEANUP_JOB_NAME
from clipit.core.maintenance.scheduler import Scheduler
from clipit.dependencies import (
    UploadServices,
    get_scheduler,
    get_services,
    require_maintenance_admin,
)
from clipit.schemas import (
    CleanupRequest,
    CleanupResponse,
    CleanupStatsSchema,
    SchedulerActionRequest,
    SchedulerResponse,
)

router = APIRouter(prefix="/api/maintenance", tags=["Maintenance"])


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(
    payload: Optional[CleanupRequest] = None,
    user: Dict[str, Any] = Depends(require_maintenance_admin),
    services: UploadServices = Depends(get_services),
) -> CleanupResponse:
    """Run the expired-artifact sweep now, or report its schedule."""
    payload = payload or CleanupRequest()
    scheduler = services.scheduler
    failures = [
        {"session": f.session, "error": f.error, "at": f.at}
        for f in services.cleanup.recent_failures()
    ]

    if payload.action == "status":
        job = scheduler.get(CLEANUP_JOB_NAME)
        running = scheduler.is_running(CLEANUP_JOB_NAME)
        return CleanupResponse(
            scheduled=running,
            next_run=job.next_run_at,
            status="active" if running else "inactive",
            recent_chunk_cleanup_failures=failures,
        )

    logger.info("Manual cleanup requested by %s", user["uid"])
    stats = await scheduler.run_now(CLEANUP_JOB_NAME)
    return CleanupResponse(
        message="Cleanup completed successfully",
        stats=CleanupStatsSchema(**stats),
        recent_chunk_cleanup_failures=failures,
    )


@router.get("/scheduler", response_model=SchedulerResponse)
async def scheduler_status(
    user: Dict[str, Any] = Depends(require_maintenance_admin),
    scheduler: Scheduler = Depends(get_scheduler),
) -> SchedulerResponse:
    return SchedulerResponse(status=scheduler.status())


@router.post("/scheduler", response_model=SchedulerResponse)
async def control_scheduler(
    payload: SchedulerActionRequest,
    user: Dict[str, Any] = Depends(require_maintenance_admin),
    scheduler: Scheduler = Depends(get_scheduler),
) -> SchedulerResponse:
    """Start or stop the cleanup job."""
    if payload.action == "start":
        started = scheduler.start(CLEANUP_JOB_NAME)
        message = "Cleanup job started" if started else "Cleanup job is already running"
    else:
        stopped = await scheduler.stop(CLEANUP_JOB_NAME)
        message = "Cleanup job stopped" if stopped else "Cleanup job was not running"

    logger.info("Scheduler %s by %s: %s", payload.action, user["uid"], message)
    return SchedulerResponse(message=message, status=scheduler.status())
