"""Admin endpoints for statistics and maintenance.

These endpoints are intended for operators and the scheduler.
In production, consider adding authentication (API key or admin token).
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from factiony.routes.deps import ApiError, get_coordinator
from factiony.schemas import (
    DocumentStatsOut,
    MaintenanceRequest,
    MaintenanceResponse,
    RelationalStatsOut,
    StatsResponse,
)
from factiony.services.coordinator import Coordinator

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


@router.get("/stats", response_model=StatsResponse)
async def get_stats(coordinator: Coordinator = Depends(get_coordinator)) -> StatsResponse:
    """Platform-wide counters from both stores."""
    stats = await coordinator.get_global_stats()
    return StatsResponse(
        relational=RelationalStatsOut.model_validate(stats.relational),
        document=DocumentStatsOut.model_validate(stats.document),
        timestamp=stats.timestamp,
    )


@router.post("/maintenance", response_model=MaintenanceResponse)
async def run_maintenance(
    request: MaintenanceRequest | None = None,
    coordinator: Coordinator = Depends(get_coordinator),
) -> MaintenanceResponse:
    """Evict expired cache entries and archive old activity logs."""
    report = await coordinator.run_maintenance(request.threshold_days if request else None)
    if not report.ok:
        raise ApiError(
            503,
            "MAINTENANCE_FAILED",
            f"Maintenance failed: {report.error}",
            {"clearedCache": report.cleared_cache},
        )
    logger.info(f"Admin maintenance run: cleared={report.cleared_cache}, archived={report.archived_logs}")
    return MaintenanceResponse(
        cleared_cache=report.cleared_cache,
        archived_logs=report.archived_logs,
        skipped=report.skipped,
    )


@router.get("/health-report", response_class=PlainTextResponse)
async def health_report(coordinator: Coordinator = Depends(get_coordinator)) -> str:
    return await coordinator.health_report()
