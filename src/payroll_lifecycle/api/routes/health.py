"""Service health probes."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from payroll_lifecycle import __version__
from payroll_lifecycle.api.dependencies import AppSettings, DbSession
from payroll_lifecycle.models import PayrollRunRow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class CollaboratorEndpoints(BaseModel):
    calculation: str
    distribution: str


class HealthResponse(BaseModel):
    """Health of the service and its run store."""

    status: str
    version: str
    timestamp: datetime
    database: str
    payroll_runs: int | None = None
    collaborators: CollaboratorEndpoints


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, settings: AppSettings) -> HealthResponse:
    """Probe the payroll_run table; a failing store degrades but never 500s."""
    run_count: int | None = None
    try:
        run_count = await db.scalar(select(func.count()).select_from(PayrollRunRow))
    except SQLAlchemyError:
        logger.exception("Run store health probe failed")

    db_status = "healthy" if run_count is not None else "unhealthy"
    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        payroll_runs=run_count,
        collaborators=CollaboratorEndpoints(
            calculation=settings.calculation_service_url,
            distribution=settings.distribution_service_url,
        ),
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(settings: AppSettings) -> dict[str, str]:
    """Ready once settings load; collaborators are checked lazily per request."""
    return {"status": "ready", "database_driver": settings.database_url.split("://", 1)[0]}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
