"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.database import init_db
from payroll_lifecycle.services import (
    HttpCalculationClient,
    HttpDistributionClient,
    RunOrchestrator,
    SqlAuditSink,
    SqlIdentityProvider,
    SqlRunRepository,
)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the application's session factory."""
    _, factory = init_db()
    return factory


SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
AppSettings = Annotated[Settings, Depends(get_settings)]


async def get_db_session(factory: SessionFactory) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_orchestrator(factory: SessionFactory, settings: AppSettings) -> RunOrchestrator:
    """Wire the orchestrator to the database and HTTP collaborators."""
    timeout = settings.collaborator_timeout_seconds
    return RunOrchestrator(
        repository=SqlRunRepository(factory),
        calculation=HttpCalculationClient(settings.calculation_service_url, timeout=timeout),
        identity=SqlIdentityProvider(factory),
        distribution=HttpDistributionClient(settings.distribution_service_url, timeout=timeout),
        audit=SqlAuditSink(factory),
        calculation_timeout=timeout,
    )


async def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> str:
    """Extract the acting user's id from header. Its role is looked up, never sent."""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-ID header is required",
        )
    return x_actor_id.strip()


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Orchestrator = Annotated[RunOrchestrator, Depends(get_orchestrator)]
ActorId = Annotated[str, Depends(get_actor_id)]
