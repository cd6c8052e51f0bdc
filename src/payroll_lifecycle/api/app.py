"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_lifecycle import __version__
from payroll_lifecycle.api.routes import health_router, payroll_runs_router
from payroll_lifecycle.config import get_settings
from payroll_lifecycle.database import create_schema, dispose_db, init_db
from payroll_lifecycle.errors import (
    ConcurrentModificationError,
    IncompatibleActionError,
    InvalidJustificationError,
    InvalidTransitionError,
    PayrollWorkflowError,
    PreconditionNotMetError,
    RunNotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Looked up along the exception's MRO, so a subclass entry wins over its parent
ERROR_STATUS_CODES: dict[type[PayrollWorkflowError], int] = {
    InvalidJustificationError: 422,
    IncompatibleActionError: 422,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    PreconditionNotMetError: status.HTTP_409_CONFLICT,
    RunNotFoundError: status.HTTP_404_NOT_FOUND,
    UpstreamError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: PayrollWorkflowError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    engine, _ = init_db()
    await create_schema(engine)
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Payroll Lifecycle API",
        description="Payroll run review workflow with anomaly detection and resolution",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollWorkflowError)
    async def workflow_exception_handler(
        request: Request, exc: PayrollWorkflowError
    ) -> JSONResponse:
        """Render typed workflow errors with their context."""
        code = status_code_for(exc)
        if code >= 500:
            logger.warning("%s %s failed upstream: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
