"""API test fixtures: the real app wired to in-memory collaborators."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from payroll_lifecycle.api.app import create_app
from payroll_lifecycle.api.dependencies import get_orchestrator, get_session_factory


@pytest_asyncio.fixture
async def client(orchestrator, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
