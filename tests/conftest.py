"""Pytest fixtures for payroll lifecycle tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from payroll_lifecycle.database import create_schema, make_session_factory
from payroll_lifecycle.errors import (
    ConcurrentModificationError,
    RunNotFoundError,
    UnauthorizedError,
    ValidationError,
)
from payroll_lifecycle.services import RunOrchestrator
from payroll_lifecycle.workflow.types import (
    AuditEntry,
    EmployeeRunRecord,
    Insurance,
    PayrollRun,
    Role,
    RunStatus,
    TaxLine,
)

SPECIALIST = "spec-001"
MANAGER = "mgr-001"
FINANCE = "fin-001"
ADMIN = "admin-001"


# =============================================================================
# Test data
# =============================================================================


class PayrollTestData:
    """Builds anomaly-free records and runs; tests override what they need."""

    def record(self, employee_id: str = "EMP-001", **overrides) -> EmployeeRunRecord:
        values = dict(
            employee_id=employee_id,
            employee_name=f"Employee {employee_id}",
            base_salary=Decimal("5000.00"),
            gross_salary=Decimal("5000.00"),
            tax_breakdown=[TaxLine("10%", Decimal("0.10"), Decimal("500.00"))],
            insurance=Insurance(Decimal("250.00"), Decimal("550.00")),
            penalties=Decimal("0"),
            overtime_pay=Decimal("0"),
            bonuses=Decimal("0"),
            total_deductions=Decimal("1000.00"),
            net_pay=Decimal("4000.00"),
            bank_account_number="EG120001000200030004",
            bank_status="valid",
            historical_salary=Decimal("5000.00"),
        )
        values.update(overrides)
        return EmployeeRunRecord(**values)

    def run(
        self,
        status: RunStatus = RunStatus.CALCULATED,
        employees: list[EmployeeRunRecord] | None = None,
        run_id: str = "PR-2025-JAN",
    ) -> PayrollRun:
        return PayrollRun(
            run_id=run_id,
            period=date(2025, 1, 1),
            entity="Cairo HQ",
            status=status,
            employees=employees if employees is not None else [self.record()],
            specialist_id=SPECIALIST,
        )


@pytest.fixture
def test_data() -> PayrollTestData:
    return PayrollTestData()


# =============================================================================
# In-memory collaborators
# =============================================================================


class InMemoryRunRepository:
    """Stores deep copies so callers can never mutate saved state."""

    def __init__(self):
        self.runs: dict[str, tuple[PayrollRun, int]] = {}
        self.saves = 0

    def put(self, run: PayrollRun, version: int = 1) -> None:
        self.runs[run.run_id] = (copy.deepcopy(run), version)

    def stored(self, run_id: str) -> PayrollRun:
        return self.runs[run_id][0]

    def version(self, run_id: str) -> int:
        return self.runs[run_id][1]

    async def load_run(self, run_id: str) -> tuple[PayrollRun, int]:
        if run_id not in self.runs:
            raise RunNotFoundError(run_id)
        run, version = self.runs[run_id]
        return copy.deepcopy(run), version

    async def save_run(self, run: PayrollRun, expected_version: int) -> int:
        if run.run_id not in self.runs:
            raise RunNotFoundError(run.run_id)
        _, current = self.runs[run.run_id]
        if current != expected_version:
            raise ConcurrentModificationError(run.run_id, expected_version)
        self.runs[run.run_id] = (copy.deepcopy(run), current + 1)
        self.saves += 1
        return current + 1

    async def create_run(self, run: PayrollRun) -> int:
        if run.run_id in self.runs:
            raise ValidationError(f"Payroll run {run.run_id} already exists", run_id=run.run_id)
        self.put(run)
        return 1

    async def run_exists(self, run_id: str) -> bool:
        return run_id in self.runs

    async def list_runs(self) -> list[PayrollRun]:
        return [copy.deepcopy(run) for run, _ in self.runs.values()]


class RacingRunRepository(InMemoryRunRepository):
    """Another writer saves the run right after every load."""

    async def load_run(self, run_id: str) -> tuple[PayrollRun, int]:
        run, version = await super().load_run(run_id)
        await super().save_run(copy.deepcopy(run), version)
        return run, version


class FakeCalculationService:
    def __init__(self, records: list[EmployeeRunRecord] | None = None):
        self.records = records or []
        self.error: Exception | None = None
        self.delay = 0.0
        self.calls: list[str] = []

    async def compute_payroll(self, run_id: str) -> list[EmployeeRunRecord]:
        self.calls.append(run_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.records)


class FakeIdentityProvider:
    def __init__(self, roles: dict[str, Role]):
        self.roles = dict(roles)

    async def actor_role(self, actor_id: str) -> Role:
        if actor_id not in self.roles:
            raise UnauthorizedError(f"Unknown actor {actor_id}")
        return self.roles[actor_id]


class FakeDistributionService:
    def __init__(self):
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def distribute_and_generate_payslips(self, run_id: str) -> int:
        self.calls.append(run_id)
        if self.error is not None:
            raise self.error
        return 3


class RecordingAuditSink:
    def __init__(self):
        self.entries: list[AuditEntry] = []
        self.fail = False

    async def record(self, entry: AuditEntry) -> None:
        if self.fail:
            raise RuntimeError("audit store unavailable")
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


@pytest.fixture
def repository() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def racing_repository() -> RacingRunRepository:
    return RacingRunRepository()


@pytest.fixture
def calculation(test_data: PayrollTestData) -> FakeCalculationService:
    return FakeCalculationService(
        [test_data.record("EMP-001"), test_data.record("EMP-002"), test_data.record("EMP-003")]
    )


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider(
        {
            SPECIALIST: Role.SPECIALIST,
            MANAGER: Role.MANAGER,
            FINANCE: Role.FINANCE,
            ADMIN: Role.ADMIN,
        }
    )


@pytest.fixture
def distribution() -> FakeDistributionService:
    return FakeDistributionService()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def orchestrator(
    repository: InMemoryRunRepository,
    calculation: FakeCalculationService,
    identity: FakeIdentityProvider,
    distribution: FakeDistributionService,
    audit_sink: RecordingAuditSink,
) -> RunOrchestrator:
    return RunOrchestrator(
        repository=repository,
        calculation=calculation,
        identity=identity,
        distribution=distribution,
        audit=audit_sink,
        calculation_timeout=1.0,
    )


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite so separate sessions share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}", echo=False)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)
