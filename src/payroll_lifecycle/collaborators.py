"""Protocols for the collaborators the payroll run workflow consumes.

Implementations live in ``payroll_lifecycle.services``; tests substitute
in-memory fakes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

from payroll_lifecycle.errors import PayrollWorkflowError, UpstreamError

if TYPE_CHECKING:
    from payroll_lifecycle.workflow.types import AuditEntry, EmployeeRunRecord, PayrollRun, Role

logger = logging.getLogger(__name__)


class CalculationService(Protocol):
    """Computes per-employee pay for a run. Must be idempotent."""

    async def compute_payroll(self, run_id: str) -> list[EmployeeRunRecord]:
        """Return freshly computed records for every employee of the run."""
        ...


class RunRepository(Protocol):
    """Loads and saves runs with optimistic concurrency."""

    async def load_run(self, run_id: str) -> tuple[PayrollRun, int]:
        """Return the run and its current version token."""
        ...

    async def save_run(self, run: PayrollRun, expected_version: int) -> int:
        """Save the run if its version still matches, returning the new version.

        Raises ConcurrentModificationError on a stale version.
        """
        ...

    async def create_run(self, run: PayrollRun) -> int:
        """Insert a new run, returning its initial version."""
        ...

    async def run_exists(self, run_id: str) -> bool:
        ...

    async def list_runs(self) -> list[PayrollRun]:
        ...


class IdentityProvider(Protocol):
    """Resolves an actor id to a role. Caller-supplied roles are never trusted."""

    async def actor_role(self, actor_id: str) -> Role:
        ...


class DistributionService(Protocol):
    """Pays out a locked run and generates payslips."""

    async def distribute_and_generate_payslips(self, run_id: str) -> int:
        """Return the number of payslips distributed."""
        ...


class AuditSink(Protocol):
    """Receives audit entries. Fire-and-forget from the workflow's view."""

    async def record(self, entry: AuditEntry) -> None:
        ...


async def compute_payroll_records(
    calculation: CalculationService,
    run_id: str,
    timeout: float | None = None,
) -> list[EmployeeRunRecord]:
    """Invoke the calculation collaborator, normalising failures.

    Timeouts and unexpected errors surface as retryable UpstreamError.
    """
    try:
        if timeout is None:
            return await calculation.compute_payroll(run_id)
        return await asyncio.wait_for(calculation.compute_payroll(run_id), timeout)
    except PayrollWorkflowError:
        raise
    except asyncio.TimeoutError as e:
        raise UpstreamError(
            f"Payroll calculation timed out for run {run_id}", run_id=run_id
        ) from e
    except Exception as e:
        logger.exception("Payroll calculation failed for run %s", run_id)
        raise UpstreamError(
            f"Payroll calculation failed for run {run_id}: {e}", run_id=run_id
        ) from e
