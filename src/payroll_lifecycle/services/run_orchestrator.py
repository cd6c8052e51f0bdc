"""Payroll run orchestration: load, dispatch, persist, audit."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from payroll_lifecycle.collaborators import compute_payroll_records
from payroll_lifecycle.errors import (
    PayrollWorkflowError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from payroll_lifecycle.services.run_insights import (
    RunPreview,
    RunSummary,
    build_preview,
    summarize_history,
)
from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.resolution_processor import (
    ResolutionOutcome,
    ResolutionProcessor,
)
from payroll_lifecycle.workflow.state_machine import RunStateMachine
from payroll_lifecycle.workflow.types import (
    Anomaly,
    AuditEntry,
    PayrollRun,
    Resolution,
    ReviewDecision,
    Role,
    RunEvent,
    RunStatus,
)

if TYPE_CHECKING:
    from payroll_lifecycle.collaborators import (
        AuditSink,
        CalculationService,
        DistributionService,
        IdentityProvider,
        RunRepository,
    )

logger = logging.getLogger(__name__)

MONTHS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")
FIRST_PAYROLL_YEAR = 2020

# Events whose reason is kept on the run as the latest review note
_NOTED_EVENTS = {RunEvent.MANAGER_REJECT, RunEvent.FINANCE_REJECT, RunEvent.UNFREEZE}


@dataclass
class RunView:
    """A run as returned to callers, with its derived anomalies."""

    run: PayrollRun
    version: int
    anomalies: dict[str, list[Anomaly]] = field(default_factory=dict)
    resolution: ResolutionOutcome | None = None
    payslips_distributed: int | None = None

    @classmethod
    def of(cls, run: PayrollRun, version: int, **kwargs) -> RunView:
        return cls(run=run, version=version, anomalies=anomaly_detector.detect_run(run), **kwargs)


class RunOrchestrator:
    """Facade over the payroll run workflow.

    Every operation resolves the actor's role through the identity provider,
    loads the run with its version, delegates to the state machine or the
    resolution processor, and saves with the loaded version. The loaded run
    is never mutated in place, so a failure leaves nothing half-applied.
    Audit entries are emitted after the outcome is known.
    """

    def __init__(
        self,
        repository: RunRepository,
        calculation: CalculationService,
        identity: IdentityProvider,
        distribution: DistributionService,
        audit: AuditSink,
        calculation_timeout: float | None = None,
    ):
        self.repository = repository
        self.calculation = calculation
        self.identity = identity
        self.distribution = distribution
        self.audit = audit
        self.calculation_timeout = calculation_timeout
        self.resolutions = ResolutionProcessor(calculation, calculation_timeout)

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_run(self, run_id: str) -> RunView:
        run, version = await self.repository.load_run(run_id)
        return RunView.of(run, version)

    async def preview(self, run_id: str) -> RunPreview:
        run, _ = await self.repository.load_run(run_id)
        return build_preview(run)

    async def list_runs(self) -> list[RunSummary]:
        return summarize_history(await self.repository.list_runs())

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initiate_run(
        self, actor_id: str, year: int, month: str, entity: str
    ) -> RunView:
        """Create a DRAFT run for a payroll month."""
        role = await self._actor_role(actor_id)
        if role != Role.SPECIALIST:
            raise UnauthorizedError("Only payroll specialists can initiate payroll runs")

        month = (month or "").strip().upper()
        if month not in MONTHS:
            raise ValidationError(
                f"Invalid month '{month}'. Expected one of: {', '.join(MONTHS)}"
            )

        max_year = datetime.now(timezone.utc).year + 1
        if not FIRST_PAYROLL_YEAR <= year <= max_year:
            raise ValidationError(
                f"Invalid year {year}. Expected {FIRST_PAYROLL_YEAR} to {max_year}"
            )

        entity = (entity or "").strip()
        if not entity:
            raise ValidationError("Entity is required")

        run_id = f"PR-{year}-{month}"
        if await self.repository.run_exists(run_id):
            raise ValidationError(
                f"Payroll run for {month} {year} already exists", run_id=run_id
            )

        run = PayrollRun(
            run_id=run_id,
            period=date(year, MONTHS.index(month) + 1, 1),
            entity=entity,
            status=RunStatus.DRAFT,
            specialist_id=actor_id,
        )
        version = await self.repository.create_run(run)
        logger.info("Payroll run %s initiated by %s for %s", run_id, actor_id, entity)

        await self._emit(
            [
                self._entry(
                    "initiate",
                    run,
                    actor_id,
                    role,
                    details={"to_status": RunStatus.DRAFT.value, "entity": entity},
                )
            ]
        )
        return RunView.of(run, version)

    async def calculate(self, run_id: str, actor_id: str) -> RunView:
        """Fetch computed records for a DRAFT run and move it to CALCULATED."""
        role = await self._actor_role(actor_id)
        run, version = await self.repository.load_run(run_id)
        RunStateMachine.validate_event(run.status, RunEvent.CALCULATE, role, run_id=run_id)

        working = copy.deepcopy(run)
        working.employees = await compute_payroll_records(
            self.calculation, run_id, self.calculation_timeout
        )
        working.rejection_reason = None
        return await self._transition(working, version, RunEvent.CALCULATE, role, actor_id)

    async def publish(self, run_id: str, actor_id: str) -> RunView:
        return await self._fire(run_id, actor_id, RunEvent.PUBLISH)

    async def manager_review(
        self,
        run_id: str,
        actor_id: str,
        decision: ReviewDecision,
        comment: str | None = None,
    ) -> RunView:
        event = (
            RunEvent.MANAGER_APPROVE
            if decision == ReviewDecision.APPROVED
            else RunEvent.MANAGER_REJECT
        )
        return await self._fire(run_id, actor_id, event, reason=comment)

    async def finance_review(
        self,
        run_id: str,
        actor_id: str,
        decision: ReviewDecision,
        comment: str | None = None,
    ) -> RunView:
        event = (
            RunEvent.FINANCE_APPROVE
            if decision == ReviewDecision.APPROVED
            else RunEvent.FINANCE_REJECT
        )
        return await self._fire(run_id, actor_id, event, reason=comment)

    async def lock(self, run_id: str, actor_id: str) -> RunView:
        return await self._fire(run_id, actor_id, RunEvent.LOCK)

    async def unfreeze(self, run_id: str, actor_id: str, justification: str) -> RunView:
        """Reopen a LOCKED run for review. Exceptional: audited at WARNING."""
        return await self._fire(run_id, actor_id, RunEvent.UNFREEZE, reason=justification)

    async def execute(self, run_id: str, actor_id: str) -> RunView:
        """Claim a LOCKED run as PAID, then distribute pay and payslips.

        The PAID status is saved before anything is paid out, so of two
        concurrent executes only the one that wins the save distributes. A
        failed distribution puts the run back to LOCKED for a retry.
        """
        role = await self._actor_role(actor_id)
        run, version = await self.repository.load_run(run_id)

        working = copy.deepcopy(run)
        from_status = RunStateMachine.fire(working, RunEvent.EXECUTE, role)
        claimed_version = await self.repository.save_run(working, version)

        try:
            distributed = await self.distribution.distribute_and_generate_payslips(run_id)
        except Exception as e:
            logger.exception("Distribution failed for run %s", run_id)
            await self._release_claim(working, from_status, claimed_version, role, actor_id, e)
            if isinstance(e, PayrollWorkflowError):
                raise
            raise UpstreamError(
                f"Distribution failed for run {run_id}: {e}",
                run_id=run_id,
                status=from_status.value,
            ) from e

        await self._record_transition(
            working,
            from_status,
            RunEvent.EXECUTE,
            role,
            actor_id,
            details={"payslips_distributed": distributed},
        )
        return RunView.of(working, claimed_version, payslips_distributed=distributed)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _fire(
        self,
        run_id: str,
        actor_id: str,
        event: RunEvent,
        reason: str | None = None,
    ) -> RunView:
        role = await self._actor_role(actor_id)
        run, version = await self.repository.load_run(run_id)
        return await self._transition(
            copy.deepcopy(run), version, event, role, actor_id, reason=reason
        )

    async def _transition(
        self,
        working: PayrollRun,
        version: int,
        event: RunEvent,
        role: Role,
        actor_id: str,
        reason: str | None = None,
    ) -> RunView:
        from_status = RunStateMachine.fire(working, event, role, reason=reason)
        if event in _NOTED_EVENTS:
            working.rejection_reason = reason.strip()

        new_version = await self.repository.save_run(working, version)
        await self._record_transition(working, from_status, event, role, actor_id, reason=reason)
        return RunView.of(working, new_version)

    async def _record_transition(
        self,
        working: PayrollRun,
        from_status: RunStatus,
        event: RunEvent,
        role: Role,
        actor_id: str,
        reason: str | None = None,
        details: dict | None = None,
    ) -> None:
        exceptional = RunStateMachine.is_exceptional(event)
        log = logger.warning if exceptional or event in _NOTED_EVENTS else logger.info
        log(
            "Run %s: %s by %s (%s) %s -> %s",
            working.run_id,
            event.value,
            actor_id,
            role.value,
            from_status.value,
            working.status.value,
        )

        entry_details = {
            "from_status": from_status.value,
            "to_status": working.status.value,
            "exceptional": exceptional,
        }
        entry_details.update(details or {})
        await self._emit(
            [
                self._entry(
                    f"transition:{event.value}",
                    working,
                    actor_id,
                    role,
                    justification=reason.strip() if reason else None,
                    details=entry_details,
                )
            ]
        )

    async def _release_claim(
        self,
        working: PayrollRun,
        from_status: RunStatus,
        claimed_version: int,
        role: Role,
        actor_id: str,
        error: Exception,
    ) -> None:
        """Put a claimed run back to its pre-execute status after a failed payout."""
        working.status = from_status
        try:
            await self.repository.save_run(working, claimed_version)
        except PayrollWorkflowError:
            logger.exception(
                "Run %s left PAID after failed distribution; manual review required",
                working.run_id,
            )
            return

        logger.warning(
            "Run %s returned to %s after failed distribution", working.run_id, from_status.value
        )
        await self._emit(
            [
                self._entry(
                    "execute:rolled_back",
                    working,
                    actor_id,
                    role,
                    details={"to_status": from_status.value, "error": str(error)},
                )
            ]
        )

    async def _actor_role(self, actor_id: str) -> Role:
        if not actor_id or not actor_id.strip():
            raise UnauthorizedError("Actor identity is required")
        return await self.identity.actor_role(actor_id)

    @staticmethod
    def _entry(
        action: str,
        run: PayrollRun,
        actor_id: str,
        role: Role,
        justification: str | None = None,
        details: dict | None = None,
    ) -> AuditEntry:
        return AuditEntry(
            action=action,
            actor_id=actor_id,
            actor_role=role,
            run_id=run.run_id,
            justification=justification,
            details=details or {},
            timestamp=datetime.now(timezone.utc),
        )

    async def _emit(self, entries: list[AuditEntry]) -> None:
        for entry in entries:
            try:
                await self.audit.record(entry)
            except Exception:
                logger.exception(
                    "Audit sink failed for %s on run %s", entry.action, entry.run_id
                )
