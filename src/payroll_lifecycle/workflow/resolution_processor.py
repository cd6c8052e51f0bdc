"""Manager resolution of flagged employees in a payroll run."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from payroll_lifecycle.collaborators import compute_payroll_records
from payroll_lifecycle.errors import (
    IncompatibleActionError,
    InvalidJustificationError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.state_machine import RunStateMachine
from payroll_lifecycle.workflow.types import (
    OVERRIDE_PAYMENT_METHODS,
    AnomalyType,
    AuditEntry,
    EmployeeRunRecord,
    PayrollRun,
    Resolution,
    ResolutionAction,
    ResolutionMarker,
    Role,
    RunEvent,
)

if TYPE_CHECKING:
    from payroll_lifecycle.collaborators import CalculationService

logger = logging.getLogger(__name__)

MIN_RESOLUTION_JUSTIFICATION_LENGTH = 20

# Anomalies that need deferral or recalculation, not a payment channel change
OVERRIDE_BLOCKING_TYPES = (AnomalyType.NEGATIVE_NET_PAY, AnomalyType.MISSING_TAX_INFO)

RESOLVE_ANOMALIES_EVENT = "resolveAnomalies"


@dataclass
class ResolutionOutcome:
    """Result of applying a resolution batch."""

    run: PayrollRun
    rejected: bool = False
    recalculated: bool = False
    deferred: list[str] = field(default_factory=list)
    overridden: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    audit_entries: list[AuditEntry] = field(default_factory=list)


class ResolutionProcessor:
    """Applies a batch of manager resolutions to a run.

    Actions:
    - DEFER_TO_NEXT_RUN: exclude the employee from this run's payable set
    - OVERRIDE_PAYMENT_METHOD: pay via cheque, cash or wire instead of transfer
    - REJECT_PAYROLL: send the whole run back to draft and stop
    - RE_CALCULATE: recompute the whole run once the other actions are applied

    The batch is all-or-nothing: it works on a copy of the run, and the
    caller's run is never touched if any step raises.

    Actions apply in batch order. Defers and overrides listed before a
    REJECT_PAYROLL stay on the rejected run; everything after it is skipped.
    """

    def __init__(
        self,
        calculation: CalculationService,
        calculation_timeout: float | None = None,
    ):
        self.calculation = calculation
        self.calculation_timeout = calculation_timeout

    async def resolve(
        self,
        run: PayrollRun,
        resolutions: list[Resolution],
        actor_role: Role,
        actor_id: str,
    ) -> ResolutionOutcome:
        """Validate and apply a resolution batch, returning the updated copy."""
        self.validate(run, resolutions, actor_role)

        working = copy.deepcopy(run)
        outcome = ResolutionOutcome(run=working)

        recalculations = [r for r in resolutions if r.action == ResolutionAction.RE_CALCULATE]
        others = [r for r in resolutions if r.action != ResolutionAction.RE_CALCULATE]

        for index, resolution in enumerate(others):
            if resolution.action == ResolutionAction.REJECT_PAYROLL:
                RunStateMachine.fire(
                    working,
                    RunEvent.MANAGER_REJECT,
                    actor_role,
                    reason=resolution.justification,
                )
                working.rejection_reason = resolution.justification
                outcome.rejected = True
                outcome.skipped.extend(r.employee_id for r in others[index + 1 :])
                outcome.skipped.extend(r.employee_id for r in recalculations)
                logger.warning(
                    "Run %s rejected by manager during anomaly resolution: %s",
                    run.run_id,
                    resolution.justification,
                )
                break

            record = working.find_employee(resolution.employee_id)
            if resolution.action == ResolutionAction.DEFER_TO_NEXT_RUN:
                self._defer(record, resolution)
                outcome.deferred.append(record.employee_id)
            elif resolution.action == ResolutionAction.OVERRIDE_PAYMENT_METHOD:
                self._override(record, resolution)
                outcome.overridden.append(record.employee_id)

        if recalculations and not outcome.rejected:
            fresh = await compute_payroll_records(
                self.calculation, run.run_id, self.calculation_timeout
            )
            working.employees = merge_recalculated(working.employees, fresh)
            outcome.recalculated = True
            logger.info(
                "Run %s recalculated after %d resolution(s)", run.run_id, len(recalculations)
            )

        outcome.audit_entries = self.audit_entries(
            run, resolutions, actor_id, actor_role, outcome=outcome
        )
        return outcome

    @staticmethod
    def audit_entries(
        run: PayrollRun,
        resolutions: list[Resolution],
        actor_id: str,
        actor_role: Role | None,
        outcome: ResolutionOutcome | None = None,
        error: Exception | None = None,
    ) -> list[AuditEntry]:
        """Build one audit entry per resolution, whatever the batch outcome.

        The anomaly snapshot is what the manager saw; when the caller sent
        none it is taken from the run as it was before the batch.
        """
        timestamp = datetime.now(timezone.utc)
        entries: list[AuditEntry] = []
        for resolution in resolutions:
            if error is not None:
                result = "failed"
            elif outcome is not None and resolution.employee_id in outcome.skipped:
                result = "skipped"
            else:
                result = "applied"

            snapshot = list(resolution.anomalies)
            if not snapshot:
                record = run.find_employee(resolution.employee_id)
                if record is not None:
                    snapshot = anomaly_detector.detect(record)

            details: dict = {
                "anomalies": [a.to_dict() for a in snapshot],
                "outcome": result,
            }
            if resolution.override_payment_method is not None:
                details["override_payment_method"] = resolution.override_payment_method.value
            if error is not None:
                details["error"] = str(error)

            entries.append(
                AuditEntry(
                    action=f"resolution:{resolution.action.value}",
                    actor_id=actor_id,
                    actor_role=actor_role,
                    run_id=run.run_id,
                    employee_id=resolution.employee_id,
                    justification=resolution.justification,
                    details=details,
                    timestamp=timestamp,
                )
            )
        return entries

    def validate(
        self,
        run: PayrollRun,
        resolutions: list[Resolution],
        actor_role: Role,
    ) -> None:
        """Check the whole batch before anything is applied."""
        if actor_role != Role.MANAGER:
            raise UnauthorizedError(
                "Only payroll managers can resolve anomalies",
                run_id=run.run_id,
                status=run.status.value,
            )

        if not RunStateMachine.records_mutable(run.status):
            raise InvalidTransitionError(
                run.status.value,
                RESOLVE_ANOMALIES_EVENT,
                actor_role.value,
                reason="employee records cannot be changed in this status",
                run_id=run.run_id,
            )

        if not resolutions:
            raise ValidationError("At least one resolution is required", run_id=run.run_id)

        seen: set[str] = set()
        for resolution in resolutions:
            length = len((resolution.justification or "").strip())
            if length < MIN_RESOLUTION_JUSTIFICATION_LENGTH:
                raise InvalidJustificationError(
                    MIN_RESOLUTION_JUSTIFICATION_LENGTH,
                    length,
                    run_id=run.run_id,
                    employee_id=resolution.employee_id,
                )

            if resolution.employee_id in seen:
                raise ValidationError(
                    f"Duplicate resolution for employee {resolution.employee_id}",
                    run_id=run.run_id,
                    employee_id=resolution.employee_id,
                )
            seen.add(resolution.employee_id)

            record = run.find_employee(resolution.employee_id)
            if record is None:
                raise ValidationError(
                    f"Employee {resolution.employee_id} is not part of run {run.run_id}",
                    run_id=run.run_id,
                    employee_id=resolution.employee_id,
                )

            if resolution.action == ResolutionAction.OVERRIDE_PAYMENT_METHOD:
                self._check_override(run, record, resolution)

    def _check_override(
        self, run: PayrollRun, record: EmployeeRunRecord, resolution: Resolution
    ) -> None:
        method = resolution.override_payment_method
        if method is None or method not in OVERRIDE_PAYMENT_METHODS:
            raise ValidationError(
                "Payment method override requires one of: "
                + ", ".join(sorted(m.value for m in OVERRIDE_PAYMENT_METHODS)),
                run_id=run.run_id,
                employee_id=record.employee_id,
            )

        anomalies = anomaly_detector.detect(record)
        if anomaly_detector.has_type(anomalies, *OVERRIDE_BLOCKING_TYPES):
            blocking = sorted(
                {a.type.value for a in anomalies if a.type in OVERRIDE_BLOCKING_TYPES}
            )
            raise IncompatibleActionError(
                f"Cannot override payment method for employee {record.employee_id}: "
                f"{', '.join(blocking)} requires deferral or recalculation",
                run_id=run.run_id,
                employee_id=record.employee_id,
                details={"anomalies": blocking},
            )

    def _defer(self, record: EmployeeRunRecord, resolution: Resolution) -> None:
        record.excluded = True
        record.resolution_marker = ResolutionMarker.DEFERRED
        record.append_note(f"DEFERRED TO NEXT RUN by Manager: {resolution.justification}")
        logger.info("Employee %s deferred to next payroll cycle", record.employee_id)

    def _override(self, record: EmployeeRunRecord, resolution: Resolution) -> None:
        record.payment_method = resolution.override_payment_method
        record.manager_override = True
        record.resolution_marker = ResolutionMarker.OVERRIDE
        record.append_note(
            f"PAYMENT METHOD OVERRIDE by Manager: "
            f"{resolution.override_payment_method.value} - {resolution.justification}"
        )
        logger.info(
            "Payment method overridden to %s for employee %s",
            resolution.override_payment_method.value,
            record.employee_id,
        )


def merge_recalculated(
    current: list[EmployeeRunRecord], fresh: list[EmployeeRunRecord]
) -> list[EmployeeRunRecord]:
    """Take fresh pay values while keeping the manager's remediation state.

    Deferral, payment overrides and resolution markers survive a
    recalculation; everything the calculation owns is replaced. Employees
    the calculation did not return keep their current record, and
    employees it returned for the first time are appended.
    """
    fresh_by_id = {record.employee_id: record for record in fresh}
    merged: list[EmployeeRunRecord] = []
    for previous in current:
        record = fresh_by_id.pop(previous.employee_id, None)
        if record is None:
            merged.append(previous)
            continue
        record.excluded = previous.excluded
        record.resolution_marker = previous.resolution_marker
        if previous.manager_override:
            record.manager_override = True
            record.payment_method = previous.payment_method
        if previous.resolution_marker is not None:
            record.exceptions = previous.exceptions
        merged.append(record)
    merged.extend(fresh_by_id.values())
    return merged
