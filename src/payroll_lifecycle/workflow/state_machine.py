"""Payroll run state machine with role-gated transition validation."""

from __future__ import annotations

from dataclasses import dataclass

from payroll_lifecycle.errors import (
    InvalidJustificationError,
    InvalidTransitionError,
    PreconditionNotMetError,
)
from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.types import PayrollRun, Role, RunEvent, RunStatus

MIN_REJECTION_REASON_LENGTH = 10
MIN_UNFREEZE_JUSTIFICATION_LENGTH = 20


@dataclass(frozen=True)
class Transition:
    """One row of the transition table."""

    event: RunEvent
    sources: frozenset[RunStatus]
    target: RunStatus
    role: Role


def _row(event: RunEvent, sources: set[RunStatus], target: RunStatus, role: Role) -> Transition:
    return Transition(event=event, sources=frozenset(sources), target=target, role=role)


class RunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions (role in parentheses):
    - DRAFT → CALCULATED (specialist: calculate)
    - CALCULATED / UNDER_REVIEW → UNDER_REVIEW (specialist: publish)
    - CALCULATED / UNDER_REVIEW → PENDING_FINANCE_APPROVAL (manager: approve)
    - CALCULATED / UNDER_REVIEW → DRAFT (manager: reject)
    - PENDING_FINANCE_APPROVAL → DRAFT (finance: reject)
    - PENDING_FINANCE_APPROVAL → APPROVED (finance: approve)
    - APPROVED → LOCKED (manager: lock)
    - LOCKED → UNDER_REVIEW (manager: unfreeze, exceptional)
    - LOCKED → PAID (specialist: execute and distribute)
    """

    TRANSITIONS: dict[RunEvent, Transition] = {
        RunEvent.CALCULATE: _row(
            RunEvent.CALCULATE, {RunStatus.DRAFT}, RunStatus.CALCULATED, Role.SPECIALIST
        ),
        RunEvent.PUBLISH: _row(
            RunEvent.PUBLISH,
            {RunStatus.CALCULATED, RunStatus.UNDER_REVIEW},
            RunStatus.UNDER_REVIEW,
            Role.SPECIALIST,
        ),
        RunEvent.MANAGER_APPROVE: _row(
            RunEvent.MANAGER_APPROVE,
            {RunStatus.CALCULATED, RunStatus.UNDER_REVIEW},
            RunStatus.PENDING_FINANCE_APPROVAL,
            Role.MANAGER,
        ),
        RunEvent.MANAGER_REJECT: _row(
            RunEvent.MANAGER_REJECT,
            {RunStatus.CALCULATED, RunStatus.UNDER_REVIEW},
            RunStatus.DRAFT,
            Role.MANAGER,
        ),
        RunEvent.FINANCE_APPROVE: _row(
            RunEvent.FINANCE_APPROVE,
            {RunStatus.PENDING_FINANCE_APPROVAL},
            RunStatus.APPROVED,
            Role.FINANCE,
        ),
        RunEvent.FINANCE_REJECT: _row(
            RunEvent.FINANCE_REJECT,
            {RunStatus.PENDING_FINANCE_APPROVAL},
            RunStatus.DRAFT,
            Role.FINANCE,
        ),
        RunEvent.LOCK: _row(RunEvent.LOCK, {RunStatus.APPROVED}, RunStatus.LOCKED, Role.MANAGER),
        RunEvent.UNFREEZE: _row(
            RunEvent.UNFREEZE, {RunStatus.LOCKED}, RunStatus.UNDER_REVIEW, Role.MANAGER
        ),
        RunEvent.EXECUTE: _row(
            RunEvent.EXECUTE, {RunStatus.LOCKED}, RunStatus.PAID, Role.SPECIALIST
        ),
    }

    # Minimum reason length per event that requires one
    REASON_REQUIRED: dict[RunEvent, int] = {
        RunEvent.MANAGER_REJECT: MIN_REJECTION_REASON_LENGTH,
        RunEvent.FINANCE_REJECT: MIN_REJECTION_REASON_LENGTH,
        RunEvent.UNFREEZE: MIN_UNFREEZE_JUSTIFICATION_LENGTH,
    }

    # Statuses where employee records may be changed by resolutions
    RECORDS_MUTABLE = {
        RunStatus.CALCULATED,
        RunStatus.UNDER_REVIEW,
    }

    TERMINAL = {RunStatus.PAID}

    EXCEPTIONAL_EVENTS = {RunEvent.UNFREEZE}

    @classmethod
    def can_fire(cls, status: RunStatus, event: RunEvent, role: Role) -> bool:
        """Check if an event is legal from a status for a role."""
        transition = cls.TRANSITIONS.get(event)
        if transition is None:
            return False
        return status in transition.sources and role == transition.role

    @classmethod
    def validate_event(
        cls, status: RunStatus, event: RunEvent, role: Role, run_id: str | None = None
    ) -> Transition:
        """Validate an event against the table, raising InvalidTransitionError."""
        if not cls.can_fire(status, event, role):
            raise InvalidTransitionError(
                status.value, event.value, role.value, run_id=run_id
            )
        return cls.TRANSITIONS[event]

    @classmethod
    def get_available_events(cls, status: RunStatus, role: Role) -> list[RunEvent]:
        """Get events the role may fire from the current status."""
        return [
            event
            for event, transition in cls.TRANSITIONS.items()
            if status in transition.sources and role == transition.role
        ]

    @classmethod
    def get_next_statuses(cls, status: RunStatus) -> list[RunStatus]:
        """Get statuses reachable in one step, for any role."""
        targets: list[RunStatus] = []
        for transition in cls.TRANSITIONS.values():
            if status in transition.sources and transition.target not in targets:
                targets.append(transition.target)
        return targets

    @classmethod
    def is_terminal(cls, status: RunStatus) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def records_mutable(cls, status: RunStatus) -> bool:
        """Check if resolutions may change employee records in this status."""
        return status in cls.RECORDS_MUTABLE

    @classmethod
    def is_exceptional(cls, event: RunEvent) -> bool:
        """Check if the event is an exceptional reversal needing elevated audit."""
        return event in cls.EXCEPTIONAL_EVENTS

    @classmethod
    def check_reason(
        cls, event: RunEvent, reason: str | None, run_id: str | None = None
    ) -> None:
        """Enforce the minimum reason length for events that need one."""
        min_length = cls.REASON_REQUIRED.get(event)
        if min_length is None:
            return
        length = len((reason or "").strip())
        if length < min_length:
            raise InvalidJustificationError(min_length, length, run_id=run_id)

    @classmethod
    def check_preconditions(cls, run: PayrollRun, event: RunEvent) -> list[str]:
        """Validate the run's data for an event, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []

        if event == RunEvent.CALCULATE:
            if not run.employees:
                errors.append("No employee records were fetched for the run")

        elif event == RunEvent.PUBLISH:
            counts = anomaly_detector.count_by_severity(anomaly_detector.detect_run(run))
            if counts["critical"]:
                errors.append(
                    f"{counts['critical']} critical anomaly(ies) must be resolved before publishing"
                )

        elif event == RunEvent.MANAGER_APPROVE:
            counts = anomaly_detector.count_by_severity(anomaly_detector.detect_run(run))
            total = counts["critical"] + counts["warning"]
            if total:
                errors.append(
                    f"{total} unresolved anomaly(ies) must be resolved before approval"
                )

        return errors

    @classmethod
    def fire(
        cls,
        run: PayrollRun,
        event: RunEvent,
        role: Role,
        reason: str | None = None,
    ) -> RunStatus:
        """Apply an event to a run, returning the status it left.

        The run's status is only assigned after every check passed, so a
        rejected event leaves the run untouched.
        """
        from_status = run.status
        transition = cls.validate_event(from_status, event, role, run_id=run.run_id)
        cls.check_reason(event, reason, run_id=run.run_id)

        errors = cls.check_preconditions(run, event)
        if errors:
            counts = anomaly_detector.count_by_severity(anomaly_detector.detect_run(run))
            raise PreconditionNotMetError(
                "; ".join(errors),
                run_id=run.run_id,
                status=from_status.value,
                details={"anomalies": counts},
            )

        run.status = transition.target
        return from_status
