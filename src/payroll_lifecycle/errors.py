"""Typed errors raised by the payroll run workflow.

Every error carries enough context (run id, current status, offending
employee) for the API layer to render a user-facing message. ``retryable``
marks errors the caller may safely retry unchanged.
"""

from __future__ import annotations

from typing import Any


class PayrollWorkflowError(Exception):
    """Base class for all workflow errors."""

    code = "WORKFLOW_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        status: str | None = None,
        employee_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.run_id = run_id
        self.status = status
        self.employee_id = employee_id
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        body: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.run_id is not None:
            body["run_id"] = self.run_id
        if self.status is not None:
            body["status"] = self.status
        if self.employee_id is not None:
            body["employee_id"] = self.employee_id
        if self.details:
            body["details"] = self.details
        return body


# ===== Validation =====


class ValidationError(PayrollWorkflowError):
    """Caller supplied malformed or unsupported input."""

    code = "VALIDATION_ERROR"


class InvalidJustificationError(ValidationError):
    """Justification or reason text is below the required minimum length."""

    code = "INVALID_JUSTIFICATION"

    def __init__(self, min_length: int, actual_length: int, **kwargs: Any):
        self.min_length = min_length
        self.actual_length = actual_length
        super().__init__(
            f"Justification must be at least {min_length} characters "
            f"(got {actual_length})",
            **kwargs,
        )


class IncompatibleActionError(ValidationError):
    """Resolution action cannot address the employee's anomalies."""

    code = "INCOMPATIBLE_ACTION"


# ===== Authorization =====


class UnauthorizedError(PayrollWorkflowError):
    """Actor's role does not permit the requested operation."""

    code = "UNAUTHORIZED"


# ===== State conflict =====


class InvalidTransitionError(PayrollWorkflowError):
    """Raised when an event is not legal from the run's current status."""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        from_status: str,
        event: str,
        role: str | None,
        reason: str | None = None,
        **kwargs: Any,
    ):
        self.from_status = from_status
        self.event = event
        self.role = role
        self.reason = reason
        msg = f"Cannot apply '{event}' as '{role}' from status '{from_status}'"
        if reason:
            msg += f": {reason}"
        kwargs.setdefault("status", from_status)
        super().__init__(msg, **kwargs)


class ConcurrentModificationError(PayrollWorkflowError):
    """The run was saved by someone else since it was loaded."""

    code = "CONCURRENT_MODIFICATION"
    retryable = True

    def __init__(self, run_id: str, expected_version: int):
        self.expected_version = expected_version
        super().__init__(
            f"Payroll run {run_id} was modified concurrently "
            f"(expected version {expected_version})",
            run_id=run_id,
        )


# ===== Preconditions =====


class PreconditionNotMetError(PayrollWorkflowError):
    """The run is in the right status but its data blocks the transition."""

    code = "PRECONDITION_NOT_MET"


# ===== Lookup =====


class RunNotFoundError(PayrollWorkflowError):
    """No payroll run exists with the given identifier."""

    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        super().__init__(f"Payroll run {run_id} not found", run_id=run_id)


# ===== Upstream =====


class UpstreamError(PayrollWorkflowError):
    """A collaborator (calculation, persistence, distribution) failed."""

    code = "UPSTREAM_FAILURE"
    retryable = True
