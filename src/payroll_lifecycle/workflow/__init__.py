"""Pure payroll run workflow: anomaly detection, state machine, resolutions."""

from payroll_lifecycle.workflow.anomaly_detector import detect, detect_run
from payroll_lifecycle.workflow.resolution_processor import ResolutionOutcome, ResolutionProcessor
from payroll_lifecycle.workflow.state_machine import RunStateMachine
from payroll_lifecycle.workflow.types import (
    Anomaly,
    AnomalyType,
    AuditEntry,
    EmployeeRunRecord,
    Insurance,
    PaymentMethod,
    PayrollRun,
    Resolution,
    ResolutionAction,
    ResolutionMarker,
    ReviewDecision,
    Role,
    RunEvent,
    RunStatus,
    Severity,
    TaxLine,
)

__all__ = [
    "Anomaly",
    "AnomalyType",
    "AuditEntry",
    "EmployeeRunRecord",
    "Insurance",
    "PaymentMethod",
    "PayrollRun",
    "Resolution",
    "ResolutionAction",
    "ResolutionMarker",
    "ResolutionOutcome",
    "ResolutionProcessor",
    "ReviewDecision",
    "Role",
    "RunEvent",
    "RunStateMachine",
    "RunStatus",
    "Severity",
    "TaxLine",
    "detect",
    "detect_run",
]
