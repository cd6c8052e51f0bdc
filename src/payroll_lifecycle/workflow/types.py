"""Type definitions for the payroll run workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "DRAFT"
    CALCULATED = "CALCULATED"
    UNDER_REVIEW = "UNDER_REVIEW"
    PENDING_FINANCE_APPROVAL = "PENDING_FINANCE_APPROVAL"
    APPROVED = "APPROVED"
    LOCKED = "LOCKED"
    PAID = "PAID"


class RunEvent(str, Enum):
    """Events that move a run through its lifecycle."""

    CALCULATE = "calculate"
    PUBLISH = "publish"
    MANAGER_APPROVE = "managerApprove"
    MANAGER_REJECT = "managerReject"
    FINANCE_APPROVE = "financeApprove"
    FINANCE_REJECT = "financeReject"
    LOCK = "lock"
    UNFREEZE = "unfreeze"
    EXECUTE = "executeAndDistribute"


class Role(str, Enum):
    """Actor roles known to the workflow."""

    SPECIALIST = "SPECIALIST"
    MANAGER = "MANAGER"
    FINANCE = "FINANCE"
    ADMIN = "ADMIN"


class ReviewDecision(str, Enum):
    """Manager or finance review outcome."""

    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AnomalyType(str, Enum):
    """Classified pay irregularities."""

    NEGATIVE_NET_PAY = "NEGATIVE_NET_PAY"
    MISSING_BANK_INFO = "MISSING_BANK_INFO"
    SALARY_SPIKE = "SALARY_SPIKE"
    MISSING_TAX_INFO = "MISSING_TAX_INFO"
    BACKEND_EXCEPTION = "BACKEND_EXCEPTION"


class Severity(str, Enum):
    """Anomaly severity."""

    CRITICAL = "critical"
    WARNING = "warning"


class PaymentMethod(str, Enum):
    """How an employee gets paid."""

    BANK_TRANSFER = "BANK_TRANSFER"
    CHEQUE = "CHEQUE"
    CASH = "CASH"
    WIRE_TRANSFER = "WIRE_TRANSFER"


# Methods a manager may switch an employee to
OVERRIDE_PAYMENT_METHODS = frozenset(
    {PaymentMethod.CHEQUE, PaymentMethod.CASH, PaymentMethod.WIRE_TRANSFER}
)

# Methods that do not need bank details
NON_ELECTRONIC_METHODS = frozenset({PaymentMethod.CHEQUE, PaymentMethod.CASH})


class ResolutionAction(str, Enum):
    """Manager remediation for a flagged employee."""

    DEFER_TO_NEXT_RUN = "DEFER_TO_NEXT_RUN"
    OVERRIDE_PAYMENT_METHOD = "OVERRIDE_PAYMENT_METHOD"
    REJECT_PAYROLL = "REJECT_PAYROLL"
    RE_CALCULATE = "RE_CALCULATE"


class ResolutionMarker(str, Enum):
    """Structured record of how an employee's exception was remediated."""

    OVERRIDE = "OVERRIDE"
    DEFERRED = "DEFERRED"


@dataclass(frozen=True)
class TaxLine:
    """One bracket of an employee's tax breakdown."""

    bracket: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class Insurance:
    """Insurance contributions for one employee."""

    employee_amount: Decimal = Decimal("0")
    employer_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class Anomaly:
    """A detected irregularity in an employee's computed pay."""

    type: AnomalyType
    severity: Severity
    message: str
    value: Any = None
    threshold: Any = None

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "value": str(self.value) if isinstance(self.value, Decimal) else self.value,
            "threshold": self.threshold,
        }


@dataclass
class EmployeeRunRecord:
    """One employee's computed pay within a run."""

    employee_id: str
    employee_name: str = ""
    base_salary: Decimal = Decimal("0")
    gross_salary: Decimal = Decimal("0")
    tax_breakdown: list[TaxLine] = field(default_factory=list)
    insurance: Insurance = field(default_factory=Insurance)
    penalties: Decimal = Decimal("0")
    overtime_pay: Decimal = Decimal("0")
    bonuses: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    bank_account_number: str | None = None
    bank_status: str | None = None
    payment_method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    manager_override: bool = False
    historical_salary: Decimal | None = None
    exceptions: str | None = None
    excluded: bool = False
    resolution_marker: ResolutionMarker | None = None

    @property
    def total_tax(self) -> Decimal:
        return sum((line.amount for line in self.tax_breakdown), Decimal("0"))

    def expected_net_pay(self) -> Decimal:
        """Net pay implied by the record's components."""
        return self.gross_salary + self.overtime_pay + self.bonuses - self.total_deductions

    def append_note(self, note: str) -> None:
        """Append a human-readable note to the exceptions text."""
        if self.exceptions and self.exceptions.strip():
            self.exceptions = f"{self.exceptions} | {note}"
        else:
            self.exceptions = note


@dataclass
class PayrollRun:
    """One payroll cycle's batch of employee pay computations."""

    run_id: str
    period: date
    entity: str
    status: RunStatus = RunStatus.DRAFT
    employees: list[EmployeeRunRecord] = field(default_factory=list)
    rejection_reason: str | None = None
    specialist_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def payable_employees(self) -> list[EmployeeRunRecord]:
        """Employees not deferred out of this run."""
        return [e for e in self.employees if not e.excluded]

    def find_employee(self, employee_id: str) -> EmployeeRunRecord | None:
        for record in self.employees:
            if record.employee_id == employee_id:
                return record
        return None


@dataclass(frozen=True)
class Resolution:
    """A manager's decision for one flagged employee."""

    employee_id: str
    action: ResolutionAction
    justification: str
    override_payment_method: PaymentMethod | None = None
    anomalies: tuple[Anomaly, ...] = ()


@dataclass(frozen=True)
class AuditEntry:
    """An audit trail entry for a transition or resolution."""

    action: str
    actor_id: str
    run_id: str
    timestamp: datetime
    actor_role: Role | None = None
    employee_id: str | None = None
    justification: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
