"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from payroll_lifecycle.workflow.types import (
    AnomalyType,
    PaymentMethod,
    ResolutionAction,
    ResolutionMarker,
    ReviewDecision,
    RunStatus,
    Severity,
)


# ============================================================================
# Employee record schemas
# ============================================================================


class TaxLineResponse(BaseModel):
    """One tax bracket line."""

    model_config = ConfigDict(from_attributes=True)

    bracket: str
    rate: Decimal
    amount: Decimal


class InsuranceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_amount: Decimal
    employer_amount: Decimal


class AnomalyResponse(BaseModel):
    """A derived pay anomaly."""

    model_config = ConfigDict(from_attributes=True)

    type: AnomalyType
    severity: Severity
    message: str
    value: Any = None
    threshold: Any = None


class EmployeeRecordResponse(BaseModel):
    """Schema for one employee's record within a run."""

    model_config = ConfigDict(from_attributes=True)

    employee_id: str
    employee_name: str
    base_salary: Decimal
    gross_salary: Decimal
    tax_breakdown: list[TaxLineResponse]
    insurance: InsuranceResponse
    penalties: Decimal
    overtime_pay: Decimal
    bonuses: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    bank_account_number: str | None = None
    bank_status: str | None = None
    payment_method: PaymentMethod
    manager_override: bool
    historical_salary: Decimal | None = None
    exceptions: str | None = None
    excluded: bool
    resolution_marker: ResolutionMarker | None = None
    anomalies: list[AnomalyResponse] = Field(default_factory=list)


# ============================================================================
# Payroll run schemas
# ============================================================================


class InitiateRunRequest(BaseModel):
    """Schema for initiating a payroll run for a month."""

    year: int
    month: str = Field(description="Three-letter month abbreviation, e.g. JAN")
    entity: str


class PayrollRunResponse(BaseModel):
    """Schema for a payroll run with its derived anomalies."""

    run_id: str
    period: date
    entity: str
    status: RunStatus
    version: int
    rejection_reason: str | None = None
    specialist_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    anomaly_counts: dict[str, int]
    employees: list[EmployeeRecordResponse]


class PayrollRunSummaryResponse(BaseModel):
    """One line of the run history."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    period: date
    entity: str
    status: RunStatus
    total_net_pay: Decimal
    employee_count: int
    total_anomalies: int


class PayrollRunListResponse(BaseModel):
    items: list[PayrollRunSummaryResponse]
    total: int


# ============================================================================
# Preview schemas
# ============================================================================


class EmployeeSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    payable: int
    excluded: int
    missing_bank_details: int


class FinancialTotalsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gross_salary: Decimal
    taxes: Decimal
    insurance: Decimal
    bonuses: Decimal
    deductions: Decimal
    net_pay: Decimal


class PreviewResponse(BaseModel):
    """Review dashboard for a run."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    period: date
    entity: str
    status: RunStatus
    employees: EmployeeSummaryResponse
    totals: FinancialTotalsResponse
    anomalies: dict[str, int]
    flagged_employees: list[str]
    can_execute: bool
    needs_finance_approval: bool
    recommendations: list[str]


# ============================================================================
# Review schemas
# ============================================================================


class ReviewRequest(BaseModel):
    """Manager or finance review decision."""

    decision: ReviewDecision
    comment: str | None = None


class UnfreezeRequest(BaseModel):
    justification: str


# ============================================================================
# Resolution schemas
# ============================================================================


class ResolutionRequest(BaseModel):
    """A manager's decision for one flagged employee."""

    employee_id: str
    action: ResolutionAction
    justification: str
    override_payment_method: PaymentMethod | None = None


class ResolveAnomaliesRequest(BaseModel):
    resolutions: list[ResolutionRequest]


class ResolveAnomaliesResponse(BaseModel):
    """Result of a resolution batch."""

    run: PayrollRunResponse
    rejected: bool
    recalculated: bool
    deferred: list[str]
    overridden: list[str]
    skipped: list[str]


# ============================================================================
# Execution schemas
# ============================================================================


class ExecuteResponse(BaseModel):
    run: PayrollRunResponse
    payslips_distributed: int


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    retryable: bool = False
    run_id: str | None = None
    status: str | None = None
    employee_id: str | None = None
    details: dict[str, Any] | None = None
