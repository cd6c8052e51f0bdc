"""Run preview dashboard and run history summaries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.types import PayrollRun, RunStatus

ZERO = Decimal("0")


@dataclass(frozen=True)
class EmployeeSummary:
    total: int
    payable: int
    excluded: int
    missing_bank_details: int


@dataclass(frozen=True)
class FinancialTotals:
    """Totals over the payable (non-deferred) employees."""

    gross_salary: Decimal = ZERO
    taxes: Decimal = ZERO
    insurance: Decimal = ZERO
    bonuses: Decimal = ZERO
    deductions: Decimal = ZERO
    net_pay: Decimal = ZERO


@dataclass(frozen=True)
class RunPreview:
    run_id: str
    period: date
    entity: str
    status: RunStatus
    employees: EmployeeSummary
    totals: FinancialTotals
    anomalies: dict[str, int]
    flagged_employees: list[str]
    can_execute: bool
    needs_finance_approval: bool
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RunSummary:
    run_id: str
    period: date
    entity: str
    status: RunStatus
    total_net_pay: Decimal
    employee_count: int
    total_anomalies: int


def build_preview(run: PayrollRun) -> RunPreview:
    """Summarize a run for the review dashboard."""
    payable = run.payable_employees
    anomalies = anomaly_detector.detect_run(run)
    counts = anomaly_detector.count_by_severity(anomalies)
    flagged = anomaly_detector.flagged_employees(anomalies)

    missing_bank = sum(1 for record in payable if anomaly_detector.missing_bank_details(record))

    totals = FinancialTotals(
        gross_salary=sum((r.gross_salary for r in payable), ZERO),
        taxes=sum((r.total_tax for r in payable), ZERO),
        insurance=sum((r.insurance.employee_amount for r in payable), ZERO),
        bonuses=sum((r.bonuses for r in payable), ZERO),
        deductions=sum((r.total_deductions for r in payable), ZERO),
        net_pay=sum((r.net_pay for r in payable), ZERO),
    )

    return RunPreview(
        run_id=run.run_id,
        period=run.period,
        entity=run.entity,
        status=run.status,
        employees=EmployeeSummary(
            total=len(run.employees),
            payable=len(payable),
            excluded=len(run.employees) - len(payable),
            missing_bank_details=missing_bank,
        ),
        totals=totals,
        anomalies=counts,
        flagged_employees=flagged,
        can_execute=run.status == RunStatus.LOCKED,
        needs_finance_approval=run.status == RunStatus.PENDING_FINANCE_APPROVAL,
        recommendations=_recommendations(run.status, len(flagged), missing_bank, totals.net_pay),
    )


def summarize_history(runs: list[PayrollRun]) -> list[RunSummary]:
    """One summary line per run, newest period first."""
    summaries = []
    for run in runs:
        payable = run.payable_employees
        counts = anomaly_detector.count_by_severity(anomaly_detector.detect_run(run))
        summaries.append(
            RunSummary(
                run_id=run.run_id,
                period=run.period,
                entity=run.entity,
                status=run.status,
                total_net_pay=sum((r.net_pay for r in payable), ZERO),
                employee_count=len(payable),
                total_anomalies=sum(counts.values()),
            )
        )
    summaries.sort(key=lambda s: (s.period, s.run_id), reverse=True)
    return summaries


def _recommendations(
    status: RunStatus, flagged: int, missing_bank: int, net_pay: Decimal
) -> list[str]:
    recommendations: list[str] = []

    if status == RunStatus.DRAFT:
        recommendations.append("Calculate the payroll to start the review workflow")
    elif status == RunStatus.CALCULATED:
        recommendations.append("Resolve anomalies and publish for manager review")
    elif status == RunStatus.UNDER_REVIEW:
        recommendations.append("Awaiting manager review and approval")
    elif status == RunStatus.PENDING_FINANCE_APPROVAL:
        recommendations.append("Review all exceptions before final approval")
        if missing_bank:
            recommendations.append(
                f"{missing_bank} employees missing bank details - payments will be blocked"
            )
    elif status == RunStatus.APPROVED:
        recommendations.append("Finance approved - lock the payroll before execution")
    elif status == RunStatus.LOCKED:
        recommendations.append("Payroll locked - ready to execute payments")
        recommendations.append(f"Total payout amount: {net_pay:.2f}")

    if flagged:
        recommendations.append(f"{flagged} employees have anomalies that require attention")

    if not recommendations:
        recommendations.append("No issues detected. Payroll run is healthy.")

    return recommendations
