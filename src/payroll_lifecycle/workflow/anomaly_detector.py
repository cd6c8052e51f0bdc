"""Anomaly detection for employee payroll records.

Anomalies are derived, never stored. Remediation works by changing the
record itself (``manager_override``, ``payment_method``, ``excluded``,
``resolution_marker``), so the next evaluation clears the anomaly without any
separate dismissal bookkeeping.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from payroll_lifecycle.workflow.types import (
    NON_ELECTRONIC_METHODS,
    Anomaly,
    AnomalyType,
    EmployeeRunRecord,
    PayrollRun,
    Severity,
)

# Percentage increase over historical salary that counts as a spike
SALARY_SPIKE_THRESHOLD = Decimal("20")

# Legacy free-text markers meaning an exception was already remediated
RESOLVED_EXCEPTION_MARKERS = ("OVERRIDE", "DEFERRED")

# Anomaly types cleared by a manager override
OVERRIDABLE_TYPES = frozenset(
    {
        AnomalyType.SALARY_SPIKE,
        AnomalyType.MISSING_TAX_INFO,
        AnomalyType.MISSING_BANK_INFO,
    }
)


def detect(record: EmployeeRunRecord) -> list[Anomaly]:
    """Return the anomalies for one employee record.

    Rules are evaluated independently, so one record may carry several
    anomalies. Deferred records have none: they are not paid in this run.
    """
    if record.excluded:
        return []

    anomalies: list[Anomaly] = []

    if record.net_pay < 0:
        anomalies.append(
            Anomaly(
                type=AnomalyType.NEGATIVE_NET_PAY,
                severity=Severity.CRITICAL,
                message="Negative net pay detected",
                value=record.net_pay,
            )
        )

    if missing_bank_details(record):
        anomalies.append(
            Anomaly(
                type=AnomalyType.MISSING_BANK_INFO,
                severity=Severity.CRITICAL,
                message="Bank account information missing",
                value="Not provided",
            )
        )

    if not record.manager_override:
        spike = _salary_spike(record)
        if spike is not None:
            anomalies.append(spike)

        if record.gross_salary > 0 and not record.tax_breakdown:
            anomalies.append(
                Anomaly(
                    type=AnomalyType.MISSING_TAX_INFO,
                    severity=Severity.WARNING,
                    message="Tax breakdown missing for employee with positive salary",
                )
            )

    backend = _backend_exception(record, anomalies)
    if backend is not None:
        anomalies.append(backend)

    return anomalies


def detect_run(run: PayrollRun) -> dict[str, list[Anomaly]]:
    """Detect anomalies for every employee of a run, keyed by employee id."""
    return {record.employee_id: detect(record) for record in run.employees}


def count_by_severity(anomalies_by_employee: dict[str, list[Anomaly]]) -> dict[str, int]:
    """Count anomalies across a run by severity."""
    counts = {Severity.CRITICAL.value: 0, Severity.WARNING.value: 0}
    for anomalies in anomalies_by_employee.values():
        for anomaly in anomalies:
            counts[anomaly.severity.value] += 1
    return counts


def has_critical(anomalies: Iterable[Anomaly]) -> bool:
    return any(a.is_critical for a in anomalies)


def has_type(anomalies: Iterable[Anomaly], *types: AnomalyType) -> bool:
    return any(a.type in types for a in anomalies)


def flagged_employees(anomalies_by_employee: dict[str, list[Anomaly]]) -> list[str]:
    """Ids of employees with at least one anomaly."""
    return [emp_id for emp_id, anomalies in anomalies_by_employee.items() if anomalies]


def missing_bank_details(record: EmployeeRunRecord) -> bool:
    """True when an electronic payment would be blocked for lack of bank details."""
    return not _payment_overridden(record) and _bank_info_missing(record)


def _payment_overridden(record: EmployeeRunRecord) -> bool:
    return record.manager_override or record.payment_method in NON_ELECTRONIC_METHODS


def _bank_info_missing(record: EmployeeRunRecord) -> bool:
    if not record.bank_account_number or not record.bank_account_number.strip():
        return True
    return (record.bank_status or "").lower() == "missing"


def _salary_spike(record: EmployeeRunRecord) -> Anomaly | None:
    historical = record.historical_salary
    if historical is None or historical <= 0:
        return None

    change = (record.gross_salary - historical) / historical * 100
    if change <= SALARY_SPIKE_THRESHOLD:
        return None

    return Anomaly(
        type=AnomalyType.SALARY_SPIKE,
        severity=Severity.WARNING,
        message=f"Salary spike detected: {change:.1f}% increase",
        value=record.gross_salary,
        threshold=int(SALARY_SPIKE_THRESHOLD),
    )


def _backend_exception(
    record: EmployeeRunRecord, found: list[Anomaly]
) -> Anomaly | None:
    note = (record.exceptions or "").strip()
    if not note or record.resolution_marker is not None:
        return None

    upper = note.upper()
    if any(marker in upper for marker in RESOLVED_EXCEPTION_MARKERS):
        return None

    # Same issue already reported by a specific rule
    lowered = note.lower()
    if any(lowered in a.message.lower() for a in found):
        return None

    return Anomaly(
        type=AnomalyType.BACKEND_EXCEPTION,
        severity=Severity.CRITICAL,
        message=note,
        value="Server Reported",
    )
