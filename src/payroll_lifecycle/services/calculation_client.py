"""HTTP client for the payroll calculation service."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from payroll_lifecycle.errors import UpstreamError
from payroll_lifecycle.workflow.types import (
    EmployeeRunRecord,
    Insurance,
    PaymentMethod,
    TaxLine,
)

logger = logging.getLogger(__name__)


class HttpCalculationClient:
    """Fetches computed employee records for a run.

    The calculation service owns salary, tax and insurance math; this client
    only moves its output into workflow records.
    """

    ENDPOINT = "/api/v1/payroll-runs/{run_id}/compute"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def compute_payroll(self, run_id: str) -> list[EmployeeRunRecord]:
        url = f"{self.base_url}{self.ENDPOINT.format(run_id=run_id)}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise UpstreamError(
                f"Calculation service timed out for run {run_id}", run_id=run_id
            ) from e
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Calculation service returned {e.response.status_code} for run {run_id}",
                run_id=run_id,
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(
                f"Calculation service unreachable for run {run_id}: {e}", run_id=run_id
            ) from e

        employees = data.get("employees", []) if isinstance(data, dict) else data
        try:
            records = [record_from_payload(item) for item in employees]
        except (KeyError, ValueError, InvalidOperation) as e:
            logger.exception("Malformed calculation payload for run %s", run_id)
            raise UpstreamError(
                f"Calculation service returned malformed data for run {run_id}",
                run_id=run_id,
            ) from e

        logger.info("Calculation returned %d record(s) for run %s", len(records), run_id)
        return records


def record_from_payload(item: dict[str, Any]) -> EmployeeRunRecord:
    """Build a record from one employee entry of a calculation response."""
    insurance = item.get("insurance") or {}
    historical = item.get("historical_salary")
    return EmployeeRunRecord(
        employee_id=str(item["employee_id"]),
        employee_name=item.get("employee_name") or "",
        base_salary=_decimal(item.get("base_salary")),
        gross_salary=_decimal(item.get("gross_salary")),
        tax_breakdown=[
            TaxLine(
                bracket=str(line.get("bracket", "")),
                rate=_decimal(line.get("rate")),
                amount=_decimal(line.get("amount")),
            )
            for line in item.get("tax_breakdown") or []
        ],
        insurance=Insurance(
            employee_amount=_decimal(insurance.get("employee_amount")),
            employer_amount=_decimal(insurance.get("employer_amount")),
        ),
        penalties=_decimal(item.get("penalties")),
        overtime_pay=_decimal(item.get("overtime_pay")),
        bonuses=_decimal(item.get("bonuses")),
        total_deductions=_decimal(item.get("total_deductions")),
        net_pay=_decimal(item.get("net_pay")),
        bank_account_number=item.get("bank_account_number"),
        bank_status=item.get("bank_status"),
        payment_method=PaymentMethod(item.get("payment_method") or PaymentMethod.BANK_TRANSFER.value),
        historical_salary=_decimal(historical) if historical is not None else None,
        exceptions=item.get("exceptions"),
    )


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))
