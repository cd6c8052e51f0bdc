"""SQLAlchemy persistence for payroll runs with optimistic concurrency."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from payroll_lifecycle.errors import (
    ConcurrentModificationError,
    RunNotFoundError,
    ValidationError,
)
from payroll_lifecycle.models import EmployeeRunRow, PayrollRunRow
from payroll_lifecycle.workflow.types import (
    EmployeeRunRecord,
    Insurance,
    PaymentMethod,
    PayrollRun,
    ResolutionMarker,
    RunStatus,
    TaxLine,
)

logger = logging.getLogger(__name__)


class SqlRunRepository:
    """Loads and saves runs, one short transaction per call.

    ``save_run`` is a conditional update on the run's version column: when
    another writer saved first, zero rows match and the save is refused
    with ConcurrentModificationError. The run row and its employee records
    are written in the same transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_run(self, run_id: str) -> tuple[PayrollRun, int]:
        """Load a run with its employee records and version token."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayrollRunRow)
                .where(PayrollRunRow.run_id == run_id)
                .options(selectinload(PayrollRunRow.employees))
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise RunNotFoundError(run_id)
            return run_from_row(row), row.version

    async def save_run(self, run: PayrollRun, expected_version: int) -> int:
        """Persist a run if nobody saved it since ``expected_version``."""
        new_version = expected_version + 1
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(PayrollRunRow)
                    .where(
                        PayrollRunRow.run_id == run.run_id,
                        PayrollRunRow.version == expected_version,
                    )
                    .values(
                        status=run.status.value,
                        rejection_reason=run.rejection_reason,
                        version=new_version,
                        updated_at=func.now(),
                    )
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    existing = await session.get(PayrollRunRow, run.run_id)
                    if existing is None:
                        raise RunNotFoundError(run.run_id)
                    logger.warning(
                        "Stale save refused for run %s (expected version %d, found %d)",
                        run.run_id,
                        expected_version,
                        existing.version,
                    )
                    raise ConcurrentModificationError(run.run_id, expected_version)

                await session.execute(
                    delete(EmployeeRunRow).where(EmployeeRunRow.run_id == run.run_id)
                )
                session.add_all(record_to_row(run.run_id, record) for record in run.employees)

        return new_version

    async def create_run(self, run: PayrollRun) -> int:
        """Insert a new run at version 1."""
        row = PayrollRunRow(
            run_id=run.run_id,
            period=run.period,
            entity=run.entity,
            status=run.status.value,
            rejection_reason=run.rejection_reason,
            specialist_id=run.specialist_id,
            version=1,
        )
        row.employees = [record_to_row(run.run_id, record) for record in run.employees]

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            raise ValidationError(
                f"Payroll run {run.run_id} already exists", run_id=run.run_id
            ) from e
        return 1

    async def run_exists(self, run_id: str) -> bool:
        async with self.session_factory() as session:
            found = await session.scalar(
                select(PayrollRunRow.run_id).where(PayrollRunRow.run_id == run_id)
            )
            return found is not None

    async def list_runs(self) -> list[PayrollRun]:
        """All runs, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PayrollRunRow)
                .options(selectinload(PayrollRunRow.employees))
                .order_by(PayrollRunRow.period.desc(), PayrollRunRow.created_at.desc())
            )
            return [run_from_row(row) for row in result.scalars().all()]


def run_from_row(row: PayrollRunRow) -> PayrollRun:
    """Convert an ORM run row into the workflow's run."""
    return PayrollRun(
        run_id=row.run_id,
        period=row.period,
        entity=row.entity,
        status=RunStatus(row.status),
        employees=[record_from_row(e) for e in row.employees],
        rejection_reason=row.rejection_reason,
        specialist_id=row.specialist_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def record_from_row(row: EmployeeRunRow) -> EmployeeRunRecord:
    """Convert an ORM employee row into a workflow record."""
    return EmployeeRunRecord(
        employee_id=row.employee_id,
        employee_name=row.employee_name,
        base_salary=_money(row.base_salary),
        gross_salary=_money(row.gross_salary),
        tax_breakdown=[
            TaxLine(
                bracket=str(line.get("bracket", "")),
                rate=Decimal(str(line.get("rate", "0"))),
                amount=Decimal(str(line.get("amount", "0"))),
            )
            for line in (row.tax_breakdown or [])
        ],
        insurance=Insurance(
            employee_amount=_money(row.insurance_employee),
            employer_amount=_money(row.insurance_employer),
        ),
        penalties=_money(row.penalties),
        overtime_pay=_money(row.overtime_pay),
        bonuses=_money(row.bonuses),
        total_deductions=_money(row.total_deductions),
        net_pay=_money(row.net_pay),
        bank_account_number=row.bank_account_number,
        bank_status=row.bank_status,
        payment_method=PaymentMethod(row.payment_method),
        manager_override=bool(row.manager_override),
        historical_salary=(
            _money(row.historical_salary) if row.historical_salary is not None else None
        ),
        exceptions=row.exceptions,
        excluded=bool(row.excluded),
        resolution_marker=(
            ResolutionMarker(row.resolution_marker) if row.resolution_marker else None
        ),
    )


def record_to_row(run_id: str, record: EmployeeRunRecord) -> EmployeeRunRow:
    """Convert a workflow record into a new ORM employee row."""
    return EmployeeRunRow(
        run_id=run_id,
        employee_id=record.employee_id,
        employee_name=record.employee_name,
        base_salary=record.base_salary,
        gross_salary=record.gross_salary,
        tax_breakdown=[_tax_line_json(line) for line in record.tax_breakdown],
        insurance_employee=record.insurance.employee_amount,
        insurance_employer=record.insurance.employer_amount,
        penalties=record.penalties,
        overtime_pay=record.overtime_pay,
        bonuses=record.bonuses,
        total_deductions=record.total_deductions,
        net_pay=record.net_pay,
        bank_account_number=record.bank_account_number,
        bank_status=record.bank_status,
        payment_method=record.payment_method.value,
        manager_override=record.manager_override,
        historical_salary=record.historical_salary,
        exceptions=record.exceptions,
        excluded=record.excluded,
        resolution_marker=record.resolution_marker.value if record.resolution_marker else None,
    )


def _tax_line_json(line: TaxLine) -> dict[str, Any]:
    return {"bracket": line.bracket, "rate": str(line.rate), "amount": str(line.amount)}


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
