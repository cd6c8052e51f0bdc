"""Payroll run, employee record, audit and role models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_lifecycle.models.base import Base, TimestampMixin

MONEY = Numeric(14, 2)


# ===== Payroll Runs =====


class PayrollRunRow(Base, TimestampMixin):
    """A payroll run header. ``version`` is the optimistic concurrency token."""

    __tablename__ = "payroll_run"

    run_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    period: Mapped[date] = mapped_column(Date, nullable=False)
    entity: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    specialist_id: Mapped[str | None] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'CALCULATED', 'UNDER_REVIEW', "
            "'PENDING_FINANCE_APPROVAL', 'APPROVED', 'LOCKED', 'PAID')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("version >= 1", name="payroll_run_version_check"),
    )

    # Relationships
    employees: Mapped[list[EmployeeRunRow]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="EmployeeRunRow.employee_id",
    )


class EmployeeRunRow(Base):
    """One employee's computed pay within a run."""

    __tablename__ = "payroll_run_employee"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("payroll_run.run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[str] = mapped_column(String, nullable=False)
    employee_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    gross_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    insurance_employee: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    insurance_employer: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    penalties: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    overtime_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    bonuses: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    net_pay: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    bank_account_number: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_status: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_method: Mapped[str] = mapped_column(String, nullable=False, default="BANK_TRANSFER")
    manager_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    historical_salary: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    exceptions: Mapped[str | None] = mapped_column(Text, nullable=True)
    excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_marker: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("run_id", "employee_id", name="payroll_run_employee_unique"),
        CheckConstraint(
            "payment_method IN ('BANK_TRANSFER', 'CHEQUE', 'CASH', 'WIRE_TRANSFER')",
            name="payroll_run_employee_payment_method_check",
        ),
        CheckConstraint(
            "resolution_marker IS NULL OR resolution_marker IN ('OVERRIDE', 'DEFERRED')",
            name="payroll_run_employee_marker_check",
        ),
    )

    # Relationships
    run: Mapped[PayrollRunRow] = relationship(back_populates="employees")


# ===== Audit =====


class AuditEvent(Base):
    """Audit trail entry for transitions and resolutions.

    Not foreign-keyed to the run so the trail outlives the run row.
    """

    __tablename__ = "audit_event"

    audit_event_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String, nullable=True)
    employee_id: Mapped[str | None] = mapped_column(String, nullable=True)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


# ===== Identity =====


class ActorRoleAssignment(Base, TimestampMixin):
    """Role granted to an actor."""

    __tablename__ = "actor_role"

    actor_id: Mapped[str] = mapped_column(String, primary_key=True)
    role: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "role IN ('SPECIALIST', 'MANAGER', 'FINANCE', 'ADMIN')",
            name="actor_role_role_check",
        ),
    )
