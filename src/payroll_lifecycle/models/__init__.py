"""SQLAlchemy ORM models."""

from payroll_lifecycle.models.base import Base, TimestampMixin
from payroll_lifecycle.models.payroll import (
    ActorRoleAssignment,
    AuditEvent,
    EmployeeRunRow,
    PayrollRunRow,
)

__all__ = [
    "ActorRoleAssignment",
    "AuditEvent",
    "Base",
    "EmployeeRunRow",
    "PayrollRunRow",
    "TimestampMixin",
]
