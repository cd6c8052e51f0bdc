"""Audit trail persistence."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_lifecycle.models import AuditEvent
from payroll_lifecycle.workflow.types import AuditEntry

logger = logging.getLogger(__name__)


class SqlAuditSink:
    """Writes audit entries to the audit_event table.

    Each entry gets its own transaction, so a failed audit write never rolls
    back the run save it describes. Failures are logged and swallowed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(
                        AuditEvent(
                            run_id=entry.run_id,
                            action=entry.action,
                            actor_id=entry.actor_id,
                            actor_role=entry.actor_role.value if entry.actor_role else None,
                            employee_id=entry.employee_id,
                            justification=entry.justification,
                            details_json=_json_safe(entry.details),
                            created_at=entry.timestamp,
                        )
                    )
        except Exception:
            logger.exception(
                "Failed to record audit entry %s for run %s", entry.action, entry.run_id
            )

    async def list_for_run(self, run_id: str) -> list[AuditEvent]:
        """Audit events of a run, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuditEvent)
                .where(AuditEvent.run_id == run_id)
                .order_by(AuditEvent.audit_event_id)
            )
            return list(result.scalars().all())


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "value"):
        return value.value
    return str(value)
