"""Persistence, collaborator clients and orchestration for payroll runs."""

from payroll_lifecycle.services.audit import SqlAuditSink
from payroll_lifecycle.services.calculation_client import HttpCalculationClient
from payroll_lifecycle.services.distribution_client import HttpDistributionClient
from payroll_lifecycle.services.identity import SqlIdentityProvider
from payroll_lifecycle.services.run_insights import build_preview, summarize_history
from payroll_lifecycle.services.run_orchestrator import RunOrchestrator, RunView
from payroll_lifecycle.services.run_repository import SqlRunRepository

__all__ = [
    "HttpCalculationClient",
    "HttpDistributionClient",
    "RunOrchestrator",
    "RunView",
    "SqlAuditSink",
    "SqlIdentityProvider",
    "SqlRunRepository",
    "build_preview",
    "summarize_history",
]
