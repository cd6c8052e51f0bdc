"""Payroll run API endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, status

from payroll_lifecycle.api.dependencies import ActorId, Orchestrator
from payroll_lifecycle.api.schemas import (
    AnomalyResponse,
    EmployeeRecordResponse,
    ErrorResponse,
    ExecuteResponse,
    InitiateRunRequest,
    PayrollRunListResponse,
    PayrollRunResponse,
    PayrollRunSummaryResponse,
    PreviewResponse,
    ResolveAnomaliesRequest,
    ResolveAnomaliesResponse,
    ReviewRequest,
    UnfreezeRequest,
)
from payroll_lifecycle.services import RunView
from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.types import Resolution

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

RunId = Annotated[str, Path(min_length=1, max_length=32)]

TRANSITION_ERRORS = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def run_response(view: RunView) -> PayrollRunResponse:
    """Render a run with each employee's derived anomalies."""
    run = view.run
    employees = []
    for record in run.employees:
        item = EmployeeRecordResponse.model_validate(record)
        item.anomalies = [
            AnomalyResponse.model_validate(a) for a in view.anomalies.get(record.employee_id, [])
        ]
        employees.append(item)

    return PayrollRunResponse(
        run_id=run.run_id,
        period=run.period,
        entity=run.entity,
        status=run.status,
        version=view.version,
        rejection_reason=run.rejection_reason,
        specialist_id=run.specialist_id,
        created_at=run.created_at,
        updated_at=run.updated_at,
        anomaly_counts=anomaly_detector.count_by_severity(view.anomalies),
        employees=employees,
    )


# ============================================================================
# Payroll Run Queries
# ============================================================================


@router.post(
    "",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def initiate_payroll_run(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    payload: InitiateRunRequest,
) -> PayrollRunResponse:
    """Create a DRAFT payroll run for a month."""
    view = await orchestrator.initiate_run(actor_id, payload.year, payload.month, payload.entity)
    return run_response(view)


@router.get("", response_model=PayrollRunListResponse)
async def list_payroll_runs(orchestrator: Orchestrator) -> PayrollRunListResponse:
    """Run history, newest period first."""
    summaries = await orchestrator.list_runs()
    return PayrollRunListResponse(
        items=[PayrollRunSummaryResponse.model_validate(s) for s in summaries],
        total=len(summaries),
    )


@router.get(
    "/{run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(orchestrator: Orchestrator, run_id: RunId) -> PayrollRunResponse:
    """Get a payroll run with its employees and anomalies."""
    return run_response(await orchestrator.get_run(run_id))


@router.get(
    "/{run_id}/preview",
    response_model=PreviewResponse,
    responses={404: {"model": ErrorResponse}},
)
async def preview_payroll_run(orchestrator: Orchestrator, run_id: RunId) -> PreviewResponse:
    """Totals, anomaly counts and recommendations for a run."""
    return PreviewResponse.model_validate(await orchestrator.preview(run_id))


# ============================================================================
# Payroll Run State Transitions
# ============================================================================


@router.post("/{run_id}/calculate", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS)
async def calculate_payroll_run(
    orchestrator: Orchestrator, actor_id: ActorId, run_id: RunId
) -> PayrollRunResponse:
    return run_response(await orchestrator.calculate(run_id, actor_id))


@router.post("/{run_id}/publish", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS)
async def publish_payroll_run(
    orchestrator: Orchestrator, actor_id: ActorId, run_id: RunId
) -> PayrollRunResponse:
    """Publish a calculated run for manager review. Blocked by critical anomalies."""
    return run_response(await orchestrator.publish(run_id, actor_id))


@router.post(
    "/{run_id}/manager-review", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS
)
async def manager_review_payroll_run(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    run_id: RunId,
    payload: ReviewRequest,
) -> PayrollRunResponse:
    view = await orchestrator.manager_review(run_id, actor_id, payload.decision, payload.comment)
    return run_response(view)


@router.post(
    "/{run_id}/finance-review", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS
)
async def finance_review_payroll_run(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    run_id: RunId,
    payload: ReviewRequest,
) -> PayrollRunResponse:
    view = await orchestrator.finance_review(run_id, actor_id, payload.decision, payload.comment)
    return run_response(view)


@router.post("/{run_id}/lock", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS)
async def lock_payroll_run(
    orchestrator: Orchestrator, actor_id: ActorId, run_id: RunId
) -> PayrollRunResponse:
    return run_response(await orchestrator.lock(run_id, actor_id))


@router.post("/{run_id}/unfreeze", response_model=PayrollRunResponse, responses=TRANSITION_ERRORS)
async def unfreeze_payroll_run(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    run_id: RunId,
    payload: UnfreezeRequest,
) -> PayrollRunResponse:
    """Reopen a locked run for review. Requires a 20+ character justification."""
    return run_response(await orchestrator.unfreeze(run_id, actor_id, payload.justification))


@router.post(
    "/{run_id}/resolve-anomalies",
    response_model=ResolveAnomaliesResponse,
    responses=TRANSITION_ERRORS,
)
async def resolve_payroll_run_anomalies(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    run_id: RunId,
    payload: ResolveAnomaliesRequest,
) -> ResolveAnomaliesResponse:
    """Apply a batch of manager resolutions. All-or-nothing."""
    resolutions = [
        Resolution(
            employee_id=item.employee_id,
            action=item.action,
            justification=item.justification,
            override_payment_method=item.override_payment_method,
        )
        for item in payload.resolutions
    ]
    view = await orchestrator.resolve_anomalies(run_id, actor_id, resolutions)
    outcome = view.resolution
    return ResolveAnomaliesResponse(
        run=run_response(view),
        rejected=outcome.rejected,
        recalculated=outcome.recalculated,
        deferred=outcome.deferred,
        overridden=outcome.overridden,
        skipped=outcome.skipped,
    )


@router.post("/{run_id}/execute", response_model=ExecuteResponse, responses=TRANSITION_ERRORS)
async def execute_payroll_run(
    orchestrator: Orchestrator, actor_id: ActorId, run_id: RunId
) -> ExecuteResponse:
    """Distribute pay and payslips for a locked run."""
    view = await orchestrator.execute(run_id, actor_id)
    return ExecuteResponse(run=run_response(view), payslips_distributed=view.payslips_distributed)
