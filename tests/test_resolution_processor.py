"""Tests for manager anomaly resolution."""

import copy
from decimal import Decimal

import pytest

from payroll_lifecycle.errors import (
    IncompatibleActionError,
    InvalidJustificationError,
    InvalidTransitionError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from payroll_lifecycle.workflow import anomaly_detector
from payroll_lifecycle.workflow.resolution_processor import (
    ResolutionProcessor,
    merge_recalculated,
)
from payroll_lifecycle.workflow.types import (
    PaymentMethod,
    Resolution,
    ResolutionAction,
    ResolutionMarker,
    Role,
    RunStatus,
)

pytestmark = pytest.mark.asyncio

JUSTIFICATION = "Employee confirmed details with HR today"


@pytest.fixture
def processor(calculation) -> ResolutionProcessor:
    return ResolutionProcessor(calculation, calculation_timeout=1.0)


def override(employee_id, method=PaymentMethod.CHEQUE, justification=JUSTIFICATION):
    return Resolution(
        employee_id=employee_id,
        action=ResolutionAction.OVERRIDE_PAYMENT_METHOD,
        justification=justification,
        override_payment_method=method,
    )


def resolution(employee_id, action, justification=JUSTIFICATION):
    return Resolution(employee_id=employee_id, action=action, justification=justification)


class TestValidation:
    """The whole batch is checked before anything is applied."""

    async def test_only_managers_resolve(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(bank_account_number="")])

        for role in (Role.SPECIALIST, Role.FINANCE, Role.ADMIN):
            with pytest.raises(UnauthorizedError):
                await processor.resolve(run, [override("EMP-001")], role, "someone")

    async def test_justification_boundary(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(bank_account_number="")])

        with pytest.raises(InvalidJustificationError) as exc_info:
            await processor.resolve(
                run, [override("EMP-001", justification="a" * 19)], Role.MANAGER, "mgr-001"
            )
        assert exc_info.value.employee_id == "EMP-001"
        assert exc_info.value.actual_length == 19

        outcome = await processor.resolve(
            run, [override("EMP-001", justification="a" * 20)], Role.MANAGER, "mgr-001"
        )
        assert outcome.overridden == ["EMP-001"]

    async def test_whitespace_does_not_count(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(bank_account_number="")])

        with pytest.raises(InvalidJustificationError):
            await processor.resolve(
                run,
                [override("EMP-001", justification="  " + "a" * 19 + "    ")],
                Role.MANAGER,
                "mgr-001",
            )

    async def test_unknown_employee(self, processor, test_data):
        run = test_data.run()

        with pytest.raises(ValidationError) as exc_info:
            await processor.resolve(run, [override("EMP-404")], Role.MANAGER, "mgr-001")

        assert exc_info.value.employee_id == "EMP-404"

    async def test_duplicate_employee(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(bank_account_number="")])

        with pytest.raises(ValidationError):
            await processor.resolve(
                run,
                [
                    override("EMP-001"),
                    resolution("EMP-001", ResolutionAction.DEFER_TO_NEXT_RUN),
                ],
                Role.MANAGER,
                "mgr-001",
            )

    async def test_empty_batch(self, processor, test_data):
        with pytest.raises(ValidationError):
            await processor.resolve(test_data.run(), [], Role.MANAGER, "mgr-001")

    async def test_status_must_allow_record_changes(self, processor, test_data):
        for status in (RunStatus.DRAFT, RunStatus.PENDING_FINANCE_APPROVAL, RunStatus.LOCKED):
            run = test_data.run(status=status, employees=[test_data.record(bank_account_number="")])
            with pytest.raises(InvalidTransitionError) as exc_info:
                await processor.resolve(run, [override("EMP-001")], Role.MANAGER, "mgr-001")
            assert exc_info.value.event == "resolveAnomalies"


class TestOverridePaymentMethod:
    """Switching the payment channel."""

    async def test_missing_bank_resolved_by_cheque(self, processor, test_data):
        run = test_data.run(
            employees=[test_data.record(bank_account_number="", manager_override=False)]
        )

        outcome = await processor.resolve(run, [override("EMP-001")], Role.MANAGER, "mgr-001")

        record = outcome.run.find_employee("EMP-001")
        assert anomaly_detector.detect(record) == []
        assert record.payment_method == PaymentMethod.CHEQUE
        assert record.manager_override is True
        assert record.resolution_marker == ResolutionMarker.OVERRIDE
        assert record.exceptions.startswith("PAYMENT METHOD OVERRIDE by Manager: CHEQUE - ")

    async def test_rejected_for_negative_net_pay(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(net_pay=Decimal("-50"))])

        with pytest.raises(IncompatibleActionError) as exc_info:
            await processor.resolve(run, [override("EMP-001")], Role.MANAGER, "mgr-001")

        assert exc_info.value.details["anomalies"] == ["NEGATIVE_NET_PAY"]

    async def test_rejected_for_missing_tax_info(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(tax_breakdown=[])])

        with pytest.raises(IncompatibleActionError):
            await processor.resolve(run, [override("EMP-001")], Role.MANAGER, "mgr-001")

    async def test_requires_non_electronic_or_wire_method(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(bank_account_number="")])

        for method in (None, PaymentMethod.BANK_TRANSFER):
            with pytest.raises(ValidationError):
                await processor.resolve(
                    run, [override("EMP-001", method=method)], Role.MANAGER, "mgr-001"
                )

    async def test_override_clears_salary_spike(self, processor, test_data):
        run = test_data.run(employees=[test_data.record(historical_salary=Decimal("1000"))])

        outcome = await processor.resolve(
            run,
            [override("EMP-001", method=PaymentMethod.WIRE_TRANSFER)],
            Role.MANAGER,
            "mgr-001",
        )

        assert anomaly_detector.detect(outcome.run.find_employee("EMP-001")) == []


class TestDeferAndReject:
    """Deferral and whole-run rejection."""

    async def test_defer_excludes_employee(self, processor, test_data):
        run = test_data.run(
            employees=[
                test_data.record("EMP-001", net_pay=Decimal("-50")),
                test_data.record("EMP-002"),
            ]
        )

        outcome = await processor.resolve(
            run,
            [resolution("EMP-001", ResolutionAction.DEFER_TO_NEXT_RUN)],
            Role.MANAGER,
            "mgr-001",
        )

        record = outcome.run.find_employee("EMP-001")
        assert record.excluded is True
        assert record.resolution_marker == ResolutionMarker.DEFERRED
        assert "DEFERRED TO NEXT RUN by Manager" in record.exceptions
        assert [r.employee_id for r in outcome.run.payable_employees] == ["EMP-002"]
        assert anomaly_detector.detect(record) == []
        assert outcome.deferred == ["EMP-001"]

    async def test_reject_short_circuits_batch(self, processor, calculation, test_data):
        run = test_data.run(
            status=RunStatus.UNDER_REVIEW,
            employees=[
                test_data.record("EMP-001", net_pay=Decimal("-50")),
                test_data.record("EMP-002", bank_account_number=""),
                test_data.record("EMP-003", tax_breakdown=[]),
            ],
        )

        outcome = await processor.resolve(
            run,
            [
                resolution("EMP-001", ResolutionAction.REJECT_PAYROLL),
                override("EMP-002"),
                resolution("EMP-003", ResolutionAction.RE_CALCULATE),
            ],
            Role.MANAGER,
            "mgr-001",
        )

        assert outcome.rejected is True
        assert outcome.run.status == RunStatus.DRAFT
        assert outcome.run.rejection_reason == JUSTIFICATION
        assert outcome.skipped == ["EMP-002", "EMP-003"]
        assert outcome.run.find_employee("EMP-002").manager_override is False
        assert calculation.calls == []

    async def test_reject_from_calculated(self, processor, test_data):
        run = test_data.run(status=RunStatus.CALCULATED)

        outcome = await processor.resolve(
            run,
            [resolution("EMP-001", ResolutionAction.REJECT_PAYROLL)],
            Role.MANAGER,
            "mgr-001",
        )

        assert outcome.run.status == RunStatus.DRAFT


class TestRecalculation:
    """RE_CALCULATE runs once, after the other actions."""

    async def test_recalculates_once_and_keeps_remediation(
        self, processor, calculation, test_data
    ):
        run = test_data.run(
            employees=[
                test_data.record("EMP-001", net_pay=Decimal("-50")),
                test_data.record("EMP-002", tax_breakdown=[]),
                test_data.record("EMP-003", bank_account_number=""),
            ]
        )
        calculation.records = [
            test_data.record("EMP-001", net_pay=Decimal("-75")),
            test_data.record("EMP-002"),
            test_data.record("EMP-003", bank_account_number=""),
        ]

        outcome = await processor.resolve(
            run,
            [
                resolution("EMP-001", ResolutionAction.DEFER_TO_NEXT_RUN),
                resolution("EMP-002", ResolutionAction.RE_CALCULATE),
                override("EMP-003"),
            ],
            Role.MANAGER,
            "mgr-001",
        )

        assert calculation.calls == ["PR-2025-JAN"]
        assert outcome.recalculated is True

        deferred = outcome.run.find_employee("EMP-001")
        assert deferred.net_pay == Decimal("-75")
        assert deferred.excluded is True
        assert deferred.resolution_marker == ResolutionMarker.DEFERRED

        overridden = outcome.run.find_employee("EMP-003")
        assert overridden.payment_method == PaymentMethod.CHEQUE
        assert overridden.manager_override is True

        assert anomaly_detector.flagged_employees(anomaly_detector.detect_run(outcome.run)) == []

    async def test_upstream_failure_leaves_run_untouched(
        self, processor, calculation, test_data
    ):
        run = test_data.run(
            employees=[
                test_data.record("EMP-001", net_pay=Decimal("-50")),
                test_data.record("EMP-002", tax_breakdown=[]),
            ]
        )
        before = copy.deepcopy(run)
        calculation.error = RuntimeError("connection reset")

        with pytest.raises(UpstreamError) as exc_info:
            await processor.resolve(
                run,
                [
                    resolution("EMP-001", ResolutionAction.DEFER_TO_NEXT_RUN),
                    resolution("EMP-002", ResolutionAction.RE_CALCULATE),
                ],
                Role.MANAGER,
                "mgr-001",
            )

        assert exc_info.value.retryable is True
        assert run == before

    async def test_timeout_is_retryable(self, calculation, test_data):
        calculation.delay = 0.5
        processor = ResolutionProcessor(calculation, calculation_timeout=0.01)
        run = test_data.run(employees=[test_data.record(tax_breakdown=[])])

        with pytest.raises(UpstreamError) as exc_info:
            await processor.resolve(
                run,
                [resolution("EMP-001", ResolutionAction.RE_CALCULATE)],
                Role.MANAGER,
                "mgr-001",
            )

        assert exc_info.value.retryable is True

    async def test_merge_takes_fresh_values(self, test_data):
        current = [
            test_data.record(
                "EMP-001",
                excluded=True,
                resolution_marker=ResolutionMarker.DEFERRED,
                exceptions="DEFERRED TO NEXT RUN by Manager: pending contract",
            )
        ]
        fresh = [
            test_data.record("EMP-001", net_pay=Decimal("123.45")),
            test_data.record("EMP-009"),
        ]

        merged = merge_recalculated(current, fresh)

        assert [r.employee_id for r in merged] == ["EMP-001", "EMP-009"]
        assert merged[0].net_pay == Decimal("123.45")
        assert merged[0].excluded is True
        assert merged[0].exceptions.startswith("DEFERRED TO NEXT RUN")
        assert merged[1].excluded is False

    async def test_recalculation_keeps_employees_missing_from_response(
        self, processor, calculation, test_data
    ):
        run = test_data.run(
            employees=[
                test_data.record("EMP-001", tax_breakdown=[]),
                test_data.record("EMP-002", net_pay=Decimal("-50")),
            ]
        )
        calculation.records = [test_data.record("EMP-001")]

        outcome = await processor.resolve(
            run,
            [
                resolution("EMP-002", ResolutionAction.DEFER_TO_NEXT_RUN),
                resolution("EMP-001", ResolutionAction.RE_CALCULATE),
            ],
            Role.MANAGER,
            "mgr-001",
        )

        assert [r.employee_id for r in outcome.run.employees] == ["EMP-001", "EMP-002"]
        deferred = outcome.run.find_employee("EMP-002")
        assert deferred.excluded is True
        assert deferred.resolution_marker == ResolutionMarker.DEFERRED
        assert deferred.exceptions.startswith("DEFERRED TO NEXT RUN")
        assert outcome.run.find_employee("EMP-001").tax_breakdown

    async def test_merge_keeps_current_order(self, test_data):
        current = [test_data.record("EMP-003"), test_data.record("EMP-001")]
        fresh = [
            test_data.record("EMP-004"),
            test_data.record("EMP-001", net_pay=Decimal("10.00")),
        ]

        merged = merge_recalculated(current, fresh)

        assert [r.employee_id for r in merged] == ["EMP-003", "EMP-001", "EMP-004"]
        assert merged[0] is current[0]
        assert merged[1].net_pay == Decimal("10.00")


class TestAuditEntries:
    """One audit entry per resolution, whatever happened."""

    async def test_applied_and_skipped(self, processor, test_data):
        run = test_data.run(
            employees=[
                test_data.record("EMP-001", bank_account_number=""),
                test_data.record("EMP-002", net_pay=Decimal("-50")),
                test_data.record("EMP-003", tax_breakdown=[]),
            ]
        )

        outcome = await processor.resolve(
            run,
            [
                override("EMP-001"),
                resolution("EMP-002", ResolutionAction.REJECT_PAYROLL),
                resolution("EMP-003", ResolutionAction.DEFER_TO_NEXT_RUN),
            ],
            Role.MANAGER,
            "mgr-001",
        )

        entries = outcome.audit_entries
        assert [e.employee_id for e in entries] == ["EMP-001", "EMP-002", "EMP-003"]
        assert [e.details["outcome"] for e in entries] == ["applied", "applied", "skipped"]
        assert entries[0].action == "resolution:OVERRIDE_PAYMENT_METHOD"
        assert entries[0].actor_id == "mgr-001"
        assert entries[0].actor_role == Role.MANAGER
        assert entries[0].justification == JUSTIFICATION
        assert entries[0].details["override_payment_method"] == "CHEQUE"
        assert entries[0].details["anomalies"][0]["type"] == "MISSING_BANK_INFO"

        # Earlier actions stay on the rejected run, later ones never apply
        assert outcome.run.status == RunStatus.DRAFT
        assert outcome.run.find_employee("EMP-001").payment_method == PaymentMethod.CHEQUE
        assert outcome.run.find_employee("EMP-003").excluded is False

    async def test_failed_batch_entries(self, test_data):
        run = test_data.run(employees=[test_data.record(net_pay=Decimal("-50"))])
        error = IncompatibleActionError("nope", run_id=run.run_id)

        entries = ResolutionProcessor.audit_entries(
            run, [override("EMP-001")], "mgr-001", Role.MANAGER, error=error
        )

        assert len(entries) == 1
        assert entries[0].details["outcome"] == "failed"
        assert entries[0].details["error"] == "nope"
        assert entries[0].details["anomalies"][0]["type"] == "NEGATIVE_NET_PAY"
