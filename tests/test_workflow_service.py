"""
Unit tests for Workflow Service
Tests stage changes, assignments, history and notifications
"""

from datetime import date, timedelta
from unittest.mock import Mock

import pytest

from filing_tracker.core.exceptions import (
    DuplicatePeriodError,
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    UnknownStageError,
    WorkflowNotFoundError,
)
from filing_tracker.models.workflow import HistoryAction, WorkflowKind
from filing_tracker.schemas.workflow import CreateWorkflowRequest, UpdateWorkflowRequest
from filing_tracker.services.notification_service import LoggingNotificationService
from filing_tracker.services.workflow_service import WorkflowService


class TestCreateWorkflow:
    """Workflow creation"""

    @pytest.mark.asyncio
    async def test_create_non_ltd_for_tax_year(self, service, repository, staff):
        request = CreateWorkflowRequest(client_id="client-sole", kind=WorkflowKind.NON_LTD, tax_year=2024)

        workflow = await service.create_workflow(request, staff)

        assert workflow.period_start == date(2024, 4, 6)
        assert workflow.period_end == date(2025, 4, 5)
        assert workflow.filing_due_date == date(2026, 1, 5)
        assert workflow.current_stage == "WAITING_FOR_YEAR_END"
        assert workflow.assigned_user_id is None
        assert workflow.is_completed is False
        assert workflow.milestones == {}

        history = repository.list_history(workflow.id)
        assert len(history) == 1
        assert history[0].action == HistoryAction.CREATED
        assert history[0].from_stage is None
        assert history[0].to_stage == "WAITING_FOR_YEAR_END"

    @pytest.mark.asyncio
    async def test_non_ltd_defaults_to_current_tax_year(self, service, staff):
        workflow = await service.create_workflow(
            CreateWorkflowRequest(client_id="client-sole", kind=WorkflowKind.NON_LTD), staff
        )
        assert workflow.period_end == date(2026, 4, 5)

    @pytest.mark.asyncio
    async def test_create_ltd(self, service, ltd_request, staff, notifier):
        workflow = await service.create_workflow(ltd_request, staff)

        assert workflow.period_start == date(2023, 4, 1)
        assert workflow.accounts_due_date == date(2024, 12, 31)
        assert workflow.ct_filing_due_date == date(2025, 3, 31)
        assert workflow.ct_payment_due_date == date(2025, 1, 1)
        assert workflow.assigned_user_id == "user-anna"
        notifier.notify_assignment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_vat_from_reference_date(self, service, staff):
        workflow = await service.create_workflow(
            CreateWorkflowRequest(
                client_id="client-acme",
                kind=WorkflowKind.VAT,
                quarter_group="2_5_8_11",
                reference_date=date(2025, 6, 2),
            ),
            staff,
        )
        assert workflow.period_start == date(2025, 6, 1)
        assert workflow.period_end == date(2025, 8, 31)
        assert workflow.filing_due_date == date(2025, 9, 30)
        assert workflow.current_stage == "PAPERWORK_PENDING_CHASE"

    @pytest.mark.asyncio
    async def test_duplicate_period_is_rejected(self, service, repository, ltd_request, staff):
        await service.create_workflow(ltd_request, staff)

        with pytest.raises(DuplicatePeriodError):
            await service.create_workflow(ltd_request, staff)
        assert repository.count() == 1

    @pytest.mark.asyncio
    async def test_vat_requires_quarter_group(self, service, staff):
        with pytest.raises(InvalidWorkflowRequestError):
            await service.create_workflow(CreateWorkflowRequest(client_id="c", kind=WorkflowKind.VAT), staff)

    @pytest.mark.asyncio
    async def test_ltd_requires_period_end(self, service, staff):
        with pytest.raises(InvalidWorkflowRequestError):
            await service.create_workflow(CreateWorkflowRequest(client_id="c", kind=WorkflowKind.LTD), staff)


class TestUpdateWorkflow:
    """Stage and assignment changes"""

    @pytest.mark.asyncio
    async def test_advance_one_stage(self, service, repository, ltd_request, staff, clock, notifier):
        created = await service.create_workflow(ltd_request, staff)
        clock.now = clock.now + timedelta(days=3)

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_PENDING_CHASE", notes="Year end passed"),
            staff,
        )

        workflow = result.workflow
        assert workflow.current_stage == "PAPERWORK_PENDING_CHASE"
        assert workflow.version == created.version + 1
        assert workflow.milestone_for("PAPERWORK_PENDING_CHASE").reached_at == clock.now

        entry = result.history[0]
        assert entry.action == HistoryAction.STAGE_CHANGED
        assert entry.from_stage == "WAITING_FOR_YEAR_END"
        assert entry.to_stage == "PAPERWORK_PENDING_CHASE"
        assert entry.days_in_previous_stage == 3
        assert entry.notes == "Year end passed"
        assert len(repository.list_history(created.id)) == 2

        event = notifier.notify_stage_change.await_args.args[0]
        assert event.from_stage == "WAITING_FOR_YEAR_END"
        assert event.to_stage == "PAPERWORK_PENDING_CHASE"

    @pytest.mark.asyncio
    async def test_rejected_skip_writes_nothing(self, service, repository, ltd_request, staff, notifier, activity):
        created = await service.create_workflow(ltd_request, staff)
        activity.reset_mock()
        notifier.reset_mock()

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.update_workflow(
                UpdateWorkflowRequest(workflow_id=created.id, new_stage="WORK_IN_PROGRESS", assignee_id="user-mo"),
                staff,
            )

        assert exc_info.value.skipped_stages == ["PAPERWORK_PENDING_CHASE", "PAPERWORK_RECEIVED"]
        stored = repository.get(created.id)
        assert stored.current_stage == "WAITING_FOR_YEAR_END"
        assert stored.assigned_user_id == "user-anna"
        assert stored.version == created.version
        assert len(repository.list_history(created.id)) == 1
        activity.log_event.assert_not_called()
        notifier.notify_stage_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_undo_with_override(self, service, repository, ltd_request, staff, manager):
        created = await service.create_workflow(ltd_request, staff)
        for stage in ("PAPERWORK_PENDING_CHASE", "PAPERWORK_RECEIVED", "WORK_IN_PROGRESS"):
            await service.update_workflow(UpdateWorkflowRequest(workflow_id=created.id, new_stage=stage), staff)

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_PENDING_CHASE", allow_override=True),
            manager,
        )

        assert result.history[0].action == HistoryAction.STAGE_UNDONE
        assert result.history[0].actor_user_id == "user-mo"
        assert result.workflow.milestone_for("PAPERWORK_RECEIVED") is None
        assert result.workflow.milestone_for("WORK_IN_PROGRESS") is None
        assert result.workflow.milestone_for("PAPERWORK_PENDING_CHASE").actor_user_id == "user-mo"

    @pytest.mark.asyncio
    async def test_filed_workflow_rejects_self_filing_without_override(self, service, repository, ltd_request, staff):
        created = await service.create_workflow(ltd_request, staff)
        await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="FILED_TO_HMRC", allow_override=True),
            staff,
        )
        filed = repository.get(created.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.update_workflow(
                UpdateWorkflowRequest(workflow_id=created.id, new_stage="CLIENT_SELF_FILING"),
                staff,
            )

        assert exc_info.value.skipped_stages == ["FILED_TO_HMRC"]
        stored = repository.get(created.id)
        assert stored.current_stage == "FILED_TO_HMRC"
        assert stored.version == filed.version
        assert repository.count() == 2

    @pytest.mark.asyncio
    async def test_assignment_only_update(self, service, repository, ltd_request, staff, manager, notifier, activity):
        created = await service.create_workflow(ltd_request, staff)
        notifier.reset_mock()

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, assignee_id="user-mo"), manager
        )

        assert result.workflow.assigned_user_id == "user-mo"
        assert result.workflow.current_stage == "WAITING_FOR_YEAR_END"
        entry = result.history[0]
        assert entry.action == HistoryAction.ASSIGNMENT_CHANGED
        assert entry.from_stage == entry.to_stage == "WAITING_FOR_YEAR_END"
        assert entry.notes == "Reassigned from user-anna to user-mo"
        assert result.rollover is None
        notifier.notify_stage_change.assert_not_called()
        notifier.notify_assignment.assert_awaited_once()
        assert activity.log_event.call_args.args[0] == "WORKFLOW_ASSIGNED"

    @pytest.mark.asyncio
    async def test_explicit_null_unassigns(self, service, ltd_request, staff, activity):
        created = await service.create_workflow(ltd_request, staff)

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, assignee_id=None), staff
        )

        assert result.workflow.assigned_user_id is None
        assert result.history[0].notes == "Unassigned from user-anna"
        assert activity.log_event.call_args.args[0] == "WORKFLOW_UNASSIGNED"

    @pytest.mark.asyncio
    async def test_omitted_assignee_is_kept(self, service, ltd_request, staff):
        created = await service.create_workflow(ltd_request, staff)

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_PENDING_CHASE"), staff
        )

        assert result.workflow.assigned_user_id == "user-anna"

    @pytest.mark.asyncio
    async def test_same_stage_is_recorded_without_milestones(self, service, ltd_request, staff):
        created = await service.create_workflow(ltd_request, staff)

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="WAITING_FOR_YEAR_END"), staff
        )

        assert result.workflow.milestones == {}
        assert result.history[0].action == HistoryAction.ASSIGNMENT_CHANGED
        assert result.history[0].notes == "Assignment unchanged"

    @pytest.mark.asyncio
    async def test_unknown_stage(self, service, staff):
        created = await service.create_workflow(
            CreateWorkflowRequest(client_id="client-sole", kind=WorkflowKind.NON_LTD, tax_year=2024), staff
        )

        with pytest.raises(UnknownStageError):
            await service.update_workflow(
                UpdateWorkflowRequest(workflow_id=created.id, new_stage="FILED_TO_COMPANIES_HOUSE", allow_override=True),
                staff,
            )

    @pytest.mark.asyncio
    async def test_missing_workflow(self, service, staff):
        with pytest.raises(WorkflowNotFoundError):
            await service.update_workflow(UpdateWorkflowRequest(workflow_id="nope"), staff)

    @pytest.mark.asyncio
    async def test_notifier_failure_is_swallowed(self, service, repository, notifier, ltd_request, staff):
        created = await service.create_workflow(ltd_request, staff)
        notifier.notify_stage_change.side_effect = RuntimeError("smtp down")

        result = await service.update_workflow(
            UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_PENDING_CHASE"), staff
        )

        assert result.workflow.current_stage == "PAPERWORK_PENDING_CHASE"
        assert repository.get(created.id).current_stage == "PAPERWORK_PENDING_CHASE"

    @pytest.mark.asyncio
    async def test_notifications_can_be_scheduled(self, repository, notifier, clock, ltd_request, staff):
        schedule = Mock()
        service = WorkflowService(repository, notifier=notifier, clock=clock, schedule=schedule, notifications_enabled=True)

        await service.create_workflow(ltd_request, staff)

        schedule.assert_called_once()
        assert schedule.call_args.args[0] == service._send_notifications
        notifier.notify_assignment.assert_not_called()

    @pytest.mark.asyncio
    async def test_notifications_disabled(self, repository, notifier, clock, ltd_request, staff):
        service = WorkflowService(repository, notifier=notifier, clock=clock, notifications_enabled=False)

        await service.create_workflow(ltd_request, staff)

        notifier.notify_assignment.assert_not_called()

    @pytest.mark.asyncio
    async def test_logging_notifier_filters_quiet_stages(self, repository, clock, ltd_request, staff):
        notifier = LoggingNotificationService()
        service = WorkflowService(repository, notifier=notifier, clock=clock, notifications_enabled=True)
        created = await service.create_workflow(ltd_request, staff)

        await service.update_workflow(UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_PENDING_CHASE"), staff)
        await service.update_workflow(UpdateWorkflowRequest(workflow_id=created.id, new_stage="PAPERWORK_RECEIVED"), staff)

        assert notifier.sent == [
            "LTD workflow assigned: client-acme",
            "LTD workflow for client-acme: Pending to Chase Paperwork",
        ]


class TestActiveWorkflow:
    """Updates addressed by client and kind"""

    @pytest.mark.asyncio
    async def test_updates_earliest_open_period(self, service, ltd_request, staff):
        first = await service.create_workflow(ltd_request, staff)
        await service.create_workflow(
            CreateWorkflowRequest(client_id="client-acme", kind=WorkflowKind.LTD, period_end=date(2025, 3, 31)),
            staff,
        )

        result = await service.update_active_workflow(
            "client-acme", WorkflowKind.LTD, UpdateWorkflowRequest(new_stage="PAPERWORK_PENDING_CHASE"), staff
        )

        assert result.workflow.id == first.id

    @pytest.mark.asyncio
    async def test_no_active_workflow(self, service, staff):
        with pytest.raises(WorkflowNotFoundError):
            await service.update_active_workflow(
                "client-none", WorkflowKind.VAT, UpdateWorkflowRequest(new_stage="PAPERWORK_CHASED"), staff
            )


class TestDeadlineSummary:
    @pytest.mark.asyncio
    async def test_summary(self, service, ltd_request, staff):
        created = await service.create_workflow(ltd_request, staff)

        summary = await service.get_deadline_summary(created.id)

        # FIXED_NOW is 2 June 2025, so the 31 December 2024 accounts deadline has passed
        assert summary.filing_due_date == date(2024, 12, 31)
        assert summary.is_overdue is True
        assert summary.days_until_due == -153
        assert summary.stage_display_name == "Waiting for Year End"
        assert summary.progress.position == 1

    @pytest.mark.asyncio
    async def test_history_for_missing_workflow(self, service):
        with pytest.raises(WorkflowNotFoundError):
            await service.get_history("missing")
