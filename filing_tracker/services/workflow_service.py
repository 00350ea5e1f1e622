"""
Filing Workflow Service

Stage and assignment changes for VAT, Ltd and Non-Ltd workflows. Each change
is validated, applied with its milestone writes and history entry in one
repository transaction, then followed by rollover, activity logging and
notifications, none of which can fail the change itself.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from filing_tracker.core import activity_logger as events
from filing_tracker.core.activity_logger import ActivityLogger
from filing_tracker.core.config import settings
from filing_tracker.core.exceptions import (
    InvalidTransitionError,
    InvalidWorkflowRequestError,
    WorkflowNotFoundError,
)
from filing_tracker.models.workflow import HistoryAction, WorkflowKind
from filing_tracker.schemas.workflow import (
    Actor,
    AssignmentEvent,
    CreateWorkflowRequest,
    DeadlineSummary,
    HistoryEntry,
    StageChangeEvent,
    UpdateWorkflowRequest,
    UpdateWorkflowResult,
    WorkflowRecord,
)
from filing_tracker.services.deadline_calculator import (
    calculate_vat_quarter,
    current_non_ltd_tax_year,
    days_until_due,
    is_overdue,
    london_today,
    ltd_period_start,
    non_ltd_period_start,
    non_ltd_year_end,
    statutory_dates,
)
from filing_tracker.services.milestone_tracker import (
    apply_milestone_delta,
    compute_milestone_delta,
)
from filing_tracker.services.notification_service import NotificationPort
from filing_tracker.services.rollover_service import RolloverService
from filing_tracker.services.stage_catalog import get_catalog
from filing_tracker.services.transition_validator import validate_transition
from filing_tracker.services.workflow_history import (
    action_for,
    build_history_entry,
    describe_assignment_change,
    join_notes,
)
from filing_tracker.services.workflow_repository import WorkflowRepository

logger = logging.getLogger(__name__)


class WorkflowService:
    """Service for managing filing workflows"""

    def __init__(
        self,
        repository: WorkflowRepository,
        notifier: Optional[NotificationPort] = None,
        activity_logger: Optional[ActivityLogger] = None,
        rollover: Optional[RolloverService] = None,
        clock: Optional[Callable[[], datetime]] = None,
        schedule: Optional[Callable] = None,
        notifications_enabled: Optional[bool] = None,
    ):
        self.repository = repository
        self.notifier = notifier
        self.activity_logger = activity_logger
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.rollover = rollover or RolloverService(
            repository, activity_logger=activity_logger, clock=self.clock
        )
        # e.g. BackgroundTasks.add_task; notifications are awaited inline when unset
        self.schedule = schedule
        self.notifications_enabled = (
            settings.NOTIFICATIONS_ENABLED if notifications_enabled is None else notifications_enabled
        )

    async def update_workflow(self, request: UpdateWorkflowRequest, actor: Actor) -> UpdateWorkflowResult:
        """Apply a stage and/or assignment change to one workflow"""
        now = self.clock()

        with self.repository.transaction():
            current = self.repository.get(request.workflow_id, for_update=True)
            if current is None:
                raise WorkflowNotFoundError(f"Workflow {request.workflow_id} not found")

            transition = validate_transition(
                current.kind, current.current_stage, request.new_stage, request.allow_override
            )
            if not transition.valid:
                logger.info(
                    f"Rejected {current.current_stage} -> {request.new_stage} on workflow {current.id}: "
                    f"{transition.rejection.message}"
                )
                raise InvalidTransitionError(transition.rejection)

            new_assignee = request.assignee_id if request.assignee_provided else current.assigned_user_id
            assignee_changed = new_assignee != current.assigned_user_id

            delta = None
            updated = current
            if transition.changes_stage:
                delta = compute_milestone_delta(
                    current.kind, transition.to_stage, actor, current.current_stage, now
                )
                updated = apply_milestone_delta(current, delta)
            updated = updated.model_copy(update={"assigned_user_id": new_assignee})

            assignment_note = None
            if assignee_changed or not transition.changes_stage:
                assignment_note = describe_assignment_change(current.assigned_user_id, new_assignee)

            entry = build_history_entry(
                current.id,
                current.current_stage,
                updated.current_stage,
                action_for(transition),
                actor,
                now,
                notes=join_notes(request.notes, assignment_note),
                previous_entry=self.repository.latest_history(current.id),
            )
            saved, saved_entry = self.repository.save(updated, entry, delta)

        logger.info(
            f"Workflow {saved.id} {transition.transition.value}: "
            f"{current.current_stage} -> {saved.current_stage} by {actor.user_id}"
        )

        warnings: List[str] = []
        rollover = None
        if transition.changes_stage:
            rollover = self.rollover.handle_transition(current, saved, actor)
            if rollover.warning:
                warnings.append(rollover.warning)

        stage_event = None
        if transition.changes_stage:
            stage_event = StageChangeEvent(
                workflow=saved,
                from_stage=current.current_stage,
                to_stage=saved.current_stage,
                actor=actor,
                is_undo=transition.is_undo,
                notes=request.notes,
            )
            self._log_stage_change(stage_event)

        assignment_event = None
        if assignee_changed:
            assignment_event = AssignmentEvent(
                workflow=saved,
                previous_assignee_id=current.assigned_user_id,
                new_assignee_id=new_assignee,
                actor=actor,
            )
            self._log_assignment(assignment_event)

        await self._dispatch_notifications(stage_event, assignment_event)

        return UpdateWorkflowResult(
            workflow=saved,
            history=[saved_entry],
            rollover=rollover,
            warnings=warnings,
        )

    async def update_active_workflow(
        self, client_id: str, kind: WorkflowKind, request: UpdateWorkflowRequest, actor: Actor
    ) -> UpdateWorkflowResult:
        """Update the client's open workflow of ``kind``"""
        active = self.repository.load_active(client_id, kind)
        if active is None:
            raise WorkflowNotFoundError(
                f"No active {WorkflowKind(kind).value} workflow for client {client_id}",
                context={"client_id": client_id, "kind": WorkflowKind(kind).value},
            )
        return await self.update_workflow(request.model_copy(update={"workflow_id": active.id}), actor)

    async def create_workflow(self, request: CreateWorkflowRequest, actor: Actor) -> WorkflowRecord:
        """Create the workflow for one filing period, in the kind's initial stage"""
        now = self.clock()
        catalog = get_catalog(request.kind)
        period_start, period_end, quarter_group = self._resolve_period(request, now)
        initial = catalog.initial_stage.value

        record = WorkflowRecord(
            client_id=request.client_id,
            kind=request.kind,
            period_start=period_start,
            period_end=period_end,
            quarter_group=quarter_group,
            current_stage=initial,
            is_completed=False,
            assigned_user_id=request.assignee_id,
            **statutory_dates(request.kind, period_end),
        )
        entry = build_history_entry(
            None,
            None,
            initial,
            HistoryAction.CREATED,
            actor,
            now,
            notes=describe_assignment_change(None, request.assignee_id) if request.assignee_id else None,
        )

        with self.repository.transaction():
            created, _ = self.repository.create(record, entry)

        logger.info(
            f"Created {created.kind.value} workflow {created.id} for client {created.client_id} "
            f"ending {created.period_end}"
        )
        if self.activity_logger:
            self.activity_logger.log_event(
                events.WORKFLOW_CREATED,
                f"{created.kind.value} workflow created for period ending {created.period_end}",
                actor=actor,
                client_id=created.client_id,
                workflow_id=created.id,
                data={"kind": created.kind.value, "period_end": created.period_end.isoformat()},
            )

        if created.assigned_user_id:
            await self._dispatch_notifications(
                None,
                AssignmentEvent(workflow=created, new_assignee_id=created.assigned_user_id, actor=actor),
            )
        return created

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord:
        workflow = self.repository.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return workflow

    async def get_history(self, workflow_id: str) -> List[HistoryEntry]:
        await self.get_workflow(workflow_id)
        return self.repository.list_history(workflow_id)

    async def get_deadline_summary(self, workflow_id: str, now: Optional[datetime] = None) -> DeadlineSummary:
        workflow = await self.get_workflow(workflow_id)
        now = now or self.clock()
        catalog = get_catalog(workflow.kind)
        return DeadlineSummary(
            workflow_id=workflow.id,
            kind=workflow.kind,
            period_end=workflow.period_end,
            filing_due_date=workflow.filing_due_date,
            days_until_due=days_until_due(workflow.filing_due_date, now),
            is_overdue=not workflow.is_completed and is_overdue(workflow.filing_due_date, now),
            accounts_due_date=workflow.accounts_due_date,
            ct_filing_due_date=workflow.ct_filing_due_date,
            ct_payment_due_date=workflow.ct_payment_due_date,
            current_stage=workflow.current_stage,
            stage_display_name=catalog.display_name(workflow.current_stage),
            progress=catalog.progress(workflow.current_stage),
        )

    def _resolve_period(self, request: CreateWorkflowRequest, now: datetime):
        if request.kind == WorkflowKind.NON_LTD:
            tax_year = request.tax_year or current_non_ltd_tax_year(london_today(now))
            return non_ltd_period_start(tax_year), non_ltd_year_end(tax_year), None

        if request.kind == WorkflowKind.LTD:
            if request.period_end is None:
                raise InvalidWorkflowRequestError("period_end is required for LTD workflows")
            start = request.period_start or ltd_period_start(request.period_end)
            if start > request.period_end:
                raise InvalidWorkflowRequestError("period_start must be before period_end")
            return start, request.period_end, None

        if not request.quarter_group:
            raise InvalidWorkflowRequestError("quarter_group is required for VAT workflows")
        try:
            quarter = calculate_vat_quarter(request.quarter_group, request.reference_date or london_today(now))
        except ValueError as e:
            raise InvalidWorkflowRequestError(str(e)) from e
        return quarter.start, quarter.end, quarter.quarter_group

    def _log_stage_change(self, event: StageChangeEvent):
        if not self.activity_logger:
            return
        catalog = get_catalog(event.workflow.kind)
        filing_undone = event.is_undo and catalog.is_terminal(event.from_stage)
        self.activity_logger.log_event(
            events.WORKFLOW_FILING_UNDONE if filing_undone else events.WORKFLOW_STAGE_CHANGED,
            f"{catalog.display_name(event.from_stage)} -> {catalog.display_name(event.to_stage)}",
            actor=event.actor,
            client_id=event.workflow.client_id,
            workflow_id=event.workflow.id,
            data={
                "from_stage": event.from_stage,
                "to_stage": event.to_stage,
                "is_undo": event.is_undo,
                "notes": event.notes,
            },
        )

    def _log_assignment(self, event: AssignmentEvent):
        if not self.activity_logger:
            return
        self.activity_logger.log_event(
            events.WORKFLOW_ASSIGNED if event.new_assignee_id else events.WORKFLOW_UNASSIGNED,
            describe_assignment_change(event.previous_assignee_id, event.new_assignee_id),
            actor=event.actor,
            client_id=event.workflow.client_id,
            workflow_id=event.workflow.id,
            data={
                "previous_assignee_id": event.previous_assignee_id,
                "new_assignee_id": event.new_assignee_id,
            },
        )

    async def _dispatch_notifications(
        self,
        stage_event: Optional[StageChangeEvent],
        assignment_event: Optional[AssignmentEvent],
    ):
        if not self.notifications_enabled or self.notifier is None:
            return
        if stage_event is None and assignment_event is None:
            return
        if self.schedule is not None:
            self.schedule(self._send_notifications, stage_event, assignment_event)
        else:
            await self._send_notifications(stage_event, assignment_event)

    async def _send_notifications(
        self,
        stage_event: Optional[StageChangeEvent],
        assignment_event: Optional[AssignmentEvent],
    ):
        if stage_event is not None:
            try:
                await self.notifier.notify_stage_change(stage_event)
            except Exception as e:
                logger.error(
                    f"Stage change notification failed for workflow {stage_event.workflow.id}: {str(e)}",
                    exc_info=True,
                )
        if assignment_event is not None:
            try:
                await self.notifier.notify_assignment(assignment_event)
            except Exception as e:
                logger.error(
                    f"Assignment notification failed for workflow {assignment_event.workflow.id}: {str(e)}",
                    exc_info=True,
                )
