"""
Rollover Service
Creates the next filing period's workflow when one is filed, and removes it
again when that filing is undone before anyone touched the new period.
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Optional, Tuple

from dateutil.relativedelta import relativedelta

from filing_tracker.core import activity_logger as events
from filing_tracker.core.activity_logger import ActivityLogger
from filing_tracker.core.config import settings
from filing_tracker.core.exceptions import DuplicatePeriodError
from filing_tracker.models.workflow import HistoryAction, WorkflowKind
from filing_tracker.schemas.workflow import (
    Actor,
    RolloverAction,
    RolloverOutcome,
    WorkflowRecord,
)
from filing_tracker.services.deadline_calculator import (
    next_vat_quarter,
    quarter_group_for,
    statutory_dates,
)
from filing_tracker.services.stage_catalog import get_catalog
from filing_tracker.services.workflow_history import build_history_entry
from filing_tracker.services.workflow_repository import WorkflowRepository

logger = logging.getLogger(__name__)


def next_period(record: WorkflowRecord) -> Tuple[date, date, Optional[str]]:
    """Start, end and quarter group of the period after ``record``'s"""
    if record.kind == WorkflowKind.VAT:
        group = record.quarter_group or quarter_group_for(record.period_end)
        quarter = next_vat_quarter(group, record.period_end)
        return quarter.start, quarter.end, group
    if record.kind == WorkflowKind.NON_LTD:
        end = record.period_end + relativedelta(years=1)
        return record.period_end + relativedelta(days=1), end, None
    return (
        record.period_start + relativedelta(years=1),
        record.period_end + relativedelta(years=1),
        None,
    )


class RolloverService:
    """Keeps the next period's workflow in step with filings and undos"""

    def __init__(
        self,
        repository: WorkflowRepository,
        activity_logger: Optional[ActivityLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        auto_assign: Optional[bool] = None,
    ):
        self.repository = repository
        self.activity_logger = activity_logger
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.auto_assign = settings.ROLLOVER_AUTO_ASSIGN if auto_assign is None else auto_assign

    def handle_transition(
        self, previous: WorkflowRecord, updated: WorkflowRecord, actor: Actor
    ) -> RolloverOutcome:
        """Run after a committed stage change. Never raises."""
        catalog = get_catalog(updated.kind)
        if previous.current_stage == updated.current_stage:
            return RolloverOutcome()

        if updated.current_stage == catalog.rollover_stage.value:
            return self._roll_forward(updated, actor)

        # Only a filing creates the next period, so only leaving it cleans one up
        if previous.current_stage == catalog.rollover_stage.value:
            return self._remove_orphan(updated, actor)

        return RolloverOutcome()

    def _roll_forward(self, record: WorkflowRecord, actor: Actor) -> RolloverOutcome:
        catalog = get_catalog(record.kind)
        start, end, group = next_period(record)
        assignee = record.assigned_user_id if self.auto_assign else None
        now = self.clock()

        try:
            with self.repository.transaction():
                existing = self.repository.find_by_period_end(record.client_id, record.kind, end)
                if existing is not None:
                    if existing.assigned_user_id is None and assignee:
                        entry = build_history_entry(
                            existing.id,
                            existing.current_stage,
                            existing.current_stage,
                            HistoryAction.AUTO_ASSIGNED,
                            actor,
                            now,
                            notes=f"Assigned to {assignee} when period ending {record.period_end} was filed",
                        )
                        backfilled = self.repository.assign(existing.id, assignee, entry)
                        outcome = RolloverOutcome(action=RolloverAction.BACKFILLED, workflow=backfilled)
                    else:
                        outcome = RolloverOutcome(action=RolloverAction.ALREADY_EXISTS, workflow=existing)
                else:
                    initial = catalog.initial_stage.value
                    new_record = WorkflowRecord(
                        client_id=record.client_id,
                        kind=record.kind,
                        period_start=start,
                        period_end=end,
                        quarter_group=group,
                        current_stage=initial,
                        is_completed=False,
                        assigned_user_id=assignee,
                        created_by_rollover_from_id=record.id,
                        **statutory_dates(record.kind, end),
                    )
                    entry = build_history_entry(
                        None,
                        None,
                        initial,
                        HistoryAction.CREATED,
                        actor,
                        now,
                        notes=f"Created automatically after period ending {record.period_end} was filed",
                    )
                    created, _ = self.repository.create(new_record, entry)
                    outcome = RolloverOutcome(action=RolloverAction.CREATED, workflow=created)
        except DuplicatePeriodError:
            logger.info(
                f"Next {record.kind.value} period ending {end} for client {record.client_id} already exists"
            )
            return RolloverOutcome(action=RolloverAction.ALREADY_EXISTS)
        except Exception as e:
            logger.error(
                f"Rollover failed for workflow {record.id}: {str(e)}", exc_info=True
            )
            return RolloverOutcome(
                action=RolloverAction.FAILED,
                warning=f"Next period workflow could not be created: {str(e)}",
            )

        if outcome.action == RolloverAction.CREATED:
            logger.info(f"Rolled over workflow {record.id} to {outcome.workflow.id} ending {end}")
            self._log(events.NEXT_WORKFLOW_AUTO_CREATED, f"Next {record.kind.value} period ending {end} created", actor, outcome.workflow, record)
        elif outcome.action == RolloverAction.BACKFILLED:
            self._log(events.EXISTING_WORKFLOW_AUTO_ASSIGNED, f"Existing {record.kind.value} period ending {end} assigned to {assignee}", actor, outcome.workflow, record)
        return outcome

    def _remove_orphan(self, record: WorkflowRecord, actor: Actor) -> RolloverOutcome:
        catalog = get_catalog(record.kind)
        _, end, _ = next_period(record)

        try:
            with self.repository.transaction():
                candidate = self.repository.find_by_period_end(record.client_id, record.kind, end)
                if candidate is None:
                    return RolloverOutcome()

                linked_elsewhere = (
                    candidate.created_by_rollover_from_id is not None
                    and candidate.created_by_rollover_from_id != record.id
                )
                untouched = (
                    candidate.current_stage == catalog.initial_stage.value
                    and not candidate.is_completed
                )
                if linked_elsewhere or not untouched:
                    logger.info(f"Keeping next-period workflow {candidate.id}; it has progressed independently")
                    return RolloverOutcome(action=RolloverAction.ORPHAN_KEPT, workflow=candidate)

                self.repository.delete_workflow(candidate.id)
        except Exception as e:
            logger.error(
                f"Orphan cleanup failed for workflow {record.id}: {str(e)}", exc_info=True
            )
            return RolloverOutcome(
                action=RolloverAction.FAILED,
                warning=f"Next period workflow could not be cleaned up: {str(e)}",
            )

        logger.info(f"Removed orphaned workflow {candidate.id} after filing of {record.id} was undone")
        self._log(events.ORPHANED_WORKFLOW_REMOVED, f"Removed {record.kind.value} period ending {end} after filing was undone", actor, candidate, record)
        return RolloverOutcome(action=RolloverAction.REMOVED_ORPHAN, workflow=candidate)

    def _log(self, event_type: str, description: str, actor: Actor, workflow: WorkflowRecord, source: WorkflowRecord):
        if self.activity_logger is None:
            return
        self.activity_logger.log_event(
            event_type,
            description,
            actor=actor,
            client_id=workflow.client_id,
            workflow_id=workflow.id,
            data={
                "source_workflow_id": source.id,
                "kind": workflow.kind.value,
                "period_end": workflow.period_end.isoformat(),
            },
        )
