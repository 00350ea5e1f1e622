"""
Workflow history ledger entries

Entries are immutable once built. The repository appends them alongside the
workflow change they describe.
"""

from datetime import datetime
from typing import Optional

from filing_tracker.models.workflow import HistoryAction
from filing_tracker.schemas.workflow import Actor, HistoryEntry, TransitionResult, TransitionType
from filing_tracker.services.deadline_calculator import london_today


def days_in_previous_stage(previous_entry: Optional[HistoryEntry], now: datetime) -> Optional[int]:
    """Whole London calendar days since the previous entry"""
    if previous_entry is None:
        return None
    return (london_today(now) - london_today(previous_entry.changed_at)).days


def describe_assignment_change(old_assignee: Optional[str], new_assignee: Optional[str]) -> str:
    if old_assignee == new_assignee:
        return "Assignment unchanged"
    if new_assignee is None:
        return f"Unassigned from {old_assignee}"
    if old_assignee is None:
        return f"Assigned to {new_assignee}"
    return f"Reassigned from {old_assignee} to {new_assignee}"


def action_for(transition: TransitionResult) -> HistoryAction:
    if transition.transition == TransitionType.UNDO:
        return HistoryAction.STAGE_UNDONE
    if transition.changes_stage:
        return HistoryAction.STAGE_CHANGED
    return HistoryAction.ASSIGNMENT_CHANGED


def build_history_entry(
    workflow_id: Optional[str],
    from_stage: Optional[str],
    to_stage: str,
    action: HistoryAction,
    actor: Actor,
    now: datetime,
    notes: Optional[str] = None,
    previous_entry: Optional[HistoryEntry] = None,
) -> HistoryEntry:
    return HistoryEntry(
        workflow_id=workflow_id,
        from_stage=from_stage,
        to_stage=to_stage,
        action=action,
        changed_at=now,
        days_in_previous_stage=days_in_previous_stage(previous_entry, now),
        actor_user_id=actor.user_id,
        actor_name=actor.name,
        actor_role=actor.role,
        notes=notes,
    )


def join_notes(*parts: Optional[str]) -> Optional[str]:
    text = "; ".join(p for p in parts if p)
    return text or None
