"""
Milestone tracking for workflow stage changes
"""

from datetime import datetime, timezone
from typing import List, Optional

from filing_tracker.schemas.workflow import (
    Actor,
    MilestoneDelta,
    MilestoneSlot,
    WorkflowRecord,
)
from filing_tracker.services.stage_catalog import get_catalog


def compute_milestone_delta(
    kind,
    to_stage,
    actor: Actor,
    from_stage=None,
    now: Optional[datetime] = None,
) -> MilestoneDelta:
    """
    Milestone writes implied by moving to ``to_stage``.

    The target stage's slot is stamped with ``now`` and the actor. Moving
    backward also clears every slot after ``to_stage`` up to and including
    ``from_stage``.
    """
    catalog = get_catalog(kind)
    target = catalog.coerce(to_stage)
    now = now or datetime.now(timezone.utc)

    set_milestones = {}
    milestone = catalog.milestone_name(target)
    if milestone:
        set_milestones[target.value] = MilestoneSlot(
            stage=target.value,
            milestone=milestone,
            reached_at=now,
            actor_user_id=actor.user_id,
            actor_name=actor.name,
        )

    cleared = []
    if from_stage is not None:
        source = catalog.coerce(from_stage)
        if catalog.index(target) < catalog.index(source):
            cleared = [
                s.value
                for s in catalog.stages_between(target, source)
                if catalog.milestone_name(s)
            ]
        elif target != source and catalog.is_terminal(source):
            cleared = [source.value]

    return MilestoneDelta(
        stage=target.value,
        set_milestones=set_milestones,
        cleared_stages=cleared,
        is_completed=catalog.is_terminal(target),
    )


def apply_milestone_delta(record: WorkflowRecord, delta: MilestoneDelta) -> WorkflowRecord:
    """Return a copy of ``record`` with the delta applied"""
    milestones = {
        stage: slot
        for stage, slot in record.milestones.items()
        if stage not in delta.cleared_stages
    }
    milestones.update(delta.set_milestones)
    return record.model_copy(
        update={
            "current_stage": delta.stage,
            "is_completed": delta.is_completed,
            "milestones": milestones,
        }
    )


def find_milestone_violations(record: WorkflowRecord) -> List[str]:
    """Stages after the current stage that still carry a milestone"""
    catalog = get_catalog(record.kind)
    current_idx = catalog.index(record.current_stage)
    return [
        stage
        for stage, slot in record.milestones.items()
        if slot.reached_at is not None and catalog.index(stage) > current_idx
    ]
