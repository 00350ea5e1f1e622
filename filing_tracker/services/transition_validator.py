"""
Stage transition validation

Classifies a requested stage change against the workflow kind's catalog and
rejects skips and undos that were not explicitly confirmed.
"""

from typing import Optional

from filing_tracker.schemas.workflow import (
    TransitionRejection,
    TransitionResult,
    TransitionType,
)
from filing_tracker.services.stage_catalog import get_catalog


def _values(stages):
    return [s.value for s in stages]


def validate_transition(
    kind,
    from_stage,
    to_stage: Optional[str] = None,
    allow_override: bool = False,
) -> TransitionResult:
    """
    Decide whether ``from_stage -> to_stage`` may proceed.

    No ``to_stage`` means an assignment-only update. A forward move past the
    next stage is a skip, a move to an earlier position is an undo; both are
    rejected unless ``allow_override`` is set. Unknown stages raise
    UnknownStageError.
    """
    catalog = get_catalog(kind)
    current = catalog.coerce(from_stage)

    if to_stage is None:
        return TransitionResult(
            valid=True,
            transition=TransitionType.ASSIGNMENT_ONLY,
            from_stage=current.value,
        )

    target = catalog.coerce(to_stage)
    if target == current:
        return TransitionResult(
            valid=True,
            transition=TransitionType.NO_OP,
            from_stage=current.value,
            to_stage=target.value,
        )

    from_idx = catalog.index(current)
    to_idx = catalog.index(target)
    skipped = []
    undone = []

    if catalog.is_lateral(target) and not catalog.is_terminal(current):
        transition = TransitionType.LATERAL
    elif to_idx < from_idx:
        transition = TransitionType.UNDO
        undone = catalog.stages_between(target, current)
    elif catalog.is_terminal(current):
        # Leaving a terminal stage sideways, e.g. filed -> client self-filing
        transition = TransitionType.UNDO
        undone = [current]
    elif to_idx > from_idx + 1:
        transition = TransitionType.SKIP
        skipped = catalog.skipped_stages(current, target)
    else:
        transition = TransitionType.ADVANCE

    result = TransitionResult(
        valid=True,
        transition=transition,
        from_stage=current.value,
        to_stage=target.value,
        skipped_stages=_values(skipped),
        undone_stages=_values(undone),
    )

    if transition in (TransitionType.SKIP, TransitionType.UNDO) and not allow_override:
        if transition == TransitionType.SKIP:
            listed = skipped
            message = f"Cannot skip stages: {', '.join(_values(skipped))}"
        else:
            listed = undone
            message = (
                f"Moving back from {current.value} to {target.value} "
                f"undoes: {', '.join(_values(undone))}"
            )
        result.valid = False
        result.rejection = TransitionRejection(
            current_stage=current.value,
            skipped_stages=_values(listed),
            allowed_next_stages=_values(catalog.allowed_next_stages(current)),
            requires_skip_warning=True,
            message=message,
        )

    return result
