"""
Workflow Schemas for the Filing Tracker

Pydantic models for workflow records, stage transitions, rollover outcomes and API payloads
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from filing_tracker.models.workflow import ActorRole, HistoryAction, WorkflowKind


class TransitionType(str, Enum):
    """How a requested stage change relates to the current stage"""

    ASSIGNMENT_ONLY = "assignment_only"
    NO_OP = "no_op"
    ADVANCE = "advance"
    LATERAL = "lateral"
    SKIP = "skip"
    UNDO = "undo"


class RolloverAction(str, Enum):
    """What the rollover step did after a transition"""

    CREATED = "created"
    BACKFILLED = "backfilled"
    ALREADY_EXISTS = "already_exists"
    REMOVED_ORPHAN = "removed_orphan"
    ORPHAN_KEPT = "orphan_kept"
    NONE = "none"
    FAILED = "failed"


class Actor(BaseModel):
    """Who performed an action"""

    user_id: str
    name: str
    role: ActorRole = ActorRole.STAFF

    model_config = {"frozen": True}


class MilestoneSlot(BaseModel):
    """When a stage was reached and by whom"""

    stage: str
    milestone: str
    reached_at: Optional[datetime] = None
    actor_user_id: Optional[str] = None
    actor_name: Optional[str] = None

    model_config = {"from_attributes": True}


class WorkflowRecord(BaseModel):
    """A filing workflow as the engine sees it"""

    id: Optional[str] = None
    client_id: str
    kind: WorkflowKind
    period_start: date
    period_end: date
    filing_due_date: date
    quarter_group: Optional[str] = None
    accounts_due_date: Optional[date] = None
    ct_filing_due_date: Optional[date] = None
    ct_payment_due_date: Optional[date] = None
    current_stage: str
    is_completed: bool = False
    assigned_user_id: Optional[str] = None
    created_by_rollover_from_id: Optional[str] = None
    version: int = 0
    milestones: Dict[str, MilestoneSlot] = Field(
        default_factory=dict, description="Milestone slots keyed by stage"
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def milestone_for(self, stage: str) -> Optional[MilestoneSlot]:
        return self.milestones.get(str(stage))


class HistoryEntry(BaseModel):
    """One immutable row of the workflow history ledger"""

    id: Optional[str] = None
    workflow_id: Optional[str] = None
    from_stage: Optional[str] = None
    to_stage: str
    action: HistoryAction
    changed_at: datetime
    days_in_previous_stage: Optional[int] = None
    actor_user_id: str
    actor_name: str
    actor_role: ActorRole
    notes: Optional[str] = None

    model_config = {"from_attributes": True, "frozen": True}


class StageProgress(BaseModel):
    position: int
    total: int
    percentage: int


class TransitionRejection(BaseModel):
    """Returned when a skip or undo is requested without override"""

    current_stage: str
    skipped_stages: List[str] = Field(default_factory=list)
    allowed_next_stages: List[str] = Field(default_factory=list)
    requires_skip_warning: bool = True
    message: str


class TransitionResult(BaseModel):
    """Outcome of validating a requested stage change"""

    valid: bool
    transition: TransitionType
    from_stage: str
    to_stage: Optional[str] = None
    skipped_stages: List[str] = Field(default_factory=list)
    undone_stages: List[str] = Field(default_factory=list)
    rejection: Optional[TransitionRejection] = None

    @property
    def changes_stage(self) -> bool:
        return self.transition not in (TransitionType.ASSIGNMENT_ONLY, TransitionType.NO_OP)

    @property
    def is_undo(self) -> bool:
        return self.transition == TransitionType.UNDO


class MilestoneDelta(BaseModel):
    """Milestone slots to write and clear for one stage change"""

    stage: str
    set_milestones: Dict[str, MilestoneSlot] = Field(default_factory=dict)
    cleared_stages: List[str] = Field(default_factory=list)
    is_completed: bool


class RolloverOutcome(BaseModel):
    action: RolloverAction = RolloverAction.NONE
    workflow: Optional[WorkflowRecord] = None
    warning: Optional[str] = None


class UpdateWorkflowRequest(BaseModel):
    """Stage and/or assignment change for a workflow

    Leaving ``assignee_id`` out keeps the current assignee; sending it as null unassigns.
    """

    workflow_id: Optional[str] = None
    new_stage: Optional[str] = None
    assignee_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)
    allow_override: bool = False

    @property
    def assignee_provided(self) -> bool:
        return "assignee_id" in self.model_fields_set


class CreateWorkflowRequest(BaseModel):
    """Create a workflow for one filing period"""

    client_id: str = Field(..., min_length=1, max_length=64)
    kind: WorkflowKind
    tax_year: Optional[int] = Field(None, description="NON_LTD: tax year starting 6 April")
    period_start: Optional[date] = Field(None, description="LTD: defaults to period_end - 1 year + 1 day")
    period_end: Optional[date] = Field(None, description="LTD: accounting reference date")
    quarter_group: Optional[str] = Field(None, description="VAT: 1_4_7_10, 2_5_8_11 or 3_6_9_12")
    reference_date: Optional[date] = Field(None, description="VAT: a date inside the quarter")
    assignee_id: Optional[str] = None

    @field_validator("tax_year")
    @classmethod
    def validate_tax_year(cls, v):
        if v is not None and not 1990 <= v <= 2100:
            raise ValueError("tax_year out of range")
        return v


class UpdateWorkflowResult(BaseModel):
    workflow: WorkflowRecord
    history: List[HistoryEntry] = Field(default_factory=list)
    rollover: Optional[RolloverOutcome] = None
    warnings: List[str] = Field(default_factory=list)


class VatQuarter(BaseModel):
    quarter_group: str
    start: date
    end: date
    filing_due: date
    period_label: str


class DeadlineSummary(BaseModel):
    """Deadline view of a workflow"""

    workflow_id: str
    kind: WorkflowKind
    period_end: date
    filing_due_date: date
    days_until_due: int
    is_overdue: bool
    accounts_due_date: Optional[date] = None
    ct_filing_due_date: Optional[date] = None
    ct_payment_due_date: Optional[date] = None
    current_stage: str
    stage_display_name: str
    progress: StageProgress


class DeadlinePreview(BaseModel):
    """Statutory dates for a period end, without a workflow"""

    period_end: date
    accounts_filing_due: date
    corporation_tax_filing_due: date
    corporation_tax_payment_due: date
    vat_filing_due: date


class StageChangeEvent(BaseModel):
    workflow: WorkflowRecord
    from_stage: str
    to_stage: str
    actor: Actor
    is_undo: bool = False
    notes: Optional[str] = None


class AssignmentEvent(BaseModel):
    workflow: WorkflowRecord
    previous_assignee_id: Optional[str] = None
    new_assignee_id: Optional[str] = None
    actor: Actor


class StageInfo(BaseModel):
    """One stage of a catalog, as offered to the UI"""

    stage: str
    display_name: str
    position: int
    milestone: Optional[str] = None
    is_terminal: bool = False
    is_lateral: bool = False
    selectable: bool = True
