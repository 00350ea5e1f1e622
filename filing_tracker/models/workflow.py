"""
Filing Workflow Models
Stage enums and persistence for VAT, Ltd and Non-Ltd filing workflows
"""

import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from filing_tracker.models.base import GUID, JSON, BaseModel


class WorkflowKind(str, enum.Enum):
    """Kinds of filing work tracked per client"""

    VAT = "VAT"
    LTD = "LTD"
    NON_LTD = "NON_LTD"


class VatStage(str, enum.Enum):
    """VAT return stages"""

    PAPERWORK_PENDING_CHASE = "PAPERWORK_PENDING_CHASE"
    PAPERWORK_CHASED = "PAPERWORK_CHASED"
    PAPERWORK_RECEIVED = "PAPERWORK_RECEIVED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    QUERIES_PENDING = "QUERIES_PENDING"
    REVIEW_PENDING_MANAGER = "REVIEW_PENDING_MANAGER"
    REVIEWED_BY_MANAGER = "REVIEWED_BY_MANAGER"
    REVIEW_PENDING_PARTNER = "REVIEW_PENDING_PARTNER"
    REVIEWED_BY_PARTNER = "REVIEWED_BY_PARTNER"
    EMAILED_TO_PARTNER = "EMAILED_TO_PARTNER"
    EMAILED_TO_CLIENT = "EMAILED_TO_CLIENT"
    CLIENT_APPROVED = "CLIENT_APPROVED"
    FILED_TO_HMRC = "FILED_TO_HMRC"


class LtdStage(str, enum.Enum):
    """Limited company annual accounts stages"""

    WAITING_FOR_YEAR_END = "WAITING_FOR_YEAR_END"
    PAPERWORK_PENDING_CHASE = "PAPERWORK_PENDING_CHASE"
    PAPERWORK_RECEIVED = "PAPERWORK_RECEIVED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    DISCUSS_WITH_MANAGER = "DISCUSS_WITH_MANAGER"
    REVIEW_BY_PARTNER = "REVIEW_BY_PARTNER"
    REVIEW_DONE_HELLO_SIGN = "REVIEW_DONE_HELLO_SIGN"
    SENT_TO_CLIENT_HELLO_SIGN = "SENT_TO_CLIENT_HELLO_SIGN"
    APPROVED_BY_CLIENT = "APPROVED_BY_CLIENT"
    SUBMISSION_APPROVED_PARTNER = "SUBMISSION_APPROVED_PARTNER"
    FILED_TO_COMPANIES_HOUSE = "FILED_TO_COMPANIES_HOUSE"
    FILED_TO_HMRC = "FILED_TO_HMRC"
    CLIENT_SELF_FILING = "CLIENT_SELF_FILING"


class NonLtdStage(str, enum.Enum):
    """Sole trader / partnership accounts stages"""

    WAITING_FOR_YEAR_END = "WAITING_FOR_YEAR_END"
    PAPERWORK_PENDING_CHASE = "PAPERWORK_PENDING_CHASE"
    PAPERWORK_RECEIVED = "PAPERWORK_RECEIVED"
    WORK_IN_PROGRESS = "WORK_IN_PROGRESS"
    DISCUSS_WITH_MANAGER = "DISCUSS_WITH_MANAGER"
    REVIEW_BY_PARTNER = "REVIEW_BY_PARTNER"
    REVIEW_DONE_HELLO_SIGN = "REVIEW_DONE_HELLO_SIGN"
    SENT_TO_CLIENT_HELLO_SIGN = "SENT_TO_CLIENT_HELLO_SIGN"
    APPROVED_BY_CLIENT = "APPROVED_BY_CLIENT"
    SUBMISSION_APPROVED_PARTNER = "SUBMISSION_APPROVED_PARTNER"
    FILED_TO_HMRC = "FILED_TO_HMRC"
    CLIENT_SELF_FILING = "CLIENT_SELF_FILING"


class ActorRole(str, enum.Enum):
    """Roles recorded against workflow history"""

    STAFF = "STAFF"
    MANAGER = "MANAGER"
    PARTNER = "PARTNER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class HistoryAction(str, enum.Enum):
    """What a history entry records"""

    CREATED = "created"
    STAGE_CHANGED = "stage_changed"
    STAGE_UNDONE = "stage_undone"
    ASSIGNMENT_CHANGED = "assignment_changed"
    AUTO_ASSIGNED = "auto_assigned"


class FilingWorkflow(BaseModel):
    """One filing period of one kind for one client"""

    __tablename__ = "filing_workflows"

    client_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(20), nullable=False)

    # Filing period
    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)
    filing_due_date = Column(Date, nullable=False)
    quarter_group = Column(String(20), nullable=True)  # VAT only

    # Ltd statutory dates
    accounts_due_date = Column(Date, nullable=True)
    ct_filing_due_date = Column(Date, nullable=True)
    ct_payment_due_date = Column(Date, nullable=True)

    # Stage machine
    current_stage = Column(String(50), nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    assigned_user_id = Column(String(64), nullable=True, index=True)

    created_by_rollover_from_id = Column(GUID(), nullable=True)

    # Optimistic concurrency token, bumped by the mapper on every UPDATE
    version = Column(Integer, nullable=False)

    milestones = relationship(
        "WorkflowMilestone",
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history = relationship(
        "WorkflowHistory",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowHistory.changed_at",
    )

    __table_args__ = (
        UniqueConstraint(
            "client_id", "kind", "period_end", name="uq_filing_workflow_period"
        ),
        Index("ix_filing_workflows_client_kind", "client_id", "kind"),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<FilingWorkflow(client='{self.client_id}', kind='{self.kind}', stage='{self.current_stage}')>"


class WorkflowMilestone(BaseModel):
    """Timestamp and attribution for the moment a stage was reached"""

    __tablename__ = "workflow_milestones"

    workflow_id = Column(
        GUID(), ForeignKey("filing_workflows.id", ondelete="CASCADE"), nullable=False
    )
    stage = Column(String(50), nullable=False)
    milestone = Column(String(50), nullable=False)  # e.g. "paperwork_received"

    reached_at = Column(DateTime(timezone=True), nullable=True)
    actor_user_id = Column(String(64), nullable=True)
    actor_name = Column(String(255), nullable=True)

    workflow = relationship("FilingWorkflow", back_populates="milestones")

    __table_args__ = (
        UniqueConstraint("workflow_id", "stage", name="uq_workflow_milestone_stage"),
    )

    def __repr__(self):
        return f"<WorkflowMilestone(stage='{self.stage}', by='{self.actor_name}')>"


class WorkflowHistory(BaseModel):
    """Append-only ledger of stage and assignment changes"""

    __tablename__ = "workflow_history"

    workflow_id = Column(
        GUID(), ForeignKey("filing_workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # State change details
    from_stage = Column(String(50), nullable=True)
    to_stage = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    changed_at = Column(DateTime(timezone=True), nullable=False)
    days_in_previous_stage = Column(Integer, nullable=True)

    # Actor information
    actor_user_id = Column(String(64), nullable=False)
    actor_name = Column(String(255), nullable=False)
    actor_role = Column(String(20), nullable=False)

    notes = Column(Text, nullable=True)

    workflow = relationship("FilingWorkflow", back_populates="history")

    def __repr__(self):
        return f"<WorkflowHistory(workflow='{self.workflow_id}', {self.from_stage}->{self.to_stage})>"


class NotificationQueue(BaseModel):
    """Queue of workflow notifications for the delivery worker"""

    __tablename__ = "notification_queue"

    workflow_id = Column(GUID(), nullable=False, index=True)
    recipient_id = Column(String(64), nullable=True)

    # Notification details
    notification_type = Column(String(100), nullable=False)  # stage_change, assignment
    subject = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Delivery status
    status = Column(String(50), default="pending", nullable=False)  # pending, sent, failed
    scheduled_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivery_method = Column(String(50), default="email", nullable=False)
    delivery_metadata = Column(JSON, nullable=True)

    # Retry information
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    def __repr__(self):
        return f"<NotificationQueue(type='{self.notification_type}', recipient='{self.recipient_id}', status='{self.status}')>"
