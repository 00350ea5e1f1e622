# Database models package

from filing_tracker.models.base import BaseModel, TimestampMixin, UUIDMixin
from filing_tracker.models.workflow import (
    ActorRole,
    FilingWorkflow,
    HistoryAction,
    LtdStage,
    NonLtdStage,
    NotificationQueue,
    VatStage,
    WorkflowHistory,
    WorkflowKind,
    WorkflowMilestone,
)

# ActivityLog lives in core.activity_logger next to its writer

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "ActorRole",
    "FilingWorkflow",
    "HistoryAction",
    "LtdStage",
    "NonLtdStage",
    "NotificationQueue",
    "VatStage",
    "WorkflowHistory",
    "WorkflowKind",
    "WorkflowMilestone",
]
