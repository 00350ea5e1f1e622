"""
Workflow notifications

Stage change and assignment notifications are best effort. They run after the
workflow change has committed, and a failure here is logged by the caller and
never undoes the change.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from filing_tracker.models.workflow import NotificationQueue
from filing_tracker.schemas.workflow import AssignmentEvent, StageChangeEvent
from filing_tracker.services.stage_catalog import get_catalog

logger = logging.getLogger(__name__)

# Stages the team wants to hear about, on top of filings and undos
NOTIFY_STAGES = frozenset(
    {
        "PAPERWORK_PENDING_CHASE",
        "PAPERWORK_CHASED",
        "DISCUSS_WITH_MANAGER",
        "REVIEW_PENDING_MANAGER",
        "REVIEW_PENDING_PARTNER",
        "REVIEW_BY_PARTNER",
        "APPROVED_BY_CLIENT",
        "CLIENT_APPROVED",
    }
)


def should_notify_stage_change(event: StageChangeEvent) -> bool:
    if event.from_stage == event.to_stage:
        return False
    if event.is_undo:
        return True
    catalog = get_catalog(event.workflow.kind)
    return event.to_stage in NOTIFY_STAGES or catalog.is_terminal(event.to_stage)


def should_notify_assignment(event: AssignmentEvent) -> bool:
    return event.new_assignee_id is not None and event.new_assignee_id != event.previous_assignee_id


def _stage_change_message(event: StageChangeEvent):
    catalog = get_catalog(event.workflow.kind)
    workflow = event.workflow
    to_name = catalog.display_name(event.to_stage)
    from_name = catalog.display_name(event.from_stage)
    verb = "moved back" if event.is_undo else "moved"
    subject = f"{workflow.kind.value} workflow for {workflow.client_id}: {to_name}"
    message = (
        f"{event.actor.name} {verb} the {workflow.kind.value} workflow for client "
        f"{workflow.client_id} (period ending {workflow.period_end.isoformat()}) "
        f"from {from_name} to {to_name}."
    )
    if event.notes:
        message += f"\n\nNotes: {event.notes}"
    return subject, message


def _assignment_message(event: AssignmentEvent):
    workflow = event.workflow
    subject = f"{workflow.kind.value} workflow assigned: {workflow.client_id}"
    message = (
        f"{event.actor.name} assigned you the {workflow.kind.value} workflow for client "
        f"{workflow.client_id}, period ending {workflow.period_end.isoformat()}, "
        f"due {workflow.filing_due_date.isoformat()}."
    )
    return subject, message


class NotificationPort(ABC):
    """Outbound notification collaborator"""

    @abstractmethod
    async def notify_stage_change(self, event: StageChangeEvent) -> None:
        ...

    @abstractmethod
    async def notify_assignment(self, event: AssignmentEvent) -> None:
        ...


class QueuedNotificationService(NotificationPort):
    """Writes notification_queue rows for the email delivery worker"""

    def __init__(self, session_factory: Callable[[], Session], delivery_method: str = "email"):
        self.session_factory = session_factory
        self.delivery_method = delivery_method

    def _enqueue(self, workflow_id: str, recipient_id: Optional[str], notification_type: str, subject: str, message: str, metadata: dict):
        db = self.session_factory()
        try:
            notification = NotificationQueue(
                workflow_id=workflow_id,
                recipient_id=recipient_id,
                notification_type=notification_type,
                subject=subject,
                message=message,
                delivery_method=self.delivery_method,
                delivery_metadata=metadata,
                status="pending",
            )
            db.add(notification)
            db.commit()
            logger.info(f"Queued {notification_type} notification for workflow {workflow_id}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def notify_stage_change(self, event: StageChangeEvent) -> None:
        if not should_notify_stage_change(event):
            return
        subject, message = _stage_change_message(event)
        self._enqueue(
            event.workflow.id,
            event.workflow.assigned_user_id,
            "stage_change",
            subject,
            message,
            {
                "from_stage": event.from_stage,
                "to_stage": event.to_stage,
                "is_undo": event.is_undo,
                "changed_by": event.actor.user_id,
            },
        )

    async def notify_assignment(self, event: AssignmentEvent) -> None:
        if not should_notify_assignment(event):
            return
        subject, message = _assignment_message(event)
        self._enqueue(
            event.workflow.id,
            event.new_assignee_id,
            "assignment",
            subject,
            message,
            {
                "previous_assignee_id": event.previous_assignee_id,
                "assigned_by": event.actor.user_id,
            },
        )


class LoggingNotificationService(NotificationPort):
    """Logs notifications instead of delivering them"""

    def __init__(self):
        self.sent: List[str] = []

    async def notify_stage_change(self, event: StageChangeEvent) -> None:
        if not should_notify_stage_change(event):
            return
        subject, _ = _stage_change_message(event)
        self.sent.append(subject)
        logger.info(f"Notification: {subject}")

    async def notify_assignment(self, event: AssignmentEvent) -> None:
        if not should_notify_assignment(event):
            return
        subject, _ = _assignment_message(event)
        self.sent.append(subject)
        logger.info(f"Notification: {subject}")
