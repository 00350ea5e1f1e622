"""
Activity logging for workflow events
Business-level trail of stage changes, assignments and rollovers
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import Session

from filing_tracker.models.base import GUID, JSON, BaseModel

logger = logging.getLogger(__name__)

WORKFLOW_CREATED = "WORKFLOW_CREATED"
WORKFLOW_STAGE_CHANGED = "WORKFLOW_STAGE_CHANGED"
WORKFLOW_FILING_UNDONE = "WORKFLOW_FILING_UNDONE"
WORKFLOW_ASSIGNED = "WORKFLOW_ASSIGNED"
WORKFLOW_UNASSIGNED = "WORKFLOW_UNASSIGNED"
NEXT_WORKFLOW_AUTO_CREATED = "NEXT_WORKFLOW_AUTO_CREATED"
EXISTING_WORKFLOW_AUTO_ASSIGNED = "EXISTING_WORKFLOW_AUTO_ASSIGNED"
ORPHANED_WORKFLOW_REMOVED = "ORPHANED_WORKFLOW_REMOVED"


class ActivityLog(BaseModel):
    """Activity log entry"""

    __tablename__ = "activity_logs"

    event_type = Column(String(100), nullable=False, index=True)
    event_description = Column(Text, nullable=False)

    # Who
    user_id = Column(String(64), nullable=True, index=True)
    user_name = Column(String(255), nullable=True)
    user_role = Column(String(20), nullable=True)

    # What
    client_id = Column(String(64), nullable=True, index=True)
    workflow_id = Column(GUID(), nullable=True, index=True)
    event_data = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<ActivityLog(event='{self.event_type}', workflow='{self.workflow_id}')>"


class ActivityLogger:
    """Fire-and-forget sink; a failed write is logged and dropped"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def log_event(
        self,
        event_type: str,
        description: str,
        actor=None,
        client_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        db = None
        try:
            db = self.session_factory()
            entry = ActivityLog(
                event_type=event_type,
                event_description=description,
                user_id=actor.user_id if actor else None,
                user_name=actor.name if actor else None,
                user_role=actor.role.value if actor else None,
                client_id=client_id,
                workflow_id=workflow_id,
                event_data=data or {},
            )
            db.add(entry)
            db.commit()
            logger.debug(f"Activity logged: {event_type} for workflow {workflow_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to log activity {event_type}: {str(e)}")
            if db is not None:
                db.rollback()
            return False
        finally:
            if db is not None:
                db.close()
