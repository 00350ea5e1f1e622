"""
API Dependencies
Database sessions, request actor and the workflow service for FastAPI endpoints
"""

from typing import Generator, Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from filing_tracker.core.activity_logger import ActivityLogger
from filing_tracker.core.config import settings
from filing_tracker.db.database import SessionLocal
from filing_tracker.models.workflow import ActorRole
from filing_tracker.schemas.workflow import Actor
from filing_tracker.services.notification_service import QueuedNotificationService
from filing_tracker.services.workflow_repository import SqlAlchemyWorkflowRepository
from filing_tracker.services.workflow_service import WorkflowService


def get_db() -> Generator:
    """
    Database dependency
    Creates and yields database session, ensures proper cleanup
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory for writes that happen outside the request transaction"""
    return SessionLocal


def get_current_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """
    Actor for the request, taken from identity headers set by the gateway.

    Session handling and role checks live in front of this service.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )

    role = ActorRole.STAFF
    if x_user_role:
        try:
            role = ActorRole(x_user_role.upper())
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {x_user_role}",
            )
    if role == ActorRole.SYSTEM and x_user_id != settings.SYSTEM_USER_ID:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="SYSTEM role is reserved",
        )

    default_name = settings.SYSTEM_USER_NAME if role == ActorRole.SYSTEM else x_user_id
    return Actor(user_id=x_user_id, name=x_user_name or default_name, role=role)


def get_workflow_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
) -> WorkflowService:
    """Workflow service bound to the request session; notifications run as background tasks"""
    return WorkflowService(
        repository=SqlAlchemyWorkflowRepository(db),
        notifier=QueuedNotificationService(session_factory),
        activity_logger=ActivityLogger(session_factory),
        schedule=background_tasks.add_task,
    )
