"""
Pytest configuration and fixtures for Filing Tracker tests
"""

import os
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

# Set test environment variable before any imports
os.environ["TESTING"] = "true"

from filing_tracker.db.database import SessionLocal, clear_tables, create_tables  # noqa: E402
from filing_tracker.models.workflow import ActorRole, WorkflowKind  # noqa: E402
from filing_tracker.schemas.workflow import Actor, CreateWorkflowRequest  # noqa: E402
from filing_tracker.services.notification_service import NotificationPort  # noqa: E402
from filing_tracker.services.workflow_repository import InMemoryWorkflowRepository  # noqa: E402
from filing_tracker.services.workflow_service import WorkflowService  # noqa: E402

create_tables()


FIXED_NOW = datetime(2025, 6, 2, 9, 30, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for services"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture(scope="function")
def db_session():
    """Fresh database session; every table is emptied afterwards"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        clear_tables(db)
        db.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def staff():
    return Actor(user_id="user-anna", name="Anna Staff", role=ActorRole.STAFF)


@pytest.fixture
def manager():
    return Actor(user_id="user-mo", name="Mo Manager", role=ActorRole.MANAGER)


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def notifier():
    """Notification port double"""
    port = Mock(spec=NotificationPort)
    port.notify_stage_change = AsyncMock()
    port.notify_assignment = AsyncMock()
    return port


@pytest.fixture
def activity():
    return Mock()


@pytest.fixture
def service(repository, notifier, activity, clock):
    return WorkflowService(
        repository=repository,
        notifier=notifier,
        activity_logger=activity,
        clock=clock,
        notifications_enabled=True,
    )


@pytest.fixture
def ltd_request():
    return CreateWorkflowRequest(
        client_id="client-acme",
        kind=WorkflowKind.LTD,
        period_end=date(2024, 3, 31),
        assignee_id="user-anna",
    )
