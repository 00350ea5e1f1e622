"""
Workflow Repository
Atomic load/save of filing workflows, milestones and history
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from filing_tracker.core.exceptions import (
    ConcurrentModificationError,
    DuplicatePeriodError,
    RepositoryError,
    WorkflowNotFoundError,
)
from filing_tracker.models.workflow import FilingWorkflow, WorkflowHistory, WorkflowMilestone
from filing_tracker.schemas.workflow import (
    HistoryEntry,
    MilestoneDelta,
    MilestoneSlot,
    WorkflowRecord,
)

logger = logging.getLogger(__name__)

_WORKFLOW_FIELDS = (
    "client_id",
    "kind",
    "period_start",
    "period_end",
    "filing_due_date",
    "quarter_group",
    "accounts_due_date",
    "ct_filing_due_date",
    "ct_payment_due_date",
    "current_stage",
    "is_completed",
    "assigned_user_id",
    "created_by_rollover_from_id",
)

_HISTORY_FIELDS = (
    "from_stage",
    "to_stage",
    "action",
    "changed_at",
    "days_in_previous_stage",
    "actor_user_id",
    "actor_name",
    "actor_role",
    "notes",
)


class WorkflowRepository(ABC):
    """
    Persistence port for the workflow engine.

    Every write made inside ``transaction()`` commits together or not at all.
    Implementations serialize writers on the same workflow and reject a
    second workflow for the same client, kind and period end with
    DuplicatePeriodError.
    """

    @abstractmethod
    def transaction(self):
        """Context manager wrapping one atomic unit of work"""

    @abstractmethod
    def get(self, workflow_id: str, for_update: bool = False) -> Optional[WorkflowRecord]:
        ...

    @abstractmethod
    def load_active(self, client_id: str, kind) -> Optional[WorkflowRecord]:
        """Earliest-ending workflow of this kind that is not completed"""

    @abstractmethod
    def find_by_period_end(self, client_id: str, kind, period_end: date) -> Optional[WorkflowRecord]:
        ...

    @abstractmethod
    def create(self, record: WorkflowRecord, history_entry: HistoryEntry) -> Tuple[WorkflowRecord, HistoryEntry]:
        ...

    @abstractmethod
    def save(
        self,
        record: WorkflowRecord,
        history_entry: HistoryEntry,
        delta: Optional[MilestoneDelta] = None,
    ) -> Tuple[WorkflowRecord, HistoryEntry]:
        """Persist ``record`` if its version is still current and append the entry"""

    @abstractmethod
    def assign(self, workflow_id: str, user_id: Optional[str], history_entry: HistoryEntry) -> WorkflowRecord:
        ...

    @abstractmethod
    def delete_workflow(self, workflow_id: str) -> bool:
        """Remove a workflow with its milestones and history"""

    @abstractmethod
    def list_history(self, workflow_id: str) -> List[HistoryEntry]:
        ...

    def latest_history(self, workflow_id: str) -> Optional[HistoryEntry]:
        entries = self.list_history(workflow_id)
        return entries[-1] if entries else None


def _kind_value(kind) -> str:
    return getattr(kind, "value", kind)


class SqlAlchemyWorkflowRepository(WorkflowRepository):
    """
    SQLAlchemy adapter.

    Rows are locked with SELECT ... FOR UPDATE and the mapper's version
    column catches writers that slipped past the lock. With
    ``manage_transactions=False`` the caller owns the transaction; work runs
    in a SAVEPOINT and is never committed here.
    """

    def __init__(self, db: Session, manage_transactions: bool = True):
        self.db = db
        self.manage_transactions = manage_transactions
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["SqlAlchemyWorkflowRepository"]:
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        savepoint = None if self.manage_transactions else self.db.begin_nested()
        self._depth = 1
        try:
            yield self
            if savepoint is not None:
                savepoint.commit()
            else:
                self.db.commit()
        except Exception as e:
            if savepoint is not None:
                savepoint.rollback()
            else:
                self.db.rollback()
            if isinstance(e, StaleDataError):
                raise ConcurrentModificationError("Workflow was modified by another request") from e
            if isinstance(e, SQLAlchemyError):
                logger.error(f"Workflow transaction failed: {str(e)}")
                raise RepositoryError("Could not commit workflow changes") from e
            raise
        finally:
            self._depth = 0

    def _flush(self):
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError("Workflow was modified by another request") from e

    def _query_row(self, workflow_id: str, for_update: bool = False) -> Optional[FilingWorkflow]:
        try:
            uuid.UUID(str(workflow_id))
        except ValueError:
            return None
        query = self.db.query(FilingWorkflow).filter(FilingWorkflow.id == str(workflow_id))
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def _require_row(self, workflow_id: str) -> FilingWorkflow:
        row = self._query_row(workflow_id, for_update=True)
        if row is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return row

    @staticmethod
    def _to_record(row: FilingWorkflow) -> WorkflowRecord:
        data = {field: getattr(row, field) for field in _WORKFLOW_FIELDS}
        return WorkflowRecord(
            id=row.id,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
            milestones={m.stage: MilestoneSlot.model_validate(m) for m in row.milestones},
            **data,
        )

    @staticmethod
    def _history_row(workflow_id: str, entry: HistoryEntry) -> WorkflowHistory:
        values = entry.model_dump(include=set(_HISTORY_FIELDS))
        values["action"] = entry.action.value
        values["actor_role"] = entry.actor_role.value
        return WorkflowHistory(workflow_id=workflow_id, **values)

    def get(self, workflow_id: str, for_update: bool = False) -> Optional[WorkflowRecord]:
        row = self._query_row(workflow_id, for_update=for_update)
        return self._to_record(row) if row else None

    def load_active(self, client_id: str, kind) -> Optional[WorkflowRecord]:
        row = (
            self.db.query(FilingWorkflow)
            .filter(
                FilingWorkflow.client_id == client_id,
                FilingWorkflow.kind == _kind_value(kind),
                FilingWorkflow.is_completed.is_(False),
            )
            .order_by(FilingWorkflow.period_end.asc())
            .first()
        )
        return self._to_record(row) if row else None

    def find_by_period_end(self, client_id: str, kind, period_end: date) -> Optional[WorkflowRecord]:
        row = (
            self.db.query(FilingWorkflow)
            .filter(
                FilingWorkflow.client_id == client_id,
                FilingWorkflow.kind == _kind_value(kind),
                FilingWorkflow.period_end == period_end,
            )
            .first()
        )
        return self._to_record(row) if row else None

    def create(self, record: WorkflowRecord, history_entry: HistoryEntry) -> Tuple[WorkflowRecord, HistoryEntry]:
        values = {field: getattr(record, field) for field in _WORKFLOW_FIELDS}
        values["kind"] = _kind_value(record.kind)
        row = FilingWorkflow(**values)
        for stage, slot in record.milestones.items():
            row.milestones.append(WorkflowMilestone(**slot.model_dump()))
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise DuplicatePeriodError(record.client_id, values["kind"], record.period_end) from e

        history_row = self._history_row(row.id, history_entry)
        self.db.add(history_row)
        self._flush()

        logger.info(f"Created {values['kind']} workflow {row.id} for client {record.client_id} ending {record.period_end}")
        return self._to_record(row), HistoryEntry.model_validate(history_row)

    def save(
        self,
        record: WorkflowRecord,
        history_entry: HistoryEntry,
        delta: Optional[MilestoneDelta] = None,
    ) -> Tuple[WorkflowRecord, HistoryEntry]:
        row = self._require_row(record.id)
        if row.version != record.version:
            raise ConcurrentModificationError(
                f"Workflow {record.id} is at version {row.version}, expected {record.version}"
            )

        row.current_stage = record.current_stage
        row.is_completed = record.is_completed
        row.assigned_user_id = record.assigned_user_id
        # Always dirty the row so the version is bumped
        row.updated_at = datetime.now(timezone.utc)

        if delta is not None:
            existing = {m.stage: m for m in row.milestones}
            for stage in delta.cleared_stages:
                if stage in existing:
                    row.milestones.remove(existing[stage])
            for stage, slot in delta.set_milestones.items():
                milestone = existing.get(stage)
                if milestone is None:
                    row.milestones.append(WorkflowMilestone(**slot.model_dump()))
                else:
                    milestone.reached_at = slot.reached_at
                    milestone.actor_user_id = slot.actor_user_id
                    milestone.actor_name = slot.actor_name

        history_row = self._history_row(row.id, history_entry)
        self.db.add(history_row)
        self._flush()
        return self._to_record(row), HistoryEntry.model_validate(history_row)

    def assign(self, workflow_id: str, user_id: Optional[str], history_entry: HistoryEntry) -> WorkflowRecord:
        row = self._require_row(workflow_id)
        row.assigned_user_id = user_id
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(self._history_row(row.id, history_entry))
        self._flush()
        return self._to_record(row)

    def delete_workflow(self, workflow_id: str) -> bool:
        row = self._query_row(workflow_id, for_update=True)
        if row is None:
            return False
        self.db.delete(row)
        self._flush()
        logger.info(f"Deleted workflow {workflow_id} with its history")
        return True

    def list_history(self, workflow_id: str) -> List[HistoryEntry]:
        rows = (
            self.db.query(WorkflowHistory)
            .filter(WorkflowHistory.workflow_id == str(workflow_id))
            .order_by(WorkflowHistory.changed_at.asc(), WorkflowHistory.created_at.asc())
            .all()
        )
        return [HistoryEntry.model_validate(r) for r in rows]


class InMemoryWorkflowRepository(WorkflowRepository):
    """Dictionary-backed repository for tests and scripting"""

    def __init__(self):
        self._workflows: Dict[str, WorkflowRecord] = {}
        self._history: Dict[str, List[HistoryEntry]] = {}
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["InMemoryWorkflowRepository"]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy((self._workflows, self._history))
            self._depth = 1
            try:
                yield self
            except Exception:
                self._workflows, self._history = snapshot
                raise
            finally:
                self._depth = 0

    def get(self, workflow_id: str, for_update: bool = False) -> Optional[WorkflowRecord]:
        record = self._workflows.get(str(workflow_id))
        return record.model_copy(deep=True) if record else None

    def load_active(self, client_id: str, kind) -> Optional[WorkflowRecord]:
        candidates = [
            w for w in self._workflows.values()
            if w.client_id == client_id and w.kind == kind and not w.is_completed
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda w: w.period_end).model_copy(deep=True)

    def find_by_period_end(self, client_id: str, kind, period_end: date) -> Optional[WorkflowRecord]:
        for w in self._workflows.values():
            if w.client_id == client_id and w.kind == kind and w.period_end == period_end:
                return w.model_copy(deep=True)
        return None

    def _stamp(self, entry: HistoryEntry, workflow_id: str) -> HistoryEntry:
        return entry.model_copy(update={"id": str(uuid.uuid4()), "workflow_id": workflow_id})

    def create(self, record: WorkflowRecord, history_entry: HistoryEntry) -> Tuple[WorkflowRecord, HistoryEntry]:
        with self.transaction():
            if self.find_by_period_end(record.client_id, record.kind, record.period_end):
                raise DuplicatePeriodError(record.client_id, _kind_value(record.kind), record.period_end)
            now = datetime.now(timezone.utc)
            stored = record.model_copy(
                deep=True,
                update={"id": str(uuid.uuid4()), "version": 1, "created_at": now, "updated_at": now},
            )
            entry = self._stamp(history_entry, stored.id)
            self._workflows[stored.id] = stored
            self._history[stored.id] = [entry]
            return stored.model_copy(deep=True), entry

    def save(
        self,
        record: WorkflowRecord,
        history_entry: HistoryEntry,
        delta: Optional[MilestoneDelta] = None,
    ) -> Tuple[WorkflowRecord, HistoryEntry]:
        with self.transaction():
            current = self._workflows.get(str(record.id))
            if current is None:
                raise WorkflowNotFoundError(f"Workflow {record.id} not found")
            if current.version != record.version:
                raise ConcurrentModificationError(
                    f"Workflow {record.id} is at version {current.version}, expected {record.version}"
                )
            stored = record.model_copy(
                deep=True,
                update={"version": current.version + 1, "updated_at": datetime.now(timezone.utc)},
            )
            entry = self._stamp(history_entry, stored.id)
            self._workflows[stored.id] = stored
            self._history.setdefault(stored.id, []).append(entry)
            return stored.model_copy(deep=True), entry

    def assign(self, workflow_id: str, user_id: Optional[str], history_entry: HistoryEntry) -> WorkflowRecord:
        with self.transaction():
            current = self._workflows.get(str(workflow_id))
            if current is None:
                raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
            stored = current.model_copy(
                update={
                    "assigned_user_id": user_id,
                    "version": current.version + 1,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            self._workflows[stored.id] = stored
            self._history.setdefault(stored.id, []).append(self._stamp(history_entry, stored.id))
            return stored.model_copy(deep=True)

    def delete_workflow(self, workflow_id: str) -> bool:
        with self.transaction():
            removed = self._workflows.pop(str(workflow_id), None)
            self._history.pop(str(workflow_id), None)
            return removed is not None

    def list_history(self, workflow_id: str) -> List[HistoryEntry]:
        return list(self._history.get(str(workflow_id), []))

    def count(self) -> int:
        return len(self._workflows)
