"""
Workflow engine exceptions
Typed errors raised by the compliance workflow services and mapped to HTTP responses in main.py
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base exception with a machine-readable code"""

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format"""
        result = {"error": self.code, "message": self.message}
        if self.context:
            result["context"] = self.context
        return result


class WorkflowNotFoundError(WorkflowError):
    """No workflow matches the given id, or no active workflow for a client/kind"""

    code = "WORKFLOW_NOT_FOUND"


class InvalidWorkflowRequestError(WorkflowError):
    """Request is missing what its workflow kind needs"""

    code = "INVALID_REQUEST"


class UnknownStageError(WorkflowError):
    """A stage value is not part of the catalog for the workflow kind"""

    code = "UNKNOWN_STAGE"

    def __init__(self, kind: str, stage: Any):
        super().__init__(
            f"Stage '{stage}' is not valid for {kind} workflows",
            context={"kind": kind, "stage": str(stage)},
        )
        self.kind = kind
        self.stage = stage


class InvalidTransitionError(WorkflowError):
    """Skip or undo requested without override; nothing was written"""

    code = "INVALID_TRANSITION"

    def __init__(self, rejection):
        super().__init__(rejection.message)
        self.rejection = rejection

    @property
    def skipped_stages(self) -> List[str]:
        return list(self.rejection.skipped_stages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "current_stage": self.rejection.current_stage,
            "skipped_stages": self.rejection.skipped_stages,
            "allowed_next_stages": self.rejection.allowed_next_stages,
            "requires_skip_warning": self.rejection.requires_skip_warning,
        }


class DuplicatePeriodError(WorkflowError):
    """A workflow already exists for this client, kind and period end"""

    code = "DUPLICATE_PERIOD"

    def __init__(self, client_id: str, kind: str, period_end):
        super().__init__(
            f"A {kind} workflow for client {client_id} ending {period_end} already exists",
            context={"client_id": client_id, "kind": kind, "period_end": str(period_end)},
        )
        self.client_id = client_id
        self.kind = kind
        self.period_end = period_end


class ConcurrentModificationError(WorkflowError):
    """The workflow changed underneath this request"""

    code = "CONCURRENT_MODIFICATION"


class RepositoryError(WorkflowError):
    """The repository could not commit; no partial state is visible"""

    code = "REPOSITORY_ERROR"
