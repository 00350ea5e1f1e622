"""
Stage catalogs for VAT, Ltd and Non-Ltd filing workflows

One StageCatalog per workflow kind holds the ordered stages, the terminal
and lateral stages, and the milestone written when each stage is reached.
"""

from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Type

from filing_tracker.core.exceptions import UnknownStageError
from filing_tracker.models.workflow import LtdStage, NonLtdStage, VatStage, WorkflowKind
from filing_tracker.schemas.workflow import StageProgress


class StageCatalog:
    """Ordered stage machine for a single workflow kind"""

    def __init__(
        self,
        kind: WorkflowKind,
        stage_enum: Type[Enum],
        sequence: Iterable[Enum],
        terminal_stages: Iterable[Enum],
        rollover_stage: Enum,
        milestones: Mapping[Enum, str],
        display_names: Mapping[Enum, str],
        lateral_stages: Iterable[Enum] = (),
        auto_set_stages: Iterable[Enum] = (),
    ):
        self.kind = kind
        self.stage_enum = stage_enum
        self.sequence: Tuple[Enum, ...] = tuple(sequence)
        self.lateral_stages: Tuple[Enum, ...] = tuple(lateral_stages)
        self.terminal_stages = frozenset(terminal_stages)
        self.rollover_stage = rollover_stage
        self.milestones: Dict[Enum, str] = dict(milestones)
        self.display_names: Dict[Enum, str] = dict(display_names)
        self.auto_set_stages = frozenset(auto_set_stages)

        self._positions = {stage: idx for idx, stage in enumerate(self.sequence)}
        for stage in self.lateral_stages:
            self._positions[stage] = len(self.sequence)

        self._check_integrity()

    def _check_integrity(self):
        """Fail at import time if the tables disagree with the stage enum"""
        declared = set(self.stage_enum)
        ordered = set(self.sequence) | set(self.lateral_stages)
        if declared != ordered:
            raise ValueError(
                f"{self.kind.value} catalog does not order every stage: "
                f"{sorted(s.value for s in declared ^ ordered)}"
            )

        expected = ordered - {self.initial_stage}
        if set(self.milestones) != expected:
            missing = sorted(s.value for s in expected - set(self.milestones))
            extra = sorted(s.value for s in set(self.milestones) - expected)
            raise ValueError(
                f"{self.kind.value} milestone table mismatch: missing={missing} extra={extra}"
            )

        if set(self.display_names) != declared:
            raise ValueError(f"{self.kind.value} catalog is missing display names")

        if not self.terminal_stages <= declared or self.rollover_stage not in self.terminal_stages:
            raise ValueError(f"{self.kind.value} terminal stages are inconsistent")

    @property
    def initial_stage(self) -> Enum:
        return self.sequence[0]

    @property
    def ordered_stages(self) -> Tuple[Enum, ...]:
        return self.sequence + self.lateral_stages

    def coerce(self, value) -> Enum:
        """Turn a raw stage value into this catalog's enum member"""
        if isinstance(value, self.stage_enum):
            return value
        raw = value.value if isinstance(value, Enum) else value
        try:
            return self.stage_enum(raw)
        except ValueError:
            raise UnknownStageError(self.kind.value, raw)

    def contains(self, value) -> bool:
        try:
            self.coerce(value)
        except UnknownStageError:
            return False
        return True

    def index(self, stage) -> int:
        return self._positions[self.coerce(stage)]

    def is_terminal(self, stage) -> bool:
        return self.coerce(stage) in self.terminal_stages

    def is_lateral(self, stage) -> bool:
        return self.coerce(stage) in self.lateral_stages

    def next_stage(self, stage) -> Optional[Enum]:
        stage = self.coerce(stage)
        if stage in self.lateral_stages:
            return None
        idx = self._positions[stage]
        if idx + 1 < len(self.sequence):
            return self.sequence[idx + 1]
        return None

    def allowed_next_stages(self, stage) -> List[Enum]:
        """Stages reachable from ``stage`` without a skip warning"""
        stage = self.coerce(stage)
        allowed = []
        following = self.next_stage(stage)
        if following is not None:
            allowed.append(following)
        if stage not in self.terminal_stages:
            allowed.extend(s for s in self.lateral_stages if s != stage)
        return allowed

    def stages_between(self, low, high) -> List[Enum]:
        """Stages positioned after ``low`` up to and including ``high``"""
        low_idx, high_idx = self.index(low), self.index(high)
        return [s for s in self.ordered_stages if low_idx < self._positions[s] <= high_idx]

    def skipped_stages(self, from_stage, to_stage) -> List[Enum]:
        """Sequence stages jumped over moving forward from ``from_stage`` to ``to_stage``"""
        from_idx, to_idx = self.index(from_stage), self.index(to_stage)
        return list(self.sequence[from_idx + 1:to_idx])

    def selectable_stages(self) -> List[Enum]:
        return [s for s in self.ordered_stages if s not in self.auto_set_stages]

    def milestone_name(self, stage) -> Optional[str]:
        return self.milestones.get(self.coerce(stage))

    def display_name(self, stage) -> str:
        return self.display_names[self.coerce(stage)]

    def progress(self, stage) -> StageProgress:
        stage = self.coerce(stage)
        total = len(self.sequence)
        position = min(self._positions[stage] + 1, total)
        if stage in self.terminal_stages:
            position = total
        return StageProgress(
            position=position,
            total=total,
            percentage=round(position * 100 / total),
        )

    def __repr__(self):
        return f"<StageCatalog({self.kind.value}, {len(self.ordered_stages)} stages)>"


_ACCOUNTS_MILESTONES = {
    "PAPERWORK_PENDING_CHASE": "chase_started",
    "PAPERWORK_RECEIVED": "paperwork_received",
    "WORK_IN_PROGRESS": "work_started",
    "DISCUSS_WITH_MANAGER": "manager_discussion",
    "REVIEW_BY_PARTNER": "partner_review",
    "REVIEW_DONE_HELLO_SIGN": "review_completed",
    "SENT_TO_CLIENT_HELLO_SIGN": "sent_to_client",
    "APPROVED_BY_CLIENT": "client_approved",
    "SUBMISSION_APPROVED_PARTNER": "partner_approved",
    "FILED_TO_COMPANIES_HOUSE": "filed_to_companies_house",
    "FILED_TO_HMRC": "filed_to_hmrc",
    "CLIENT_SELF_FILING": "client_self_filing",
}

_ACCOUNTS_DISPLAY_NAMES = {
    "WAITING_FOR_YEAR_END": "Waiting for Year End",
    "PAPERWORK_PENDING_CHASE": "Pending to Chase Paperwork",
    "PAPERWORK_RECEIVED": "Paperwork Received",
    "WORK_IN_PROGRESS": "Work in Progress",
    "DISCUSS_WITH_MANAGER": "To Discuss with Manager",
    "REVIEW_BY_PARTNER": "To Review by Partner",
    "REVIEW_DONE_HELLO_SIGN": "Review Done - Hello Sign to Client",
    "SENT_TO_CLIENT_HELLO_SIGN": "Sent to Client on Hello Sign",
    "APPROVED_BY_CLIENT": "Approved by Client",
    "SUBMISSION_APPROVED_PARTNER": "Submission Approved by Partner",
    "FILED_TO_COMPANIES_HOUSE": "Filed to Companies House",
    "FILED_TO_HMRC": "Filed to HMRC",
    "CLIENT_SELF_FILING": "Client Self-Filing",
}


def _accounts_table(stage_enum, table):
    return {stage_enum(name): value for name, value in table.items() if name in stage_enum.__members__}


VAT_CATALOG = StageCatalog(
    kind=WorkflowKind.VAT,
    stage_enum=VatStage,
    sequence=list(VatStage),
    terminal_stages=[VatStage.FILED_TO_HMRC],
    rollover_stage=VatStage.FILED_TO_HMRC,
    milestones={
        VatStage.PAPERWORK_CHASED: "paperwork_chased",
        VatStage.PAPERWORK_RECEIVED: "paperwork_received",
        VatStage.WORK_IN_PROGRESS: "work_started",
        VatStage.QUERIES_PENDING: "queries_raised",
        VatStage.REVIEW_PENDING_MANAGER: "manager_review_requested",
        VatStage.REVIEWED_BY_MANAGER: "manager_reviewed",
        VatStage.REVIEW_PENDING_PARTNER: "partner_review",
        VatStage.REVIEWED_BY_PARTNER: "partner_reviewed",
        VatStage.EMAILED_TO_PARTNER: "emailed_to_partner",
        VatStage.EMAILED_TO_CLIENT: "sent_to_client",
        VatStage.CLIENT_APPROVED: "client_approved",
        VatStage.FILED_TO_HMRC: "filed_to_hmrc",
    },
    display_names={
        VatStage.PAPERWORK_PENDING_CHASE: "Pending to chase",
        VatStage.PAPERWORK_CHASED: "Paperwork chased",
        VatStage.PAPERWORK_RECEIVED: "Paperwork received",
        VatStage.WORK_IN_PROGRESS: "Work in progress",
        VatStage.QUERIES_PENDING: "Queries pending",
        VatStage.REVIEW_PENDING_MANAGER: "Review pending by manager",
        VatStage.REVIEWED_BY_MANAGER: "Reviewed by manager",
        VatStage.REVIEW_PENDING_PARTNER: "Review pending by partner",
        VatStage.REVIEWED_BY_PARTNER: "Reviewed by partner",
        VatStage.EMAILED_TO_PARTNER: "Emailed to partner",
        VatStage.EMAILED_TO_CLIENT: "Emailed to client",
        VatStage.CLIENT_APPROVED: "Client approved",
        VatStage.FILED_TO_HMRC: "Filed to HMRC",
    },
    auto_set_stages=[VatStage.REVIEWED_BY_MANAGER, VatStage.REVIEWED_BY_PARTNER],
)

LTD_CATALOG = StageCatalog(
    kind=WorkflowKind.LTD,
    stage_enum=LtdStage,
    sequence=[s for s in LtdStage if s != LtdStage.CLIENT_SELF_FILING],
    lateral_stages=[LtdStage.CLIENT_SELF_FILING],
    terminal_stages=[LtdStage.FILED_TO_HMRC, LtdStage.CLIENT_SELF_FILING],
    rollover_stage=LtdStage.FILED_TO_HMRC,
    milestones=_accounts_table(LtdStage, _ACCOUNTS_MILESTONES),
    display_names=_accounts_table(LtdStage, _ACCOUNTS_DISPLAY_NAMES),
)

NON_LTD_CATALOG = StageCatalog(
    kind=WorkflowKind.NON_LTD,
    stage_enum=NonLtdStage,
    sequence=[s for s in NonLtdStage if s != NonLtdStage.CLIENT_SELF_FILING],
    lateral_stages=[NonLtdStage.CLIENT_SELF_FILING],
    terminal_stages=[NonLtdStage.FILED_TO_HMRC, NonLtdStage.CLIENT_SELF_FILING],
    rollover_stage=NonLtdStage.FILED_TO_HMRC,
    milestones=_accounts_table(NonLtdStage, _ACCOUNTS_MILESTONES),
    display_names=_accounts_table(NonLtdStage, _ACCOUNTS_DISPLAY_NAMES),
)

CATALOGS: Dict[WorkflowKind, StageCatalog] = {
    WorkflowKind.VAT: VAT_CATALOG,
    WorkflowKind.LTD: LTD_CATALOG,
    WorkflowKind.NON_LTD: NON_LTD_CATALOG,
}


def get_catalog(kind) -> StageCatalog:
    """Look up the catalog for a workflow kind"""
    return CATALOGS[WorkflowKind(kind)]
