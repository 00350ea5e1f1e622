"""
Unit tests for stage catalogs and transition validation
"""

import pytest

from filing_tracker.core.exceptions import UnknownStageError
from filing_tracker.models.workflow import LtdStage, NonLtdStage, VatStage, WorkflowKind
from filing_tracker.schemas.workflow import TransitionType
from filing_tracker.services.stage_catalog import (
    LTD_CATALOG,
    NON_LTD_CATALOG,
    VAT_CATALOG,
    StageCatalog,
    get_catalog,
)
from filing_tracker.services.transition_validator import validate_transition


class TestStageCatalog:
    """Catalog structure and helpers"""

    def test_initial_stages(self):
        assert LTD_CATALOG.initial_stage == LtdStage.WAITING_FOR_YEAR_END
        assert NON_LTD_CATALOG.initial_stage == NonLtdStage.WAITING_FOR_YEAR_END
        assert VAT_CATALOG.initial_stage == VatStage.PAPERWORK_PENDING_CHASE

    def test_non_ltd_has_no_companies_house_stage(self):
        assert "FILED_TO_COMPANIES_HOUSE" not in [s.value for s in NON_LTD_CATALOG.ordered_stages]
        assert "FILED_TO_COMPANIES_HOUSE" in [s.value for s in LTD_CATALOG.ordered_stages]

    def test_every_non_initial_stage_has_a_milestone(self):
        for catalog in (LTD_CATALOG, NON_LTD_CATALOG, VAT_CATALOG):
            for stage in catalog.ordered_stages:
                if stage == catalog.initial_stage:
                    assert catalog.milestone_name(stage) is None
                else:
                    assert catalog.milestone_name(stage)

    def test_terminal_stages(self):
        assert LTD_CATALOG.is_terminal("FILED_TO_HMRC")
        assert LTD_CATALOG.is_terminal("CLIENT_SELF_FILING")
        assert not LTD_CATALOG.is_terminal("FILED_TO_COMPANIES_HOUSE")
        assert VAT_CATALOG.terminal_stages == frozenset({VatStage.FILED_TO_HMRC})

    def test_lateral_stage_sits_after_sequence(self):
        assert LTD_CATALOG.index("CLIENT_SELF_FILING") == len(LTD_CATALOG.sequence)

    def test_allowed_next_includes_lateral_for_open_workflow(self):
        allowed = LTD_CATALOG.allowed_next_stages("WORK_IN_PROGRESS")
        assert allowed == [LtdStage.DISCUSS_WITH_MANAGER, LtdStage.CLIENT_SELF_FILING]

    def test_allowed_next_for_terminal_stage(self):
        assert LTD_CATALOG.allowed_next_stages("FILED_TO_HMRC") == []
        assert VAT_CATALOG.allowed_next_stages("FILED_TO_HMRC") == []

    def test_selectable_stages_hide_auto_set_stages(self):
        selectable = VAT_CATALOG.selectable_stages()
        assert VatStage.REVIEWED_BY_MANAGER not in selectable
        assert VatStage.REVIEWED_BY_PARTNER not in selectable
        assert VatStage.REVIEW_PENDING_MANAGER in selectable

    def test_progress(self):
        assert LTD_CATALOG.progress("WAITING_FOR_YEAR_END").position == 1
        assert LTD_CATALOG.progress("FILED_TO_HMRC").percentage == 100
        assert LTD_CATALOG.progress("CLIENT_SELF_FILING").percentage == 100

    def test_display_name(self):
        assert VAT_CATALOG.display_name("FILED_TO_HMRC") == "Filed to HMRC"

    def test_coerce_unknown_stage(self):
        with pytest.raises(UnknownStageError):
            NON_LTD_CATALOG.coerce("FILED_TO_COMPANIES_HOUSE")

    def test_get_catalog_accepts_strings(self):
        assert get_catalog("VAT") is VAT_CATALOG
        assert get_catalog(WorkflowKind.LTD) is LTD_CATALOG

    def test_catalog_rejects_missing_milestone(self):
        with pytest.raises(ValueError, match="milestone"):
            StageCatalog(
                kind=WorkflowKind.VAT,
                stage_enum=VatStage,
                sequence=list(VatStage),
                terminal_stages=[VatStage.FILED_TO_HMRC],
                rollover_stage=VatStage.FILED_TO_HMRC,
                milestones={VatStage.FILED_TO_HMRC: "filed_to_hmrc"},
                display_names={s: s.value for s in VatStage},
            )


class TestTransitionValidator:
    """Skip and undo classification"""

    def test_assignment_only(self):
        result = validate_transition("LTD", "WORK_IN_PROGRESS", None)
        assert result.valid
        assert result.transition == TransitionType.ASSIGNMENT_ONLY

    def test_same_stage_is_no_op(self):
        result = validate_transition("VAT", "WORK_IN_PROGRESS", "WORK_IN_PROGRESS")
        assert result.valid
        assert result.transition == TransitionType.NO_OP

    def test_next_stage_is_accepted(self):
        result = validate_transition("LTD", "PAPERWORK_PENDING_CHASE", "PAPERWORK_RECEIVED")
        assert result.valid
        assert result.transition == TransitionType.ADVANCE

    def test_skip_reports_intermediate_stages(self):
        result = validate_transition("LTD", "PAPERWORK_PENDING_CHASE", "REVIEW_BY_PARTNER")

        assert not result.valid
        assert result.rejection.requires_skip_warning is True
        assert result.rejection.current_stage == "PAPERWORK_PENDING_CHASE"
        assert result.rejection.skipped_stages == [
            "PAPERWORK_RECEIVED",
            "WORK_IN_PROGRESS",
            "DISCUSS_WITH_MANAGER",
        ]
        assert result.rejection.allowed_next_stages == ["PAPERWORK_RECEIVED", "CLIENT_SELF_FILING"]

    def test_skip_with_override(self):
        result = validate_transition("LTD", "PAPERWORK_PENDING_CHASE", "REVIEW_BY_PARTNER", allow_override=True)
        assert result.valid
        assert result.transition == TransitionType.SKIP
        assert len(result.skipped_stages) == 3

    def test_undo_requires_override(self):
        result = validate_transition("VAT", "EMAILED_TO_CLIENT", "WORK_IN_PROGRESS")

        assert not result.valid
        assert result.rejection.skipped_stages == [
            "QUERIES_PENDING",
            "REVIEW_PENDING_MANAGER",
            "REVIEWED_BY_MANAGER",
            "REVIEW_PENDING_PARTNER",
            "REVIEWED_BY_PARTNER",
            "EMAILED_TO_PARTNER",
            "EMAILED_TO_CLIENT",
        ]

    def test_undo_by_one_stage_also_requires_override(self):
        result = validate_transition("NON_LTD", "FILED_TO_HMRC", "SUBMISSION_APPROVED_PARTNER")
        assert not result.valid
        assert result.rejection.skipped_stages == ["FILED_TO_HMRC"]

    def test_undo_with_override(self):
        result = validate_transition("NON_LTD", "FILED_TO_HMRC", "WORK_IN_PROGRESS", allow_override=True)
        assert result.valid
        assert result.is_undo
        assert result.undone_stages[-1] == "FILED_TO_HMRC"

    def test_lateral_move_is_never_a_skip(self):
        result = validate_transition("LTD", "PAPERWORK_RECEIVED", "CLIENT_SELF_FILING")
        assert result.valid
        assert result.transition == TransitionType.LATERAL

    def test_filed_workflow_cannot_move_to_self_filing_without_override(self):
        assert LTD_CATALOG.allowed_next_stages("FILED_TO_HMRC") == []

        result = validate_transition("LTD", "FILED_TO_HMRC", "CLIENT_SELF_FILING")

        assert not result.valid
        assert result.rejection.requires_skip_warning is True
        assert result.rejection.skipped_stages == ["FILED_TO_HMRC"]
        assert result.rejection.allowed_next_stages == []

    def test_filed_to_self_filing_with_override_is_an_undo(self):
        result = validate_transition("NON_LTD", "FILED_TO_HMRC", "CLIENT_SELF_FILING", allow_override=True)
        assert result.valid
        assert result.is_undo
        assert result.undone_stages == ["FILED_TO_HMRC"]

    def test_leaving_lateral_stage_is_an_undo(self):
        result = validate_transition("LTD", "CLIENT_SELF_FILING", "WORK_IN_PROGRESS")
        assert not result.valid
        assert "CLIENT_SELF_FILING" in result.rejection.skipped_stages

    def test_unknown_stage_raises(self):
        with pytest.raises(UnknownStageError):
            validate_transition("VAT", "WORK_IN_PROGRESS", "FILED_TO_COMPANIES_HOUSE")
        with pytest.raises(UnknownStageError):
            validate_transition("LTD", "NOT_A_STAGE", "WORK_IN_PROGRESS")
