"""
Filing workflow endpoints
Stage changes, assignment and deadlines for VAT, Ltd and Non-Ltd workflows
"""

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from filing_tracker.api.deps import get_current_actor, get_workflow_service
from filing_tracker.core.exceptions import WorkflowError
from filing_tracker.models.workflow import WorkflowKind
from filing_tracker.schemas.workflow import (
    Actor,
    CreateWorkflowRequest,
    DeadlinePreview,
    DeadlineSummary,
    HistoryEntry,
    StageInfo,
    UpdateWorkflowRequest,
    UpdateWorkflowResult,
    WorkflowRecord,
)
from filing_tracker.services import deadline_calculator
from filing_tracker.services.stage_catalog import get_catalog
from filing_tracker.services.workflow_service import WorkflowService

router = APIRouter()


@router.post("/", response_model=WorkflowRecord, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: CreateWorkflowRequest,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Create the workflow for one filing period

    NON_LTD takes a tax year, LTD a period end, VAT a quarter group and a
    date inside the quarter. The workflow starts in its kind's first stage.
    """
    try:
        return await service.create_workflow(request, actor)
    except WorkflowError:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create workflow: {str(e)}",
        )


@router.get("/deadlines/preview", response_model=DeadlinePreview)
async def preview_deadlines(
    period_end: date = Query(..., description="Period or quarter end date"),
):
    """Statutory due dates for a period end"""
    return DeadlinePreview(
        period_end=period_end,
        accounts_filing_due=deadline_calculator.accounts_filing_deadline(period_end),
        corporation_tax_filing_due=deadline_calculator.corporation_tax_filing_deadline(period_end),
        corporation_tax_payment_due=deadline_calculator.corporation_tax_payment_deadline(period_end),
        vat_filing_due=deadline_calculator.vat_filing_deadline(period_end),
    )


@router.get("/catalogs/{kind}", response_model=List[StageInfo])
async def get_stage_catalog(kind: WorkflowKind):
    """Stages of a workflow kind in order"""
    catalog = get_catalog(kind)
    return [
        StageInfo(
            stage=stage.value,
            display_name=catalog.display_name(stage),
            position=catalog.index(stage),
            milestone=catalog.milestone_name(stage),
            is_terminal=catalog.is_terminal(stage),
            is_lateral=catalog.is_lateral(stage),
            selectable=stage not in catalog.auto_set_stages,
        )
        for stage in catalog.ordered_stages
    ]


@router.put("/clients/{client_id}/{kind}", response_model=UpdateWorkflowResult)
async def update_active_workflow(
    client_id: str,
    kind: WorkflowKind,
    request: UpdateWorkflowRequest,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    """Change the stage or assignee of the client's open workflow"""
    return await service.update_active_workflow(client_id, kind, request, actor)


@router.get("/{workflow_id}", response_model=WorkflowRecord)
async def get_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_workflow(workflow_id)


@router.put("/{workflow_id}", response_model=UpdateWorkflowResult)
async def update_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    actor: Actor = Depends(get_current_actor),
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Move a workflow to a new stage and/or change its assignee

    Skipping stages or moving backward needs ``allow_override``; without it
    the response is 409 with the skipped stages and the allowed next stages.
    Send ``assignee_id: null`` to unassign.
    """
    return await service.update_workflow(
        request.model_copy(update={"workflow_id": workflow_id}), actor
    )


@router.get("/{workflow_id}/history", response_model=List[HistoryEntry])
async def get_workflow_history(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_history(workflow_id)


@router.get("/{workflow_id}/deadlines", response_model=DeadlineSummary)
async def get_workflow_deadlines(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service),
):
    return await service.get_deadline_summary(workflow_id)
