"""Workflow REST API.

All routes are mounted under `/api`. The organization and acting user come
from the `X-Organization-Id` and `X-User-Id` headers; authenticating them is
somebody else's job.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Header, HTTPException, Query, Request, Response

from workflow_hub.server.models import (
    CreateWorkflowRequest,
    DuplicateWorkflowRequest,
    ExecuteRequest,
    ReorderStepsRequest,
    StepActionsRequest,
    StepRecordRequest,
    TransitionRequest,
    UploadUrlRequest,
)
from workflow_hub.services.analytics import WorkflowAnalytics
from workflow_hub.services.execution_tracker import ExecutionSummary
from workflow_hub.services.pagination import Page
from workflow_hub.services.uploads import UploadTicket
from workflow_hub.services.workflow_service import (
    DeleteOutcome,
    ReorderOutcome,
    StepBatchResult,
    WorkflowDetail,
    WorkflowService,
    WorkflowSummary,
)
from workflow_hub.workflow.execution import ExecutionContext, WorkflowExecution
from workflow_hub.workflow.models import Step, Workflow

router = APIRouter()


def _service(request: Request) -> WorkflowService:
    service = getattr(request.app.state, "workflow_service", None)
    if not isinstance(service, WorkflowService):
        raise HTTPException(status_code=500, detail="Workflow service not configured")
    return service


OrgId = Annotated[str, Header(alias="X-Organization-Id", min_length=1)]
UserId = Annotated[str | None, Header(alias="X-User-Id")]


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# --- Workflows ----------------------------------------------------------------


@router.post("/workflows", response_model=Workflow, status_code=201)
def create_workflow(
    request: Request,
    org_id: OrgId,
    body: CreateWorkflowRequest,
    user_id: UserId = None,
) -> Workflow:
    return _service(request).create_workflow(
        body.title,
        organization_id=org_id,
        actor_id=user_id,
        description=body.description,
        template_id=body.template_id,
        settings=body.settings,
        trigger=body.trigger,
    )


@router.get("/workflows", response_model=Page[WorkflowSummary])
def list_workflows(
    request: Request,
    org_id: OrgId,
    search: str | None = Query(default=None),
    status: str | None = Query(default=None),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
    page: int = Query(default=1),
    limit: int = Query(default=20),
) -> Page[WorkflowSummary]:
    return _service(request).list_workflows(
        org_id,
        search=search,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )


@router.get("/workflows/{workflow_id}", response_model=WorkflowDetail)
def get_workflow(request: Request, org_id: OrgId, workflow_id: str) -> WorkflowDetail:
    return _service(request).get_workflow(workflow_id, org_id)


@router.put("/workflows/{workflow_id}", response_model=Workflow)
def update_workflow(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    changes: dict[str, Any] = Body(...),
    expected_version: int | None = Query(default=None),
    user_id: UserId = None,
) -> Workflow:
    return _service(request).update_workflow(
        workflow_id, org_id, changes, actor_id=user_id, expected_version=expected_version
    )


@router.delete("/workflows/{workflow_id}", response_model=DeleteOutcome)
def delete_workflow(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    user_id: UserId = None,
) -> DeleteOutcome:
    return _service(request).delete_workflow(workflow_id, org_id, actor_id=user_id)


@router.post("/workflows/{workflow_id}/duplicate", response_model=Workflow, status_code=201)
def duplicate_workflow(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    body: DuplicateWorkflowRequest | None = None,
    user_id: UserId = None,
) -> Workflow:
    body = body or DuplicateWorkflowRequest()
    return _service(request).duplicate_workflow(
        workflow_id,
        org_id,
        actor_id=user_id,
        title=body.title,
        copy_steps=body.copy_steps,
        copy_settings=body.copy_settings,
    )


# --- Steps --------------------------------------------------------------------


@router.post("/workflows/{workflow_id}/steps/actions", response_model=StepBatchResult)
def apply_step_actions(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    body: StepActionsRequest,
    expected_version: int | None = Query(default=None),
    user_id: UserId = None,
) -> StepBatchResult:
    return _service(request).apply_step_actions(
        workflow_id, org_id, body.actions, actor_id=user_id, expected_version=expected_version
    )


@router.post("/workflows/{workflow_id}/steps", response_model=Step, status_code=201)
def add_step(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    step: dict[str, Any] = Body(...),
    user_id: UserId = None,
) -> Step:
    return _service(request).add_step(workflow_id, org_id, step, actor_id=user_id)


@router.put("/workflows/{workflow_id}/steps/{step_id}", response_model=Step)
def update_step(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    step_id: str,
    changes: dict[str, Any] = Body(...),
    user_id: UserId = None,
) -> Step:
    return _service(request).update_step(workflow_id, org_id, step_id, changes, actor_id=user_id)


@router.delete("/workflows/{workflow_id}/steps/{step_id}", status_code=204)
def delete_step(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    step_id: str,
    user_id: UserId = None,
) -> Response:
    _service(request).delete_step(workflow_id, org_id, step_id, actor_id=user_id)
    return Response(status_code=204)


@router.post("/workflows/{workflow_id}/reorder-steps", response_model=ReorderOutcome)
def reorder_steps(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    body: ReorderStepsRequest,
    expected_version: int | None = Query(default=None),
    user_id: UserId = None,
) -> ReorderOutcome:
    return _service(request).reorder_steps(
        workflow_id, org_id, body.steps, actor_id=user_id, expected_version=expected_version
    )


@router.post("/workflows/{workflow_id}/presigned-url", response_model=UploadTicket)
def issue_upload_url(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    body: UploadUrlRequest,
) -> UploadTicket:
    return _service(request).issue_upload_url(
        workflow_id,
        org_id,
        file_name=body.file_name,
        content_type=body.content_type,
        step_id=body.step_id,
        expires=body.expires,
    )


# --- Executions ---------------------------------------------------------------


@router.post(
    "/workflows/{workflow_id}/execute", response_model=WorkflowExecution, status_code=201
)
def start_execution(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    body: ExecuteRequest,
    user_id: UserId = None,
) -> WorkflowExecution:
    context = ExecutionContext(
        source=body.source, custom_data=body.custom_data, executed_by=user_id
    )
    return _service(request).start_execution(
        workflow_id, body.contact_id, organization_id=org_id, actor_id=user_id, context=context
    )


@router.get("/workflows/{workflow_id}/executions", response_model=Page[ExecutionSummary])
def list_executions(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    status: str | None = Query(default=None),
    sort_by: str = Query(default="started_at"),
    sort_order: str = Query(default="desc"),
    page: int = Query(default=1),
    limit: int = Query(default=20),
) -> Page[ExecutionSummary]:
    return _service(request).list_executions(
        workflow_id,
        org_id,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )


@router.get("/workflows/{workflow_id}/analytics", response_model=WorkflowAnalytics)
def get_analytics(
    request: Request,
    org_id: OrgId,
    workflow_id: str,
    days: int = Query(default=30),
) -> WorkflowAnalytics:
    return _service(request).get_analytics(workflow_id, org_id, days)


@router.get("/executions/{execution_id}", response_model=WorkflowExecution)
def get_execution(request: Request, org_id: OrgId, execution_id: str) -> WorkflowExecution:
    return _service(request).get_execution(execution_id, org_id)


@router.post("/executions/{execution_id}/transition", response_model=WorkflowExecution)
def transition_execution(
    request: Request,
    org_id: OrgId,
    execution_id: str,
    body: TransitionRequest,
) -> WorkflowExecution:
    return _service(request).transition_execution(
        execution_id, org_id, body.status, error=body.error
    )


@router.post("/executions/{execution_id}/steps", response_model=WorkflowExecution)
def record_step(
    request: Request,
    org_id: OrgId,
    execution_id: str,
    body: StepRecordRequest,
) -> WorkflowExecution:
    return _service(request).record_step_execution(
        execution_id,
        org_id,
        body.step_id,
        body.status,
        response=body.response,
        error=body.error,
    )
