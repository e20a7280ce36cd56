"""Request bodies for the REST server."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from workflow_hub.workflow.models import Trigger, WorkflowSettings


class CreateWorkflowRequest(BaseModel):
    title: str
    description: str = ""
    template_id: str | None = None
    settings: WorkflowSettings | None = None
    trigger: Trigger | None = None


class DuplicateWorkflowRequest(BaseModel):
    title: str | None = None
    copy_steps: bool = True
    copy_settings: bool = True


class StepActionsRequest(BaseModel):
    actions: list[dict[str, Any]]


class ReorderStepsRequest(BaseModel):
    steps: list[dict[str, Any]]


class UploadUrlRequest(BaseModel):
    file_name: str
    content_type: str
    step_id: str | None = None
    expires: int | None = None


class ExecuteRequest(BaseModel):
    contact_id: str
    source: Literal["manual", "trigger", "api"] = "manual"
    custom_data: dict[str, Any] = Field(default_factory=dict)


class TransitionRequest(BaseModel):
    status: str
    error: str | None = None


class StepRecordRequest(BaseModel):
    step_id: str
    status: str
    response: dict[str, Any] | None = None
    error: str | None = None
