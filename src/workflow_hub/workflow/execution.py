"""Execution records.

An execution is one run of a workflow against one contact. It references the
workflow by id and keeps a snapshot of the step definitions taken when the run
started, so step records stay meaningful if the workflow is edited mid-run.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from workflow_hub.store.documents import Document, utc_now
from workflow_hub.workflow.models import Step
from workflow_hub.workflow.state_machine import ExecutionStatus


class StepExecutionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepExecution(BaseModel):
    step_id: str
    status: StepExecutionStatus = StepExecutionStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    response: dict[str, Any] | None = None
    error: str | None = None


class StepSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    type: str
    order: int

    @classmethod
    def of(cls, step: Step) -> StepSnapshot:
        return cls(id=step.id, title=step.display_title, type=step.type.value, order=step.order)


class ExecutionContext(BaseModel):
    source: Literal["manual", "trigger", "api"] = "manual"
    custom_data: dict[str, Any] = Field(default_factory=dict)
    executed_by: str | None = None


class WorkflowExecution(Document):
    workflow_id: str
    organization_id: str
    contact_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_rate: float = Field(default=0.0, ge=0, le=100)
    step_executions: list[StepExecution] = Field(default_factory=list)
    step_snapshot: tuple[StepSnapshot, ...] = ()
    context: ExecutionContext = Field(default_factory=ExecutionContext)
    error: str | None = None

    created_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touched(self, step_id: str) -> StepExecution | None:
        for entry in self.step_executions:
            if entry.step_id == step_id:
                return entry
        return None
