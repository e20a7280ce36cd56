"""Workflow and step documents."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from workflow_hub.store.documents import Document, utc_now
from workflow_hub.workflow.step_config import StepConfig, StepType, StepTypeField


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"
    DELETED = "deleted"


class TriggerType(str, Enum):
    MANUAL = "manual"
    EVENT = "event"
    SCHEDULE = "schedule"
    API = "api"


class Trigger(BaseModel):
    type: TriggerType = TriggerType.MANUAL
    event: str | None = None
    schedule: str | None = None
    conditions: dict[str, Any] | None = None


class WorkflowSettings(BaseModel):
    allow_multiple_submissions: bool = False
    require_authentication: bool = False
    send_email_notifications: bool = True
    auto_archive_after_days: int | None = Field(default=None, ge=1)
    email_subject: str | None = None
    email_body: str | None = None
    days_before_activation: int | None = Field(default=None, ge=0)
    send_frequency: Literal["daily", "weekly", "monthly"] | None = None
    max_attempts: int | None = Field(default=None, ge=1)


class WorkflowMetrics(BaseModel):
    total_executions: int = 0
    completed_executions: int = 0
    average_completion_time: float | None = None
    last_executed_at: datetime | None = None


class NextStepRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    condition: dict[str, Any] | None = None


class Step(BaseModel):
    """One unit of work within a workflow.

    Steps are immutable; mutation code builds new instances.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    name: str | None = Field(default=None, description="Display name")
    type: StepTypeField
    order: int = Field(ge=1)
    required: bool = False
    config: StepConfig
    next_steps: tuple[NextStepRef, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        try:
            step_type = StepType.parse(data.get("type"))
        except ValueError:
            # Let field validation report the bad type.
            return data
        config = data.get("config")
        if config is None:
            config = {}
        if isinstance(config, BaseModel):
            config = config.model_dump()
        if isinstance(config, dict):
            data = {**data, "config": {**config, "kind": step_type.value}}
        return data

    @property
    def display_title(self) -> str:
        return self.name or self.title or f"Step {self.order}"


class Workflow(Document):
    organization_id: str
    user_id: str | None = None
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=1000)
    template_id: str | None = None
    status: WorkflowStatus = WorkflowStatus.DRAFT
    trigger: Trigger = Field(default_factory=Trigger)
    steps: tuple[Step, ...] = ()
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)
    metrics: WorkflowMetrics = Field(default_factory=WorkflowMetrics)
    retired_step_ids: tuple[str, ...] = ()

    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.status == WorkflowStatus.DELETED or self.deleted_at is not None

    def find_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None
