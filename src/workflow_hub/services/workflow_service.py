"""Workflow operations.

``WorkflowService`` is the one entry point the HTTP adapter talks to. Workflow
writes are compare-and-swap on ``version``: each method reads the document,
builds the new state and replaces it only if nobody wrote in between.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from workflow_hub.config import ServiceSettings, UploadConfig
from workflow_hub.errors import (
    ConflictError,
    StepNotFound,
    TemplateNotFound,
    ValidationError,
    WorkflowAlreadyDeleted,
    WorkflowInUse,
    WorkflowNotFound,
    from_pydantic,
)
from workflow_hub.logging import log_span
from workflow_hub.services.analytics import DEFAULT_DAYS, AnalyticsAggregator, WorkflowAnalytics
from workflow_hub.services.execution_tracker import ExecutionSummary, ExecutionTracker, PersonRef
from workflow_hub.services.pagination import Page, PageRequest, paginate, sort_items
from workflow_hub.services.stores import Stores, get_live_workflow
from workflow_hub.services.uploads import (
    S3UploadUrlIssuer,
    UploadTicket,
    UploadUrlIssuer,
    build_upload_key,
    check_expires,
    issue_ticket,
)
from workflow_hub.store.documents import utc_now
from workflow_hub.workflow.execution import ExecutionContext, StepExecutionStatus, WorkflowExecution
from workflow_hub.workflow.models import (
    Step,
    Trigger,
    Workflow,
    WorkflowMetrics,
    WorkflowSettings,
    WorkflowStatus,
)
from workflow_hub.workflow.reorder import (
    ReorderInstruction,
    StepPosition,
    normalize_order,
    reorder_steps,
)
from workflow_hub.workflow.state_machine import ExecutionStatus
from workflow_hub.workflow.step_actions import (
    CreateStepAction,
    DeleteStepAction,
    StepAction,
    UpdateStepAction,
    apply_step_actions,
    clone_steps,
    parse_actions,
)

logger = logging.getLogger(__name__)

WORKFLOW_SORT_FIELDS = ("title", "created_at", "updated_at")
MAX_TITLE_LENGTH = 200

_EDITABLE_STATUSES = (
    WorkflowStatus.DRAFT,
    WorkflowStatus.ACTIVE,
    WorkflowStatus.PAUSED,
    WorkflowStatus.ARCHIVED,
)

_INSTRUCTIONS = TypeAdapter(list[ReorderInstruction])


class WorkflowUpdate(BaseModel):
    """Partial update of a workflow; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = Field(default=None, max_length=1000)
    status: WorkflowStatus | None = None
    trigger: Trigger | None = None
    settings: WorkflowSettings | None = None
    steps: list[dict[str, Any]] | None = None


class WorkflowSummary(BaseModel):
    id: str
    title: str
    description: str
    status: WorkflowStatus
    step_count: int
    portal_count: int
    metrics: WorkflowMetrics
    version: int
    created_at: datetime
    updated_at: datetime


class WorkflowMetadata(BaseModel):
    submissions_count: int
    active_portals_count: int


class WorkflowDetail(BaseModel):
    workflow: Workflow
    metadata: WorkflowMetadata
    created_by: PersonRef | None = None
    updated_by: PersonRef | None = None


class StepBatchResult(BaseModel):
    workflow: Workflow
    warnings: list[str]


class ReorderOutcome(BaseModel):
    workflow_id: str
    steps: list[StepPosition]


class DeleteOutcome(BaseModel):
    workflow_id: str
    mode: Literal["hard", "soft"]


def _validate(model: type[BaseModel], data: Any, *, prefix: str) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data or {}))
    except PydanticValidationError as e:
        raise from_pydantic(e, prefix=prefix) from e


def _check_sort(sort_by: str, allowed: Iterable[str], sort_order: str) -> None:
    allowed = tuple(allowed)
    if sort_by not in allowed:
        raise ValidationError(
            f"Cannot sort by {sort_by!r} (expected one of: {', '.join(allowed)})", sort_by=sort_by
        )
    if sort_order not in ("asc", "desc"):
        raise ValidationError(f"Sort order must be 'asc' or 'desc', got {sort_order!r}")


class WorkflowService:
    def __init__(
        self,
        *,
        stores: Stores,
        upload_config: UploadConfig | None = None,
        upload_issuer: UploadUrlIssuer | None = None,
        metrics_update_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._stores = stores
        self._upload_config = upload_config or UploadConfig()
        self._upload_issuer = upload_issuer
        self._clock = clock
        self.tracker = ExecutionTracker(
            workflows=stores.workflows,
            executions=stores.executions,
            contacts=stores.contacts,
            users=stores.users,
            metrics_update_attempts=metrics_update_attempts,
            clock=clock,
        )
        self.analytics = AnalyticsAggregator(
            workflows=stores.workflows,
            executions=stores.executions,
            portals=stores.portals,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls, settings: ServiceSettings, *, upload_issuer: UploadUrlIssuer | None = None
    ) -> WorkflowService:
        return cls(
            stores=Stores.open(settings.store),
            upload_config=settings.upload,
            upload_issuer=upload_issuer,
            metrics_update_attempts=settings.metrics_update_attempts,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    def _live(self, workflow_id: str, organization_id: str) -> Workflow:
        return get_live_workflow(self._stores.workflows, workflow_id, organization_id)

    def _save(
        self,
        current: Workflow,
        updates: dict[str, Any],
        *,
        actor_id: str | None,
        expected_version: int | None = None,
    ) -> Workflow:
        if expected_version is not None and expected_version != current.version:
            raise ConflictError(
                self._stores.workflows.name, current.id, expected_version, current.version
            )
        candidate = current.model_copy(
            update={**updates, "updated_by": actor_id, "updated_at": self._clock()}
        )
        return self._stores.workflows.replace(candidate, expected_version=current.version)

    def _mutate_steps(
        self, current: Workflow, actions: list[StepAction]
    ) -> tuple[dict[str, Any], list[str]]:
        result = apply_step_actions(
            current.steps, actions, retired_ids=current.retired_step_ids
        )
        steps = normalize_order(result.steps)
        if result.placements:
            # An order past the end places the step last.
            steps = reorder_steps(
                steps,
                [
                    ReorderInstruction(step_id=step_id, new_position=min(order, len(steps)))
                    for step_id, order in result.placements
                ],
            ).steps
        updates = {
            "steps": steps,
            "retired_step_ids": current.retired_step_ids + result.deleted_ids,
        }
        return updates, list(result.warnings)

    def _require_step(self, workflow: Workflow, step_id: str) -> Step:
        step = workflow.find_step(step_id)
        if step is None:
            raise StepNotFound(step_id, workflow_id=workflow.id)
        return step

    def _person(self, user_id: str | None) -> PersonRef | None:
        if user_id is None:
            return None
        return PersonRef(id=user_id, name=self._stores.users.display_name(user_id) or "Unknown")

    # ------------------------------------------------------------------
    # Workflows
    def create_workflow(
        self,
        title: str,
        *,
        organization_id: str,
        actor_id: str | None,
        description: str = "",
        template_id: str | None = None,
        settings: WorkflowSettings | Mapping[str, Any] | None = None,
        trigger: Trigger | Mapping[str, Any] | None = None,
    ) -> Workflow:
        with log_span(
            logger,
            "workflow.create",
            organization_id=organization_id,
            template_id=template_id,
        ) as span:
            steps: tuple[Step, ...] = ()
            template_trigger: Trigger | None = None
            if template_id:
                template = self._stores.workflows.get(template_id)
                if (
                    template is None
                    or template.organization_id != organization_id
                    or template.is_deleted
                ):
                    raise TemplateNotFound(template_id)
                steps = clone_steps(normalize_order(template.steps))
                template_trigger = template.trigger

            now = self._clock()
            payload: dict[str, Any] = {
                "id": str(uuid.uuid4()),
                "organization_id": organization_id,
                "user_id": actor_id,
                "title": title,
                "description": description or "",
                "template_id": template_id,
                "status": WorkflowStatus.DRAFT,
                "steps": steps,
                "created_by": actor_id,
                "updated_by": actor_id,
                "created_at": now,
                "updated_at": now,
            }
            if settings is not None:
                payload["settings"] = settings
            if trigger is not None:
                payload["trigger"] = trigger
            elif template_trigger is not None:
                payload["trigger"] = template_trigger
            try:
                workflow = Workflow.model_validate(payload)
            except PydanticValidationError as e:
                raise from_pydantic(e, prefix="Invalid workflow: ") from e

            self._stores.workflows.insert(workflow)
            span["workflow_id"] = workflow.id
            span["steps"] = len(workflow.steps)
            return workflow

    def list_workflows(
        self,
        organization_id: str,
        *,
        search: str | None = None,
        status: WorkflowStatus | str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Page[WorkflowSummary]:
        _check_sort(sort_by, WORKFLOW_SORT_FIELDS, sort_order)
        request = PageRequest.of(page, limit)
        wanted: WorkflowStatus | None = None
        if status is not None:
            try:
                wanted = WorkflowStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown workflow status {status!r}", status=status) from None
        needle = (search or "").strip().lower()

        def matches(wf: Workflow) -> bool:
            if wf.organization_id != organization_id or wf.is_deleted:
                return False
            if wanted is not None and wf.status != wanted:
                return False
            if needle and needle not in wf.title.lower() and needle not in wf.description.lower():
                return False
            return True

        rows = self._stores.workflows.find(matches)

        def key(wf: Workflow) -> Any:
            return wf.title.lower() if sort_by == "title" else getattr(wf, sort_by)

        ordered = sort_items(rows, key, descending=sort_order == "desc")
        window, pagination = paginate(ordered, request, total=len(rows))
        items = [
            WorkflowSummary(
                id=wf.id,
                title=wf.title,
                description=wf.description,
                status=wf.status,
                step_count=len(wf.steps),
                portal_count=self._stores.portals.count_linked(wf.id, organization_id),
                metrics=wf.metrics,
                version=wf.version,
                created_at=wf.created_at,
                updated_at=wf.updated_at,
            )
            for wf in window
        ]
        return Page[WorkflowSummary](items=items, pagination=pagination)

    def get_workflow(self, workflow_id: str, organization_id: str) -> WorkflowDetail:
        workflow = self._live(workflow_id, organization_id)
        metadata = WorkflowMetadata(
            submissions_count=self._stores.executions.count(
                lambda e: e.workflow_id == workflow_id and e.organization_id == organization_id
            ),
            active_portals_count=self._stores.portals.count_active(workflow_id, organization_id),
        )
        return WorkflowDetail(
            workflow=workflow,
            metadata=metadata,
            created_by=self._person(workflow.created_by),
            updated_by=self._person(workflow.updated_by),
        )

    def update_workflow(
        self,
        workflow_id: str,
        organization_id: str,
        changes: WorkflowUpdate | Mapping[str, Any],
        *,
        actor_id: str | None,
        expected_version: int | None = None,
    ) -> Workflow:
        update = _validate(WorkflowUpdate, changes, prefix="Invalid workflow update: ")
        if update.status is not None and update.status not in _EDITABLE_STATUSES:
            raise ValidationError(
                f"Status cannot be set to {update.status.value!r}; delete the workflow instead",
                status=update.status.value,
            )

        with log_span(
            logger,
            "workflow.update",
            workflow_id=workflow_id,
            organization_id=organization_id,
            fields=sorted(update.model_fields_set),
        ) as span:
            current = self._live(workflow_id, organization_id)
            updates: dict[str, Any] = {}
            for field in ("title", "description", "status", "trigger", "settings"):
                if field in update.model_fields_set and getattr(update, field) is not None:
                    updates[field] = getattr(update, field)
            if update.steps is not None:
                step_updates, warnings = self._mutate_steps(current, parse_actions(update.steps))
                updates.update(step_updates)
                for warning in warnings:
                    logger.warning(warning, extra={"workflow_id": workflow_id})
                span["warnings"] = len(warnings)

            stored = self._save(
                current, updates, actor_id=actor_id, expected_version=expected_version
            )
            span["version"] = stored.version
            return stored

    def delete_workflow(
        self, workflow_id: str, organization_id: str, *, actor_id: str | None
    ) -> DeleteOutcome:
        """Hard-delete drafts, soft-delete everything else.

        Raises:
            WorkflowNotFound: unknown id or another organization's workflow.
            WorkflowAlreadyDeleted: the workflow is soft-deleted already.
            WorkflowInUse: an active portal still points at the workflow.
        """

        with log_span(
            logger, "workflow.delete", workflow_id=workflow_id, organization_id=organization_id
        ) as span:
            current = self._stores.workflows.get(workflow_id)
            if current is None or current.organization_id != organization_id:
                raise WorkflowNotFound(workflow_id)
            if current.is_deleted:
                raise WorkflowAlreadyDeleted(workflow_id)

            portal_ids = self._stores.portals.active_portal_ids(workflow_id, organization_id)
            if portal_ids:
                raise WorkflowInUse(workflow_id, portal_ids)

            if current.status == WorkflowStatus.DRAFT:
                self._stores.workflows.delete(workflow_id, expected_version=current.version)
                outcome = DeleteOutcome(workflow_id=workflow_id, mode="hard")
            else:
                self._save(
                    current,
                    {"status": WorkflowStatus.DELETED, "deleted_at": self._clock()},
                    actor_id=actor_id,
                )
                outcome = DeleteOutcome(workflow_id=workflow_id, mode="soft")
            span["mode"] = outcome.mode
            return outcome

    def duplicate_workflow(
        self,
        workflow_id: str,
        organization_id: str,
        *,
        actor_id: str | None,
        title: str | None = None,
        copy_steps: bool = True,
        copy_settings: bool = True,
    ) -> Workflow:
        with log_span(
            logger, "workflow.duplicate", workflow_id=workflow_id, organization_id=organization_id
        ) as span:
            source = self._live(workflow_id, organization_id)
            new_title = title or f"{source.title} (Copy)"[:MAX_TITLE_LENGTH]
            now = self._clock()
            try:
                copy = Workflow.model_validate(
                    {
                        "id": str(uuid.uuid4()),
                        "organization_id": organization_id,
                        "user_id": actor_id,
                        "title": new_title,
                        "description": source.description,
                        "template_id": source.template_id,
                        "status": WorkflowStatus.DRAFT,
                        "trigger": source.trigger,
                        "steps": clone_steps(normalize_order(source.steps)) if copy_steps else (),
                        "settings": source.settings if copy_settings else WorkflowSettings(),
                        "created_by": actor_id,
                        "updated_by": actor_id,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            except PydanticValidationError as e:
                raise from_pydantic(e, prefix="Invalid duplicate: ") from e
            self._stores.workflows.insert(copy)
            span["new_workflow_id"] = copy.id
            return copy

    # ------------------------------------------------------------------
    # Steps
    def apply_step_actions(
        self,
        workflow_id: str,
        organization_id: str,
        actions: Iterable[object],
        *,
        actor_id: str | None,
        expected_version: int | None = None,
    ) -> StepBatchResult:
        """Apply a create/update/delete batch atomically and renumber the steps."""

        parsed = parse_actions(actions)
        with log_span(
            logger,
            "workflow.apply_step_actions",
            workflow_id=workflow_id,
            organization_id=organization_id,
            actions=len(parsed),
        ) as span:
            current = self._live(workflow_id, organization_id)
            updates, warnings = self._mutate_steps(current, parsed)
            stored = self._save(
                current, updates, actor_id=actor_id, expected_version=expected_version
            )
            span["steps"] = len(stored.steps)
            span["warnings"] = len(warnings)
            return StepBatchResult(workflow=stored, warnings=warnings)

    def add_step(
        self,
        workflow_id: str,
        organization_id: str,
        step: CreateStepAction | Mapping[str, Any],
        *,
        actor_id: str | None,
    ) -> Step:
        """Create one step; an explicit ``order`` inserts it there and shifts the rest."""

        if isinstance(step, Mapping):
            step = {**dict(step), "action": "create"}
        action = _validate(CreateStepAction, step, prefix="Invalid step: ")
        with log_span(
            logger, "workflow.add_step", workflow_id=workflow_id, organization_id=organization_id
        ) as span:
            current = self._live(workflow_id, organization_id)
            step_id = action.id or str(uuid.uuid4())
            updates, _ = self._mutate_steps(current, [action.model_copy(update={"id": step_id})])
            stored = self._save(current, updates, actor_id=actor_id)
            span["step_id"] = step_id
            return self._require_step(stored, step_id)

    def update_step(
        self,
        workflow_id: str,
        organization_id: str,
        step_id: str,
        changes: Mapping[str, Any],
        *,
        actor_id: str | None,
    ) -> Step:
        payload = {k: v for k, v in dict(changes).items() if k not in ("id", "action")}
        new_order = payload.get("order")
        if new_order is not None and (isinstance(new_order, bool) or not isinstance(new_order, int)):
            raise ValidationError("Step order must be an integer", order=new_order)
        action = _validate(
            UpdateStepAction, {**payload, "action": "update", "id": step_id}, prefix="Invalid step: "
        )

        with log_span(
            logger,
            "workflow.update_step",
            workflow_id=workflow_id,
            organization_id=organization_id,
            step_id=step_id,
        ):
            current = self._live(workflow_id, organization_id)
            self._require_step(current, step_id)
            updates, warnings = self._mutate_steps(current, [action])
            for warning in warnings:
                logger.warning(warning, extra={"workflow_id": workflow_id, "step_id": step_id})
            stored = self._save(current, updates, actor_id=actor_id)
            return self._require_step(stored, step_id)

    def delete_step(
        self, workflow_id: str, organization_id: str, step_id: str, *, actor_id: str | None
    ) -> None:
        with log_span(
            logger,
            "workflow.delete_step",
            workflow_id=workflow_id,
            organization_id=organization_id,
            step_id=step_id,
        ):
            current = self._live(workflow_id, organization_id)
            self._require_step(current, step_id)
            updates, _ = self._mutate_steps(current, [DeleteStepAction(id=step_id)])
            self._save(current, updates, actor_id=actor_id)

    def reorder_steps(
        self,
        workflow_id: str,
        organization_id: str,
        instructions: Iterable[ReorderInstruction | Mapping[str, Any]],
        *,
        actor_id: str | None,
        expected_version: int | None = None,
    ) -> ReorderOutcome:
        raw = [
            i.model_dump() if isinstance(i, ReorderInstruction) else dict(i) for i in instructions
        ]
        if not raw:
            raise ValidationError("At least one reorder instruction is required")
        try:
            parsed = _INSTRUCTIONS.validate_python(raw)
        except PydanticValidationError as e:
            raise from_pydantic(e, prefix="Invalid reorder instruction: ") from e

        with log_span(
            logger,
            "workflow.reorder_steps",
            workflow_id=workflow_id,
            organization_id=organization_id,
            instructions=len(parsed),
        ):
            current = self._live(workflow_id, organization_id)
            result = reorder_steps(current.steps, parsed)
            self._save(
                current,
                {"steps": result.steps},
                actor_id=actor_id,
                expected_version=expected_version,
            )
            return ReorderOutcome(workflow_id=workflow_id, steps=result.summary)

    # ------------------------------------------------------------------
    # Uploads
    def issue_upload_url(
        self,
        workflow_id: str,
        organization_id: str,
        *,
        file_name: str,
        content_type: str,
        step_id: str | None = None,
        expires: int | None = None,
    ) -> UploadTicket:
        ttl = check_expires(
            self._upload_config.default_expires_seconds if expires is None else expires
        )
        if not file_name or not file_name.strip():
            raise ValidationError("File name is required")
        if not content_type or not content_type.strip():
            raise ValidationError("Content type is required")

        with log_span(
            logger,
            "workflow.issue_upload_url",
            workflow_id=workflow_id,
            organization_id=organization_id,
            step_id=step_id,
        ) as span:
            workflow = self._live(workflow_id, organization_id)
            if step_id:
                self._require_step(workflow, step_id)
            now = self._clock()
            key = build_upload_key(
                organization_id=organization_id,
                workflow_id=workflow_id,
                step_id=step_id,
                file_name=file_name,
                now=now,
            )
            if self._upload_issuer is None:
                self._upload_issuer = S3UploadUrlIssuer(self._upload_config)
            ticket = issue_ticket(
                self._upload_issuer,
                self._upload_config,
                key=key,
                content_type=content_type,
                expires=ttl,
                now=now,
            )
            span["key"] = key
            return ticket

    # ------------------------------------------------------------------
    # Executions and analytics
    def start_execution(
        self,
        workflow_id: str,
        contact_id: str,
        *,
        organization_id: str,
        actor_id: str | None,
        context: ExecutionContext | Mapping[str, Any] | None = None,
    ) -> WorkflowExecution:
        return self.tracker.create(
            workflow_id,
            contact_id,
            organization_id=organization_id,
            actor_id=actor_id,
            context=context,
        )

    def list_executions(
        self,
        workflow_id: str,
        organization_id: str,
        *,
        status: ExecutionStatus | str | None = None,
        sort_by: str = "started_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Page[ExecutionSummary]:
        return self.tracker.list(
            workflow_id,
            organization_id=organization_id,
            status=status,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )

    def get_execution(self, execution_id: str, organization_id: str) -> WorkflowExecution:
        return self.tracker.get(execution_id, organization_id)

    def transition_execution(
        self,
        execution_id: str,
        organization_id: str,
        to: ExecutionStatus | str,
        *,
        error: str | None = None,
    ) -> WorkflowExecution:
        return self.tracker.transition(
            execution_id, to, organization_id=organization_id, error=error
        )

    def record_step_execution(
        self,
        execution_id: str,
        organization_id: str,
        step_id: str,
        status: StepExecutionStatus | str,
        *,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> WorkflowExecution:
        return self.tracker.record_step(
            execution_id,
            step_id,
            status,
            organization_id=organization_id,
            response=response,
            error=error,
        )

    def get_analytics(
        self, workflow_id: str, organization_id: str, days: int = DEFAULT_DAYS
    ) -> WorkflowAnalytics:
        return self.analytics.analyze(workflow_id, organization_id, days)
