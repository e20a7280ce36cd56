"""Execution lifecycle: create, list, transition and per-step records.

Executions move through :data:`~workflow_hub.workflow.state_machine.ALLOWED_TRANSITIONS`.
Workflow metrics follow the executions through CAS-retried updates of the
owning workflow document. They are eventually consistent: once an execution
is stored, a failed metrics update is logged and never undoes the write.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from workflow_hub.errors import (
    ConflictError,
    ContactNotFound,
    ExecutionClosed,
    ExecutionNotFound,
    StepNotFound,
    StorageError,
    ValidationError,
    WorkflowNotActive,
    from_pydantic,
)
from workflow_hub.logging import log_span
from workflow_hub.services.analytics import percent
from workflow_hub.services.pagination import Page, PageRequest, paginate, sort_items
from workflow_hub.services.stores import get_live_workflow
from workflow_hub.store.documents import JsonCollection, utc_now
from workflow_hub.store.references import ContactLookup, UserLookup
from workflow_hub.workflow.execution import (
    ExecutionContext,
    StepExecution,
    StepExecutionStatus,
    StepSnapshot,
    WorkflowExecution,
)
from workflow_hub.workflow.models import Workflow, WorkflowStatus
from workflow_hub.workflow.state_machine import ExecutionStatus, check_transition

logger = logging.getLogger(__name__)

EXECUTION_SORT_FIELDS = ("started_at", "completed_at", "status", "created_at")

_STEP_DONE = (StepExecutionStatus.COMPLETED, StepExecutionStatus.SKIPPED)


class PersonRef(BaseModel):
    id: str | None
    name: str


class ExecutionSummary(BaseModel):
    id: str
    status: ExecutionStatus
    executed_by: PersonRef
    contact: PersonRef
    current_step_id: str | None
    completion_rate: float
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime


def _parse_status(value: ExecutionStatus | str) -> ExecutionStatus:
    try:
        return ExecutionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ExecutionStatus)
        raise ValidationError(
            f"Unknown execution status {value!r} (expected one of: {allowed})", status=value
        ) from None


def _parse_step_status(value: StepExecutionStatus | str) -> StepExecutionStatus:
    try:
        return StepExecutionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in StepExecutionStatus)
        raise ValidationError(
            f"Unknown step status {value!r} (expected one of: {allowed})", status=value
        ) from None


def _running_mean(previous: float | None, count: int, sample: float) -> float:
    """Fold ``sample`` into a mean over ``count`` earlier samples."""

    if count <= 0 or previous is None:
        return sample
    return (previous * count + sample) / (count + 1)


class ExecutionTracker:
    def __init__(
        self,
        *,
        workflows: JsonCollection[Workflow],
        executions: JsonCollection[WorkflowExecution],
        contacts: ContactLookup,
        users: UserLookup,
        metrics_update_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._workflows = workflows
        self._executions = executions
        self._contacts = contacts
        self._users = users
        self._attempts = metrics_update_attempts
        self._clock = clock

    # ------------------------------------------------------------------
    def create(
        self,
        workflow_id: str,
        contact_id: str,
        *,
        organization_id: str,
        actor_id: str | None = None,
        context: ExecutionContext | Mapping[str, Any] | None = None,
    ) -> WorkflowExecution:
        """Start a pending execution of an active workflow for ``contact_id``."""

        with log_span(
            logger,
            "execution.create",
            workflow_id=workflow_id,
            contact_id=contact_id,
            organization_id=organization_id,
        ) as span:
            workflow = get_live_workflow(self._workflows, workflow_id, organization_id)
            if workflow.status != WorkflowStatus.ACTIVE:
                raise WorkflowNotActive(workflow_id, workflow.status.value)
            if not self._contacts.exists(contact_id, organization_id):
                raise ContactNotFound(contact_id)

            if isinstance(context, ExecutionContext):
                ctx = context
            else:
                try:
                    ctx = ExecutionContext.model_validate(dict(context or {}))
                except PydanticValidationError as e:
                    raise from_pydantic(e, prefix="Invalid execution context: ") from e
            if ctx.executed_by is None:
                ctx = ctx.model_copy(update={"executed_by": actor_id})

            now = self._clock()
            execution = WorkflowExecution(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                organization_id=organization_id,
                contact_id=contact_id,
                status=ExecutionStatus.PENDING,
                started_at=now,
                step_snapshot=tuple(
                    StepSnapshot.of(s) for s in sorted(workflow.steps, key=lambda s: s.order)
                ),
                context=ctx,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            self._executions.insert(execution)

            def bump(wf: Workflow) -> Workflow:
                metrics = wf.metrics.model_copy(
                    update={
                        "total_executions": wf.metrics.total_executions + 1,
                        "last_executed_at": now,
                    }
                )
                return wf.model_copy(update={"metrics": metrics})

            self._update_metrics(workflow_id, bump, execution_id=execution.id)
            span["execution_id"] = execution.id
            return execution

    # ------------------------------------------------------------------
    def get(self, execution_id: str, organization_id: str) -> WorkflowExecution:
        execution = self._executions.get(execution_id)
        if execution is None or execution.organization_id != organization_id:
            raise ExecutionNotFound(execution_id)
        return execution

    def list(
        self,
        workflow_id: str,
        *,
        organization_id: str,
        status: ExecutionStatus | str | None = None,
        sort_by: str = "started_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Page[ExecutionSummary]:
        if sort_by not in EXECUTION_SORT_FIELDS:
            raise ValidationError(
                f"Cannot sort executions by {sort_by!r} "
                f"(expected one of: {', '.join(EXECUTION_SORT_FIELDS)})",
                sort_by=sort_by,
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"Sort order must be 'asc' or 'desc', got {sort_order!r}")
        request = PageRequest.of(page, limit)
        wanted = _parse_status(status) if status is not None else None

        get_live_workflow(self._workflows, workflow_id, organization_id)

        def matches(e: WorkflowExecution) -> bool:
            return (
                e.workflow_id == workflow_id
                and e.organization_id == organization_id
                and (wanted is None or e.status == wanted)
            )

        rows = self._executions.find(matches)
        total = self._executions.count(matches)

        def key(e: WorkflowExecution) -> Any:
            value = getattr(e, sort_by)
            return value.value if isinstance(value, ExecutionStatus) else value

        ordered = sort_items(rows, key, descending=sort_order == "desc")
        window, pagination = paginate(ordered, request, total=total)
        return Page[ExecutionSummary](
            items=[self._summarize(e) for e in window], pagination=pagination
        )

    def _summarize(self, execution: WorkflowExecution) -> ExecutionSummary:
        actor_id = execution.created_by
        actor_name = self._users.display_name(actor_id) if actor_id else None
        contact_name = self._contacts.display_name(execution.contact_id)
        return ExecutionSummary(
            id=execution.id,
            status=execution.status,
            executed_by=PersonRef(id=actor_id, name=actor_name or "Unknown"),
            contact=PersonRef(id=execution.contact_id, name=contact_name or "Unknown"),
            current_step_id=execution.current_step_id,
            completion_rate=execution.completion_rate,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            created_at=execution.created_at,
        )

    # ------------------------------------------------------------------
    def transition(
        self,
        execution_id: str,
        to: ExecutionStatus | str,
        *,
        organization_id: str,
        error: str | None = None,
    ) -> WorkflowExecution:
        target = _parse_status(to)
        with log_span(
            logger,
            "execution.transition",
            execution_id=execution_id,
            organization_id=organization_id,
            to=target.value,
        ) as span:
            current = self.get(execution_id, organization_id)
            check_transition(execution_id=execution_id, current=current.status, to=target)

            now = self._clock()
            updates: dict[str, Any] = {"status": target, "updated_at": now}
            if target.is_terminal:
                updates["completed_at"] = now
            if error is not None:
                updates["error"] = error
            stored = self._executions.replace(
                current.model_copy(update=updates), expected_version=current.version
            )
            span["from"] = current.status.value

            if target == ExecutionStatus.COMPLETED:
                self._record_completion(stored)
            return stored

    def _record_completion(self, execution: WorkflowExecution) -> None:
        if self._workflows.get(execution.workflow_id) is None:
            logger.info(
                "Workflow gone, completion not counted",
                extra={"workflow_id": execution.workflow_id, "execution_id": execution.id},
            )
            return

        duration = None
        if execution.started_at is not None and execution.completed_at is not None:
            duration = (execution.completed_at - execution.started_at).total_seconds()

        def fold(wf: Workflow) -> Workflow:
            m = wf.metrics
            update: dict[str, Any] = {"completed_executions": m.completed_executions + 1}
            if duration is not None:
                update["average_completion_time"] = _running_mean(
                    m.average_completion_time, m.completed_executions, duration
                )
            return wf.model_copy(update={"metrics": m.model_copy(update=update)})

        self._update_metrics(execution.workflow_id, fold, execution_id=execution.id)

    def _update_metrics(
        self, workflow_id: str, mutate: Callable[[Workflow], Workflow], *, execution_id: str
    ) -> None:
        try:
            self._workflows.update(workflow_id, mutate, attempts=self._attempts)
        except (ConflictError, StorageError) as e:
            logger.warning(
                "Workflow metrics not updated",
                extra={
                    "workflow_id": workflow_id,
                    "execution_id": execution_id,
                    "error": type(e).__name__,
                    "error_message": e.message,
                },
            )

    # ------------------------------------------------------------------
    def record_step(
        self,
        execution_id: str,
        step_id: str,
        status: StepExecutionStatus | str,
        *,
        organization_id: str,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> WorkflowExecution:
        """Upsert the record for ``step_id`` and recompute the completion rate.

        A pending execution moves to ``in_progress`` on its first step record.
        """

        step_status = _parse_step_status(status)
        with log_span(
            logger,
            "execution.record_step",
            execution_id=execution_id,
            step_id=step_id,
            status=step_status.value,
        ) as span:
            current = self.get(execution_id, organization_id)
            if current.status.is_terminal:
                raise ExecutionClosed(execution_id, current.status.value)
            if not any(s.id == step_id for s in current.step_snapshot):
                raise StepNotFound(step_id, workflow_id=current.workflow_id)

            now = self._clock()
            finished_at = now if step_status != StepExecutionStatus.PENDING else None
            entries: list[StepExecution] = []
            seen = False
            for entry in current.step_executions:
                if entry.step_id != step_id:
                    entries.append(entry)
                    continue
                seen = True
                entries.append(
                    entry.model_copy(
                        update={
                            "status": step_status,
                            "completed_at": finished_at,
                            "response": response if response is not None else entry.response,
                            "error": error,
                        }
                    )
                )
            if not seen:
                entries.append(
                    StepExecution(
                        step_id=step_id,
                        status=step_status,
                        started_at=now,
                        completed_at=finished_at,
                        response=response,
                        error=error,
                    )
                )

            done = sum(1 for e in entries if e.status in _STEP_DONE)
            rate = min(100.0, max(0.0, percent(done, len(current.step_snapshot))))

            next_status = current.status
            if current.status == ExecutionStatus.PENDING:
                check_transition(
                    execution_id=execution_id,
                    current=current.status,
                    to=ExecutionStatus.IN_PROGRESS,
                )
                next_status = ExecutionStatus.IN_PROGRESS

            stored = self._executions.replace(
                current.model_copy(
                    update={
                        "step_executions": entries,
                        "current_step_id": step_id,
                        "completion_rate": rate,
                        "status": next_status,
                        "updated_at": now,
                    }
                ),
                expected_version=current.version,
            )
            span["completion_rate"] = rate
            return stored
