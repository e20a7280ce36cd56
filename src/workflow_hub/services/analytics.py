"""Workflow analytics: overview, daily trends and the per-step funnel.

Every figure is computed from the execution history at call time. The queries
are independent reads, so the result is a consistent-enough snapshot rather
than a transaction.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from workflow_hub.errors import ValidationError
from workflow_hub.logging import log_span
from workflow_hub.services.stores import get_live_workflow
from workflow_hub.store.documents import JsonCollection, utc_now
from workflow_hub.store.references import PortalLookup
from workflow_hub.workflow.execution import StepExecutionStatus, WorkflowExecution
from workflow_hub.workflow.models import Workflow
from workflow_hub.workflow.state_machine import ExecutionStatus

logger = logging.getLogger(__name__)

MIN_DAYS = 1
MAX_DAYS = 365
DEFAULT_DAYS = 30


def round_half_up(value: float, places: int = 1) -> float:
    """Round like people do (2.25 -> 2.3), not like binary floats do."""

    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent(numerator: int, denominator: int) -> float:
    """``numerator / denominator`` as a percentage with one decimal; 0 for an empty base."""

    if denominator <= 0:
        return 0.0
    return round_half_up(numerator * 100 / denominator)


class Overview(BaseModel):
    total_submissions: int
    completion_rate: float
    average_completion_time: int
    active_portals: int


class TrendPoint(BaseModel):
    date: str
    submissions: int
    completions: int
    dropoff_rate: float


class StepFunnel(BaseModel):
    step_id: str
    step_title: str
    views: int
    completions: int
    dropoff_rate: float


class WorkflowAnalytics(BaseModel):
    workflow_id: str
    days: int
    overview: Overview
    trends: list[TrendPoint]
    step_analytics: list[StepFunnel]


def _duration_seconds(execution: WorkflowExecution) -> float | None:
    if execution.started_at is None or execution.completed_at is None:
        return None
    return (execution.completed_at - execution.started_at).total_seconds()


def build_overview(executions: list[WorkflowExecution], active_portals: int) -> Overview:
    total = len(executions)
    completed = sum(1 for e in executions if e.status == ExecutionStatus.COMPLETED)
    durations = [d for d in (_duration_seconds(e) for e in executions) if d is not None]
    average = round_half_up(sum(durations) / len(durations), 0) if durations else 0
    return Overview(
        total_submissions=total,
        completion_rate=percent(completed, total),
        average_completion_time=int(average),
        active_portals=active_portals,
    )


def build_trends(
    executions: list[WorkflowExecution], *, start: datetime, end: datetime
) -> list[TrendPoint]:
    """Daily submissions/completions for executions created in ``[start, end]``.

    Days without executions are omitted.
    """

    submissions: dict[str, int] = defaultdict(int)
    completions: dict[str, int] = defaultdict(int)
    for execution in executions:
        created = execution.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        if not start <= created <= end:
            continue
        day = created.astimezone(UTC).date().isoformat()
        submissions[day] += 1
        if execution.status == ExecutionStatus.COMPLETED:
            completions[day] += 1

    return [
        TrendPoint(
            date=day,
            submissions=submissions[day],
            completions=completions[day],
            dropoff_rate=percent(submissions[day] - completions[day], submissions[day]),
        )
        for day in sorted(submissions)
    ]


def build_step_funnel(workflow: Workflow, executions: list[WorkflowExecution]) -> list[StepFunnel]:
    funnel: list[StepFunnel] = []
    for step in sorted(workflow.steps, key=lambda s: s.order):
        views = 0
        completions = 0
        for execution in executions:
            entries = [e for e in execution.step_executions if e.step_id == step.id]
            if not entries:
                continue
            views += 1
            if any(e.status == StepExecutionStatus.COMPLETED for e in entries):
                completions += 1
        funnel.append(
            StepFunnel(
                step_id=step.id,
                step_title=step.display_title,
                views=views,
                completions=completions,
                dropoff_rate=percent(views - completions, views),
            )
        )
    return funnel


class AnalyticsAggregator:
    """Read-only analytics over a workflow's executions."""

    def __init__(
        self,
        *,
        workflows: JsonCollection[Workflow],
        executions: JsonCollection[WorkflowExecution],
        portals: PortalLookup,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._workflows = workflows
        self._executions = executions
        self._portals = portals
        self._clock = clock

    def analyze(
        self, workflow_id: str, organization_id: str, days: int = DEFAULT_DAYS
    ) -> WorkflowAnalytics:
        if isinstance(days, bool) or not isinstance(days, int) or not MIN_DAYS <= days <= MAX_DAYS:
            raise ValidationError(
                f"Days must be an integer between {MIN_DAYS} and {MAX_DAYS}", days=days
            )

        with log_span(
            logger,
            "analytics.analyze",
            workflow_id=workflow_id,
            organization_id=organization_id,
            days=days,
        ) as span:
            workflow = get_live_workflow(self._workflows, workflow_id, organization_id)
            executions = self._executions.find(
                lambda e: e.workflow_id == workflow_id and e.organization_id == organization_id
            )
            active_portals = self._portals.count_active(workflow_id, organization_id)

            end = self._clock()
            start = end - timedelta(days=days)

            result = WorkflowAnalytics(
                workflow_id=workflow_id,
                days=days,
                overview=build_overview(executions, active_portals),
                trends=build_trends(executions, start=start, end=end),
                step_analytics=build_step_funnel(workflow, executions),
            )
            span["executions"] = len(executions)
            return result
