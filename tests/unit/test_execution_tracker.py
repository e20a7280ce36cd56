from __future__ import annotations

import pytest

from workflow_hub.errors import (
    ConflictError,
    ContactNotFound,
    ExecutionClosed,
    ExecutionNotFound,
    IllegalTransition,
    StepNotFound,
    ValidationError,
    WorkflowNotActive,
    WorkflowNotFound,
)
from workflow_hub.services.stores import Stores
from workflow_hub.services.workflow_service import WorkflowService
from workflow_hub.workflow.models import Workflow
from workflow_hub.workflow.state_machine import ExecutionStatus

ORG = "org-1"
ACTOR = "user-1"


def _active_workflow(service: WorkflowService) -> Workflow:
    wf = service.create_workflow("Onboarding", organization_id=ORG, actor_id=ACTOR)
    service.apply_step_actions(
        wf.id,
        ORG,
        [
            {"action": "create", "id": "collect", "title": "Collect ID", "type": "Form"},
            {"action": "create", "id": "sign", "title": "Sign", "type": "Document"},
        ],
        actor_id=ACTOR,
    )
    return service.update_workflow(wf.id, ORG, {"status": "active"}, actor_id=ACTOR)


def test_create_requires_active_workflow(service: WorkflowService) -> None:
    draft = service.create_workflow("Draft", organization_id=ORG, actor_id=ACTOR)
    with pytest.raises(WorkflowNotActive):
        service.start_execution(draft.id, "contact-1", organization_id=ORG, actor_id=ACTOR)


def test_create_requires_known_contact(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    with pytest.raises(ContactNotFound):
        service.start_execution(wf.id, "nobody", organization_id=ORG, actor_id=ACTOR)
    with pytest.raises(ContactNotFound):
        service.start_execution(wf.id, "contact-foreign", organization_id=ORG, actor_id=ACTOR)


def test_create_rejects_other_organizations_workflow(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    with pytest.raises(WorkflowNotFound):
        service.start_execution(wf.id, "contact-1", organization_id="org-2", actor_id=ACTOR)


def test_create_starts_pending_execution_and_counts_it(service: WorkflowService, clock) -> None:
    wf = _active_workflow(service)

    execution = service.start_execution(
        wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR, context={"source": "api"}
    )

    assert execution.status == ExecutionStatus.PENDING
    assert execution.started_at == clock.now
    assert execution.context.source == "api"
    assert execution.context.executed_by == ACTOR
    assert [s.id for s in execution.step_snapshot] == ["collect", "sign"]

    metrics = service.get_workflow(wf.id, ORG).workflow.metrics
    assert metrics.total_executions == 1
    assert metrics.last_executed_at == clock.now


def test_invalid_context_is_a_validation_error(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    with pytest.raises(ValidationError):
        service.start_execution(
            wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR, context={"source": "fax"}
        )


def test_get_is_scoped_to_organization(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)

    assert service.get_execution(execution.id, ORG).id == execution.id
    with pytest.raises(ExecutionNotFound):
        service.get_execution(execution.id, "org-2")


def test_record_step_moves_pending_to_in_progress(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)

    updated = service.record_step_execution(
        execution.id, ORG, "collect", "completed", response={"passport": "X123"}
    )

    assert updated.status == ExecutionStatus.IN_PROGRESS
    assert updated.current_step_id == "collect"
    assert updated.completion_rate == 50.0
    assert updated.step_executions[0].response == {"passport": "X123"}
    assert updated.step_executions[0].completed_at is not None


def test_record_step_upserts_and_counts_skips(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)

    service.record_step_execution(execution.id, ORG, "collect", "pending")
    service.record_step_execution(execution.id, ORG, "collect", "completed")
    updated = service.record_step_execution(execution.id, ORG, "sign", "skipped")

    assert [e.step_id for e in updated.step_executions] == ["collect", "sign"]
    assert updated.completion_rate == 100.0


def test_record_step_must_be_in_snapshot(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    # Steps added after the start are not part of this run.
    service.add_step(wf.id, ORG, {"id": "late", "title": "Late", "type": "Email"}, actor_id=ACTOR)

    with pytest.raises(StepNotFound):
        service.record_step_execution(execution.id, ORG, "late", "completed")


def test_record_step_rejected_after_terminal_state(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    service.transition_execution(execution.id, ORG, "cancelled")

    with pytest.raises(ExecutionClosed):
        service.record_step_execution(execution.id, ORG, "collect", "completed")


def test_completion_updates_workflow_metrics(service: WorkflowService, clock) -> None:
    wf = _active_workflow(service)

    first = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    service.transition_execution(first.id, ORG, "in_progress")
    clock.advance(seconds=60)
    done = service.transition_execution(first.id, ORG, "completed")
    assert done.completed_at == clock.now

    second = service.start_execution(wf.id, "contact-2", organization_id=ORG, actor_id=ACTOR)
    service.transition_execution(second.id, ORG, "in_progress")
    clock.advance(seconds=120)
    service.transition_execution(second.id, ORG, "completed")

    metrics = service.get_workflow(wf.id, ORG).workflow.metrics
    assert metrics.total_executions == 2
    assert metrics.completed_executions == 2
    assert metrics.average_completion_time == pytest.approx(90.0)


def _contended(stores: Stores, monkeypatch: pytest.MonkeyPatch) -> None:
    def update(doc_id, mutate, *, attempts=1):
        raise ConflictError(stores.workflows.name, doc_id, 1, 2)

    monkeypatch.setattr(stores.workflows, "update", update)


def test_metrics_conflict_does_not_fail_create(
    service: WorkflowService,
    stores: Stores,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    wf = _active_workflow(service)
    _contended(stores, monkeypatch)

    with caplog.at_level("WARNING", logger="workflow_hub.services.execution_tracker"):
        execution = service.start_execution(
            wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR
        )

    assert service.get_execution(execution.id, ORG).status == ExecutionStatus.PENDING
    assert service.list_executions(wf.id, ORG).pagination.total == 1
    record = next(r for r in caplog.records if r.getMessage() == "Workflow metrics not updated")
    assert record.execution_id == execution.id
    assert record.error == "ConflictError"


def test_metrics_conflict_does_not_fail_completion(
    service: WorkflowService, stores: Stores, monkeypatch: pytest.MonkeyPatch
) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    service.transition_execution(execution.id, ORG, "in_progress")
    _contended(stores, monkeypatch)

    done = service.transition_execution(execution.id, ORG, "completed")

    assert done.status == ExecutionStatus.COMPLETED
    assert service.get_execution(execution.id, ORG).status == ExecutionStatus.COMPLETED

def test_terminal_transition_is_rejected(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    service.transition_execution(execution.id, ORG, "in_progress")
    failed = service.transition_execution(execution.id, ORG, "failed", error="bounced")
    assert failed.error == "bounced"
    assert failed.completed_at is not None

    with pytest.raises(IllegalTransition):
        service.transition_execution(execution.id, ORG, "in_progress")


def test_unknown_status_is_a_validation_error(service: WorkflowService) -> None:
    wf = _active_workflow(service)
    execution = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    with pytest.raises(ValidationError):
        service.transition_execution(execution.id, ORG, "paused")


def test_list_resolves_names_filters_and_paginates(service: WorkflowService, clock) -> None:
    wf = _active_workflow(service)
    first = service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)
    clock.advance(minutes=1)
    second = service.start_execution(wf.id, "contact-2", organization_id=ORG, actor_id=None)
    service.transition_execution(second.id, ORG, "cancelled")

    page = service.list_executions(wf.id, ORG)
    assert [item.id for item in page.items] == [second.id, first.id]
    assert page.pagination.total == 2
    assert page.items[0].contact.name == "grace@example.test"
    assert page.items[0].executed_by.name == "Unknown"
    assert page.items[1].contact.name == "Ada Lovelace"
    assert page.items[1].executed_by.name == "Alan Turing"

    cancelled = service.list_executions(wf.id, ORG, status="cancelled")
    assert [item.id for item in cancelled.items] == [second.id]

    paged = service.list_executions(wf.id, ORG, sort_order="asc", page=2, limit=1)
    assert [item.id for item in paged.items] == [second.id]
    assert paged.pagination.pages == 2


@pytest.mark.parametrize(
    "kwargs",
    [{"sort_by": "contact"}, {"sort_order": "up"}, {"limit": 101}, {"page": 0}, {"status": "x"}],
)
def test_list_rejects_bad_arguments(service: WorkflowService, kwargs) -> None:
    wf = _active_workflow(service)
    with pytest.raises(ValidationError):
        service.list_executions(wf.id, ORG, **kwargs)
