from __future__ import annotations

import pytest

from workflow_hub.errors import (
    ConflictError,
    DuplicateStepId,
    StepNotFound,
    TemplateNotFound,
    ValidationError,
    WorkflowAlreadyDeleted,
    WorkflowInUse,
    WorkflowNotFound,
)
from workflow_hub.services.stores import Stores
from workflow_hub.services.workflow_service import WorkflowService
from workflow_hub.workflow.models import WorkflowStatus

ORG = "org-1"
ACTOR = "user-1"


def _onboarding(service: WorkflowService):
    wf = service.create_workflow("Onboarding", organization_id=ORG, actor_id=ACTOR)
    return service.apply_step_actions(
        wf.id,
        ORG,
        [
            {"action": "create", "title": "Collect ID", "type": "Form"},
            {"action": "create", "title": "Sign", "type": "Document"},
        ],
        actor_id=ACTOR,
    ).workflow


def _titles(workflow) -> list[tuple[str, int]]:
    return [(s.title, s.order) for s in workflow.steps]


def test_onboarding_end_to_end(service: WorkflowService) -> None:
    wf = _onboarding(service)
    assert wf.status == WorkflowStatus.DRAFT
    assert _titles(wf) == [("Collect ID", 1), ("Sign", 2)]

    sign_id = wf.steps[1].id
    outcome = service.reorder_steps(
        wf.id, ORG, [{"step_id": sign_id, "new_position": 1}], actor_id=ACTOR
    )

    assert [(p.title, p.order) for p in outcome.steps] == [("Sign", 1), ("Collect ID", 2)]
    assert _titles(service.get_workflow(wf.id, ORG).workflow) == [("Sign", 1), ("Collect ID", 2)]


def test_create_validates_title(service: WorkflowService) -> None:
    with pytest.raises(ValidationError):
        service.create_workflow("", organization_id=ORG, actor_id=ACTOR)
    with pytest.raises(ValidationError):
        service.create_workflow("x" * 201, organization_id=ORG, actor_id=ACTOR)


def test_create_from_template_clones_steps(service: WorkflowService) -> None:
    template = _onboarding(service)
    service.update_step(
        template.id,
        ORG,
        template.steps[0].id,
        {"next_steps": [{"step_id": template.steps[1].id}]},
        actor_id=ACTOR,
    )

    wf = service.create_workflow(
        "From template", organization_id=ORG, actor_id=ACTOR, template_id=template.id
    )

    assert wf.template_id == template.id
    assert _titles(wf) == [("Collect ID", 1), ("Sign", 2)]
    assert {s.id for s in wf.steps}.isdisjoint({s.id for s in template.steps})
    assert wf.steps[0].next_steps[0].step_id == wf.steps[1].id


def test_template_must_belong_to_organization(service: WorkflowService) -> None:
    template = _onboarding(service)
    with pytest.raises(TemplateNotFound):
        service.create_workflow("x", organization_id="org-2", actor_id=ACTOR, template_id=template.id)


def test_list_filters_sorts_and_excludes_deleted(service: WorkflowService, clock) -> None:
    alpha = service.create_workflow(
        "Alpha", organization_id=ORG, actor_id=ACTOR, description="Customer intake"
    )
    clock.advance(minutes=1)
    beta = service.create_workflow("beta", organization_id=ORG, actor_id=ACTOR)
    clock.advance(minutes=1)
    gone = service.create_workflow("Gamma", organization_id=ORG, actor_id=ACTOR)
    service.update_workflow(gone.id, ORG, {"status": "active"}, actor_id=ACTOR)
    service.delete_workflow(gone.id, ORG, actor_id=ACTOR)
    service.create_workflow("Foreign", organization_id="org-2", actor_id=ACTOR)

    page = service.list_workflows(ORG)
    assert [i.id for i in page.items] == [beta.id, alpha.id]
    assert page.pagination.total == 2

    by_title = service.list_workflows(ORG, sort_by="title", sort_order="asc")
    assert [i.title for i in by_title.items] == ["Alpha", "beta"]

    assert [i.id for i in service.list_workflows(ORG, search="INTAKE").items] == [alpha.id]
    assert service.list_workflows(ORG, status="active").items == []

    with pytest.raises(ValidationError):
        service.list_workflows(ORG, sort_by="status")


def test_get_includes_metadata_and_people(service: WorkflowService, link_portal) -> None:
    wf = _onboarding(service)
    link_portal(wf.id)

    detail = service.get_workflow(wf.id, ORG)

    assert detail.metadata.submissions_count == 0
    assert detail.metadata.active_portals_count == 1
    assert detail.created_by.name == "Alan Turing"


def test_update_workflow_fields(service: WorkflowService) -> None:
    wf = _onboarding(service)

    updated = service.update_workflow(
        wf.id,
        ORG,
        {"title": "Onboarding v2", "settings": {"send_frequency": "weekly"}},
        actor_id="user-2",
    )

    assert updated.title == "Onboarding v2"
    assert updated.settings.send_frequency == "weekly"
    assert updated.updated_by == "user-2"
    assert updated.version == wf.version + 1
    assert _titles(updated) == _titles(wf)


def test_update_cannot_set_deleted_status(service: WorkflowService) -> None:
    wf = _onboarding(service)
    with pytest.raises(ValidationError):
        service.update_workflow(wf.id, ORG, {"status": "deleted"}, actor_id=ACTOR)


def test_update_rejects_unknown_fields(service: WorkflowService) -> None:
    wf = _onboarding(service)
    with pytest.raises(ValidationError):
        service.update_workflow(wf.id, ORG, {"owner": "someone"}, actor_id=ACTOR)


def test_update_with_step_actions_renumbers(service: WorkflowService) -> None:
    wf = _onboarding(service)
    updated = service.update_workflow(
        wf.id, ORG, {"steps": [{"action": "delete", "id": wf.steps[0].id}]}, actor_id=ACTOR
    )
    assert _titles(updated) == [("Sign", 1)]
    assert updated.retired_step_ids == (wf.steps[0].id,)


def test_stale_expected_version_conflicts(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.update_workflow(wf.id, ORG, {"title": "New"}, actor_id=ACTOR)

    with pytest.raises(ConflictError):
        service.update_workflow(
            wf.id, ORG, {"title": "Mine"}, actor_id=ACTOR, expected_version=wf.version
        )


def test_failed_batch_leaves_steps_unchanged(service: WorkflowService) -> None:
    wf = _onboarding(service)

    with pytest.raises(StepNotFound):
        service.apply_step_actions(
            wf.id,
            ORG,
            [
                {"action": "delete", "id": wf.steps[0].id},
                {"action": "update", "id": "unknown", "title": "x"},
            ],
            actor_id=ACTOR,
        )

    stored = service.get_workflow(wf.id, ORG).workflow
    assert stored.steps == wf.steps
    assert stored.version == wf.version


def test_deleted_step_id_cannot_come_back(service: WorkflowService) -> None:
    wf = _onboarding(service)
    removed = wf.steps[0].id
    service.delete_step(wf.id, ORG, removed, actor_id=ACTOR)

    with pytest.raises(DuplicateStepId):
        service.add_step(wf.id, ORG, {"id": removed, "title": "Again", "type": "Form"}, actor_id=ACTOR)


def test_add_step_with_order_inserts_and_shifts(service: WorkflowService) -> None:
    wf = _onboarding(service)

    step = service.add_step(
        wf.id, ORG, {"title": "Welcome", "type": "Screen", "order": 1}, actor_id=ACTOR
    )

    assert step.order == 1
    stored = service.get_workflow(wf.id, ORG).workflow
    assert _titles(stored) == [("Welcome", 1), ("Collect ID", 2), ("Sign", 3)]


def test_add_step_without_order_appends(service: WorkflowService) -> None:
    wf = _onboarding(service)
    step = service.add_step(wf.id, ORG, {"title": "Thanks", "type": "email"}, actor_id=ACTOR)
    assert step.order == 3


def test_update_step_moves_with_insertion(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.add_step(wf.id, ORG, {"title": "Thanks", "type": "Email"}, actor_id=ACTOR)

    moved = service.update_step(
        wf.id, ORG, wf.steps[0].id, {"title": "Collect passport", "order": 3}, actor_id=ACTOR
    )

    assert moved.title == "Collect passport"
    stored = service.get_workflow(wf.id, ORG).workflow
    assert _titles(stored) == [("Sign", 1), ("Thanks", 2), ("Collect passport", 3)]


def test_batch_create_with_order_inserts_and_shifts(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.add_step(wf.id, ORG, {"title": "Thanks", "type": "Email"}, actor_id=ACTOR)

    result = service.apply_step_actions(
        wf.id,
        ORG,
        [{"action": "create", "title": "Welcome", "type": "Screen", "order": 1}],
        actor_id=ACTOR,
    )

    assert _titles(result.workflow) == [
        ("Welcome", 1),
        ("Collect ID", 2),
        ("Sign", 3),
        ("Thanks", 4),
    ]


def test_batch_update_with_order_matches_update_step(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.add_step(wf.id, ORG, {"title": "Thanks", "type": "Email"}, actor_id=ACTOR)
    thanks = service.get_workflow(wf.id, ORG).workflow.steps[-1]

    result = service.apply_step_actions(
        wf.id, ORG, [{"action": "update", "id": thanks.id, "order": 1}], actor_id=ACTOR
    )
    assert _titles(result.workflow) == [("Thanks", 1), ("Collect ID", 2), ("Sign", 3)]

    service.update_step(wf.id, ORG, thanks.id, {"order": 3}, actor_id=ACTOR)
    stored = service.get_workflow(wf.id, ORG).workflow
    assert _titles(stored) == [("Collect ID", 1), ("Sign", 2), ("Thanks", 3)]


def test_batch_order_past_the_end_places_step_last(service: WorkflowService) -> None:
    wf = _onboarding(service)

    result = service.apply_step_actions(
        wf.id,
        ORG,
        [{"action": "update", "id": wf.steps[0].id, "order": 99}],
        actor_id=ACTOR,
    )

    assert _titles(result.workflow) == [("Sign", 1), ("Collect ID", 2)]


def test_single_step_operations_name_the_workflow(service: WorkflowService) -> None:
    wf = _onboarding(service)
    with pytest.raises(StepNotFound) as excinfo:
        service.update_step(wf.id, ORG, "missing", {"title": "x"}, actor_id=ACTOR)
    assert excinfo.value.details["workflow_id"] == wf.id

    with pytest.raises(StepNotFound):
        service.delete_step(wf.id, ORG, "missing", actor_id=ACTOR)


def test_reorder_requires_instructions(service: WorkflowService) -> None:
    wf = _onboarding(service)
    with pytest.raises(ValidationError):
        service.reorder_steps(wf.id, ORG, [], actor_id=ACTOR)
    with pytest.raises(ValidationError):
        service.reorder_steps(
            wf.id, ORG, [{"step_id": wf.steps[0].id, "new_position": "first"}], actor_id=ACTOR
        )


def test_delete_draft_is_hard(service: WorkflowService, stores: Stores) -> None:
    wf = _onboarding(service)

    outcome = service.delete_workflow(wf.id, ORG, actor_id=ACTOR)

    assert outcome.mode == "hard"
    assert stores.workflows.get(wf.id) is None


@pytest.mark.parametrize("status", ["active", "paused", "archived"])
def test_delete_non_draft_is_soft(service: WorkflowService, stores: Stores, clock, status) -> None:
    wf = _onboarding(service)
    service.update_workflow(wf.id, ORG, {"status": status}, actor_id=ACTOR)

    outcome = service.delete_workflow(wf.id, ORG, actor_id=ACTOR)

    assert outcome.mode == "soft"
    stored = stores.workflows.get(wf.id)
    assert stored.status == WorkflowStatus.DELETED
    assert stored.deleted_at == clock.now
    with pytest.raises(WorkflowNotFound):
        service.get_workflow(wf.id, ORG)
    with pytest.raises(WorkflowAlreadyDeleted):
        service.delete_workflow(wf.id, ORG, actor_id=ACTOR)


def test_delete_blocked_by_active_portal(service: WorkflowService, link_portal) -> None:
    wf = _onboarding(service)
    link_portal(wf.id, portal_id="portal-9")

    with pytest.raises(WorkflowInUse) as excinfo:
        service.delete_workflow(wf.id, ORG, actor_id=ACTOR)
    assert excinfo.value.details["portal_ids"] == ["portal-9"]


def test_delete_unknown_or_foreign(service: WorkflowService) -> None:
    wf = _onboarding(service)
    with pytest.raises(WorkflowNotFound):
        service.delete_workflow("missing", ORG, actor_id=ACTOR)
    with pytest.raises(WorkflowNotFound):
        service.delete_workflow(wf.id, "org-2", actor_id=ACTOR)


def test_duplicate_resets_state(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.update_workflow(
        wf.id, ORG, {"status": "active", "settings": {"max_attempts": 3}}, actor_id=ACTOR
    )
    service.start_execution(wf.id, "contact-1", organization_id=ORG, actor_id=ACTOR)

    copy = service.duplicate_workflow(wf.id, ORG, actor_id="user-2")

    assert copy.title == "Onboarding (Copy)"
    assert copy.status == WorkflowStatus.DRAFT
    assert copy.version == 1
    assert copy.metrics.total_executions == 0
    assert copy.settings.max_attempts == 3
    assert _titles(copy) == [("Collect ID", 1), ("Sign", 2)]
    assert {s.id for s in copy.steps}.isdisjoint({s.id for s in wf.steps})


def test_duplicate_without_steps_or_settings(service: WorkflowService) -> None:
    wf = _onboarding(service)
    service.update_workflow(wf.id, ORG, {"settings": {"max_attempts": 3}}, actor_id=ACTOR)

    copy = service.duplicate_workflow(
        wf.id, ORG, actor_id=ACTOR, title="Blank", copy_steps=False, copy_settings=False
    )

    assert copy.title == "Blank"
    assert copy.steps == ()
    assert copy.settings.max_attempts is None
