"""Batched create/update/delete mutations of a step collection.

A batch is applied in order against one working copy. Any failure aborts the
whole batch: the input collection is an immutable tuple, so callers still hold
the untouched original. Actions never move steps: a create is appended and an
update keeps its position. An explicit ``order`` is reported back as a
placement for :func:`workflow_hub.workflow.reorder.reorder_steps` to apply
after :func:`workflow_hub.workflow.reorder.normalize_order`.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from workflow_hub.errors import DuplicateStepId, InvalidStepAction, StepNotFound
from workflow_hub.workflow.models import NextStepRef, Step
from workflow_hub.workflow.step_config import StepTypeField, stranded_config_keys


class CreateStepAction(BaseModel):
    action: Literal["create"] = "create"
    id: str | None = Field(default=None, min_length=1)
    title: str = Field(min_length=1, max_length=200)
    type: StepTypeField
    order: int | None = Field(default=None, ge=1)
    required: bool = False
    config: dict[str, Any] | None = None
    next_steps: list[NextStepRef] | None = None


class UpdateStepAction(BaseModel):
    action: Literal["update"] = "update"
    id: str = Field(min_length=1)
    title: str | None = Field(default=None, min_length=1, max_length=200)
    type: StepTypeField | None = None
    order: int | None = Field(default=None, ge=1)
    required: bool | None = None
    config: dict[str, Any] | None = None
    next_steps: list[NextStepRef] | None = None


class DeleteStepAction(BaseModel):
    action: Literal["delete"] = "delete"
    id: str = Field(min_length=1)


StepAction = Annotated[
    Union[CreateStepAction, UpdateStepAction, DeleteStepAction],
    Field(discriminator="action"),
]

_ACTION_ADAPTER: TypeAdapter[StepAction] = TypeAdapter(StepAction)


def parse_actions(raw: Iterable[object]) -> list[StepAction]:
    """Validate raw action payloads; the first malformed one aborts with its index."""

    actions: list[StepAction] = []
    for index, item in enumerate(raw):
        if isinstance(item, (CreateStepAction, UpdateStepAction, DeleteStepAction)):
            actions.append(item)
            continue
        try:
            actions.append(_ACTION_ADAPTER.validate_python(item))
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise InvalidStepAction(f"{loc}: {first.get('msg', '')}", index=index) from e
    return actions


@dataclass(frozen=True, slots=True)
class StepMutationResult:
    steps: tuple[Step, ...]
    deleted_ids: tuple[str, ...]
    warnings: tuple[str, ...]
    # (step_id, requested order) for every surviving step given an explicit order.
    placements: tuple[tuple[str, int], ...] = ()


def dangling_successors(steps: Sequence[Step]) -> list[str]:
    """Warnings for ``next_steps`` targets that are not live step ids."""

    live = {step.id for step in steps}
    return [
        f"Step {step.id!r} points to missing successor {ref.step_id!r}"
        for step in steps
        for ref in step.next_steps
        if ref.step_id not in live
    ]


def _build_step(data: dict[str, Any], *, index: int) -> Step:
    try:
        return Step.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidStepAction(
            f"{loc}: {first.get('msg', '')}", index=index, step_id=data.get("id")
        ) from e


def apply_step_actions(
    existing: Sequence[Step],
    actions: Sequence[StepAction],
    *,
    retired_ids: Iterable[str] = (),
) -> StepMutationResult:
    """Apply ``actions`` to ``existing`` and return the new collection.

    Raises:
        StepNotFound: an update/delete names an id missing from the working copy.
        DuplicateStepId: a create reuses a live or retired id.
        InvalidStepAction: a merged step fails validation.
    """

    steps: list[Step] = list(existing)
    retired = set(retired_ids)
    deleted: list[str] = []
    warnings: list[str] = []
    placements: dict[str, int] = {}

    def _index_of(step_id: str) -> int:
        for idx, step in enumerate(steps):
            if step.id == step_id:
                return idx
        raise StepNotFound(step_id)

    for index, action in enumerate(actions):
        if isinstance(action, CreateStepAction):
            step_id = action.id or str(uuid.uuid4())
            if step_id in retired or step_id in deleted:
                raise DuplicateStepId(step_id, retired=True)
            if any(s.id == step_id for s in steps):
                raise DuplicateStepId(step_id)
            steps.append(
                _build_step(
                    {
                        "id": step_id,
                        "title": action.title,
                        "name": action.title,
                        "type": action.type,
                        "order": len(steps) + 1,
                        "required": action.required,
                        "config": action.config or {},
                        "next_steps": action.next_steps or [],
                    },
                    index=index,
                )
            )
            if action.order is not None:
                placements[step_id] = action.order

        elif isinstance(action, UpdateStepAction):
            idx = _index_of(action.id)
            current = steps[idx]
            supplied = action.model_fields_set - {"action", "id"}
            merged = current.model_dump()
            current_config = dict(merged["config"])

            if "title" in supplied and action.title is not None:
                merged["title"] = action.title
                merged["name"] = action.title
            if "type" in supplied and action.type is not None:
                merged["type"] = action.type
            if "order" in supplied and action.order is not None:
                placements[current.id] = action.order
            if "required" in supplied and action.required is not None:
                merged["required"] = action.required
            if "next_steps" in supplied and action.next_steps is not None:
                merged["next_steps"] = [ref.model_dump() for ref in action.next_steps]
            if "config" in supplied and action.config is not None:
                merged["config"] = {**current_config, **action.config}

            if merged["type"] != current.type:
                stranded = stranded_config_keys(merged["config"], merged["type"])
                if stranded:
                    warnings.append(
                        f"Step {current.id!r} changed type from {current.type.value} to "
                        f"{merged['type'].value}; configuration dropped: " + ", ".join(stranded)
                    )

            merged["id"] = current.id
            steps[idx] = _build_step(merged, index=index)

        else:
            idx = _index_of(action.id)
            removed = steps.pop(idx)
            deleted.append(removed.id)
            placements.pop(removed.id, None)
            steps = [
                s.model_copy(
                    update={"next_steps": tuple(r for r in s.next_steps if r.step_id != removed.id)}
                )
                if any(r.step_id == removed.id for r in s.next_steps)
                else s
                for s in steps
            ]

    warnings.extend(dangling_successors(steps))
    return StepMutationResult(
        steps=tuple(steps),
        deleted_ids=tuple(deleted),
        warnings=tuple(warnings),
        placements=tuple(placements.items()),
    )


def clone_steps(steps: Sequence[Step]) -> tuple[Step, ...]:
    """Copy ``steps`` under fresh ids, remapping ``next_steps`` to the copies.

    Successor references that point outside ``steps`` are kept as they are.
    """

    mapping = {step.id: str(uuid.uuid4()) for step in steps}
    return tuple(
        step.model_copy(
            update={
                "id": mapping[step.id],
                "next_steps": tuple(
                    ref.model_copy(update={"step_id": mapping.get(ref.step_id, ref.step_id)})
                    for ref in step.next_steps
                ),
            }
        )
        for step in steps
    )
