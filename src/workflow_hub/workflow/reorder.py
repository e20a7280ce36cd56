"""Explicit step reordering.

Reordering is the only place step positions change. Moving a step inserts it
at the requested position and shifts the others to close or open the gap; it
never swaps. The result always carries a dense ``order`` of ``1..N``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import BaseModel, Field

from workflow_hub.errors import DuplicatePosition, PositionOutOfRange, StepNotFound
from workflow_hub.workflow.models import Step


class ReorderInstruction(BaseModel):
    step_id: str
    new_position: int = Field(strict=True)


class StepPosition(BaseModel):
    id: str
    title: str
    order: int


@dataclass(frozen=True, slots=True)
class ReorderResult:
    steps: tuple[Step, ...]
    summary: list[StepPosition]


def _renumber(steps: Sequence[Step]) -> tuple[Step, ...]:
    return tuple(
        step if step.order == idx else step.model_copy(update={"order": idx})
        for idx, step in enumerate(steps, start=1)
    )


def normalize_order(steps: Sequence[Step]) -> tuple[Step, ...]:
    """Sort by current ``order`` (stable) and renumber densely."""

    return _renumber(sorted(steps, key=lambda s: s.order))


def validate_instructions(
    steps: Sequence[Step], instructions: Sequence[ReorderInstruction]
) -> None:
    existing = {step.id for step in steps}
    for instruction in instructions:
        if instruction.step_id not in existing:
            raise StepNotFound(instruction.step_id)

    claimed: dict[int, list[str]] = {}
    for instruction in instructions:
        claimed.setdefault(instruction.new_position, []).append(instruction.step_id)
    for position, step_ids in claimed.items():
        if len(step_ids) > 1:
            raise DuplicatePosition(position, step_ids)

    max_position = len(steps)
    for instruction in instructions:
        if not 1 <= instruction.new_position <= max_position:
            raise PositionOutOfRange(instruction.step_id, instruction.new_position, max_position)


def reorder_steps(
    steps: Sequence[Step], instructions: Sequence[ReorderInstruction]
) -> ReorderResult:
    """Place named steps at their requested positions and renumber all steps.

    Unnamed steps keep their relative order (current ``order``, then array
    order) and fill the remaining positions.

    Raises:
        StepNotFound: an instruction names an unknown step.
        DuplicatePosition: two instructions target the same position.
        PositionOutOfRange: a position is outside ``1..len(steps)``.
    """

    validate_instructions(steps, instructions)

    # A step named twice keeps its last requested position.
    requested = {i.step_id: i.new_position for i in instructions}
    slots: list[Step | None] = [None] * len(steps)
    for step in steps:
        if step.id in requested:
            slots[requested[step.id] - 1] = step

    remaining = iter(sorted((s for s in steps if s.id not in requested), key=lambda s: s.order))
    ordered = [slot if slot is not None else next(remaining) for slot in slots]

    result = _renumber(ordered)
    summary = [
        StepPosition(id=step.id, title=step.display_title, order=step.order) for step in result
    ]
    return ReorderResult(steps=result, summary=summary)
