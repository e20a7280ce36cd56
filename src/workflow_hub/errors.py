"""Typed error taxonomy.

Every operation raises one of four categories: :class:`NotFound`,
:class:`ValidationError`, :class:`StateConflict` or :class:`InternalError`.
The HTTP adapter maps categories to status codes; callers that need finer
handling can catch the concrete subclasses.

Each error names the offending identifier in its message and repeats it in
``details`` so clients can self-correct.
"""

from __future__ import annotations

from collections.abc import Mapping


class WorkflowHubError(Exception):
    """Base class for all workflow-hub errors."""

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, object] = dict(details)

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_json(self) -> dict[str, object]:
        return {"detail": self.message, "code": self.code, "details": self.details}


# --- NotFound -----------------------------------------------------------------


class NotFound(WorkflowHubError):
    pass


class WorkflowNotFound(NotFound):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id!r} not found", workflow_id=workflow_id)


class TemplateNotFound(NotFound):
    def __init__(self, template_id: str) -> None:
        super().__init__(f"Template workflow {template_id!r} not found", template_id=template_id)


class StepNotFound(NotFound):
    def __init__(self, step_id: str, *, workflow_id: str | None = None) -> None:
        where = f" in workflow {workflow_id!r}" if workflow_id else ""
        super().__init__(
            f"Step with ID {step_id!r} not found{where}", step_id=step_id, workflow_id=workflow_id
        )


class ContactNotFound(NotFound):
    def __init__(self, contact_id: str) -> None:
        super().__init__(f"Contact {contact_id!r} not found", contact_id=contact_id)


class ExecutionNotFound(NotFound):
    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution {execution_id!r} not found", execution_id=execution_id)


# --- ValidationError ----------------------------------------------------------


class ValidationError(WorkflowHubError):
    pass


class InvalidStepAction(ValidationError):
    def __init__(self, message: str, *, index: int | None = None, **details: object) -> None:
        prefix = f"Step action #{index}: " if index is not None else ""
        super().__init__(f"{prefix}{message}", index=index, **details)


class DuplicateStepId(ValidationError):
    def __init__(self, step_id: str, *, retired: bool = False) -> None:
        reason = "was used by a deleted step" if retired else "already exists in workflow"
        super().__init__(f"Step ID {step_id!r} {reason}", step_id=step_id, retired=retired)


class DuplicatePosition(ValidationError):
    def __init__(self, position: int, step_ids: list[str]) -> None:
        super().__init__(
            f"Multiple steps cannot have the same position: {position} requested by "
            + ", ".join(repr(s) for s in step_ids),
            position=position,
            step_ids=step_ids,
        )


class PositionOutOfRange(ValidationError):
    def __init__(self, step_id: str, position: int, max_position: int) -> None:
        super().__init__(
            f"Position {position} for step {step_id!r} must be between 1 and {max_position}",
            step_id=step_id,
            position=position,
            max_position=max_position,
        )


# --- StateConflict ------------------------------------------------------------


class StateConflict(WorkflowHubError):
    pass


class WorkflowNotActive(StateConflict):
    def __init__(self, workflow_id: str, status: str) -> None:
        super().__init__(
            f"Workflow {workflow_id!r} must be active to execute (status: {status})",
            workflow_id=workflow_id,
            status=status,
        )


class WorkflowAlreadyDeleted(StateConflict):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id!r} already deleted", workflow_id=workflow_id)


class WorkflowInUse(StateConflict):
    def __init__(self, workflow_id: str, portal_ids: list[str]) -> None:
        super().__init__(
            f"Cannot delete workflow {workflow_id!r} linked to active portals: "
            + ", ".join(portal_ids),
            workflow_id=workflow_id,
            portal_ids=portal_ids,
        )


class IllegalTransition(StateConflict):
    def __init__(self, execution_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Illegal transition for execution {execution_id!r}: {current} -> {requested}",
            execution_id=execution_id,
            current=current,
            requested=requested,
        )


class ExecutionClosed(StateConflict):
    def __init__(self, execution_id: str, status: str) -> None:
        super().__init__(
            f"Execution {execution_id!r} is {status}; no further step records are accepted",
            execution_id=execution_id,
            status=status,
        )


class ConflictError(StateConflict):
    def __init__(self, collection: str, doc_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"{collection} document {doc_id!r} was modified concurrently "
            f"(expected version {expected}, found {actual})",
            collection=collection,
            doc_id=doc_id,
            expected_version=expected,
            actual_version=actual,
        )


# --- InternalError ------------------------------------------------------------


class InternalError(WorkflowHubError):
    pass


class StorageError(InternalError):
    pass


class UploadConfigurationError(InternalError):
    pass


def from_pydantic(
    exc: Exception, *, prefix: str = "", extra: Mapping[str, object] | None = None
) -> ValidationError:
    """Convert a pydantic ``ValidationError`` into our taxonomy.

    Only the first error is put into the message; all of them go into ``details``.
    """

    errors = getattr(exc, "errors", None)
    items: list[dict[str, object]] = []
    if callable(errors):
        for err in errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            items.append({"loc": loc, "msg": err.get("msg", "")})
    first = f"{items[0]['loc']}: {items[0]['msg']}" if items else str(exc)
    return ValidationError(f"{prefix}{first}", errors=items, **dict(extra or {}))
