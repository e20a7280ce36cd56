"""Step types and their configuration variants.

Configuration is a tagged union keyed by step type: each variant owns only the
fields relevant to its type, plus the common ``condition`` and ``assignee``.
The ``kind`` tag is always derived from the owning step's ``type``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class StepType(str, Enum):
    FORM = "Form"
    DOCUMENT = "Document"
    DOCUMENTS = "Documents"
    SCREEN = "Screen"
    APPROVAL = "Approval"
    EMAIL = "Email"
    SMS = "Sms"
    WEBHOOK = "Webhook"
    CONDITION = "Condition"
    DELAY = "Delay"
    CHECKLIST = "Checklist"

    @classmethod
    def parse(cls, value: object) -> StepType:
        """Case-insensitive lookup (``"form"``, ``"Form"`` and ``"FORM"`` are equal)."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value.lower() == normalized:
                    return member
        raise ValueError(
            f"Unknown step type {value!r}; expected one of: " + ", ".join(m.value for m in cls)
        )


StepTypeField = Annotated[StepType, BeforeValidator(StepType.parse)]


class Assignee(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["contact", "user", "role", "dynamic"]
    value: str


class StepConfigBase(BaseModel):
    """Fields every step type may carry."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    condition: str | None = None
    assignee: Assignee | None = None


class FormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    label: str | None = None
    type: Literal["text", "email", "phone", "date", "file", "select", "checkbox"] | None = None
    required: bool = False
    options: tuple[str, ...] = ()
    validation: dict[str, Any] | None = None


class FormConfig(StepConfigBase):
    kind: Literal["Form"] = "Form"
    fields: tuple[FormField, ...] = ()
    submit_button_text: str | None = None


class DocumentConfig(StepConfigBase):
    kind: Literal["Document"] = "Document"
    document_template_id: str | None = None


class DocumentRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    type: str | None = None
    required: bool = False
    max_size: str | None = None


class DocumentsConfig(StepConfigBase):
    kind: Literal["Documents"] = "Documents"
    documents: tuple[DocumentRequirement, ...] = ()
    max_total_size: str | None = None


class ScreenConfig(StepConfigBase):
    kind: Literal["Screen"] = "Screen"
    screen_title: str | None = None
    screen_content: str | None = None


class ApprovalConfig(StepConfigBase):
    kind: Literal["Approval"] = "Approval"


class EmailTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str | None = None
    body: str | None = None
    attachments: tuple[str, ...] = ()


class EmailConfig(StepConfigBase):
    kind: Literal["Email"] = "Email"
    email_template: EmailTemplate | None = None


class SmsConfig(StepConfigBase):
    kind: Literal["Sms"] = "Sms"
    message: str | None = None


class WebhookConfig(StepConfigBase):
    kind: Literal["Webhook"] = "Webhook"
    url: str | None = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"


class ConditionConfig(StepConfigBase):
    kind: Literal["Condition"] = "Condition"
    conditions: dict[str, Any] | None = None


class DelayConfig(StepConfigBase):
    kind: Literal["Delay"] = "Delay"
    delay_duration: float | None = Field(default=None, ge=0)


class ChecklistItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    text: str | None = None
    completed: bool = False


class ChecklistConfig(StepConfigBase):
    kind: Literal["Checklist"] = "Checklist"
    items: tuple[ChecklistItem, ...] = ()
    allow_user_to_add_items: bool = False


StepConfig = Annotated[
    Union[
        FormConfig,
        DocumentConfig,
        DocumentsConfig,
        ScreenConfig,
        ApprovalConfig,
        EmailConfig,
        SmsConfig,
        WebhookConfig,
        ConditionConfig,
        DelayConfig,
        ChecklistConfig,
    ],
    Field(discriminator="kind"),
]

CONFIG_MODELS: dict[StepType, type[StepConfigBase]] = {
    StepType.FORM: FormConfig,
    StepType.DOCUMENT: DocumentConfig,
    StepType.DOCUMENTS: DocumentsConfig,
    StepType.SCREEN: ScreenConfig,
    StepType.APPROVAL: ApprovalConfig,
    StepType.EMAIL: EmailConfig,
    StepType.SMS: SmsConfig,
    StepType.WEBHOOK: WebhookConfig,
    StepType.CONDITION: ConditionConfig,
    StepType.DELAY: DelayConfig,
    StepType.CHECKLIST: ChecklistConfig,
}


def stranded_config_keys(config: dict[str, Any], step_type: StepType) -> list[str]:
    """Keys in ``config`` with a value that the ``step_type`` variant does not own."""

    owned = set(CONFIG_MODELS[step_type].model_fields)
    return sorted(
        key
        for key, value in config.items()
        if key != "kind" and key not in owned and value not in (None, (), [], {}, False)
    )
