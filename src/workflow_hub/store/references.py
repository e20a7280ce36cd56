"""Read-only reference collaborators: contacts, portals and users.

The CRUD for these documents lives elsewhere; this package only needs
existence checks, active-portal counts and display names. Each concern is a
``Protocol`` with a JSON-collection backed implementation.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Literal, Protocol

from workflow_hub.store.documents import Document, JsonCollection


class ContactRecord(Document):
    organization_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    deleted_at: datetime | None = None

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.email or "Unknown"


class PortalRecord(Document):
    organization_id: str
    workflow_id: str | None = None
    title: str = ""
    status: Literal["active", "inactive", "draft"] = "active"
    deleted_at: datetime | None = None


class UserRecord(Document):
    full_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def display_name(self) -> str:
        full = self.full_name.strip() or f"{self.first_name} {self.last_name}".strip()
        return full or "Unknown"


class ContactLookup(Protocol):
    def exists(self, contact_id: str, organization_id: str) -> bool: ...

    def display_name(self, contact_id: str) -> str | None: ...


class PortalLookup(Protocol):
    def count_active(self, workflow_id: str, organization_id: str) -> int: ...

    def active_portal_ids(self, workflow_id: str, organization_id: str) -> list[str]: ...

    def count_linked(self, workflow_id: str, organization_id: str) -> int: ...


class UserLookup(Protocol):
    def display_name(self, user_id: str) -> str | None: ...


class ContactStore(JsonCollection[ContactRecord]):
    def __init__(self, path: Path) -> None:
        super().__init__(path, ContactRecord, name="contacts")

    def exists(self, contact_id: str, organization_id: str) -> bool:
        contact = self.get(contact_id)
        return (
            contact is not None
            and contact.organization_id == organization_id
            and contact.deleted_at is None
        )

    def display_name(self, contact_id: str) -> str | None:
        contact = self.get(contact_id)
        return contact.display_name if contact is not None else None


class PortalStore(JsonCollection[PortalRecord]):
    def __init__(self, path: Path) -> None:
        super().__init__(path, PortalRecord, name="portals")

    def _linked(self, workflow_id: str, organization_id: str) -> list[PortalRecord]:
        return self.find(
            lambda p: p.workflow_id == workflow_id
            and p.organization_id == organization_id
            and p.deleted_at is None
        )

    def active_portal_ids(self, workflow_id: str, organization_id: str) -> list[str]:
        return [p.id for p in self._linked(workflow_id, organization_id) if p.status == "active"]

    def count_active(self, workflow_id: str, organization_id: str) -> int:
        return len(self.active_portal_ids(workflow_id, organization_id))

    def count_linked(self, workflow_id: str, organization_id: str) -> int:
        return len(self._linked(workflow_id, organization_id))


class UserStore(JsonCollection[UserRecord]):
    def __init__(self, path: Path) -> None:
        super().__init__(path, UserRecord, name="users")

    def display_name(self, user_id: str) -> str | None:
        user = self.get(user_id)
        return user.display_name if user is not None else None
