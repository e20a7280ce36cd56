"""Persistence for workflow-hub documents.

This package must not import domain modules: domain models subclass
:class:`~workflow_hub.store.documents.Document`.
"""

from __future__ import annotations

from workflow_hub.store.documents import Document, JsonCollection, utc_now
from workflow_hub.store.references import (
    ContactLookup,
    ContactRecord,
    ContactStore,
    PortalLookup,
    PortalRecord,
    PortalStore,
    UserLookup,
    UserRecord,
    UserStore,
)

__all__ = [
    "ContactLookup",
    "ContactRecord",
    "ContactStore",
    "Document",
    "JsonCollection",
    "PortalLookup",
    "PortalRecord",
    "PortalStore",
    "UserLookup",
    "UserRecord",
    "UserStore",
    "utc_now",
]
