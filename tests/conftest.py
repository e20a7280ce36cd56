"""Test configuration and fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from workflow_hub.config import StoreConfig, UploadConfig
from workflow_hub.services.stores import Stores
from workflow_hub.services.workflow_service import WorkflowService
from workflow_hub.store.references import ContactRecord, PortalRecord, UserRecord

ORG = "org-1"
OTHER_ORG = "org-2"
ACTOR = "user-1"


class FakeClock:
    """A settable clock; each call returns the current value."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeUploadIssuer:
    """Records what would have been signed."""

    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []

    def issue(self, *, bucket: str, key: str, content_type: str, ttl_seconds: int) -> str:
        self.calls.append(
            {"bucket": bucket, "key": key, "content_type": content_type, "ttl": ttl_seconds}
        )
        return f"https://{bucket}.example.test/{key}?signed=1"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def store_config(tmp_path: Path) -> StoreConfig:
    """Provide a store rooted in a temporary directory."""
    return StoreConfig(data_path=tmp_path / "state")


@pytest.fixture
def stores(store_config: StoreConfig) -> Stores:
    stores = Stores.open(store_config)
    stores.contacts.insert(
        ContactRecord(id="contact-1", organization_id=ORG, first_name="Ada", last_name="Lovelace")
    )
    stores.contacts.insert(
        ContactRecord(id="contact-2", organization_id=ORG, email="grace@example.test")
    )
    stores.contacts.insert(ContactRecord(id="contact-foreign", organization_id=OTHER_ORG))
    stores.users.insert(UserRecord(id=ACTOR, full_name="Alan Turing"))
    return stores


@pytest.fixture
def upload_issuer() -> FakeUploadIssuer:
    return FakeUploadIssuer()


@pytest.fixture
def service(stores: Stores, clock: FakeClock, upload_issuer: FakeUploadIssuer) -> WorkflowService:
    """Provide a service over the temporary store with a fake clock and issuer."""
    return WorkflowService(
        stores=stores,
        upload_config=UploadConfig(bucket="uploads"),
        upload_issuer=upload_issuer,
        clock=clock,
    )


@pytest.fixture
def link_portal(stores: Stores):
    def _link(workflow_id: str, *, status: str = "active", portal_id: str = "portal-1") -> None:
        stores.portals.insert(
            PortalRecord(id=portal_id, organization_id=ORG, workflow_id=workflow_id, status=status)
        )

    return _link
