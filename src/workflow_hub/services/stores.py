"""Collections used by the services, opened from one data directory."""

from __future__ import annotations

from dataclasses import dataclass

from workflow_hub.config import StoreConfig
from workflow_hub.errors import WorkflowNotFound
from workflow_hub.store.documents import JsonCollection
from workflow_hub.store.references import ContactStore, PortalStore, UserStore
from workflow_hub.workflow.execution import WorkflowExecution
from workflow_hub.workflow.models import Workflow


@dataclass(frozen=True, slots=True)
class Stores:
    workflows: JsonCollection[Workflow]
    executions: JsonCollection[WorkflowExecution]
    contacts: ContactStore
    portals: PortalStore
    users: UserStore

    @classmethod
    def open(cls, config: StoreConfig) -> Stores:
        return cls(
            workflows=JsonCollection(config.workflows_file, Workflow, name="workflows"),
            executions=JsonCollection(
                config.executions_file, WorkflowExecution, name="executions"
            ),
            contacts=ContactStore(config.contacts_file),
            portals=PortalStore(config.portals_file),
            users=UserStore(config.users_file),
        )


def get_live_workflow(
    workflows: JsonCollection[Workflow], workflow_id: str, organization_id: str
) -> Workflow:
    """Load a non-deleted workflow owned by ``organization_id``."""

    workflow = workflows.get(workflow_id)
    if workflow is None or workflow.organization_id != organization_id or workflow.is_deleted:
        raise WorkflowNotFound(workflow_id)
    return workflow
