"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict

from ..contracts import WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Instances are copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowInstance] = {}

    async def create_workflow(self, instance: WorkflowInstance) -> None:
        if instance.id in self._workflows:
            raise ValueError(f"Workflow {instance.id} already exists")
        self._workflows[instance.id] = instance.model_copy(deep=True)

    async def save_workflow(self, instance: WorkflowInstance) -> None:
        self._workflows[instance.id] = instance.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def list_workflows(
        self, resource_id: str | None = None
    ) -> list[WorkflowInstance]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if resource_id is None or wf.resource_id == resource_id
        ]
