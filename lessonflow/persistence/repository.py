"""Repository abstraction for workflow instance persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def create_workflow(self, instance: WorkflowInstance) -> None:
        """Persist a newly created workflow instance."""

    async def save_workflow(self, instance: WorkflowInstance) -> None:
        """Persist the full current state of ``instance``.

        Steps, cost totals and the set of already counted job ids are
        written together.
        """

    async def get_workflow(self, workflow_id: str) -> WorkflowInstance | None:
        """Retrieve the workflow instance by id."""

    async def list_workflows(
        self, resource_id: str | None = None
    ) -> list[WorkflowInstance]:
        """Return persisted workflows, optionally only those of ``resource_id``."""
