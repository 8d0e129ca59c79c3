"""Base job status store interface."""

from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable, List

from ..contracts import Job, utcnow

JobCallback = Callable[[Job], Awaitable[None]]


class Subscription(metaclass=abc.ABCMeta):
    """Handle returned by :meth:`BaseJobStatusStore.subscribe`."""

    resource_id: str

    @abc.abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering notifications to the callback."""
        raise NotImplementedError


class BaseJobStatusStore(metaclass=abc.ABCMeta):
    """Source of truth for job lifecycle.

    Processors write job records through :meth:`publish`; the workflow
    engine only reads them and listens for changes. Notifications for a
    resource are delivered at least once and in the order they were
    published, one callback invocation at a time per subscription.
    """

    async def connect(self) -> None:
        """Open connection to the backing store (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backing store (no-op by default)."""
        pass

    @abc.abstractmethod
    async def get(self, job_id: str) -> Job:
        """Return the current record of ``job_id``.

        Raises:
            JobNotFound: No job with that id exists.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def list_jobs(self, resource_id: str) -> List[Job]:
        """Return every job recorded for ``resource_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def publish(self, job: Job) -> None:
        """Store ``job`` and notify subscribers of its resource."""
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(self, resource_id: str, on_change: JobCallback) -> Subscription:
        """Invoke ``on_change`` for every status change of jobs of ``resource_id``."""
        raise NotImplementedError

    async def update_job(self, job_id: str, **changes: Any) -> Job:
        """Apply ``changes`` to an existing job and publish the result."""
        current = await self.get(job_id)
        updated = Job.model_validate(
            {**current.model_dump(), **changes, "updated_at": utcnow()}
        )
        await self.publish(updated)
        return updated
