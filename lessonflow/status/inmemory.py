"""In-memory job status store for testing."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from typing import Dict, List

from ..contracts import Job
from ..errors import JobNotFound
from .base import BaseJobStatusStore, JobCallback, Subscription

logger = logging.getLogger(__name__)


class InMemorySubscription(Subscription):
    """Delivers queued jobs to a callback from a background task."""

    def __init__(
        self,
        store: "InMemoryJobStatusStore",
        resource_id: str,
        callback: JobCallback,
    ) -> None:
        self.resource_id = resource_id
        self._store = store
        self._callback = callback
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._closed = False
        self._task = asyncio.create_task(self._run())

    def deliver(self, job: Job) -> None:
        if not self._closed:
            self._queue.put_nowait(job)

    async def join(self) -> None:
        """Wait until every queued notification has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while not self._closed:
            job = await self._queue.get()
            try:
                await self._callback(job)
            except Exception:
                logger.exception(
                    f"Job status callback failed for job={job.id} resource={self.resource_id}"
                )
            finally:
                self._queue.task_done()

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._remove(self)
        if asyncio.current_task() is self._task:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


class InMemoryJobStatusStore(BaseJobStatusStore):
    """Keeps job records in local memory.

    Data is not persisted across process restarts.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._by_resource: Dict[str, List[str]] = defaultdict(list)
        self._subscriptions: Dict[str, List[InMemorySubscription]] = defaultdict(list)
        self._published = 0
        self._lock = asyncio.Lock()

    async def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job.model_copy(deep=True)

    async def list_jobs(self, resource_id: str) -> List[Job]:
        return [
            self._jobs[job_id].model_copy(deep=True)
            for job_id in self._by_resource.get(resource_id, [])
        ]

    async def publish(self, job: Job) -> None:
        async with self._lock:
            if job.id not in self._jobs:
                self._by_resource[job.resource_id].append(job.id)
            self._jobs[job.id] = job.model_copy(deep=True)
            self._published += 1
            for subscription in list(self._subscriptions.get(job.resource_id, [])):
                subscription.deliver(job.model_copy(deep=True))

    async def subscribe(self, resource_id: str, on_change: JobCallback) -> Subscription:
        subscription = InMemorySubscription(self, resource_id, on_change)
        self._subscriptions[resource_id].append(subscription)
        return subscription

    async def join(self) -> None:
        """Wait until all subscribers have processed their notifications.

        Notifications published by callbacks while draining are waited for
        as well.
        """
        while True:
            published = self._published
            for subscriptions in list(self._subscriptions.values()):
                for subscription in list(subscriptions):
                    await subscription.join()
            if published == self._published:
                return

    async def disconnect(self) -> None:
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                await subscription.unsubscribe()

    def _remove(self, subscription: InMemorySubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.resource_id, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
