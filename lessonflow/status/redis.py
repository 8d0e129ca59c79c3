"""Redis job status store for cross-process notifications."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, List, Optional

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import REDIS_KEY_PREFIX
from ..contracts import Job
from ..errors import JobNotFound
from .base import BaseJobStatusStore, JobCallback, Subscription

logger = logging.getLogger(__name__)


class RedisSubscription(Subscription):
    """Forwards pub/sub messages of one resource channel to a callback."""

    def __init__(
        self,
        store: "RedisJobStatusStore",
        pubsub: Any,
        resource_id: str,
        callback: JobCallback,
    ) -> None:
        self.resource_id = resource_id
        self._store = store
        self._pubsub = pubsub
        self._callback = callback
        self._closed = False
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        async for message in self._pubsub.listen():
            if self._closed:
                break
            if message.get("type") != "message":
                continue
            try:
                job = Job.from_json(message["data"])
            except ValueError as e:
                logger.warning(f"Failed to parse job update on {self.resource_id}: {e}")
                continue
            try:
                await self._callback(job)
            except Exception:
                logger.exception(
                    f"Job status callback failed for job={job.id} resource={self.resource_id}"
                )

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._remove(self)
        if asyncio.current_task() is not self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        await self._pubsub.unsubscribe()
        await self._pubsub.aclose()


class RedisJobStatusStore(BaseJobStatusStore):
    """Job records as JSON strings, change notifications over pub/sub."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        if redis is None and client is None:
            raise ImportError("redis package is required for RedisJobStatusStore")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client
        self._subscriptions: List[RedisSubscription] = []

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Drop subscriptions and disconnect from Redis."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        self._subscriptions.clear()
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def job_key(job_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}:job:{job_id}"

    @staticmethod
    def resource_key(resource_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}:resource:{resource_id}:jobs"

    @staticmethod
    def channel(resource_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}:jobs:{resource_id}"

    async def get(self, job_id: str) -> Job:
        if not self._redis:
            await self.connect()
        data = await self._redis.get(self.job_key(job_id))
        if data is None:
            raise JobNotFound(job_id)
        return Job.from_json(data)

    async def list_jobs(self, resource_id: str) -> List[Job]:
        if not self._redis:
            await self.connect()
        job_ids = await self._redis.zrange(self.resource_key(resource_id), 0, -1)
        if not job_ids:
            return []
        documents = await self._redis.mget([self.job_key(job_id) for job_id in job_ids])
        return [Job.from_json(doc) for doc in documents if doc is not None]

    async def publish(self, job: Job) -> None:
        if not self._redis:
            await self.connect()
        data = job.to_json()
        await self._redis.set(self.job_key(job.id), data)
        await self._redis.zadd(
            self.resource_key(job.resource_id),
            {job.id: job.updated_at.timestamp()},
            nx=True,
        )
        await self._redis.publish(self.channel(job.resource_id), data)

    async def subscribe(self, resource_id: str, on_change: JobCallback) -> Subscription:
        if not self._redis:
            await self.connect()
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self.channel(resource_id))
        subscription = RedisSubscription(self, pubsub, resource_id, on_change)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: RedisSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
