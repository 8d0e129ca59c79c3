"""Job status store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import LessonflowConfig, load_config
from .base import BaseJobStatusStore, JobCallback, Subscription
from .inmemory import InMemoryJobStatusStore


def get_status_store(
    backend: Optional[str] = None, config: Optional[LessonflowConfig] = None
) -> BaseJobStatusStore:
    """Factory function to get the configured job status store."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("LESSONFLOW_STATUS_STORE")
        or config.status_store.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryJobStatusStore()
    elif backend == "redis":
        from .redis import RedisJobStatusStore

        redis_conf = config.status_store.redis
        return RedisJobStatusStore(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported job status store backend: {backend}")


__all__ = [
    "BaseJobStatusStore",
    "InMemoryJobStatusStore",
    "JobCallback",
    "Subscription",
    "get_status_store",
]
