"""Job client factory and initialization."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Optional

from ..config import LessonflowConfig, load_config
from .base import BaseJobClient
from .http import HttpJobClient
from .inmemory import InMemoryJobClient

if TYPE_CHECKING:
    from ..status import BaseJobStatusStore


def get_job_client(
    backend: Optional[str] = None,
    config: Optional[LessonflowConfig] = None,
    store: Optional["BaseJobStatusStore"] = None,
) -> BaseJobClient:
    """Factory function to get the configured job client."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("LESSONFLOW_JOB_CLIENT")
        or config.job_client.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryJobClient(store=store)
    elif backend == "http":
        client_conf = config.job_client
        return HttpJobClient(
            base_url=client_conf.base_url,
            endpoints=client_conf.endpoints,
            service_token=client_conf.service_token,
            timeout=client_conf.timeout,
            resource_field=client_conf.resource_field,
        )
    else:
        raise ValueError(f"Unsupported job client backend: {backend}")


__all__ = ["BaseJobClient", "HttpJobClient", "InMemoryJobClient", "get_job_client"]
