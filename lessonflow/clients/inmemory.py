"""In-memory job client for testing and local runs."""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from ..contracts import Job, JobAcknowledgement, JobStatus
from ..errors import UnknownStepName
from .base import BaseJobClient

if TYPE_CHECKING:
    from ..status import BaseJobStatusStore


class InMemoryJobClient(BaseJobClient):
    """Acknowledges every start with a sequential job id.

    When a status store is given, a ``pending`` job record is published for
    each accepted start so that watchers see the job appear.
    """

    def __init__(
        self,
        store: Optional["BaseJobStatusStore"] = None,
        step_names: Optional[Set[str]] = None,
    ) -> None:
        self._store = store
        self._step_names = step_names
        self._counter = itertools.count(1)
        self._failures: Dict[str, List[Exception]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def fail_next(self, step_name: str, error: Exception) -> None:
        """Make the next start of ``step_name`` raise ``error``."""
        self._failures.setdefault(step_name, []).append(error)

    def calls_for(self, step_name: str) -> List[Dict[str, Any]]:
        return [data for name, _, data in self.calls if name == step_name]

    async def start_step(
        self, step_name: str, resource_id: str, input_data: Dict[str, Any]
    ) -> JobAcknowledgement:
        if self._step_names is not None and step_name not in self._step_names:
            raise UnknownStepName(step_name)

        self.calls.append((step_name, resource_id, dict(input_data)))
        pending = self._failures.get(step_name)
        if pending:
            raise pending.pop(0)

        job_id = f"{step_name}-{next(self._counter)}"
        if self._store is not None:
            await self._store.publish(
                Job(
                    id=job_id,
                    resource_id=resource_id,
                    step_name=step_name,
                    status=JobStatus.PENDING,
                )
            )
        return JobAcknowledgement(
            job_id=job_id, step_name=step_name, resource_id=resource_id
        )
