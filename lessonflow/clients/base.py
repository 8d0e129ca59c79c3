"""Base job client interface for starting step processors."""

from __future__ import annotations

import abc
from typing import Any, Dict

from ..contracts import JobAcknowledgement


class BaseJobClient(metaclass=abc.ABCMeta):
    """Issues one unit of work to an external processor.

    Implementations perform exactly one outbound call per
    :meth:`start_step` and never retry on their own; retrying a costly
    processor call is always an explicit caller decision.
    """

    async def connect(self) -> None:
        """Open underlying connections (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Release underlying connections (no-op by default)."""
        pass

    @abc.abstractmethod
    async def start_step(
        self, step_name: str, resource_id: str, input_data: Dict[str, Any]
    ) -> JobAcknowledgement:
        """Ask the processor for ``step_name`` to start working on ``resource_id``.

        Returns as soon as the processor acknowledged the job.

        Raises:
            UnknownStepName: No processor is routed for ``step_name``.
            TransportFailure: The processor could not be reached.
            RejectedByProcessor: The processor refused the request.
        """
        raise NotImplementedError
