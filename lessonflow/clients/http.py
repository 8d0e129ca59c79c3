"""HTTP job client calling the lesson processing functions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from ..constants import DEFAULT_RESOURCE_FIELD, DEFAULT_STEP_ENDPOINTS
from ..contracts import JobAcknowledgement
from ..errors import RejectedByProcessor, TransportFailure, UnknownStepName
from .base import BaseJobClient

logger = logging.getLogger(__name__)


class HttpJobClient(BaseJobClient):
    """POSTs step requests to processor endpoints and returns their job id."""

    def __init__(
        self,
        base_url: str,
        endpoints: Optional[Mapping[str, str]] = None,
        service_token: Optional[str] = None,
        timeout: float = 30.0,
        resource_field: str = DEFAULT_RESOURCE_FIELD,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.endpoints = dict(endpoints if endpoints is not None else DEFAULT_STEP_ENDPOINTS)
        self.service_token = service_token
        self.timeout = timeout
        self.resource_field = resource_field
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.service_token:
                headers["Authorization"] = f"Bearer {self.service_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def start_step(
        self, step_name: str, resource_id: str, input_data: Dict[str, Any]
    ) -> JobAcknowledgement:
        endpoint = self.endpoints.get(step_name)
        if not endpoint:
            raise UnknownStepName(step_name)
        if self._client is None:
            await self.connect()

        body = {**input_data, self.resource_field: resource_id}
        try:
            response = await self._client.post(endpoint, json=body)
        except httpx.HTTPError as exc:
            logger.error(f"Failed to reach processor for {step_name}: {exc}")
            raise TransportFailure(
                step_name, f"Failed to reach processor for {step_name}: {exc}"
            ) from exc

        data = _json_or_empty(response)
        if response.is_error:
            detail = data.get("details") or data.get("error") or response.reason_phrase
            logger.warning(
                f"Processor rejected {step_name} for resource={resource_id}: "
                f"{response.status_code} {detail}"
            )
            raise RejectedByProcessor(
                step_name,
                f"Processor rejected {step_name}: {detail}",
                status_code=response.status_code,
            )

        job_id = data.get("job_id") or data.get("id")
        if not job_id:
            raise RejectedByProcessor(
                step_name,
                f"Processor response for {step_name} did not include a job id",
                status_code=response.status_code,
            )

        logger.info(f"Started {step_name} for resource={resource_id} as job {job_id}")
        return JobAcknowledgement(
            job_id=str(job_id), step_name=step_name, resource_id=resource_id
        )


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
