"""HTTP job client tests against a mocked processor."""

import json

import httpx
import pytest

from lessonflow.clients import HttpJobClient, InMemoryJobClient, get_job_client
from lessonflow.config import LessonflowConfig
from lessonflow.errors import RejectedByProcessor, TransportFailure, UnknownStepName


def _client(handler, **kwargs) -> HttpJobClient:
    return HttpJobClient(
        base_url="https://functions.example.com/api/",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_start_step_posts_resource_and_input():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"success": True, "job_id": "job-42"})

    client = _client(handler, service_token="service-secret")
    ack = await client.start_step(
        "flashcard_generation", "lesson-1", {"auto_approve_threshold": 0.8}
    )
    await client.disconnect()

    assert ack.job_id == "job-42"
    assert ack.step_name == "flashcard_generation"
    assert ack.resource_id == "lesson-1"

    (request,) = requests
    assert request.method == "POST"
    assert request.url == "https://functions.example.com/api/generate-flashcards"
    assert request.headers["Authorization"] == "Bearer service-secret"
    assert json.loads(request.content) == {
        "lesson_id": "lesson-1",
        "auto_approve_threshold": 0.8,
    }


@pytest.mark.asyncio
async def test_start_step_accepts_id_field():
    client = _client(lambda request: httpx.Response(202, json={"id": 7}))
    ack = await client.start_step("transcription", "lesson-1", {})
    assert ack.job_id == "7"


@pytest.mark.asyncio
async def test_processor_error_is_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404, json={"error": "Lesson not found", "details": "no lesson lesson-1"}
        )

    with pytest.raises(RejectedByProcessor) as exc_info:
        await _client(handler).start_step("transcription", "lesson-1", {})
    assert exc_info.value.status_code == 404
    assert "no lesson lesson-1" in exc_info.value.message
    assert exc_info.value.step_name == "transcription"


@pytest.mark.asyncio
async def test_missing_job_id_is_rejection():
    client = _client(lambda request: httpx.Response(200, json={"success": True}))
    with pytest.raises(RejectedByProcessor):
        await client.start_step("transcription", "lesson-1", {})


@pytest.mark.asyncio
async def test_unreachable_processor_is_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportFailure) as exc_info:
        await _client(handler).start_step("summarization", "lesson-1", {})
    assert "connection refused" in exc_info.value.message


@pytest.mark.asyncio
async def test_unknown_step_makes_no_call():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"job_id": "x"})

    with pytest.raises(UnknownStepName):
        await _client(handler).start_step("translation", "lesson-1", {})
    assert calls == []


def test_get_job_client_uses_config(monkeypatch):
    config = LessonflowConfig.model_validate(
        {
            "job_client": {
                "base_url": "https://edge.example.com",
                "endpoints": {"transcription": "/transcribe"},
                "resource_field": "lesson_id",
            }
        }
    )
    client = get_job_client(config=config)
    assert isinstance(client, HttpJobClient)
    assert client.base_url == "https://edge.example.com"
    assert client.endpoints == {"transcription": "/transcribe"}

    monkeypatch.setenv("LESSONFLOW_JOB_CLIENT", "inmemory")
    assert isinstance(get_job_client(config=config), InMemoryJobClient)
