import pytest
from conftest import job_for

from lessonflow.cli_utils.render import format_cost, render_instance
from lessonflow.contracts import JobStatus


def test_format_cost():
    assert format_cost(0) == "$0.000"
    assert format_cost(12) == "$0.120"
    assert format_cost(1234) == "$12.340"


@pytest.mark.asyncio
async def test_render_instance_lists_every_step(engine):
    instance = await engine.create_instance("lesson-1", "full_processing")
    instance = await engine.start(instance.id)
    instance = await engine.on_job_status_changed(
        instance.id,
        job_for(instance, "transcription", JobStatus.COMPLETED, cost_cents=25),
    )
    instance = await engine.on_job_status_changed(
        instance.id,
        job_for(instance, "summarization", JobStatus.PROCESSING, progress_percentage=40),
    )
    instance = await engine.on_job_status_changed(
        instance.id,
        job_for(instance, "content_analysis", JobStatus.FAILED, error_message="quota exceeded"),
    )

    lines = render_instance(instance).splitlines()

    assert lines[0] == (
        f"Workflow {instance.id} [full_processing] resource=lesson-1: processing"
    )
    assert "[x] Audio Transcription (transcription): completed" in lines[1]
    assert "[~] Content Summarization (summarization): processing 40% <- transcription" in lines[2]
    assert "[!] Content Analysis (content_analysis): failed" in lines[3]
    assert "error: quota exceeded" in lines[4]
    assert "flashcard_generation): pending <- transcription, content_analysis" in lines[5]
    assert lines[-1] == "1 completed, 1 processing, 1 failed, cost $0.250"
