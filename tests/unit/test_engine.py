"""Workflow engine state machine tests."""

import pytest
from conftest import job_for

from lessonflow.clients import InMemoryJobClient
from lessonflow.contracts import (
    Job,
    JobStatus,
    StepStatus,
    StepTemplate,
    WorkflowInstance,
    WorkflowStatus,
)
from lessonflow.definitions import WorkflowDefinition, WorkflowRegistry
from lessonflow.engine import WorkflowEngine
from lessonflow.errors import (
    AlreadyStarted,
    RejectedByProcessor,
    StepNotFound,
    StepNotRetryable,
    StepNotSkippable,
    TransportFailure,
    WorkflowCancelled,
    WorkflowNotFound,
)


def _statuses(instance: WorkflowInstance) -> dict:
    return {step.id: step.status for step in instance.steps}


def _assert_nothing_stuck(instance: WorkflowInstance) -> None:
    for step in instance.steps:
        if step.status != StepStatus.PENDING:
            continue
        deps = [instance.get_step(d) for d in step.dependencies]
        assert not all(d.is_satisfied() for d in deps), f"{step.id} is stuck pending"


async def _complete(engine, instance, step_id, **fields) -> WorkflowInstance:
    return await engine.on_job_status_changed(
        instance.id, job_for(instance, step_id, JobStatus.COMPLETED, **fields)
    )


# ----------------------------------------------------------------------
# End-to-end scenarios


@pytest.mark.asyncio
async def test_single_step_workflow_completes_with_cost(engine):
    instance = await engine.create_instance("lesson-1", "cards_only")
    assert instance.status == WorkflowStatus.PENDING

    instance = await engine.start(instance.id)
    step = instance.get_step("flashcard_generation")
    assert step.status == StepStatus.PROCESSING
    assert instance.status == WorkflowStatus.PROCESSING

    instance = await _complete(engine, instance, "flashcard_generation", cost_cents=12)
    step = instance.get_step("flashcard_generation")
    assert step.status == StepStatus.COMPLETED
    assert step.progress_percentage == 100
    assert instance.status == WorkflowStatus.COMPLETED
    assert instance.completed_at is not None
    assert instance.total_cost_cents == 12


@pytest.mark.asyncio
async def test_cascade_waits_for_every_dependency(engine, job_client):
    instance = await engine.create_instance("lesson-2", "full_processing")
    instance = await engine.start(instance.id)

    assert _statuses(instance) == {
        "transcription": StepStatus.PROCESSING,
        "summarization": StepStatus.PENDING,
        "content_analysis": StepStatus.PENDING,
        "flashcard_generation": StepStatus.PENDING,
        "review": StepStatus.PENDING,
        "deployment": StepStatus.PENDING,
    }
    assert [name for name, _, _ in job_client.calls] == ["transcription"]

    instance = await _complete(engine, instance, "transcription")
    assert instance.get_step("content_analysis").status == StepStatus.PROCESSING
    assert instance.get_step("summarization").status == StepStatus.PROCESSING
    assert instance.get_step("flashcard_generation").status == StepStatus.PENDING

    instance = await _complete(engine, instance, "content_analysis")
    assert instance.get_step("flashcard_generation").status == StepStatus.PROCESSING
    assert job_client.calls_for("flashcard_generation")


@pytest.mark.asyncio
async def test_skip_of_ready_step_cascades(engine, repository):
    instance = await engine.create_instance("lesson-3", "full_processing")
    instance = await engine.start(instance.id)
    instance = await _complete(engine, instance, "transcription")
    instance = await _complete(engine, instance, "content_analysis")
    assert instance.get_step("flashcard_generation").status == StepStatus.PROCESSING

    # Snapshot persisted after flashcard generation finished but before
    # review was started, as left behind by a crash.
    snapshot = await repository.get_workflow(instance.id)
    cards = snapshot.get_step("flashcard_generation")
    cards.status = StepStatus.COMPLETED
    cards.progress_percentage = 100
    await repository.save_workflow(snapshot)

    instance = await engine.skip(instance.id, "review")
    review = instance.get_step("review")
    assert review.status == StepStatus.SKIPPED
    assert review.progress_percentage == 100
    assert instance.get_step("deployment").status == StepStatus.PROCESSING


@pytest.mark.asyncio
async def test_skip_unblocks_direct_dependents_only(engine, job_client):
    instance = await engine.create_instance("lesson-3", "full_processing")
    instance = await engine.start(instance.id)
    instance = await engine.skip(instance.id, "review")

    assert instance.get_step("review").status == StepStatus.SKIPPED
    assert instance.get_step("deployment").status == StepStatus.PROCESSING
    assert instance.get_step("flashcard_generation").status == StepStatus.PENDING
    assert job_client.calls_for("review") == []


@pytest.mark.asyncio
async def test_failed_start_fails_instance_until_retried(engine, job_client):
    job_client.fail_next(
        "transcription", TransportFailure("transcription", "connection refused")
    )
    instance = await engine.create_instance("lesson-4", "full_processing")
    instance = await engine.start(instance.id)

    step = instance.get_step("transcription")
    assert step.status == StepStatus.FAILED
    assert step.error_message == "connection refused"
    assert step.job_id is None
    assert instance.status == WorkflowStatus.FAILED

    instance = await engine.retry(instance.id, "transcription")
    step = instance.get_step("transcription")
    assert step.status == StepStatus.PROCESSING
    assert step.progress_percentage == 0
    assert step.error_message is None
    assert instance.status == WorkflowStatus.PROCESSING

    instance = await _complete(engine, instance, "transcription")
    assert instance.get_step("content_analysis").status == StepStatus.PROCESSING
    assert instance.get_step("flashcard_generation").status == StepStatus.PENDING


@pytest.mark.asyncio
async def test_duplicate_completion_counts_cost_once(engine):
    instance = await engine.create_instance("lesson-5", "transcription_only")
    instance = await engine.start(instance.id)

    progress = job_for(instance, "transcription", JobStatus.PROCESSING, progress_percentage=40)
    instance = await engine.on_job_status_changed(instance.id, progress)
    assert instance.get_step("transcription").progress_percentage == 40

    done = job_for(instance, "transcription", JobStatus.COMPLETED, cost_cents=5)
    await engine.on_job_status_changed(instance.id, done)
    instance = await engine.on_job_status_changed(instance.id, done)

    assert instance.get_step("transcription").status == StepStatus.COMPLETED
    assert instance.total_cost_cents == 5
    assert instance.counted_job_ids == [done.id]


# ----------------------------------------------------------------------
# Properties


@pytest.mark.asyncio
async def test_no_step_is_left_pending_with_satisfied_dependencies(engine):
    instance = await engine.create_instance("lesson-6", "full_processing")
    instance = await engine.start(instance.id)
    _assert_nothing_stuck(instance)

    for step_id in ("transcription", "summarization", "content_analysis"):
        instance = await _complete(engine, instance, step_id)
        _assert_nothing_stuck(instance)

    instance = await engine.on_job_status_changed(
        instance.id, job_for(instance, "flashcard_generation", JobStatus.COMPLETED)
    )
    _assert_nothing_stuck(instance)
    assert instance.get_step("review").status == StepStatus.PROCESSING

    instance = await _complete(engine, instance, "review")
    instance = await _complete(engine, instance, "deployment")
    _assert_nothing_stuck(instance)
    assert instance.status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_repeated_notification_leaves_state_unchanged(engine):
    instance = await engine.create_instance("lesson-7", "full_processing")
    instance = await engine.start(instance.id)
    done = job_for(instance, "transcription", JobStatus.COMPLETED, cost_cents=30)

    once = await engine.on_job_status_changed(instance.id, done)
    twice = await engine.on_job_status_changed(instance.id, done)

    assert twice.model_dump() == once.model_dump()
    assert twice.total_cost_cents == 30


@pytest.mark.asyncio
async def test_outcome_does_not_depend_on_notification_order():
    outcomes = []
    for reverse in (False, True):
        engine = WorkflowEngine(InMemoryJobClient())
        instance = await engine.create_instance("lesson-8", "full_processing")
        instance = await engine.start(instance.id)
        instance = await _complete(engine, instance, "transcription", cost_cents=10)

        notifications = [
            job_for(instance, "summarization", JobStatus.PROCESSING, progress_percentage=50),
            job_for(instance, "summarization", JobStatus.COMPLETED, cost_cents=3),
            job_for(instance, "content_analysis", JobStatus.FAILED, error_message="quota"),
            job_for(instance, "content_analysis", JobStatus.PROCESSING, progress_percentage=20),
        ]
        if reverse:
            notifications.reverse()
        for job in notifications:
            instance = await engine.on_job_status_changed(instance.id, job)
        outcomes.append(instance)

    first, second = outcomes
    assert _statuses(first) == _statuses(second)
    assert first.status == second.status == WorkflowStatus.FAILED
    assert first.total_cost_cents == second.total_cost_cents == 13
    assert first.get_step("content_analysis").error_message == "quota"


@pytest.mark.asyncio
async def test_retry_resets_progress_and_leaves_siblings_alone(engine):
    instance = await engine.create_instance("lesson-9", "full_processing")
    instance = await engine.start(instance.id)
    instance = await _complete(engine, instance, "transcription")

    for job in (
        job_for(instance, "summarization", JobStatus.PROCESSING, progress_percentage=60),
        job_for(instance, "content_analysis", JobStatus.PROCESSING, progress_percentage=30),
        job_for(instance, "summarization", JobStatus.FAILED, error_message="timeout"),
    ):
        instance = await engine.on_job_status_changed(instance.id, job)
    before = {s.id: s.model_dump() for s in instance.steps if s.id != "summarization"}
    failed_job_id = instance.get_step("summarization").job_id

    instance = await engine.retry(instance.id, "summarization")

    step = instance.get_step("summarization")
    assert step.status == StepStatus.PROCESSING
    assert step.progress_percentage == 0
    assert step.job_id != failed_job_id
    assert step.job_history == [failed_job_id, step.job_id]
    assert {s.id: s.model_dump() for s in instance.steps if s.id != "summarization"} == before


@pytest.mark.asyncio
async def test_skip_of_leaf_step_changes_nothing_else(job_client, repository):
    registry = WorkflowRegistry(
        [
            WorkflowDefinition(
                workflow_type="optional_tail",
                steps=[
                    StepTemplate(name="transcription"),
                    StepTemplate(
                        name="summarization",
                        dependencies=["transcription"],
                        can_skip=True,
                    ),
                ],
            )
        ]
    )
    engine = WorkflowEngine(job_client, repository=repository, registry=registry)
    instance = await engine.create_instance("lesson-10", "optional_tail")
    before = await engine.start(instance.id)

    after = await engine.skip(instance.id, "summarization")

    skipped = after.get_step("summarization")
    assert skipped.status == StepStatus.SKIPPED
    assert skipped.progress_percentage == 100
    assert (
        after.get_step("transcription").model_dump()
        == before.get_step("transcription").model_dump()
    )
    assert after.status == before.status == WorkflowStatus.PROCESSING
    assert after.total_cost_cents == before.total_cost_cents


# ----------------------------------------------------------------------
# State errors and edge cases


@pytest.mark.asyncio
async def test_start_twice_is_rejected(engine, job_client):
    instance = await engine.create_instance("lesson-11", "cards_only")
    await engine.start(instance.id)
    with pytest.raises(AlreadyStarted):
        await engine.start(instance.id)
    assert len(job_client.calls) == 1


@pytest.mark.asyncio
async def test_state_errors_have_no_side_effects(engine, repository):
    instance = await engine.create_instance("lesson-12", "full_processing")
    instance = await engine.start(instance.id)
    before = (await repository.get_workflow(instance.id)).model_dump()

    with pytest.raises(StepNotRetryable):
        await engine.retry(instance.id, "transcription")
    with pytest.raises(StepNotRetryable):
        await engine.retry(instance.id, "summarization")
    with pytest.raises(StepNotSkippable):
        await engine.skip(instance.id, "transcription")
    with pytest.raises(StepNotSkippable):
        await engine.skip(instance.id, "deployment")
    with pytest.raises(StepNotFound):
        await engine.skip(instance.id, "ghost")

    assert (await repository.get_workflow(instance.id)).model_dump() == before


@pytest.mark.asyncio
async def test_step_without_retry_cannot_be_retried(job_client, repository):
    registry = WorkflowRegistry(
        [
            WorkflowDefinition(
                workflow_type="one_shot",
                steps=[StepTemplate(name="deployment", can_retry=False)],
            )
        ]
    )
    engine = WorkflowEngine(job_client, repository=repository, registry=registry)
    instance = await engine.create_instance("lesson-13", "one_shot")
    instance = await engine.start(instance.id)
    instance = await engine.on_job_status_changed(
        instance.id, job_for(instance, "deployment", JobStatus.FAILED)
    )
    assert instance.get_step("deployment").error_message == "Job failed"

    with pytest.raises(StepNotRetryable):
        await engine.retry(instance.id, "deployment")


@pytest.mark.asyncio
async def test_non_retryable_failure_fails_instance_while_siblings_run(
    job_client, repository
):
    registry = WorkflowRegistry(
        [
            WorkflowDefinition(
                workflow_type="fragile",
                steps=[
                    StepTemplate(name="a", can_retry=False),
                    StepTemplate(name="b"),
                    StepTemplate(name="c", dependencies=["a"]),
                ],
            )
        ]
    )
    engine = WorkflowEngine(job_client, repository=repository, registry=registry)
    instance = await engine.create_instance("lesson-13b", "fragile")
    instance = await engine.start(instance.id)

    instance = await engine.on_job_status_changed(
        instance.id, job_for(instance, "a", JobStatus.FAILED, error_message="corrupt audio")
    )
    assert _statuses(instance) == {
        "a": StepStatus.FAILED,
        "b": StepStatus.PROCESSING,
        "c": StepStatus.PENDING,
    }
    assert instance.status == WorkflowStatus.FAILED

    instance = await _complete(engine, instance, "b")
    assert instance.get_step("b").status == StepStatus.COMPLETED
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_non_retryable_failure_before_skippable_step_keeps_processing(
    job_client, repository
):
    registry = WorkflowRegistry(
        [
            WorkflowDefinition(
                workflow_type="optional_review",
                steps=[
                    StepTemplate(name="a", can_retry=False),
                    StepTemplate(name="b"),
                    StepTemplate(name="c", dependencies=["a"], can_skip=True),
                ],
            )
        ]
    )
    engine = WorkflowEngine(job_client, repository=repository, registry=registry)
    instance = await engine.create_instance("lesson-13c", "optional_review")
    instance = await engine.start(instance.id)

    instance = await engine.on_job_status_changed(
        instance.id, job_for(instance, "a", JobStatus.FAILED)
    )
    assert instance.status == WorkflowStatus.PROCESSING

    instance = await _complete(engine, instance, "b")
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_unexpected_client_error_fails_only_that_step(engine, job_client):
    job_client.fail_next("content_analysis", RuntimeError("malformed request"))
    instance = await engine.create_instance("lesson-13d", "full_processing")
    instance = await engine.start(instance.id)
    completion = job_for(instance, "transcription", JobStatus.COMPLETED)

    instance = await engine.on_job_status_changed(instance.id, completion)
    assert instance.get_step("summarization").status == StepStatus.PROCESSING
    analysis = instance.get_step("content_analysis")
    assert analysis.status == StepStatus.FAILED
    assert analysis.error_message == "malformed request"

    await engine.on_job_status_changed(instance.id, completion)
    assert len(job_client.calls_for("summarization")) == 1
    assert len(job_client.calls_for("content_analysis")) == 1

    instance = await engine.retry(instance.id, "content_analysis")
    assert instance.get_step("content_analysis").status == StepStatus.PROCESSING

@pytest.mark.asyncio
async def test_sibling_start_failure_does_not_block_other_starts(engine, job_client):
    job_client.fail_next(
        "content_analysis",
        RejectedByProcessor("content_analysis", "Lesson not found", status_code=404),
    )
    instance = await engine.create_instance("lesson-14", "full_processing")
    instance = await engine.start(instance.id)
    instance = await _complete(engine, instance, "transcription")

    assert instance.get_step("content_analysis").status == StepStatus.FAILED
    assert instance.get_step("content_analysis").error_message == "Lesson not found"
    assert instance.get_step("summarization").status == StepStatus.PROCESSING
    assert instance.status == WorkflowStatus.PROCESSING

    instance = await _complete(engine, instance, "summarization")
    assert instance.status == WorkflowStatus.FAILED

    instance = await engine.retry(instance.id, "content_analysis")
    assert instance.status == WorkflowStatus.PROCESSING


@pytest.mark.asyncio
async def test_cancelled_job_fails_its_step(engine):
    instance = await engine.create_instance("lesson-15", "analysis_only")
    instance = await engine.start(instance.id)
    instance = await engine.on_job_status_changed(
        instance.id, job_for(instance, "content_analysis", JobStatus.CANCELLED)
    )
    assert instance.get_step("content_analysis").status == StepStatus.FAILED
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_stale_and_unknown_jobs_are_ignored(engine):
    instance = await engine.create_instance("lesson-16", "transcription_only")
    instance = await engine.start(instance.id)
    first = job_for(instance, "transcription", JobStatus.FAILED, error_message="bad audio")
    instance = await engine.on_job_status_changed(instance.id, first)
    instance = await engine.retry(instance.id, "transcription")

    stale = first.model_copy(update={"status": JobStatus.PROCESSING, "progress_percentage": 90})
    unknown = Job(
        id="someone-else",
        resource_id="lesson-16",
        step_name="transcription",
        status=JobStatus.COMPLETED,
        cost_cents=99,
    )
    before = instance.model_dump()
    await engine.on_job_status_changed(instance.id, stale)
    instance = await engine.on_job_status_changed(instance.id, unknown)

    assert instance.model_dump() == before
    assert instance.get_step("transcription").progress_percentage == 0


@pytest.mark.asyncio
async def test_completed_output_flows_into_dependent_input(job_client, repository):
    engine = WorkflowEngine(
        job_client,
        repository=repository,
        step_inputs={"flashcard_generation": {"auto_approve_threshold": 0.8}},
    )
    instance = await engine.create_instance(
        "lesson-17", "full_processing", parameters={"audio_url": "s3://lesson.mp3"}
    )
    instance = await engine.start(instance.id)
    assert job_client.calls_for("transcription") == [
        {"audio_url": "s3://lesson.mp3", "upstream": {}}
    ]

    instance = await _complete(
        engine, instance, "transcription", output_data={"transcript": "hello"}
    )
    assert instance.get_step("transcription").output_data == {"transcript": "hello"}
    instance = await _complete(engine, instance, "content_analysis", output_data={"topics": 3})

    assert job_client.calls_for("flashcard_generation") == [
        {
            "auto_approve_threshold": 0.8,
            "audio_url": "s3://lesson.mp3",
            "upstream": {
                "transcription": {"transcript": "hello"},
                "content_analysis": {"topics": 3},
            },
        }
    ]


@pytest.mark.asyncio
async def test_skip_before_start_does_not_start_anything(engine, job_client):
    instance = await engine.create_instance("lesson-18", "full_processing")
    instance = await engine.skip(instance.id, "review")
    assert instance.status == WorkflowStatus.PENDING
    assert job_client.calls == []

    instance = await engine.start(instance.id)
    assert [name for name, _, _ in job_client.calls] == ["transcription", "deployment"]


@pytest.mark.asyncio
async def test_cancel_freezes_instance(engine):
    instance = await engine.create_instance("lesson-19", "full_processing")
    instance = await engine.start(instance.id)
    cancelled = await engine.cancel(instance.id)
    assert cancelled.status == WorkflowStatus.CANCELLED
    assert instance.id not in engine._locks

    after = await engine.on_job_status_changed(
        instance.id, job_for(instance, "transcription", JobStatus.COMPLETED, cost_cents=7)
    )
    assert after.model_dump() == cancelled.model_dump()

    with pytest.raises(WorkflowCancelled):
        await engine.start(instance.id)
    with pytest.raises(WorkflowCancelled):
        await engine.retry(instance.id, "transcription")
    with pytest.raises(WorkflowCancelled):
        await engine.skip(instance.id, "review")


@pytest.mark.asyncio
async def test_cancel_keeps_completed_result(engine):
    instance = await engine.create_instance("lesson-19b", "cards_only")
    instance = await engine.start(instance.id)
    instance = await _complete(engine, instance, "flashcard_generation", cost_cents=5)
    assert instance.status == WorkflowStatus.COMPLETED

    cancelled = await engine.cancel(instance.id)
    assert cancelled.status == WorkflowStatus.COMPLETED
    stored = await engine.get_instance(instance.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.total_cost_cents == 5
    assert instance.id not in engine._locks

@pytest.mark.asyncio
async def test_counted_jobs_survive_engine_restart(job_client, repository):
    engine = WorkflowEngine(job_client, repository=repository)
    instance = await engine.create_instance("lesson-20", "cards_only")
    instance = await engine.start(instance.id)
    done = job_for(instance, "flashcard_generation", JobStatus.COMPLETED, cost_cents=12)
    await engine.on_job_status_changed(instance.id, done)

    restarted = WorkflowEngine(job_client, repository=repository)
    instance = await restarted.on_job_status_changed(instance.id, done)
    assert instance.total_cost_cents == 12


@pytest.mark.asyncio
async def test_unknown_instance(engine):
    with pytest.raises(WorkflowNotFound):
        await engine.start("missing")
    with pytest.raises(WorkflowNotFound):
        await engine.get_instance("missing")
