"""Example running a full lesson workflow in memory with a simulated processor."""

import asyncio
import logging

from lessonflow import JobStatus, WorkflowEngine
from lessonflow.cli_utils.render import render_instance
from lessonflow.clients import InMemoryJobClient
from lessonflow.status import InMemoryJobStatusStore


async def simulate_processor(store: InMemoryJobStatusStore, resource_id: str) -> None:
    """Complete every pending job of ``resource_id`` until nothing is left."""
    while True:
        pending = [
            job
            for job in await store.list_jobs(resource_id)
            if job.status == JobStatus.PENDING
        ]
        if not pending:
            return
        for job in pending:
            await store.update_job(job.id, status=JobStatus.PROCESSING, progress_percentage=50)
            await store.update_job(
                job.id,
                status=JobStatus.COMPLETED,
                progress_percentage=100,
                cost_cents=3,
                output_data={"step": job.step_name},
            )
        await store.join()


async def main():
    logging.basicConfig(level=logging.INFO)
    store = InMemoryJobStatusStore()
    engine = WorkflowEngine(InMemoryJobClient(store=store), status_store=store)

    instance = await engine.create_instance(
        "lesson-42", "full_processing", parameters={"audio_url": "s3://lessons/42.mp3"}
    )
    await engine.watch(instance.id)
    await engine.start(instance.id)
    await store.join()

    await simulate_processor(store, instance.resource_id)

    print(render_instance(await engine.get_instance(instance.id)))
    await engine.close()


if __name__ == "__main__":
    asyncio.run(main())
