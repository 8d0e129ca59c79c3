"""Workflow engine: dependency-gated step orchestration for lesson processing."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from .clients import BaseJobClient, get_job_client
from .config import LessonflowConfig, load_config
from .contracts import (
    Job,
    JobStatus,
    StepStatus,
    TERMINAL_STEP_STATUSES,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from .definitions import WorkflowRegistry, topological_order
from .errors import (
    AlreadyStarted,
    JobNotFound,
    StartError,
    StepNotFound,
    StepNotRetryable,
    StepNotSkippable,
    WorkflowCancelled,
    WorkflowNotFound,
)
from .persistence import (
    InMemoryWorkflowRepository,
    WorkflowRepository,
    get_repository,
)
from .status import BaseJobStatusStore, Subscription, get_status_store

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Drives workflow instances from creation to completion.

    Every mutating operation loads the persisted snapshot of the instance,
    applies its change under a per-instance lock and saves the result, so
    the engine holds no state that cannot be rebuilt after a restart apart
    from its status store subscriptions.
    """

    def __init__(
        self,
        job_client: BaseJobClient,
        status_store: BaseJobStatusStore | None = None,
        repository: WorkflowRepository | None = None,
        registry: WorkflowRegistry | None = None,
        step_inputs: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.job_client = job_client
        self.status_store = status_store
        self.repository = repository or InMemoryWorkflowRepository()
        self.registry = registry or WorkflowRegistry.with_builtins()
        self.step_inputs = step_inputs or {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._subscriptions: Dict[str, Subscription] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    async def connect(self) -> None:
        if self.status_store is not None:
            await self.status_store.connect()
        await self.job_client.connect()

    async def close(self) -> None:
        """Drop every subscription and release client connections."""
        for instance_id in list(self._subscriptions):
            await self.unwatch(instance_id)
        self._locks.clear()
        await self.job_client.disconnect()
        if self.status_store is not None:
            await self.status_store.disconnect()

    # ------------------------------------------------------------------
    # Queries
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_workflow(instance_id)
        if instance is None:
            raise WorkflowNotFound(instance_id)
        return instance

    async def list_instances(
        self, resource_id: str | None = None
    ) -> List[WorkflowInstance]:
        return await self.repository.list_workflows(resource_id)

    # ------------------------------------------------------------------
    # Operations
    async def create_instance(
        self,
        resource_id: str,
        workflow_type: str,
        parameters: Optional[Dict[str, Any]] = None,
        owner_id: str | None = None,
    ) -> WorkflowInstance:
        """Instantiate ``workflow_type`` for ``resource_id`` with every step pending."""
        templates = self.registry.steps_for(workflow_type)
        topological_order(templates, workflow_type)

        instance = WorkflowInstance(
            resource_id=resource_id,
            workflow_type=workflow_type,
            owner_id=owner_id,
            parameters=dict(parameters or {}),
            steps=[WorkflowStep.from_template(t) for t in templates],
        )
        await self.repository.create_workflow(instance)
        logger.info(
            f"Created workflow {instance.id} ({workflow_type}) for resource {resource_id}"
        )
        return instance

    async def start(self, instance_id: str) -> WorkflowInstance:
        """Start every step whose dependencies are already satisfied."""
        async with self._locks[instance_id]:
            instance = await self.get_instance(instance_id)
            self._ensure_not_cancelled(instance)
            if instance.status != WorkflowStatus.PENDING or instance.is_started:
                raise AlreadyStarted(instance_id)

            instance.started_at = utcnow()
            logger.info(f"Starting workflow {instance_id}")
            await self._cascade(instance)
            self._recompute_status(instance)
            await self.repository.save_workflow(instance)
            return instance

    async def retry(self, instance_id: str, step_id: str) -> WorkflowInstance:
        """Start a fresh job for a failed step."""
        async with self._locks[instance_id]:
            instance = await self.get_instance(instance_id)
            self._ensure_not_cancelled(instance)
            step = self._require_step(instance, step_id)
            if step.status != StepStatus.FAILED or not step.can_retry:
                raise StepNotRetryable(step_id, step.status.value)

            logger.info(f"Retrying step {step_id} of workflow {instance_id}")
            await self._start_step(instance, step)
            self._recompute_status(instance)
            await self.repository.save_workflow(instance)
            return instance

    async def skip(self, instance_id: str, step_id: str) -> WorkflowInstance:
        """Mark a pending optional step as skipped and unblock its dependents."""
        async with self._locks[instance_id]:
            instance = await self.get_instance(instance_id)
            self._ensure_not_cancelled(instance)
            step = self._require_step(instance, step_id)
            if step.status != StepStatus.PENDING or not step.can_skip:
                raise StepNotSkippable(step_id, step.status.value)

            step.status = StepStatus.SKIPPED
            step.progress_percentage = 100
            step.completed_at = utcnow()
            logger.info(f"Skipped step {step_id} of workflow {instance_id}")

            if instance.is_started:
                await self._cascade(instance)
            self._recompute_status(instance)
            await self.repository.save_workflow(instance)
            return instance

    async def cancel(self, instance_id: str) -> WorkflowInstance:
        async with self._locks[instance_id]:
            instance = await self.get_instance(instance_id)
            if instance.status == WorkflowStatus.COMPLETED:
                logger.info(f"Workflow {instance_id} already completed, not cancelling")
            elif instance.status != WorkflowStatus.CANCELLED:
                instance.status = WorkflowStatus.CANCELLED
                await self.repository.save_workflow(instance)
                logger.info(f"Cancelled workflow {instance_id}")
        await self.unwatch(instance_id)
        self._release_lock(instance_id)
        return instance

    async def on_job_status_changed(
        self, instance_id: str, job: Job
    ) -> WorkflowInstance:
        """Apply a job status notification to the instance.

        Safe to call any number of times with the same job record: a step
        that already reached a terminal state for the job is left alone and
        the job's cost is only ever added once.
        """
        async with self._locks[instance_id]:
            instance = await self.get_instance(instance_id)
            if instance.status == WorkflowStatus.CANCELLED:
                logger.debug(
                    f"Ignoring job {job.id} for cancelled workflow {instance_id}"
                )
                return instance

            changed = self._count_cost(instance, job)

            step = instance.step_for_job(job.id)
            if step is None:
                logger.debug(
                    f"Job {job.id} is not the current job of any step in {instance_id}"
                )
            elif step.status not in TERMINAL_STEP_STATUSES:
                self._apply_job(step, job)
                changed = True
                if instance.is_started:
                    await self._cascade(instance)

            if changed:
                self._recompute_status(instance)
                await self.repository.save_workflow(instance)
            return instance

    # ------------------------------------------------------------------
    # Status store integration
    async def watch(self, instance_id: str) -> None:
        """Route status store notifications for the instance's resource."""
        if self.status_store is None or instance_id in self._subscriptions:
            return
        instance = await self.get_instance(instance_id)

        async def _on_change(job: Job) -> None:
            await self.on_job_status_changed(instance_id, job)

        self._subscriptions[instance_id] = await self.status_store.subscribe(
            instance.resource_id, _on_change
        )
        logger.debug(f"Watching resource {instance.resource_id} for {instance_id}")

    async def unwatch(self, instance_id: str) -> None:
        subscription = self._subscriptions.pop(instance_id, None)
        if subscription is not None:
            await subscription.unsubscribe()

    async def resync(self, instance_id: str) -> WorkflowInstance:
        """Replay the current record of every job the instance references."""
        instance = await self.get_instance(instance_id)
        if self.status_store is None:
            return instance
        for job_id in instance.job_ids():
            try:
                job = await self.status_store.get(job_id)
            except JobNotFound:
                logger.warning(f"Job {job_id} of workflow {instance_id} not found")
                continue
            instance = await self.on_job_status_changed(instance_id, job)
        return instance

    async def recover(self) -> List[WorkflowInstance]:
        """Resume watching every instance that can still make progress."""
        recovered = []
        for instance in await self.list_instances():
            if instance.status in (WorkflowStatus.COMPLETED, WorkflowStatus.CANCELLED):
                continue
            await self.watch(instance.id)
            recovered.append(await self.resync(instance.id))
        if recovered:
            logger.info(f"Recovered {len(recovered)} workflow(s)")
        return recovered

    # ------------------------------------------------------------------
    # Internals
    def _ensure_not_cancelled(self, instance: WorkflowInstance) -> None:
        if instance.status == WorkflowStatus.CANCELLED:
            raise WorkflowCancelled(instance.id)

    def _release_lock(self, instance_id: str) -> None:
        lock = self._locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._locks[instance_id]

    def _require_step(self, instance: WorkflowInstance, step_id: str) -> WorkflowStep:
        step = instance.get_step(step_id)
        if step is None:
            raise StepNotFound(instance.id, step_id)
        return step

    def _ready_steps(self, instance: WorkflowInstance) -> List[WorkflowStep]:
        ready = []
        for step in instance.steps:
            if step.status != StepStatus.PENDING:
                continue
            deps = [instance.get_step(dep) for dep in step.dependencies]
            if all(dep is not None and dep.is_satisfied() for dep in deps):
                ready.append(step)
        return ready

    async def _cascade(self, instance: WorkflowInstance) -> None:
        # Starting a step never satisfies another one, so one pass is enough.
        for step in self._ready_steps(instance):
            await self._start_step(instance, step)

    def _build_input(
        self, instance: WorkflowInstance, step: WorkflowStep
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.step_inputs.get(step.id, {}))
        data.update(instance.parameters)
        upstream = {}
        for dep_id in step.dependencies:
            dep = instance.get_step(dep_id)
            if dep is not None and dep.output_data is not None:
                upstream[dep_id] = dep.output_data
        data["upstream"] = upstream
        return data

    async def _start_step(self, instance: WorkflowInstance, step: WorkflowStep) -> None:
        step.progress_percentage = 0
        step.completed_at = None
        try:
            ack = await self.job_client.start_step(
                step.id, instance.resource_id, self._build_input(instance, step)
            )
        except StartError as e:
            logger.warning(
                f"Could not start step {step.id} of workflow {instance.id}: {e.message}"
            )
            step.status = StepStatus.FAILED
            step.error_message = e.message
            return
        except Exception as e:
            logger.exception(
                f"Unexpected error starting step {step.id} of workflow {instance.id}"
            )
            step.status = StepStatus.FAILED
            step.error_message = str(e) or type(e).__name__
            return

        step.status = StepStatus.PROCESSING
        step.job_id = ack.job_id
        step.job_history.append(ack.job_id)
        step.error_message = None
        step.output_data = None
        step.started_at = utcnow()
        logger.info(
            f"Started step {step.id} of workflow {instance.id} as job {ack.job_id}"
        )

    def _apply_job(self, step: WorkflowStep, job: Job) -> None:
        if job.status == JobStatus.COMPLETED:
            step.status = StepStatus.COMPLETED
            step.progress_percentage = 100
            step.output_data = job.output_data
            step.error_message = None
            step.completed_at = utcnow()
        elif job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
            step.status = StepStatus.FAILED
            step.error_message = job.error_message or "Job failed"
            step.completed_at = utcnow()
        else:
            step.status = StepStatus.PROCESSING
            step.progress_percentage = job.progress_percentage

    def _count_cost(self, instance: WorkflowInstance, job: Job) -> bool:
        if job.status != JobStatus.COMPLETED or job.id in instance.counted_job_ids:
            return False
        if job.id not in instance.job_ids():
            return False
        instance.counted_job_ids.append(job.id)
        instance.total_cost_cents += job.cost_cents
        return True

    def _blocking_failures(self, instance: WorkflowInstance) -> List[WorkflowStep]:
        """Failed steps that cannot be retried and leave no path to completion.

        Such a step blocks when a non-skippable step depends on it, or when
        nothing depends on it and it is not skippable itself.
        """
        blocking = []
        for step in instance.steps:
            if step.status != StepStatus.FAILED or step.can_retry:
                continue
            dependents = [s for s in instance.steps if step.id in s.dependencies]
            if dependents:
                if any(not dependent.can_skip for dependent in dependents):
                    blocking.append(step)
            elif not step.can_skip:
                blocking.append(step)
        return blocking

    def _recompute_status(self, instance: WorkflowInstance) -> None:
        if instance.status == WorkflowStatus.CANCELLED:
            return
        statuses = [step.status for step in instance.steps]
        if not instance.is_started:
            instance.status = WorkflowStatus.PENDING
            return
        if all(step.is_satisfied() for step in instance.steps):
            instance.status = WorkflowStatus.COMPLETED
            instance.completed_at = instance.completed_at or utcnow()
            return
        instance.completed_at = None
        if self._blocking_failures(instance):
            instance.status = WorkflowStatus.FAILED
        elif StepStatus.PROCESSING in statuses:
            instance.status = WorkflowStatus.PROCESSING
        elif StepStatus.FAILED in statuses:
            instance.status = WorkflowStatus.FAILED
        else:
            instance.status = WorkflowStatus.PROCESSING


def build_engine(config: Optional[LessonflowConfig] = None) -> WorkflowEngine:
    """Assemble an engine from configuration and the backend factories."""
    config = config or load_config()
    store = get_status_store(config=config)
    return WorkflowEngine(
        job_client=get_job_client(config=config, store=store),
        status_store=store,
        repository=get_repository(config=config),
        registry=WorkflowRegistry.with_builtins(config.workflows),
        step_inputs=config.step_inputs,
    )
