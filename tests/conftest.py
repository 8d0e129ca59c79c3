import pytest

import lessonflow.persistence as persistence
from lessonflow.clients import InMemoryJobClient
from lessonflow.contracts import Job, JobStatus, WorkflowInstance
from lessonflow.engine import WorkflowEngine
from lessonflow.persistence import InMemoryWorkflowRepository
from lessonflow.status import InMemoryJobStatusStore


def job_for(instance: WorkflowInstance, step_id: str, status: JobStatus, **fields) -> Job:
    """Build a status notification for the current job of ``step_id``."""
    step = instance.get_step(step_id)
    assert step is not None and step.job_id, f"step {step_id} has no job"
    return Job(
        id=step.job_id,
        resource_id=instance.resource_id,
        step_name=step_id,
        status=status,
        **fields,
    )


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for name in (
        "LESSONFLOW_CONFIG",
        "LESSONFLOW_DATABASE_URL",
        "DATABASE_URL",
        "LESSONFLOW_STATUS_STORE",
        "LESSONFLOW_JOB_CLIENT",
        "LESSONFLOW_JWT_SECRET",
        "LESSONFLOW_SERVICE_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None


@pytest.fixture
def job_client() -> InMemoryJobClient:
    return InMemoryJobClient()


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(job_client, repository) -> WorkflowEngine:
    return WorkflowEngine(job_client, repository=repository)


@pytest.fixture
def status_store() -> InMemoryJobStatusStore:
    return InMemoryJobStatusStore()
