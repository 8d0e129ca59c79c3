"""lessonflow: dependency-gated processing workflows for lesson content."""

from .clients import get_job_client
from .contracts import Job, JobStatus, StepStatus, WorkflowInstance, WorkflowStatus
from .definitions import WorkflowDefinition, WorkflowRegistry
from .engine import WorkflowEngine, build_engine
from .persistence import get_repository
from .status import get_status_store

__version__ = "0.1.0"
__all__ = [
    "Job",
    "JobStatus",
    "StepStatus",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowRegistry",
    "WorkflowStatus",
    "build_engine",
    "get_job_client",
    "get_repository",
    "get_status_store",
]
