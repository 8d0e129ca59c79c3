"""Core data contracts for lessonflow workflows and jobs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Either state satisfies a downstream dependency.
TERMINAL_SUCCESS = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})
TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.FAILED}
)
TERMINAL_JOB_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class StepTemplate(BaseModel):
    """Declares one step of a workflow definition."""

    name: str
    label: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    can_retry: bool = True
    can_skip: bool = False

    @property
    def display_name(self) -> str:
        return self.label or self.name.replace("_", " ").title()


class WorkflowStep(BaseModel):
    """Live state of one step inside a workflow instance."""

    id: str
    name: str
    status: StepStatus = StepStatus.PENDING
    progress_percentage: int = Field(default=0, ge=0, le=100)
    dependencies: List[str] = Field(default_factory=list)
    can_retry: bool = True
    can_skip: bool = False
    job_id: Optional[str] = None
    job_history: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    output_data: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_template(cls, template: StepTemplate) -> "WorkflowStep":
        return cls(
            id=template.name,
            name=template.display_name,
            dependencies=list(template.dependencies),
            can_retry=template.can_retry,
            can_skip=template.can_skip,
        )

    def is_satisfied(self) -> bool:
        """Return ``True`` when dependents of this step may start."""
        return self.status in TERMINAL_SUCCESS


class WorkflowInstance(BaseModel):
    """A stateful run of a workflow definition against one resource."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resource_id: str
    workflow_type: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    steps: List[WorkflowStep] = Field(default_factory=list)
    owner_id: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_cost_cents: int = 0
    counted_job_ids: List[str] = Field(default_factory=list)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        return next((s for s in self.steps if s.id == step_id), None)

    def step_for_job(self, job_id: str) -> Optional[WorkflowStep]:
        """Return the step whose current job is ``job_id``."""
        return next((s for s in self.steps if s.job_id == job_id), None)

    def job_ids(self) -> List[str]:
        return [job_id for step in self.steps for job_id in step.job_history]

    @property
    def is_started(self) -> bool:
        return self.started_at is not None

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowInstance":
        return cls.model_validate_json(data)


class Job(BaseModel):
    """External unit of execution backing a step."""

    id: str
    resource_id: str
    step_name: str
    status: JobStatus = JobStatus.PENDING
    progress_percentage: int = Field(default=0, ge=0, le=100)
    error_message: Optional[str] = None
    output_data: Optional[Dict[str, Any]] = None
    cost_cents: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "Job":
        return cls.model_validate_json(data)


class JobAcknowledgement(BaseModel):
    """Returned by a job client once a processor accepted a step."""

    job_id: str
    step_name: str
    resource_id: str
