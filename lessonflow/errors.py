"""lessonflow exception hierarchy."""

from __future__ import annotations


class LessonflowError(Exception):
    """Base exception for all lessonflow errors."""


# ----------------------------------------------------------------------
# Configuration errors


class ConfigurationError(LessonflowError):
    """Deployment or configuration problem; never retried."""


class UnknownWorkflowType(ConfigurationError):
    """No workflow definition is registered under the requested type."""

    def __init__(self, workflow_type: str) -> None:
        self.workflow_type = workflow_type
        super().__init__(f"Unknown workflow type: {workflow_type}")


class InvalidWorkflowDefinition(ConfigurationError):
    """The step graph of a workflow definition cannot be executed."""

    def __init__(self, workflow_type: str | None, reason: str) -> None:
        self.workflow_type = workflow_type
        self.reason = reason
        prefix = f"Workflow {workflow_type!r}" if workflow_type else "Workflow"
        super().__init__(f"{prefix} is invalid: {reason}")


# ----------------------------------------------------------------------
# Job client errors


class StartError(LessonflowError):
    """Starting a step through the job client failed."""

    def __init__(self, step_name: str, message: str) -> None:
        self.step_name = step_name
        self.message = message
        super().__init__(message)


class UnknownStepName(StartError):
    """The job client has no processor route for the step."""

    def __init__(self, step_name: str) -> None:
        super().__init__(step_name, f"No processor configured for step {step_name!r}")


class TransportFailure(StartError):
    """The processor could not be reached."""


class RejectedByProcessor(StartError):
    """The processor answered with an application error."""

    def __init__(
        self, step_name: str, message: str, status_code: int | None = None
    ) -> None:
        self.status_code = status_code
        super().__init__(step_name, message)


# ----------------------------------------------------------------------
# State errors (caller misuse, no side effects)


class StateError(LessonflowError):
    """Operation is not allowed in the current workflow state."""


class AlreadyStarted(StateError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} has already been started")


class StepNotRetryable(StateError):
    def __init__(self, step_id: str, status: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step {step_id!r} cannot be retried while {status}")


class StepNotSkippable(StateError):
    def __init__(self, step_id: str, status: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step {step_id!r} cannot be skipped while {status}")


class WorkflowCancelled(StateError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} has been cancelled")


# ----------------------------------------------------------------------
# Lookup errors


class WorkflowNotFound(LessonflowError):
    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow {workflow_id} not found")


class StepNotFound(LessonflowError):
    def __init__(self, workflow_id: str, step_id: str) -> None:
        self.workflow_id = workflow_id
        self.step_id = step_id
        super().__init__(f"Workflow {workflow_id} has no step {step_id!r}")


class JobNotFound(LessonflowError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


# ----------------------------------------------------------------------
# Auth errors


class Unauthorized(LessonflowError):
    """Missing or invalid credentials."""


class Forbidden(LessonflowError):
    """Caller is not allowed to act on the workflow."""
