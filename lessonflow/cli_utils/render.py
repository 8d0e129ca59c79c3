"""Plain-text rendering of workflow instances for the CLI."""

from __future__ import annotations

from typing import List

from ..contracts import StepStatus, WorkflowInstance, WorkflowStep

STATUS_MARKERS = {
    StepStatus.PENDING: "[ ]",
    StepStatus.PROCESSING: "[~]",
    StepStatus.COMPLETED: "[x]",
    StepStatus.FAILED: "[!]",
    StepStatus.SKIPPED: "[-]",
}


def format_cost(cents: int) -> str:
    """Render a cent amount as dollars, e.g. ``12`` -> ``$0.120``."""
    return f"${cents / 100:.3f}"


def render_step(step: WorkflowStep) -> str:
    line = f"  {STATUS_MARKERS[step.status]} {step.name} ({step.id}): {step.status.value}"
    if step.status == StepStatus.PROCESSING:
        line += f" {step.progress_percentage}%"
    if step.dependencies:
        line += f" <- {', '.join(step.dependencies)}"
    if step.status == StepStatus.FAILED and step.error_message:
        line += f"\n      error: {step.error_message}"
    return line


def summarize(instance: WorkflowInstance) -> str:
    counts = {status: 0 for status in StepStatus}
    for step in instance.steps:
        counts[step.status] += 1
    return (
        f"{counts[StepStatus.COMPLETED]} completed, "
        f"{counts[StepStatus.PROCESSING]} processing, "
        f"{counts[StepStatus.FAILED]} failed, "
        f"cost {format_cost(instance.total_cost_cents)}"
    )


def render_instance(instance: WorkflowInstance) -> str:
    """Render the header, one line per step and a summary line."""
    lines: List[str] = [
        f"Workflow {instance.id} [{instance.workflow_type}] "
        f"resource={instance.resource_id}: {instance.status.value}"
    ]
    lines.extend(render_step(step) for step in instance.steps)
    lines.append(summarize(instance))
    return "\n".join(lines)
