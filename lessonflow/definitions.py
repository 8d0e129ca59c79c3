"""Workflow definitions: which steps a workflow type runs and in what order."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .contracts import StepTemplate
from .errors import InvalidWorkflowDefinition, UnknownWorkflowType


class WorkflowDefinition(BaseModel):
    """Static step graph registered under a workflow type."""

    workflow_type: str
    description: Optional[str] = None
    steps: List[StepTemplate] = Field(default_factory=list)


def topological_order(
    steps: Iterable[StepTemplate], workflow_type: str | None = None
) -> List[str]:
    """Return step names in an order that respects every dependency.

    Ties are broken by definition order. Raises
    :class:`InvalidWorkflowDefinition` when the graph has duplicate names,
    references unknown steps or contains a cycle.
    """

    steps = list(steps)
    if not steps:
        raise InvalidWorkflowDefinition(workflow_type, "workflow has no steps")

    position: Dict[str, int] = {}
    for index, step in enumerate(steps):
        if step.name in position:
            raise InvalidWorkflowDefinition(
                workflow_type, f"duplicate step name {step.name!r}"
            )
        position[step.name] = index

    indegree = {step.name: 0 for step in steps}
    dependents: Dict[str, List[str]] = {step.name: [] for step in steps}
    for step in steps:
        for dep in step.dependencies:
            if dep == step.name:
                raise InvalidWorkflowDefinition(
                    workflow_type, f"step {step.name!r} depends on itself"
                )
            if dep not in position:
                raise InvalidWorkflowDefinition(
                    workflow_type,
                    f"step {step.name!r} depends on unknown step {dep!r}",
                )
        for dep in set(step.dependencies):
            indegree[step.name] += 1
            dependents[dep].append(step.name)

    ready = deque(step.name for step in steps if indegree[step.name] == 0)
    order: List[str] = []
    while ready:
        name = ready.popleft()
        order.append(name)
        for child in sorted(dependents[name], key=position.__getitem__):
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)

    if len(order) != len(steps):
        stuck = sorted(
            (name for name, count in indegree.items() if count > 0),
            key=position.__getitem__,
        )
        raise InvalidWorkflowDefinition(
            workflow_type, f"dependency cycle between steps {', '.join(stuck)}"
        )
    return order


def validate_definition(definition: WorkflowDefinition) -> None:
    topological_order(definition.steps, definition.workflow_type)


class WorkflowRegistry:
    """Lookup table from workflow type to its step templates."""

    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions:
            self.register(definition)

    @classmethod
    def with_builtins(
        cls, extra: Iterable[WorkflowDefinition] = ()
    ) -> "WorkflowRegistry":
        """Registry holding the built-in lesson workflows plus ``extra``."""
        registry = cls(BUILTIN_DEFINITIONS)
        for definition in extra:
            registry.register(definition)
        return registry

    def register(self, definition: WorkflowDefinition) -> None:
        """Add or replace ``definition``.

        Graph validation happens in :meth:`validate_all` and again whenever
        an instance is created.
        """
        self._definitions[definition.workflow_type] = definition

    def get(self, workflow_type: str) -> WorkflowDefinition:
        try:
            return self._definitions[workflow_type]
        except KeyError:
            raise UnknownWorkflowType(workflow_type) from None

    def steps_for(self, workflow_type: str) -> List[StepTemplate]:
        return list(self.get(workflow_type).steps)

    def validate_all(self) -> None:
        for definition in self._definitions.values():
            validate_definition(definition)

    def workflow_types(self) -> List[str]:
        return list(self._definitions)

    def definitions(self) -> List[WorkflowDefinition]:
        return list(self._definitions.values())

    def __contains__(self, workflow_type: object) -> bool:
        return workflow_type in self._definitions


BUILTIN_DEFINITIONS = [
    WorkflowDefinition(
        workflow_type="full_processing",
        description="Transcribe, analyse and turn a lesson recording into reviewed flashcards",
        steps=[
            StepTemplate(name="transcription", label="Audio Transcription"),
            StepTemplate(
                name="summarization",
                label="Content Summarization",
                dependencies=["transcription"],
            ),
            StepTemplate(
                name="content_analysis",
                label="Content Analysis",
                dependencies=["transcription"],
            ),
            StepTemplate(
                name="flashcard_generation",
                label="Flashcard Generation",
                dependencies=["transcription", "content_analysis"],
            ),
            StepTemplate(
                name="review",
                label="Teacher Review",
                dependencies=["flashcard_generation"],
                can_skip=True,
            ),
            StepTemplate(
                name="deployment",
                label="Student Deployment",
                dependencies=["review"],
            ),
        ],
    ),
    WorkflowDefinition(
        workflow_type="transcription_only",
        description="Transcribe a lesson recording",
        steps=[StepTemplate(name="transcription", label="Audio Transcription")],
    ),
    WorkflowDefinition(
        workflow_type="cards_only",
        description="Generate flashcards from existing lesson content",
        steps=[StepTemplate(name="flashcard_generation", label="Flashcard Generation")],
    ),
    WorkflowDefinition(
        workflow_type="analysis_only",
        description="Analyse existing lesson content",
        steps=[StepTemplate(name="content_analysis", label="Content Analysis")],
    ),
]
