"""Workflow lifecycle endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...auth import ensure_owner
from ...contracts import WorkflowInstance
from ...engine import WorkflowEngine
from ..dependencies import get_caller_id, get_engine

router = APIRouter(tags=["workflows"])


class CreateWorkflowRequest(BaseModel):
    resource_id: str
    workflow_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class StepTemplateView(BaseModel):
    name: str
    label: str
    dependencies: List[str]
    can_retry: bool
    can_skip: bool


class WorkflowTypeView(BaseModel):
    workflow_type: str
    description: Optional[str] = None
    steps: List[StepTemplateView]


async def _owned_instance(
    engine: WorkflowEngine, workflow_id: str, caller_id: Optional[str]
) -> WorkflowInstance:
    instance = await engine.get_instance(workflow_id)
    ensure_owner(instance, caller_id)
    return instance


@router.get("/workflow-types", response_model=List[WorkflowTypeView])
async def list_workflow_types(
    engine: WorkflowEngine = Depends(get_engine),
) -> List[WorkflowTypeView]:
    return [
        WorkflowTypeView(
            workflow_type=definition.workflow_type,
            description=definition.description,
            steps=[
                StepTemplateView(
                    name=step.name,
                    label=step.display_name,
                    dependencies=step.dependencies,
                    can_retry=step.can_retry,
                    can_skip=step.can_skip,
                )
                for step in definition.steps
            ],
        )
        for definition in engine.registry.definitions()
    ]


@router.post("/workflows", response_model=WorkflowInstance, status_code=201)
async def create_workflow(
    body: CreateWorkflowRequest,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    instance = await engine.create_instance(
        body.resource_id,
        body.workflow_type,
        parameters=body.parameters,
        owner_id=caller_id,
    )
    await engine.watch(instance.id)
    return instance


@router.get("/workflows", response_model=List[WorkflowInstance])
async def list_workflows(
    resource_id: Optional[str] = None,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> List[WorkflowInstance]:
    instances = await engine.list_instances(resource_id)
    if caller_id is not None:
        instances = [
            i for i in instances if i.owner_id is None or i.owner_id == caller_id
        ]
    return instances


@router.get("/workflows/{workflow_id}", response_model=WorkflowInstance)
async def get_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    return await _owned_instance(engine, workflow_id, caller_id)


@router.post("/workflows/{workflow_id}/start", response_model=WorkflowInstance)
async def start_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    await _owned_instance(engine, workflow_id, caller_id)
    await engine.watch(workflow_id)
    return await engine.start(workflow_id)


@router.post(
    "/workflows/{workflow_id}/steps/{step_id}/retry",
    response_model=WorkflowInstance,
)
async def retry_step(
    workflow_id: str,
    step_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    await _owned_instance(engine, workflow_id, caller_id)
    return await engine.retry(workflow_id, step_id)


@router.post(
    "/workflows/{workflow_id}/steps/{step_id}/skip",
    response_model=WorkflowInstance,
)
async def skip_step(
    workflow_id: str,
    step_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    await _owned_instance(engine, workflow_id, caller_id)
    return await engine.skip(workflow_id, step_id)


@router.post("/workflows/{workflow_id}/cancel", response_model=WorkflowInstance)
async def cancel_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    await _owned_instance(engine, workflow_id, caller_id)
    return await engine.cancel(workflow_id)


@router.post("/workflows/{workflow_id}/resync", response_model=WorkflowInstance)
async def resync_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine),
    caller_id: Optional[str] = Depends(get_caller_id),
) -> WorkflowInstance:
    await _owned_instance(engine, workflow_id, caller_id)
    return await engine.resync(workflow_id)
