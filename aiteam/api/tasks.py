"""HTTP API for task assignment, completion and escalation."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from aiteam.api.deps import get_runtime, unwrap
from aiteam.core.models import TaskAssignmentRequest, TaskPriority, TaskRecord, TaskStatus
from aiteam.runtime import TeamRuntime

router = APIRouter(prefix="/tasks", tags=["tasks"])


class TaskCreateRequest(BaseModel):
    title: str
    id: Optional[str] = Field(default=None, description="Generated when omitted")
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: List[str] = Field(default_factory=list)


class TaskResponse(BaseModel):
    id: str
    title: str
    status: TaskStatus
    priority: TaskPriority
    dependencies: List[str]
    assigned_agent_id: Optional[str]
    result: Any = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, task: TaskRecord) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            status=task.status,
            priority=task.priority,
            dependencies=task.dependencies,
            assigned_agent_id=task.assigned_agent_id,
            result=task.result,
            completed_at=task.completed_at,
        )


class AssignRequest(BaseModel):
    priority: TaskPriority = TaskPriority.MEDIUM
    preferred_agent_type: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)
    context: Optional[Dict[str, Any]] = None

    def to_request(self, task_id: str) -> TaskAssignmentRequest:
        return TaskAssignmentRequest(
            task_id=task_id,
            priority=self.priority,
            preferred_agent_type=self.preferred_agent_type,
            requirements=list(self.requirements),
            context=self.context,
        )


class AssignResponse(BaseModel):
    task_id: str
    agent_id: str


class CompleteRequest(BaseModel):
    agent_id: str
    result: Any = None


class EscalateRequest(BaseModel):
    from_agent_id: str
    reason: str
    to_user_id: Optional[str] = None


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(request: TaskCreateRequest, runtime: TeamRuntime = Depends(get_runtime)) -> TaskResponse:
    task = await runtime.coordination.create_task(
        request.title,
        task_id=request.id,
        priority=request.priority,
        dependencies=request.dependencies,
    )
    return TaskResponse.from_record(task)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> TaskResponse:
    task = await runtime.coordination.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown task")
    return TaskResponse.from_record(task)


@router.post("/{task_id}/assign", response_model=AssignResponse)
async def assign_task(
    task_id: str,
    request: AssignRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> AssignResponse:
    agent_id = unwrap(await runtime.coordination.assign_task(request.to_request(task_id)))
    return AssignResponse(task_id=task_id, agent_id=agent_id)


@router.post("/{task_id}/run")
async def run_task(
    task_id: str,
    request: AssignRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> dict:
    return unwrap(await runtime.orchestrator.run_task(request.to_request(task_id)))


@router.post("/{task_id}/complete", status_code=status.HTTP_204_NO_CONTENT)
async def complete_task(
    task_id: str,
    request: CompleteRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> None:
    unwrap(await runtime.coordination.complete_task(task_id, request.agent_id, request.result))


@router.post("/{task_id}/escalate", status_code=status.HTTP_204_NO_CONTENT)
async def escalate_task(
    task_id: str,
    request: EscalateRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> None:
    unwrap(
        await runtime.coordination.escalate_task(
            task_id,
            request.from_agent_id,
            request.reason,
            request.to_user_id,
        )
    )


@router.post("/{task_id}/dispatch")
async def dispatch_task(
    task_id: str,
    context: Optional[Dict[str, Any]] = None,
    runtime: TeamRuntime = Depends(get_runtime),
) -> dict:
    return unwrap(await runtime.orchestrator.dispatch_assigned(task_id, context))
