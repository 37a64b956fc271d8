"""HTTP API exposing the coordination registry."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from aiteam.api.deps import get_runtime, unwrap
from aiteam.core.models import AgentRecord, AgentStatus
from aiteam.runtime import TeamRuntime

router = APIRouter(prefix="/agents", tags=["agents"])


class AgentRegisterRequest(BaseModel):
    id: str = Field(..., description="Stable agent identifier")
    name: str = Field(..., description="Display name")
    type: str = Field(..., description="Agent type, e.g. business_analyst")
    capabilities: List[str] = Field(default_factory=list)
    status: AgentStatus = AgentStatus.IDLE


class AgentResponse(BaseModel):
    id: str
    name: str
    type: str
    status: AgentStatus
    capabilities: List[str]
    workload: int
    last_seen: Optional[datetime]

    @classmethod
    def from_record(cls, agent: AgentRecord) -> "AgentResponse":
        return cls(
            id=agent.id,
            name=agent.name,
            type=agent.type,
            status=agent.status,
            capabilities=sorted(agent.capabilities),
            workload=agent.workload,
            last_seen=agent.last_seen,
        )


class StatusUpdateRequest(BaseModel):
    status: AgentStatus


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def register_agent(
    request: AgentRegisterRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> AgentResponse:
    agent = AgentRecord(
        id=request.id,
        name=request.name,
        type=request.type,
        status=request.status,
        capabilities=set(request.capabilities),
    )
    return AgentResponse.from_record(unwrap(await runtime.coordination.register_agent(agent)))


@router.get("", response_model=List[AgentResponse])
async def list_active_agents(runtime: TeamRuntime = Depends(get_runtime)) -> List[AgentResponse]:
    agents = unwrap(runtime.coordination.get_active_agents())
    return [AgentResponse.from_record(agent) for agent in agents]


@router.patch("/{agent_id}/status", status_code=status.HTTP_204_NO_CONTENT)
async def update_agent_status(
    agent_id: str,
    request: StatusUpdateRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> None:
    unwrap(await runtime.coordination.update_agent_status(agent_id, request.status))


@router.post("/{agent_id}/heartbeat", status_code=status.HTTP_204_NO_CONTENT)
async def heartbeat(agent_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> None:
    unwrap(runtime.coordination.heartbeat(agent_id))
