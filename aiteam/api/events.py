"""HTTP API for the coordination event log."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from aiteam.api.deps import get_runtime
from aiteam.runtime import TeamRuntime

router = APIRouter(prefix="/events", tags=["events"])


class EventResponse(BaseModel):
    type: str
    agent_id: Optional[str]
    task_id: Optional[str]
    details: Dict[str, Any]
    timestamp: datetime


@router.get("", response_model=List[EventResponse])
async def list_events(
    limit: int = Query(default=50, ge=0, le=10_000),
    runtime: TeamRuntime = Depends(get_runtime),
) -> List[EventResponse]:
    return [
        EventResponse(
            type=event.type.value,
            agent_id=event.agent_id,
            task_id=event.task_id,
            details=event.details,
            timestamp=event.timestamp,
        )
        for event in runtime.coordination.get_coordination_events(limit)
    ]
