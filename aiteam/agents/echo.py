"""Deterministic worker used when no language model is configured."""
from __future__ import annotations

from typing import Any

from aiteam.agents.base import AgentWorker
from aiteam.core.result import Result


class EchoWorker(AgentWorker):
    """Worker that echoes its input to demonstrate the execution path."""

    async def handle(self, task_id: str, payload: Any) -> Result[Any]:
        return Result.ok(
            {
                "task_id": task_id,
                "agent_id": self.agent_id,
                "agent_type": self.agent_type,
                "echo": payload,
            }
        )
