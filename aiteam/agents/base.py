"""Base worker executed inside an agent service process."""
from __future__ import annotations

import abc
import logging
from typing import Any

from aiteam.agents.catalog import AgentRole
from aiteam.core.result import ErrorCode, Result

logger = logging.getLogger(__name__)


class AgentWorker(abc.ABC):
    """Executes units of work on behalf of one agent."""

    def __init__(self, agent_id: str, role: AgentRole) -> None:
        self.agent_id = agent_id
        self.role = role
        self.task_count = 0
        self.error_count = 0

    @property
    def agent_type(self) -> str:
        return self.role.type

    async def execute(self, task_id: str, payload: Any) -> Result[Any]:
        """Run ``handle`` and turn any exception into a tagged failure."""
        self.task_count += 1
        try:
            result = await self.handle(task_id, payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Worker %s failed on task %s", self.agent_id, task_id)
            result = Result.fail(ErrorCode.TASK_EXECUTION_ERROR, "Task execution failed", details=str(exc))
        if not result.success:
            self.error_count += 1
        return result

    @abc.abstractmethod
    async def handle(self, task_id: str, payload: Any) -> Result[Any]:
        """Process one unit of work."""

    async def on_start(self) -> None:
        """Hook executed once the service begins serving."""
        return None

    async def on_stop(self) -> None:
        """Hook executed when the service shuts down."""
        return None
