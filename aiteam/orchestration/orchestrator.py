"""Orchestrator tying process-backed services to the coordination registry."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from aiteam.agents.catalog import default_capabilities
from aiteam.coordination.service import AgentCoordinationService
from aiteam.core.lifecycle_bus import LifecycleBus
from aiteam.core.models import (
    AgentRecord,
    AgentServiceConfig,
    AgentStatus,
    LifecycleEvent,
    LifecycleEventType,
    ServiceInstance,
    TaskAssignmentRequest,
)
from aiteam.core.result import ErrorCode, Result
from aiteam.supervisor.manager import AgentServicesManager

logger = logging.getLogger(__name__)


class Orchestrator:
    """Keep the registry in step with service lifecycles and run tasks end to end."""

    def __init__(
        self,
        *,
        bus: LifecycleBus,
        supervisor: AgentServicesManager,
        coordination: AgentCoordinationService,
    ) -> None:
        self._bus = bus
        self._supervisor = supervisor
        self._coordination = coordination
        self._runner: Optional[asyncio.Task[None]] = None
        self._queue: Optional[asyncio.Queue[LifecycleEvent]] = None
        self._subscribed = asyncio.Event()

    async def start(self) -> None:
        """Subscribe to lifecycle events; returns once the subscription is live."""
        if self._runner is not None:
            return
        self._subscribed.clear()
        self._runner = asyncio.create_task(self._run(), name="lifecycle-bridge")
        await self._subscribed.wait()

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._runner.cancel()
        try:
            await self._runner
        except asyncio.CancelledError:
            pass
        self._runner = None
        self._queue = None

    async def settle(self) -> None:
        """Wait until every lifecycle event published so far has been applied."""
        if self._queue is not None:
            await self._queue.join()

    async def start_agent_service(self, config: AgentServiceConfig) -> Result[ServiceInstance]:
        """Start a service and return once its agent is registered."""
        result = await self._supervisor.start_agent_service(config)
        await self.settle()
        return result

    async def stop_agent_service(self, service_id: str) -> Result[None]:
        result = await self._supervisor.stop_agent_service(service_id)
        await self.settle()
        return result

    async def run_task(self, request: TaskAssignmentRequest) -> Result[Any]:
        """Assign a task and, when the agent is process-backed, execute it there."""
        assigned = await self._coordination.assign_task(request)
        if not assigned.success:
            return assigned
        return await self.dispatch_assigned(request.task_id, request.context)

    async def dispatch_assigned(self, task_id: str, payload: Any = None) -> Result[Any]:
        """Execute an already-assigned task on its agent service.

        Success completes the task; failure escalates it with the error.
        Logical agents report completion themselves, so nothing is sent.
        """
        agent_id = self._coordination.active_assignment(task_id)
        if agent_id is None:
            return Result.fail(ErrorCode.TASK_NOT_FOUND, f"Task {task_id} has no active assignment")
        if self._supervisor.get_service_status(agent_id) is None:
            return Result.ok({"agent_id": agent_id, "dispatched": False})

        outcome = await self._supervisor.dispatch_task(agent_id, task_id, payload)
        if outcome.success:
            completed = await self._coordination.complete_task(task_id, agent_id, outcome.data)
            if not completed.success:
                return completed
            return Result.ok({"agent_id": agent_id, "dispatched": True, "result": outcome.data})

        assert outcome.error is not None
        reason = outcome.error.message
        if outcome.error.details:
            reason = f"{reason}: {outcome.error.details}"
        await self._coordination.escalate_task(task_id, agent_id, reason)
        return outcome

    async def _run(self) -> None:
        async with self._bus.subscribe() as queue:
            self._queue = queue
            self._subscribed.set()
            while True:
                event = await queue.get()
                try:
                    await self._apply(event)
                except Exception:  # noqa: BLE001
                    logger.exception("Failed to apply lifecycle event %s", event.type.value)
                finally:
                    queue.task_done()

    async def _apply(self, event: LifecycleEvent) -> None:
        service_id = event.service_id
        if event.type == LifecycleEventType.SERVICE_STARTED:
            config = self._supervisor.get_service_config(service_id)
            agent_type = event.details.get("agent_type") or (config.type if config else "workflow_assistant")
            capabilities = set(config.capabilities) if config and config.capabilities else set()
            result = await self._coordination.register_agent(
                AgentRecord(
                    id=service_id,
                    name=event.details.get("name") or service_id,
                    type=agent_type,
                    status=AgentStatus.IDLE,
                    capabilities=capabilities or set(default_capabilities(agent_type)),
                )
            )
            if not result.success and result.error is not None:
                logger.warning("Could not register agent for service %s: %s", service_id, result.error.message)
        elif event.type == LifecycleEventType.SERVICE_STOPPED:
            if self._coordination.get_agent(service_id) is not None:
                await self._coordination.deregister_agent(service_id, reason="service_stopped")
        elif event.type == LifecycleEventType.SERVICE_EXITED and event.details.get("code") == 0:
            if self._coordination.get_agent(service_id) is not None:
                await self._coordination.deregister_agent(service_id, reason="service_exited")
        elif event.type in (LifecycleEventType.SERVICE_EXITED, LifecycleEventType.SERVICE_ERROR):
            if self._coordination.get_agent(service_id) is not None:
                await self._coordination.update_agent_status(service_id, AgentStatus.ERROR)
        elif event.type == LifecycleEventType.SERVICE_HEALTH:
            if self._coordination.get_agent(service_id) is not None:
                self._coordination.heartbeat(service_id)
