"""Agent registry, workload-aware task assignment and dependency cascade."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from aiteam.config import CoordinationSettings
from aiteam.core.event_log import EventLog
from aiteam.core.models import (
    AgentRecord,
    AgentStatus,
    AssignmentKind,
    CoordinationEvent,
    CoordinationEventType,
    TaskAssignment,
    TaskAssignmentRequest,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    utcnow,
)
from aiteam.core.periodic import PeriodicTask
from aiteam.core.result import ErrorCode, Result
from aiteam.core.store import AGENTS, ASSIGNMENTS, TASKS, RecordNotFoundError, RecordStore

logger = logging.getLogger(__name__)

ACTIVE_TASK_STATUSES = (TaskStatus.ASSIGNED.value, TaskStatus.ESCALATED.value)


def select_agent(
    agents: Iterable[AgentRecord],
    request: TaskAssignmentRequest,
    *,
    max_workload: int = 3,
) -> Optional[AgentRecord]:
    """Pick the least-busy agent able to take ``request``.

    Type preference and capability requirements narrow the candidates only
    when something survives the narrowing; otherwise the wider set is kept.
    """
    available = [
        agent
        for agent in agents
        if agent.status == AgentStatus.IDLE or agent.workload < max_workload
    ]
    if not available:
        return None

    candidates = available
    if request.preferred_agent_type:
        by_type = [agent for agent in candidates if agent.type == request.preferred_agent_type]
        if by_type:
            candidates = by_type

    if request.requirements:
        wanted = set(request.requirements)
        capable = [agent for agent in candidates if agent.capabilities & wanted]
        if capable:
            candidates = capable

    return sorted(candidates, key=lambda agent: agent.workload)[0]


class AgentCoordinationService:
    """Live directory of agents plus the task assignment engine.

    In-memory state is updated first and mirrored to the record store after;
    ``initialize`` rebuilds it from the store.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        settings: Optional[CoordinationSettings] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._settings = settings or CoordinationSettings()
        self._store = store
        self.events = event_log or EventLog(self._settings.event_log_size)
        self._agents: Dict[str, AgentRecord] = {}
        self._active_assignments: Dict[str, str] = {}
        self._sweeper = PeriodicTask(
            "agent-staleness-sweep",
            self._settings.sweep_interval,
            self.sweep_inactive_agents,
        )

    # -- registry -----------------------------------------------------------------

    async def register_agent(self, agent: AgentRecord) -> Result[AgentRecord]:
        """Add or refresh an agent; registering the same id twice is an update."""
        try:
            existing = self._agents.get(agent.id)
            if existing is not None:
                agent.workload = existing.workload
            agent.workload = max(0, agent.workload)
            agent.status = self._reconcile_status(agent.status, agent.workload)
            agent.last_seen = utcnow()
            self._agents[agent.id] = agent

            await self._store.upsert(AGENTS, agent.id, agent.to_record())
            self._emit(
                CoordinationEventType.AGENT_STARTED,
                agent_id=agent.id,
                details={"agent_type": agent.type, "capabilities": sorted(agent.capabilities)},
            )
            logger.info("Registered agent %s (type=%s)", agent.id, agent.type)
            return Result.ok(agent)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to register agent %s", agent.id)
            return Result.fail(
                ErrorCode.AGENT_REGISTRATION_ERROR,
                "Failed to register agent",
                details=str(exc),
            )

    async def deregister_agent(self, agent_id: str, reason: str = "stopped") -> Result[None]:
        """Remove an agent from the live registry after an explicit stop."""
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return Result.fail(ErrorCode.AGENT_NOT_FOUND, f"Agent {agent_id} not found")
        agent.status = AgentStatus.OFFLINE
        try:
            await self._store.update(AGENTS, agent_id, {"status": AgentStatus.OFFLINE.value})
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist offline status for agent %s", agent_id)
        self._emit(CoordinationEventType.AGENT_STOPPED, agent_id=agent_id, details={"reason": reason})
        logger.info("Deregistered agent %s (%s)", agent_id, reason)
        return Result.ok(None)

    async def update_agent_status(self, agent_id: str, status: AgentStatus) -> Result[None]:
        """Set an agent's status without touching its workload."""
        if status == AgentStatus.OFFLINE:
            return Result.fail(
                ErrorCode.UPDATE_STATUS_ERROR,
                "Agents go offline through the staleness sweep or an explicit stop",
            )
        try:
            now = utcnow()
            agent = self._agents.get(agent_id)
            if agent is not None:
                agent.status = self._reconcile_status(status, agent.workload)
                agent.last_seen = now
                status = agent.status
            elif await self._store.find_by_id(AGENTS, agent_id) is None:
                return Result.fail(ErrorCode.AGENT_NOT_FOUND, f"Agent {agent_id} not found")

            await self._store.update(
                AGENTS,
                agent_id,
                {"status": status.value, "last_seen": now.isoformat()},
            )
            return Result.ok(None)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to update status of agent %s", agent_id)
            return Result.fail(
                ErrorCode.UPDATE_STATUS_ERROR,
                "Failed to update agent status",
                details=str(exc),
            )

    def heartbeat(self, agent_id: str) -> Result[None]:
        agent = self._agents.get(agent_id)
        if agent is None:
            return Result.fail(ErrorCode.AGENT_NOT_FOUND, f"Agent {agent_id} not found")
        agent.last_seen = utcnow()
        return Result.ok(None)

    def get_agent(self, agent_id: str) -> Optional[AgentRecord]:
        return self._agents.get(agent_id)

    def get_active_agents(self) -> Result[List[AgentRecord]]:
        return Result.ok(list(self._agents.values()))

    def get_coordination_events(self, limit: int = 50) -> List[CoordinationEvent]:
        return self.events.recent(limit)

    def active_assignment(self, task_id: str) -> Optional[str]:
        """Agent currently holding ``task_id``, if any."""
        return self._active_assignments.get(task_id)

    # -- tasks --------------------------------------------------------------------

    async def create_task(
        self,
        title: str,
        *,
        task_id: Optional[str] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        dependencies: Sequence[str] = (),
    ) -> TaskRecord:
        task = TaskRecord(
            id=task_id or str(uuid.uuid4()),
            title=title,
            priority=priority,
            dependencies=list(dependencies),
        )
        await self._store.upsert(TASKS, task.id, task.to_record())
        return task

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        record = await self._store.find_by_id(TASKS, task_id)
        return TaskRecord.from_record(record) if record else None

    async def assign_task(self, request: TaskAssignmentRequest) -> Result[str]:
        """Route a pending task to the best available agent."""
        try:
            task = await self.get_task(request.task_id)
            if task is None:
                return Result.fail(
                    ErrorCode.TASK_NOT_FOUND,
                    "Task not found",
                    details=f"Task with id {request.task_id} does not exist",
                )
            holder = self._active_assignments.get(task.id)
            if holder is not None or task.status != TaskStatus.PENDING:
                return Result.fail(
                    ErrorCode.TASK_ALREADY_ASSIGNED,
                    f"Task {task.id} is {task.status.value}",
                    details=f"Active assignment held by {holder}" if holder else None,
                )

            agent = select_agent(
                self._agents.values(),
                request,
                max_workload=self._settings.max_workload,
            )
            if agent is None:
                return Result.fail(
                    ErrorCode.NO_AVAILABLE_AGENT,
                    "No suitable agent available",
                    details="All agents are busy or no agent matches requirements",
                )

            # Claim before the first await so a concurrent call sees the assignment.
            self._active_assignments[task.id] = agent.id
            self._adjust_workload(agent.id, 1)
            try:
                assignment = TaskAssignment(
                    id=str(uuid.uuid4()),
                    task_id=task.id,
                    kind=AssignmentKind.ASSIGNMENT,
                    priority=request.priority,
                    message=f"Task assigned: {task.title}",
                    to_agent_id=agent.id,
                    metadata=request.context,
                )
                await self._store.upsert(ASSIGNMENTS, assignment.id, assignment.to_record())
                await self._store.update(
                    TASKS,
                    task.id,
                    {"assigned_agent_id": agent.id, "status": TaskStatus.ASSIGNED.value},
                )
            except Exception:
                self._active_assignments.pop(task.id, None)
                self._adjust_workload(agent.id, -1)
                raise

            self._emit(
                CoordinationEventType.TASK_ASSIGNED,
                agent_id=agent.id,
                task_id=task.id,
                details={"priority": request.priority.value},
            )
            logger.info("Assigned task %s to agent %s (workload=%d)", task.id, agent.id, agent.workload)
            return Result.ok(agent.id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to assign task %s", request.task_id)
            return Result.fail(
                ErrorCode.TASK_ASSIGNMENT_ERROR,
                "Failed to assign task",
                details=str(exc),
            )

    async def complete_task(self, task_id: str, agent_id: str, result: Any = None) -> Result[None]:
        """Mark a task done, free the agent, then assign newly unblocked dependents."""
        try:
            task = await self.get_task(task_id)
            if task is None:
                return Result.fail(
                    ErrorCode.TASK_NOT_FOUND,
                    "Task not found",
                    details=f"Task with id {task_id} does not exist",
                )

            holder = self._active_assignments.pop(task_id, None)
            self._adjust_workload(agent_id, -1)
            await self._store.update(
                TASKS,
                task_id,
                {
                    "status": TaskStatus.COMPLETED.value,
                    "completed_at": utcnow().isoformat(),
                    "result": result,
                },
            )
            await self._close_assignments(task_id)

            self._emit(
                CoordinationEventType.TASK_COMPLETED,
                agent_id=agent_id,
                task_id=task_id,
                details={"result": result},
            )
            if holder is not None and holder != agent_id:
                logger.warning("Task %s completed by %s but was assigned to %s", task_id, agent_id, holder)
            logger.info("Task %s completed by agent %s", task_id, agent_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to complete task %s", task_id)
            return Result.fail(
                ErrorCode.TASK_COMPLETION_ERROR,
                "Failed to complete task",
                details=str(exc),
            )

        try:
            await self._assign_unblocked_dependents(task_id)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to assign tasks unblocked by %s", task_id)
        return Result.ok(None)

    async def escalate_task(
        self,
        task_id: str,
        from_agent_id: str,
        reason: str,
        to_user_id: Optional[str] = None,
    ) -> Result[None]:
        """Hand a task to a human or another agent.

        The original assignment stays open, so the agent's workload is kept.
        """
        try:
            if await self._store.find_by_id(TASKS, task_id) is None:
                return Result.fail(
                    ErrorCode.TASK_NOT_FOUND,
                    "Task not found",
                    details=f"Task with id {task_id} does not exist",
                )
            escalation = TaskAssignment(
                id=str(uuid.uuid4()),
                task_id=task_id,
                kind=AssignmentKind.ESCALATION,
                priority=TaskPriority.HIGH,
                message=reason,
                from_agent_id=from_agent_id,
                to_user_id=to_user_id,
            )
            await self._store.upsert(ASSIGNMENTS, escalation.id, escalation.to_record())
            await self._store.update(TASKS, task_id, {"status": TaskStatus.ESCALATED.value})

            self._emit(
                CoordinationEventType.ESCALATION,
                agent_id=from_agent_id,
                task_id=task_id,
                details={"reason": reason, "escalated_to": to_user_id or "human"},
            )
            logger.warning("Task %s escalated by %s: %s", task_id, from_agent_id, reason)
            return Result.ok(None)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to escalate task %s", task_id)
            return Result.fail(
                ErrorCode.ESCALATION_ERROR,
                "Failed to escalate task",
                details=str(exc),
            )

    # -- background ---------------------------------------------------------------

    async def sweep_inactive_agents(self) -> List[str]:
        """Take agents silent for longer than the timeout out of the registry."""
        now = utcnow()
        timeout = timedelta(seconds=self._settings.agent_timeout)
        stale = [
            agent
            for agent in self._agents.values()
            if agent.last_seen is not None and now - agent.last_seen > timeout
        ]
        for agent in stale:
            agent.status = AgentStatus.OFFLINE
            self._agents.pop(agent.id, None)
            try:
                await self._store.update(AGENTS, agent.id, {"status": AgentStatus.OFFLINE.value})
            except RecordNotFoundError:
                await self._store.upsert(AGENTS, agent.id, agent.to_record())
            except Exception:  # noqa: BLE001
                logger.exception("Failed to persist offline status for agent %s", agent.id)
            self._emit(
                CoordinationEventType.AGENT_STOPPED,
                agent_id=agent.id,
                details={"reason": "timeout"},
                timestamp=now,
            )
            logger.warning("Agent %s timed out (last seen %s)", agent.id, agent.last_seen.isoformat())
        return [agent.id for agent in stale]

    async def initialize(self) -> None:
        """Rebuild the registry and active assignments from the record store."""
        try:
            records = await self._store.find_many(
                AGENTS,
                status=(AgentStatus.IDLE.value, AgentStatus.BUSY.value, AgentStatus.ERROR.value),
            )
            for record in records:
                agent = AgentRecord.from_record(record)
                self._agents[agent.id] = agent

            for record in await self._store.find_many(TASKS, status=ACTIVE_TASK_STATUSES):
                agent_id = record.get("assigned_agent_id")
                if not agent_id:
                    continue
                self._active_assignments[record["id"]] = agent_id
                if agent_id in self._agents:
                    self._agents[agent_id].workload += 1

            for agent in self._agents.values():
                agent.status = self._reconcile_status(agent.status, agent.workload)
            logger.info(
                "Loaded %d agents and %d active assignments",
                len(self._agents),
                len(self._active_assignments),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to initialize coordination state")

    def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    # -- helpers ------------------------------------------------------------------

    async def _assign_unblocked_dependents(self, completed_task_id: str) -> None:
        pending = await self._store.find_many(TASKS, status=TaskStatus.PENDING.value)
        for record in pending:
            dependencies = record.get("dependencies") or []
            if completed_task_id not in dependencies:
                continue
            done = 0
            for dependency_id in dependencies:
                dependency = await self._store.find_by_id(TASKS, dependency_id)
                if dependency and dependency.get("status") == TaskStatus.COMPLETED.value:
                    done += 1
            if done != len(dependencies):
                continue

            result = await self.assign_task(
                TaskAssignmentRequest(
                    task_id=record["id"],
                    priority=TaskPriority(record.get("priority", TaskPriority.MEDIUM.value)),
                )
            )
            if not result.success and result.error is not None:
                logger.warning(
                    "Dependent task %s unblocked by %s could not be assigned: %s",
                    record["id"],
                    completed_task_id,
                    result.error.message,
                )

    async def _close_assignments(self, task_id: str) -> None:
        for record in await self._store.find_many(ASSIGNMENTS, task_id=task_id, active=True):
            await self._store.update(ASSIGNMENTS, record["id"], {"active": False})

    def _adjust_workload(self, agent_id: str, delta: int) -> None:
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        agent.workload = max(0, agent.workload + delta)
        agent.status = AgentStatus.IDLE if agent.workload == 0 else AgentStatus.BUSY

    @staticmethod
    def _reconcile_status(status: AgentStatus, workload: int) -> AgentStatus:
        if status in (AgentStatus.IDLE, AgentStatus.BUSY):
            return AgentStatus.IDLE if workload == 0 else AgentStatus.BUSY
        return status

    def _emit(
        self,
        event_type: CoordinationEventType,
        *,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        event = CoordinationEvent(
            type=event_type,
            agent_id=agent_id,
            task_id=task_id,
            details=details or {},
        )
        if timestamp is not None:
            event.timestamp = timestamp
        self.events.append(event)
