"""Tests for agent registration, task assignment and dependency cascade."""
from __future__ import annotations

from datetime import timedelta
from typing import Iterable

import pytest

from aiteam.config import CoordinationSettings
from aiteam.coordination.service import AgentCoordinationService, select_agent
from aiteam.core.models import (
    AgentRecord,
    AgentStatus,
    CoordinationEventType,
    TaskAssignmentRequest,
    TaskStatus,
    utcnow,
)
from aiteam.core.result import ErrorCode
from aiteam.core.store import AGENTS, ASSIGNMENTS, InMemoryRecordStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def coordination(store: InMemoryRecordStore) -> AgentCoordinationService:
    return AgentCoordinationService(store=store, settings=CoordinationSettings(agent_timeout=300))


def _agent(agent_id: str, agent_type: str = "backend_developer", capabilities: Iterable[str] = ()) -> AgentRecord:
    return AgentRecord(id=agent_id, name=agent_id, type=agent_type, capabilities=set(capabilities))


def test_select_agent_prefers_least_workload() -> None:
    busy = _agent("a1")
    busy.workload = 2
    free = _agent("a2")
    free.workload = 1

    chosen = select_agent([busy, free], TaskAssignmentRequest(task_id="t"))
    assert chosen is free


def test_select_agent_falls_back_when_preference_unmatched() -> None:
    analyst = _agent("ba", "business_analyst", {"analysis"})
    tester = _agent("qa", "qa_engineer", {"testing"})

    by_capability = select_agent(
        [analyst, tester],
        TaskAssignmentRequest(task_id="t", preferred_agent_type="designer", requirements=["testing"]),
    )
    assert by_capability is tester

    by_nothing = select_agent(
        [analyst, tester],
        TaskAssignmentRequest(task_id="t", requirements=["astrology"]),
    )
    assert by_nothing is analyst


def test_select_agent_skips_saturated_agents() -> None:
    saturated = _agent("a1")
    saturated.status = AgentStatus.BUSY
    saturated.workload = 3

    assert select_agent([saturated], TaskAssignmentRequest(task_id="t")) is None


@pytest.mark.anyio
async def test_assign_and_complete_tracks_workload(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.register_agent(_agent("a2"))
    await coordination.create_task("first", task_id="t1")
    await coordination.create_task("second", task_id="t2")

    assert (await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))).data == "a1"
    assert (await coordination.assign_task(TaskAssignmentRequest(task_id="t2"))).data == "a2"
    agent = coordination.get_agent("a1")
    assert agent is not None
    assert agent.workload == 1
    assert agent.status == AgentStatus.BUSY

    completed = await coordination.complete_task("t1", "a1", {"ok": True})
    assert completed.success
    assert agent.workload == 0
    assert agent.status == AgentStatus.IDLE

    task = await coordination.get_task("t1")
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.result == {"ok": True}
    assert coordination.active_assignment("t1") is None


@pytest.mark.anyio
async def test_task_cannot_be_assigned_twice(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.register_agent(_agent("a2"))
    await coordination.create_task("only once", task_id="t1")

    first = await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))
    second = await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))

    assert first.success
    assert second.error is not None
    assert second.error.code == ErrorCode.TASK_ALREADY_ASSIGNED
    assert coordination.active_assignment("t1") == first.data


@pytest.mark.anyio
async def test_assign_errors(coordination: AgentCoordinationService) -> None:
    missing = await coordination.assign_task(TaskAssignmentRequest(task_id="ghost"))
    assert missing.error is not None
    assert missing.error.code == ErrorCode.TASK_NOT_FOUND

    await coordination.create_task("nobody home", task_id="t1")
    nobody = await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))
    assert nobody.error is not None
    assert nobody.error.code == ErrorCode.NO_AVAILABLE_AGENT


@pytest.mark.anyio
async def test_completion_cascades_through_dependencies(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.create_task("A", task_id="A")
    await coordination.create_task("B", task_id="B", dependencies=["A"])
    await coordination.create_task("C", task_id="C", dependencies=["B"])

    await coordination.assign_task(TaskAssignmentRequest(task_id="A"))
    await coordination.complete_task("A", "a1")

    assert coordination.active_assignment("B") == "a1"
    assert coordination.active_assignment("C") is None
    task_c = await coordination.get_task("C")
    assert task_c is not None and task_c.status == TaskStatus.PENDING

    await coordination.complete_task("B", "a1")
    assert coordination.active_assignment("C") == "a1"

    types = [event.type for event in coordination.get_coordination_events()]
    assert types.count(CoordinationEventType.TASK_ASSIGNED) == 3
    assert types.count(CoordinationEventType.TASK_COMPLETED) == 2


@pytest.mark.anyio
async def test_dependent_waits_for_every_dependency(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.create_task("A", task_id="A")
    await coordination.create_task("B", task_id="B")
    await coordination.create_task("C", task_id="C", dependencies=["A", "B"])

    await coordination.assign_task(TaskAssignmentRequest(task_id="A"))
    await coordination.complete_task("A", "a1")
    assert coordination.active_assignment("C") is None


@pytest.mark.anyio
async def test_escalation_keeps_workload(
    coordination: AgentCoordinationService,
    store: InMemoryRecordStore,
) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.create_task("hard", task_id="t1")
    await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))

    result = await coordination.escalate_task("t1", "a1", "needs a human")
    assert result.success

    task = await coordination.get_task("t1")
    assert task is not None and task.status == TaskStatus.ESCALATED
    agent = coordination.get_agent("a1")
    assert agent is not None and agent.workload == 1

    escalations = await store.find_many(ASSIGNMENTS, kind="escalation")
    assert len(escalations) == 1
    assert escalations[0]["message"] == "needs a human"

    last = coordination.get_coordination_events(1)[0]
    assert last.type == CoordinationEventType.ESCALATION
    assert last.details == {"reason": "needs a human", "escalated_to": "human"}

    missing = await coordination.escalate_task("ghost", "a1", "lost")
    assert missing.error is not None and missing.error.code == ErrorCode.TASK_NOT_FOUND


@pytest.mark.anyio
async def test_sweep_takes_silent_agents_offline(
    coordination: AgentCoordinationService,
    store: InMemoryRecordStore,
) -> None:
    await coordination.register_agent(_agent("quiet"))
    await coordination.register_agent(_agent("chatty"))
    quiet = coordination.get_agent("quiet")
    assert quiet is not None
    quiet.last_seen = utcnow() - timedelta(seconds=301)

    swept = await coordination.sweep_inactive_agents()

    assert swept == ["quiet"]
    assert coordination.get_agent("quiet") is None
    assert coordination.get_agent("chatty") is not None
    record = await store.find_by_id(AGENTS, "quiet")
    assert record is not None and record["status"] == "offline"
    last = coordination.get_coordination_events(1)[0]
    assert last.type == CoordinationEventType.AGENT_STOPPED
    assert last.details == {"reason": "timeout"}


@pytest.mark.anyio
async def test_status_updates(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))

    assert (await coordination.update_agent_status("a1", AgentStatus.ERROR)).success
    agent = coordination.get_agent("a1")
    assert agent is not None and agent.status == AgentStatus.ERROR

    offline = await coordination.update_agent_status("a1", AgentStatus.OFFLINE)
    assert offline.error is not None and offline.error.code == ErrorCode.UPDATE_STATUS_ERROR

    missing = await coordination.update_agent_status("ghost", AgentStatus.IDLE)
    assert missing.error is not None and missing.error.code == ErrorCode.AGENT_NOT_FOUND

    assert not coordination.heartbeat("ghost").success


@pytest.mark.anyio
async def test_reregistration_keeps_workload(coordination: AgentCoordinationService) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.create_task("t", task_id="t1")
    await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))

    refreshed = await coordination.register_agent(_agent("a1", capabilities={"api"}))

    assert refreshed.data is not None
    assert refreshed.data.workload == 1
    assert refreshed.data.status == AgentStatus.BUSY


@pytest.mark.anyio
async def test_deregister_marks_offline(
    coordination: AgentCoordinationService,
    store: InMemoryRecordStore,
) -> None:
    await coordination.register_agent(_agent("a1"))

    assert (await coordination.deregister_agent("a1")).success
    assert coordination.get_agent("a1") is None
    assert coordination.get_active_agents().data == []
    record = await store.find_by_id(AGENTS, "a1")
    assert record is not None and record["status"] == "offline"

    again = await coordination.deregister_agent("a1")
    assert again.error is not None and again.error.code == ErrorCode.AGENT_NOT_FOUND


@pytest.mark.anyio
async def test_initialize_rebuilds_state_from_store(
    coordination: AgentCoordinationService,
    store: InMemoryRecordStore,
) -> None:
    await coordination.register_agent(_agent("a1"))
    await coordination.register_agent(_agent("gone"))
    await coordination.deregister_agent("gone")
    await coordination.create_task("t", task_id="t1")
    await coordination.assign_task(TaskAssignmentRequest(task_id="t1"))

    restarted = AgentCoordinationService(store=store)
    await restarted.initialize()

    agent = restarted.get_agent("a1")
    assert agent is not None
    assert agent.workload == 1
    assert agent.status == AgentStatus.BUSY
    assert restarted.get_agent("gone") is None
    assert restarted.active_assignment("t1") == "a1"


class _CascadeFailingStore(InMemoryRecordStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail_pending_lookup = False

    async def find_many(self, collection, **filters):
        if self.fail_pending_lookup and filters.get("status") == TaskStatus.PENDING.value:
            raise ConnectionError("store unavailable")
        return await super().find_many(collection, **filters)


@pytest.mark.anyio
async def test_cascade_failure_does_not_fail_completion() -> None:
    store = _CascadeFailingStore()
    coordination = AgentCoordinationService(store=store)
    await coordination.register_agent(_agent("a1"))
    await coordination.create_task("A", task_id="A")
    await coordination.create_task("B", task_id="B", dependencies=["A"])
    await coordination.assign_task(TaskAssignmentRequest(task_id="A"))

    store.fail_pending_lookup = True
    result = await coordination.complete_task("A", "a1")

    assert result.success
    task = await coordination.get_task("A")
    assert task is not None and task.status == TaskStatus.COMPLETED
    assert coordination.active_assignment("B") is None
