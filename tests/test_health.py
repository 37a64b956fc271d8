"""Tests for health probing and performance counters."""
from __future__ import annotations

import httpx
import pytest

from aiteam.config import SupervisorSettings
from aiteam.core.lifecycle_bus import LifecycleBus
from aiteam.core.models import AgentServiceConfig, LifecycleEventType, ServiceState
from aiteam.core.result import ErrorCode
from aiteam.core.store import InMemoryRecordStore
from aiteam.supervisor.manager import AgentServicesManager


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _manager(launcher, handler=None, *, http_probe: bool = True, bus=None) -> AgentServicesManager:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return AgentServicesManager(
        store=InMemoryRecordStore(),
        bus=bus or LifecycleBus(),
        settings=SupervisorSettings(http_probe=http_probe, stop_grace_period=2.0),
        launcher=launcher,
        http_client=client,
    )


def _config(service_id: str = "svc-1") -> AgentServiceConfig:
    return AgentServiceConfig(id=service_id, name=service_id, type="echo")


@pytest.mark.anyio
async def test_response_time_window_keeps_last_hundred(sleeper_launcher) -> None:
    manager = _manager(sleeper_launcher, http_probe=False)
    try:
        await manager.start_agent_service(_config())
        for _ in range(50):
            manager.health.record_request("svc-1", 1000.0)
        for _ in range(100):
            manager.health.record_request("svc-1", 10.0)

        metrics = manager.get_service_metrics("svc-1").data
        assert metrics.requests == 150
        assert metrics.avg_response_time_ms == 10.0
        assert metrics.errors == 0
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_usage_samples_update_peaks(sleeper_launcher) -> None:
    manager = _manager(sleeper_launcher, http_probe=False)
    try:
        await manager.start_agent_service(_config())
        manager.health.record_usage("svc-1", 120.0, None)
        manager.health.record_usage("svc-1", 80.0, None)
        manager.health.record_error("svc-1")

        instance = manager.get_service_status("svc-1")
        metrics = manager.get_service_metrics("svc-1").data
        assert instance.memory_usage_mb == 80.0
        assert metrics.memory_peak_mb == 120.0
        assert metrics.errors == 1
        assert instance.error_count == 1
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_successful_probe_records_sample(sleeper_launcher) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"status": "healthy", "memory_mb": 42.5, "cpu_time": 0.25})

    bus = LifecycleBus()
    manager = _manager(sleeper_launcher, handler, bus=bus)
    try:
        await manager.start_agent_service(_config())
        async with bus.subscribe() as queue:
            result = await manager.health.check_health("svc-1")
            event = queue.get_nowait()

        assert result.success and result.data is True
        assert seen == ["/health"]
        instance = manager.get_service_status("svc-1")
        assert instance.state == ServiceState.RUNNING
        assert instance.last_health_check is not None
        assert instance.memory_usage_mb == 42.5
        assert manager.get_service_metrics("svc-1").data.requests == 1
        assert event.type == LifecycleEventType.SERVICE_HEALTH
        assert event.service_id == "svc-1"
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_failed_probe_marks_error(sleeper_launcher) -> None:
    healthy = {"value": False}

    def handler(request: httpx.Request) -> httpx.Response:
        if healthy["value"]:
            return httpx.Response(200, json={"status": "healthy", "memory_mb": 1.0})
        return httpx.Response(503, json={"status": "starting"})

    manager = _manager(sleeper_launcher, handler)
    try:
        await manager.start_agent_service(_config())

        assert (await manager.health.check_health("svc-1")).data is False
        instance = manager.get_service_status("svc-1")
        assert instance.state == ServiceState.ERROR
        assert instance.error_count == 1
        assert instance.last_error.startswith("Health check failed")

        healthy["value"] = True
        assert (await manager.health.check_health("svc-1")).data is True
        assert instance.state == ServiceState.RUNNING
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_check_all_covers_every_service(sleeper_launcher) -> None:
    manager = _manager(sleeper_launcher, http_probe=False)
    try:
        await manager.start_agent_service(_config("svc-1"))
        await manager.start_agent_service(_config("svc-2"))

        assert await manager.health.check_all() == {"svc-1": True, "svc-2": True}
    finally:
        await manager.shutdown()


@pytest.mark.anyio
async def test_unknown_service(sleeper_launcher) -> None:
    manager = _manager(sleeper_launcher, http_probe=False)

    assert (await manager.health.check_health("ghost")).data is False
    assert manager.health.get_metrics("ghost").error.code == ErrorCode.SERVICE_NOT_FOUND


@pytest.mark.anyio
async def test_dispatch_task_posts_to_execute(sleeper_launcher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path != "/execute":
            return httpx.Response(404)
        body = request.read()
        if b"bad" in body:
            return httpx.Response(200, json={"success": False, "error": {"message": "worker exploded"}})
        return httpx.Response(200, json={"success": True, "data": {"done": True}})

    manager = _manager(sleeper_launcher, handler)
    try:
        await manager.start_agent_service(_config())

        ok = await manager.dispatch_task("svc-1", "t1", {"prompt": "good"})
        assert ok.success and ok.data == {"done": True}

        failed = await manager.dispatch_task("svc-1", "t2", {"prompt": "bad"})
        assert failed.error.code == ErrorCode.TASK_EXECUTION_ERROR
        assert failed.error.details == "worker exploded"

        metrics = manager.get_service_metrics("svc-1").data
        assert metrics.requests == 2
        assert metrics.errors == 1

        missing = await manager.dispatch_task("ghost", "t3")
        assert missing.error.code == ErrorCode.SERVICE_NOT_FOUND
    finally:
        await manager.shutdown()
