"""Liveness probing and lightweight performance counters for agent services."""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Tuple

import httpx

from aiteam.config import SupervisorSettings
from aiteam.core.lifecycle_bus import LifecycleBus
from aiteam.core.models import (
    LifecycleEvent,
    LifecycleEventType,
    ServiceInstance,
    ServiceMetrics,
    ServiceState,
    utcnow,
)
from aiteam.core.periodic import PeriodicTask
from aiteam.core.result import ErrorCode, Result

if TYPE_CHECKING:
    from aiteam.supervisor.manager import AgentServicesManager

logger = logging.getLogger(__name__)

RESPONSE_TIME_WINDOW = 100


@dataclass(slots=True)
class _Counters:
    requests: int = 0
    response_times: Deque[float] = field(default_factory=lambda: deque(maxlen=RESPONSE_TIME_WINDOW))
    memory_peak_mb: float = 0.0
    cpu_peak: float = 0.0
    last_cpu_sample: Optional[Tuple[float, float]] = None
    snapshot: Optional[ServiceMetrics] = None


class HealthMonitor:
    """Advisory health checker: records state, never stops or restarts a process."""

    def __init__(
        self,
        supervisor: AgentServicesManager,
        *,
        settings: SupervisorSettings,
        bus: Optional[LifecycleBus] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._supervisor = supervisor
        self._settings = settings
        self._bus = bus
        self._client = client
        self._owns_client = client is None
        self._counters: Dict[str, _Counters] = {}
        self._loop = PeriodicTask("health-monitor", settings.health_interval, self.check_all)

    # -- tracking -----------------------------------------------------------------

    def track(self, service_id: str) -> None:
        """Start counting for a service; counters survive auto-restarts."""
        if service_id not in self._counters:
            self._counters[service_id] = _Counters()
            self._refresh(service_id)

    def forget(self, service_id: str) -> None:
        self._counters.pop(service_id, None)

    # -- counters -----------------------------------------------------------------

    def record_request(self, service_id: str, latency_ms: float) -> None:
        counters = self._counters.get(service_id)
        if counters is None:
            return
        counters.requests += 1
        counters.response_times.append(latency_ms)
        self._refresh(service_id)

    def record_error(self, service_id: str) -> None:
        instance = self._supervisor.get_service_status(service_id)
        if instance is None:
            return
        instance.error_count += 1
        self._refresh(service_id)

    def record_usage(self, service_id: str, memory_mb: float, cpu_time: Optional[float]) -> None:
        """Fold a usage sample reported by the service into the peaks."""
        counters = self._counters.get(service_id)
        instance = self._supervisor.get_service_status(service_id)
        if counters is None or instance is None:
            return
        instance.memory_usage_mb = memory_mb
        counters.memory_peak_mb = max(counters.memory_peak_mb, memory_mb)
        if cpu_time is not None:
            now = time.monotonic()
            if counters.last_cpu_sample is not None:
                prev_cpu, prev_wall = counters.last_cpu_sample
                elapsed = now - prev_wall
                if elapsed > 0:
                    instance.cpu_usage = round(max(0.0, cpu_time - prev_cpu) / elapsed * 100, 2)
                    counters.cpu_peak = max(counters.cpu_peak, instance.cpu_usage)
            counters.last_cpu_sample = (cpu_time, now)
        self._refresh(service_id)

    def get_metrics(self, service_id: str) -> Result[ServiceMetrics]:
        counters = self._counters.get(service_id)
        instance = self._supervisor.get_service_status(service_id)
        if counters is None or instance is None or counters.snapshot is None:
            return Result.fail(ErrorCode.SERVICE_NOT_FOUND, f"Service {service_id} not found")
        counters.snapshot.uptime_seconds = instance.uptime_seconds
        return Result.ok(counters.snapshot)

    def _refresh(self, service_id: str) -> None:
        counters = self._counters[service_id]
        instance = self._supervisor.get_service_status(service_id)
        times = counters.response_times
        avg = sum(times) / len(times) if times else 0.0
        counters.snapshot = ServiceMetrics(
            id=service_id,
            requests=counters.requests,
            errors=instance.error_count if instance else 0,
            avg_response_time_ms=round(avg, 2),
            memory_peak_mb=counters.memory_peak_mb,
            cpu_peak=counters.cpu_peak,
            uptime_seconds=instance.uptime_seconds if instance else 0,
        )

    # -- probing ------------------------------------------------------------------

    async def check_health(self, service_id: str) -> Result[bool]:
        """Probe one service and record the outcome on its status."""
        instance = self._supervisor.get_service_status(service_id)
        if instance is None or instance.state not in (ServiceState.RUNNING, ServiceState.ERROR):
            return Result.ok(False)

        try:
            if not self._supervisor.is_process_alive(service_id):
                instance.state = ServiceState.ERROR
                instance.last_error = "Process not running"
                logger.warning("Health check: service %s has no live process", service_id)
                return Result.ok(False)

            latency_ms: Optional[float] = None
            if instance.port and self._settings.http_probe:
                started = time.perf_counter()
                try:
                    payload = await self._probe(instance)
                except (httpx.HTTPError, ValueError) as exc:
                    instance.state = ServiceState.ERROR
                    instance.last_error = f"Health check failed: {exc!r}"
                    self.record_error(service_id)
                    logger.warning("Health probe failed for %s: %r", service_id, exc)
                    return Result.ok(False)
                latency_ms = (time.perf_counter() - started) * 1000
                self.record_request(service_id, latency_ms)
                self.record_usage(
                    service_id,
                    float(payload.get("memory_mb") or 0.0),
                    payload.get("cpu_time"),
                )

            instance.last_health_check = utcnow()
            instance.state = ServiceState.RUNNING
            if self._bus is not None:
                self._bus.publish(
                    LifecycleEvent(
                        type=LifecycleEventType.SERVICE_HEALTH,
                        service_id=service_id,
                        details={"latency_ms": latency_ms},
                    )
                )
            return Result.ok(True)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Health check for %s raised", service_id)
            return Result.fail(
                ErrorCode.HEALTH_CHECK_ERROR,
                "Failed to perform health check",
                details=str(exc),
            )

    async def check_all(self) -> Dict[str, bool]:
        """Check every tracked service concurrently."""
        service_ids: List[str] = [status.id for status in self._supervisor.get_all_services_status()]
        outcomes = await asyncio.gather(*(self._check_bounded(sid) for sid in service_ids))
        return dict(zip(service_ids, outcomes))

    async def _check_bounded(self, service_id: str) -> bool:
        try:
            result = await asyncio.wait_for(
                self.check_health(service_id),
                timeout=self._settings.health_timeout * 2,
            )
        except asyncio.TimeoutError:
            logger.warning("Health check for %s timed out", service_id)
            self.record_error(service_id)
            return False
        return bool(result.success and result.data)

    async def _probe(self, instance: ServiceInstance) -> Dict[str, Any]:
        response = await self.client.get(
            f"http://{self._settings.host}:{instance.port}/health",
            timeout=self._settings.health_timeout,
        )
        response.raise_for_status()
        return response.json()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._settings.health_timeout)
        return self._client

    # -- lifecycle ----------------------------------------------------------------

    def start(self) -> None:
        self._loop.start()

    async def stop(self) -> None:
        await self._loop.stop()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
