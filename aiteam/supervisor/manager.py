"""Process supervisor running each agent service as an isolated child process."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import httpx

from aiteam.config import SupervisorSettings
from aiteam.core.lifecycle_bus import LifecycleBus
from aiteam.core.models import (
    AgentServiceConfig,
    LifecycleEvent,
    LifecycleEventType,
    ServiceInstance,
    ServiceMetrics,
    ServiceState,
    utcnow,
)
from aiteam.core.result import ErrorCode, Result
from aiteam.core.store import SERVICES, RecordStore
from aiteam.supervisor.health import HealthMonitor
from aiteam.supervisor.launcher import Launcher, python_module_launcher
from aiteam.supervisor.ports import PortPool

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ServiceHandle:
    """Live process plus the tasks watching it."""

    config: AgentServiceConfig
    process: asyncio.subprocess.Process
    port: int
    exit_watcher: Optional[asyncio.Task[int]] = None
    pumps: List[asyncio.Task[None]] = field(default_factory=list)
    stopping: bool = False


class AgentServicesManager:
    """Start, stop, restart and observe agent services.

    Ports are released only once the owning process has exited; the exit
    watcher task is the single place that happens. Unexpected non-zero exits
    trigger a delayed restart when the service config asks for one.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        bus: LifecycleBus,
        settings: Optional[SupervisorSettings] = None,
        ports: Optional[PortPool] = None,
        launcher: Launcher = python_module_launcher,
        database_url: str = "memory://",
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or SupervisorSettings()
        self._store = store
        self._bus = bus
        self._ports = ports or PortPool(self._settings.port_min, self._settings.port_max)
        self._launcher = launcher
        self._database_url = database_url
        self._instances: Dict[str, ServiceInstance] = {}
        self._configs: Dict[str, AgentServiceConfig] = {}
        self._handles: Dict[str, _ServiceHandle] = {}
        self._restart_timers: Dict[str, asyncio.Task[None]] = {}
        self._starting: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self.health = HealthMonitor(self, settings=self._settings, bus=bus, client=http_client)

    @property
    def ports(self) -> PortPool:
        return self._ports

    # -- public API ---------------------------------------------------------------

    async def start_agent_service(self, config: AgentServiceConfig) -> Result[ServiceInstance]:
        """Launch a child process for ``config`` and track it.

        A pending auto-restart for the same id is cancelled first.
        """
        self._cancel_restart(config.id)
        async with self._lock_for(config.id):
            return await self._start(config)

    async def stop_agent_service(self, service_id: str) -> Result[None]:
        """Gracefully stop a service, escalating to SIGKILL after the grace period.

        Waits for an in-flight start of the same service and stops its process.
        """
        self._cancel_restart(service_id)
        async with self._lock_for(service_id):
            return await self._stop(service_id)

    async def _start(self, config: AgentServiceConfig) -> Result[ServiceInstance]:
        if config.id in self._handles or config.id in self._starting:
            return Result.fail(
                ErrorCode.SERVICE_ALREADY_EXISTS,
                f"Agent service {config.id} is already running",
            )

        self._starting.add(config.id)
        previous = self._instances.get(config.id)
        port: Optional[int] = None
        process: Optional[asyncio.subprocess.Process] = None
        handle: Optional[_ServiceHandle] = None
        try:
            if config.port is not None:
                if not await self._ports.reserve(config.port):
                    return Result.fail(
                        ErrorCode.NO_AVAILABLE_PORTS,
                        f"Port {config.port} is already in use",
                    )
                port = config.port
            else:
                port = await self._ports.allocate()
                if port is None:
                    return Result.fail(
                        ErrorCode.NO_AVAILABLE_PORTS,
                        f"No available ports in range {self._ports.port_min}-{self._ports.port_max}",
                    )

            instance = ServiceInstance(
                id=config.id,
                type=config.type,
                state=ServiceState.STARTING,
                port=port,
                error_count=previous.error_count if previous else 0,
                restart_count=previous.restart_count if previous else 0,
            )
            self._instances[config.id] = instance
            self._configs[config.id] = config
            self.health.track(config.id)

            launch = self._launcher(config, port, self._database_url)
            process = await asyncio.create_subprocess_exec(
                *launch.argv,
                env=launch.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            handle = _ServiceHandle(config=config, process=process, port=port)
            self._handles[config.id] = handle
            handle.pumps = [
                asyncio.create_task(self._pump_output(config.id, process.stdout, logging.INFO)),
                asyncio.create_task(self._pump_output(config.id, process.stderr, logging.WARNING)),
            ]

            instance.pid = process.pid
            instance.started_at = utcnow()
            instance.last_error = None
            await self._save_service(config, instance)
            instance.state = ServiceState.RUNNING

            logger.info(
                "Started agent service %s (type=%s pid=%s port=%s)",
                config.id,
                config.type,
                process.pid,
                port,
            )
            self._bus.publish(
                LifecycleEvent(
                    type=LifecycleEventType.SERVICE_STARTED,
                    service_id=config.id,
                    details={
                        "pid": process.pid,
                        "port": port,
                        "name": config.name,
                        "agent_type": config.type,
                        "capabilities": list(config.capabilities),
                    },
                )
            )
            # Exit events must follow the started event.
            handle.exit_watcher = asyncio.create_task(self._watch_exit(config.id, handle))
            return Result.ok(instance)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to start agent service %s", config.id)
            await self._abort_start(
                config.id,
                process,
                handle,
                port,
                keep_status=previous is not None,
                reason=str(exc),
            )
            return Result.fail(
                ErrorCode.SERVICE_START_ERROR,
                "Failed to start agent service",
                details=str(exc),
            )
        finally:
            self._starting.discard(config.id)

    async def _stop(self, service_id: str) -> Result[None]:
        instance = self._instances.get(service_id)
        if instance is None:
            return Result.fail(ErrorCode.SERVICE_NOT_FOUND, f"Agent service {service_id} not found")

        try:
            instance.state = ServiceState.STOPPING
            handle = self._handles.get(service_id)
            if handle is not None:
                handle.stopping = True
                await self._terminate(handle)

            self._instances.pop(service_id, None)
            self._configs.pop(service_id, None)
            self.health.forget(service_id)
            instance.state = ServiceState.STOPPED

            await self._store.upsert(SERVICES, service_id, {"status": ServiceState.STOPPED.value})
            logger.info("Stopped agent service %s", service_id)
            self._bus.publish(
                LifecycleEvent(type=LifecycleEventType.SERVICE_STOPPED, service_id=service_id)
            )
            return Result.ok(None)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to stop agent service %s", service_id)
            return Result.fail(
                ErrorCode.SERVICE_STOP_ERROR,
                "Failed to stop agent service",
                details=str(exc),
            )

    async def restart_agent_service(self, service_id: str) -> Result[ServiceInstance]:
        config = self._configs.get(service_id)
        if config is None:
            return Result.fail(
                ErrorCode.SERVICE_NOT_FOUND,
                f"Agent service configuration for {service_id} not found",
            )

        stop_result = await self.stop_agent_service(service_id)
        if not stop_result.success:
            return stop_result  # type: ignore[return-value]

        await asyncio.sleep(self._settings.restart_pause)
        return await self.start_agent_service(config)

    def get_service_status(self, service_id: str) -> Optional[ServiceInstance]:
        return self._instances.get(service_id)

    def get_all_services_status(self) -> List[ServiceInstance]:
        return list(self._instances.values())

    def get_service_config(self, service_id: str) -> Optional[AgentServiceConfig]:
        return self._configs.get(service_id)

    def get_service_metrics(self, service_id: str) -> Result[ServiceMetrics]:
        return self.health.get_metrics(service_id)

    def is_process_alive(self, service_id: str) -> bool:
        handle = self._handles.get(service_id)
        return handle is not None and handle.process.returncode is None

    def has_pending_restart(self, service_id: str) -> bool:
        return service_id in self._restart_timers

    async def dispatch_task(self, service_id: str, task_id: str, payload: Any = None) -> Result[Any]:
        """Run a unit of work on the service's ``/execute`` endpoint."""
        instance = self._instances.get(service_id)
        if instance is None or instance.port is None:
            return Result.fail(ErrorCode.SERVICE_NOT_FOUND, f"Agent service {service_id} not found")
        if not self.is_process_alive(service_id):
            return Result.fail(
                ErrorCode.TASK_EXECUTION_ERROR,
                f"Agent service {service_id} is not running",
            )

        url = f"http://{self._settings.host}:{instance.port}/execute"
        started = time.perf_counter()
        try:
            response = await self.health.client.post(
                url,
                json={"task_id": task_id, "input": payload},
                timeout=self._settings.execute_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.health.record_error(service_id)
            logger.warning("Dispatch of task %s to %s failed: %r", task_id, service_id, exc)
            return Result.fail(
                ErrorCode.TASK_EXECUTION_ERROR,
                f"Agent service {service_id} failed to execute task {task_id}",
                details=repr(exc),
            )

        self.health.record_request(service_id, (time.perf_counter() - started) * 1000)
        if not body.get("success"):
            self.health.record_error(service_id)
            error = body.get("error") or {}
            return Result.fail(
                ErrorCode.TASK_EXECUTION_ERROR,
                f"Task {task_id} failed on agent service {service_id}",
                details=error.get("message") if isinstance(error, dict) else str(error),
            )
        return Result.ok(body.get("data"))

    async def initialize(self) -> int:
        """Mark services left running by a previous coordinator process as stopped."""
        try:
            stale = await self._store.find_many(
                SERVICES,
                status=(ServiceState.RUNNING.value, ServiceState.STARTING.value),
            )
            for record in stale:
                await self._store.update(SERVICES, record["id"], {"status": ServiceState.STOPPED.value})
            if stale:
                logger.info("Marked %d stale agent services as stopped", len(stale))
            return len(stale)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to reconcile agent services with the record store")
            return 0

    def start_monitoring(self) -> None:
        self.health.start()

    async def shutdown(self) -> None:
        """Stop every managed service and the health loop."""
        await self.health.stop()
        for timer in self._restart_timers.values():
            timer.cancel()
        self._restart_timers.clear()
        service_ids = set(self._instances) | self._starting
        results = await asyncio.gather(
            *(self.stop_agent_service(service_id) for service_id in service_ids),
        )
        for result in results:
            if not result.success and result.error is not None:
                logger.warning("Shutdown: %s", result.error.message)

    # -- process plumbing ---------------------------------------------------------

    async def _terminate(self, handle: _ServiceHandle) -> None:
        process = handle.process
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        waiter = handle.exit_watcher or asyncio.ensure_future(process.wait())
        try:
            await asyncio.wait_for(
                asyncio.shield(waiter),
                timeout=self._settings.stop_grace_period,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Service %s ignored SIGTERM for %.1fs, killing pid %s",
                handle.config.id,
                self._settings.stop_grace_period,
                process.pid,
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await waiter

    async def _watch_exit(self, service_id: str, handle: _ServiceHandle) -> int:
        code = await handle.process.wait()
        await asyncio.gather(*handle.pumps, return_exceptions=True)
        await self._ports.release(handle.port)
        if self._handles.get(service_id) is handle:
            del self._handles[service_id]
        if handle.stopping:
            return code

        instance = self._instances.get(service_id)
        if instance is not None:
            if code == 0:
                instance.state = ServiceState.STOPPED
            else:
                instance.state = ServiceState.ERROR
                instance.last_error = f"Process exited with code {code}"
            await self._persist_state(instance)

        log = logger.info if code == 0 else logger.warning
        log("Agent service %s (pid %s) exited with code %s", service_id, handle.process.pid, code)
        self._bus.publish(
            LifecycleEvent(
                type=LifecycleEventType.SERVICE_EXITED,
                service_id=service_id,
                details={"code": code, "pid": handle.process.pid},
            )
        )

        config = self._configs.get(service_id)
        if config is not None and config.auto_restart and code != 0:
            self._schedule_restart(config)
        return code

    def _schedule_restart(self, config: AgentServiceConfig) -> None:
        logger.info("Restarting agent service %s in %.1fs", config.id, config.restart_delay)
        self._restart_timers[config.id] = asyncio.create_task(self._delayed_restart(config))

    def _cancel_restart(self, service_id: str) -> None:
        timer = self._restart_timers.pop(service_id, None)
        if timer is not None:
            timer.cancel()

    def _lock_for(self, service_id: str) -> asyncio.Lock:
        return self._locks.setdefault(service_id, asyncio.Lock())

    async def _delayed_restart(self, config: AgentServiceConfig) -> None:
        await asyncio.sleep(config.restart_delay)
        async with self._lock_for(config.id):
            # A stop or manual start since scheduling unregisters this timer.
            if self._restart_timers.get(config.id) is not asyncio.current_task():
                return
            del self._restart_timers[config.id]
            instance = self._instances.get(config.id)
            if instance is not None:
                instance.restart_count += 1
            result = await self._start(config)
        if not result.success and result.error is not None:
            self._record_process_error(config.id, f"Auto-restart failed: {result.error.message}")

    async def _abort_start(
        self,
        service_id: str,
        process: Optional[asyncio.subprocess.Process],
        handle: Optional[_ServiceHandle],
        port: Optional[int],
        *,
        keep_status: bool,
        reason: str,
    ) -> None:
        """Reap a half-started process and give its port back."""
        if handle is not None:
            handle.stopping = True
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        if handle is not None and handle.exit_watcher is not None:
            await handle.exit_watcher
        else:
            if process is not None:
                await process.wait()
            self._handles.pop(service_id, None)
            await self._ports.release(port)

        if keep_status and service_id in self._instances:
            instance = self._instances[service_id]
            instance.state = ServiceState.ERROR
            instance.last_error = reason
        else:
            self._instances.pop(service_id, None)
            self._configs.pop(service_id, None)
            self.health.forget(service_id)

    def _record_process_error(self, service_id: str, message: str) -> None:
        instance = self._instances.get(service_id)
        if instance is not None:
            instance.state = ServiceState.ERROR
            instance.last_error = message
            self.health.record_error(service_id)
        logger.error("Agent service %s error: %s", service_id, message)
        self._bus.publish(
            LifecycleEvent(
                type=LifecycleEventType.SERVICE_ERROR,
                service_id=service_id,
                details={"error": message},
            )
        )

    async def _pump_output(self, service_id: str, stream: Optional[asyncio.StreamReader], level: int) -> None:
        if stream is None:
            return
        try:
            async for raw in stream:
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    logger.log(level, "[%s] %s", service_id, line)
        except Exception as exc:  # noqa: BLE001
            self._record_process_error(service_id, f"Output stream failed: {exc!r}")

    async def _save_service(self, config: AgentServiceConfig, instance: ServiceInstance) -> None:
        record = instance.to_record()
        record.update(
            {
                "name": config.name,
                "endpoint": config.endpoint,
                "status": ServiceState.RUNNING.value,
                "config": config.to_record(),
                "last_health_check": utcnow().isoformat(),
            }
        )
        await self._store.upsert(SERVICES, config.id, record)

    async def _persist_state(self, instance: ServiceInstance) -> None:
        try:
            await self._store.upsert(SERVICES, instance.id, instance.to_record())
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist state of agent service %s", instance.id)
