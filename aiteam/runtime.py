"""Application runtime composition helpers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from aiteam.config import Config
from aiteam.coordination.service import AgentCoordinationService
from aiteam.core.event_log import EventLog
from aiteam.core.lifecycle_bus import LifecycleBus
from aiteam.core.store import RecordStore, store_from_url
from aiteam.orchestration.orchestrator import Orchestrator
from aiteam.supervisor.launcher import Launcher, python_module_launcher
from aiteam.supervisor.manager import AgentServicesManager
from aiteam.supervisor.ports import PortPool

logger = logging.getLogger(__name__)


@dataclass
class TeamRuntime:
    """Single owner of all coordinator state, built once per process."""

    config: Config
    store: RecordStore
    bus: LifecycleBus
    supervisor: AgentServicesManager
    coordination: AgentCoordinationService
    orchestrator: Orchestrator
    started: bool = False

    async def start(self) -> None:
        """Reconcile with the store, then start the background loops."""
        if self.started:
            return
        await self.supervisor.initialize()
        await self.coordination.initialize()
        await self.orchestrator.start()
        self.supervisor.start_monitoring()
        self.coordination.start()
        self.started = True
        logger.info("Coordinator runtime started (%s)", self.config.environment)

    async def shutdown(self) -> None:
        if not self.started:
            return
        await self.coordination.stop()
        await self.supervisor.shutdown()
        await self.orchestrator.settle()
        await self.orchestrator.stop()
        self.started = False
        logger.info("Coordinator runtime stopped")


def build_runtime(
    config: Config,
    *,
    store: Optional[RecordStore] = None,
    launcher: Launcher = python_module_launcher,
    http_client: Optional[httpx.AsyncClient] = None,
) -> TeamRuntime:
    """Wire the supervisor, registry and orchestrator around one store and bus."""
    store = store if store is not None else store_from_url(config.database_url)
    bus = LifecycleBus()
    supervisor = AgentServicesManager(
        store=store,
        bus=bus,
        settings=config.supervisor,
        ports=PortPool(config.supervisor.port_min, config.supervisor.port_max),
        launcher=launcher,
        database_url=config.database_url,
        http_client=http_client,
    )
    coordination = AgentCoordinationService(
        store=store,
        settings=config.coordination,
        event_log=EventLog(config.coordination.event_log_size),
    )
    orchestrator = Orchestrator(bus=bus, supervisor=supervisor, coordination=coordination)
    return TeamRuntime(
        config=config,
        store=store,
        bus=bus,
        supervisor=supervisor,
        coordination=coordination,
        orchestrator=orchestrator,
    )
