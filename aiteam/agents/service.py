"""Entry point of an agent service child process.

Launched by the supervisor as ``python -m aiteam.agents.service`` with
``AGENT_ID``, ``AGENT_TYPE``, ``AGENT_PORT`` and ``DATABASE_URL`` in the
environment. Serves a liveness endpoint and a work-execution endpoint.
"""
from __future__ import annotations

import logging
import os
import resource
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel, Field

from aiteam.agents.base import AgentWorker
from aiteam.agents.catalog import resolve_role
from aiteam.agents.echo import EchoWorker
from aiteam.agents.llm_worker import LLMWorker
from aiteam.config import Config
from aiteam.services.llm_pool import LLMPool, build_llm_pool

logger = logging.getLogger(__name__)


class ExecuteRequest(BaseModel):
    task_id: str = Field(..., description="Identifier of the unit of work")
    input: Any = Field(default=None, description="Task payload")


class ExecuteResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[dict] = None


class HealthResponse(BaseModel):
    status: str
    agent_id: str
    agent_type: str
    uptime: float
    memory_mb: float
    cpu_time: float
    pid: int
    task_count: int


def build_worker(agent_id: str, agent_type: str, llm_pool: Optional[LLMPool] = None) -> AgentWorker:
    """Pick the worker implementation for an agent type."""
    role = resolve_role(agent_type)
    if role.worker == "llm" and llm_pool is not None and llm_pool.has_model():
        return LLMWorker(agent_id, role, llm_pool)
    if role.worker == "llm":
        logger.warning("No language model configured; %s runs with the echo worker", agent_id)
    return EchoWorker(agent_id, role)


def _memory_mb() -> float:
    # ru_maxrss is KiB on Linux and bytes on macOS.
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


def create_agent_app(worker: AgentWorker) -> FastAPI:
    """FastAPI application exposing ``/health`` and ``/execute`` for one worker."""
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await worker.on_start()
        logger.info("Agent service %s (%s) ready", worker.agent_id, worker.agent_type)
        yield
        await worker.on_stop()
        logger.info("Agent service %s shutting down", worker.agent_id)

    app = FastAPI(title=f"Agent service {worker.agent_id}", lifespan=lifespan)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            agent_id=worker.agent_id,
            agent_type=worker.agent_type,
            uptime=round(time.monotonic() - started, 3),
            memory_mb=_memory_mb(),
            cpu_time=time.process_time(),
            pid=os.getpid(),
            task_count=worker.task_count,
        )

    @app.post("/execute", response_model=ExecuteResponse)
    async def execute(request: ExecuteRequest) -> ExecuteResponse:
        result = await worker.execute(request.task_id, request.input)
        if result.success:
            return ExecuteResponse(success=True, data=result.data)
        assert result.error is not None
        return ExecuteResponse(success=False, error=result.error.as_dict())

    return app


def run() -> None:
    config = Config.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    agent_id = os.environ["AGENT_ID"]
    agent_type = os.getenv("AGENT_TYPE", "workflow_assistant")
    port = int(os.environ["AGENT_PORT"])

    worker = build_worker(agent_id, agent_type, build_llm_pool(config.azure_openai))
    app = create_agent_app(worker)
    uvicorn.run(app, host=config.supervisor.host, port=port, log_level=config.log_level.lower())


if __name__ == "__main__":
    run()
