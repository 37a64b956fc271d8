"""FastAPI entry-point exposing the agent coordinator."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from aiteam.api.agents import router as agents_router
from aiteam.api.events import router as events_router
from aiteam.api.services import router as services_router
from aiteam.api.tasks import router as tasks_router
from aiteam.config import Config
from aiteam.runtime import TeamRuntime, build_runtime


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(config: Optional[Config] = None, *, runtime: Optional[TeamRuntime] = None) -> FastAPI:
    """Build the API app; the runtime is created lazily when the app starts."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal runtime
        if runtime is None:
            resolved = config or Config.from_env()
            configure_logging(resolved.log_level)
            runtime = build_runtime(resolved)
        await runtime.start()
        app.state.runtime = runtime
        yield
        await runtime.shutdown()

    app = FastAPI(title="AI Team Coordinator", lifespan=lifespan)
    app.include_router(services_router)
    app.include_router(agents_router)
    app.include_router(tasks_router)
    app.include_router(events_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
