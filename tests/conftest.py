"""Shared fixtures: stand-in child processes for supervisor tests."""
from __future__ import annotations

import asyncio
import sys
from typing import Awaitable, Callable, List

import pytest

from aiteam.core.models import AgentServiceConfig
from aiteam.supervisor.launcher import LaunchSpec, Launcher, service_environment

SLEEPER = "import time; time.sleep(60)"


def script_launcher(*scripts: str) -> Launcher:
    """Launcher running the given scripts in order; the last one repeats."""
    launches: List[str] = []

    def launch(config: AgentServiceConfig, port: int, database_url: str) -> LaunchSpec:
        script = scripts[min(len(launches), len(scripts) - 1)]
        launches.append(script)
        return LaunchSpec(
            argv=[sys.executable, "-c", script],
            env=service_environment(config, port, database_url),
        )

    return launch


async def eventually(predicate: Callable[[], bool], timeout: float = 10.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


@pytest.fixture
def sleeper_launcher() -> Launcher:
    return script_launcher(SLEEPER)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return eventually


@pytest.fixture
def make_launcher() -> Callable[..., Launcher]:
    return script_launcher
