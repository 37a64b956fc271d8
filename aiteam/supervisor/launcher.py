"""Resolve the fixed executable entry point for an agent service."""
from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from aiteam.core.models import AgentServiceConfig

AGENT_SERVICE_MODULE = "aiteam.agents.service"

# Every specialist type is served by the same entry point; AGENT_TYPE picks the worker.
SERVICE_MODULES: Dict[str, str] = {
    "business_analyst": AGENT_SERVICE_MODULE,
    "system_architect": AGENT_SERVICE_MODULE,
    "project_manager": AGENT_SERVICE_MODULE,
    "backend_developer": AGENT_SERVICE_MODULE,
    "frontend_developer": AGENT_SERVICE_MODULE,
    "qa_engineer": AGENT_SERVICE_MODULE,
    "microsoft_reviewer": AGENT_SERVICE_MODULE,
    "workflow_assistant": AGENT_SERVICE_MODULE,
    "echo": AGENT_SERVICE_MODULE,
}


@dataclass(slots=True)
class LaunchSpec:
    """Command line and environment for one child process."""

    argv: List[str]
    env: Dict[str, str] = field(default_factory=dict)


Launcher = Callable[[AgentServiceConfig, int, str], LaunchSpec]


def service_environment(config: AgentServiceConfig, port: int, database_url: str) -> Dict[str, str]:
    """Environment handed to the child: inherited vars, config overrides, identity."""
    env = dict(os.environ)
    env.update(config.environment)
    env.update(
        {
            "AGENT_ID": config.id,
            "AGENT_NAME": config.name,
            "AGENT_TYPE": config.type,
            "AGENT_PORT": str(port),
            "DATABASE_URL": database_url,
        }
    )
    return env


def python_module_launcher(config: AgentServiceConfig, port: int, database_url: str) -> LaunchSpec:
    """Default launcher: ``python -m <module>`` chosen from ``SERVICE_MODULES``."""
    module = SERVICE_MODULES.get(config.type, AGENT_SERVICE_MODULE)
    return LaunchSpec(
        argv=[sys.executable, "-m", module],
        env=service_environment(config, port, database_url),
    )
