"""Configuration management for the agent coordinator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class SupervisorSettings:
    """Knobs for the process supervisor and health collector."""

    port_min: int = 3001
    port_max: int = 4000
    health_interval: float = 30.0
    health_timeout: float = 5.0
    stop_grace_period: float = 10.0
    restart_pause: float = 2.0
    execute_timeout: float = 300.0
    http_probe: bool = True
    host: str = "127.0.0.1"


@dataclass(frozen=True)
class CoordinationSettings:
    """Knobs for the coordination registry."""

    sweep_interval: float = 60.0
    agent_timeout: float = 300.0
    max_workload: int = 3
    event_log_size: int = 1000


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    azure_openai: Optional[AzureOpenAIConfig] = None
    supervisor: SupervisorSettings = field(default_factory=SupervisorSettings)
    coordination: CoordinationSettings = field(default_factory=CoordinationSettings)
    database_url: str = "memory://"
    environment: str = "development"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")

        azure_config = None
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        supervisor = SupervisorSettings(
            port_min=int(os.getenv("AITEAM_PORT_MIN", "3001")),
            port_max=int(os.getenv("AITEAM_PORT_MAX", "4000")),
            health_interval=float(os.getenv("AITEAM_HEALTH_INTERVAL", "30")),
            health_timeout=float(os.getenv("AITEAM_HEALTH_TIMEOUT", "5")),
            stop_grace_period=float(os.getenv("AITEAM_STOP_GRACE", "10")),
            restart_pause=float(os.getenv("AITEAM_RESTART_PAUSE", "2")),
            execute_timeout=float(os.getenv("AITEAM_EXECUTE_TIMEOUT", "300")),
            http_probe=_env_bool("AITEAM_HTTP_PROBE", True),
            host=os.getenv("AITEAM_SERVICE_HOST", "127.0.0.1"),
        )
        coordination = CoordinationSettings(
            sweep_interval=float(os.getenv("AITEAM_SWEEP_INTERVAL", "60")),
            agent_timeout=float(os.getenv("AITEAM_AGENT_TIMEOUT", "300")),
            max_workload=int(os.getenv("AITEAM_MAX_WORKLOAD", "3")),
            event_log_size=int(os.getenv("AITEAM_EVENT_LOG_SIZE", "1000")),
        )

        return cls(
            azure_openai=azure_config,
            supervisor=supervisor,
            coordination=coordination,
            database_url=os.getenv("DATABASE_URL", "memory://"),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
