"""HTTP API exposing the process supervisor."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from aiteam.api.deps import get_runtime, unwrap
from aiteam.core.models import AgentServiceConfig, ServiceInstance, ServiceMetrics
from aiteam.runtime import TeamRuntime

router = APIRouter(prefix="/services", tags=["services"])


class ServiceCreateRequest(BaseModel):
    id: str = Field(..., description="Stable service identifier")
    name: Optional[str] = Field(default=None, description="Display name, defaults to the id")
    type: str = Field(..., description="Agent type served by the process")
    port: Optional[int] = Field(default=None, description="Fixed port; allocated when omitted")
    capabilities: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    auto_restart: bool = False
    restart_delay: float = Field(default=5.0, ge=0)

    def to_config(self) -> AgentServiceConfig:
        return AgentServiceConfig(
            id=self.id,
            name=self.name or self.id,
            type=self.type,
            port=self.port,
            capabilities=list(self.capabilities),
            environment=dict(self.environment),
            auto_restart=self.auto_restart,
            restart_delay=self.restart_delay,
        )


class ServiceResponse(BaseModel):
    id: str
    type: str
    status: str
    port: Optional[int]
    pid: Optional[int]
    uptime: int
    error_count: int
    restart_count: int
    last_error: Optional[str]
    last_health_check: Optional[datetime]

    @classmethod
    def from_instance(cls, instance: ServiceInstance) -> "ServiceResponse":
        return cls(
            id=instance.id,
            type=instance.type,
            status=instance.state.value,
            port=instance.port,
            pid=instance.pid,
            uptime=instance.uptime_seconds,
            error_count=instance.error_count,
            restart_count=instance.restart_count,
            last_error=instance.last_error,
            last_health_check=instance.last_health_check,
        )


class MetricsResponse(BaseModel):
    id: str
    requests: int
    errors: int
    avg_response_time_ms: float
    memory_peak_mb: float
    cpu_peak: float
    uptime: int

    @classmethod
    def from_metrics(cls, metrics: ServiceMetrics) -> "MetricsResponse":
        return cls(
            id=metrics.id,
            requests=metrics.requests,
            errors=metrics.errors,
            avg_response_time_ms=metrics.avg_response_time_ms,
            memory_peak_mb=metrics.memory_peak_mb,
            cpu_peak=metrics.cpu_peak,
            uptime=metrics.uptime_seconds,
        )


class HealthCheckResponse(BaseModel):
    id: str
    healthy: bool


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def start_service(
    request: ServiceCreateRequest,
    runtime: TeamRuntime = Depends(get_runtime),
) -> ServiceResponse:
    instance = unwrap(await runtime.orchestrator.start_agent_service(request.to_config()))
    return ServiceResponse.from_instance(instance)


@router.get("", response_model=List[ServiceResponse])
async def list_services(runtime: TeamRuntime = Depends(get_runtime)) -> List[ServiceResponse]:
    return [ServiceResponse.from_instance(inst) for inst in runtime.supervisor.get_all_services_status()]


@router.get("/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> ServiceResponse:
    instance = runtime.supervisor.get_service_status(service_id)
    if instance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown service")
    return ServiceResponse.from_instance(instance)


@router.delete("/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_service(service_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> None:
    unwrap(await runtime.orchestrator.stop_agent_service(service_id))


@router.post("/{service_id}/restart", response_model=ServiceResponse)
async def restart_service(service_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> ServiceResponse:
    instance = unwrap(await runtime.supervisor.restart_agent_service(service_id))
    await runtime.orchestrator.settle()
    return ServiceResponse.from_instance(instance)


@router.get("/{service_id}/metrics", response_model=MetricsResponse)
async def service_metrics(service_id: str, runtime: TeamRuntime = Depends(get_runtime)) -> MetricsResponse:
    return MetricsResponse.from_metrics(unwrap(runtime.supervisor.get_service_metrics(service_id)))


@router.post("/{service_id}/health", response_model=HealthCheckResponse)
async def check_service_health(
    service_id: str,
    runtime: TeamRuntime = Depends(get_runtime),
) -> HealthCheckResponse:
    healthy = unwrap(await runtime.supervisor.health.check_health(service_id))
    return HealthCheckResponse(id=service_id, healthy=healthy)
