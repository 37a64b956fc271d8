"""Core data models shared across coordinator components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AgentStatus(str, Enum):
    """Liveness states of a logical agent."""

    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"
    OFFLINE = "offline"


class ServiceState(str, Enum):
    """Lifecycle states for a process-backed agent service."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    ESCALATED = "escalated"


class AssignmentKind(str, Enum):
    ASSIGNMENT = "assignment"
    ESCALATION = "escalation"


class CoordinationEventType(str, Enum):
    AGENT_STARTED = "agent_started"
    AGENT_STOPPED = "agent_stopped"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    ESCALATION = "escalation"


class LifecycleEventType(str, Enum):
    """Notifications published by the supervisor and health collector."""

    SERVICE_STARTED = "service_started"
    SERVICE_STOPPED = "service_stopped"
    SERVICE_EXITED = "service_exited"
    SERVICE_ERROR = "service_error"
    SERVICE_HEALTH = "service_health"


@dataclass(slots=True)
class AgentRecord:
    """Identity and liveness of one logical worker."""

    id: str
    name: str
    type: str
    status: AgentStatus = AgentStatus.IDLE
    capabilities: Set[str] = field(default_factory=set)
    workload: int = 0
    last_seen: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status.value,
            "capabilities": sorted(self.capabilities),
            "last_seen": _to_iso(self.last_seen),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> AgentRecord:
        return cls(
            id=record["id"],
            name=record.get("name", record["id"]),
            type=record.get("type", "workflow_assistant"),
            status=AgentStatus(record.get("status", AgentStatus.IDLE.value)),
            capabilities=set(record.get("capabilities") or []),
            workload=0,
            last_seen=_from_iso(record.get("last_seen")),
        )


@dataclass(slots=True)
class AgentServiceConfig:
    """Configuration used by the supervisor when launching an agent service."""

    id: str
    name: str
    type: str
    port: Optional[int] = None
    capabilities: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    auto_restart: bool = False
    restart_delay: float = 5.0
    max_memory_mb: Optional[int] = None
    endpoint: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "port": self.port,
            "capabilities": list(self.capabilities),
            "environment": dict(self.environment),
            "auto_restart": self.auto_restart,
            "restart_delay": self.restart_delay,
            "max_memory_mb": self.max_memory_mb,
            "endpoint": self.endpoint,
        }


@dataclass(slots=True)
class ServiceInstance:
    """Runtime status of one OS-process-backed agent service."""

    id: str
    type: str
    state: ServiceState = ServiceState.STARTING
    port: Optional[int] = None
    pid: Optional[int] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_health_check: Optional[datetime] = None
    started_at: Optional[datetime] = None
    memory_usage_mb: float = 0.0
    cpu_usage: float = 0.0
    restart_count: int = 0

    @property
    def uptime_seconds(self) -> int:
        if self.started_at is None or self.state not in (ServiceState.RUNNING, ServiceState.ERROR):
            return 0
        return int((utcnow() - self.started_at).total_seconds())

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.state.value,
            "port": self.port,
            "pid": self.pid,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_health_check": _to_iso(self.last_health_check),
            "started_at": _to_iso(self.started_at),
        }


@dataclass(slots=True)
class ServiceMetrics:
    """Derived performance snapshot for a service."""

    id: str
    requests: int = 0
    errors: int = 0
    avg_response_time_ms: float = 0.0
    memory_peak_mb: float = 0.0
    cpu_peak: float = 0.0
    uptime_seconds: int = 0


@dataclass(slots=True)
class TaskRecord:
    """Unit of work tracked by the coordinator."""

    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: List[str] = field(default_factory=list)
    assigned_agent_id: Optional[str] = None
    result: Any = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "assigned_agent_id": self.assigned_agent_id,
            "result": self.result,
            "created_at": _to_iso(self.created_at),
            "completed_at": _to_iso(self.completed_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> TaskRecord:
        return cls(
            id=record["id"],
            title=record.get("title", record["id"]),
            status=TaskStatus(record.get("status", TaskStatus.PENDING.value)),
            priority=TaskPriority(record.get("priority", TaskPriority.MEDIUM.value)),
            dependencies=list(record.get("dependencies") or []),
            assigned_agent_id=record.get("assigned_agent_id"),
            result=record.get("result"),
            created_at=_from_iso(record.get("created_at")) or utcnow(),
            completed_at=_from_iso(record.get("completed_at")),
        )


@dataclass(slots=True)
class TaskAssignmentRequest:
    """A unit of work to route to the best registered agent."""

    task_id: str
    priority: TaskPriority = TaskPriority.MEDIUM
    preferred_agent_type: Optional[str] = None
    requirements: List[str] = field(default_factory=list)
    context: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class TaskAssignment:
    """Persisted assignment or escalation record."""

    id: str
    task_id: str
    kind: AssignmentKind
    priority: TaskPriority
    message: str
    to_agent_id: Optional[str] = None
    from_agent_id: Optional[str] = None
    to_user_id: Optional[str] = None
    active: bool = True
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "kind": self.kind.value,
            "priority": self.priority.value,
            "message": self.message,
            "to_agent_id": self.to_agent_id,
            "from_agent_id": self.from_agent_id,
            "to_user_id": self.to_user_id,
            "active": self.active,
            "metadata": self.metadata,
            "created_at": _to_iso(self.created_at),
        }


@dataclass(slots=True)
class CoordinationEvent:
    """Observability record appended to the event log."""

    type: CoordinationEventType
    details: Dict[str, Any] = field(default_factory=dict)
    agent_id: Optional[str] = None
    task_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class LifecycleEvent:
    """Typed service lifecycle notification delivered over the lifecycle bus."""

    type: LifecycleEventType
    service_id: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
