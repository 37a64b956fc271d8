"""Static catalog of specialist agent types."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet

DEFAULT_AGENT_TYPE = "workflow_assistant"


@dataclass(frozen=True)
class AgentRole:
    """What an agent type is for and which capability tags it advertises."""

    type: str
    title: str
    worker: str = "llm"
    capabilities: FrozenSet[str] = field(default_factory=frozenset)


_ROLES = (
    AgentRole(
        "business_analyst",
        "Business Analyst",
        capabilities=frozenset({"requirements", "analysis", "user_stories"}),
    ),
    AgentRole(
        "system_architect",
        "System Architect",
        capabilities=frozenset({"architecture", "design", "technology_selection"}),
    ),
    AgentRole(
        "project_manager",
        "Project Manager",
        capabilities=frozenset({"planning", "estimation", "coordination"}),
    ),
    AgentRole(
        "backend_developer",
        "Backend Developer",
        capabilities=frozenset({"backend", "api", "database"}),
    ),
    AgentRole(
        "frontend_developer",
        "Frontend Developer",
        capabilities=frozenset({"frontend", "ui", "components"}),
    ),
    AgentRole(
        "qa_engineer",
        "QA Engineer",
        capabilities=frozenset({"testing", "quality_assurance", "test_plans"}),
    ),
    AgentRole(
        "microsoft_reviewer",
        "Microsoft Reviewer",
        capabilities=frozenset({"review", "compliance", "best_practices"}),
    ),
    AgentRole(
        DEFAULT_AGENT_TYPE,
        "Workflow Assistant",
        capabilities=frozenset({"workflow", "conflict_resolution"}),
    ),
    AgentRole("echo", "Echo", worker="echo", capabilities=frozenset({"echo"})),
)

AGENT_ROLES: Dict[str, AgentRole] = {role.type: role for role in _ROLES}


def resolve_role(agent_type: str) -> AgentRole:
    """Return the catalog entry for a type, falling back to the workflow assistant."""
    return AGENT_ROLES.get(agent_type, AGENT_ROLES[DEFAULT_AGENT_TYPE])


def default_capabilities(agent_type: str) -> FrozenSet[str]:
    return resolve_role(agent_type).capabilities
