"""Agent profiles and orchestration records."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field


def gen_id() -> str:
    return uuid.uuid4().hex


class AgentType(str, enum.Enum):
    DEFAULT = "default"
    RESEARCH = "research"
    HELPER = "helper"

    @classmethod
    def parse(cls, value: str | AgentType | None) -> AgentType:
        """Case-insensitive lookup; unknown or empty values mean DEFAULT."""
        if isinstance(value, AgentType):
            return value
        if not value:
            return cls.DEFAULT
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.DEFAULT


@dataclass(frozen=True)
class AgentProfile:
    """Display name and planner hint for one agent type."""

    name: str
    type: AgentType
    hint: str = ""


PROFILES: dict[AgentType, AgentProfile] = {
    AgentType.DEFAULT: AgentProfile("Default Agent", AgentType.DEFAULT),
    AgentType.RESEARCH: AgentProfile(
        "Research Agent",
        AgentType.RESEARCH,
        hint="Prefer gathering and comparing information (web, list, compare) before acting.",
    ),
    AgentType.HELPER: AgentProfile(
        "Helper Agent",
        AgentType.HELPER,
        hint="Keep steps small and report concrete results with the result tool.",
    ),
}


def get_profile(agent_type: str | AgentType | None) -> AgentProfile:
    return PROFILES[AgentType.parse(agent_type)]


@dataclass
class AgentInfo:
    """An active execution unit as tracked by the agent repository."""

    id: str
    type: AgentType = AgentType.DEFAULT
    goal: str = ""


@dataclass
class SupervisorInfo:
    id: str
    goal: str
    unit_ids: list[str] = field(default_factory=list)


@dataclass
class SupervisorStatus:
    """Aggregated view of one supervisor run."""

    info: SupervisorInfo
    unit_logs: dict[str, list[str]] = field(default_factory=dict)
    supervisor_log: list[str] = field(default_factory=list)
    result: str | None = None
    running: bool = False
