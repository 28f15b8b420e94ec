"""In-memory record of active agents."""

from __future__ import annotations

import threading

from worldseed.model import AgentInfo


class AgentRepository:
    """Thread-safe ``id -> AgentInfo`` table. Nothing survives a restart."""

    def __init__(self) -> None:
        self._agents: dict[str, AgentInfo] = {}
        self._lock = threading.Lock()

    def add(self, info: AgentInfo) -> None:
        with self._lock:
            self._agents[info.id] = info

    def remove(self, agent_id: str) -> AgentInfo | None:
        with self._lock:
            return self._agents.pop(agent_id, None)

    def get(self, agent_id: str) -> AgentInfo | None:
        with self._lock:
            return self._agents.get(agent_id)

    def list(self) -> list[AgentInfo]:
        with self._lock:
            return list(self._agents.values())

    def __contains__(self, agent_id: str) -> bool:
        with self._lock:
            return agent_id in self._agents

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)
