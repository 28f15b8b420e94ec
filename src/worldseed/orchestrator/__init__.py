"""Isolated execution units and their log streams."""

from worldseed.orchestrator.buffer import LogBuffer
from worldseed.orchestrator.isolation import (
    ContainerStrategy,
    IsolationError,
    IsolationStrategy,
    ProcessStrategy,
    UnitHandle,
    UnitSpec,
    VMStrategy,
    select_strategy,
)
from worldseed.orchestrator.repository import AgentRepository
from worldseed.orchestrator.service import AgentOrchestrator, UnknownUnitError

__all__ = [
    "AgentOrchestrator",
    "AgentRepository",
    "ContainerStrategy",
    "IsolationError",
    "IsolationStrategy",
    "LogBuffer",
    "ProcessStrategy",
    "UnitHandle",
    "UnitSpec",
    "UnknownUnitError",
    "VMStrategy",
    "select_strategy",
]
