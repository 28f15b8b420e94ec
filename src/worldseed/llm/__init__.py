"""Planner layer, unified via litellm."""

from worldseed.llm.planner import (
    LiteLLMPlanner,
    Planner,
    PlannerConfig,
    StaticPlanner,
    create_planner,
)

__all__ = [
    "LiteLLMPlanner",
    "Planner",
    "PlannerConfig",
    "StaticPlanner",
    "create_planner",
]
