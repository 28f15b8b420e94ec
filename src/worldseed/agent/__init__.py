"""Agent runtime: the per-goal action loop and its memory."""

from worldseed.agent.loop import AgentLoop, LoopOutcome, run_agent
from worldseed.agent.memory import Memory

__all__ = ["AgentLoop", "LoopOutcome", "Memory", "run_agent"]
