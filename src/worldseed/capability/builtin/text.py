"""Text capabilities that need neither the planner nor the host system."""

from __future__ import annotations

from typing import ClassVar

from worldseed.capability.base import Capability, CapabilityError, CapabilityOk, CapabilityResult


class EchoCapability(Capability):
    name: ClassVar[str] = "echo"
    description: ClassVar[str] = "Repeat the input back."

    async def execute(self, text: str) -> CapabilityResult:
        return CapabilityOk(output=f"Echo: {text}")


class ResultCapability(Capability):
    """Record a final answer verbatim."""

    name: ClassVar[str] = "result"
    description: ClassVar[str] = "Record the final result of the goal."

    async def execute(self, text: str) -> CapabilityResult:
        return CapabilityOk(output=text.strip())


class RecallCapability(Capability):
    """Search the hosting loop's memory for entries mentioning the input."""

    name: ClassVar[str] = "recall"
    description: ClassVar[str] = "Search earlier memory entries for the given words."

    max_hits: ClassVar[int] = 5

    async def execute(self, text: str) -> CapabilityResult:
        memory = self.context.memory
        if memory is None:
            return CapabilityError(output="No memory available")

        query = text.strip()
        if not query:
            return CapabilityError(output="No search terms provided")

        hits = memory.search(query, limit=self.max_hits)
        if not hits:
            return CapabilityOk(output=f"No memory entries match: {query}")
        return CapabilityOk(output="\n".join(hits))
