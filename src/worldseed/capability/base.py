"""Base capability classes."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, ClassVar

from worldseed.capability.truncation import OUTPUT_CHAR_LIMIT, clip

if TYPE_CHECKING:
    from worldseed.agent.memory import Memory
    from worldseed.capability.registry import CapabilityRegistry
    from worldseed.llm.planner import Planner

logger = logging.getLogger(__name__)

PASS = "PASS"
FAIL = "FAIL"


@dataclass
class CapabilityResult:
    """Base result from a capability execution.

    ``verdict`` is set by capabilities that judge their own outcome
    (build and test runners, shell exit status). The agent loop takes such
    verdicts verbatim instead of asking the planner for a critique.
    """

    output: str = ""
    is_error: bool = False
    verdict: str | None = None  # PASS | FAIL
    verdict_reason: str = ""


@dataclass
class CapabilityOk(CapabilityResult):
    """Successful capability result."""

    is_error: bool = False


@dataclass
class CapabilityError(CapabilityResult):
    """Failed capability result."""

    is_error: bool = True


@dataclass
class CapabilityContext:
    """Everything a capability may need from the loop hosting it."""

    planner: Planner | None = None
    memory: Memory | None = None
    log: Callable[[str], None] | None = None
    workdir: str = field(default_factory=os.getcwd)
    registry: CapabilityRegistry | None = None

    def emit(self, message: str) -> None:
        if self.log is not None:
            self.log(message)


class Capability(ABC):
    """Base class for all capabilities.

    A capability is a named action: one text input in, one result out.
    Internal faults never escape ``__call__``; they come back as a
    ``CapabilityError`` so the loop always has a result to record.

    Usage:
        class Upper(Capability):
            name = "upper"
            description = "Upper-case the input"

            async def execute(self, text: str) -> CapabilityResult:
                return CapabilityOk(output=text.upper())
    """

    name: ClassVar[str]
    description: ClassVar[str] = ""
    shell_class: ClassVar[bool] = False  # Input is a shell command line

    def __init__(self, context: CapabilityContext | None = None) -> None:
        self.context = context or CapabilityContext()

    async def __call__(self, text: str) -> CapabilityResult:
        """Execute and bound the output."""
        try:
            result = await self.execute(text)
        except Exception as e:
            logger.error("Capability %s execution error: %s", self.name, e, exc_info=True)
            return CapabilityError(output=f"Error executing {self.name}: {e}")

        result.output = clip(result.output, OUTPUT_CHAR_LIMIT)
        return result

    @abstractmethod
    async def execute(self, text: str) -> CapabilityResult:
        """Execute the capability with its raw text input."""
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
