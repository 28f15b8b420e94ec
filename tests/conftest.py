"""Shared fakes for worldseed tests."""

from __future__ import annotations

import asyncio
from typing import Callable, ClassVar

import pytest

from worldseed.agent.critique import CRITIQUE_PROMPT_TEMPLATE
from worldseed.agent.memory import Memory
from worldseed.capability.base import CapabilityContext
from worldseed.capability.registry import CapabilityRegistry
from worldseed.orchestrator.buffer import LogBuffer
from worldseed.orchestrator.isolation import (
    IsolationError,
    IsolationStrategy,
    UnitHandle,
    UnitSpec,
)

_CRITIQUE_MARKER = CRITIQUE_PROMPT_TEMPLATE.splitlines()[0]


class SequencePlanner:
    """Replies from a script, in order; the last reply repeats once exhausted.

    Critique prompts are answered with ``critique`` and do not consume the
    script, so a test can describe only the planning replies it cares about.
    """

    def __init__(self, replies: list[str], critique: str = "PASS looks fine") -> None:
        self.replies = list(replies)
        self.critique = critique
        self.prompts: list[str] = []
        self._index = 0

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if prompt.startswith(_CRITIQUE_MARKER):
            return self.critique
        if not self.replies:
            return ""
        reply = self.replies[min(self._index, len(self.replies) - 1)]
        self._index += 1
        return reply

    @property
    def plan_calls(self) -> int:
        return self._index


class ConstantPlanner:
    """Always the same reply, for every kind of prompt."""

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        return self.reply


class FailingPlanner:
    async def complete(self, prompt: str) -> str:
        raise RuntimeError("planner down")


@pytest.fixture
def log_lines() -> list[str]:
    return []


@pytest.fixture
def make_registry(tmp_path, log_lines):
    """Build an initialized registry bound to a planner, rooted in tmp_path."""

    def _make(planner, memory: Memory | None = None, plugin_dir=None) -> CapabilityRegistry:
        registry = CapabilityRegistry()
        context = CapabilityContext(
            planner=planner,
            memory=memory,
            log=log_lines.append,
            workdir=str(tmp_path),
            registry=registry,
        )
        registry.initialize(context, plugin_dir=str(plugin_dir) if plugin_dir else None)
        return registry

    return _make


# ---------------------------------------------------------------------------
# In-process execution units
# ---------------------------------------------------------------------------


class FakeUnit(UnitHandle):
    """Writes scripted lines into its buffer; exits unless ``linger`` is set."""

    def __init__(self, unit_id: str, buffer: LogBuffer, lines: list[str], linger: bool) -> None:
        super().__init__(unit_id, buffer)
        self.lines = lines
        self.linger = linger
        self.stopped = False
        self._alive = True

    async def run(self) -> None:
        for line in self.lines:
            self.buffer.append(line)
            await asyncio.sleep(0)
        if not self.linger:
            self._alive = False
            self._exited(0)

    @property
    def alive(self) -> bool:
        return self._alive

    async def stop(self, timeout: float) -> None:
        self._stopping = True
        self.stopped = True
        self._alive = False
        self.buffer.close()


class FakeStrategy(IsolationStrategy):
    """Launches FakeUnits. ``script`` maps the n-th launch to its log lines."""

    mode: ClassVar[str] = "fake"

    def __init__(
        self,
        script: Callable[[int, UnitSpec], list[str]] | list[str] = (),
        linger: bool = True,
        fail: bool = False,
    ) -> None:
        self.script = script
        self.linger = linger
        self.fail = fail
        self.specs: list[UnitSpec] = []
        self.units: list[FakeUnit] = []
        self.tasks: list[asyncio.Task] = []

    async def launch(self, spec: UnitSpec, buffer: LogBuffer) -> UnitHandle:
        if self.fail:
            raise IsolationError("no capacity")
        buffer.attach_loop()
        lines = self.script(len(self.specs), spec) if callable(self.script) else list(self.script)
        self.specs.append(spec)
        unit = FakeUnit(spec.id, buffer, lines, self.linger)
        self.units.append(unit)
        self.tasks.append(asyncio.create_task(unit.run()))
        return unit

    async def settle(self) -> None:
        """Wait until every launched unit has written its script."""
        await asyncio.gather(*self.tasks)
