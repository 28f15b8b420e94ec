"""Tests for worldseed.supervisor — subgoal decomposition and unit polling."""

from __future__ import annotations

import asyncio

import pytest

from worldseed.config import SupervisorConfig
from worldseed.orchestrator.service import AgentOrchestrator, UnknownUnitError
from worldseed.supervisor.service import Supervisor, parse_subgoals, split_sentences
from conftest import FakeStrategy

FAST = SupervisorConfig(poll_interval=0.01, seconds_per_loop=1.0)


class PromptPlanner:
    """Answers by prompt kind: decomposition, next subgoal, or retry."""

    def __init__(self, decompose: str = "", next_subgoal: str = "DONE: finished", retry: str = "try again") -> None:
        self.decompose = decompose
        self.next_subgoal = next_subgoal
        self.retry = retry
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if prompt.startswith("Split the following goal"):
            return self.decompose
        if prompt.startswith("We attempted"):
            return self.retry
        return self.next_subgoal


class SlowStrategy(FakeStrategy):
    """Takes ``delay`` seconds to bring each unit up."""

    def __init__(self, delay: float, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.launching = asyncio.Event()

    async def launch(self, spec, buffer):
        self.launching.set()
        await asyncio.sleep(self.delay)
        return await super().launch(spec, buffer)


def _succeeds(n: int, spec) -> list[str]:
    return [f"working on unit {n}", "LLM signaled DONE"]


def _supervisor(strategy: FakeStrategy, planner: PromptPlanner) -> tuple[Supervisor, AgentOrchestrator]:
    orch = AgentOrchestrator(strategy=strategy)
    return Supervisor(orch, planner, config=FAST), orch


class TestParsing:
    def test_numbered_and_bulleted(self) -> None:
        reply = "Plan:\n1. fetch the page\n2) count the links\n- report the count\nThanks"
        assert parse_subgoals(reply) == ["fetch the page", "count the links", "report the count"]

    def test_no_items(self) -> None:
        assert parse_subgoals("just do it") == []

    def test_split_sentences(self) -> None:
        assert split_sentences("task one. task two!") == ["task one", "task two"]
        assert split_sentences("single task") == ["single task"]


class TestSupervisorRun:
    async def test_one_unit_per_sentence(self) -> None:
        strategy = FakeStrategy(_succeeds)
        supervisor, orch = _supervisor(strategy, PromptPlanner())
        sid = await supervisor.start("task one. task two.", loops=5)
        status = await supervisor.wait(sid, timeout=10)

        assert not status.running
        assert len(status.info.unit_ids) == 2
        assert [spec.goal for spec in strategy.specs] == [
            "Main goal: task one. task two.\nSubgoal: task one",
            "Main goal: task one. task two.\nSubgoal: task two",
        ]
        assert status.result == "DONE: finished"
        assert "Subgoal 'task one' completed" in status.supervisor_log
        assert "Subgoal 'task two' completed" in status.supervisor_log
        assert all(unit.stopped for unit in strategy.units)

        first = status.info.unit_ids[0]
        assert status.unit_logs[first] == ["working on unit 0", "LLM signaled DONE"]

    async def test_planner_subgoals(self) -> None:
        strategy = FakeStrategy(_succeeds)
        planner = PromptPlanner(decompose="1. fetch example.com\n2. summarize it")
        supervisor, _ = _supervisor(strategy, planner)
        sid = await supervisor.start("summarize example.com", loops=5)
        status = await supervisor.wait(sid, timeout=10)

        assert [spec.goal.split("Subgoal: ")[1] for spec in strategy.specs] == [
            "fetch example.com",
            "summarize it",
        ]
        assert "Planner split the goal into 2 subgoals" in status.supervisor_log

    async def test_next_subgoal_results(self) -> None:
        strategy = FakeStrategy(_succeeds)
        planner = PromptPlanner(decompose="1. only step")
        supervisor, _ = _supervisor(strategy, planner)
        sid = await supervisor.start("goal", loops=5)
        await supervisor.wait(sid, timeout=10)

        next_prompts = [p for p in planner.prompts if p.startswith("Goal: ")]
        assert "Previous results: LLM signaled DONE." in next_prompts[0]

    async def test_already_done(self) -> None:
        strategy = FakeStrategy(_succeeds)
        supervisor, _ = _supervisor(strategy, PromptPlanner(decompose="DONE: nothing to do"))
        sid = await supervisor.start("goal", loops=5)
        status = await supervisor.wait(sid, timeout=10)

        assert status.result == "DONE: nothing to do"
        assert strategy.specs == []

    async def test_retry_after_unfinished_unit(self) -> None:
        def _script(n: int, spec) -> list[str]:
            return ["Agent completed loops"] if n == 0 else ["LLM signaled DONE"]

        strategy = FakeStrategy(_script)
        planner = PromptPlanner(decompose="1. build the thing", retry="build it properly")
        supervisor, _ = _supervisor(strategy, planner)
        sid = await supervisor.start("ship it", loops=5)
        status = await supervisor.wait(sid, timeout=10)

        assert len(strategy.specs) == 2
        assert strategy.specs[1].goal.endswith("Subgoal: build it properly (attempt 2)")
        assert (
            "Retrying subgoal 'build the thing' as 'build it properly (attempt 2)'"
            in status.supervisor_log
        )
        assert "Subgoal 'build the thing' completed" in status.supervisor_log

    async def test_unit_exit_without_marker_is_retried(self) -> None:
        def _script(n: int, spec) -> list[str]:
            return ["crashed"] if n == 0 else ["LLM signaled DONE"]

        strategy = FakeStrategy(_script, linger=False)
        supervisor, _ = _supervisor(strategy, PromptPlanner(decompose="1. step"))
        sid = await supervisor.start("goal", loops=5)
        await supervisor.wait(sid, timeout=10)
        assert len(strategy.specs) == 2


class TestSupervisorStop:
    async def test_stop_clears_bookkeeping(self) -> None:
        strategy = FakeStrategy(["still working"])
        supervisor, orch = _supervisor(strategy, PromptPlanner(decompose="1. long task"))
        sid = await supervisor.start("goal", loops=50)
        while not strategy.units:
            await asyncio.sleep(0.01)
        unit_id = strategy.specs[0].id

        assert await supervisor.stop(sid)
        assert supervisor.list() == []
        assert supervisor.status(sid) is None
        assert strategy.units[0].stopped
        assert not orch.is_active(unit_id)
        with pytest.raises(UnknownUnitError):
            orch.all_log_lines(unit_id)

    async def test_stop_during_slow_launch(self) -> None:
        strategy = SlowStrategy(0.2, ["still working"])
        supervisor, orch = _supervisor(strategy, PromptPlanner(decompose="1. long task"))
        sid = await supervisor.start("goal", loops=50)
        await strategy.launching.wait()

        assert await supervisor.stop(sid)
        assert len(strategy.units) == 1
        assert strategy.units[0].stopped
        assert orch.list() == []

    async def test_stop_unknown(self) -> None:
        supervisor, _ = _supervisor(FakeStrategy(), PromptPlanner())
        assert not await supervisor.stop("missing")

    async def test_shutdown(self) -> None:
        strategy = FakeStrategy(["still working"])
        supervisor, _ = _supervisor(strategy, PromptPlanner(decompose="1. a"))
        await supervisor.start("goal one", loops=50)
        await supervisor.start("goal two", loops=50)
        await asyncio.sleep(0.05)
        await supervisor.shutdown()
        assert supervisor.list() == []
