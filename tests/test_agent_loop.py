"""Tests for worldseed.agent.loop — the plan/dispatch/critique cycle."""

from __future__ import annotations

import shutil
from typing import ClassVar

import pytest

from worldseed.agent.instruction import SYNTHETIC_REQUEST
from worldseed.agent.loop import AgentLoop, LoopOutcome, memory_entry, run_agent
from worldseed.agent.memory import MEMORY_PREFIX, Memory
from worldseed.capability.base import (
    FAIL,
    Capability,
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)
from worldseed.config import AgentConfig
from conftest import ConstantPlanner, FailingPlanner, SequencePlanner


class AlwaysFails(Capability):
    name: ClassVar[str] = "check"

    async def execute(self, text: str) -> CapabilityResult:
        return CapabilityError(output=f"check {text} failed", verdict=FAIL, verdict_reason="bad")


class FakePage(Capability):
    name: ClassVar[str] = "web"

    async def execute(self, text: str) -> CapabilityResult:
        return CapabilityOk(output=f"<html><body>contents of {text}</body></html>")


@pytest.fixture
def make_loop(make_registry, log_lines, tmp_path):
    def _make(planner, loops: int = 5, memory: Memory | None = None, **config) -> AgentLoop:
        registry = make_registry(planner, memory=memory)
        return AgentLoop(
            "list files",
            planner,
            registry,
            config=AgentConfig(**config),
            log=log_lines.append,
            workdir=str(tmp_path),
            memory=memory,
            loops=loops,
        )

    return _make


def test_memory_entry() -> None:
    assert memory_entry("shell", "ls", "a.txt") == "shell ls => a.txt"
    assert memory_entry("build", "", "PASS") == "build => PASS"


class TestCompletion:
    async def test_done_first(self, make_loop, log_lines) -> None:
        loop = make_loop(SequencePlanner(["DONE"]))
        entries = await loop.run()

        assert entries == []
        assert loop.outcome is LoopOutcome.DONE
        assert loop.iterations == 1
        assert "LLM signaled DONE" in log_lines
        assert "Planner indicated completion." in log_lines

    async def test_loops_exhausted(self, make_loop, log_lines) -> None:
        loop = make_loop(SequencePlanner(["echo a", "echo b"]), loops=2)
        entries = await loop.run()

        assert loop.outcome is LoopOutcome.LOOPS_EXHAUSTED
        assert entries == [
            "echo a => Echo: a",
            "critique -> PASS: looks fine",
            "echo b => Echo: b",
            "critique -> PASS: looks fine",
        ]
        assert log_lines[-1] == "Agent completed loops"

    async def test_planner_error_aborts(self, make_loop, log_lines) -> None:
        loop = make_loop(FailingPlanner())
        assert await loop.run() == []
        assert loop.outcome is LoopOutcome.ABORTED
        assert "Agent aborted: planner down" in log_lines


class TestDispatch:
    async def test_shell_then_done(self, make_loop) -> None:
        loop = make_loop(SequencePlanner(["shell echo hi", "DONE"]))
        entries = await loop.run()

        assert loop.iterations == 2
        assert entries[0].startswith("shell echo hi =>")
        assert '"stdout":"hi' in entries[0]
        assert entries[1] == "critique -> PASS: exit code 0"

    async def test_memory_mirrored_to_log(self, make_loop, log_lines) -> None:
        await make_loop(SequencePlanner(["echo a", "DONE"])).run()
        assert f"{MEMORY_PREFIX}echo a => Echo: a" in log_lines
        assert "Echo: a" in log_lines

    async def test_plan_prompt(self, make_loop) -> None:
        planner = SequencePlanner(["echo a", "DONE"])
        await make_loop(planner).run()

        first, second = planner.prompts[0], planner.prompts[2]
        assert "Goal: list files" in first
        assert "Current context: list files" in first
        assert "- shell: " in first and "- chat: " in first
        assert "Current context: previous result: Echo: a; determine next step" in second
        assert "echo a => Echo: a" in second

    async def test_recall_reads_loop_memory(self, make_loop) -> None:
        memory = Memory()
        loop = make_loop(SequencePlanner(["echo alpha", "recall alpha", "DONE"]), memory=memory)
        entries = await loop.run()
        assert entries[2] == "recall alpha => echo alpha => Echo: alpha"

    @pytest.mark.skipif(shutil.which("make") is None, reason="make not installed")
    async def test_auto_build_after_shell(self, make_loop, tmp_path) -> None:
        (tmp_path / "Makefile").write_text("all:\n\t@echo built\ntest:\n\t@echo tested\n")
        entries = await make_loop(SequencePlanner(["shell true", "DONE"])).run()

        assert entries[1] == "build => PASS\nbuilt\n"
        assert entries[2] == "test => PASS\ntested\n"
        assert entries[3] == "critique -> PASS: make test succeeded"

    @pytest.mark.skipif(shutil.which("make") is None, reason="make not installed")
    async def test_failing_tests_fail_the_step(self, make_loop, tmp_path) -> None:
        (tmp_path / "Makefile").write_text("all:\n\t@echo built\ntest:\n\t@exit 1\n")
        entries = await make_loop(SequencePlanner(["shell true", "DONE"])).run()

        assert entries[2].startswith("test => FAIL")
        assert entries[3] == "critique -> FAIL: make test exited with 2"

    @pytest.mark.skipif(shutil.which("make") is None, reason="make not installed")
    async def test_no_tests_after_failed_build(self, make_loop, tmp_path) -> None:
        (tmp_path / "Makefile").write_text("all:\n\t@exit 1\ntest:\n\t@echo tested\n")
        entries = await make_loop(SequencePlanner(["shell true", "DONE"])).run()

        assert entries[1].startswith("build => FAIL")
        assert not any(e.startswith("test =>") for e in entries)
        assert entries[2] == "critique -> FAIL: make build exited with 2"

    async def test_no_auto_build_without_project(self, make_loop) -> None:
        entries = await make_loop(SequencePlanner(["shell true", "DONE"])).run()
        assert not any(e.startswith("build =>") for e in entries)

    async def test_web_result_is_summarized(self, make_registry, log_lines) -> None:
        planner = SequencePlanner(["web http://example.com", "a short summary", "DONE"])
        registry = make_registry(planner)
        registry.register(FakePage())
        loop = AgentLoop("read the page", planner, registry, log=log_lines.append, loops=5)
        entries = await loop.run()

        assert entries[0] == "web http://example.com => a short summary"
        summary_prompt = planner.prompts[1]
        assert "read the page" in summary_prompt
        assert "contents of http://example.com" in summary_prompt


class TestRecovery:
    async def test_unknown_tool_falls_back_to_chat(self, make_loop, log_lines) -> None:
        planner = SequencePlanner(
            ["frobnicate now", "frobnicate again", "frobnicate more", "I cannot do that", "DONE"]
        )
        loop = make_loop(planner)
        entries = await loop.run()

        assert loop.outcome is LoopOutcome.DONE
        assert entries == ["unknown frobnicate -> chat frobnicate more => I cannot do that"]
        assert "Tool 'frobnicate' not found. Falling back to chat." in log_lines

    async def test_reprompt_recovers(self, make_loop) -> None:
        planner = SequencePlanner(["frobnicate now", "echo fixed", "DONE"])
        entries = await make_loop(planner).run()
        assert entries[0] == "echo fixed => Echo: fixed"
        assert "The tool name 'frobnicate' is invalid" in planner.prompts[1]

    async def test_unresolved_limit(self, make_loop, log_lines) -> None:
        loop = make_loop(ConstantPlanner("frobnicate"), loops=10)
        await loop.run()
        assert loop.outcome is LoopOutcome.UNRESOLVED_ACTIONS
        assert loop.iterations == 3
        assert "Unresolved action limit reached (3)" in log_lines

    async def test_unsafe_input_replaced(self, make_loop, log_lines) -> None:
        planner = SequencePlanner(["shell ls; rm -rf /", "progress so far", "DONE"])
        loop = make_loop(planner)
        entries = await loop.run()

        assert entries[0] == f"chat {SYNTHETIC_REQUEST} => progress so far"
        assert any(line.startswith("Rejected instruction 'shell ls; rm -rf /'") for line in log_lines)
        assert loop.outcome is LoopOutcome.DONE


class TestStopConditions:
    async def test_repetition_ends_loop(self, make_loop, log_lines) -> None:
        loop = make_loop(ConstantPlanner("echo hello"), loops=10)
        entries = await loop.run()

        assert loop.outcome is LoopOutcome.NO_PROGRESS
        assert loop.iterations == 4
        assert entries.count("repeat-detected echo hello") == 3
        assert "Repeated command with no progress" in log_lines

    async def test_repeated_rejected_instruction_ends_loop(self, make_loop, log_lines) -> None:
        loop = make_loop(ConstantPlanner("shell ls; rm -rf /"), loops=12)
        entries = await loop.run()

        assert loop.outcome is LoopOutcome.NO_PROGRESS
        assert loop.iterations == 4
        assert entries.count("repeat-detected shell ls; rm -rf /") == 3

    async def test_repetition_without_budget(self, make_loop) -> None:
        loop = make_loop(ConstantPlanner("shell ls; rm -rf /"), loops=0)
        await loop.run()
        assert loop.outcome is LoopOutcome.NO_PROGRESS

    async def test_repeats_compare_exact_text(self, make_loop) -> None:
        planner = SequencePlanner(["echo hello", "echo HELLO", "DONE"])
        entries = await make_loop(planner).run()
        assert not any(e.startswith("repeat-detected") for e in entries)

    async def test_repeats_ignoring_case(self, make_loop) -> None:
        planner = SequencePlanner(["echo hello", "echo HELLO", "DONE"])
        entries = await make_loop(planner, repeat_ignore_case=True).run()
        assert "repeat-detected echo HELLO" in entries

    async def test_critique_budget(self, make_loop, make_registry, log_lines, tmp_path) -> None:
        planner = SequencePlanner(["check 1", "check 2", "check 3", "DONE"])
        registry = make_registry(planner)
        registry.register(AlwaysFails(registry.get("echo").context))
        loop = AgentLoop(
            "verify",
            planner,
            registry,
            log=log_lines.append,
            workdir=str(tmp_path),
            loops=10,
        )
        entries = await loop.run()

        critiques = [e for e in entries if e.startswith("critique -> ")]
        assert critiques == ["critique -> FAIL: bad"] * 3
        assert loop.outcome is LoopOutcome.CRITIQUE_BUDGET
        assert "Critique failed (3/3)" in log_lines
        assert "Critique retry budget exhausted" in log_lines

    async def test_passing_critique_resets_failures(
        self, make_registry, log_lines, tmp_path
    ) -> None:
        planner = SequencePlanner(["check 1", "check 2", "echo ok", "check 3", "DONE"])
        registry = make_registry(planner)
        registry.register(AlwaysFails())
        loop = AgentLoop("verify", planner, registry, log=log_lines.append, loops=10)
        await loop.run()
        assert loop.outcome is LoopOutcome.DONE


async def test_run_agent(tmp_path, log_lines) -> None:
    entries = await run_agent(
        "say x",
        SequencePlanner(["echo x", "DONE"]),
        loops=3,
        log=log_lines.append,
        workdir=str(tmp_path),
        config=AgentConfig(plugin_dir=str(tmp_path / "plugins")),
    )
    assert entries == ["echo x => Echo: x", "critique -> PASS: looks fine"]
