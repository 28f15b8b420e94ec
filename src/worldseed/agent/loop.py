"""The agent loop — plan, parse, sanitize, dispatch, evaluate, advance."""

from __future__ import annotations

import enum
import logging
import os
from typing import TYPE_CHECKING

from worldseed.agent.critique import critique
from worldseed.agent.instruction import (
    Instruction,
    clean_line,
    first_line,
    is_done,
    parse_instruction,
    prepare_input,
    safety_violation,
    synthetic_instruction,
)
from worldseed.agent.memory import Memory, relieve_pressure
from worldseed.capability.base import FAIL, PASS, Capability, CapabilityContext, CapabilityResult
from worldseed.capability.builtin.build import detect_project
from worldseed.capability.registry import CapabilityRegistry
from worldseed.capability.truncation import clip
from worldseed.config import AgentConfig
from worldseed.model import AgentProfile, get_profile

if TYPE_CHECKING:
    from worldseed.agent.sinks import LogSink
    from worldseed.llm.planner import Planner

logger = logging.getLogger(__name__)

PLAN_PROMPT_TEMPLATE = """\
You are an autonomous agent.
Goal: {goal}
Loops remaining: {remaining}
Current context: {context}
Memory:
{memory}
Available tools:
{tools}
{hint}Respond ONLY with '<tool> <input>' using one of the tool names above. \
If unsure which tool fits, use 'chat' with a helpful question. \
Reply with 'DONE' when the goal is complete.
"""

INVALID_TOOL_HINT = "The tool name '{name}' is invalid. Choose one of: {tools}."

REPEAT_REQUEST = (
    "summarize progress so far and propose a genuinely different next step "
    "instead of repeating: {instruction}"
)

WEB_SUMMARY_TEMPLATE = """\
Summarize the following page content in a few sentences, keeping only what \
matters for the goal: {goal}

{content}
"""


class LoopOutcome(enum.Enum):
    """Why did the loop stop?"""

    DONE = "done"  # Planner signaled completion
    LOOPS_EXHAUSTED = "loops_exhausted"
    CRITIQUE_BUDGET = "critique_budget"
    UNRESOLVED_ACTIONS = "unresolved_actions"
    NO_PROGRESS = "no_progress"  # Repeated the same step too often
    ABORTED = "aborted"  # Planner error


def _log_to_logger(line: str) -> None:
    logger.info(line)


def memory_entry(name: str, text: str, result: str) -> str:
    """``"{name} {input} => {result}"``, without a doubled space for empty input."""
    action = f"{name} {text}".strip()
    return f"{action} => {result}"


class AgentLoop:
    """Drive one goal to completion against a planner and a registry.

    Usage:
        loop = AgentLoop(goal, planner, registry, config=AgentConfig(loops=10))
        entries = await loop.run()
        loop.outcome, loop.iterations
    """

    def __init__(
        self,
        goal: str,
        planner: Planner,
        registry: CapabilityRegistry,
        config: AgentConfig | None = None,
        log: LogSink | None = None,
        workdir: str | None = None,
        memory: Memory | None = None,
        profile: AgentProfile | None = None,
        loops: int | None = None,
    ) -> None:
        self.goal = goal
        self.planner = planner
        self.registry = registry
        self.config = config or AgentConfig()
        self.log = log or _log_to_logger
        self.workdir = workdir or self.config.workdir or os.getcwd()
        self.loops = self.config.loops if loops is None else loops
        if memory is None:
            memory = Memory(self.config.memory_ceiling_bytes, log=self.log)
        self.memory = memory
        self.memory.bind_log(self.log)
        self.profile = profile or get_profile(None)

        self.outcome: LoopOutcome | None = None
        self.iterations = 0

        self._context = goal
        self._seen: set[str] = set()
        self._last: str | None = None
        self._repeats = 0
        self._unresolved = 0
        self._critique_failures = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self) -> list[str]:
        """Run until an exit condition. Returns the memory entries."""
        self._emit(f"Starting {self.profile.name} with goal: {self.goal}")
        try:
            while self.loops <= 0 or self.iterations < self.loops:
                outcome = await self._step()
                if outcome is not None:
                    self.outcome = outcome
                    break
            else:
                self.outcome = LoopOutcome.LOOPS_EXHAUSTED
                self._emit("Agent completed loops")
        except Exception as e:
            logger.error("Agent loop aborted: %s", e, exc_info=True)
            self._emit(f"Agent aborted: {e}")
            self.outcome = LoopOutcome.ABORTED

        logger.info(
            "Agent finished: outcome=%s iterations=%d memory=%d",
            self.outcome.value,
            self.iterations,
            len(self.memory),
        )
        return self.memory.entries

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------

    async def _step(self) -> LoopOutcome | None:
        self.iterations += 1
        total = self.loops if self.loops > 0 else "unlimited"
        self._emit(f"--- Loop {self.iterations} of {total} ---")

        # PLAN
        await relieve_pressure(self.memory, self.planner, self._emit)
        prompt = self._plan_prompt()
        reply = await self.planner.complete(prompt)
        self._emit(f"Planner returned action: '{first_line(reply)}'")
        if is_done(reply):
            return self._done()

        # PARSE
        instruction = parse_instruction(reply)
        forced = False
        if instruction is None:
            self._emit("Planner returned no usable action")
            if self._count_unresolved():
                return LoopOutcome.UNRESOLVED_ACTIONS
            instruction, forced = synthetic_instruction(), True
        line = clean_line(reply) or instruction.text

        # Unknown capability: re-prompt with a hint, then fall back to chat
        capability = self.registry.get(instruction.name)
        attempts = 0
        while capability is None and not forced and attempts < self.config.reprompt_attempts:
            attempts += 1
            self._emit(
                f"Tool '{instruction.name}' not found, re-prompting "
                f"({attempts}/{self.config.reprompt_attempts})"
            )
            hint = INVALID_TOOL_HINT.format(name=instruction.name, tools=self._tool_list())
            reply = await self.planner.complete(f"{prompt}\n{hint}")
            if is_done(reply):
                return self._done()
            retried = parse_instruction(reply)
            if retried is None:
                continue
            instruction, line = retried, clean_line(reply)
            capability = self.registry.get(instruction.name)

        if capability is None:
            return await self._fall_back_to_chat(instruction, line)
        if not forced:
            self._unresolved = 0

        instruction = prepare_input(instruction, capability.shell_class)

        # Anti-repetition, on what the planner asked for (rejected or not)
        if not forced:
            key = instruction.text.casefold() if self.config.repeat_ignore_case else instruction.text
            if key == self._last or key in self._seen:
                self._repeats += 1
                self._remember(f"repeat-detected {instruction.text}")
                self._emit("Repeated command with no progress")
                if self._repeats >= self.config.max_repeats:
                    self._emit(f"No progress after {self._repeats} repeats, aborting")
                    return LoopOutcome.NO_PROGRESS
                instruction = Instruction("chat", REPEAT_REQUEST.format(instruction=instruction.text))
                capability = self.registry.get("chat")
                if capability is None:
                    self._remember("unknown chat -> no execution")
                    return None
            else:
                self._repeats = 0
                self._seen.add(key)
                self._last = key

        # SANITIZE
        reason = safety_violation(instruction, capability.shell_class)
        if reason is not None:
            self._emit(f"Rejected instruction '{instruction.text}': {reason}")
            instruction = synthetic_instruction()
            capability = self.registry.get(instruction.name)
            if capability is None:
                self._remember(f"unknown {instruction.name} -> no execution")
                return None

        # DISPATCH
        result, text = await self._dispatch(capability, instruction)
        follow_up = await self._auto_build(capability)

        # EVALUATE
        judged = self._verdict_source(result, follow_up)
        verdict = await critique(self.goal, instruction.text, judged, self.planner, result_text=text)
        self._remember(verdict.entry())
        if verdict.passed:
            self._critique_failures = 0
        else:
            self._critique_failures += 1
            self._emit(
                f"Critique failed ({self._critique_failures}/{self.config.max_critique_failures})"
            )
            if self._critique_failures >= self.config.max_critique_failures:
                self._emit("Critique retry budget exhausted")
                return LoopOutcome.CRITIQUE_BUDGET

        # ADVANCE
        self._advance(text)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _plan_prompt(self) -> str:
        remaining = self.loops - self.iterations + 1 if self.loops > 0 else "unlimited"
        hint = f"{self.profile.hint}\n" if self.profile.hint else ""
        return PLAN_PROMPT_TEMPLATE.format(
            goal=self.goal,
            remaining=remaining,
            context=self._context,
            memory=self.memory.transcript() or "none",
            tools=self.registry.describe(),
            hint=hint,
        )

    def _tool_list(self) -> str:
        return ", ".join(sorted(self.registry.names()))

    def _done(self) -> LoopOutcome:
        self._emit("LLM signaled DONE")
        self._emit("Planner indicated completion.")
        return LoopOutcome.DONE

    def _count_unresolved(self) -> bool:
        """Count one unresolved action. True when the limit is reached."""
        self._unresolved += 1
        if self._unresolved >= self.config.max_unresolved:
            self._emit(f"Unresolved action limit reached ({self._unresolved})")
            return True
        return False

    async def _fall_back_to_chat(self, instruction: Instruction, line: str) -> LoopOutcome | None:
        name = instruction.name
        chat = self.registry.get("chat")
        if chat is None:
            self._emit("Chat tool is not registered. Skipping this step.")
            self._remember(f"unknown {name} -> no execution")
        else:
            self._emit(f"Tool '{name}' not found. Falling back to chat.")
            result = await chat(line)
            text = clip(result.output, self.config.result_char_limit)
            self._remember(f"unknown {name} -> chat {line} => {text}")
            self._advance(text)

        if self._count_unresolved():
            return LoopOutcome.UNRESOLVED_ACTIONS
        return None

    async def _dispatch(
        self, capability: Capability, instruction: Instruction
    ) -> tuple[CapabilityResult, str]:
        result = await capability(instruction.input)
        text = result.output
        if capability.name == "web" and not result.is_error and text.strip():
            text = (
                await self.planner.complete(
                    WEB_SUMMARY_TEMPLATE.format(goal=self.goal, content=text)
                )
            ).strip()
        text = clip(text, self.config.result_char_limit)
        self._remember(memory_entry(instruction.name, instruction.input, text))
        self._emit(text)
        return result, text

    async def _auto_build(self, capability: Capability) -> CapabilityResult | None:
        """Run ``build``, then ``test`` if the build passed, after a shell
        command inside a project tree. Returns the last follow-up result."""
        if not (self.config.auto_build and capability.shell_class):
            return None
        build = self.registry.get("build")
        if build is None or detect_project(self.workdir) is None:
            return None
        self._emit("Project detected, running build")
        result = await self._follow_up(build)
        if result.verdict != PASS:
            return result

        test = self.registry.get("test")
        if test is None:
            return result
        self._emit("Build passed, running tests")
        return await self._follow_up(test)

    async def _follow_up(self, capability: Capability) -> CapabilityResult:
        result = await capability("")
        self._remember(
            memory_entry(capability.name, "", clip(result.output, self.config.result_char_limit))
        )
        return result

    @staticmethod
    def _verdict_source(
        result: CapabilityResult, follow_up: CapabilityResult | None
    ) -> CapabilityResult:
        if follow_up is None or follow_up.verdict is None:
            return result
        if result.verdict == FAIL:
            return result
        return follow_up

    def _advance(self, text: str) -> None:
        self._context = f"previous result: {text}; determine next step"

    def _remember(self, entry: str) -> None:
        self.memory.append(entry)

    def _emit(self, line: str) -> None:
        self.log(line)


async def run_agent(
    goal: str,
    planner: Planner,
    loops: int | None = None,
    log: LogSink | None = None,
    registry: CapabilityRegistry | None = None,
    memory: Memory | None = None,
    workdir: str | None = None,
    config: AgentConfig | None = None,
    profile: AgentProfile | None = None,
) -> list[str]:
    """Run one agent loop and return its memory entries.

    When no registry is given a fresh one is created and initialized with
    the built-ins and any discovered extensions.
    """
    config = config or AgentConfig()
    log = log or _log_to_logger
    workdir = workdir or config.workdir or os.getcwd()
    if memory is None:
        memory = Memory(config.memory_ceiling_bytes, log=log)

    if registry is None:
        registry = CapabilityRegistry()
        context = CapabilityContext(
            planner=planner,
            memory=memory,
            log=log,
            workdir=workdir,
            registry=registry,
        )
        registry.initialize(context, plugin_dir=config.plugin_dir)

    loop = AgentLoop(
        goal,
        planner,
        registry,
        config=config,
        log=log,
        workdir=workdir,
        memory=memory,
        profile=profile,
        loops=loops,
    )
    return await loop.run()
