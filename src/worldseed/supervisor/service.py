"""Supervisor: split a goal into subgoals and see each one through a unit.

The supervisor never touches a unit directly: it holds unit ids and goes
through the orchestrator contract (start, stop, new/all log lines).
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from worldseed.config import SupervisorConfig
from worldseed.model import AgentType, SupervisorInfo, SupervisorStatus, gen_id
from worldseed.orchestrator.service import UnknownUnitError
from worldseed.supervisor.completion import (
    Completion,
    CompletionDetector,
    MarkerDetector,
    detect,
)

if TYPE_CHECKING:
    from worldseed.llm.planner import Planner
    from worldseed.orchestrator.service import AgentOrchestrator

logger = logging.getLogger(__name__)

DECOMPOSE_PROMPT_TEMPLATE = """\
Split the following goal into a short numbered list of subgoals. \
Each subgoal must state a measurable completion condition.
Goal: {goal}
"""

NEXT_SUBGOAL_PROMPT_TEMPLATE = (
    "Goal: {goal}. Previous results: {results}. "
    "Suggest the next subgoal in a short phrase that includes a clear success metric "
    "and a check that tells when it is done. "
    "If the goal is accomplished respond with 'DONE: <result>'."
)

RETRY_PROMPT_TEMPLATE = (
    "We attempted the subgoal '{subgoal}' but did not complete it. "
    "Last result: '{last}'. "
    "Suggest a new concise instruction that includes a measurable objective "
    "and states a check that returns DONE when it is met."
)

_LIST_ITEM_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+(?P<item>.+?)\s*$")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def parse_subgoals(reply: str) -> list[str]:
    """Numbered or bulleted items of ``reply``."""
    items = []
    for line in reply.splitlines():
        m = _LIST_ITEM_RE.match(line)
        if m:
            items.append(m.group("item"))
    return items


def split_sentences(goal: str) -> list[str]:
    sentences = [s.strip().rstrip(".!?").strip() for s in _SENTENCE_RE.split(goal.strip())]
    return [s for s in sentences if s] or [goal.strip()]


@dataclass
class SupervisorState:
    """Mutable run state, touched only by the supervisor's control task."""

    id: str
    goal: str
    loop_budget: int
    unit_ids: list[str] = field(default_factory=list)
    log: list[str] = field(default_factory=list)
    results: list[str] = field(default_factory=list)
    result: str | None = None
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    launches: set[asyncio.Future] = field(default_factory=set)  # starts not yet in unit_ids

    def info(self) -> SupervisorInfo:
        return SupervisorInfo(id=self.id, goal=self.goal, unit_ids=list(self.unit_ids))


class Supervisor:
    """Runs goals as sequences of subgoals, one execution unit per attempt.

    Usage:
        supervisor = Supervisor(orchestrator, planner)
        sid = await supervisor.start("task one. task two.", loops=5)
        status = await supervisor.wait(sid, timeout=60)
        await supervisor.stop(sid)
    """

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        planner: Planner,
        config: SupervisorConfig | None = None,
        detectors: list[CompletionDetector] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.planner = planner
        self.config = config or SupervisorConfig()
        self.detectors: list[CompletionDetector] = detectors or [MarkerDetector()]
        self._states: dict[str, SupervisorState] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, goal: str, loops: int = 5) -> str:
        state = SupervisorState(id=gen_id(), goal=goal, loop_budget=loops)
        self._states[state.id] = state
        state.task = asyncio.create_task(self._run(state))
        logger.info("Supervisor %s started: %s", state.id, goal)
        return state.id

    def list(self) -> list[SupervisorInfo]:
        return [state.info() for state in self._states.values()]

    def status(self, supervisor_id: str) -> SupervisorStatus | None:
        state = self._states.get(supervisor_id)
        if state is None:
            return None

        unit_logs: dict[str, list[str]] = {}
        for unit_id in list(state.unit_ids):
            try:
                unit_logs[unit_id] = self.orchestrator.all_log_lines(unit_id)
            except UnknownUnitError:
                unit_logs[unit_id] = []

        return SupervisorStatus(
            info=state.info(),
            unit_logs=unit_logs,
            supervisor_log=list(state.log),
            result=state.result,
            running=state.task is not None and not state.task.done(),
        )

    async def wait(self, supervisor_id: str, timeout: float | None = None) -> SupervisorStatus | None:
        """Wait for the run to finish (or ``timeout``), then return its status."""
        state = self._states.get(supervisor_id)
        if state is None:
            return None
        if state.task is not None:
            await asyncio.wait({state.task}, timeout=timeout)
        return self.status(supervisor_id)

    async def stop(self, supervisor_id: str) -> bool:
        """Cancel the run, stop every unit it spawned, drop its bookkeeping."""
        state = self._states.pop(supervisor_id, None)
        if state is None:
            return False

        state.cancelled.set()
        if state.task is not None and not state.task.done():
            done, _ = await asyncio.wait({state.task}, timeout=self.config.poll_interval * 2)
            if not done:
                state.task.cancel()

        # A start cut short by the cancel still produces a unit.
        for launch in list(state.launches):
            try:
                unit_id = await launch
            except Exception as e:
                logger.debug("Pending launch for supervisor %s failed: %s", supervisor_id, e)
                continue
            if unit_id not in state.unit_ids:
                state.unit_ids.append(unit_id)
        state.launches.clear()

        for unit_id in list(state.unit_ids):
            await self._stop_unit(unit_id)
            state.log.append(f"Stopped agent {unit_id}")
            self.orchestrator.collect(unit_id)

        logger.info("Supervisor %s stopped", supervisor_id)
        return True

    async def shutdown(self) -> None:
        for supervisor_id in list(self._states):
            await self.stop(supervisor_id)

    # ------------------------------------------------------------------
    # Control task
    # ------------------------------------------------------------------

    def _log(self, state: SupervisorState, message: str) -> None:
        state.log.append(message)
        logger.info("[%s] %s", state.id[:8], message)

    async def _run(self, state: SupervisorState) -> None:
        try:
            subgoals = await self._decompose(state)
            iteration = 0
            while subgoals is not None and not state.cancelled.is_set() and (
                state.loop_budget <= 0 or iteration < state.loop_budget
            ):
                iteration += 1
                self._log(state, f"Planning iteration {iteration}")

                if subgoals:
                    subgoal = subgoals.pop(0)
                else:
                    plan = (await self.planner.complete(self._next_prompt(state))).strip()
                    self._log(state, f"LLM: {plan}")
                    if plan.upper().startswith("DONE"):
                        state.result = plan
                        break
                    subgoal = plan

                if state.cancelled.is_set():
                    break
                await self._handle_subgoal(state, subgoal)

            self._log(state, "Supervisor finished")
        except asyncio.CancelledError:
            self._log(state, "Supervisor cancelled")
            raise
        except Exception as e:
            logger.error("Supervisor %s failed: %s", state.id, e, exc_info=True)
            self._log(state, f"Supervisor error: {e}")

    async def _decompose(self, state: SupervisorState) -> list[str] | None:
        """Initial subgoals, or None when the planner says the goal is already done."""
        reply = await self.planner.complete(DECOMPOSE_PROMPT_TEMPLATE.format(goal=state.goal))
        if reply.strip().upper().startswith("DONE"):
            state.result = reply.strip()
            return None

        subgoals = parse_subgoals(reply)
        if subgoals:
            self._log(state, f"Planner split the goal into {len(subgoals)} subgoals")
        else:
            subgoals = split_sentences(state.goal)
            self._log(state, f"Split the goal into {len(subgoals)} sentences")
        return subgoals

    def _next_prompt(self, state: SupervisorState) -> str:
        results = "; ".join(state.results) if state.results else "none"
        return NEXT_SUBGOAL_PROMPT_TEMPLATE.format(goal=state.goal, results=results)

    async def _handle_subgoal(self, state: SupervisorState, subgoal: str) -> None:
        attempt = 1
        current = subgoal
        while not state.cancelled.is_set():
            combined = f"Main goal: {state.goal}\nSubgoal: {current}"
            unit_id = await self._launch(state, combined)
            state.unit_ids.append(unit_id)
            self._log(state, f"Started agent {unit_id} for subgoal '{current}'")

            if state.cancelled.is_set():
                # stop() may already have swept the unit list
                await self._stop_unit(unit_id)
                return

            completed = await self._wait_for_completion(state, unit_id)

            logs = self._all_lines(unit_id)
            if logs:
                state.results.append(logs[-1])
            self._log(state, f"Agent {unit_id} finished subgoal '{current}'")
            await self._stop_unit(unit_id)

            if completed:
                self._log(state, f"Subgoal '{subgoal}' completed")
                return
            if state.cancelled.is_set():
                return

            attempt += 1
            last = logs[-1] if logs else "none"
            revised = await self.planner.complete(
                RETRY_PROMPT_TEMPLATE.format(subgoal=current, last=last)
            )
            current = f"{revised.strip()} (attempt {attempt})"
            self._log(state, f"Retrying subgoal '{subgoal}' as '{current}'")

    async def _launch(self, state: SupervisorState, goal: str) -> str:
        """Start one unit.

        The start is shielded: if the control task is cancelled meanwhile the
        launch runs on and stays in ``state.launches`` for ``stop`` to sweep.
        """
        launch = asyncio.ensure_future(
            self.orchestrator.start(goal, AgentType.DEFAULT, state.loop_budget)
        )
        state.launches.add(launch)
        try:
            unit_id = await asyncio.shield(launch)
        except Exception:
            state.launches.discard(launch)
            raise
        state.launches.discard(launch)
        return unit_id

    async def _wait_for_completion(self, state: SupervisorState, unit_id: str) -> bool:
        loop = asyncio.get_running_loop()
        if state.loop_budget > 0:
            budget = state.loop_budget * self.config.seconds_per_loop
        else:
            budget = self.config.default_timeout
        deadline = loop.time() + budget
        consumer = f"supervisor:{state.id}"
        seen: list[str] = []

        while not state.cancelled.is_set():
            active = self.orchestrator.is_active(unit_id)
            try:
                seen.extend(self.orchestrator.new_log_lines(unit_id, consumer))
            except UnknownUnitError:
                return False

            completion = detect(self.detectors, seen)
            if completion is not None:
                return completion is Completion.SUCCESS
            if not active:
                # Exited without a marker; everything it wrote has been read.
                return False

            remaining = deadline - loop.time()
            if remaining <= 0:
                self._log(state, f"Agent {unit_id} timed out after {budget:g}s")
                return False
            await self._pause(state, min(self.config.poll_interval, remaining))
        return False

    @staticmethod
    async def _pause(state: SupervisorState, seconds: float) -> None:
        """Sleep, waking early when the run is cancelled."""
        try:
            await asyncio.wait_for(state.cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _all_lines(self, unit_id: str) -> list[str]:
        try:
            return self.orchestrator.all_log_lines(unit_id)
        except UnknownUnitError:
            return []

    async def _stop_unit(self, unit_id: str) -> None:
        try:
            await self.orchestrator.stop(unit_id)
        except UnknownUnitError:
            logger.debug("Unit %s already collected", unit_id)
