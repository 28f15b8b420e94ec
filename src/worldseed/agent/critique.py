"""PASS/FAIL judgment of one dispatched action."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from worldseed.capability.base import FAIL, PASS

if TYPE_CHECKING:
    from worldseed.capability.base import CapabilityResult
    from worldseed.llm.planner import Planner

CRITIQUE_PREFIX = "critique -> "

CRITIQUE_PROMPT_TEMPLATE = """\
Critique the last action of an autonomous agent.
Goal: {goal}
Action: {action}
Result: {result}

Rubric: PASS if the result is correct and moves the goal forward, \
FAIL if it is an error, irrelevant, or repeats earlier work.
Reply with PASS or FAIL followed by a one-line reason.
"""

_VERDICT_RE = re.compile(r"\b(PASS|FAIL)\b", re.IGNORECASE)


@dataclass(frozen=True)
class Critique:
    verdict: str
    reason: str

    @property
    def passed(self) -> bool:
        return self.verdict == PASS

    def entry(self) -> str:
        return f"{CRITIQUE_PREFIX}{self.verdict}: {self.reason}"


def parse_critique(reply: str) -> Critique:
    """The first PASS/FAIL token decides; no token counts as PASS."""
    text = " ".join(reply.split())
    m = _VERDICT_RE.search(text)
    if m is None:
        return Critique(PASS, text or "no verdict given")
    reason = text[m.end():].lstrip(" :-.,").strip() or "no reason given"
    return Critique(m.group(1).upper(), reason)


def critique_from_result(result: CapabilityResult) -> Critique | None:
    if result.verdict is None:
        return None
    verdict = FAIL if result.verdict.upper() == FAIL else PASS
    return Critique(verdict, result.verdict_reason or verdict.lower())


async def critique(
    goal: str,
    action: str,
    result: CapabilityResult,
    planner: Planner,
    result_text: str | None = None,
) -> Critique:
    """Take the result's own verdict, or ask the planner to judge it."""
    own = critique_from_result(result)
    if own is not None:
        return own
    reply = await planner.complete(
        CRITIQUE_PROMPT_TEMPLATE.format(
            goal=goal,
            action=action,
            result=result.output if result_text is None else result_text,
        )
    )
    return parse_critique(reply)
