"""Decide from a unit's log whether its subgoal is done."""

from __future__ import annotations

import enum
import json
from collections.abc import Iterable, Sequence
from typing import Any, Callable, Protocol, runtime_checkable


class Completion(enum.Enum):
    SUCCESS = "success"
    FINISHED = "finished"  # Unit ran out of loops without succeeding


@runtime_checkable
class CompletionDetector(Protocol):
    def check(self, lines: Sequence[str]) -> Completion | None:
        """Inspect every line seen so far; None means keep waiting."""
        ...


class MarkerDetector:
    """Looks for the agent loop's completion log lines anywhere in the log."""

    def __init__(
        self,
        success_markers: Iterable[str] = ("LLM signaled DONE", "Planner indicated completion"),
        finished_markers: Iterable[str] = ("Agent completed loops",),
    ) -> None:
        self.success_markers = [m.casefold() for m in success_markers]
        self.finished_markers = [m.casefold() for m in finished_markers]

    def check(self, lines: Sequence[str]) -> Completion | None:
        folded = [line.casefold() for line in lines]
        if any(m in line for line in folded for m in self.success_markers):
            return Completion.SUCCESS
        if any(m in line for line in folded for m in self.finished_markers):
            return Completion.FINISHED
        return None


class JsonResultDetector:
    """Treats a structured result on the newest line as success.

    ``accept`` decides whether a parsed JSON value is the expected result,
    e.g. ``lambda v: isinstance(v, dict) and len(v) == 12``.
    """

    def __init__(self, accept: Callable[[Any], bool] | None = None) -> None:
        self.accept = accept or (lambda value: isinstance(value, dict) and bool(value))

    def check(self, lines: Sequence[str]) -> Completion | None:
        if not lines:
            return None
        try:
            value = json.loads(lines[-1])
        except ValueError:
            return None
        return Completion.SUCCESS if self.accept(value) else None


def detect(detectors: Iterable[CompletionDetector], lines: Sequence[str]) -> Completion | None:
    """Success from any detector wins over a finished-without-success signal."""
    finished = False
    for detector in detectors:
        result = detector.check(lines)
        if result is Completion.SUCCESS:
            return result
        if result is Completion.FINISHED:
            finished = True
    return Completion.FINISHED if finished else None
