"""Build and test runners — detect the project kind and judge the outcome.

Both capabilities set a verdict on their result (``PASS`` when the command
exits 0), and the output starts with the verdict on its own line.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from worldseed.capability.base import (
    FAIL,
    PASS,
    Capability,
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)
from worldseed.capability.builtin.shell import run_command
from worldseed.capability.truncation import clip_tail

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600.0
LOG_CHAR_LIMIT = 1_500  # tail of the build log kept in the result


@dataclass(frozen=True)
class ProjectKind:
    name: str
    markers: tuple[str, ...]  # file names or glob patterns
    build: str
    test: str


PROJECT_KINDS: tuple[ProjectKind, ...] = (
    ProjectKind("python", ("pyproject.toml", "setup.py"), "python -m compileall -q .", "python -m pytest -q"),
    ProjectKind("node", ("package.json",), "npm run build --if-present", "npm test"),
    ProjectKind("rust", ("Cargo.toml",), "cargo build", "cargo test"),
    ProjectKind("go", ("go.mod",), "go build ./...", "go test ./..."),
    ProjectKind("dotnet", ("*.sln", "*.csproj"), "dotnet build -warnaserror", "dotnet test -v minimal"),
    ProjectKind("make", ("Makefile",), "make", "make test"),
)


def detect_project(workdir: str | os.PathLike[str]) -> ProjectKind | None:
    """The first project kind whose markers exist directly in ``workdir``."""
    root = Path(workdir)
    if not root.is_dir():
        return None
    for kind in PROJECT_KINDS:
        if any(any(root.glob(marker)) for marker in kind.markers):
            return kind
    return None


class _ProjectCapability(Capability):
    """Run the detected project's build or test command."""

    step: ClassVar[str]

    timeout: float = DEFAULT_TIMEOUT

    def _target_dir(self, text: str) -> str:
        workdir = self.context.workdir
        sub = text.strip().strip("'\"")
        if sub:
            candidate = os.path.join(workdir, sub)
            if os.path.isdir(candidate):
                return candidate
        return workdir

    async def execute(self, text: str) -> CapabilityResult:
        target = self._target_dir(text)
        kind = detect_project(target)
        if kind is None:
            return CapabilityError(output=f"No project found in {target}")

        command = getattr(kind, self.step)
        logger.info("Running %s %s: %s", kind.name, self.step, command)
        outcome = await run_command(command, cwd=target, timeout=self.timeout)

        if outcome.exit_code == 0:
            return CapabilityOk(
                output=f"{PASS}\n{clip_tail(outcome.stdout, LOG_CHAR_LIMIT)}",
                verdict=PASS,
                verdict_reason=f"{kind.name} {self.step} succeeded",
            )
        return CapabilityError(
            output=f"{FAIL}\n{clip_tail(outcome.stdout + outcome.stderr, LOG_CHAR_LIMIT)}",
            verdict=FAIL,
            verdict_reason=f"{kind.name} {self.step} exited with {outcome.exit_code}",
        )


class BuildCapability(_ProjectCapability):
    name: ClassVar[str] = "build"
    description: ClassVar[str] = "Build the project in the working directory (or a subdirectory)."
    step: ClassVar[str] = "build"


class TestCapability(_ProjectCapability):
    name: ClassVar[str] = "test"
    description: ClassVar[str] = "Run the project's test suite."
    step: ClassVar[str] = "test"

    __test__ = False  # not a pytest class
