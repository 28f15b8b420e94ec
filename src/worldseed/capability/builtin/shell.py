"""Shell capabilities — run one command line through ``bash -c``.

``shell`` returns a compact JSON record (exit code, bounded stdout/stderr,
files touched in the working directory) so the planner can reason about the
outcome. ``terminal`` returns plain text: stdout on success, stderr (or
stdout when stderr is empty) otherwise.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from dataclasses import dataclass
from typing import ClassVar

from worldseed.capability.base import (
    FAIL,
    PASS,
    Capability,
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)
from worldseed.capability.truncation import clean_terminal_output, truncate_chars

logger = logging.getLogger(__name__)

STREAM_CHAR_LIMIT = 4000
DEFAULT_TIMEOUT = 120.0


@dataclass
class CommandOutcome:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False


async def run_command(
    command: str | list[str],
    cwd: str,
    timeout: float = DEFAULT_TIMEOUT,
    stdin: str | None = None,
    env: dict[str, str] | None = None,
) -> CommandOutcome:
    """Run ``command`` to completion and capture both streams.

    A string is handed to ``bash -c``; a list is executed directly. The child
    runs in its own process group so a timeout kills everything it spawned.
    """
    argv = ["bash", "-c", command] if isinstance(command, str) else list(command)

    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        start_new_session=True,
        env={**os.environ, "TERM": "dumb", **(env or {})},
    )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=stdin.encode("utf-8") if stdin is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()
        return CommandOutcome(
            exit_code=-1,
            stdout="",
            stderr=f"Command timed out after {timeout:g}s",
            timed_out=True,
        )

    return CommandOutcome(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=clean_terminal_output(stdout),
        stderr=clean_terminal_output(stderr),
    )


def _strip_quotes(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


# ---------------------------------------------------------------------------
# Working directory side effects
# ---------------------------------------------------------------------------


def snapshot(workdir: str) -> dict[str, tuple[float, int]]:
    """Top-level entries of ``workdir`` mapped to (mtime, size)."""
    entries: dict[str, tuple[float, int]] = {}
    try:
        with os.scandir(workdir) as it:
            for entry in it:
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                entries[entry.name] = (st.st_mtime, st.st_size)
    except OSError:
        pass
    return entries


def diff_snapshots(
    before: dict[str, tuple[float, int]],
    after: dict[str, tuple[float, int]],
) -> list[str]:
    changes = [f"created {name}" for name in sorted(after.keys() - before.keys())]
    changes += [f"deleted {name}" for name in sorted(before.keys() - after.keys())]
    changes += [
        f"modified {name}"
        for name in sorted(before.keys() & after.keys())
        if before[name] != after[name]
    ]
    return changes


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class ShellCapability(Capability):
    """Run a command and report a structured JSON result."""

    name: ClassVar[str] = "shell"
    description: ClassVar[str] = (
        "Run a bash command line in the working directory. "
        "Returns JSON with exit_code, stdout, stderr and side_effects."
    )
    shell_class: ClassVar[bool] = True

    timeout: float = DEFAULT_TIMEOUT

    async def execute(self, text: str) -> CapabilityResult:
        command = text.strip()
        if not command:
            return CapabilityError(output="No command provided")

        workdir = self.context.workdir
        if not os.path.isdir(workdir):
            return CapabilityError(output=f"Directory does not exist: {workdir}")

        before = snapshot(workdir)
        outcome = await run_command(command, cwd=workdir, timeout=self.timeout)
        side_effects = diff_snapshots(before, snapshot(workdir))

        stdout, stdout_trunc = truncate_chars(outcome.stdout, STREAM_CHAR_LIMIT)
        stderr, stderr_trunc = truncate_chars(outcome.stderr, STREAM_CHAR_LIMIT)
        payload = {
            "exit_code": outcome.exit_code,
            "stdout": stdout,
            "stdout_trunc": stdout_trunc,
            "stderr": stderr,
            "stderr_trunc": stderr_trunc,
            "side_effects": side_effects,
        }
        output = json.dumps(payload, separators=(",", ":"))
        logger.debug("shell exit=%d: %s", outcome.exit_code, command[:50])

        if outcome.exit_code == 0:
            return CapabilityOk(output=output, verdict=PASS, verdict_reason="exit code 0")
        return CapabilityError(
            output=output,
            verdict=FAIL,
            verdict_reason=(
                "command timed out" if outcome.timed_out else f"exit code {outcome.exit_code}"
            ),
        )


class TerminalCapability(Capability):
    """Run a command and return its text output."""

    name: ClassVar[str] = "terminal"
    description: ClassVar[str] = "Run a bash command line and return its plain output."
    shell_class: ClassVar[bool] = True

    timeout: float = DEFAULT_TIMEOUT

    def __init__(self, context=None) -> None:
        super().__init__(context)
        self.last_exit_code = -1

    async def execute(self, text: str) -> CapabilityResult:
        if not text or not text.strip():
            return CapabilityError(output="No command provided")

        command = _strip_quotes(text)
        outcome = await run_command(command, cwd=self.context.workdir, timeout=self.timeout)
        self.last_exit_code = outcome.exit_code

        if outcome.exit_code == 0:
            return CapabilityOk(output=outcome.stdout)
        output = outcome.stderr if outcome.stderr.strip() else outcome.stdout
        return CapabilityError(output=output)
