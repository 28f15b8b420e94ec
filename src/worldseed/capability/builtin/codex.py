"""Codex capability — repository helper and patch generator.

Input is ``<subcommand> [args]``:

    status | branch | diff [args]     git queries
    cat <file> | ls [dir]            read the working tree
    patch <file>                     git apply a patch file
    generate <instr> [--files f..]   ask the planner for a unified diff
    autopatch <instr> [--files f..] [--commit msg]
                                     generate, git apply --index, optionally commit
    annotate <file>                  ask the planner to summarize a file
    build | run | test [target]      build/run/test the project
    tools                            list registered capabilities

Registered through the ``worldseed.capabilities`` entry point group rather
than as a built-in.
"""

from __future__ import annotations

import logging
import os
import shlex
from typing import ClassVar

import aiofiles

from worldseed.capability.base import (
    FAIL,
    PASS,
    Capability,
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)
from worldseed.capability.builtin.build import detect_project
from worldseed.capability.builtin.shell import CommandOutcome, run_command

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 5.0
PROJECT_TIMEOUT = 600.0
PATCH_CONTEXT_CHARS = 2000
ANNOTATE_CHARS = 4000

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Codex",
    "GIT_AUTHOR_EMAIL": "codex@example.com",
    "GIT_COMMITTER_NAME": "Codex",
    "GIT_COMMITTER_EMAIL": "codex@example.com",
}

RUN_COMMANDS = {
    "python": "python -m {target}",
    "node": "npm start",
    "rust": "cargo run",
    "go": "go run .",
    "dotnet": "dotnet run",
    "make": "make run",
}


def parse_patch_args(arg: str) -> tuple[str, list[str], str | None]:
    """Split ``arg`` into (instruction, --files list, --commit message)."""
    try:
        tokens = shlex.split(arg)
    except ValueError:
        tokens = arg.split()

    words: list[str] = []
    files: list[str] = []
    commit: str | None = None
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token == "--files":
            i += 1
            while i < len(tokens) and not tokens[i].startswith("--"):
                files.append(tokens[i])
                i += 1
            continue
        if token == "--commit":
            if i + 1 < len(tokens):
                commit = tokens[i + 1]
            i += 2
            continue
        words.append(token)
        i += 1
    return " ".join(words).strip(), files, commit


class CodexCapability(Capability):
    name: ClassVar[str] = "codex"
    description: ClassVar[str] = (
        "Repository helper: status, branch, cat, ls, diff, patch, generate, "
        "autopatch, annotate, build, run, test, tools."
    )

    async def execute(self, text: str) -> CapabilityResult:
        if not text or not text.strip():
            return CapabilityError(output="No codex command provided.")

        command, _, arg = text.strip().partition(" ")
        command = command.lower()
        arg = arg.strip()

        handlers = {
            "status": lambda: self._git_text(["status", "--short"]),
            "branch": lambda: self._git_text(["branch", "--show-current"]),
            "diff": lambda: self._git_text(["diff", *_split(arg)]),
            "cat": lambda: self._cat(arg),
            "ls": lambda: self._ls(arg),
            "patch": lambda: self._apply_patch_file(arg),
            "generate": lambda: self._generate(arg),
            "autopatch": lambda: self._autopatch(arg),
            "annotate": lambda: self._annotate(arg),
            "build": lambda: self._project("build", arg),
            "run": lambda: self._project("run", arg),
            "test": lambda: self._project("test", arg),
            "tools": self._tools,
        }
        handler = handlers.get(command)
        if handler is None:
            return CapabilityError(output=f"Unknown codex command: {command}")
        return await handler()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _path(self, path: str) -> str:
        return os.path.join(self.context.workdir, path)

    async def _git(self, args: list[str], stdin: str | None = None) -> CommandOutcome:
        return await run_command(
            ["git", *args],
            cwd=self.context.workdir,
            timeout=GIT_TIMEOUT,
            stdin=stdin,
            env=GIT_ENV,
        )

    async def _git_text(self, args: list[str]) -> CapabilityResult:
        try:
            outcome = await self._git(args)
        except FileNotFoundError:
            return CapabilityError(output="git is not installed")
        text = outcome.stdout if outcome.stdout.strip() else outcome.stderr
        if outcome.exit_code != 0:
            return CapabilityError(output=text)
        return CapabilityOk(output=text)

    async def _read(self, path: str, limit: int | None = None) -> str:
        async with aiofiles.open(self._path(path), "r", encoding="utf-8", errors="replace") as f:
            text = await f.read()
        return text[:limit] if limit is not None else text

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    async def _cat(self, path: str) -> CapabilityResult:
        if not path:
            return CapabilityError(output="No file specified")
        if not os.path.isfile(self._path(path)):
            return CapabilityError(output=f"File not found: {path}")
        return CapabilityOk(output=await self._read(path))

    async def _ls(self, path: str) -> CapabilityResult:
        path = path or "."
        full = self._path(path)
        if not os.path.isdir(full):
            return CapabilityError(output=f"Directory not found: {path}")
        return CapabilityOk(output="\n".join(sorted(os.listdir(full))))

    async def _apply_patch_file(self, path: str) -> CapabilityResult:
        if not path or not os.path.isfile(self._path(path)):
            return CapabilityError(output=f"Patch file not found: {path}")
        return await self._git_text(["apply", path])

    # ------------------------------------------------------------------
    # Planner-backed
    # ------------------------------------------------------------------

    async def _generate_patch(self, instruction: str, files: list[str]) -> CapabilityResult:
        if not instruction:
            return CapabilityError(output="No instruction provided")
        planner = self.context.planner
        if planner is None:
            return CapabilityError(output="LLM provider unavailable")

        context = ""
        for file in files:
            if not os.path.isfile(self._path(file)):
                continue
            context += f"\nFile: {file}\n{await self._read(file, PATCH_CONTEXT_CHARS)}"

        prompt = (
            "Generate a unified diff patch to implement the following instruction:\n"
            f"{instruction}{context}"
        )
        return CapabilityOk(output=await planner.complete(prompt))

    async def _generate(self, arg: str) -> CapabilityResult:
        instruction, files, _ = parse_patch_args(arg)
        return await self._generate_patch(instruction, files)

    async def _autopatch(self, arg: str) -> CapabilityResult:
        instruction, files, commit = parse_patch_args(arg)
        generated = await self._generate_patch(instruction, files)
        if generated.is_error or not generated.output.strip():
            return generated

        patch = generated.output
        outcome = await self._git(["apply", "--index", "-"], stdin=patch)
        if outcome.exit_code != 0:
            return CapabilityError(
                output=outcome.stderr.strip() or "Failed to apply patch",
                verdict=FAIL,
                verdict_reason="patch did not apply",
            )

        if commit:
            committed = await self._git(["commit", "-am", commit])
            if committed.exit_code != 0:
                logger.warning("codex commit failed: %s", committed.stderr.strip())
        return CapabilityOk(output=patch, verdict=PASS, verdict_reason="patch applied")

    async def _annotate(self, path: str) -> CapabilityResult:
        if not path or not os.path.isfile(self._path(path)):
            return CapabilityError(output=f"File not found: {path}")
        planner = self.context.planner
        if planner is None:
            return CapabilityError(output="LLM provider unavailable")

        text = await self._read(path, ANNOTATE_CHARS)
        reply = await planner.complete(f"Summarize the following file in a few sentences:\n{text}")
        return CapabilityOk(output=reply.strip())

    # ------------------------------------------------------------------
    # Project
    # ------------------------------------------------------------------

    async def _project(self, step: str, target: str) -> CapabilityResult:
        workdir = self.context.workdir
        if target and os.path.isdir(self._path(target)):
            workdir = self._path(target)
        kind = detect_project(workdir)
        if kind is None:
            return CapabilityError(output=f"No project found in {workdir}")

        if step == "run":
            command = RUN_COMMANDS[kind.name].format(target=target or os.path.basename(workdir))
        else:
            command = getattr(kind, step)

        outcome = await run_command(command, cwd=workdir, timeout=PROJECT_TIMEOUT)
        text = outcome.stdout if outcome.stdout.strip() else outcome.stderr
        if outcome.exit_code != 0:
            return CapabilityError(output=text)
        return CapabilityOk(output=text)

    async def _tools(self) -> CapabilityResult:
        registry = self.context.registry
        if registry is None:
            return CapabilityOk(output="")
        return CapabilityOk(output="\n".join(sorted(registry.names())))


def _split(arg: str) -> list[str]:
    try:
        return shlex.split(arg)
    except ValueError:
        return arg.split()
