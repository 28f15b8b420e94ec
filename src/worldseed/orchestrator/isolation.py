"""Isolation strategies — how an execution unit is created, streamed and stopped.

Three strategies share one contract:

* **process**: ``python -m worldseed run`` in a new process group.
* **container**: ``docker run -d`` with fixed resource limits; a
  ``docker logs -f`` follower streams the output.
* **vm**: a configured launcher command boots one VM per unit and
  streams its console.

The strategy is chosen once, when the orchestrator is built. ``auto``
probes the container runtime and falls back to process isolation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Callable, ClassVar

from worldseed.config import OrchestratorConfig, ResourceLimits
from worldseed.model import AgentType
from worldseed.orchestrator.buffer import LogBuffer

logger = logging.getLogger(__name__)

DOCKER_TIMEOUT = 30.0


class IsolationError(RuntimeError):
    """An execution unit could not be created or started."""


@dataclass
class UnitSpec:
    """Everything a strategy needs to launch one unit."""

    id: str
    goal: str
    agent_type: AgentType = AgentType.DEFAULT
    loops: int = 5
    callback_url: str = ""
    model: str | None = None
    api_key: str | None = None
    extra_env: dict[str, str] = field(default_factory=dict)

    def env(self) -> dict[str, str]:
        """The unit environment contract."""
        env = {
            "WORLDSEED_GOAL": self.goal,
            "WORLDSEED_AGENT_ID": self.id,
            "WORLDSEED_LOOPS": str(self.loops),
            "WORLDSEED_AGENT_TYPE": self.agent_type.value,
            "WORLDSEED_CALLBACK_URL": self.callback_url,
        }
        if self.model:
            env["WORLDSEED_MODEL"] = self.model
        if self.api_key:
            env["WORLDSEED_API_KEY"] = self.api_key
        env.update(self.extra_env)
        return env


# ---------------------------------------------------------------------------
# Unit handles
# ---------------------------------------------------------------------------


class UnitHandle(ABC):
    """A launched unit as seen by the orchestrator."""

    def __init__(self, unit_id: str, buffer: LogBuffer) -> None:
        self.id = unit_id
        self.buffer = buffer
        self._on_exit: Callable[[UnitHandle, int | None], None] | None = None
        self._stopping = False

    def set_on_exit(self, callback: Callable[[UnitHandle, int | None], None]) -> None:
        """Set a callback invoked when the unit exits on its own.

        Not called for units terminated through ``stop()``.
        """
        self._on_exit = callback

    def _exited(self, code: int | None) -> None:
        self.buffer.close()
        if self._stopping or self._on_exit is None:
            return
        try:
            self._on_exit(self, code)
        except Exception:
            logger.exception("Error in on_exit callback for unit %s", self.id)

    @property
    @abstractmethod
    def alive(self) -> bool: ...

    @abstractmethod
    async def stop(self, timeout: float) -> None:
        """Terminate, wait up to ``timeout`` seconds, then kill."""


class StreamingUnit(UnitHandle):
    """A local child process whose stdout and stderr form the unit log."""

    def __init__(
        self,
        unit_id: str,
        buffer: LogBuffer,
        argv: Sequence[str],
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> None:
        super().__init__(unit_id, buffer)
        self.argv = list(argv)
        self.env = env or {}
        self.cwd = cwd
        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None

    async def start(self) -> None:
        self.buffer.attach_loop(asyncio.get_running_loop())
        self._proc = await self._spawn(self.argv)
        self._reader_task = asyncio.create_task(self._read_loop())
        logger.info("Unit %s started: pid=%d cmd=%s", self.id, self._proc.pid, " ".join(self.argv[:3]))

    async def _spawn(self, argv: Sequence[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,  # Creates new process group
                env={**os.environ, **self.env},
                cwd=self.cwd,
            )
        except OSError as e:
            raise IsolationError(f"Failed to launch {argv[0]}: {e}") from e

    async def _pump(self) -> None:
        """Copy the current process's output into the buffer until EOF."""
        assert self._proc is not None and self._proc.stdout is not None
        try:
            while True:
                raw = await self._proc.stdout.readline()
                if not raw:
                    break
                self.buffer.append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except Exception as e:
            logger.debug("Unit %s reader ended: %s", self.id, e)

    async def _finish(self) -> int | None:
        """Called once the output stream ends. Returns the unit's exit code."""
        assert self._proc is not None
        return await self._proc.wait()

    async def _read_loop(self) -> None:
        """Stream output into the buffer for the whole unit lifetime."""
        try:
            await self._pump()
        finally:
            code = await self._finish()
            logger.info("Unit %s exited (code=%s)", self.id, code)
            self._exited(code)

    @property
    def alive(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    def _signal_group(self, sig: int) -> None:
        if self._proc is None:
            return
        try:
            os.killpg(os.getpgid(self._proc.pid), sig)
        except ProcessLookupError:
            logger.debug("Process group already gone for unit %s", self.id)

    async def stop(self, timeout: float) -> None:
        self._stopping = True
        if self.alive:
            self._signal_group(signal.SIGTERM)
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=timeout)  # type: ignore[union-attr]
            except asyncio.TimeoutError:
                logger.warning("Unit %s ignored SIGTERM, killing", self.id)
                self._signal_group(signal.SIGKILL)
                await self._proc.wait()  # type: ignore[union-attr]
        if self._reader_task is not None:
            try:
                await asyncio.wait_for(self._reader_task, timeout=timeout)
            except asyncio.TimeoutError:
                self._reader_task.cancel()
        self.buffer.close()


class ContainerUnit(StreamingUnit):
    """A detached container; the local process is its ``docker logs -f`` follower.

    When the follower ends the container state decides what happened: a
    stopped container is removed and reported as exited, a running one gets
    a fresh follower (new output only). After ``max_reattach`` lost streams
    the container is removed rather than left running unattended.
    """

    max_reattach: ClassVar[int] = 3

    def __init__(
        self,
        unit_id: str,
        buffer: LogBuffer,
        container_id: str,
        strategy: ContainerStrategy,
    ) -> None:
        super().__init__(
            unit_id,
            buffer,
            [strategy.docker_bin, "logs", "-f", container_id],
        )
        self.container_id = container_id
        self._strategy = strategy
        self._reattached = 0

    async def _finish(self) -> int | None:
        await super()._finish()
        while not self._stopping:
            running, code = await self._strategy.inspect(self.container_id)
            if not running:
                await self._strategy.remove_container(self.container_id, 0)
                return code
            if self._reattached >= self.max_reattach:
                logger.warning("Lost the log stream of container %s, removing it", self.container_id[:12])
                await self._strategy.remove_container(self.container_id, self._strategy.stop_timeout)
                return None

            self._reattached += 1
            logger.warning(
                "Log follower for container %s ended, reattaching (%d/%d)",
                self.container_id[:12],
                self._reattached,
                self.max_reattach,
            )
            try:
                self._proc = await self._spawn(
                    [self._strategy.docker_bin, "logs", "-f", "--tail", "0", self.container_id]
                )
            except IsolationError as e:
                logger.warning("Cannot reattach to container %s: %s", self.container_id[:12], e)
                continue
            await self._pump()
            await self._proc.wait()
        return self._proc.returncode if self._proc is not None else None

    async def stop(self, timeout: float) -> None:
        self._stopping = True
        await self._strategy.remove_container(self.container_id, timeout)
        await super().stop(timeout)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class IsolationStrategy(ABC):
    mode: ClassVar[str]

    @abstractmethod
    async def launch(self, spec: UnitSpec, buffer: LogBuffer) -> UnitHandle:
        """Create and start one unit. Raises IsolationError on failure."""


class ProcessStrategy(IsolationStrategy):
    """Run each unit as a local child process."""

    mode: ClassVar[str] = "process"

    def __init__(self, command: Sequence[str] | None = None, cwd: str | None = None) -> None:
        self.command = list(command) if command else [sys.executable, "-m", "worldseed", "run"]
        self.cwd = cwd

    async def launch(self, spec: UnitSpec, buffer: LogBuffer) -> UnitHandle:
        unit = StreamingUnit(spec.id, buffer, self.command, env=spec.env(), cwd=self.cwd)
        await unit.start()
        return unit


class ContainerStrategy(IsolationStrategy):
    """Run each unit in a detached, resource-limited container."""

    mode: ClassVar[str] = "container"

    def __init__(
        self,
        image: str,
        limits: ResourceLimits | None = None,
        docker_bin: str = "docker",
        stop_timeout: float = 5.0,
    ) -> None:
        self.image = image
        self.limits = limits or ResourceLimits()
        self.docker_bin = docker_bin
        self.stop_timeout = stop_timeout

    def _run_docker(
        self, args: Sequence[str], timeout: float | None = DOCKER_TIMEOUT
    ) -> subprocess.CompletedProcess[str]:
        command = [self.docker_bin, *args]
        try:
            return subprocess.run(command, capture_output=True, text=True, timeout=timeout)
        except FileNotFoundError as exc:
            raise IsolationError(f"Docker binary not found at '{self.docker_bin}'") from exc
        except subprocess.TimeoutExpired as exc:
            raise IsolationError(f"Docker command timed out: {' '.join(command)}") from exc

    def run_args(self, spec: UnitSpec) -> list[str]:
        """Arguments for ``docker run`` with the fixed resource limits."""
        limits = self.limits
        args = [
            "run",
            "-d",
            "--name",
            f"worldseed-{spec.id}",
            "--memory",
            f"{limits.memory_mb}m",
            "--cpus",
            f"{limits.cpus:g}",
            "--pids-limit",
            str(limits.pids),
            "--network",
            limits.network,
            "--security-opt",
            limits.security_opt,
        ]
        for key, value in spec.env().items():
            args.extend(["-e", f"{key}={value}"])
        args.append(self.image)
        return args

    async def launch(self, spec: UnitSpec, buffer: LogBuffer) -> UnitHandle:
        result = await asyncio.to_thread(self._run_docker, self.run_args(spec))
        if result.returncode != 0:
            stderr = result.stderr.strip() or "unknown docker error"
            raise IsolationError(f"Failed to start container: {stderr}")

        container_id = result.stdout.strip()
        logger.info("Container %s started for unit %s", container_id[:12], spec.id)
        unit = ContainerUnit(spec.id, buffer, container_id, self)
        try:
            await unit.start()
        except IsolationError:
            await self.remove_container(container_id, 0)
            raise
        return unit

    async def inspect(self, container_id: str) -> tuple[bool, int | None]:
        """(running, exit code) of a container. Unknown containers count as stopped."""
        try:
            result = await asyncio.to_thread(
                self._run_docker,
                ["inspect", "-f", "{{.State.Running}} {{.State.ExitCode}}", container_id],
            )
        except IsolationError as e:
            logger.warning("docker inspect failed: %s", e)
            return False, None
        if result.returncode != 0:
            return False, None
        running, _, code = result.stdout.strip().partition(" ")
        try:
            exit_code = int(code)
        except ValueError:
            exit_code = None
        return running == "true", exit_code

    async def remove_container(self, container_id: str, timeout: float) -> None:
        """``docker stop -t`` then ``docker rm -f``. Failures are logged."""
        for args in (
            ["stop", "-t", str(int(timeout)), container_id],
            ["rm", "-f", container_id],
        ):
            try:
                result = await asyncio.to_thread(self._run_docker, args, timeout + DOCKER_TIMEOUT)
            except IsolationError as e:
                logger.warning("docker %s failed: %s", args[0], e)
                continue
            if result.returncode != 0:
                logger.warning("docker %s %s: %s", args[0], container_id[:12], result.stderr.strip())

    @classmethod
    def available(cls, docker_bin: str = "docker", timeout: float = 5.0) -> bool:
        """True when ``docker info`` succeeds."""
        try:
            result = subprocess.run(
                [docker_bin, "info"], capture_output=True, text=True, timeout=timeout
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
            return False
        return result.returncode == 0


class VMStrategy(IsolationStrategy):
    """Boot one VM per unit through a launcher command.

    The launcher receives ``--id``, ``--memory-mb`` and ``--vcpus`` plus the
    unit environment, and must stream the guest console to stdout.
    """

    mode: ClassVar[str] = "vm"

    def __init__(self, launcher: Sequence[str], limits: ResourceLimits | None = None) -> None:
        if not launcher:
            raise IsolationError("No VM launcher configured")
        self.launcher = list(launcher)
        self.limits = limits or ResourceLimits()

    def launcher_args(self, spec: UnitSpec) -> list[str]:
        return [
            *self.launcher,
            "--id",
            spec.id,
            "--memory-mb",
            str(self.limits.memory_mb),
            "--vcpus",
            str(max(1, int(self.limits.cpus))),
        ]

    async def launch(self, spec: UnitSpec, buffer: LogBuffer) -> UnitHandle:
        unit = StreamingUnit(spec.id, buffer, self.launcher_args(spec), env=spec.env())
        await unit.start()
        return unit


def select_strategy(config: OrchestratorConfig) -> IsolationStrategy:
    """Build the strategy named by ``config.isolation``."""
    mode = config.isolation
    if mode == "auto":
        mode = "container" if ContainerStrategy.available(config.docker_bin) else "process"
        logger.info("Isolation auto-selected: %s", mode)

    if mode == "container":
        return ContainerStrategy(
            config.image,
            config.limits,
            docker_bin=config.docker_bin,
            stop_timeout=config.stop_timeout,
        )
    if mode == "vm":
        return VMStrategy(config.vm_launcher, config.limits)
    return ProcessStrategy()
