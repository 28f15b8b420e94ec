"""Agent orchestrator — start, stop and read execution units."""

from __future__ import annotations

import logging
import threading

from worldseed.agent.memory import MEMORY_PREFIX
from worldseed.config import LLMConfig, OrchestratorConfig
from worldseed.model import AgentInfo, AgentType, gen_id
from worldseed.orchestrator.buffer import LogBuffer
from worldseed.orchestrator.isolation import (
    IsolationError,
    IsolationStrategy,
    UnitHandle,
    UnitSpec,
    select_strategy,
)
from worldseed.orchestrator.repository import AgentRepository

logger = logging.getLogger(__name__)


class UnknownUnitError(KeyError):
    """No unit (active or retained) has this id."""


class AgentOrchestrator:
    """Manages the lifecycle of execution units.

    The orchestrator exclusively owns unit handles and their log buffers;
    callers hold ids only. It ensures:
    - One isolation strategy, selected at construction, for every unit
    - Logs are captured for a unit's whole lifetime
    - A unit that exits on its own leaves the active set and the repository,
      while its buffer stays readable until ``collect()``
    - ``stop()`` removes bookkeeping even when termination misbehaves
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        strategy: IsolationStrategy | None = None,
        llm_config: LLMConfig | None = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self._strategy = strategy or select_strategy(self.config)
        self._llm_config = llm_config or LLMConfig()
        self._units: dict[str, UnitHandle] = {}
        self._buffers: dict[str, LogBuffer] = {}
        self._repository = AgentRepository()
        self._lock = threading.Lock()
        logger.info("Orchestrator using %s isolation", self._strategy.mode)

    @property
    def isolation_mode(self) -> str:
        return self._strategy.mode

    @property
    def repository(self) -> AgentRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(
        self,
        goal: str,
        agent_type: AgentType | str = AgentType.DEFAULT,
        loops: int = 5,
    ) -> str:
        """Launch one unit for ``goal``. Raises IsolationError on failure."""
        agent_type = AgentType.parse(agent_type)
        unit_id = gen_id()
        llm = self.get_llm_config()
        spec = UnitSpec(
            id=unit_id,
            goal=goal,
            agent_type=agent_type,
            loops=loops,
            callback_url=self.config.callback_url,
            model=llm.model,
            api_key=llm.api_key,
            extra_env={"WORLDSEED_USE_LLM": "1" if llm.use_llm else "0"},
        )
        buffer = LogBuffer(max_lines=self.config.log_retention_lines)
        with self._lock:
            self._buffers[unit_id] = buffer

        try:
            handle = await self._strategy.launch(spec, buffer)
        except Exception:
            with self._lock:
                self._buffers.pop(unit_id, None)
            raise

        handle.set_on_exit(self._on_unit_exit)
        with self._lock:
            self._units[unit_id] = handle
        self._repository.add(AgentInfo(id=unit_id, type=agent_type, goal=goal))

        # The unit may already have finished before the callback was set.
        if buffer.closed and not handle.alive:
            self._forget(unit_id)

        logger.info("Started unit %s (%s, loops=%d)", unit_id, agent_type.value, loops)
        return unit_id

    def _on_unit_exit(self, handle: UnitHandle, code: int | None) -> None:
        logger.info("Unit %s exited on its own (code=%s)", handle.id, code)
        self._forget(handle.id)

    def _forget(self, unit_id: str) -> UnitHandle | None:
        with self._lock:
            handle = self._units.pop(unit_id, None)
        self._repository.remove(unit_id)
        return handle

    async def stop(self, unit_id: str) -> None:
        """Terminate a unit. Its log stays readable until ``collect()``."""
        with self._lock:
            known = unit_id in self._buffers
        if not known:
            raise UnknownUnitError(unit_id)

        handle = self._forget(unit_id)
        if handle is None:
            return
        try:
            await handle.stop(self.config.stop_timeout)
        except Exception as e:
            logger.warning("Error stopping unit %s: %s", unit_id, e)
        logger.info("Stopped unit %s", unit_id)

    def collect(self, unit_id: str) -> bool:
        """Drop the retained buffer of a finished unit.

        Returns False (and keeps the buffer) while the unit is still active.
        """
        with self._lock:
            if unit_id in self._units:
                return False
            return self._buffers.pop(unit_id, None) is not None

    async def shutdown(self) -> None:
        """Stop every active unit. Called on exit."""
        with self._lock:
            unit_ids = list(self._units)
        for unit_id in unit_ids:
            await self.stop(unit_id)
        logger.info("All units stopped")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> list[AgentInfo]:
        return self._repository.list()

    def is_active(self, unit_id: str) -> bool:
        with self._lock:
            return unit_id in self._units

    def _buffer(self, unit_id: str) -> LogBuffer:
        with self._lock:
            buffer = self._buffers.get(unit_id)
        if buffer is None:
            raise UnknownUnitError(unit_id)
        return buffer

    def new_log_lines(self, unit_id: str, consumer: str = "default") -> list[str]:
        """Lines ``consumer`` has not seen yet. Never re-delivers, never skips."""
        return self._buffer(unit_id).read_new(f"log:{consumer}")

    def all_log_lines(self, unit_id: str) -> list[str]:
        """The full log history. Idempotent."""
        return self._buffer(unit_id).read_all()

    def new_memory_entries(self, unit_id: str, consumer: str = "default") -> list[str]:
        """Memory entries the unit reported since ``consumer`` last asked."""
        lines = self._buffer(unit_id).read_new(f"memory:{consumer}")
        return [line[len(MEMORY_PREFIX):] for line in lines if line.startswith(MEMORY_PREFIX)]

    async def wait_for_output(self, unit_id: str, timeout: float) -> bool:
        """Block until the unit logs something new or ``timeout`` elapses."""
        return await self._buffer(unit_id).wait_for_data(timeout=timeout)

    # ------------------------------------------------------------------
    # Planner settings for new units
    # ------------------------------------------------------------------

    def get_llm_config(self) -> LLMConfig:
        with self._lock:
            return self._llm_config.model_copy()

    def set_llm_config(self, config: LLMConfig) -> None:
        with self._lock:
            self._llm_config = config.model_copy()
        logger.info("Planner settings updated (use_llm=%s, model=%s)", config.use_llm, config.model)


__all__ = ["AgentOrchestrator", "IsolationError", "UnknownUnitError"]
