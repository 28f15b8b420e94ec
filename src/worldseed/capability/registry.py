"""Thread-safe capability registry."""

from __future__ import annotations

import logging
import threading

from worldseed.capability.base import Capability, CapabilityContext

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """Name-indexed table of capabilities.

    Lookups are case-insensitive and the last registration for a name wins.
    One registry is shared by reference between every loop running in the
    process, so all access goes through an internal lock.
    """

    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().casefold()

    def register(self, capability: Capability) -> None:
        """Register a capability instance, replacing any with the same name."""
        key = self._key(capability.name)
        with self._lock:
            if key in self._capabilities:
                logger.warning("Capability %s already registered, overwriting", capability.name)
            self._capabilities[key] = capability

    def register_many(self, capabilities: list[Capability]) -> None:
        for capability in capabilities:
            self.register(capability)

    def unregister(self, name: str) -> Capability | None:
        with self._lock:
            return self._capabilities.pop(self._key(name), None)

    def get(self, name: str) -> Capability | None:
        """Get a capability by name, ignoring case."""
        with self._lock:
            return self._capabilities.get(self._key(name))

    def names(self) -> list[str]:
        """Get all registered capability names."""
        with self._lock:
            return [c.name for c in self._capabilities.values()]

    def clear(self) -> None:
        with self._lock:
            self._capabilities.clear()

    def initialize(
        self,
        context: CapabilityContext,
        plugin_dir: str | None = None,
    ) -> None:
        """Reset to the built-in set, then load extensions.

        Built-ins are constructed with ``context``. Extensions come from
        ``plugin_dir`` and from the ``worldseed.capabilities`` entry point
        group; a broken extension is logged and skipped. The new table is
        assembled aside and swapped in at once, so readers see either the
        old set or the complete new one.
        """
        from worldseed.capability.builtin import builtin_capabilities
        from worldseed.capability.plugins import load_entry_points, load_plugin_dir

        if context.registry is None:
            context.registry = self

        staged = CapabilityRegistry()
        staged.register_many(builtin_capabilities(context))
        loaded = load_entry_points(staged, context)
        if plugin_dir:
            loaded += load_plugin_dir(staged, context, plugin_dir)

        with self._lock:
            self._capabilities = staged._capabilities

        logger.info(
            "Capability registry initialized: %d capabilities (%d from extensions)",
            len(self),
            loaded,
        )

    def describe(self) -> str:
        """One line per capability, for planner prompts."""
        with self._lock:
            capabilities = sorted(self._capabilities.values(), key=lambda c: c.name)
        return "\n".join(
            f"- {c.name}: {c.description}" if c.description else f"- {c.name}"
            for c in capabilities
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._capabilities)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return self._key(name) in self._capabilities
