"""Capability extensions — discovered at registry initialization.

Two sources are scanned:

* ``*.py`` files in a plugin directory. Every concrete ``Capability``
  subclass defined in such a file is instantiated with the registry's
  context and registered.
* Entry points in the ``worldseed.capabilities`` group. An entry point may
  name a ``Capability`` subclass or a factory ``(context) -> Capability``.

    [project.entry-points."worldseed.capabilities"]
    codex = "worldseed.capability.builtin.codex:CodexCapability"

One broken extension never aborts initialization.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
from importlib.metadata import entry_points
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from worldseed.capability.base import Capability, CapabilityContext

if TYPE_CHECKING:
    from worldseed.capability.registry import CapabilityRegistry

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "worldseed.capabilities"


def load_plugin_dir(
    registry: CapabilityRegistry,
    context: CapabilityContext,
    plugin_dir: str | Path,
) -> int:
    """Register capabilities defined in ``plugin_dir``. Returns the count."""
    path = Path(plugin_dir)
    if not path.is_dir():
        logger.debug("Plugin directory not found: %s", path)
        return 0

    loaded = 0
    for plugin_file in sorted(path.glob("*.py")):
        if plugin_file.name.startswith("_"):
            continue
        try:
            module = _import_file(plugin_file)
        except Exception as e:
            _report(context, f"Failed to load plugin {plugin_file}: {e}")
            continue

        for cls in _capability_classes(module):
            try:
                registry.register(cls(context))
            except Exception as e:
                _report(context, f"Failed to instantiate {cls.__name__} from {plugin_file}: {e}")
                continue
            loaded += 1
            logger.info("Loaded plugin capability %s from %s", cls.name, plugin_file.name)

    return loaded


def load_entry_points(
    registry: CapabilityRegistry,
    context: CapabilityContext,
    group: str = ENTRY_POINT_GROUP,
) -> int:
    """Register capabilities advertised by installed distributions."""
    loaded = 0
    for ep in entry_points(group=group):
        try:
            capability = _instantiate(ep.load(), context)
        except Exception as e:
            _report(context, f"Failed to load plugin {ep.name}: {e}")
            continue
        registry.register(capability)
        loaded += 1
        logger.debug("Loaded entry point capability %s (%s)", capability.name, ep.value)
    return loaded


def _import_file(path: Path) -> ModuleType:
    spec = importlib.util.spec_from_file_location(f"worldseed_plugin_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot import {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _capability_classes(module: ModuleType) -> list[type[Capability]]:
    """Concrete Capability subclasses defined (not imported) in ``module``."""
    return [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, Capability)
        and not inspect.isabstract(obj)
        and obj.__module__ == module.__name__
    ]


def _instantiate(target: Any, context: CapabilityContext) -> Capability:
    if inspect.isclass(target) and issubclass(target, Capability):
        return target(context)
    if callable(target):
        capability = target(context)
        if isinstance(capability, Capability):
            return capability
    raise TypeError(f"{target!r} does not provide a Capability")


def _report(context: CapabilityContext, message: str) -> None:
    logger.warning(message)
    context.emit(message)
