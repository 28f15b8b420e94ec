"""Capability system — base classes, registry, and extension loading."""

from worldseed.capability.base import (
    FAIL,
    PASS,
    Capability,
    CapabilityContext,
    CapabilityError,
    CapabilityOk,
    CapabilityResult,
)
from worldseed.capability.registry import CapabilityRegistry

__all__ = [
    "FAIL",
    "PASS",
    "Capability",
    "CapabilityContext",
    "CapabilityError",
    "CapabilityOk",
    "CapabilityResult",
    "CapabilityRegistry",
]
