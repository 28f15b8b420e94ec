"""Built-in capabilities."""

from __future__ import annotations

from worldseed.capability.base import Capability, CapabilityContext
from worldseed.capability.builtin.build import BuildCapability, TestCapability
from worldseed.capability.builtin.chat import ChatCapability, CompareCapability, ListCapability
from worldseed.capability.builtin.shell import ShellCapability, TerminalCapability
from worldseed.capability.builtin.text import EchoCapability, RecallCapability, ResultCapability
from worldseed.capability.builtin.web import WebCapability

BUILTIN_CAPABILITIES: tuple[type[Capability], ...] = (
    EchoCapability,
    ResultCapability,
    RecallCapability,
    ChatCapability,
    ListCapability,
    CompareCapability,
    ShellCapability,
    TerminalCapability,
    WebCapability,
    BuildCapability,
    TestCapability,
)


def builtin_capabilities(context: CapabilityContext) -> list[Capability]:
    """Fresh instances of every built-in, bound to ``context``."""
    return [cls(context) for cls in BUILTIN_CAPABILITIES]


__all__ = [
    "BUILTIN_CAPABILITIES",
    "BuildCapability",
    "ChatCapability",
    "CompareCapability",
    "EchoCapability",
    "ListCapability",
    "RecallCapability",
    "ResultCapability",
    "ShellCapability",
    "TerminalCapability",
    "TestCapability",
    "WebCapability",
    "builtin_capabilities",
]
