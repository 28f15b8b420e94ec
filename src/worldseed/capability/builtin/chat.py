"""Planner-backed capabilities. The input becomes (part of) a prompt."""

from __future__ import annotations

import logging
from typing import ClassVar

from worldseed.capability.base import Capability, CapabilityError, CapabilityOk, CapabilityResult

logger = logging.getLogger(__name__)


class _PromptCapability(Capability):
    """Send ``prompt_template`` filled with the input to the planner."""

    prompt_template: ClassVar[str] = "{input}"

    async def execute(self, text: str) -> CapabilityResult:
        planner = self.context.planner
        if planner is None:
            return CapabilityError(output="No planner available")

        reply = await planner.complete(self.prompt_template.format(input=text))
        return CapabilityOk(output=reply.strip())


class ChatCapability(_PromptCapability):
    """Free-form conversation. Also the fallback for unknown capability names."""

    name: ClassVar[str] = "chat"
    description: ClassVar[str] = "Ask the language model anything."


class ListCapability(_PromptCapability):
    name: ClassVar[str] = "list"
    description: ClassVar[str] = "Enumerate items of a topic as a short numbered list."
    prompt_template: ClassVar[str] = "List {input}. Provide short numbered items only."


class CompareCapability(_PromptCapability):
    name: ClassVar[str] = "compare"
    description: ClassVar[str] = "Compare options and pick the best one with a reason."
    prompt_template: ClassVar[str] = (
        "Compare the following options and choose the best one with a short reason: {input}"
    )
