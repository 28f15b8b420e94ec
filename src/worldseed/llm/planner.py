"""Planner abstraction — one ``complete(prompt) -> text`` call via litellm.

The planner is the only unbounded-latency collaborator of the agent loop and
the supervisor. There is no streaming and no structured output: callers
extract every control signal from the first line of the reply.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from litellm import ModelResponse

    from worldseed.config import LLMConfig

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful assistant."


@dataclass
class PlannerConfig:
    """Configuration for a planner."""

    model: str
    api_key: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@runtime_checkable
class Planner(Protocol):
    """Protocol for language-model planners."""

    async def complete(self, prompt: str) -> str:
        """Return the model's reply to ``prompt``."""
        ...


# ---------------------------------------------------------------------------
# litellm planner
# ---------------------------------------------------------------------------


@dataclass
class LiteLLMPlanner:
    """Planner backed by litellm.

    litellm detects the provider from the model prefix and reads API keys
    from the environment unless one is configured explicitly.
    """

    _config: PlannerConfig

    @property
    def config(self) -> PlannerConfig:
        return self._config

    async def complete(self, prompt: str) -> str:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }
        if self._config.api_key:
            kwargs["api_key"] = self._config.api_key
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens

        response = await _acompletion_with_retry(**kwargs)
        return _reply_text(response)


@retry(
    retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _acompletion_with_retry(**kwargs: Any) -> ModelResponse:
    """Call litellm.acompletion with retry on transient errors."""
    import litellm

    return await litellm.acompletion(**kwargs)


def _reply_text(response: Any) -> str:
    """Pull the assistant text out of an OpenAI-shaped completion."""
    choices = getattr(response, "choices", None)
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    return content or ""


# ---------------------------------------------------------------------------
# Static planner
# ---------------------------------------------------------------------------


@dataclass
class StaticPlanner:
    """Planner that always returns the same reply.

    Used when no model is enabled. The prompt is never echoed back so that
    keywords such as DONE in the prompt cannot leak into the reply.
    """

    reply: str = "Mock reply"

    async def complete(self, prompt: str) -> str:
        return self.reply


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_planner(config: LLMConfig) -> Planner:
    """Create the planner described by ``config``.

    Returns a ``LiteLLMPlanner`` when ``config.use_llm`` is set, otherwise a
    ``StaticPlanner`` replying with ``config.static_reply``.
    """
    if not config.use_llm:
        logger.info("LLM disabled, using static planner")
        return StaticPlanner(reply=config.static_reply)

    return LiteLLMPlanner(
        _config=PlannerConfig(
            model=config.model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
    )
