"""Configuration — Pydantic models for worldseed settings."""

from __future__ import annotations

import os
from typing import Any, Literal

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Planner configuration.

    Model names use litellm's provider-prefix format:
        "openai/gpt-4o-mini"
        "anthropic/claude-sonnet-4-5-20250929"

    When ``use_llm`` is false every component falls back to a
    ``StaticPlanner`` that returns a fixed reply, which is enough to
    exercise the control flow without credentials.
    """

    use_llm: bool = Field(default=False)
    model: str = Field(default="openai/gpt-4o-mini")
    api_key: str | None = Field(
        default=None,
        description="Credential forwarded to litellm and to spawned units.",
    )
    temperature: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None)
    static_reply: str = Field(default="Mock reply")


class AgentConfig(BaseModel):
    """Agent loop policy.

    The repetition and failure thresholds are tunable policy, not protocol.
    """

    loops: int = Field(default=5, description="Loop budget; <= 0 means unlimited")
    memory_ceiling_bytes: int = Field(default=16_000)
    result_char_limit: int = Field(default=2_000)
    max_repeats: int = Field(default=3)
    repeat_ignore_case: bool = Field(
        default=False,
        description="Treat instructions differing only in case as repeats",
    )
    max_unresolved: int = Field(default=3)
    max_critique_failures: int = Field(default=3)
    reprompt_attempts: int = Field(default=2)
    auto_build: bool = Field(
        default=True,
        description="Run build, then test when the build passes, after shell commands in a project tree",
    )
    plugin_dir: str = Field(default="plugins")
    workdir: str | None = Field(default=None)


class ResourceLimits(BaseModel):
    """Fixed per-unit limits for container and vm isolation."""

    memory_mb: int = Field(default=512)
    cpus: float = Field(default=1.0)
    pids: int = Field(default=256)
    network: str = Field(default="bridge")
    security_opt: str = Field(default="no-new-privileges")


class OrchestratorConfig(BaseModel):
    """Execution unit lifecycle settings."""

    isolation: Literal["auto", "process", "container", "vm"] = Field(default="auto")
    docker_bin: str = Field(default="docker")
    image: str = Field(default="worldseed-agent")
    vm_launcher: list[str] = Field(
        default_factory=lambda: ["worldseed-vm"],
        description="Command that boots one VM per unit and streams its console",
    )
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    stop_timeout: float = Field(default=5.0)
    callback_url: str = Field(
        default="",
        description="Base address units POST their log lines to; empty disables reporting",
    )
    log_retention_lines: int | None = Field(default=None)


class SupervisorConfig(BaseModel):
    """Subgoal polling policy."""

    poll_interval: float = Field(default=1.0)
    seconds_per_loop: float = Field(default=5.0)
    default_timeout: float = Field(default=300.0)


class WorldseedConfig(BaseModel):
    """Top-level worldseed configuration."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    supervisor: SupervisorConfig = Field(default_factory=SupervisorConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> WorldseedConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            WORLDSEED_MODEL         - Planner model (litellm format)
            WORLDSEED_API_KEY       - Planner credential
            WORLDSEED_USE_LLM       - "1"/"true" to enable the real planner
            WORLDSEED_ISOLATION     - auto | process | container | vm
            WORLDSEED_IMAGE         - Container image for agent units
            WORLDSEED_PLUGIN_DIR    - Directory scanned for capability plugins
            WORLDSEED_CALLBACK_URL  - Address units report logs to
            USE_LOCAL_AGENT         - Any non-empty value forces process isolation
        """
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        llm = config_data.get("llm", {})
        agent = config_data.get("agent", {})
        orchestrator = config_data.get("orchestrator", {})

        env_model = os.environ.get("WORLDSEED_MODEL")
        if env_model:
            llm["model"] = env_model

        env_key = os.environ.get("WORLDSEED_API_KEY")
        if env_key:
            llm["api_key"] = env_key
            llm.setdefault("use_llm", True)

        env_use_llm = os.environ.get("WORLDSEED_USE_LLM")
        if env_use_llm:
            llm["use_llm"] = env_use_llm.lower() in ("1", "true", "yes")

        env_plugin_dir = os.environ.get("WORLDSEED_PLUGIN_DIR")
        if env_plugin_dir:
            agent["plugin_dir"] = env_plugin_dir

        env_isolation = os.environ.get("WORLDSEED_ISOLATION")
        if env_isolation:
            orchestrator["isolation"] = env_isolation.lower()
        if os.environ.get("USE_LOCAL_AGENT"):
            orchestrator["isolation"] = "process"

        env_image = os.environ.get("WORLDSEED_IMAGE")
        if env_image:
            orchestrator["image"] = env_image

        env_callback = os.environ.get("WORLDSEED_CALLBACK_URL")
        if env_callback:
            orchestrator["callback_url"] = env_callback

        if llm:
            config_data["llm"] = llm
        if agent:
            config_data["agent"] = agent
        if orchestrator:
            config_data["orchestrator"] = orchestrator

        return cls.model_validate(config_data)
