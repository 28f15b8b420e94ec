"""CLI entry point for worldseed."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.table import Table

from worldseed.config import WorldseedConfig

if TYPE_CHECKING:
    from worldseed.agent.sinks import LogSink
    from worldseed.model import SupervisorStatus

app = typer.Typer(
    name="worldseed",
    help="Autonomous agents that plan, act and supervise each other toward a goal.",
    no_args_is_help=True,
)

console = Console()


def setup_logging(verbose: bool = False, level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)


def _load_config(config_file: str | None, model: str | None = None) -> WorldseedConfig:
    config = WorldseedConfig.load(config_file)
    if model:
        config.llm.model = model
        config.llm.use_llm = True
    return config


# ---------------------------------------------------------------------------
# run — the entry point inside an execution unit
# ---------------------------------------------------------------------------


@app.command()
def run(
    goal: str | None = typer.Option(
        None, "--goal", "-g", help="Goal to pursue (default: $WORLDSEED_GOAL)."
    ),
    loops: int | None = typer.Option(
        None, "--loops", "-n", help="Loop budget, <= 0 for unlimited (default: $WORLDSEED_LOOPS)."
    ),
    agent_type: str | None = typer.Option(
        None, "--type", "-t", help="Agent profile: default, research, helper."
    ),
    model: str | None = typer.Option(None, "--model", "-m", help="LLM model to use."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run one agent loop in this process (used by execution units)."""
    # Unit stdout is the log stream; keep library logging to warnings.
    setup_logging(verbose, level=logging.WARNING)

    goal = goal or os.environ.get("WORLDSEED_GOAL", "")
    if not goal:
        typer.echo("Error: no goal given (use --goal or WORLDSEED_GOAL)", err=True)
        raise typer.Exit(1)

    config = _load_config(config_file, model)
    if loops is None:
        loops = int(os.environ.get("WORLDSEED_LOOPS", config.agent.loops))
    agent_type = agent_type or os.environ.get("WORLDSEED_AGENT_TYPE")

    outcome = asyncio.run(_run_unit(goal, loops, agent_type, config))
    if outcome is None:
        raise typer.Exit(1)


async def _run_unit(
    goal: str,
    loops: int,
    agent_type: str | None,
    config: WorldseedConfig,
) -> str | None:
    from worldseed.agent.loop import AgentLoop
    from worldseed.agent.memory import Memory
    from worldseed.agent.sinks import CompositeSink, ConsoleSink, HttpSink
    from worldseed.capability.base import CapabilityContext
    from worldseed.capability.registry import CapabilityRegistry
    from worldseed.llm.planner import create_planner
    from worldseed.model import get_profile

    sink: LogSink = ConsoleSink()
    http_sink: HttpSink | None = None
    callback = os.environ.get("WORLDSEED_CALLBACK_URL", "")
    agent_id = os.environ.get("WORLDSEED_AGENT_ID", "")
    if callback and agent_id:
        http_sink = HttpSink(callback, agent_id)
        sink = CompositeSink(sink, http_sink)

    planner = create_planner(config.llm)
    workdir = config.agent.workdir or os.getcwd()
    memory = Memory(config.agent.memory_ceiling_bytes, log=sink)
    registry = CapabilityRegistry()
    registry.initialize(
        CapabilityContext(planner=planner, memory=memory, log=sink, workdir=workdir, registry=registry),
        plugin_dir=config.agent.plugin_dir,
    )

    loop = AgentLoop(
        goal,
        planner,
        registry,
        config=config.agent,
        log=sink,
        workdir=workdir,
        memory=memory,
        profile=get_profile(agent_type),
        loops=loops,
    )
    try:
        await loop.run()
    finally:
        if http_sink is not None:
            http_sink.close()
    return loop.outcome.value if loop.outcome else None


# ---------------------------------------------------------------------------
# start — launch one unit and follow its log
# ---------------------------------------------------------------------------


@app.command()
def start(
    goal: str = typer.Argument(help="Goal for the agent."),
    loops: int = typer.Option(5, "--loops", "-n", help="Loop budget."),
    agent_type: str = typer.Option("default", "--type", "-t", help="Agent profile."),
    isolation: str | None = typer.Option(
        None, "--isolation", "-i", help="auto, process, container or vm."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Start one isolated agent and stream its log until it exits."""
    setup_logging(verbose)
    config = _load_config(config_file)
    if isolation:
        config.orchestrator.isolation = isolation  # type: ignore[assignment]

    try:
        asyncio.run(_follow_unit(goal, loops, agent_type, config))
    except KeyboardInterrupt:
        typer.echo("Interrupted")


async def _follow_unit(goal: str, loops: int, agent_type: str, config: WorldseedConfig) -> None:
    from worldseed.orchestrator import AgentOrchestrator, IsolationError

    orchestrator = AgentOrchestrator(config.orchestrator, llm_config=config.llm)
    try:
        unit_id = await orchestrator.start(goal, agent_type, loops)
    except IsolationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Unit {unit_id} ({orchestrator.isolation_mode})")
    typer.echo("---")
    try:
        while True:
            for line in orchestrator.new_log_lines(unit_id, "cli"):
                print(line, flush=True)
            if not orchestrator.is_active(unit_id):
                for line in orchestrator.new_log_lines(unit_id, "cli"):
                    print(line, flush=True)
                break
            await orchestrator.wait_for_output(unit_id, timeout=1.0)
    finally:
        await orchestrator.shutdown()


# ---------------------------------------------------------------------------
# supervise — decompose a goal across several units
# ---------------------------------------------------------------------------


@app.command()
def supervise(
    goal: str = typer.Argument(help="Goal to decompose and pursue."),
    loops: int = typer.Option(5, "--loops", "-n", help="Loop budget per unit and planning rounds."),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Give up after this many seconds."
    ),
    isolation: str | None = typer.Option(
        None, "--isolation", "-i", help="auto, process, container or vm."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Run a supervisor over a goal and show its progress."""
    setup_logging(verbose, level=logging.WARNING)
    config = _load_config(config_file)
    if isolation:
        config.orchestrator.isolation = isolation  # type: ignore[assignment]

    try:
        asyncio.run(_supervise(goal, loops, timeout, config))
    except KeyboardInterrupt:
        typer.echo("Interrupted")


async def _supervise(goal: str, loops: int, timeout: float | None, config: WorldseedConfig) -> None:
    from worldseed.llm.planner import create_planner
    from worldseed.orchestrator import AgentOrchestrator
    from worldseed.supervisor import Supervisor

    orchestrator = AgentOrchestrator(config.orchestrator, llm_config=config.llm)
    supervisor = Supervisor(orchestrator, create_planner(config.llm), config.supervisor)
    supervisor_id = await supervisor.start(goal, loops)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    shown = 0
    try:
        while True:
            status = await supervisor.wait(supervisor_id, timeout=config.supervisor.poll_interval)
            if status is None:
                break
            for message in status.supervisor_log[shown:]:
                console.print(f"[bold cyan]supervisor[/] {message}")
            shown = len(status.supervisor_log)
            if not status.running:
                _render_status(status)
                break
            if deadline is not None and loop.time() >= deadline:
                console.print("[yellow]Timed out[/]")
                _render_status(status)
                break
    finally:
        await supervisor.shutdown()
        await orchestrator.shutdown()


def _render_status(status: SupervisorStatus) -> None:
    table = Table(title=f"Supervisor {status.info.id[:8]}")
    table.add_column("Unit")
    table.add_column("Lines", justify="right")
    table.add_column("Last line")
    for unit_id, lines in status.unit_logs.items():
        table.add_row(unit_id[:8], str(len(lines)), lines[-1] if lines else "")
    console.print(table)
    console.print(f"Result: {status.result or '(none)'}")


# ---------------------------------------------------------------------------
# tools — list capabilities
# ---------------------------------------------------------------------------


@app.command()
def tools(
    plugin_dir: str | None = typer.Option(
        None, "--plugin-dir", "-p", help="Directory scanned for capability plugins."
    ),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """List every capability the agent loop can dispatch to."""
    setup_logging(level=logging.WARNING)
    from worldseed.capability.base import CapabilityContext
    from worldseed.capability.registry import CapabilityRegistry
    from worldseed.llm.planner import create_planner

    config = _load_config(config_file)
    registry = CapabilityRegistry()
    registry.initialize(
        CapabilityContext(planner=create_planner(config.llm), registry=registry),
        plugin_dir=plugin_dir or config.agent.plugin_dir,
    )

    table = Table(title="Capabilities")
    table.add_column("Name", style="bold")
    table.add_column("Description")
    for name in sorted(registry.names()):
        capability = registry.get(name)
        table.add_row(name, capability.description if capability else "")
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
