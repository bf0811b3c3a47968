"""
CLI interface using Click.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from autolearn_agent import __version__
from autolearn_agent.checkpoint import CheckpointStore
from autolearn_agent.config import (
    AgentConfig,
    ConfigurationError,
    SecretsManager,
    get_default_config_path,
    load_config,
    save_config,
)
from autolearn_agent.logging import get_logger, setup_logging
from autolearn_agent.oracle import GeminiOracle
from autolearn_agent.orchestrator import MissionController
from autolearn_agent.state import Mission, MissionStatus
from autolearn_agent.tui import LOG_STYLES, STEP_BADGES, MissionView

console = Console()
logger = get_logger(__name__)


def _load_config_or_exit(config_path: Optional[str]) -> AgentConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version and exit")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--config", "-c", type=click.Path(), help="Path to config file")
@click.pass_context
def main(ctx: click.Context, version: bool, verbose: bool, config: Optional[str]) -> None:
    """AutoLearn Agent - autonomous plan / execute / verify / fix missions."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config

    if version:
        console.print(f"autolearn-agent v{__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        return

    agent_config = _load_config_or_exit(config)
    ctx.obj["config"] = agent_config

    setup_logging(
        level="DEBUG" if verbose else agent_config.logging.level,
        log_file=agent_config.log_file_path,
    )


def _build_controller(agent_config: AgentConfig) -> MissionController:
    """Oracle + checkpoint store + controller, failing fast without an API key."""
    try:
        SecretsManager.get_secret(agent_config.oracle.api_key_env, required=True)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    oracle = GeminiOracle.from_config(agent_config)
    store = CheckpointStore(agent_config.checkpoint_path)
    return MissionController(oracle, store=store, config=agent_config)


async def _drive(controller: MissionController, view: MissionView, goal: Optional[str]) -> Mission:
    unsubscribe = view.attach(controller.subscribe)
    try:
        task = controller.start_mission(goal) if goal else controller.resume()
        if task is None:
            return controller.mission
        await view.run_until(task)
        return await task
    finally:
        unsubscribe()


def _run_with_view(controller: MissionController, goal: Optional[str] = None) -> None:
    view = MissionView(controller.mission, console=console)

    try:
        mission = asyncio.run(_drive(controller, view, goal))
    except KeyboardInterrupt:
        logger.info("Interrupted by user", mission_id=controller.mission.id)
        view.print_summary()
        console.print("[yellow]Interrupted.[/yellow] Use 'autolearn resume' to continue "
                      "or 'autolearn reset' to discard the mission.")
        sys.exit(130)

    view.update(mission)
    view.print_summary()

    stats = controller.oracle.get_stats()
    logger.info("Oracle usage", **stats)

    if mission.status == MissionStatus.FAILED:
        sys.exit(1)


@main.command()
@click.option("--goal", "-g", required=True, help="Mission goal for the agent")
@click.option("--force", "-f", is_flag=True, help="Overwrite an unfinished checkpointed mission")
@click.pass_context
def run(ctx: click.Context, goal: str, force: bool) -> None:
    """Start a new mission."""
    agent_config: AgentConfig = ctx.obj["config"]

    if not goal.strip():
        raise click.BadParameter("goal cannot be empty", param_hint="--goal")

    existing = CheckpointStore(agent_config.checkpoint_path).load()
    if existing and existing.is_active and not force:
        console.print(f"[yellow]An unfinished mission is checkpointed:[/yellow] {existing.goal}")
        if not click.confirm("Discard it and start a new mission?"):
            console.print("Use 'autolearn resume' to continue it.")
            return

    controller = _build_controller(agent_config)
    for warning in agent_config.validate_for_run():
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    logger.info("Starting new mission", goal=goal[:80])
    _run_with_view(controller, goal=goal)


@main.command()
@click.pass_context
def resume(ctx: click.Context) -> None:
    """Resume a checkpointed planning or executing mission."""
    agent_config: AgentConfig = ctx.obj["config"]

    controller = _build_controller(agent_config)
    mission = controller.restore()

    if mission is None:
        console.print("[yellow]No checkpointed mission found.[/yellow]")
        console.print("Use 'autolearn run --goal ...' to start a new mission.")
        return

    if not mission.is_active:
        console.print(f"Mission already {mission.status.value}: {mission.goal}")
        console.print("Use 'autolearn status' to inspect it.")
        return

    console.print("\n[bold]Resuming Mission[/bold]")
    console.print(f"  Mission ID: {mission.id}")
    console.print(f"  Goal: {mission.goal[:60]}")
    console.print(f"  Status: {mission.status.value}")
    if mission.steps:
        console.print(f"  Step: {mission.current_step_index + 1}/{len(mission.steps)}")
    console.print()

    _run_with_view(controller)


@main.command()
@click.option("--logs", "-l", "log_lines", default=15, show_default=True, help="Console lines to show")
@click.pass_context
def status(ctx: click.Context, log_lines: int) -> None:
    """Show the checkpointed mission."""
    agent_config: AgentConfig = ctx.obj["config"]
    mission = CheckpointStore(agent_config.checkpoint_path).load()

    if mission is None:
        console.print("[yellow]No checkpointed mission found.[/yellow]")
        return

    console.print(Panel(
        f"[bold]{mission.goal}[/bold]\n"
        f"Status: {mission.status.value.upper()}  "
        f"Steps: {mission.completed_steps}/{len(mission.steps)}  "
        f"Artifacts: {len(mission.artifacts)}",
        title=f"Mission {mission.id}",
        border_style="blue",
    ))

    if mission.steps:
        table = Table(title="Timeline")
        table.add_column("#", style="dim")
        table.add_column("Status")
        table.add_column("Step")
        table.add_column("Fixes", justify="right")
        table.add_column("Feedback")

        for i, step in enumerate(mission.steps, 1):
            feedback = step.verification_feedback or ""
            if len(feedback) > 50:
                feedback = feedback[:50] + "..."
            table.add_row(
                str(i),
                STEP_BADGES.get(step.status, step.status.value),
                step.title,
                str(step.attempts),
                feedback,
            )
        console.print(table)

    if mission.logs and log_lines > 0:
        console.print("\n[bold]Console[/bold]")
        for entry in mission.logs[-log_lines:]:
            style = LOG_STYLES.get(entry.type, "white")
            console.print(
                f"[dim]{entry.timestamp.strftime('%H:%M:%S')}[/dim] [{style}]{entry.message}[/{style}]",
                highlight=False,
            )

    if mission.memory.decision_log:
        console.print(f"\n[dim]Decisions: {', '.join(mission.memory.decision_log)}[/dim]")


@main.command()
@click.option("--index", "-i", type=int, help="Print the artifact at this position (1-based)")
@click.option("--name", "-n", help="Print the newest artifact with this name")
@click.pass_context
def artifacts(ctx: click.Context, index: Optional[int], name: Optional[str]) -> None:
    """List artifacts of the checkpointed mission, or print one."""
    agent_config: AgentConfig = ctx.obj["config"]
    mission = CheckpointStore(agent_config.checkpoint_path).load()

    if mission is None or not mission.artifacts:
        console.print("[yellow]No artifacts found.[/yellow]")
        return

    view = MissionView(mission, console=console)

    if index is not None or name:
        selected = None
        if index is not None:
            if not 1 <= index <= len(mission.artifacts):
                console.print(f"[red]No artifact at index {index}[/red] (1-{len(mission.artifacts)})")
                sys.exit(1)
            selected = mission.artifacts[index - 1]
        else:
            matches = [a for a in mission.artifacts if a.name == name]
            if not matches:
                console.print(f"[red]Artifact not found: {name}[/red]")
                sys.exit(1)
            selected = matches[-1]

        console.print(Panel(view.render_artifact(selected), title=selected.name, border_style="green"))
        return

    table = Table(title=f"Artifacts ({len(mission.artifacts)})")
    table.add_column("#", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Step")
    table.add_column("Size", justify="right")
    table.add_column("Created")

    step_numbers = {step.id: str(i) for i, step in enumerate(mission.steps, 1)}
    for i, artifact in enumerate(mission.artifacts, 1):
        table.add_row(
            str(i),
            artifact.name,
            artifact.type.value,
            step_numbers.get(artifact.step_id, "-"),
            str(len(artifact.content)),
            artifact.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)
    console.print("\n[dim]Use 'autolearn artifacts -i <n>' to print one[/dim]")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Discard the checkpointed mission."""
    agent_config: AgentConfig = ctx.obj["config"]
    store = CheckpointStore(agent_config.checkpoint_path)

    if not store.exists:
        console.print("[dim]No checkpointed mission.[/dim]")
        return

    if not yes and not click.confirm("Discard the checkpointed mission?"):
        console.print("Reset cancelled.")
        return

    if not store.clear():
        console.print(f"[red]Could not remove {store.path}[/red] (see log for details)")
        sys.exit(1)
    console.print("[green]Mission checkpoint cleared.[/green]")


@main.command(name="config")
@click.option("--init", "init_config", is_flag=True, help="Write a default config file")
@click.pass_context
def config_cmd(ctx: click.Context, init_config: bool) -> None:
    """Show the resolved configuration."""
    agent_config: AgentConfig = ctx.obj["config"]
    config_path = ctx.obj.get("config_path")

    if init_config:
        target = config_path or str(get_default_config_path())
        if Path(target).expanduser().exists() and not click.confirm(f"{target} exists. Overwrite?"):
            return
        path = save_config(AgentConfig(), target)
        console.print(f"[green]Default config written to {path}[/green]")
        return

    console.print(f"[bold]Config file:[/bold] {config_path or get_default_config_path()}")
    console.print(yaml.dump(agent_config.model_dump(), default_flow_style=False, sort_keys=False))

    table = Table(title="Secrets")
    table.add_column("Variable", style="cyan")
    table.add_column("Status")
    for key, value in SecretsManager.get_status([agent_config.oracle.api_key_env]).items():
        style = "red" if value.startswith("NOT SET") else "green"
        table.add_row(key, f"[{style}]{value}[/{style}]")
    console.print(table)

    console.print(f"\n[dim]Checkpoint: {agent_config.checkpoint_path}[/dim]")


if __name__ == "__main__":
    main()
