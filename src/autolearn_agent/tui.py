"""
Terminal User Interface using Rich.

Renders a mission snapshot as a timeline of steps, a chronological console
and an artifact registry with one selected artifact.
"""

import asyncio
from typing import Callable, Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from autolearn_agent.logging import get_logger
from autolearn_agent.state import (
    Artifact,
    ArtifactType,
    LogType,
    Mission,
    MissionStatus,
    StepStatus,
)

logger = get_logger(__name__)

STATUS_STYLES = {
    MissionStatus.IDLE: "dim",
    MissionStatus.PLANNING: "cyan",
    MissionStatus.EXECUTING: "yellow",
    MissionStatus.COMPLETED: "green",
    MissionStatus.FAILED: "red",
}

STEP_BADGES = {
    StepStatus.PENDING: "[dim]○ pending[/dim]",
    StepStatus.ACTIVE: "[bold yellow]▶ active[/bold yellow]",
    StepStatus.FIXING: "[bold magenta]🔧 fixing[/bold magenta]",
    StepStatus.COMPLETED: "[green]✅ done[/green]",
    StepStatus.FAILED: "[bold red]❌ failed[/bold red]",
}

LOG_STYLES = {
    LogType.INFO: "white",
    LogType.PLAN: "cyan",
    LogType.ACTION: "blue",
    LogType.SUCCESS: "green",
    LogType.ERROR: "red",
    LogType.SYSTEM: "magenta",
}


class MissionView:
    """Rich view over the controller's mission snapshots."""

    CONSOLE_LINES = 18
    PREVIEW_CHARS = 2000

    def __init__(self, mission: Mission, console: Optional[Console] = None):
        self.mission = mission
        self.console = console or Console()
        self._selected_artifact_id: Optional[str] = None

    def update(self, mission: Mission) -> None:
        """Observer callback: keep the latest snapshot."""
        self.mission = mission

    def attach(self, subscribe: Callable[[Callable[[Mission], None]], Callable[[], None]]) -> Callable[[], None]:
        """Subscribe to a controller; returns the unsubscribe callable."""
        return subscribe(self.update)

    # Artifact selection

    def select_artifact(self, artifact_id: Optional[str]) -> None:
        self._selected_artifact_id = artifact_id

    @property
    def active_artifact(self) -> Optional[Artifact]:
        """Selected artifact, or the newest one when nothing is selected."""
        artifacts = self.mission.artifacts
        if not artifacts:
            return None
        if self._selected_artifact_id:
            for artifact in artifacts:
                if artifact.id == self._selected_artifact_id:
                    return artifact
        return artifacts[-1]

    # Panels

    def make_header(self) -> Panel:
        mission = self.mission
        style = STATUS_STYLES.get(mission.status, "white")

        title = Text()
        title.append("AUTOLEARN AGENT", style="bold white")
        title.append(f"  {mission.status.value.upper()}", style=f"bold {style}")
        if mission.steps:
            title.append(f"  {mission.completed_steps}/{len(mission.steps)} steps", style="dim")

        return Panel(title, style="blue")

    def make_goal_panel(self) -> Panel:
        goal = self.mission.goal
        if not goal:
            return Panel(Text("[No mission]", style="dim"), title="Goal", border_style="dim")
        if len(goal) > 200:
            goal = goal[:200] + "..."
        return Panel(Text(goal), title="Goal", border_style="blue")

    def make_timeline_panel(self) -> Panel:
        mission = self.mission
        if not mission.steps:
            waiting = "[cyan]Planning...[/cyan]" if mission.status == MissionStatus.PLANNING else "[dim]No plan yet[/dim]"
            return Panel(waiting, title="Timeline", border_style="dim")

        table = Table(show_header=True, box=None, padding=(0, 1))
        table.add_column("#", style="dim", width=3)
        table.add_column("Status", width=14)
        table.add_column("Step", ratio=1)
        table.add_column("Fixes", width=5, justify="right")

        for i, step in enumerate(mission.steps):
            marker = "➜" if i == mission.current_step_index else str(i + 1)
            table.add_row(
                marker,
                STEP_BADGES.get(step.status, step.status.value),
                step.title,
                str(step.attempts) if step.attempts else "",
            )

        return Panel(table, title="Timeline", border_style="blue")

    def make_console_panel(self) -> Panel:
        logs = self.mission.logs
        if not logs:
            return Panel("[dim]No activity yet[/dim]", title="Console", border_style="dim")

        text = Text()
        for entry in logs[-self.CONSOLE_LINES:]:
            text.append(entry.timestamp.strftime("%H:%M:%S "), style="dim")
            text.append(entry.message + "\n", style=LOG_STYLES.get(entry.type, "white"))

        return Panel(text, title=f"Console ({len(logs)})", border_style="blue")

    def make_artifacts_panel(self) -> Panel:
        artifacts = self.mission.artifacts
        if not artifacts:
            return Panel("[dim]No artifacts yet[/dim]", title="Artifacts", border_style="dim")

        active = self.active_artifact
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("", width=2)
        table.add_column("Name", ratio=1)
        table.add_column("Type", style="dim", width=9)

        for artifact in artifacts:
            selected = active is not None and artifact.id == active.id
            table.add_row(
                "▶" if selected else "",
                f"[bold]{artifact.name}[/bold]" if selected else artifact.name,
                artifact.type.value,
            )

        return Panel(table, title=f"Artifacts ({len(artifacts)})", border_style="blue")

    def render_artifact(self, artifact: Artifact):
        """Renderable for an artifact's content."""
        content = artifact.content
        if artifact.type in (ArtifactType.MARKDOWN, ArtifactType.PLAN):
            return Markdown(content)
        if artifact.type == ArtifactType.JSON:
            return Syntax(content, "json", word_wrap=True)
        return Syntax(content, _guess_lexer(artifact.name), word_wrap=True)

    def make_preview_panel(self) -> Panel:
        active = self.active_artifact
        if active is None:
            return Panel("[dim]Nothing selected[/dim]", title="Preview", border_style="dim")

        preview = active
        if len(active.content) > self.PREVIEW_CHARS:
            preview = Artifact(
                id=active.id,
                name=active.name,
                content=active.content[: self.PREVIEW_CHARS] + "\n...",
                type=active.type,
                timestamp=active.timestamp,
                step_id=active.step_id,
            )
        return Panel(self.render_artifact(preview), title=active.name, border_style="green")

    def make_layout(self) -> Layout:
        """Create the full layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
        )

        layout["body"].split_row(
            Layout(name="left", ratio=1),
            Layout(name="right", ratio=2),
        )

        layout["left"].split_column(
            Layout(name="goal", size=5),
            Layout(name="timeline"),
            Layout(name="artifacts"),
        )

        layout["right"].split_column(
            Layout(name="console"),
            Layout(name="preview"),
        )

        layout["header"].update(self.make_header())
        layout["goal"].update(self.make_goal_panel())
        layout["timeline"].update(self.make_timeline_panel())
        layout["artifacts"].update(self.make_artifacts_panel())
        layout["console"].update(self.make_console_panel())
        layout["preview"].update(self.make_preview_panel())

        return layout

    async def run_until(self, task: "asyncio.Future", refresh_seconds: float = 0.5) -> None:
        """Refresh a live display until task finishes."""
        logger.info("TUI started")

        try:
            with Live(
                self.make_layout(),
                console=self.console,
                refresh_per_second=4,
                screen=True,
            ) as live:
                while not task.done():
                    live.update(self.make_layout())
                    await asyncio.sleep(refresh_seconds)

                live.update(self.make_layout())
                await asyncio.sleep(refresh_seconds)

        except asyncio.CancelledError:
            logger.info("TUI cancelled")
            raise

        finally:
            logger.info("TUI stopped")

    def print_summary(self) -> None:
        """Print a final summary after the live display closes."""
        mission = self.mission

        self.console.print()
        self.console.print("[bold]Mission Summary[/bold]")
        self.console.print(f"  Mission ID: {mission.id}")
        if mission.goal:
            self.console.print(f"  Goal: {mission.goal}")

        style = STATUS_STYLES.get(mission.status, "white")
        self.console.print(f"  Status: [{style}]{mission.status.value.upper()}[/{style}]")
        if mission.steps:
            self.console.print(f"  Steps: {mission.completed_steps}/{len(mission.steps)} completed")
        self.console.print(f"  Artifacts: {len(mission.artifacts)}")

        errors = [entry for entry in mission.logs if entry.type == LogType.ERROR]
        if mission.status == MissionStatus.FAILED and errors:
            self.console.print(f"\n[bold red]Last error:[/bold red] {errors[-1].message}")

        self.console.print()


def _guess_lexer(name: str) -> str:
    extensions = {
        ".py": "python",
        ".js": "javascript",
        ".ts": "typescript",
        ".sh": "bash",
        ".html": "html",
        ".css": "css",
        ".sql": "sql",
        ".go": "go",
        ".rs": "rust",
    }
    for suffix, lexer in extensions.items():
        if name.lower().endswith(suffix):
            return lexer
    return "text"
