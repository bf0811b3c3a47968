"""
Unit tests for the Rich mission view.
"""

import io

from rich.console import Console

from autolearn_agent.lifecycle import (
    activate_step,
    append_log,
    apply_plan,
    begin_fix,
    begin_planning,
    complete_step,
    fail_mission,
    new_mission,
    register_artifact,
)
from autolearn_agent.state import ArtifactType, LogType
from autolearn_agent.tui import MissionView


def render(renderable) -> str:
    console = Console(file=io.StringIO(), width=160, record=True, color_system=None)
    console.print(renderable)
    return console.export_text()


def busy_mission():
    mission = begin_planning(new_mission(), "Create a project README with a technical roadmap")
    mission = append_log(mission, "Initiating planning phase...", LogType.SYSTEM)
    mission = apply_plan(mission, [("Outline", ""), ("Draft", ""), ("Polish", "")])
    mission = complete_step(activate_step(mission))
    mission = activate_step(mission)
    mission = register_artifact(mission, "README.md", "# Project\n\nRoadmap", ArtifactType.MARKDOWN)
    mission = register_artifact(mission, "roadmap.json", '{"q1": "ship"}', ArtifactType.JSON)
    return begin_fix(mission, retry_limit=2, feedback="missing milestones")


class TestMissionView:
    """Tests for MissionView panels."""

    def test_idle_layout_renders(self):
        view = MissionView(new_mission())
        text = render(view.make_layout())

        assert "AUTOLEARN AGENT" in text
        assert "IDLE" in text
        assert "No plan yet" in text
        assert "No artifacts yet" in text

    def test_timeline_and_console(self):
        view = MissionView(busy_mission())

        timeline = render(view.make_timeline_panel())
        assert "Outline" in timeline
        assert "done" in timeline
        assert "fixing" in timeline

        console = render(view.make_console_panel())
        assert "Initiating planning phase..." in console

    def test_newest_artifact_selected_by_default(self):
        view = MissionView(busy_mission())
        assert view.active_artifact.name == "roadmap.json"

    def test_select_artifact(self):
        mission = busy_mission()
        view = MissionView(mission)

        view.select_artifact(mission.artifacts[0].id)
        assert view.active_artifact.name == "README.md"

        view.select_artifact("unknown")
        assert view.active_artifact.name == "roadmap.json"

    def test_preview_renders_markdown(self):
        mission = busy_mission()
        view = MissionView(mission)
        view.select_artifact(mission.artifacts[0].id)

        text = render(view.make_preview_panel())
        assert "Roadmap" in text

    def test_update_follows_controller(self):
        view = MissionView(new_mission())
        mission = busy_mission()

        view.update(mission)

        assert view.mission is mission
        assert "EXECUTING" in render(view.make_header())

    def test_attach_uses_subscribe(self):
        view = MissionView(new_mission())
        callbacks = []

        def subscribe(callback):
            callbacks.append(callback)
            return lambda: callbacks.remove(callback)

        unsubscribe = view.attach(subscribe)
        assert callbacks == [view.update]
        unsubscribe()
        assert callbacks == []

    def test_print_summary_shows_last_error(self):
        mission = append_log(busy_mission(), "Max retries exceeded.", LogType.ERROR)
        mission = fail_mission(mission)
        output = io.StringIO()
        view = MissionView(mission, console=Console(file=output, width=160, color_system=None))

        view.print_summary()

        text = output.getvalue()
        assert "FAILED" in text
        assert "Max retries exceeded." in text
        assert "Steps: 1/3 completed" in text
