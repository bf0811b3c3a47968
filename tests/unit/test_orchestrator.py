"""
Unit tests for the mission orchestration loop.
"""

import pytest
from unittest.mock import Mock, patch

from autolearn_agent.lifecycle import activate_step, apply_plan, begin_planning, complete_step, new_mission
from autolearn_agent.oracle import OracleUnavailableError, PlanningUnavailableError
from autolearn_agent.orchestrator import PLAN_ARTIFACT_NAME, MissionController, render_plan
from autolearn_agent.state import ArtifactType, LogType, MissionStatus, StepStatus

from conftest import ScriptedOracle, failed, make_plan, make_result, passed


def messages(mission):
    return [entry.message for entry in mission.logs]


class SnapshotRecorder:
    """Observer keeping every emitted snapshot."""

    def __init__(self):
        self.snapshots = []

    def __call__(self, mission):
        self.snapshots.append(mission)


class TestMissionScenarios:
    """End-to-end runs against a scripted oracle."""

    @pytest.mark.asyncio
    async def test_haiku_mission_with_one_fix(self, make_controller, store):
        """Step 1 fails once, is fixed, passes; the rest pass; mission completes."""
        oracle = ScriptedOracle(
            plan=make_plan("Study syllables", "Write generator", "Document", "Review"),
            verdicts=[failed("No code produced"), passed(), passed(), passed(), passed()],
        )
        controller = make_controller(oracle)
        recorder = SnapshotRecorder()
        controller.subscribe(recorder)

        mission = await controller.start_mission("Write a haiku generator")

        assert mission.status == MissionStatus.COMPLETED
        assert mission.current_step_index == 4
        assert all(s.status == StepStatus.COMPLETED for s in mission.steps)
        assert mission.steps[0].attempts == 1
        assert [s.attempts for s in mission.steps[1:]] == [0, 0, 0]
        assert mission.memory.decision_log == tuple(f"Step {i} passed" for i in range(1, 5))

        assert oracle.count("plan") == 1
        assert oracle.count("execute") == 5
        assert oracle.count("fix") == 1
        assert oracle.count("verify") == 5

        fixing = [
            m for m in recorder.snapshots
            if m.steps and m.steps[0].status == StepStatus.FIXING
        ]
        assert fixing and fixing[0].steps[0].attempts == 1

        log = messages(mission)
        assert log[0] == "Initiating planning phase..."
        assert "Plan generated: 4 steps identified." in log
        assert "[Step 1] Executing: Study syllables" in log
        assert "Failed: No code produced" in log
        assert "Fixing errors... (Attempt 2)" in log
        assert log[-1] == "Mission Complete!"

        assert store.load() == mission

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted_fails_mission(self, make_controller):
        oracle = ScriptedOracle(verdicts=[failed("wrong"), failed("still wrong"), failed("nope")])
        controller = make_controller(oracle)
        recorder = SnapshotRecorder()
        controller.subscribe(recorder)

        mission = await controller.start_mission("Learn Git basics and write a cheatsheet")

        assert mission.status == MissionStatus.FAILED
        assert mission.current_step_index == 0
        assert mission.steps[0].attempts == 2
        assert mission.steps[0].status == StepStatus.FAILED
        assert mission.steps[1].status == StepStatus.PENDING

        assert oracle.count("execute") == 3
        assert oracle.count("verify") == 3
        assert oracle.count("fix") == 2
        assert ("execute", "Step B") not in oracle.calls

        # Error entry is committed before the status change
        last_error = mission.logs[-1]
        assert last_error.message == "Max retries exceeded."
        assert last_error.type == LogType.ERROR
        before_fail = [m for m in recorder.snapshots if m.logs and m.logs[-1].id == last_error.id]
        assert before_fail[0].status == MissionStatus.EXECUTING

    @pytest.mark.asyncio
    async def test_attempts_never_exceed_limit(self, make_controller):
        oracle = ScriptedOracle(verdicts=[failed()] * 10)
        controller = make_controller(oracle)
        recorder = SnapshotRecorder()
        controller.subscribe(recorder)

        await controller.start_mission("goal")

        assert max(s.attempts for m in recorder.snapshots for s in m.steps) == 2

    @pytest.mark.asyncio
    async def test_fixed_artifact_does_not_replace_original(self, make_controller):
        oracle = ScriptedOracle(
            executions=[make_result("v1", artifact="calc.py")],
            verdicts=[failed("division by zero")],
            fixes=[make_result("v2", artifact="calc.py")],
        )
        controller = make_controller(oracle)

        mission = await controller.start_mission("Design a simple CLI Calculator in Python")

        names = [a.name for a in mission.artifacts]
        assert names == [PLAN_ARTIFACT_NAME, "calc.py", "Fixed_calc.py"]
        assert mission.artifacts[1].content == "content of calc.py"
        assert mission.artifacts[1].step_id == mission.steps[0].id
        assert "Artifact registered: Fixed_calc.py" in messages(mission)

    @pytest.mark.asyncio
    async def test_step_is_executed_again_after_fix(self, make_controller):
        seen_steps = []
        oracle = ScriptedOracle(verdicts=[failed("missing tests"), passed()], fixes=[make_result("fixed output")])

        scripted_execute = oracle.execute_step

        async def execute(step, mission):
            seen_steps.append(step)
            return await scripted_execute(step, mission)

        oracle.execute_step = execute
        controller = make_controller(oracle)

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.COMPLETED
        assert oracle.calls[:6] == [
            ("plan", "goal"),
            ("execute", "Step A"),
            ("verify", "Step A"),
            ("fix", "Step A"),
            ("execute", "Step A"),
            ("verify", "Step A"),
        ]
        # The second execution sees the fix output and the feedback that prompted it
        assert seen_steps[1].attempts == 1
        assert seen_steps[1].result == "fixed output"
        assert seen_steps[1].verification_feedback == "missing tests"
        assert mission.steps[0].result == "output for Step A"
        assert messages(mission).count("[Step 1] Executing: Step A") == 2

    @pytest.mark.asyncio
    async def test_plan_artifact(self, make_controller):
        controller = make_controller()
        mission = await controller.start_mission("goal")

        plan_artifact = mission.artifacts[0]
        assert plan_artifact.type == ArtifactType.PLAN
        assert "1. **Step A**" in plan_artifact.content

    @pytest.mark.asyncio
    async def test_plan_artifact_disabled(self, make_controller, fast_config):
        config = fast_config.model_copy(
            update={"mission": fast_config.mission.model_copy(update={"register_plan_artifact": False})}
        )
        controller = make_controller(config=config)

        mission = await controller.start_mission("goal")

        assert mission.artifacts == ()

    @pytest.mark.asyncio
    async def test_cursor_and_collections_are_monotonic(self, make_controller):
        oracle = ScriptedOracle(
            executions=[make_result("a", artifact="a.md", type="markdown")],
            verdicts=[passed(), failed(), passed(), passed()],
        )
        controller = make_controller(oracle)
        recorder = SnapshotRecorder()
        controller.subscribe(recorder)

        await controller.start_mission("goal")

        executing = [m for m in recorder.snapshots if m.status == MissionStatus.EXECUTING]
        for before, after in zip(executing, executing[1:]):
            assert after.current_step_index >= before.current_step_index
            assert after.current_step_index - before.current_step_index <= 1
            assert after.logs[: len(before.logs)] == before.logs
            assert after.artifacts[: len(before.artifacts)] == before.artifacts


class TestOracleFailures:
    """Oracle errors end the run with an error entry and Failed status."""

    @pytest.mark.asyncio
    async def test_planning_failure(self, make_controller, store):
        oracle = ScriptedOracle(plan=PlanningUnavailableError("plan", "quota exhausted"))
        controller = make_controller(oracle)

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.FAILED
        assert mission.steps == ()
        assert mission.logs[-1].message == "Fatal Error: quota exhausted"
        assert mission.logs[-1].type == LogType.ERROR
        assert store.load().status == MissionStatus.FAILED

    @pytest.mark.asyncio
    async def test_execute_failure(self, make_controller):
        oracle = ScriptedOracle(executions=[OracleUnavailableError("execute", "503 unavailable")])
        controller = make_controller(oracle)

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.FAILED
        assert mission.steps[0].status == StepStatus.FAILED
        assert mission.logs[-1].message == "Error: 503 unavailable"
        assert oracle.count("verify") == 0

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, make_controller):
        oracle = ScriptedOracle(fixes=[KeyError("boom")], verdicts=[failed()])
        controller = make_controller(oracle)

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.FAILED
        assert mission.logs[-1].message.startswith("Error:")
        assert not controller.is_running


class TestControlSurface:
    """Tests for start / reset / restore / resume and observers."""

    @pytest.mark.asyncio
    async def test_start_requires_goal(self, make_controller):
        controller = make_controller()
        with pytest.raises(ValueError):
            controller.start_mission("   ")
        assert controller.mission.status == MissionStatus.IDLE

    @pytest.mark.asyncio
    async def test_single_flight(self, make_controller):
        controller = make_controller()

        task = controller.start_mission("goal")
        assert controller.is_running
        assert controller.start_mission("another goal") is None

        # A concurrent run returns immediately without driving the loop
        snapshot = await controller.run()
        assert snapshot.status == MissionStatus.PLANNING

        mission = await task
        assert mission.goal == "goal"
        assert mission.status == MissionStatus.COMPLETED
        assert not controller.is_running

    @pytest.mark.asyncio
    async def test_new_mission_after_completion(self, make_controller):
        controller = make_controller()
        first = await controller.start_mission("first")
        second = await controller.start_mission("second")

        assert second.id != first.id
        assert second.goal == "second"
        assert second.status == MissionStatus.COMPLETED
        assert all("first" not in m for m in messages(second))

    @pytest.mark.asyncio
    async def test_reset_between_execute_and_verify(self, make_controller, store):
        oracle = ScriptedOracle()
        controller = make_controller(oracle)

        def reset_then_pass():
            controller.reset_mission()
            return passed()

        oracle.verdicts = [reset_then_pass]

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.IDLE
        assert mission.steps == ()
        assert mission.logs == ()
        assert mission.artifacts == ()
        assert controller.mission is mission
        assert not store.exists
        assert oracle.count("execute") == 1

    @pytest.mark.asyncio
    async def test_stale_result_not_applied_to_new_mission(self, make_controller):
        oracle = ScriptedOracle()
        controller = make_controller(oracle)
        new_tasks = []

        def restart_during_execute():
            controller.reset_mission()
            new_tasks.append(controller.start_mission("second goal"))
            return make_result("stale", artifact="stale.py")

        oracle.executions = [restart_during_execute]

        stale = await controller.start_mission("first goal")
        assert stale.goal == "second goal"

        mission = await new_tasks[0]
        assert mission.status == MissionStatus.COMPLETED
        assert "stale.py" not in [a.name for a in mission.artifacts]
        assert all(s.result != "stale" for s in mission.steps)

    @pytest.mark.asyncio
    async def test_reset_when_idle(self, make_controller, store):
        controller = make_controller()
        before = controller.generation

        mission = controller.reset_mission()

        assert mission.status == MissionStatus.IDLE
        assert controller.generation == before + 1
        assert not store.exists

    @pytest.mark.asyncio
    async def test_reset_warns_when_checkpoint_survives(self, make_controller, store):
        store.save(begin_planning(new_mission(), "goal"))
        store.clear = Mock(return_value=False)
        controller = make_controller(store=store)

        with patch("autolearn_agent.orchestrator.logger") as mock_logger:
            mission = controller.reset_mission()

        assert mission.status == MissionStatus.IDLE
        store.clear.assert_called_once_with()
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args.kwargs["path"] == str(store.path)

    @pytest.mark.asyncio
    async def test_restore_and_resume(self, make_controller, store):
        mission = begin_planning(new_mission(), "goal")
        mission = apply_plan(mission, [("One", ""), ("Two", ""), ("Three", "")])
        mission = complete_step(activate_step(mission))
        mission = activate_step(mission)
        store.save(mission)

        oracle = ScriptedOracle()
        controller = make_controller(oracle)

        restored = controller.restore()
        assert restored == mission

        result = await controller.resume()

        assert result.status == MissionStatus.COMPLETED
        assert result.id == mission.id
        assert ("execute", "One") not in oracle.calls
        assert oracle.count("execute") == 2
        assert oracle.count("plan") == 0

    @pytest.mark.asyncio
    async def test_resume_planning_mission(self, make_controller, store):
        store.save(begin_planning(new_mission(), "goal"))
        oracle = ScriptedOracle()
        controller = make_controller(oracle)
        controller.restore()

        result = await controller.resume()

        assert result.status == MissionStatus.COMPLETED
        assert oracle.count("plan") == 1

    @pytest.mark.asyncio
    async def test_restore_nothing(self, make_controller):
        controller = make_controller()
        assert controller.restore() is None
        assert controller.resume() is None

    @pytest.mark.asyncio
    async def test_resume_terminal_mission_is_noop(self, make_controller):
        controller = make_controller()
        await controller.start_mission("goal")
        assert controller.resume() is None

    @pytest.mark.asyncio
    async def test_observer_errors_do_not_break_loop(self, make_controller):
        controller = make_controller()

        def broken(mission):
            raise RuntimeError("render failed")

        recorder = SnapshotRecorder()
        controller.subscribe(broken)
        unsubscribe = controller.subscribe(recorder)

        mission = await controller.start_mission("goal")

        assert mission.status == MissionStatus.COMPLETED
        assert recorder.snapshots[-1] is mission

        count = len(recorder.snapshots)
        unsubscribe()
        controller.reset_mission()
        assert len(recorder.snapshots) == count

    @pytest.mark.asyncio
    async def test_without_store(self, fast_config):
        async def no_sleep(delay):
            return None

        controller = MissionController(ScriptedOracle(), config=fast_config, sleep=no_sleep)
        mission = await controller.start_mission("goal")
        assert mission.status == MissionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_step_delay_between_iterations(self, make_controller, store, fast_config):
        delays = []

        async def record(delay):
            delays.append(delay)

        config = fast_config.model_copy(
            update={"mission": fast_config.mission.model_copy(update={"step_delay_seconds": 1.0})}
        )
        controller = MissionController(ScriptedOracle(), store=store, config=config, sleep=record)

        await controller.start_mission("goal")

        assert delays == [1.0, 1.0, 1.0]


def test_render_plan():
    text = render_plan("Learn Git", make_plan("Install", "Commit", "Branch"))
    assert text.startswith("# Mission Plan")
    assert "**Goal:** Learn Git" in text
    assert "3. **Branch**" in text


def test_start_outside_event_loop_raises(make_controller):
    controller = make_controller()
    with pytest.raises(RuntimeError):
        controller.start_mission("goal")
    assert not controller.is_running
    assert controller.mission.status == MissionStatus.IDLE
