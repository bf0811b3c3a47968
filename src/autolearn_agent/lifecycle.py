"""
Mission and step state machines.

Every function takes a Mission snapshot and returns a new one. Illegal
transitions raise InvalidTransitionError instead of silently producing an
inconsistent snapshot.

Mission:  idle -> planning -> executing -> completed | failed
          completed | failed -> planning (new mission), any -> idle (reset)
Step:     pending -> active -> completed
          active -> fixing -> active -> ...   (bounded by retry_limit)
          active | fixing -> failed           (only together with mission failure)
"""

from dataclasses import replace
from typing import Iterable, Optional, Tuple

from autolearn_agent.state import (
    Artifact,
    ArtifactType,
    LogEntry,
    LogType,
    Mission,
    MissionStatus,
    Step,
    StepStatus,
    new_id,
    utc_now,
)

FIXED_ARTIFACT_PREFIX = "Fixed_"


class InvalidTransitionError(Exception):
    """Raised when a transition is not allowed from the current state."""

    def __init__(self, transition: str, current: str):
        self.transition = transition
        self.current = current
        super().__init__(f"Cannot {transition} from state '{current}'")


def _require(mission: Mission, transition: str, *allowed: MissionStatus) -> None:
    if mission.status not in allowed:
        raise InvalidTransitionError(transition, mission.status.value)


def _require_step(mission: Mission, transition: str, *allowed: StepStatus) -> Step:
    step = mission.current_step
    if step is None:
        raise InvalidTransitionError(transition, f"cursor {mission.current_step_index}")
    if step.status not in allowed:
        raise InvalidTransitionError(transition, step.status.value)
    return step


# Mission transitions

def new_mission() -> Mission:
    """Fresh idle snapshot."""
    return Mission(id=new_id())


def begin_planning(mission: Mission, goal: str) -> Mission:
    """Idle (or a finished mission) -> Planning with a fresh identity."""
    if not goal or not goal.strip():
        raise ValueError("goal cannot be empty")
    _require(
        mission, "start mission",
        MissionStatus.IDLE, MissionStatus.COMPLETED, MissionStatus.FAILED,
    )
    return Mission(id=new_id(), goal=goal.strip(), status=MissionStatus.PLANNING)


def apply_plan(mission: Mission, plan_steps: Iterable[Tuple[str, str]]) -> Mission:
    """Planning -> Executing. plan_steps are (title, description) pairs."""
    _require(mission, "apply plan", MissionStatus.PLANNING)

    steps = tuple(
        Step(id=new_id(), title=title, description=description)
        for title, description in plan_steps
    )
    if not steps:
        raise InvalidTransitionError("apply an empty plan", mission.status.value)

    return replace(
        mission,
        steps=steps,
        status=MissionStatus.EXECUTING,
        current_step_index=0,
    )


def complete_mission(mission: Mission) -> Mission:
    """Executing -> Completed, only once every step has completed."""
    _require(mission, "complete mission", MissionStatus.EXECUTING)
    if not mission.steps or mission.current_step_index != len(mission.steps):
        raise InvalidTransitionError(
            "complete mission", f"cursor {mission.current_step_index}/{len(mission.steps)}"
        )
    if any(s.status != StepStatus.COMPLETED for s in mission.steps):
        raise InvalidTransitionError("complete mission", "unfinished steps")
    return replace(mission, status=MissionStatus.COMPLETED)


def fail_mission(mission: Mission, fail_current_step: bool = True) -> Mission:
    """Planning | Executing -> Failed. The step under the cursor fails with it."""
    _require(mission, "fail mission", MissionStatus.PLANNING, MissionStatus.EXECUTING)

    failed = replace(mission, status=MissionStatus.FAILED)
    step = mission.current_step
    if fail_current_step and step is not None and step.status != StepStatus.COMPLETED:
        failed = failed.with_step(mission.current_step_index, status=StepStatus.FAILED)
    return failed


def is_mission_finished(mission: Mission) -> bool:
    """Cursor has moved past the last step of a non-empty plan."""
    return bool(mission.steps) and mission.current_step_index >= len(mission.steps)


# Step transitions

def activate_step(mission: Mission) -> Mission:
    """Pending | Fixing -> Active for the step under the cursor.

    An already active step (restored from a checkpoint taken mid-step) is
    re-activated as is.
    """
    _require(mission, "activate step", MissionStatus.EXECUTING)
    _require_step(
        mission, "activate step",
        StepStatus.PENDING, StepStatus.FIXING, StepStatus.ACTIVE,
    )
    return mission.with_step(mission.current_step_index, status=StepStatus.ACTIVE)


def record_result(
    mission: Mission,
    output: Optional[str] = None,
    feedback: Optional[str] = None,
) -> Mission:
    """Keep the current step's last-known output and verification feedback."""
    step = _require_step(mission, "record result", StepStatus.ACTIVE, StepStatus.FIXING)
    return mission.with_step(
        mission.current_step_index,
        result=output if output is not None else step.result,
        verification_feedback=feedback if feedback is not None else step.verification_feedback,
    )


def complete_step(mission: Mission, feedback: Optional[str] = None) -> Mission:
    """Active -> Completed. Advances the cursor and records the decision."""
    _require(mission, "complete step", MissionStatus.EXECUTING)
    step = _require_step(mission, "complete step", StepStatus.ACTIVE)

    index = mission.current_step_index
    done = mission.with_step(
        index,
        status=StepStatus.COMPLETED,
        verification_feedback=feedback if feedback is not None else step.verification_feedback,
    )
    memory = replace(
        mission.memory,
        decision_log=mission.memory.decision_log + (f"Step {index + 1} passed",),
    )
    return replace(done, current_step_index=index + 1, memory=memory)


def retry_budget_exhausted(step: Step, retry_limit: int) -> bool:
    """True once the step has used all of its fix cycles."""
    return step.attempts >= retry_limit


def begin_fix(mission: Mission, retry_limit: int, feedback: Optional[str] = None) -> Mission:
    """Active -> Fixing, consuming one fix cycle."""
    _require(mission, "begin fix", MissionStatus.EXECUTING)
    step = _require_step(mission, "begin fix", StepStatus.ACTIVE, StepStatus.FIXING)
    if retry_budget_exhausted(step, retry_limit):
        raise InvalidTransitionError("begin fix", f"attempts {step.attempts}/{retry_limit}")

    return mission.with_step(
        mission.current_step_index,
        status=StepStatus.FIXING,
        attempts=step.attempts + 1,
        verification_feedback=feedback if feedback is not None else step.verification_feedback,
    )


# Append-only collections

def append_log(
    mission: Mission,
    message: str,
    type: LogType = LogType.INFO,
    step_id: Optional[str] = None,
) -> Mission:
    entry = LogEntry(
        id=new_id(),
        timestamp=utc_now(),
        message=message,
        type=type,
        step_id=step_id,
    )
    return replace(mission, logs=mission.logs + (entry,))


def register_artifact(
    mission: Mission,
    name: str,
    content: str,
    type: ArtifactType,
    step_id: Optional[str] = None,
) -> Mission:
    artifact = Artifact(
        id=new_id(),
        name=name,
        content=content,
        type=type,
        timestamp=utc_now(),
        step_id=step_id,
    )
    return replace(mission, artifacts=mission.artifacts + (artifact,))


def fixed_artifact_name(name: str) -> str:
    """Name for a corrected artifact; the original entry stays in the registry."""
    return f"{FIXED_ARTIFACT_PREFIX}{name}"
