"""
Orchestrator - the plan / execute / verify / fix loop for one mission.

The controller owns the current mission snapshot and is the only writer of
the checkpoint. Each start or reset bumps a generation token; a run only
applies mutations while its token is still current, so a result that
arrives after a reset is dropped instead of being written to the new
mission.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from autolearn_agent.checkpoint import CheckpointStore
from autolearn_agent.config import AgentConfig
from autolearn_agent.lifecycle import (
    activate_step,
    append_log,
    apply_plan,
    begin_fix,
    begin_planning,
    complete_mission,
    complete_step,
    fail_mission,
    fixed_artifact_name,
    is_mission_finished,
    new_mission,
    record_result,
    register_artifact,
    retry_budget_exhausted,
)
from autolearn_agent.logging import get_logger, mission_context
from autolearn_agent.oracle.base import OracleError, PlanningError, ReasoningOracle
from autolearn_agent.oracle.schemas import ArtifactPayload, Plan
from autolearn_agent.state import (
    ArtifactType,
    LogType,
    Mission,
    MissionStatus,
    Step,
)

logger = get_logger(__name__)

Observer = Callable[[Mission], None]

PLAN_ARTIFACT_NAME = "Mission_Plan.md"


class _StaleRun(Exception):
    """The run's generation was superseded by a reset or a new mission."""


def render_plan(goal: str, plan: Plan) -> str:
    """Markdown rendering of a plan for the artifact registry."""
    lines = ["# Mission Plan", "", f"**Goal:** {goal}", ""]
    for i, step in enumerate(plan.steps, 1):
        lines.append(f"{i}. **{step.title}**")
        if step.description:
            lines.append(f"   {step.description}")
    return "\n".join(lines) + "\n"


class MissionController:
    """
    Drives a mission through planning and step execution.

    Loop flow:
    1. Planning: ask the oracle for a plan, materialize the steps
    2. For the step under the cursor: execute, register artifact, verify
    3. Pass -> complete the step and advance the cursor
    4. Fail with budget left -> fix, register Fixed_ artifact, verify again
    5. Fail with budget exhausted -> mission failed
    6. Cursor past the last step -> mission completed

    Only one run is active at a time (single-flight). Observers receive the
    full snapshot after every committed mutation.
    """

    def __init__(
        self,
        oracle: ReasoningOracle,
        store: Optional[CheckpointStore] = None,
        config: Optional[AgentConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the controller.

        Args:
            oracle: Reasoning oracle for plan/execute/verify/fix
            store: Checkpoint store (no persistence if not provided)
            config: Agent configuration (defaults if not provided)
            sleep: Awaitable sleep used for the inter-iteration delay
        """
        self.oracle = oracle
        self.store = store
        self.config = config or AgentConfig()
        self._sleep = sleep

        self._mission = new_mission()
        self._generation = 0
        self._running_token: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._observers: List[Observer] = []

        logger.info(
            "MissionController initialized",
            retry_limit=self.config.mission.retry_limit,
            step_delay=self.config.mission.step_delay_seconds,
            checkpointing=store is not None,
        )

    @property
    def mission(self) -> Mission:
        """Current snapshot (read-only)."""
        return self._mission

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        """True while a run holds the single-flight guard."""
        return self._running_token is not None

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Task of the most recently woken run."""
        return self._task

    # Observers

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """
        Register a snapshot observer.

        Returns:
            A callable that removes the observer
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self._mission
        for callback in list(self._observers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Observer failed", error=str(e), observer=repr(callback))

    # Intents

    def start_mission(self, goal: str) -> Optional[asyncio.Task]:
        """
        Start a new mission for goal and wake the loop.

        Must be called from a running event loop.

        Returns:
            The run task, or None if a run is already active

        Raises:
            ValueError: If goal is empty
        """
        if not goal or not goal.strip():
            raise ValueError("goal cannot be empty")

        # Raises RuntimeError outside a running loop, before any state changes
        asyncio.get_running_loop()

        if self.is_running:
            logger.warning("Mission already running, start ignored", mission_id=self._mission.id)
            return None

        self._generation += 1
        self._mission = begin_planning(self._mission, goal)
        self._persist()
        self._notify()

        logger.info(
            "Mission started",
            mission_id=self._mission.id,
            goal=self._mission.goal[:80],
            generation=self._generation,
        )
        return self._wake()

    def reset_mission(self) -> Mission:
        """
        Discard the current mission and its checkpoint.

        Any run in flight keeps its stale token and drops its results.
        """
        previous = self._mission
        self._generation += 1
        self._running_token = None

        if self.store is not None and not self.store.clear():
            logger.warning(
                "Checkpoint still on disk after reset, it will be restored on next start",
                path=str(self.store.path),
                previous_id=previous.id,
            )

        self._mission = new_mission()
        self._notify()

        logger.info(
            "Mission reset",
            previous_id=previous.id,
            previous_status=previous.status.value,
            generation=self._generation,
        )
        return self._mission

    def restore(self) -> Optional[Mission]:
        """
        Load the checkpointed mission into the controller.

        Returns:
            The restored mission, or None if there was nothing to restore
        """
        if self.is_running:
            logger.warning("Cannot restore while a run is active")
            return None
        if self.store is None:
            return None

        mission = self.store.load()
        if mission is None:
            return None

        self._generation += 1
        self._mission = mission
        self._notify()

        logger.info(
            "Mission restored",
            mission_id=mission.id,
            status=mission.status.value,
            step_index=mission.current_step_index,
        )
        return mission

    def resume(self) -> Optional[asyncio.Task]:
        """Wake the loop for a restored planning or executing mission."""
        if not self._mission.is_active:
            logger.info("Nothing to resume", status=self._mission.status.value)
            return None
        return self._wake()

    async def run(self) -> Mission:
        """
        Drive the current mission until it settles or is superseded.

        A second concurrent call returns the current snapshot immediately.
        """
        token = self._claim()
        if token is None:
            logger.debug("Run already active, skipping")
            return self._mission
        return await self._run_claimed(token)

    # Run management

    def _claim(self) -> Optional[int]:
        if self._running_token is not None:
            return None
        self._running_token = self._generation
        return self._running_token

    def _wake(self) -> Optional[asyncio.Task]:
        loop = asyncio.get_running_loop()
        token = self._claim()
        if token is None:
            return None
        self._task = loop.create_task(self._run_claimed(token))
        return self._task

    async def _run_claimed(self, token: int) -> Mission:
        with mission_context(self._mission.id, token):
            try:
                await self._drive(token)
            except _StaleRun:
                logger.info("Run superseded, pending result discarded")
            finally:
                if self._running_token == token:
                    self._running_token = None

            logger.info(
                "Run ended",
                status=self._mission.status.value,
                step_index=self._mission.current_step_index,
                steps=len(self._mission.steps),
            )
        return self._mission

    def _ensure_current(self, token: int) -> None:
        if token != self._generation:
            raise _StaleRun()

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(self._mission)

    def _commit(self, token: int, mission: Mission) -> None:
        """Apply a new snapshot, checkpoint it and notify observers."""
        self._ensure_current(token)
        self._mission = mission
        self._persist()
        self._notify()

    def _log(
        self,
        token: int,
        message: str,
        type: LogType = LogType.INFO,
        step: Optional[Step] = None,
    ) -> None:
        self._commit(
            token,
            append_log(self._mission, message, type, step_id=step.id if step else None),
        )

    def _fail(self, token: int, message: str) -> None:
        """Error entry first, then the transition, so the log explains the stop."""
        self._log(token, message, LogType.ERROR, self._mission.current_step)
        if self._mission.is_active:
            self._commit(token, fail_mission(self._mission))
        logger.warning(
            "Mission failed",
            reason=message,
            step_index=self._mission.current_step_index,
        )

    def _register(
        self,
        token: int,
        payload: ArtifactPayload,
        step: Step,
        name: Optional[str] = None,
    ) -> None:
        name = name or payload.name
        self._commit(
            token,
            register_artifact(
                self._mission,
                name,
                payload.content,
                ArtifactType(payload.type),
                step_id=step.id,
            ),
        )
        self._log(token, f"Artifact registered: {name}", LogType.SUCCESS, step)

    # Loop

    async def _drive(self, token: int) -> None:
        try:
            if self._mission.status == MissionStatus.PLANNING:
                await self._plan(token)
            await self._execute(token)
        except _StaleRun:
            raise
        except PlanningError as e:
            logger.error("Planning failed", error=str(e))
            self._fail(token, f"Fatal Error: {e.message}")
        except OracleError as e:
            logger.error("Oracle call failed", operation=e.operation, error=e.message)
            self._fail(token, f"Error: {e.message}")
        except Exception as e:
            logger.exception("Orchestration error", error=str(e))
            self._fail(token, f"Error: {e}")

    async def _plan(self, token: int) -> None:
        self._log(token, "Initiating planning phase...", LogType.SYSTEM)

        goal = self._mission.goal
        plan = await self.oracle.plan_mission(goal)
        self._ensure_current(token)

        pairs = plan.as_pairs()
        self._log(token, f"Plan generated: {len(pairs)} steps identified.", LogType.PLAN)

        if self.config.mission.register_plan_artifact:
            self._commit(
                token,
                register_artifact(
                    self._mission, PLAN_ARTIFACT_NAME, render_plan(goal, plan), ArtifactType.PLAN
                ),
            )

        self._commit(token, apply_plan(self._mission, pairs))
        logger.info("Plan applied", steps=len(pairs))

    async def _execute(self, token: int) -> None:
        while True:
            self._ensure_current(token)
            if self._mission.status != MissionStatus.EXECUTING:
                return

            if is_mission_finished(self._mission):
                self._log(token, "Mission Complete!", LogType.SUCCESS)
                self._commit(token, complete_mission(self._mission))
                logger.info("Mission completed", steps=len(self._mission.steps))
                return

            await self._run_step(token)

            if self._mission.status != MissionStatus.EXECUTING:
                return

            await self._sleep(self.config.mission.step_delay_seconds)

    async def _run_step(self, token: int) -> None:
        """
        One pass over the step under the cursor: execute, verify, then pass,
        fail the mission, or fix and leave the step for the next pass.

        A fixed step is executed again on the next pass; the fix output and
        feedback stay on the step so the oracle sees them.
        """
        index = self._mission.current_step_index
        label = f"[Step {index + 1}]"
        step = self._mission.current_step

        self._log(token, f"{label} Executing: {step.title}", LogType.ACTION, step)
        self._commit(token, activate_step(self._mission))
        step = self._mission.current_step

        result = await self.oracle.execute_step(step, self._mission)
        self._ensure_current(token)
        self._commit(token, record_result(self._mission, output=result.output))
        if result.artifact:
            self._register(token, result.artifact, step)

        self._log(token, f"{label} Verifying...", LogType.SYSTEM, step)
        verdict = await self.oracle.verify_step(step, result, self._mission.goal)
        self._ensure_current(token)
        self._commit(token, record_result(self._mission, feedback=verdict.feedback))

        if verdict.passed:
            self._log(token, f"Success: {verdict.feedback}", LogType.SUCCESS, step)
            self._commit(token, complete_step(self._mission, verdict.feedback))
            logger.info("Step passed", step_index=index, attempts=step.attempts)
            return

        self._log(token, f"Failed: {verdict.feedback}", LogType.ERROR, step)

        retry_limit = self.config.mission.retry_limit
        if retry_budget_exhausted(step, retry_limit):
            self._fail(token, "Max retries exceeded.")
            return

        self._log(
            token, f"Fixing errors... (Attempt {step.attempts + 2})", LogType.SYSTEM, step
        )
        fixed = await self.oracle.fix_step(step, result, verdict.feedback, self._mission)
        self._ensure_current(token)

        if fixed.artifact:
            self._register(
                token, fixed.artifact, step, name=fixed_artifact_name(fixed.artifact.name)
            )

        self._commit(token, begin_fix(self._mission, retry_limit, verdict.feedback))
        self._commit(token, record_result(self._mission, output=fixed.output))
        logger.info(
            "Step fix applied",
            step_index=index,
            attempts=self._mission.current_step.attempts,
            retry_limit=retry_limit,
        )
