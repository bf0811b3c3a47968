"""
Pytest configuration and fixtures.
"""

from pathlib import Path
from typing import Callable, List, Optional

import pytest

from autolearn_agent.checkpoint import CheckpointStore
from autolearn_agent.config import AgentConfig
from autolearn_agent.oracle.schemas import (
    ArtifactPayload,
    ExecutionResult,
    Plan,
    PlannedStep,
    VerificationResult,
)


def make_plan(*titles: str) -> Plan:
    return Plan(steps=[PlannedStep(title=t, description=f"Do {t.lower()}") for t in titles])


def make_result(output: str = "done", artifact: Optional[str] = None, type: str = "code") -> ExecutionResult:
    payload = None
    if artifact:
        payload = ArtifactPayload(name=artifact, content=f"content of {artifact}", type=type)
    return ExecutionResult(output=output, artifact=payload)


def passed(feedback: str = "Looks good") -> VerificationResult:
    return VerificationResult(passed=True, feedback=feedback)


def failed(feedback: str = "Not good enough") -> VerificationResult:
    return VerificationResult(passed=False, feedback=feedback)


class ScriptedOracle:
    """
    In-memory oracle that answers from queues.

    Each queue entry is either a value to return, an exception to raise, or a
    zero-argument callable producing one of those (for side effects such as
    resetting the controller mid-call). Empty execute/verify/fix queues fall
    back to a plain result / pass.
    """

    def __init__(
        self,
        plan=None,
        executions: Optional[list] = None,
        verdicts: Optional[list] = None,
        fixes: Optional[list] = None,
    ):
        self.plan = plan if plan is not None else make_plan("Step A", "Step B", "Step C")
        self.executions: List = list(executions or [])
        self.verdicts: List = list(verdicts or [])
        self.fixes: List = list(fixes or [])
        self.calls: List[tuple] = []

    @staticmethod
    def _resolve(entry):
        if callable(entry) and not isinstance(entry, type):
            entry = entry()
        if isinstance(entry, BaseException):
            raise entry
        return entry

    async def plan_mission(self, goal):
        self.calls.append(("plan", goal))
        return self._resolve(self.plan)

    async def execute_step(self, step, mission):
        self.calls.append(("execute", step.title))
        if self.executions:
            return self._resolve(self.executions.pop(0))
        return make_result(f"output for {step.title}")

    async def verify_step(self, step, result, goal):
        self.calls.append(("verify", step.title))
        if self.verdicts:
            return self._resolve(self.verdicts.pop(0))
        return passed()

    async def fix_step(self, step, previous, feedback, mission=None):
        self.calls.append(("fix", step.title))
        if self.fixes:
            return self._resolve(self.fixes.pop(0))
        return make_result(f"fixed output for {step.title}")

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def fast_config(tmp_path: Path) -> AgentConfig:
    """Config with no inter-step delay and storage under tmp_path."""
    return AgentConfig(
        mission={"step_delay_seconds": 0.0},
        storage={"base_path": str(tmp_path / "store")},
    )


@pytest.fixture
def store(fast_config: AgentConfig) -> CheckpointStore:
    return CheckpointStore(fast_config.checkpoint_path)


@pytest.fixture
def make_controller(fast_config: AgentConfig, store: CheckpointStore) -> Callable:
    """Factory for a controller wired to a scripted oracle and tmp checkpoint."""
    from autolearn_agent.orchestrator import MissionController

    def _make(oracle: Optional[ScriptedOracle] = None, **kwargs):
        return MissionController(
            oracle or ScriptedOracle(),
            store=kwargs.pop("store", store),
            config=kwargs.pop("config", fast_config),
            sleep=no_sleep,
        )

    return _make
