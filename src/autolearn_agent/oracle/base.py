"""
Oracle contract and error taxonomy.
"""

from typing import Optional, Protocol, runtime_checkable

from autolearn_agent.oracle.schemas import ExecutionResult, Plan, VerificationResult
from autolearn_agent.state import Mission, Step


class OracleError(Exception):
    """Base for all oracle failures. Fatal to the current mission run."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation}: {message}")


class OracleUnavailableError(OracleError):
    """The oracle could not be reached: non-quota error or retries exhausted."""


class OracleResponseError(OracleError):
    """The oracle answered, but the answer did not match its schema."""

    def __init__(self, operation: str, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(operation, message)


class PlanningError(OracleError):
    """No usable plan could be obtained."""


class PlanningUnavailableError(PlanningError, OracleUnavailableError):
    pass


class MalformedPlanError(PlanningError, OracleResponseError):
    pass


@runtime_checkable
class ReasoningOracle(Protocol):
    """The four calls the orchestration loop makes."""

    async def plan_mission(self, goal: str) -> Plan:
        ...

    async def execute_step(self, step: Step, mission: Mission) -> ExecutionResult:
        ...

    async def verify_step(
        self, step: Step, result: ExecutionResult, goal: str
    ) -> VerificationResult:
        ...

    async def fix_step(
        self,
        step: Step,
        previous: ExecutionResult,
        feedback: str,
        mission: Optional[Mission] = None,
    ) -> ExecutionResult:
        ...
