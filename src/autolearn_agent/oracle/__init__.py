"""
Oracle module - the external reasoning capability behind plan/execute/verify/fix.
"""

from autolearn_agent.oracle.base import (
    MalformedPlanError,
    OracleError,
    OracleResponseError,
    OracleUnavailableError,
    PlanningError,
    PlanningUnavailableError,
    ReasoningOracle,
)
from autolearn_agent.oracle.gemini import GeminiOracle, SYSTEM_PROMPT
from autolearn_agent.oracle.schemas import (
    ArtifactPayload,
    ExecutionResult,
    Plan,
    PlannedStep,
    VerificationResult,
)

__all__ = [
    "ArtifactPayload",
    "ExecutionResult",
    "GeminiOracle",
    "MalformedPlanError",
    "OracleError",
    "OracleResponseError",
    "OracleUnavailableError",
    "Plan",
    "PlannedStep",
    "PlanningError",
    "PlanningUnavailableError",
    "ReasoningOracle",
    "SYSTEM_PROMPT",
    "VerificationResult",
]
