"""
Gemini reasoning oracle.

Implements plan / execute / verify / fix on top of google-generativeai in
JSON response mode. Every call goes through the quota backoff retrier and
every reply is validated against its pydantic schema.
"""

import asyncio
import json
import os
import re
import time
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar

import google.generativeai as genai
from pydantic import BaseModel, ValidationError

from autolearn_agent.logging import get_logger
from autolearn_agent.oracle.base import (
    MalformedPlanError,
    OracleResponseError,
    OracleUnavailableError,
    PlanningUnavailableError,
)
from autolearn_agent.oracle.schemas import (
    EXECUTION_RESPONSE_SCHEMA,
    MAX_PLAN_STEPS,
    MIN_PLAN_STEPS,
    PLAN_RESPONSE_SCHEMA,
    VERIFICATION_RESPONSE_SCHEMA,
    ExecutionResult,
    Plan,
    VerificationResult,
)
from autolearn_agent.resilience import (
    DEFAULT_RETRY_POLICY,
    RetryExhaustedError,
    RetryPolicy,
    retry_with_backoff,
)
from autolearn_agent.state import Mission, Step

logger = get_logger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


SYSTEM_PROMPT = """You are the reasoning core of an autonomous agent that pursues a long-term goal one step at a time.

RULES:
1. Answer with a single JSON object matching the requested schema. No markdown, no extra text.
2. Be concrete. Every step you plan must be actionable and verifiable.
3. When a step involves writing code, documentation or structured data, put the work product in the "artifact" field.
4. When verifying, be strict but fair: pass only work that fulfils the step."""


def build_memory_context(mission: Optional[Mission]) -> str:
    """Summarize prior artifacts by name so later steps can build on them."""
    if mission is None or not mission.artifacts:
        return "No previous artifacts."
    names = "\n".join(f"- {a.name}" for a in mission.artifacts)
    return f"Previous Artifacts:\n{names}"


def build_plan_prompt(goal: str) -> str:
    return "\n".join([
        "You are the Master Planner for an autonomous agent.",
        f"## GOAL\n{goal}",
        f"\nBreak this into a logical sequence of {MIN_PLAN_STEPS}-{MAX_PLAN_STEPS} specific steps.",
        "Each step must be actionable and verifiable.",
        "\n## YOUR PLAN (JSON only):",
    ])


def build_execute_prompt(step: Step, mission: Mission) -> str:
    parts = [
        f"## CURRENT MISSION GOAL\n{mission.goal}",
        f"\n## CURRENT STEP\n{step.title} - {step.description}",
        f"\n## MEMORY CONTEXT\n{build_memory_context(mission)}",
    ]
    if step.attempts and step.result:
        parts.append(f"\n## PREVIOUS ATTEMPT (fix {step.attempts})\n{step.result}")
        if step.verification_feedback:
            parts.append(f"\n## REVIEWER FEEDBACK\n{step.verification_feedback}")
    parts.extend([
        "\nCRITICAL INSTRUCTION: If this step involves writing code, documentation, or "
        'structured data, you MUST provide it in the "artifact" field of the JSON response.',
        "\n## YOUR RESULT (JSON only):",
    ])
    return "\n".join(parts)


def build_verify_prompt(step: Step, result: ExecutionResult, goal: str) -> str:
    artifact = result.artifact.name if result.artifact else "NONE"
    return "\n".join([
        f"## GOAL\n{goal}",
        f"\n## STEP ATTEMPTED\n{step.title} - {step.description}",
        f"\n## OUTPUT\n{result.output}",
        f"\n## ARTIFACT\n{artifact}",
        "\nVerify if this fulfills the step in service of the goal. If code, documentation "
        "or structured data was required and no artifact was provided, fail the verification.",
        "\n## YOUR VERDICT (JSON only):",
    ])


def build_fix_prompt(
    step: Step,
    previous: ExecutionResult,
    feedback: str,
    mission: Optional[Mission] = None,
) -> str:
    parts = []
    if mission is not None:
        parts.append(f"## CURRENT MISSION GOAL\n{mission.goal}\n")
    parts.extend([
        f'The previous attempt for step "{step.title}" failed.',
        f"\n## STEP\n{step.title} - {step.description}",
        f"\n## PREVIOUS OUTPUT\n{previous.output}",
    ])
    if previous.artifact:
        parts.append(f"\n## PREVIOUS ARTIFACT\n{previous.artifact.name}")
    parts.extend([
        f"\n## FEEDBACK\n{feedback}",
        f"\n## MEMORY CONTEXT\n{build_memory_context(mission)}",
        "\nCorrect the error and provide the final artifact.",
        "\n## YOUR CORRECTED RESULT (JSON only):",
    ])
    return "\n".join(parts)


def _extract_json_from_response(text: str) -> str:
    """Extract JSON from response, handling markdown code blocks."""
    code_block_match = re.search(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```", text)
    if code_block_match:
        return code_block_match.group(1)

    json_match = re.search(r"\{[\s\S]*\}", text)
    if json_match:
        return json_match.group(0)

    return text


class GeminiOracle:
    """
    Gemini API client for the four oracle operations.

    Quota errors are retried with exponential backoff; anything else, or an
    exhausted retry budget, surfaces as OracleUnavailableError. Replies that
    do not match their schema surface as OracleResponseError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.5-flash",
        retry_policy: Optional[RetryPolicy] = None,
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the Gemini oracle.

        Args:
            api_key: Gemini API key (defaults to GEMINI_API_KEY env var)
            model: Model ID used for all four operations
            retry_policy: Backoff policy for rate-limited calls
            temperature: Sampling temperature
            max_output_tokens: Output token cap per call
            sleep: Awaitable sleep used by the retrier
        """
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY")
        self.model = model
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._sleep = sleep
        self._configured = False
        self._genai_model = None

        # Statistics
        self._call_counts: dict[str, int] = {}
        self._rate_limit_count = 0
        self._error_count = 0

        logger.info(
            "GeminiOracle initialized",
            model=model,
            max_attempts=self.retry_policy.max_attempts,
            has_api_key=bool(self.api_key),
        )

    @classmethod
    def from_config(cls, config: Any) -> "GeminiOracle":
        """Create from an AgentConfig."""
        return cls(
            api_key=os.environ.get(config.oracle.api_key_env),
            model=config.oracle.model,
            retry_policy=config.retry.to_policy(),
            temperature=config.oracle.temperature,
            max_output_tokens=config.oracle.max_output_tokens,
        )

    @property
    def available(self) -> bool:
        """Check if the oracle can make calls."""
        return bool(self.api_key)

    @property
    def rate_limit_count(self) -> int:
        return self._rate_limit_count

    def _ensure_configured(self) -> bool:
        """Ensure the Gemini client is configured."""
        if self._configured:
            return True

        if not self.api_key:
            logger.error("GEMINI_API_KEY not set")
            return False

        genai.configure(api_key=self.api_key)
        self._genai_model = genai.GenerativeModel(
            self.model,
            system_instruction=SYSTEM_PROMPT,
        )
        self._configured = True
        logger.info("Gemini configured", model=self.model)
        return True

    def _generation_config(self, schema: dict[str, Any]) -> dict[str, Any]:
        return {
            "response_mime_type": "application/json",
            "response_schema": schema,
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
        }

    def _on_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        self._rate_limit_count += 1

    async def _generate(self, operation: str, prompt: str, schema: dict[str, Any]) -> str:
        """Run one model call through the retrier and return the raw text."""
        self._call_counts[operation] = self._call_counts.get(operation, 0) + 1

        if not self._ensure_configured():
            self._error_count += 1
            raise OracleUnavailableError(operation, "Gemini API not configured (missing API key)")

        generation_config = self._generation_config(schema)

        async def _call() -> str:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self._genai_model.generate_content(
                    prompt,
                    generation_config=generation_config,
                ),
            )
            return response.text

        start = time.time()
        try:
            raw = await retry_with_backoff(
                _call,
                policy=self.retry_policy,
                on_retry=self._on_retry,
                sleep=self._sleep,
            )
        except RetryExhaustedError as e:
            self._error_count += 1
            raise OracleUnavailableError(
                operation,
                f"rate limited after {e.attempts} attempts: {e.last_error}",
            ) from e
        except Exception as e:
            self._error_count += 1
            raise OracleUnavailableError(operation, str(e) or type(e).__name__) from e

        logger.debug(
            "Oracle call complete",
            operation=operation,
            duration_ms=int((time.time() - start) * 1000),
            length=len(raw),
        )
        return raw

    def parse_response(self, operation: str, raw_response: str, model_cls: Type[ResponseT]) -> ResponseT:
        """
        Parse and validate a JSON reply.

        Raises:
            OracleResponseError: If the reply is not valid JSON for model_cls
        """
        try:
            json_str = _extract_json_from_response(raw_response or "")
            return model_cls.model_validate(json.loads(json_str))
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            self._error_count += 1
            logger.error(
                "Failed to parse oracle response",
                operation=operation,
                error=str(e),
                response=(raw_response or "")[:500],
            )
            raise OracleResponseError(
                operation, f"malformed response: {e}", raw_response=raw_response or ""
            ) from e

    async def plan_mission(self, goal: str) -> Plan:
        """Break a goal into 3-7 ordered steps."""
        try:
            raw = await self._generate("plan", build_plan_prompt(goal), PLAN_RESPONSE_SCHEMA)
        except OracleUnavailableError as e:
            raise PlanningUnavailableError(e.operation, e.message) from e

        try:
            plan = self.parse_response("plan", raw, Plan)
        except OracleResponseError as e:
            raise MalformedPlanError(e.operation, e.message, raw_response=e.raw_response) from e

        logger.info("Plan received", steps=len(plan.steps))
        return plan

    async def execute_step(self, step: Step, mission: Mission) -> ExecutionResult:
        """Carry out one step with the goal and prior artifact names as context."""
        raw = await self._generate(
            "execute", build_execute_prompt(step, mission), EXECUTION_RESPONSE_SCHEMA
        )
        return self.parse_response("execute", raw, ExecutionResult)

    async def verify_step(self, step: Step, result: ExecutionResult, goal: str) -> VerificationResult:
        """Judge an execution result."""
        raw = await self._generate(
            "verify", build_verify_prompt(step, result, goal), VERIFICATION_RESPONSE_SCHEMA
        )
        verdict = self.parse_response("verify", raw, VerificationResult)
        logger.info("Verification complete", step=step.title, passed=verdict.passed)
        return verdict

    async def fix_step(
        self,
        step: Step,
        previous: ExecutionResult,
        feedback: str,
        mission: Optional[Mission] = None,
    ) -> ExecutionResult:
        """Produce a corrected result after a failed verification."""
        raw = await self._generate(
            "fix", build_fix_prompt(step, previous, feedback, mission), EXECUTION_RESPONSE_SCHEMA
        )
        return self.parse_response("fix", raw, ExecutionResult)

    def get_stats(self) -> dict[str, Any]:
        """Get oracle call statistics."""
        return {
            "calls": dict(self._call_counts),
            "total_calls": sum(self._call_counts.values()),
            "rate_limits": self._rate_limit_count,
            "errors": self._error_count,
        }
