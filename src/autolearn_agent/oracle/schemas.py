"""
Structured oracle responses.

Every oracle reply is validated against one of these models before the
orchestrator sees it; anything that fails validation is a malformed response.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_PLAN_STEPS = 3
MAX_PLAN_STEPS = 7


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class PlannedStep(_Response):
    title: str = Field(min_length=1)
    description: str = ""

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("step title cannot be blank")
        return v


class Plan(_Response):
    """Ordered plan returned by plan_mission."""

    steps: List[PlannedStep] = Field(min_length=MIN_PLAN_STEPS, max_length=MAX_PLAN_STEPS)

    def as_pairs(self) -> List[tuple[str, str]]:
        return [(s.title, s.description) for s in self.steps]


class ArtifactPayload(_Response):
    name: str = Field(min_length=1)
    content: str
    type: Literal["code", "markdown", "json"]


class ExecutionResult(_Response):
    """Output of execute_step / fix_step. The artifact is optional."""

    output: str
    artifact: Optional[ArtifactPayload] = None


class VerificationResult(_Response):
    passed: bool
    feedback: str = ""


# Response schemas handed to the model (OpenAPI subset understood by Gemini)

_ARTIFACT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "content": {"type": "STRING"},
        "type": {"type": "STRING", "format": "enum", "enum": ["code", "markdown", "json"]},
    },
    "required": ["name", "content", "type"],
}

PLAN_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "steps": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "description": {"type": "STRING"},
                },
                "required": ["title", "description"],
            },
        },
    },
    "required": ["steps"],
}

EXECUTION_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "output": {"type": "STRING"},
        "artifact": _ARTIFACT_SCHEMA,
    },
    "required": ["output"],
}

VERIFICATION_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "passed": {"type": "BOOLEAN"},
        "feedback": {"type": "STRING"},
    },
    "required": ["passed", "feedback"],
}
