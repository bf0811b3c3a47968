"""
Mission state model.

Snapshots are immutable: every mutation builds a new Mission with
dataclasses.replace, and collections are tuples so a snapshot handed to an
observer can never change underneath it.
"""

import uuid
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any, Tuple


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime as an ISO string with a Z suffix."""
    return value.isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO timestamp produced by to_iso (or any ISO-8601 string)."""
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    """Short opaque identifier."""
    return uuid.uuid4().hex[:8]


def checked(value: Any, kind: type, name: str, optional: bool = False) -> Any:
    """Return value if it has the expected JSON type, else raise ValueError."""
    if value is None and optional:
        return None
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"{name} must be {kind.__name__}, got {value!r}")
    return value


class MissionStatus(str, Enum):
    """Mission lifecycle states."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Step lifecycle states."""

    PENDING = "pending"
    ACTIVE = "active"
    FIXING = "fixing"
    COMPLETED = "completed"
    FAILED = "failed"


class LogType(str, Enum):
    """Mission console entry types."""

    INFO = "info"
    PLAN = "plan"
    ACTION = "action"
    SUCCESS = "success"
    ERROR = "error"
    SYSTEM = "system"


class ArtifactType(str, Enum):
    """Artifact content types."""

    CODE = "code"
    MARKDOWN = "markdown"
    PLAN = "plan"
    JSON = "json"


ACTIVE_STATUSES = (MissionStatus.PLANNING, MissionStatus.EXECUTING)
TERMINAL_STATUSES = (MissionStatus.COMPLETED, MissionStatus.FAILED)


@dataclass(frozen=True)
class Step:
    """One planned unit of work."""

    id: str
    title: str
    description: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0  # fix cycles consumed
    result: Optional[str] = None
    verification_feedback: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        attempts = checked(data.get("attempts", 0), int, "attempts")
        if attempts < 0:
            raise ValueError(f"attempts must not be negative, got {attempts}")
        return cls(
            id=checked(data["id"], str, "step id"),
            title=checked(data["title"], str, "title"),
            description=checked(data.get("description", ""), str, "description"),
            status=StepStatus(data["status"]),
            attempts=attempts,
            result=checked(data.get("result"), str, "result", optional=True),
            verification_feedback=checked(
                data.get("verification_feedback"), str, "verification_feedback", optional=True
            ),
        )


@dataclass(frozen=True)
class LogEntry:
    """Append-only console entry."""

    id: str
    timestamp: datetime
    message: str
    type: LogType = LogType.INFO
    step_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "message": self.message,
            "type": self.type.value,
            "step_id": self.step_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        return cls(
            id=checked(data["id"], str, "log id"),
            timestamp=parse_iso(data["timestamp"]),
            message=checked(data["message"], str, "message"),
            type=LogType(data["type"]),
            step_id=checked(data.get("step_id"), str, "step_id", optional=True),
        )


@dataclass(frozen=True)
class Artifact:
    """A named, typed work product. Never overwritten."""

    id: str
    name: str
    content: str
    type: ArtifactType
    timestamp: datetime
    step_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "type": self.type.value,
            "timestamp": to_iso(self.timestamp),
            "step_id": self.step_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Artifact":
        return cls(
            id=checked(data["id"], str, "artifact id"),
            name=checked(data["name"], str, "name"),
            content=checked(data["content"], str, "content"),
            type=ArtifactType(data["type"]),
            timestamp=parse_iso(data["timestamp"]),
            step_id=checked(data.get("step_id"), str, "step_id", optional=True),
        )


@dataclass(frozen=True)
class MissionMemory:
    """Cross-step memory. learned_context is carried but not written by the loop."""

    decision_log: Tuple[str, ...] = ()
    learned_context: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision_log": list(self.decision_log),
            "learned_context": self.learned_context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MissionMemory":
        return cls(
            decision_log=tuple(
                checked(d, str, "decision") for d in checked(data.get("decision_log", []), list, "decision_log")
            ),
            learned_context=checked(data.get("learned_context", ""), str, "learned_context"),
        )


@dataclass(frozen=True)
class Mission:
    """Complete mission snapshot (aggregate root)."""

    # Identity
    id: str
    goal: str = ""

    # Progress
    status: MissionStatus = MissionStatus.IDLE
    current_step_index: int = -1

    # Owned collections
    steps: Tuple[Step, ...] = ()
    logs: Tuple[LogEntry, ...] = ()
    artifacts: Tuple[Artifact, ...] = ()
    memory: MissionMemory = field(default_factory=MissionMemory)

    @property
    def current_step(self) -> Optional[Step]:
        """Step under the cursor, if the cursor points at one."""
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    @property
    def is_active(self) -> bool:
        """True while the orchestration loop has work to do."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)

    def with_step(self, index: int, **changes: Any) -> "Mission":
        """Return a copy with the step at index replaced in place."""
        steps = list(self.steps)
        steps[index] = replace(steps[index], **changes)
        return replace(self, steps=tuple(steps))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "goal": self.goal,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "steps": [s.to_dict() for s in self.steps],
            "logs": [entry.to_dict() for entry in self.logs],
            "artifacts": [a.to_dict() for a in self.artifacts],
            "memory": self.memory.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mission":
        """Create from dictionary. Raises on any malformed field."""
        return cls(
            id=checked(data["id"], str, "mission id"),
            goal=checked(data.get("goal", ""), str, "goal"),
            status=MissionStatus(data["status"]),
            current_step_index=checked(data.get("current_step_index", -1), int, "current_step_index"),
            steps=tuple(Step.from_dict(s) for s in data.get("steps", [])),
            logs=tuple(LogEntry.from_dict(entry) for entry in data.get("logs", [])),
            artifacts=tuple(Artifact.from_dict(a) for a in data.get("artifacts", [])),
            memory=MissionMemory.from_dict(data.get("memory") or {}),
        )
