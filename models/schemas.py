"""
Data models for the room pipeline.

A Room is one end-to-end workflow instance for a single user prompt. Each
stage that runs leaves a StageResult on the room; progress notifications for
live viewers are LogEvents.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stage(str, Enum):
    NONE = "none"
    STORY = "story"
    ASSET = "asset"
    CODE = "code"
    DEPLOY = "deploy"
    COMPLETE = "complete"


class RoomStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (RoomStatus.DONE, RoomStatus.ERROR)


class FailureReason(str, Enum):
    AGENT_ERROR = "agent_error"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


# ── Stage outputs ────────────────────────────────────────────────────

@dataclass
class StageOutput:
    """Typed payload returned by an agent for one stage."""
    mime_type: ClassVar[str | None] = None

    content_id: str | None = None

    # Raw bytes worth pinning when the agent did not pin them itself
    def pin_payload(self) -> tuple[bytes, str, str] | None:
        return None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StoryOutput(StageOutput):
    mime_type: ClassVar[str | None] = "text/plain"

    text: str = ""

    def pin_payload(self) -> tuple[bytes, str, str] | None:
        return self.text.encode("utf-8"), "story.txt", "text/plain"


@dataclass
class AssetOutput(StageOutput):
    mime_type: ClassVar[str | None] = "image/png"

    image_url: str = ""


@dataclass
class CodeOutput(StageOutput):
    mime_type: ClassVar[str | None] = "text/html"

    code: str = ""
    tested: bool = False

    def pin_payload(self) -> tuple[bytes, str, str] | None:
        return self.code.encode("utf-8"), "game.html", "text/html"


@dataclass
class DeployOutput(StageOutput):
    deployed_url: str = ""
    status: str = ""


# ── Persistent records ───────────────────────────────────────────────

@dataclass
class StageResult:
    """Durable record of one stage's outcome for a room."""
    stage: Stage
    success: bool
    output: dict = field(default_factory=dict)
    content_id: str | None = None
    error: str | None = None
    attempts: int = 0
    duration_sec: float | None = None
    completed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["stage"] = self.stage.value
        return data


@dataclass
class Room:
    id: str
    owner_id: str
    input_text: str
    stage: Stage = Stage.NONE
    status: RoomStatus = RoomStatus.IDLE
    failure_reason: FailureReason | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    results: dict[Stage, StageResult] = field(default_factory=dict)  # keyed by stage

    def ordered_results(self) -> list[StageResult]:
        order = list(Stage)
        return sorted(self.results.values(), key=lambda r: order.index(r.stage))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "input_text": self.input_text,
            "stage": self.stage.value,
            "status": self.status.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "results": [r.to_dict() for r in self.ordered_results()],
        }


@dataclass
class LogEvent:
    """Ephemeral, ordered progress notification for a room."""
    room_id: str
    agent: str  # story, asset, code, deploy, orchestrator
    level: LogLevel
    message: str
    seq: int = 0
    timestamp: datetime = field(default_factory=utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "room_id": self.room_id,
            "seq": self.seq,
            "agent": self.agent,
            "level": self.level.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }
