"""
Gateway event schemas for SSE streaming.
Events are created at dispatch or intake time, broadcast once, and never stored.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventKind(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    AWAITING_INPUT = "awaiting-input"
    COMPLETED = "completed"
    FAILED = "failed"


class GatewayEvent(BaseModel):
    """Event schema for real-time agent progress streaming."""
    channel: str = Field(min_length=1, description="Channel whose subscribers receive the event")
    kind: EventKind = Field(description="Lifecycle stage of the agent")
    payload: Any = Field(default_factory=dict, description="Opaque producer data")
    timestamp: str = Field(default_factory=utc_now_iso, description="ISO-8601 event time")

    def to_sse_data(self) -> str:
        return self.model_dump_json()

    def to_sse_message(self) -> dict:
        return {
            "event": self.kind.value,
            "data": self.to_sse_data(),
        }


class ProgressReport(BaseModel):
    """Progress notification pushed by the workflow runtime."""
    channel: str
    kind: EventKind
    payload: Any = None
    timestamp: Optional[str] = None

    @field_validator("channel")
    @classmethod
    def channel_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("channel must not be empty")
        return value

    def to_event(self) -> GatewayEvent:
        return GatewayEvent(
            channel=self.channel,
            kind=self.kind,
            payload=self.payload if "payload" in self.model_fields_set else {},
            timestamp=self.timestamp or utc_now_iso(),
        )


def started_event(channel: str, agent_id: str, run_id: str) -> GatewayEvent:
    now = utc_now_iso()
    return GatewayEvent(
        channel=channel, kind=EventKind.STARTED, timestamp=now,
        payload={"agent_id": agent_id, "run_id": run_id, "at": now},
    )


def failed_event(channel: str, agent_id: str, run_id: str, **details: Any) -> GatewayEvent:
    return GatewayEvent(
        channel=channel, kind=EventKind.FAILED,
        payload={"agent_id": agent_id, "run_id": run_id, **details},
    )
