"""
Agent Event Gateway Schemas - Pydantic models for events and agent mappings.
"""

from .events import (
    GatewayEvent,
    EventKind,
    ProgressReport,
    started_event,
    failed_event,
)

from .agents import AgentMapping

__all__ = [
    # Events
    "GatewayEvent",
    "EventKind",
    "ProgressReport",
    "started_event",
    "failed_event",
    # Agents
    "AgentMapping",
]
