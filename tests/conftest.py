"""
Shared test fixtures for Agent Event Gateway tests.
"""

import json
import pytest
import httpx

from orchestrator.agent_registry import AgentRegistry
from schemas.agents import AgentMapping
from services.broadcast_hub import BroadcastHub


class RecordingConnection:
    """Connection double that records every message written to it."""

    def __init__(self, name: str = "conn", fail: bool = False):
        self.name = name
        self.fail = fail
        self.messages: list[dict] = []
        self.closed = False

    def write(self, message: dict) -> None:
        if self.fail:
            raise ConnectionResetError(f"{self.name} is gone")
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True

    @property
    def kinds(self) -> list[str]:
        return [m["event"] for m in self.messages]

    @property
    def events(self) -> list[dict]:
        return [json.loads(m["data"]) for m in self.messages]


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def registry():
    return AgentRegistry([
        AgentMapping(agent_id="scheduler", channel="scheduler", callback_url="http://example/run"),
        AgentMapping(agent_id="mailer", channel="front-desk", callback_url="http://example/mail"),
    ])


@pytest.fixture
def recording_connection():
    return RecordingConnection


@pytest.fixture
def mock_http_client():
    """Build an AsyncClient whose requests are answered by handler."""
    def _build(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _build
