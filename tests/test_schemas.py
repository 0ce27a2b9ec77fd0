"""
Tests for Pydantic schemas: events and agent mappings.
"""

import json
from datetime import datetime
import pytest
from pydantic import ValidationError

from schemas.events import (
    EventKind,
    GatewayEvent,
    ProgressReport,
    started_event,
    failed_event,
)
from schemas.agents import AgentMapping


class TestEventKind:
    def test_closed_vocabulary(self):
        assert [k.value for k in EventKind] == [
            "started", "progress", "awaiting-input", "completed", "failed",
        ]

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            EventKind("bogus")


class TestGatewayEvent:
    def test_timestamp_assigned(self):
        event = GatewayEvent(channel="scheduler", kind=EventKind.PROGRESS)
        assert event.payload == {}
        # ISO-8601 parseable
        assert datetime.fromisoformat(event.timestamp)

    def test_producer_timestamp_kept(self):
        event = GatewayEvent(
            channel="scheduler", kind="completed",
            timestamp="2024-01-01T00:00:00+00:00",
        )
        assert event.timestamp == "2024-01-01T00:00:00+00:00"

    def test_empty_channel_rejected(self):
        with pytest.raises(ValidationError):
            GatewayEvent(channel="", kind=EventKind.PROGRESS)

    def test_sse_message(self):
        event = GatewayEvent(channel="scheduler", kind=EventKind.AWAITING_INPUT, payload={"q": "ok?"})
        message = event.to_sse_message()
        assert message["event"] == "awaiting-input"
        data = json.loads(message["data"])
        assert data["channel"] == "scheduler"
        assert data["kind"] == "awaiting-input"
        assert data["payload"] == {"q": "ok?"}
        assert data["timestamp"] == event.timestamp

    def test_payload_is_opaque(self):
        event = GatewayEvent(channel="c", kind="progress", payload=[1, "two", None])
        assert json.loads(event.to_sse_data())["payload"] == [1, "two", None]


class TestProgressReport:
    def test_valid_report(self):
        report = ProgressReport.model_validate(
            {"channel": "scheduler", "kind": "completed", "payload": {"result": "ok"}}
        )
        event = report.to_event()
        assert event.kind == EventKind.COMPLETED
        assert event.payload == {"result": "ok"}
        assert event.timestamp

    def test_payload_optional(self):
        event = ProgressReport.model_validate({"channel": "scheduler", "kind": "progress"}).to_event()
        assert event.payload == {}

    def test_explicit_null_payload_kept(self):
        report = ProgressReport.model_validate({"channel": "scheduler", "kind": "completed", "payload": None})
        event = report.to_event()
        assert event.payload is None
        assert json.loads(event.to_sse_data())["payload"] is None

    @pytest.mark.parametrize("body", [
        {"kind": "progress"},
        {"channel": "", "kind": "progress"},
        {"channel": "   ", "kind": "progress"},
        {"channel": "scheduler", "kind": "bogus"},
        {"channel": "scheduler"},
    ])
    def test_malformed_reports(self, body):
        with pytest.raises(ValidationError):
            ProgressReport.model_validate(body)


class TestEventFactories:
    def test_started_event(self):
        event = started_event("scheduler", "scheduler", "run-1")
        assert event.kind == EventKind.STARTED
        assert event.payload["agent_id"] == "scheduler"
        assert event.payload["run_id"] == "run-1"
        assert event.payload["at"] == event.timestamp

    def test_failed_event(self):
        event = failed_event("scheduler", "scheduler", "run-1", status=503, body="down")
        assert event.kind == EventKind.FAILED
        assert event.payload == {"agent_id": "scheduler", "run_id": "run-1", "status": 503, "body": "down"}


class TestAgentMapping:
    def test_camel_case_keys(self):
        m = AgentMapping.model_validate(
            {"agentId": "scheduler", "channel": "sched", "callbackUrl": "http://example/run"}
        )
        assert m.agent_id == "scheduler"
        assert m.channel == "sched"
        assert m.callback_url == "http://example/run"

    def test_legacy_keys(self):
        m = AgentMapping.model_validate(
            {"agent": "scheduler", "npc": "npc-1", "webhookUrl": "https://example/hook"}
        )
        assert m.channel == "npc-1"
        assert m.callback_url == "https://example/hook"

    def test_channel_defaults_to_agent_id(self):
        m = AgentMapping.model_validate({"agentId": "scheduler", "callbackUrl": "http://example/run"})
        assert m.channel == "scheduler"

    def test_relative_url_rejected(self):
        with pytest.raises(ValidationError):
            AgentMapping.model_validate({"agentId": "x", "callbackUrl": "/run"})

    def test_immutable(self):
        m = AgentMapping(agent_id="x", callback_url="http://example/run")
        with pytest.raises(ValidationError):
            m.channel = "other"
