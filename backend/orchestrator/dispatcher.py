"""
Run dispatcher: turns "run agent X" into a started event plus an outbound
trigger POST to the agent's workflow runtime.
"""

import os
import uuid
from dataclasses import dataclass
from typing import Any, Optional
import httpx
import structlog

from orchestrator.agent_registry import AgentRegistry
from schemas.events import started_event, failed_event
from services.broadcast_hub import BroadcastHub
from telemetry import get_tracer, mark_span_error, set_span_attributes, traced_span

logger = structlog.get_logger()

CALLBACK_TIMEOUT = float(os.getenv("GATEWAY_CALLBACK_TIMEOUT", "10"))
# Response bodies echoed into failed events are truncated to this many characters
MAX_ERROR_BODY = 2000


class DispatchError(Exception):
    """Base class for run dispatch failures."""


class AgentNotFoundError(DispatchError):
    def __init__(self, agent_id: str):
        super().__init__(f"unknown agent: {agent_id}")
        self.agent_id = agent_id


class CallbackStatusError(DispatchError):
    """Workflow runtime answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"callback returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class CallbackTransportError(DispatchError):
    """Workflow runtime could not be reached (network error or timeout)."""


@dataclass(frozen=True)
class DispatchResult:
    agent_id: str
    channel: str
    run_id: str
    status_code: int


class RunDispatcher:
    """
    Dispatch agent runs.

    The started event is always broadcast before the callback is attempted,
    so stream watchers see it even when the runtime is slow or unreachable.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        registry: AgentRegistry,
        http_client: httpx.AsyncClient,
        timeout: float = CALLBACK_TIMEOUT,
        tracer=None,
    ):
        self.hub = hub
        self.registry = registry
        self.http_client = http_client
        self.timeout = timeout
        self._tracer = tracer if tracer is not None else get_tracer()

    async def dispatch(
        self,
        agent_id: str,
        payload: Any = None,
        channel: Optional[str] = None,
    ) -> DispatchResult:
        mapping = self.registry.get(agent_id)
        if mapping is None:
            logger.info("run_agent_not_found", agent_id=agent_id)
            raise AgentNotFoundError(agent_id)

        channel = channel or mapping.channel
        run_id = str(uuid.uuid4())

        self.hub.broadcast(started_event(channel, agent_id, run_id))

        body = {
            "payload": payload if payload is not None else {},
            "channel": channel,
            "agentId": agent_id,
            "runId": run_id,
        }

        logger.info(
            "run_dispatched",
            agent_id=agent_id,
            channel=channel,
            run_id=run_id,
            callback_url=mapping.callback_url,
        )

        span_attributes = {
            "gateway.agent_id": agent_id,
            "gateway.channel": channel,
            "gateway.run_id": run_id,
            "http.method": "POST",
            "http.url": mapping.callback_url,
        }
        with traced_span(self._tracer, "gateway.callback", span_attributes) as span:
            try:
                response = await self.http_client.post(
                    mapping.callback_url,
                    json=body,
                    timeout=self.timeout,
                )
            except httpx.RequestError as e:
                message = str(e) or type(e).__name__
                logger.error(
                    "callback_unreachable",
                    agent_id=agent_id,
                    run_id=run_id,
                    error=message,
                )
                mark_span_error(span, message)
                self.hub.broadcast(failed_event(channel, agent_id, run_id, error=message))
                raise CallbackTransportError(message) from e

            set_span_attributes(span, **{"http.status_code": response.status_code})

            if not response.is_success:
                text = response.text[:MAX_ERROR_BODY]
                logger.error(
                    "callback_failed",
                    agent_id=agent_id,
                    run_id=run_id,
                    status=response.status_code,
                )
                mark_span_error(span, f"callback returned HTTP {response.status_code}")
                self.hub.broadcast(failed_event(
                    channel, agent_id, run_id,
                    status=response.status_code, body=text,
                ))
                raise CallbackStatusError(response.status_code, text)

        logger.info(
            "callback_accepted",
            agent_id=agent_id,
            run_id=run_id,
            status=response.status_code,
        )
        return DispatchResult(
            agent_id=agent_id,
            channel=channel,
            run_id=run_id,
            status_code=response.status_code,
        )


_http_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """
    Get or create the shared outbound HTTP client.

    Coroutine so FastAPI resolves it on the event loop rather than a worker
    thread; there is no await between the check and the assignment.
    """
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=CALLBACK_TIMEOUT)
    return _http_client


async def close_http_client():
    global _http_client
    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None
