"""
Agent Event Gateway API Server - FastAPI with SSE streaming.

Triggers external agent workflows, accepts their progress callbacks and fans
events out to per-channel SSE subscribers.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
from dotenv import load_dotenv
import structlog

# Load .env from project root (parent of backend/)
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationError
import httpx

from schemas import ProgressReport
from orchestrator.agent_registry import AgentMapError, AgentRegistry, get_agent_registry
from orchestrator.dispatcher import (
    AgentNotFoundError,
    CallbackStatusError,
    CallbackTransportError,
    RunDispatcher,
    close_http_client,
    get_http_client,
)
from services.broadcast_hub import BroadcastHub, get_hub
from services.subscriptions import channel_event_stream

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

SSE_SEND_TIMEOUT = float(os.getenv("GATEWAY_SSE_SEND_TIMEOUT", "30"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - build shared objects on the loop, release the HTTP client."""
    logger.info("starting_agent_event_gateway")
    registry = await get_agent_registry()
    await get_hub()
    await get_http_client()
    logger.info("gateway_started", agents=len(registry))
    yield
    logger.info("shutting_down_agent_event_gateway")
    await close_http_client()


app = FastAPI(
    title="Agent Event Gateway",
    description="Triggers agent workflows and streams their progress over SSE",
    version="1.0.0",
    lifespan=lifespan,
)

from telemetry import configure_telemetry
configure_telemetry(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ============================================================================
# Request/Response Models
# ============================================================================

class RunRequest(BaseModel):
    """Request to trigger an agent run."""
    payload: Any = None
    channel: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("channel", "npc"),
        description="Overrides the mapped channel",
    )


class RunResponse(BaseModel):
    ok: bool = True
    agent_id: str
    channel: str
    run_id: str


class AgentInfo(BaseModel):
    agent_id: str
    channel: str
    callback_url: str


# ============================================================================
# Dependencies
# ============================================================================

async def get_dispatcher(
    hub: BroadcastHub = Depends(get_hub),
    registry: AgentRegistry = Depends(get_agent_registry),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> RunDispatcher:
    return RunDispatcher(hub, registry, http_client)


# ============================================================================
# Health & Info Endpoints
# ============================================================================

@app.get("/health")
async def health_check(hub: BroadcastHub = Depends(get_hub)):
    """Liveness check with a snapshot of open subscriptions."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "channels": hub.channels(),
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check - the agent map must load."""
    try:
        registry = await get_agent_registry()
    except AgentMapError as e:
        logger.error("agent_map_not_ready", error=str(e))
        return JSONResponse(status_code=503, content={"ready": False, "error": str(e)})
    return {"ready": True, "agents": len(registry)}


@app.get("/api/agents", response_model=list[AgentInfo])
async def list_agents(registry: AgentRegistry = Depends(get_agent_registry)):
    """List configured agents and their channels."""
    return [
        AgentInfo(agent_id=m.agent_id, channel=m.channel, callback_url=m.callback_url)
        for m in registry.list()
    ]


# ============================================================================
# Gateway Endpoints
# ============================================================================

@app.post("/api/run/{agent_id}", response_model=RunResponse)
async def run_agent(
    agent_id: str,
    body: Optional[RunRequest] = None,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
):
    """
    Trigger an agent run.

    A `started` event goes out on the agent's channel before the workflow
    runtime is called. Success only means the runtime accepted the trigger;
    completion arrives later through /api/events.
    """
    body = body or RunRequest()
    try:
        result = await dispatcher.dispatch(agent_id, body.payload, channel=body.channel)
    except AgentNotFoundError:
        raise HTTPException(status_code=404, detail="unknown agent")
    except CallbackStatusError as e:
        return JSONResponse(
            status_code=502,
            content={"error": "webhook error", "status": e.status_code, "body": e.body},
        )
    except CallbackTransportError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "forward failed", "message": str(e)},
        )

    return RunResponse(agent_id=result.agent_id, channel=result.channel, run_id=result.run_id)


@app.post("/api/events")
async def report_event(request: Request, hub: BroadcastHub = Depends(get_hub)):
    """
    Accept a progress event from the workflow runtime and broadcast it.

    Any caller that knows a channel name may publish to it; there is no
    correlation with an in-flight run.
    """
    try:
        raw = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid event", "details": ["body is not valid JSON"]})

    try:
        report = ProgressReport.model_validate(raw)
    except ValidationError as e:
        logger.info("event_rejected", errors=e.error_count())
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid event",
                "details": [
                    {"loc": list(err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            },
        )

    event = report.to_event()
    logger.info("event_received", channel=event.channel, kind=event.kind.value)
    delivered = hub.broadcast(event)
    return {"ok": True, "delivered": delivered}


@app.get("/api/stream")
async def stream_channel(
    request: Request,
    channel: Optional[str] = None,
    hub: BroadcastHub = Depends(get_hub),
):
    """
    SSE endpoint for real-time agent events on one channel.

    Only events broadcast after the connection opens are delivered.
    """
    if not channel or not channel.strip():
        raise HTTPException(status_code=400, detail="channel required")

    return EventSourceResponse(
        channel_event_stream(hub, channel.strip(), request),
        send_timeout=SSE_SEND_TIMEOUT,
    )


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "3001"))
    uvicorn.run(app, host="0.0.0.0", port=port)
