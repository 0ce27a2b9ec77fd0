"""
SSE subscription stream for one channel.
"""

import asyncio
import os
from typing import AsyncGenerator, Optional
import structlog
from sse_starlette.sse import ServerSentEvent
from starlette.requests import Request

from services.broadcast_hub import BroadcastHub, Subscriber

logger = structlog.get_logger()

KEEPALIVE_INTERVAL = float(os.getenv("GATEWAY_SSE_KEEPALIVE_INTERVAL", "15"))


async def channel_event_stream(
    hub: BroadcastHub,
    channel: str,
    request: Optional[Request] = None,
    keepalive_interval: float = KEEPALIVE_INTERVAL,
) -> AsyncGenerator[ServerSentEvent, None]:
    """
    Yield SSE frames for every event broadcast on channel after registration.

    Comment frames (connected / keep-alive) carry no event and are ignored by
    EventSource clients. The subscriber is unregistered on every exit path.
    """
    subscriber = Subscriber(channel)
    hub.register(channel, subscriber)
    logger.info("sse_connection_started", channel=channel)

    try:
        yield ServerSentEvent(comment="connected")

        while not subscriber.closed:
            if request is not None and await request.is_disconnected():
                logger.info("sse_client_disconnected", channel=channel)
                break

            message = await subscriber.next_message(timeout=keepalive_interval)
            if message is None:
                yield ServerSentEvent(comment="keep-alive")
                continue

            yield ServerSentEvent(data=message["data"], event=message["event"])

        if subscriber.closed:
            logger.info("sse_subscriber_dropped", channel=channel)

    except asyncio.CancelledError:
        logger.info("sse_stream_cancelled", channel=channel)
        raise
    finally:
        hub.unregister(channel, subscriber)
        subscriber.close()
        logger.info("sse_connection_closed", channel=channel)
