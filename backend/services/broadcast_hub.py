"""
In-memory broadcast hub for channel-partitioned event fan-out.

Delivery is best-effort and at-most-once: no buffering for absent
subscribers, no replay, no acknowledgment. Every operation on the registry
is synchronous, so each mutation completes within a single event-loop turn
and no locking is needed.
"""

import asyncio
import os
from typing import Any, Dict, Optional, Protocol, Set
import structlog

from schemas.events import GatewayEvent

logger = structlog.get_logger()

SUBSCRIBER_QUEUE_SIZE = int(os.getenv("GATEWAY_SUBSCRIBER_QUEUE_SIZE", "100"))


class Connection(Protocol):
    def write(self, message: dict) -> None: ...


class SubscriberClosed(Exception):
    """Write attempted on a subscriber whose stream has ended."""


class Subscriber:
    """
    Write handle for one open SSE stream.

    write() never blocks: a subscriber that falls SUBSCRIBER_QUEUE_SIZE
    messages behind raises asyncio.QueueFull and is dropped by the hub.
    """

    def __init__(self, channel: str, maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        self.channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, message: dict) -> None:
        if self._closed:
            raise SubscriberClosed(self.channel)
        self._queue.put_nowait(message)

    def close(self) -> None:
        self._closed = True

    async def next_message(self, timeout: float) -> Optional[dict]:
        """Next queued message, or None if nothing arrives within timeout."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class BroadcastHub:
    """Channel name -> set of live connections."""

    def __init__(self):
        self._channels: Dict[str, Set[Any]] = {}

    def register(self, channel: str, connection: Connection) -> None:
        self._channels.setdefault(channel, set()).add(connection)
        logger.debug(
            "subscriber_registered",
            channel=channel,
            subscribers=len(self._channels[channel]),
        )

    def unregister(self, channel: str, connection: Connection) -> None:
        members = self._channels.get(channel)
        if members is None or connection not in members:
            return
        members.discard(connection)
        if not members:
            del self._channels[channel]
        logger.debug("subscriber_unregistered", channel=channel, subscribers=len(members))

    def broadcast(self, event: GatewayEvent) -> int:
        """
        Deliver event to every connection on its channel.

        Returns the number of successful deliveries. A connection that fails
        to accept the write is dropped; the remaining connections still
        receive the event and nothing is raised to the caller.
        """
        members = self._channels.get(event.channel)
        if not members:
            logger.debug("broadcast_no_subscribers", channel=event.channel, kind=event.kind.value)
            return 0

        message = event.to_sse_message()
        delivered = 0
        for connection in list(members):
            try:
                connection.write(message)
                delivered += 1
            except Exception as e:
                logger.warning(
                    "broadcast_delivery_failed",
                    channel=event.channel,
                    kind=event.kind.value,
                    error=f"{type(e).__name__}: {e}",
                )
                self._drop(event.channel, connection)

        logger.debug(
            "event_broadcast",
            channel=event.channel,
            kind=event.kind.value,
            delivered=delivered,
        )
        return delivered

    def _drop(self, channel: str, connection: Connection) -> None:
        self.unregister(channel, connection)
        close = getattr(connection, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception as e:
            logger.warning("subscriber_close_failed", channel=channel, error=str(e))

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def channels(self) -> Dict[str, int]:
        return {name: len(members) for name, members in self._channels.items()}


_hub: Optional[BroadcastHub] = None


async def get_hub() -> BroadcastHub:
    """
    Get or create the process-wide BroadcastHub.

    Coroutine so FastAPI resolves it on the event loop, never a worker
    thread; creation has no await, so two first requests cannot race.
    """
    global _hub
    if _hub is None:
        _hub = BroadcastHub()
    return _hub
