"""Server-Sent Events helpers for pushing conversation and group state."""
import asyncio
import json
import logging
from typing import AsyncIterator, Callable, Optional

from langcampus.core.config import settings

logger = logging.getLogger(__name__)

# SSE headers (disable proxy buffering so events are delivered immediately)
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def event_stream(
    queue: asyncio.Queue,
    event: str,
    unsubscribe,
    heartbeat_seconds: Optional[float] = None,
    on_heartbeat: Optional[Callable[[], None]] = None,
) -> AsyncIterator[str]:
    """
    Drain ``queue`` as SSE events. A None item ends the stream. A comment line
    is sent as heartbeat whenever nothing arrives for ``heartbeat_seconds``;
    ``on_heartbeat`` runs alongside it while the client stays connected.
    """
    heartbeat = heartbeat_seconds or settings.sse_heartbeat_seconds
    try:
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                if on_heartbeat is not None:
                    on_heartbeat()
                yield ": heartbeat\n\n"
                continue
            if item is None:
                yield format_event("closed", {})
                break
            yield format_event(event, item)
    finally:
        unsubscribe()
        logger.debug(f"SSE stream for {event} closed")
