"""Live event sink for run step events (Server-Sent Events fan-out)."""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, List, Protocol

logger = logging.getLogger(__name__)

ON_RUN_STEP_DELTA = "on_run_step_delta"
STEP_TYPE_TOOL_CALLS = "tool_calls"


class EventSink(Protocol):
    def send(self, channel: str, event_name: str, payload: Dict[str, Any]) -> None:
        ...


def format_sse(event_name: str, data: Dict[str, Any]) -> str:
    """Render one Server-Sent Events frame."""
    return f"event: {event_name}\ndata: {json.dumps(data)}\n\n"


class QueueEventSink:
    """
    Fans events out to per-channel asyncio queues.

    send() never blocks and never raises: a full subscriber queue drops the
    event for that subscriber only.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    def subscribe(self, channel: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[channel].append(queue)
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        subscribers = self._subscribers.get(channel)
        if not subscribers:
            return
        if queue in subscribers:
            subscribers.remove(queue)
        if not subscribers:
            del self._subscribers[channel]

    def send(self, channel: str, event_name: str, payload: Dict[str, Any]) -> None:
        subscribers = self._subscribers.get(channel, [])
        if not subscribers:
            logger.debug(f"No subscribers on channel {channel} for {event_name}")
        for queue in list(subscribers):
            try:
                queue.put_nowait({"event": event_name, "data": payload})
            except asyncio.QueueFull:
                logger.warning(f"Event queue full on channel {channel}; dropped {event_name}")

    async def stream(self, channel: str) -> AsyncIterator[str]:
        """Yield SSE frames for a channel until the consumer goes away."""
        queue = self.subscribe(channel)
        try:
            while True:
                event = await queue.get()
                yield format_sse(event["event"], event["data"])
        finally:
            self.unsubscribe(channel, queue)


# Global event sink instance
event_sink = QueueEventSink()
