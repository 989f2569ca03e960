"""Live run event stream API router."""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from toolgate.infra.events import QueueEventSink, event_sink

router = APIRouter()


def get_event_sink() -> QueueEventSink:
    return event_sink


@router.get("/events/{channel}", tags=["Events"])
async def stream_events(channel: str, sink: QueueEventSink = Depends(get_event_sink)):
    """Server-Sent Events stream of run step events for a channel."""
    return StreamingResponse(
        sink.stream(channel),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
