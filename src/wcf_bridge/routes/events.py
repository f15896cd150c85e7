"""SSE event streaming endpoint."""

import json

from starlette.requests import Request
from starlette.responses import StreamingResponse
from starlette.routing import Route

CONNECTED_EVENT = {"type": "bridge.connected", "properties": {}}


async def sse_endpoint(request: Request) -> StreamingResponse:
    """SSE endpoint - streams every normalized WeChat event to clients."""
    bus = request.app.state.runtime.bus

    async def event_stream():
        yield f"data: {json.dumps(CONNECTED_EVENT)}\n\n"

        try:
            async for event in bus.stream():
                if await request.is_disconnected():
                    break

                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
        except GeneratorExit:
            pass

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


event_routes = [
    Route("/event", sse_endpoint, methods=["GET"]),
]
