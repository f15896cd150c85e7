"""Health check endpoint."""

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from ..transport.base import SessionState


async def health_check(request: Request) -> JSONResponse:
    """Bridge health: SDK session, event drain and sink counters.

    Always HTTP 200 while the process serves; ``status`` is "degraded"
    whenever the SDK session is not connected.
    """
    runtime = request.app.state.runtime
    snapshot = runtime.status()
    connected = runtime.transport.state == SessionState.CONNECTED
    return JSONResponse({"status": "ok" if connected else "degraded", **snapshot})


health_routes = [
    Route("/health", health_check, methods=["GET"]),
]
