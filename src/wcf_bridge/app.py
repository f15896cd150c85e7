"""WeChat SDK bridge application.

Creates the Starlette ASGI application with all routes.

Route organization:
- /health - Health check
- /api-doc.json - OpenAPI document for the command routes
- /event - SSE event streaming
- /ws - WebSocket event streaming
- everything else - one route per SDK command (see routes.commands)

The runtime (SDK session, dispatcher, event forwarding) is started and
stopped by the application lifespan and shared via ``app.state.runtime``.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import BaseRoute

from .config import BridgeConfig
from .routes import (
    command_routes,
    event_routes,
    health_routes,
    schema_routes,
    websocket_routes,
)
from .runtime import BridgeRuntime


def create_app(
    config: BridgeConfig | None = None,
    *,
    runtime: BridgeRuntime | None = None,
) -> Starlette:
    """Create the bridge application.

    Args:
        config: Bridge settings (default: read from the environment)
        runtime: Prebuilt runtime, e.g. one wired to a mock transport

    Returns:
        Configured Starlette application
    """
    if runtime is None:
        runtime = BridgeRuntime(config or BridgeConfig.from_env())

    routes: list[BaseRoute] = []
    routes.extend(health_routes)
    routes.extend(schema_routes)
    routes.extend(event_routes)
    routes.extend(websocket_routes)
    routes.extend(command_routes)

    # CORS middleware for local development
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:*", "http://127.0.0.1:*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.runtime = runtime
    return app
