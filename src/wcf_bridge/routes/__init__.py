"""HTTP routes for the bridge."""

from .commands import ROUTE_SPECS, RouteSpec, command_routes
from .events import event_routes
from .health import health_routes
from .schema import schema_routes
from .websocket import websocket_routes

__all__ = [
    "ROUTE_SPECS",
    "RouteSpec",
    "command_routes",
    "event_routes",
    "health_routes",
    "schema_routes",
    "websocket_routes",
]
