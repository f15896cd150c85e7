"""WeChat SDK bridge.

Connects to the native WeChat automation SDK over its binary command and
event sockets, exposes the commands as an HTTP API and forwards every
received event to webhooks, a push channel and local SSE/WebSocket clients.
"""

__version__ = "0.1.0"
