"""Delivery of normalized events to external sinks."""

from .forwarder import Forwarder, SinkStats, SinkWorker
from .sinks import BusSink, DeliveryMode, PushChannelSink, Sink, WebhookSink

__all__ = [
    "Forwarder",
    "SinkStats",
    "SinkWorker",
    "Sink",
    "DeliveryMode",
    "WebhookSink",
    "PushChannelSink",
    "BusSink",
]
