"""Realtime chat fan-out over websockets."""

from marketchat.infra.realtime.hub import InMemoryRealtimeHub
from marketchat.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher

__all__ = ["InMemoryRealtimeHub", "NoopRealtimePublisher", "RealtimePublisher"]
