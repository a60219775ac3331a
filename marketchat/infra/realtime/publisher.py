from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from marketchat.infra.realtime.events import RealtimeEvent


class RealtimePublisher(Protocol):
    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None: ...


class NoopRealtimePublisher:
    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        return None
