import pytest
from starlette.websockets import WebSocketDisconnect

from marketchat.infra.realtime import InMemoryRealtimeHub
from marketchat.infra.realtime.events import RealtimeEvent


class FakeWebSocket:
    def __init__(self, broken: bool = False) -> None:
        self.broken = broken
        self.accepted = False
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.broken:
            raise WebSocketDisconnect(code=1006)
        self.sent.append(data)


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_once_per_channel() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.connect(socket)
    await hub.subscribe(socket, "conversation:1")

    await hub.publish(
        ["conversation:1", "conversation:1", "user:x:inbox"],
        RealtimeEvent.MESSAGE_CREATED,
        {"body": "Hello"},
    )

    assert socket.accepted is True
    assert len(socket.sent) == 1
    assert socket.sent[0]["event"] == "message.created"
    assert socket.sent[0]["channel"] == "conversation:1"


@pytest.mark.asyncio
async def test_broken_socket_is_dropped() -> None:
    hub = InMemoryRealtimeHub()
    broken = FakeWebSocket(broken=True)
    await hub.subscribe(broken, "conversation:1")

    await hub.publish(["conversation:1"], RealtimeEvent.CHAT_CLOSED, {})

    assert hub.subscriber_count("conversation:1") == 0


@pytest.mark.asyncio
async def test_disconnect_removes_all_subscriptions() -> None:
    hub = InMemoryRealtimeHub()
    socket = FakeWebSocket()
    await hub.subscribe(socket, "conversation:1")
    await hub.subscribe(socket, "admins:inbox")

    await hub.disconnect(socket)

    assert hub.subscriber_count("conversation:1") == 0
    assert hub.subscriber_count("admins:inbox") == 0
