from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from marketchat.core.config import Settings
from marketchat.domain.closure import ConversationClosure
from marketchat.domain.enums import ClosedReason, ProductStatus
from marketchat.infra.realtime.events import RealtimeEvent
from marketchat.services.chat_service import ChatService
from marketchat.services.closure_service import ConversationClosureService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class DummySession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


@dataclass(slots=True)
class FakeProduct:
    id: UUID
    owner_user_id: str | None
    status: ProductStatus = ProductStatus.PUBLISH
    stock_quantity: int = 5

    @property
    def is_available(self) -> bool:
        return self.status == ProductStatus.PUBLISH and self.stock_quantity > 0


@dataclass(slots=True)
class FakeConversation:
    id: UUID
    customer_user_id: str
    vendor_user_id: str
    created_at: datetime
    updated_at: datetime
    product_id: UUID | None = None
    is_support: bool = False
    admin_takeover_enabled: bool = False
    admin_takeover_by_user_id: str | None = None
    closed_at: datetime | None = None
    closed_by_user_id: str | None = None
    closed_reason: ClosedReason | None = None
    last_message_at: datetime | None = None
    last_message_preview: str = ""

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.customer_user_id, self.vendor_user_id)


@dataclass(slots=True)
class FakeMessage:
    id: UUID
    conversation_id: UUID
    sender_user_id: str
    body: str
    created_at: datetime
    read_at: datetime | None = None


@dataclass(slots=True)
class ChatStore:
    clock: FakeClock
    conversations: dict[UUID, FakeConversation] = field(default_factory=dict)
    messages: dict[UUID, FakeMessage] = field(default_factory=dict)
    products: dict[UUID, FakeProduct] = field(default_factory=dict)

    def add_product(self, owner_user_id: str | None = "vendor-1", **kwargs: Any) -> FakeProduct:
        product = FakeProduct(id=uuid4(), owner_user_id=owner_user_id, **kwargs)
        self.products[product.id] = product
        return product

    def add_conversation(self, **kwargs: Any) -> FakeConversation:
        values: dict[str, Any] = {
            "customer_user_id": "customer-1",
            "vendor_user_id": "vendor-1",
            "created_at": self.clock(),
            "updated_at": self.clock(),
        }
        values.update(kwargs)
        if "product_id" not in kwargs and not values.get("is_support"):
            values["product_id"] = self.add_product(owner_user_id=values["vendor_user_id"]).id
        conversation = FakeConversation(id=uuid4(), **values)
        self.conversations[conversation.id] = conversation
        return conversation

    def add_message(self, conversation: FakeConversation, sender_user_id: str, body: str) -> FakeMessage:
        message = FakeMessage(
            id=uuid4(),
            conversation_id=conversation.id,
            sender_user_id=sender_user_id,
            body=body,
            created_at=self.clock(),
        )
        self.messages[message.id] = message
        return message

    def messages_for(self, conversation_id: UUID) -> list[FakeMessage]:
        return sorted(
            (m for m in self.messages.values() if m.conversation_id == conversation_id),
            key=lambda message: message.created_at,
        )


class FakeConversationRepository:
    def __init__(self, store: ChatStore) -> None:
        self.store = store

    async def get_by_id(self, conversation_id: UUID) -> FakeConversation | None:
        return self.store.conversations.get(conversation_id)

    async def list_for_participant(self, user_id: str, limit: int = 300) -> list[FakeConversation]:
        rows = [c for c in self.store.conversations.values() if c.has_participant(user_id)]
        return self._newest_first(rows)[:limit]

    async def list_recent(self, limit: int = 300) -> list[FakeConversation]:
        return self._newest_first(list(self.store.conversations.values()))[:limit]

    async def find_for_product(
        self, customer_user_id: str, vendor_user_id: str, product_id: UUID
    ) -> FakeConversation | None:
        for conversation in self.store.conversations.values():
            if (
                conversation.customer_user_id == customer_user_id
                and conversation.vendor_user_id == vendor_user_id
                and conversation.product_id == product_id
            ):
                return conversation
        return None

    async def find_support(self, user_id: str, support_user_id: str) -> FakeConversation | None:
        for conversation in self.store.conversations.values():
            if (
                conversation.is_support
                and conversation.customer_user_id == user_id
                and conversation.vendor_user_id == support_user_id
            ):
                return conversation
        return None

    async def find_or_create_for_product(
        self, customer_user_id: str, vendor_user_id: str, product_id: UUID
    ) -> FakeConversation:
        existing = await self.find_for_product(customer_user_id, vendor_user_id, product_id)
        if existing is not None:
            return existing
        return self.store.add_conversation(
            customer_user_id=customer_user_id,
            vendor_user_id=vendor_user_id,
            product_id=product_id,
        )

    async def find_or_create_support(self, user_id: str, support_user_id: str) -> FakeConversation:
        existing = await self.find_support(user_id, support_user_id)
        if existing is not None:
            return existing
        return self.store.add_conversation(
            customer_user_id=user_id, vendor_user_id=support_user_id, is_support=True
        )

    async def close(
        self,
        conversation_id: UUID,
        closed_by_user_id: str,
        reason: ClosedReason,
        now: datetime,
    ) -> bool:
        conversation = self.store.conversations.get(conversation_id)
        if conversation is None or conversation.closed_at is not None:
            return False
        conversation.closed_at = now
        conversation.closed_by_user_id = closed_by_user_id
        conversation.closed_reason = reason
        conversation.updated_at = now
        return True

    async def reopen(self, conversation_id: UUID, now: datetime) -> bool:
        conversation = self.store.conversations.get(conversation_id)
        if conversation is None or conversation.closed_at is None:
            return False
        conversation.closed_at = None
        conversation.closed_by_user_id = None
        conversation.closed_reason = None
        conversation.updated_at = now
        return True

    async def set_admin_takeover(
        self, conversation: FakeConversation, enabled: bool, admin_user_id: str, now: datetime
    ) -> None:
        conversation.admin_takeover_enabled = enabled
        conversation.admin_takeover_by_user_id = admin_user_id if enabled else None
        conversation.updated_at = now

    async def record_message(self, conversation: FakeConversation, message: FakeMessage) -> None:
        conversation.last_message_at = message.created_at
        conversation.last_message_preview = message.body[:160]
        conversation.updated_at = message.created_at

    async def delete(self, conversation_id: UUID) -> bool:
        return await self.delete_many([conversation_id]) == 1

    async def delete_many(self, conversation_ids: list[UUID]) -> int:
        removed = 0
        for conversation_id in conversation_ids:
            if self.store.conversations.pop(conversation_id, None) is not None:
                removed += 1
                for message in self.store.messages_for(conversation_id):
                    self.store.messages.pop(message.id, None)
        return removed

    async def list_open_stale(self, cutoff: datetime, limit: int = 300) -> list[FakeConversation]:
        return [
            c
            for c in self.store.conversations.values()
            if c.closed_at is None
            and not c.is_support
            and (c.last_message_at or c.updated_at) < cutoff
        ][:limit]

    async def list_open_for_products(
        self, product_ids: list[UUID], limit: int = 500
    ) -> list[FakeConversation]:
        return [
            c
            for c in self.store.conversations.values()
            if c.closed_at is None and not c.is_support and c.product_id in product_ids
        ][:limit]

    async def list_open_without_product(self, limit: int = 500) -> list[FakeConversation]:
        return [
            c
            for c in self.store.conversations.values()
            if c.closed_at is None and not c.is_support and c.product_id is None
        ][:limit]

    async def list_expired_closed_ids(self, cutoff: datetime, limit: int = 500) -> list[UUID]:
        return [
            c.id
            for c in self.store.conversations.values()
            if c.closed_at is not None and c.closed_at < cutoff and not c.is_support
        ][:limit]

    @staticmethod
    def _newest_first(rows: list[FakeConversation]) -> list[FakeConversation]:
        return sorted(rows, key=lambda c: c.last_message_at or c.updated_at, reverse=True)


class FakeMessageRepository:
    def __init__(self, store: ChatStore) -> None:
        self.store = store

    async def create(self, conversation_id: UUID, sender_user_id: str, body: str) -> FakeMessage:
        conversation = self.store.conversations[conversation_id]
        return self.store.add_message(conversation, sender_user_id, body)

    async def list_recent(self, conversation_id: UUID, limit: int) -> list[FakeMessage]:
        return self.store.messages_for(conversation_id)[-limit:]

    async def mark_read(self, conversation_id: UUID, viewer_user_id: str, now: datetime) -> int:
        marked = 0
        for message in self.store.messages_for(conversation_id):
            if message.sender_user_id != viewer_user_id and message.read_at is None:
                message.read_at = now
                marked += 1
        return marked

    async def delete_by_conversation(self, conversation_id: UUID) -> int:
        messages = self.store.messages_for(conversation_id)
        for message in messages:
            self.store.messages.pop(message.id, None)
        return len(messages)


class FakeProductRepository:
    def __init__(self, store: ChatStore) -> None:
        self.store = store

    async def get_by_id(self, product_id: UUID) -> FakeProduct | None:
        return self.store.products.get(product_id)

    async def list_unavailable_ids(self, limit: int = 500) -> list[UUID]:
        return [p.id for p in self.store.products.values() if not p.is_available][:limit]


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[list[str], RealtimeEvent, dict[str, Any]]] = []

    async def publish(
        self,
        channels: Sequence[str],
        event: RealtimeEvent,
        payload: Mapping[str, Any],
    ) -> None:
        self.events.append((list(channels), event, dict(payload)))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> ChatStore:
    return ChatStore(clock=clock)


@pytest.fixture
def session() -> DummySession:
    return DummySession()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        chat_participant_visibility_days=7,
        chat_admin_retention_days=30,
        chat_inactivity_close_days=7,
    )


@pytest.fixture
def closure_service_factory(
    store: ChatStore, session: DummySession, clock: FakeClock, settings: Settings
) -> Callable[..., ConversationClosureService]:
    def build(**overrides: Any) -> ConversationClosureService:
        values: dict[str, Any] = {
            "conversations": FakeConversationRepository(store),
            "products": FakeProductRepository(store),
            "closure": ConversationClosure(settings.closure_policy()),
            "clock": clock,
        }
        values.update(overrides)
        return ConversationClosureService(session, **values)

    return build


@pytest.fixture
def chat_service_factory(
    store: ChatStore,
    session: DummySession,
    clock: FakeClock,
    settings: Settings,
    publisher: RecordingPublisher,
) -> Callable[..., ChatService]:
    def build(**overrides: Any) -> ChatService:
        values: dict[str, Any] = {
            "conversations": FakeConversationRepository(store),
            "messages": FakeMessageRepository(store),
            "products": FakeProductRepository(store),
            "realtime": publisher,
            "settings": settings,
            "clock": clock,
        }
        values.update(overrides)
        return ChatService(session, **values)

    return build
