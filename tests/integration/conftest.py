from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from marketchat.core.config import Settings
from marketchat.core.db import create_schema
from marketchat.domain.enums import ProductStatus
from marketchat.infra.db.models import Conversation, Message, Product


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        # SQLAlchemy emits BEGIN itself so SAVEPOINT works.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(connection) -> None:
        connection.exec_driver_sql("BEGIN")

    await create_schema(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        chat_participant_visibility_days=7,
        chat_admin_retention_days=30,
        chat_inactivity_close_days=7,
    )


class ChatSeeder:
    def __init__(self, session: AsyncSession, now: datetime) -> None:
        self.session = session
        self.now = now

    async def product(self, **overrides: Any) -> Product:
        values: dict[str, Any] = {
            "owner_user_id": "vendor-1",
            "status": ProductStatus.PUBLISH,
            "stock_quantity": 5,
        }
        values.update(overrides)
        product = Product(**values)
        self.session.add(product)
        await self.session.flush()
        return product

    async def conversation(self, **overrides: Any) -> Conversation:
        values: dict[str, Any] = {
            "customer_user_id": "customer-1",
            "vendor_user_id": "vendor-1",
            "created_at": self.now,
            "updated_at": self.now,
            "last_message_preview": "",
        }
        values.update(overrides)
        if "product_id" not in overrides and not values.get("is_support"):
            values["product_id"] = (await self.product(owner_user_id=values["vendor_user_id"])).id
        conversation = Conversation(**values)
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def message(
        self, conversation: Conversation, sender_user_id: str, body: str
    ) -> Message:
        message = Message(
            conversation_id=conversation.id,
            sender_user_id=sender_user_id,
            body=body,
            created_at=self.now,
        )
        self.session.add(message)
        await self.session.flush()
        return message


@pytest.fixture
def seed(db_session: AsyncSession, now: datetime) -> ChatSeeder:
    return ChatSeeder(db_session, now)
