from datetime import timedelta

import pytest
from sqlalchemy import delete, func, select

from marketchat.domain.closure import as_utc
from marketchat.domain.enums import ClosedReason
from marketchat.infra.db.models import Conversation, Message, Product
from marketchat.infra.db.repositories import ConversationRepository, MessageRepository


@pytest.mark.asyncio
async def test_close_and_reopen_only_apply_once(db_session, seed, now) -> None:
    conversation = await seed.conversation()
    repo = ConversationRepository(db_session)

    assert await repo.close(conversation.id, "customer-1", ClosedReason.ENDED_BY_USER, now) is True
    later = now + timedelta(hours=1)
    assert await repo.close(conversation.id, "vendor-1", ClosedReason.INACTIVE, later) is False
    await db_session.commit()

    stored = await repo.get_by_id(conversation.id)
    assert as_utc(stored.closed_at) == now
    assert stored.closed_by_user_id == "customer-1"
    assert stored.closed_reason == ClosedReason.ENDED_BY_USER

    assert await repo.reopen(conversation.id, later) is True
    assert await repo.reopen(conversation.id, later) is False
    stored = await repo.get_by_id(conversation.id)
    assert stored.closed_at is None
    assert stored.closed_reason is None


@pytest.mark.asyncio
async def test_stale_listing_prefers_last_message_time(db_session, seed, now) -> None:
    old = now - timedelta(days=10)
    talked_recently = await seed.conversation(
        created_at=old, updated_at=old, last_message_at=now - timedelta(days=1)
    )
    never_talked = await seed.conversation(
        customer_user_id="customer-2", created_at=old, updated_at=old
    )
    await seed.conversation(
        customer_user_id="customer-3", updated_at=old, closed_at=now - timedelta(days=1)
    )
    await seed.conversation(
        vendor_user_id="platform-support", is_support=True, updated_at=old
    )
    await db_session.commit()

    stale = await ConversationRepository(db_session).list_open_stale(now - timedelta(days=7))

    assert [conversation.id for conversation in stale] == [never_talked.id]
    assert talked_recently.id not in {conversation.id for conversation in stale}


@pytest.mark.asyncio
async def test_expired_listing_skips_support_and_retained(db_session, seed, now) -> None:
    expired = await seed.conversation(closed_at=now - timedelta(days=31))
    await seed.conversation(customer_user_id="customer-2", closed_at=now - timedelta(days=29))
    await seed.conversation(
        vendor_user_id="platform-support", is_support=True, closed_at=now - timedelta(days=90)
    )
    await db_session.commit()

    expired_ids = await ConversationRepository(db_session).list_expired_closed_ids(
        now - timedelta(days=30)
    )

    assert expired_ids == [expired.id]


@pytest.mark.asyncio
async def test_delete_many_cascades_to_messages(db_session, seed, now) -> None:
    conversation = await seed.conversation(closed_at=now - timedelta(days=40))
    await seed.message(conversation, "customer-1", "Hello")
    await seed.message(conversation, "vendor-1", "Hi")
    kept = await seed.conversation(customer_user_id="customer-2")
    await seed.message(kept, "customer-2", "Still here")
    await db_session.commit()

    repo = ConversationRepository(db_session)
    assert await repo.delete_many([conversation.id]) == 1
    await db_session.commit()

    remaining = await db_session.scalar(
        select(func.count()).select_from(Message).where(Message.conversation_id == conversation.id)
    )
    assert remaining == 0
    assert await repo.get_by_id(conversation.id) is None
    assert await repo.get_by_id(kept.id) is not None


@pytest.mark.asyncio
async def test_mark_read_only_touches_other_side(db_session, seed, now) -> None:
    conversation = await seed.conversation()
    from_vendor = await seed.message(conversation, "vendor-1", "Hi there")
    from_customer = await seed.message(conversation, "customer-1", "Hello")
    await db_session.commit()

    messages = MessageRepository(db_session)
    assert await messages.mark_read(conversation.id, "customer-1", now) == 1
    assert await messages.mark_read(conversation.id, "customer-1", now) == 0
    await db_session.commit()

    read_at = dict(
        (await db_session.execute(select(Message.id, Message.read_at))).tuples().all()
    )
    assert as_utc(read_at[from_vendor.id]) == now
    assert read_at[from_customer.id] is None


@pytest.mark.asyncio
async def test_find_or_create_for_product_reuses_row(db_session, seed) -> None:
    product = await seed.product()
    repo = ConversationRepository(db_session)

    first = await repo.find_or_create_for_product("customer-1", "vendor-1", product.id)
    second = await repo.find_or_create_for_product("customer-1", "vendor-1", product.id)
    await db_session.commit()

    assert first.id == second.id
    assert first.product_id == product.id
    assert first.is_support is False


@pytest.mark.asyncio
async def test_support_chat_duplicate_insert_falls_back_to_existing(
    db_session, session_factory, monkeypatch
) -> None:
    async with session_factory() as other:
        existing = await ConversationRepository(other).find_or_create_support(
            "customer-1", "platform-support"
        )
        await other.commit()

    repo = ConversationRepository(db_session)
    real_find = repo.find_support
    lookups: list[str] = []

    async def find_missing_first(user_id: str, support_user_id: str) -> Conversation | None:
        lookups.append(user_id)
        if len(lookups) == 1:
            return None
        return await real_find(user_id, support_user_id)

    monkeypatch.setattr(repo, "find_support", find_missing_first)

    conversation = await repo.find_or_create_support("customer-1", "platform-support")
    await db_session.commit()

    assert conversation.id == existing.id
    assert len(lookups) == 2
    count = await db_session.scalar(
        select(func.count()).select_from(Conversation).where(Conversation.is_support.is_(True))
    )
    assert count == 1


@pytest.mark.asyncio
async def test_deleting_product_detaches_its_chats(db_session, seed) -> None:
    conversation = await seed.conversation()
    product_id = conversation.product_id
    await seed.conversation(
        customer_user_id="customer-2", vendor_user_id="platform-support", is_support=True
    )
    await db_session.commit()

    await db_session.execute(delete(Product).where(Product.id == product_id))
    await db_session.commit()

    repo = ConversationRepository(db_session)
    stored = await repo.get_by_id(conversation.id)
    assert stored.product_id is None
    orphaned = await repo.list_open_without_product()
    assert [row.id for row in orphaned] == [conversation.id]
