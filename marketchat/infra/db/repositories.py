from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketchat.domain.enums import ClosedReason, ProductStatus
from marketchat.infra.db.models import Conversation, Message, Product

PREVIEW_LENGTH = 160


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        # close/reopen are bulk UPDATEs; the identity map may be stale.
        return await self.session.get(Conversation, conversation_id, populate_existing=True)

    async def list_for_participant(self, user_id: str, limit: int = 300) -> list[Conversation]:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                or_(
                    Conversation.customer_user_id == user_id,
                    Conversation.vendor_user_id == user_id,
                )
            )
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.updated_at.desc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_recent(self, limit: int = 300) -> list[Conversation]:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .order_by(
                Conversation.last_message_at.desc().nulls_last(),
                Conversation.updated_at.desc(),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_for_product(
        self, customer_user_id: str, vendor_user_id: str, product_id: UUID
    ) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.customer_user_id == customer_user_id,
                Conversation.vendor_user_id == vendor_user_id,
                Conversation.product_id == product_id,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_support(self, user_id: str, support_user_id: str) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.customer_user_id == user_id,
                Conversation.vendor_user_id == support_user_id,
                Conversation.is_support.is_(True),
            )
            .order_by(Conversation.created_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        customer_user_id: str,
        vendor_user_id: str,
        product_id: UUID | None = None,
        is_support: bool = False,
    ) -> Conversation:
        conversation = Conversation(
            customer_user_id=customer_user_id,
            vendor_user_id=vendor_user_id,
            product_id=product_id,
            is_support=is_support,
            admin_takeover_enabled=False,
            last_message_preview="",
        )
        self.session.add(conversation)
        await self.session.flush()
        await self.session.refresh(conversation)
        return conversation

    async def find_or_create_for_product(
        self, customer_user_id: str, vendor_user_id: str, product_id: UUID
    ) -> Conversation:
        existing = await self.find_for_product(customer_user_id, vendor_user_id, product_id)
        if existing is not None:
            return existing

        try:
            async with self.session.begin_nested():
                return await self.create(customer_user_id, vendor_user_id, product_id=product_id)
        except IntegrityError:
            # Lost the race against a concurrent request for the same chat.
            existing = await self.find_for_product(customer_user_id, vendor_user_id, product_id)
            if existing is None:
                raise
            return existing

    async def find_or_create_support(self, user_id: str, support_user_id: str) -> Conversation:
        existing = await self.find_support(user_id, support_user_id)
        if existing is not None:
            return existing

        try:
            async with self.session.begin_nested():
                return await self.create(user_id, support_user_id, is_support=True)
        except IntegrityError:
            existing = await self.find_support(user_id, support_user_id)
            if existing is None:
                raise
            return existing

    async def close(
        self,
        conversation_id: UUID,
        closed_by_user_id: str,
        reason: ClosedReason,
        now: datetime,
    ) -> bool:
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.closed_at.is_(None))
            .values(
                closed_at=now,
                closed_by_user_id=closed_by_user_id,
                closed_reason=reason,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def reopen(self, conversation_id: UUID, now: datetime) -> bool:
        stmt = (
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.closed_at.is_not(None))
            .values(
                closed_at=None,
                closed_by_user_id=None,
                closed_reason=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def set_admin_takeover(
        self, conversation: Conversation, enabled: bool, admin_user_id: str, now: datetime
    ) -> None:
        conversation.admin_takeover_enabled = enabled
        conversation.admin_takeover_by_user_id = admin_user_id if enabled else None
        # An explicit value keeps onupdate from expiring the attribute after flush.
        conversation.updated_at = now
        await self.session.flush()

    async def record_message(self, conversation: Conversation, message: Message) -> None:
        conversation.last_message_at = message.created_at
        conversation.last_message_preview = message.body[:PREVIEW_LENGTH]
        conversation.updated_at = message.created_at
        await self.session.flush()

    async def delete(self, conversation_id: UUID) -> bool:
        stmt = (
            delete(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def delete_many(self, conversation_ids: list[UUID]) -> int:
        if not conversation_ids:
            return 0
        stmt = (
            delete(Conversation)
            .where(Conversation.id.in_(conversation_ids))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def list_open_stale(self, cutoff: datetime, limit: int = 300) -> list[Conversation]:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.closed_at.is_(None),
                Conversation.is_support.is_(False),
                func.coalesce(Conversation.last_message_at, Conversation.updated_at) < cutoff,
            )
            .order_by(Conversation.updated_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_open_for_products(
        self, product_ids: list[UUID], limit: int = 500
    ) -> list[Conversation]:
        if not product_ids:
            return []
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.closed_at.is_(None),
                Conversation.is_support.is_(False),
                Conversation.product_id.in_(product_ids),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_open_without_product(self, limit: int = 500) -> list[Conversation]:
        """Open product chats whose product row has been deleted."""
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.closed_at.is_(None),
                Conversation.is_support.is_(False),
                Conversation.product_id.is_(None),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_expired_closed_ids(self, cutoff: datetime, limit: int = 500) -> list[UUID]:
        stmt: Select[tuple[UUID]] = (
            select(Conversation.id)
            .where(
                Conversation.closed_at.is_not(None),
                Conversation.closed_at < cutoff,
                Conversation.is_support.is_(False),
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, conversation_id: UUID, sender_user_id: str, body: str) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender_user_id=sender_user_id,
            body=body,
        )
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        return message

    async def list_recent(self, conversation_id: UUID, limit: int) -> list[Message]:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(reversed(result.scalars().all()))

    async def mark_read(self, conversation_id: UUID, viewer_user_id: str, now: datetime) -> int:
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_user_id != viewer_user_id,
                Message.read_at.is_(None),
            )
            .values(read_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_by_conversation(self, conversation_id: UUID) -> int:
        stmt = (
            delete(Message)
            .where(Message.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


class ProductRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, product_id: UUID) -> Product | None:
        return await self.session.get(Product, product_id)

    async def list_unavailable_ids(self, limit: int = 500) -> list[UUID]:
        stmt: Select[tuple[UUID]] = (
            select(Product.id)
            .where(
                or_(
                    Product.status != ProductStatus.PUBLISH,
                    Product.stock_quantity <= 0,
                )
            )
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
