from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from marketchat.domain.enums import ClosedReason, ProductStatus


class Base(DeclarativeBase):
    pass


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Product(Base, TimestampMixin):
    """Catalog product, read by the chat service for availability and ownership."""

    __tablename__ = "catalog_products"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_user_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[ProductStatus] = mapped_column(
        Enum(ProductStatus, name="product_status", values_callable=_enum_values),
        nullable=False,
        default=ProductStatus.DRAFT,
    )
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def is_available(self) -> bool:
        return self.status == ProductStatus.PUBLISH and self.stock_quantity > 0


class Conversation(Base, TimestampMixin):
    __tablename__ = "chat_conversations"
    __table_args__ = (
        UniqueConstraint(
            "customer_user_id",
            "vendor_user_id",
            "product_id",
            name="uq_chat_conversation_participants_product",
        ),
        Index(
            "uq_chat_support_conversation",
            "customer_user_id",
            "vendor_user_id",
            unique=True,
            postgresql_where=text("is_support"),
            sqlite_where=text("is_support"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    customer_user_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    vendor_user_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    product_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("catalog_products.id", ondelete="SET NULL"), nullable=True
    )
    is_support: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    admin_takeover_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    admin_takeover_by_user_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    closed_by_user_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    closed_reason: Mapped[ClosedReason | None] = mapped_column(
        Enum(ClosedReason, name="chat_closed_reason", values_callable=_enum_values), nullable=True
    )
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_message_preview: Mapped[str] = mapped_column(String(160), nullable=False, default="")

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan", passive_deletes=True
    )

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.customer_user_id, self.vendor_user_id)


class Message(Base):
    __tablename__ = "chat_messages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("chat_conversations.id", ondelete="CASCADE"), index=True
    )
    sender_user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    conversation: Mapped[Conversation] = relationship(back_populates="messages")
