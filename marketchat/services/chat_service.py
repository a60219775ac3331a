import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketchat.core.clock import Clock, utcnow
from marketchat.core.config import Settings, get_settings
from marketchat.domain.auth import AuthContext
from marketchat.domain.closure import ClosureState, ConversationClosure
from marketchat.domain.enums import ChatSurface, ClosedReason, ProductStatus
from marketchat.infra.db.models import Conversation, Message
from marketchat.infra.db.repositories import (
    ConversationRepository,
    MessageRepository,
    ProductRepository,
)
from marketchat.infra.realtime.channels import (
    ADMIN_INBOX_CHANNEL,
    conversation_channel,
    user_inbox_channel,
)
from marketchat.infra.realtime.events import RealtimeEvent
from marketchat.infra.realtime.publisher import NoopRealtimePublisher, RealtimePublisher
from marketchat.schemas.message import SendMessageRequest
from marketchat.services.closure_service import ConversationClosureService
from marketchat.services.errors import (
    AdminTakeoverError,
    ConversationAccessDeniedError,
    ConversationClosedError,
    ConversationNotFoundError,
    ConversationStoreError,
    ConversationUnavailableError,
    InvalidPayloadError,
    NotAuthorizedError,
    ProductNotFoundError,
    SellerUnavailableError,
    SupportConversationError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversationView:
    conversation: Conversation
    closure: ClosureState


@dataclass(slots=True)
class ConversationMessages:
    view: ConversationView
    messages: list[Message]


@dataclass(slots=True)
class MessageExchange:
    view: ConversationView
    message: Message


@contextmanager
def _store_call(message: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Conversation store call failed: %s", message, exc_info=True)
        raise ConversationStoreError(message) from exc


class ChatService:
    """Guarded read/send pipeline for marketplace chats.

    Every operation runs the same sequence: surface authorization,
    best-effort housekeeping, load, participant check, auto-close, closure
    evaluation, and only then the requested read or write.
    """

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        products: ProductRepository | None = None,
        closure_service: ConversationClosureService | None = None,
        realtime: RealtimePublisher | None = None,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.products = products or ProductRepository(session)
        self.closure = ConversationClosure(self.settings.closure_policy())
        self.closure_service = closure_service or ConversationClosureService(
            session,
            conversations=self.conversations,
            products=self.products,
            closure=self.closure,
            clock=clock,
        )
        self.realtime = realtime or NoopRealtimePublisher()

    async def list_conversations(
        self, auth: AuthContext, surface: ChatSurface
    ) -> list[ConversationView]:
        self._authorize_surface(auth, surface)
        await self.closure_service.run_housekeeping()

        with _store_call("Unable to load conversations."):
            if surface == ChatSurface.DASHBOARD and auth.is_admin:
                rows = await self.conversations.list_recent()
            else:
                rows = await self.conversations.list_for_participant(auth.user_id)

        views = [ConversationView(row, self._evaluate(row, auth)) for row in rows]
        return [view for view in views if view.closure.can_view]

    async def get_messages(
        self,
        auth: AuthContext,
        conversation_id: UUID,
        surface: ChatSurface,
        limit: str | int | None = None,
    ) -> ConversationMessages:
        self._authorize_surface(auth, surface)
        view = await self._load_for_viewer(auth, conversation_id)
        if not view.closure.can_view:
            raise ConversationNotFoundError(conversation_id)

        resolved_limit = self._resolve_limit(surface, limit)
        with _store_call("Unable to load messages."):
            messages = await self.messages.list_recent(conversation_id, resolved_limit)
            await self.session.commit()

        await self._mark_receipts(view.conversation, auth)
        return ConversationMessages(view=view, messages=messages)

    async def send_message(
        self,
        auth: AuthContext,
        conversation_id: UUID,
        surface: ChatSurface,
        payload: Any,
    ) -> MessageExchange:
        self._authorize_surface(auth, surface)
        view = await self._load_for_viewer(auth, conversation_id)
        conversation = view.conversation

        if not view.closure.can_send:
            if view.closure.is_closed:
                raise ConversationClosedError(conversation_id, view.closure.participant_notice)
            raise AdminTakeoverError(conversation_id)
        if auth.is_vendor and conversation.admin_takeover_enabled:
            raise AdminTakeoverError(conversation_id)

        try:
            request = SendMessageRequest.model_validate(payload)
        except ValidationError as exc:
            raise InvalidPayloadError() from exc

        with _store_call("Unable to send message."):
            message = await self.messages.create(
                conversation_id=conversation.id,
                sender_user_id=auth.user_id,
                body=request.body,
            )
            await self.conversations.record_message(conversation, message)
            await self.session.commit()

        await self._emit_message_created(conversation, message)
        return MessageExchange(view=view, message=message)

    async def start_conversation(
        self, auth: AuthContext, product_id: UUID
    ) -> ConversationMessages:
        await self.closure_service.run_housekeeping()

        with _store_call("Unable to verify product."):
            product = await self.products.get_by_id(product_id)
        if product is None or product.status != ProductStatus.PUBLISH:
            raise ProductNotFoundError(product_id)

        vendor_user_id = (product.owner_user_id or "").strip()
        if not vendor_user_id:
            raise SellerUnavailableError()
        if vendor_user_id == auth.user_id:
            raise InvalidPayloadError("You cannot open a chat with yourself.")

        with _store_call("Unable to start conversation."):
            conversation = await self.conversations.find_or_create_for_product(
                customer_user_id=auth.user_id,
                vendor_user_id=vendor_user_id,
                product_id=product_id,
            )
        view = await self._auto_close_and_evaluate(auth, conversation)
        if not view.closure.can_view:
            raise ConversationUnavailableError()

        with _store_call("Unable to load conversation messages."):
            messages = await self.messages.list_recent(
                view.conversation.id, self.settings.chat_storefront_default_limit
            )
            await self.session.commit()
        return ConversationMessages(view=view, messages=messages)

    async def open_help_center(self, auth: AuthContext) -> ConversationView:
        if auth.is_admin:
            raise NotAuthorizedError("Admin cannot open Help Center with self.")
        await self.closure_service.run_housekeeping()

        with _store_call("Unable to initialize Help Center chat."):
            conversation = await self.conversations.find_or_create_support(
                auth.user_id, self.settings.chat_support_user_id
            )
            await self.session.commit()

        view = ConversationView(conversation, self._evaluate(conversation, auth))
        if not view.closure.can_view:
            raise ConversationUnavailableError()
        return view

    async def close_conversation(
        self, auth: AuthContext, conversation_id: UUID
    ) -> ConversationView:
        await self.closure_service.run_housekeeping()
        conversation = await self._get_for_participant(auth, conversation_id)
        if conversation.is_support:
            raise SupportConversationError(conversation_id, "ended")

        with _store_call("Unable to close conversation."):
            changed = await self.closure_service.close(
                conversation_id, auth.user_id, ClosedReason.ENDED_BY_USER
            )
            conversation = await self._get_or_raise(conversation_id)
            await self.session.commit()

        view = ConversationView(conversation, self._evaluate(conversation, auth))
        if changed:
            await self._emit_conversation_event(conversation, RealtimeEvent.CHAT_CLOSED)
        return view

    async def reopen_conversation(
        self, auth: AuthContext, conversation_id: UUID
    ) -> ConversationView:
        self._require_admin(auth)
        await self._get_existing(conversation_id)

        with _store_call("Unable to reopen conversation."):
            changed = await self.closure_service.reopen(conversation_id)
            conversation = await self._get_or_raise(conversation_id)
            await self.session.commit()

        if changed:
            await self._emit_conversation_event(conversation, RealtimeEvent.CHAT_REOPENED)
        return ConversationView(conversation, self._evaluate(conversation, auth))

    async def set_admin_takeover(
        self, auth: AuthContext, conversation_id: UUID, enabled: bool
    ) -> ConversationView:
        self._require_admin(auth)
        conversation = await self._get_existing(conversation_id)

        with _store_call("Unable to update chat takeover."):
            await self.conversations.set_admin_takeover(
                conversation, enabled, auth.user_id, self.clock()
            )
            await self.session.commit()

        logger.info(
            "Admin %s %s takeover of conversation %s",
            auth.user_id,
            "enabled" if enabled else "disabled",
            conversation_id,
        )
        await self._emit_conversation_event(conversation, RealtimeEvent.ADMIN_TAKEOVER_CHANGED)
        return ConversationView(conversation, self._evaluate(conversation, auth))

    async def clear_conversation(self, auth: AuthContext, conversation_id: UUID) -> None:
        self._authorize_surface(auth, ChatSurface.DASHBOARD)
        await self.closure_service.run_housekeeping()
        conversation = await self._get_for_participant(auth, conversation_id)
        if conversation.is_support:
            raise SupportConversationError(conversation_id, "cleared")

        with _store_call("Unable to clear chat."):
            await self.messages.delete_by_conversation(conversation_id)
            await self.conversations.delete(conversation_id)
            await self.session.commit()
        logger.info("User %s cleared conversation %s", auth.user_id, conversation_id)

    async def delete_conversation(self, auth: AuthContext, conversation_id: UUID) -> None:
        self._authorize_surface(auth, ChatSurface.DASHBOARD)
        await self._get_for_participant(auth, conversation_id)

        with _store_call("Unable to delete conversation."):
            await self.conversations.delete(conversation_id)
            await self.session.commit()
        logger.info("User %s deleted conversation %s", auth.user_id, conversation_id)

    async def _load_for_viewer(
        self, auth: AuthContext, conversation_id: UUID
    ) -> ConversationView:
        await self.closure_service.run_housekeeping()
        conversation = await self._get_for_participant(auth, conversation_id)
        return await self._auto_close_and_evaluate(auth, conversation)

    async def _auto_close_and_evaluate(
        self, auth: AuthContext, conversation: Conversation
    ) -> ConversationView:
        result = await self.closure_service.maybe_auto_close(conversation)
        if result.changed:
            # Persist the close before any rejection ends the request.
            with _store_call("Unable to load conversation."):
                await self.session.commit()
            conversation = await self._get_existing(conversation.id)
        return ConversationView(conversation, self._evaluate(conversation, auth))

    async def _get_for_participant(
        self, auth: AuthContext, conversation_id: UUID
    ) -> Conversation:
        conversation = await self._get_existing(conversation_id)
        if not auth.is_admin and not conversation.has_participant(auth.user_id):
            raise ConversationAccessDeniedError(conversation_id, auth.user_id)
        return conversation

    async def _get_existing(self, conversation_id: UUID) -> Conversation:
        with _store_call("Unable to load conversation."):
            return await self._get_or_raise(conversation_id)

    async def _get_or_raise(self, conversation_id: UUID) -> Conversation:
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def _evaluate(self, conversation: Conversation, auth: AuthContext) -> ClosureState:
        return self.closure.evaluate(
            conversation,
            is_admin=auth.is_admin,
            now=self.clock(),
            viewer_id=auth.user_id,
        )

    def _resolve_limit(self, surface: ChatSurface, raw: str | int | None) -> int:
        if surface == ChatSurface.DASHBOARD:
            default, maximum = (
                self.settings.chat_dashboard_default_limit,
                self.settings.chat_dashboard_max_limit,
            )
        else:
            default, maximum = (
                self.settings.chat_storefront_default_limit,
                self.settings.chat_storefront_max_limit,
            )

        if raw is None or raw == "":
            return default
        try:
            limit = int(raw)
        except (TypeError, ValueError) as exc:
            raise InvalidPayloadError("Invalid message query.") from exc
        if not 1 <= limit <= maximum:
            raise InvalidPayloadError("Invalid message query.")
        return limit

    @staticmethod
    def _authorize_surface(auth: AuthContext, surface: ChatSurface) -> None:
        if surface == ChatSurface.DASHBOARD and not (auth.is_admin or auth.is_vendor):
            raise NotAuthorizedError()

    @staticmethod
    def _require_admin(auth: AuthContext) -> None:
        if not auth.is_admin:
            raise NotAuthorizedError()

    async def _mark_receipts(self, conversation: Conversation, auth: AuthContext) -> None:
        if not conversation.has_participant(auth.user_id):
            return
        try:
            await self.messages.mark_read(conversation.id, auth.user_id, self.clock())
            await self.session.commit()
        except SQLAlchemyError:
            logger.warning(
                "Failed to mark receipts for conversation %s", conversation.id, exc_info=True
            )
            await self.session.rollback()

    def _participants_can_view(self, conversation: Conversation) -> bool:
        return self.closure.evaluate(conversation, is_admin=False, now=self.clock()).can_view

    async def _emit_message_created(self, conversation: Conversation, message: Message) -> None:
        payload = {
            "conversation_id": str(conversation.id),
            "message": self._message_payload(message),
        }
        # Chats past the participant window reach admins only.
        if not self._participants_can_view(conversation):
            await self._safe_publish([ADMIN_INBOX_CHANNEL], RealtimeEvent.MESSAGE_RECEIVED, payload)
            return

        await self._safe_publish(
            [conversation_channel(conversation.id)], RealtimeEvent.MESSAGE_CREATED, payload
        )
        recipients = [
            user_inbox_channel(user_id)
            for user_id in (conversation.customer_user_id, conversation.vendor_user_id)
            if user_id != message.sender_user_id
        ]
        if conversation.is_support:
            recipients.append(ADMIN_INBOX_CHANNEL)
        await self._safe_publish(recipients, RealtimeEvent.MESSAGE_RECEIVED, payload)

    async def _emit_conversation_event(
        self, conversation: Conversation, event: RealtimeEvent
    ) -> None:
        if self._participants_can_view(conversation):
            channels = [
                conversation_channel(conversation.id),
                user_inbox_channel(conversation.customer_user_id),
                user_inbox_channel(conversation.vendor_user_id),
            ]
        else:
            channels = [ADMIN_INBOX_CHANNEL]
        await self._safe_publish(
            channels,
            event,
            {"conversation": self._conversation_payload(conversation)},
        )

    async def _safe_publish(
        self,
        channels: list[str],
        event: RealtimeEvent,
        payload: dict[str, Any],
    ) -> None:
        try:
            await self.realtime.publish(channels, event, payload)
        except Exception:
            logger.warning("Realtime publish of %s failed", event.value, exc_info=True)

    @staticmethod
    def _conversation_payload(conversation: Conversation) -> dict[str, Any]:
        return {
            "id": str(conversation.id),
            "customerUserId": conversation.customer_user_id,
            "vendorUserId": conversation.vendor_user_id,
            "adminTakeoverEnabled": conversation.admin_takeover_enabled,
            "closedAt": (
                conversation.closed_at.isoformat() if conversation.closed_at is not None else None
            ),
            "closedReason": (
                conversation.closed_reason.value
                if conversation.closed_reason is not None
                else None
            ),
        }

    @staticmethod
    def _message_payload(message: Message) -> dict[str, Any]:
        return {
            "id": str(message.id),
            "conversationId": str(message.conversation_id),
            "senderUserId": message.sender_user_id,
            "body": message.body,
            "createdAt": message.created_at.isoformat(),
        }
