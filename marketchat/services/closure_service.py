import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketchat.core.clock import Clock, utcnow
from marketchat.domain.closure import ConversationClosure, last_activity_at
from marketchat.domain.enums import ClosedReason
from marketchat.infra.db.models import Conversation
from marketchat.infra.db.repositories import ConversationRepository, ProductRepository
from marketchat.services.errors import ConversationStoreError

logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 300
PURGE_BATCH_SIZE = 500


@dataclass(slots=True)
class AutoCloseResult:
    changed: bool
    conversation: Conversation


@dataclass(slots=True)
class HousekeepingResult:
    auto_closed: int
    purged: int


class ConversationClosureService:
    """Closes conversations automatically and purges them once retention expires.

    Closing is always a conditional write on ``closed_at IS NULL``, so running
    any of these operations twice has no additional effect.
    """

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        products: ProductRepository | None = None,
        closure: ConversationClosure | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.conversations = conversations or ConversationRepository(session)
        self.products = products or ProductRepository(session)
        self.closure = closure or ConversationClosure()
        self.clock = clock

    async def maybe_auto_close(self, conversation: Conversation) -> AutoCloseResult:
        if conversation.closed_at is not None or conversation.is_support:
            return AutoCloseResult(changed=False, conversation=conversation)

        try:
            unavailable = await self._is_product_unavailable(conversation.product_id)
            reason = self.closure.auto_close_reason(
                last_activity_at(
                    conversation.last_message_at,
                    conversation.updated_at,
                    conversation.created_at,
                ),
                product_unavailable=unavailable,
                now=self.clock(),
            )
            if reason is None:
                return AutoCloseResult(changed=False, conversation=conversation)

            changed = await self.close(conversation.id, conversation.vendor_user_id, reason)
        except SQLAlchemyError as exc:
            logger.error("Auto-close failed for conversation %s", conversation.id, exc_info=True)
            raise ConversationStoreError() from exc

        return AutoCloseResult(changed=changed, conversation=conversation)

    async def close(
        self,
        conversation_id: UUID,
        closed_by_user_id: str,
        reason: ClosedReason,
    ) -> bool:
        changed = await self.conversations.close(
            conversation_id,
            closed_by_user_id=closed_by_user_id,
            reason=reason,
            now=self.clock(),
        )
        if changed:
            logger.info("Closed conversation %s (%s)", conversation_id, reason.value)
        return changed

    async def reopen(self, conversation_id: UUID) -> bool:
        changed = await self.conversations.reopen(conversation_id, now=self.clock())
        if changed:
            logger.info("Reopened conversation %s", conversation_id)
        return changed

    async def sweep_auto_close(self) -> int:
        now = self.clock()
        closed = 0

        unavailable_ids = await self.products.list_unavailable_ids(limit=PURGE_BATCH_SIZE)
        unavailable = await self.conversations.list_open_for_products(
            unavailable_ids, limit=PURGE_BATCH_SIZE
        )
        unavailable += await self.conversations.list_open_without_product(limit=PURGE_BATCH_SIZE)
        for conversation in unavailable:
            if await self.close(
                conversation.id, conversation.vendor_user_id, ClosedReason.PRODUCT_UNAVAILABLE
            ):
                closed += 1

        unavailable_cache: dict[UUID | None, bool] = {}
        stale = await self.conversations.list_open_stale(
            self.closure.inactivity_cutoff(now), limit=SWEEP_BATCH_SIZE
        )
        for conversation in stale:
            if conversation.product_id not in unavailable_cache:
                unavailable_cache[conversation.product_id] = await self._is_product_unavailable(
                    conversation.product_id
                )
            reason = self.closure.auto_close_reason(
                last_activity_at(conversation.last_message_at, conversation.updated_at),
                product_unavailable=unavailable_cache[conversation.product_id],
                now=now,
            )
            if reason is not None and await self.close(
                conversation.id, conversation.vendor_user_id, reason
            ):
                closed += 1

        return closed

    async def purge_expired(self) -> int:
        cutoff = self.closure.retention_cutoff(self.clock())
        expired_ids = await self.conversations.list_expired_closed_ids(
            cutoff, limit=PURGE_BATCH_SIZE
        )
        purged = await self.conversations.delete_many(expired_ids)
        if purged:
            logger.info("Purged %d expired conversations", purged)
        return purged

    async def run_housekeeping(self) -> HousekeepingResult | None:
        """Best-effort sweep and purge; failures are logged and never raised."""
        try:
            auto_closed = await self.sweep_auto_close()
            purged = await self.purge_expired()
            await self.session.commit()
        except SQLAlchemyError:
            logger.warning("Chat housekeeping failed", exc_info=True)
            await self._safe_rollback()
            return None
        return HousekeepingResult(auto_closed=auto_closed, purged=purged)

    async def _is_product_unavailable(self, product_id: UUID | None) -> bool:
        # Product chats lose their product_id when the product row is deleted.
        if product_id is None:
            return True
        product = await self.products.get_by_id(product_id)
        return product is None or not product.is_available

    async def _safe_rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after housekeeping failure failed", exc_info=True)
