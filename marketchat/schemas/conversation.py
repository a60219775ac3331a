from datetime import datetime
from uuid import UUID

from marketchat.domain.enums import ClosedReason
from marketchat.schemas.common import CamelModel
from marketchat.schemas.message import MessageResponse


class ConversationResponse(CamelModel):
    id: UUID
    customer_user_id: str
    vendor_user_id: str
    product_id: UUID | None
    is_support: bool
    admin_takeover_enabled: bool
    closed_at: datetime | None
    closed_reason: ClosedReason | None
    last_message_at: datetime | None
    last_message_preview: str
    created_at: datetime
    updated_at: datetime

    is_closed: bool
    can_view: bool
    can_send: bool
    participant_notice: str
    participant_visible_until: datetime | None
    admin_retention_until: datetime | None


class StartConversationRequest(CamelModel):
    product_id: UUID


class AdminTakeoverRequest(CamelModel):
    admin_takeover_enabled: bool = False


class ConversationListResponse(CamelModel):
    current_user_id: str
    role: str
    conversations: list[ConversationResponse]


class ConversationStateResponse(CamelModel):
    current_user_id: str
    role: str
    conversation: ConversationResponse


class ConversationMessagesResponse(CamelModel):
    current_user_id: str
    role: str
    conversation: ConversationResponse
    messages: list[MessageResponse]


class MessageExchangeResponse(CamelModel):
    current_user_id: str
    role: str
    conversation: ConversationResponse
    message: MessageResponse


class ClearConversationResponse(CamelModel):
    cleared: bool
    conversation_id: UUID


class DeleteConversationResponse(CamelModel):
    deleted_conversation_id: UUID
