from marketchat.domain.auth import AuthContext
from marketchat.schemas.conversation import (
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationResponse,
    ConversationStateResponse,
    MessageExchangeResponse,
)
from marketchat.schemas.message import MessageResponse
from marketchat.services.chat_service import (
    ConversationMessages,
    ConversationView,
    MessageExchange,
)


def to_conversation_response(view: ConversationView) -> ConversationResponse:
    conversation = view.conversation
    closure = view.closure
    return ConversationResponse(
        id=conversation.id,
        customer_user_id=conversation.customer_user_id,
        vendor_user_id=conversation.vendor_user_id,
        product_id=conversation.product_id,
        is_support=conversation.is_support,
        admin_takeover_enabled=conversation.admin_takeover_enabled,
        closed_at=closure.closed_at,
        closed_reason=closure.closed_reason,
        last_message_at=conversation.last_message_at,
        last_message_preview=conversation.last_message_preview or "",
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        is_closed=closure.is_closed,
        can_view=closure.can_view,
        can_send=closure.can_send,
        participant_notice=closure.participant_notice,
        participant_visible_until=closure.participant_visible_until,
        admin_retention_until=closure.admin_retention_until,
    )


def to_list_response(
    auth: AuthContext, views: list[ConversationView], role: str
) -> ConversationListResponse:
    return ConversationListResponse(
        current_user_id=auth.user_id,
        role=role,
        conversations=[to_conversation_response(view) for view in views],
    )


def to_state_response(
    auth: AuthContext, view: ConversationView, role: str
) -> ConversationStateResponse:
    return ConversationStateResponse(
        current_user_id=auth.user_id,
        role=role,
        conversation=to_conversation_response(view),
    )


def to_messages_response(
    auth: AuthContext, result: ConversationMessages, role: str
) -> ConversationMessagesResponse:
    return ConversationMessagesResponse(
        current_user_id=auth.user_id,
        role=role,
        conversation=to_conversation_response(result.view),
        messages=[MessageResponse.model_validate(message) for message in result.messages],
    )


def to_exchange_response(
    auth: AuthContext, result: MessageExchange, role: str
) -> MessageExchangeResponse:
    return MessageExchangeResponse(
        current_user_id=auth.user_id,
        role=role,
        conversation=to_conversation_response(result.view),
        message=MessageResponse.model_validate(result.message),
    )
