from uuid import UUID

from marketchat.domain.closure import CLOSED_SEND_NOTICE


class ChatServiceError(Exception):
    default_message = "Chat service unavailable."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthorizedError(ChatServiceError, PermissionError):
    default_message = "Forbidden."


class ConversationNotFoundError(ChatServiceError, LookupError):
    default_message = "Conversation not found."

    def __init__(self, conversation_id: UUID, message: str | None = None) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id


class ConversationAccessDeniedError(NotAuthorizedError):
    def __init__(self, conversation_id: UUID, user_id: str) -> None:
        super().__init__()
        self.conversation_id = conversation_id
        self.user_id = user_id


class ConversationClosedError(NotAuthorizedError):
    default_message = CLOSED_SEND_NOTICE

    def __init__(self, conversation_id: UUID, notice: str = "") -> None:
        super().__init__(notice or None)
        self.conversation_id = conversation_id


class AdminTakeoverError(NotAuthorizedError):
    default_message = "Admin has taken over this chat. You can no longer send messages."

    def __init__(self, conversation_id: UUID) -> None:
        super().__init__()
        self.conversation_id = conversation_id


class SupportConversationError(NotAuthorizedError):
    def __init__(self, conversation_id: UUID, action: str) -> None:
        super().__init__(f"Help Center chats cannot be {action}.")
        self.conversation_id = conversation_id


class InvalidPayloadError(ChatServiceError, ValueError):
    default_message = "Invalid message payload."


class ConversationStoreError(ChatServiceError):
    """A read or write against the conversation store failed."""

    default_message = "Unable to load conversation."


class ProductNotFoundError(ChatServiceError, LookupError):
    default_message = "Product not found."

    def __init__(self, product_id: UUID) -> None:
        super().__init__()
        self.product_id = product_id


class SellerUnavailableError(ChatServiceError):
    default_message = "Seller chat is unavailable for this product."


class ConversationUnavailableError(ChatServiceError):
    default_message = "This chat is no longer available."
