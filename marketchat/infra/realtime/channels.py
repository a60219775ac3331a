from uuid import UUID

ADMIN_INBOX_CHANNEL = "admins:inbox"


def conversation_channel(conversation_id: UUID) -> str:
    return f"conversation:{conversation_id}"


def user_inbox_channel(user_id: str) -> str:
    return f"user:{user_id}:inbox"
