from enum import Enum


class RealtimeEvent(str, Enum):
    MESSAGE_CREATED = "message.created"
    MESSAGE_RECEIVED = "chat.message.received"
    CHAT_CLOSED = "chat.closed"
    CHAT_REOPENED = "chat.reopened"
    ADMIN_TAKEOVER_CHANGED = "chat.admin_takeover.changed"
