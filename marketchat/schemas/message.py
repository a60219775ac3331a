from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from marketchat.schemas.common import CamelModel

MAX_MESSAGE_LENGTH = 2000


class SendMessageRequest(BaseModel):
    body: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)

    model_config = ConfigDict(str_strip_whitespace=True)


class MessageResponse(CamelModel):
    id: UUID
    conversation_id: UUID
    sender_user_id: str
    body: str
    created_at: datetime
    read_at: datetime | None = None
