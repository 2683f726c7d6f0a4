import uuid
from datetime import datetime

from pydantic import Field

from .base import BaseSchema
from .chat_identity import ChatType


class ChatReadStateSchema(BaseSchema):
    user_id: uuid.UUID
    chat_id: str
    chat_type: ChatType
    unread_count: int = Field(default=0, ge=0)
    last_read_at: datetime | None = None
    last_message_at: datetime | None = None
