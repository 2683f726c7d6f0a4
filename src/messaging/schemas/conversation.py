import uuid
from datetime import datetime

from pydantic import Field

from .base import BaseSchema
from .chat_identity import ChatIdentity

NO_MESSAGES_PLACEHOLDER = "No messages yet"


class ConversationSchema(BaseSchema):
    """
    One row of the conversation list. Derived data, never persisted.
    """

    id: uuid.UUID
    name: str
    avatar_url: str | None = None
    last_message: str
    last_message_time: datetime
    unread_count: int = Field(default=0, ge=0)
    is_group: bool

    @property
    def chat_identity(self) -> ChatIdentity:
        if self.is_group:
            return ChatIdentity.group(self.id)
        return ChatIdentity.private(self.id)
