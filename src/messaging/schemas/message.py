import uuid
from datetime import datetime

from pydantic import Field, field_validator, model_validator

from .base import BaseSchema
from .chat_identity import ChatIdentity, ChatType, direct_chat_key

MAX_CLIENT_TOKEN_LENGTH = 64


class MessageCreateSchema(BaseSchema):
    """
    Message before being saved in the DB.
    Exactly one of `receiver_id` (direct) and `chat_group_id` (group) is set.
    """

    sender_id: uuid.UUID
    receiver_id: uuid.UUID | None = None
    chat_group_id: uuid.UUID | None = None
    content: str
    client_token: str | None = Field(default=None, max_length=MAX_CLIENT_TOKEN_LENGTH)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message content is empty")
        return v

    @model_validator(mode="after")
    def check_single_target(self):
        if (self.receiver_id is None) == (self.chat_group_id is None):
            raise ValueError(
                "Exactly one of receiver_id and chat_group_id should be set"
            )
        return self

    @classmethod
    def for_chat(
        cls,
        sender_id: uuid.UUID,
        chat: ChatIdentity,
        content: str,
        client_token: str | None = None,
    ) -> "MessageCreateSchema":
        target = (
            {"chat_group_id": chat.chat_id}
            if chat.is_group
            else {"receiver_id": chat.chat_id}
        )
        return cls(
            sender_id=sender_id, content=content, client_token=client_token, **target
        )

    @property
    def chat_type(self) -> ChatType:
        return ChatType.group if self.chat_group_id is not None else ChatType.private

    def chat_key(self) -> str:
        if self.chat_group_id is not None:
            return str(self.chat_group_id)
        assert self.receiver_id is not None
        return direct_chat_key(self.sender_id, self.receiver_id)

    def chat_identity(self, viewer_id: uuid.UUID) -> ChatIdentity:
        """
        Identity of the message's chat from the point of view of `viewer_id`.
        """
        if self.chat_group_id is not None:
            return ChatIdentity.group(self.chat_group_id)
        assert self.receiver_id is not None
        if viewer_id == self.sender_id:
            return ChatIdentity.private(self.receiver_id)
        return ChatIdentity.private(self.sender_id)

    def belongs_to(self, viewer_id: uuid.UUID, chat: ChatIdentity) -> bool:
        if chat.is_group:
            return self.chat_group_id == chat.chat_id
        if self.receiver_id is None:
            return False
        return {self.sender_id, self.receiver_id} == {viewer_id, chat.chat_id}


class MessageSchema(MessageCreateSchema):
    """
    Message that has been saved in the DB (has `id` and `created_at`)
    """

    id: int
    created_at: datetime
    read_at: datetime | None = None


class MessagePage(BaseSchema):
    """
    One page of chat history, ordered oldest-first.

    `anchor` is the upper bound of `created_at` the page was counted against.
    Pass it as `before` when requesting the next pages.
    """

    messages: list[MessageSchema]
    has_more: bool
    anchor: datetime | None = None


class SendResult(BaseSchema):
    message: MessageSchema
    created: bool = True
