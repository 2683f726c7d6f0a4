import uuid
from typing import Annotated, Literal, TypeAlias, Union

from pydantic import Field

from messaging.schemas.chat_identity import ChatType
from messaging.schemas.message import MessageSchema

from .base import BaseSchema


class ChatMessageEvent(BaseSchema):
    event_type: Literal["ChatMessageEvent"] = "ChatMessageEvent"
    message: MessageSchema


class ReadStateChanged(BaseSchema):
    """
    Unread counter of `user_id` in the chat (`chat_id` is the canonical chat key)
    has been changed.
    """

    event_type: Literal["ReadStateChanged"] = "ReadStateChanged"
    user_id: uuid.UUID
    chat_type: ChatType
    chat_id: str
    unread_count: int | None = None


# Discriminated union type

AnyEvent: TypeAlias = Union[
    ChatMessageEvent,
    ReadStateChanged,
]

AnyEventDiscr: TypeAlias = Annotated[
    AnyEvent,
    Field(discriminator="event_type"),
]
