import uuid
from typing import Literal

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.message import MessageCreateSchema


def channel_code(
    ch_type: Literal["private", "group", "user"], id: uuid.UUID | str
) -> str:
    return f"{ch_type}_{id}"


def chat_channel(viewer_id: uuid.UUID, chat: ChatIdentity) -> str:
    """
    Channel of the chat. The same for all participants of the chat.
    """
    return channel_code(chat.chat_type.value, chat.chat_key(viewer_id))


def message_channel(message: MessageCreateSchema) -> str:
    return channel_code(message.chat_type.value, message.chat_key())


def user_channel(user_id: uuid.UUID) -> str:
    return channel_code("user", user_id)
