import uuid
from enum import Enum

from pydantic import ConfigDict

from .base import BaseSchema


class ChatType(str, Enum):
    private = "private"
    group = "group"


def direct_chat_key(user_id_1: uuid.UUID, user_id_2: uuid.UUID) -> str:
    """
    Canonical key of the direct chat between two users.
    The same for both participants: "{min(id1, id2)}|{max(id1, id2)}".
    """
    first, second = sorted((str(user_id_1), str(user_id_2)))
    return f"{first}|{second}"


class ChatIdentity(BaseSchema):
    """
    Chat address as seen by a viewer.

    For private chats `chat_id` is the id of the other participant, so two
    participants address the same conversation with different identities.
    Use `chat_key()` to get the canonical key shared by both of them.
    """

    model_config = ConfigDict(frozen=True)

    chat_type: ChatType
    chat_id: uuid.UUID

    @classmethod
    def private(cls, counterpart_id: uuid.UUID) -> "ChatIdentity":
        return cls(chat_type=ChatType.private, chat_id=counterpart_id)

    @classmethod
    def group(cls, group_id: uuid.UUID) -> "ChatIdentity":
        return cls(chat_type=ChatType.group, chat_id=group_id)

    @property
    def is_group(self) -> bool:
        return self.chat_type is ChatType.group

    def chat_key(self, viewer_id: uuid.UUID) -> str:
        if self.is_group:
            return str(self.chat_id)
        return direct_chat_key(viewer_id, self.chat_id)
