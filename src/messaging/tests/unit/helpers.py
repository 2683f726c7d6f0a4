import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.message import MessageCreateSchema, MessageSchema
from messaging.schemas.profile import ChatGroupSchema
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
)


@dataclass
class Users:
    alice: uuid.UUID
    bob: uuid.UUID
    carol: uuid.UUID
    group_id: uuid.UUID


async def wait_until(condition: Callable[[], bool], timeout: float = 1.0):
    """
    Wait until condition() returns True. Raises TimeoutError.
    """

    async def _wait():
        while not condition():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_wait(), timeout=timeout)


def make_message(
    message_id: int,
    sender_id: uuid.UUID,
    chat: ChatIdentity,
    content: str = "hi",
    created_at: datetime | None = None,
) -> MessageSchema:
    """
    Message as it's returned by the storage
    """
    message = MessageCreateSchema.for_chat(sender_id, chat, content)
    return MessageSchema(
        **message.model_dump(),
        id=message_id,
        created_at=created_at or datetime(2024, 5, 1) + timedelta(seconds=message_id),
    )


class FakeGroupMembership(AbstractGroupMembershipProvider):
    """
    Membership provider backed by a dict: {group_id: member ids}
    """

    def __init__(self, members: dict[uuid.UUID, set[uuid.UUID]] | None = None):
        self.members = members if members is not None else {}

    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        if group_id not in self.members:
            return None
        return ChatGroupSchema(
            id=group_id, name="Group", created_at=datetime(2024, 5, 1)
        )

    async def get_member_ids(self, group_id: uuid.UUID) -> set[uuid.UUID]:
        return set(self.members.get(group_id, set()))

    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        return [
            group_id
            for group_id, member_ids in self.members.items()
            if user_id in member_ids
        ]
