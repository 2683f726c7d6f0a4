import asyncio
import dataclasses
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Collection

from messaging.schemas.chat_identity import ChatIdentity, ChatType
from messaging.schemas.message import MessageCreateSchema, MessageSchema
from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.schemas.read_state import ChatReadStateSchema
from messaging.services.chat_repo.abstract_chat_repo import (
    MAX_MESSAGE_COUNT_PER_PAGE,
    AbstractChatRepo,
)
from messaging.services.chat_repo.chat_repo_exc import ChatRepoRequestError
from messaging.services.chat_repo.utils import message_clock

ReadStateKey = tuple[uuid.UUID, str, ChatType]


@dataclasses.dataclass
class InMemoryChatRepoData:
    messages: dict[int, MessageSchema] = dataclasses.field(default_factory=dict)
    read_states: dict[ReadStateKey, ChatReadStateSchema] = dataclasses.field(
        default_factory=dict
    )
    profiles: dict[uuid.UUID, ProfileSchema] = dataclasses.field(default_factory=dict)
    groups: dict[uuid.UUID, ChatGroupSchema] = dataclasses.field(default_factory=dict)
    group_members: defaultdict[uuid.UUID, set[uuid.UUID]] = dataclasses.field(
        default_factory=lambda: defaultdict(set)
    )
    last_message_id: int = 0


class InMemoryStorage:
    """
    Process-local storage shared by all in-memory units of work.
    Transactions are serialized by `lock`.
    """

    def __init__(self):
        self.data = InMemoryChatRepoData()
        self.lock = asyncio.Lock()


class InMemoryChatRepo(AbstractChatRepo):
    def __init__(self, storage: InMemoryStorage):
        self._storage = storage

    @property
    def _data(self) -> InMemoryChatRepoData:
        return self._storage.data

    # ---------------------------------------------------------------------------------
    # Messages

    async def add_message(self, message: MessageCreateSchema) -> MessageSchema:
        if message.client_token is not None:
            existing = await self.get_message_by_client_token(
                message.sender_id, message.client_token
            )
            if existing is not None:
                raise ChatRepoRequestError(
                    detail=f"Duplicated client_token {message.client_token}"
                )
        self._data.last_message_id += 1
        message_in_db = MessageSchema(
            **message.model_dump(),
            id=self._data.last_message_id,
            created_at=message_clock.now(),
        )
        self._data.messages[message_in_db.id] = message_in_db
        return message_in_db

    async def get_message_by_client_token(
        self, sender_id: uuid.UUID, client_token: str
    ) -> MessageSchema | None:
        for message in self._data.messages.values():
            if message.sender_id == sender_id and message.client_token == client_token:
                return message
        return None

    async def get_message_list(
        self,
        viewer_id: uuid.UUID,
        chat: ChatIdentity,
        offset: int = 0,
        limit: int = MAX_MESSAGE_COUNT_PER_PAGE,
        before: datetime | None = None,
    ) -> list[MessageSchema]:
        messages = [
            message
            for message in self._data.messages.values()
            if message.belongs_to(viewer_id, chat)
            and (before is None or message.created_at <= before)
        ]
        messages.sort(key=lambda msg: (msg.created_at, msg.id), reverse=True)
        return messages[offset : offset + limit]

    async def get_direct_counterpart_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        counterparts: set[uuid.UUID] = set()
        for message in self._data.messages.values():
            if message.receiver_id is None:
                continue
            if message.sender_id == user_id:
                counterparts.add(message.receiver_id)
            elif message.receiver_id == user_id:
                counterparts.add(message.sender_id)
        return list(counterparts)

    async def mark_direct_messages_read(
        self, receiver_id: uuid.UUID, sender_id: uuid.UUID, read_at: datetime
    ) -> int:
        updated = 0
        for message_id, message in self._data.messages.items():
            if (
                message.receiver_id == receiver_id
                and message.sender_id == sender_id
                and message.read_at is None
            ):
                self._data.messages[message_id] = message.model_copy(
                    update={"read_at": read_at}
                )
                updated += 1
        return updated

    # ---------------------------------------------------------------------------------
    # Read state

    def _get_or_create_read_state(
        self, user_id: uuid.UUID, chat_id: str, chat_type: ChatType
    ) -> ChatReadStateSchema:
        key = (user_id, chat_id, chat_type)
        state = self._data.read_states.get(key)
        if state is None:
            state = ChatReadStateSchema(
                user_id=user_id, chat_id=chat_id, chat_type=chat_type
            )
            self._data.read_states[key] = state
        return state

    async def increment_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        message_at: datetime,
    ) -> None:
        state = self._get_or_create_read_state(user_id, chat_id, chat_type)
        state.unread_count += 1
        state.last_message_at = message_at

    async def reset_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        read_at: datetime,
    ) -> None:
        state = self._get_or_create_read_state(user_id, chat_id, chat_type)
        state.unread_count = 0
        state.last_read_at = read_at

    async def get_read_state(
        self, user_id: uuid.UUID, chat_id: str, chat_type: ChatType
    ) -> ChatReadStateSchema | None:
        state = self._data.read_states.get((user_id, chat_id, chat_type))
        return state.model_copy() if state is not None else None

    async def get_read_state_list(
        self, user_id: uuid.UUID
    ) -> list[ChatReadStateSchema]:
        return [
            state.model_copy()
            for (state_user_id, _, _), state in self._data.read_states.items()
            if state_user_id == user_id
        ]

    async def get_total_unread_count(
        self, user_id: uuid.UUID, group_ids: Collection[uuid.UUID] | None = None
    ) -> int:
        states = await self.get_read_state_list(user_id)
        if group_ids is not None:
            group_keys = {str(group_id) for group_id in group_ids}
            states = [
                state
                for state in states
                if state.chat_type is ChatType.private or state.chat_id in group_keys
            ]
        return sum(state.unread_count for state in states)

    # ---------------------------------------------------------------------------------
    # Profiles and groups

    async def add_profile(self, profile: ProfileSchema) -> ProfileSchema:
        if profile.id in self._data.profiles:
            raise ChatRepoRequestError(detail=f"Profile {profile.id} already exists")
        self._data.profiles[profile.id] = profile
        return profile

    async def get_profile(self, user_id: uuid.UUID) -> ProfileSchema | None:
        return self._data.profiles.get(user_id)

    async def add_group(self, group: ChatGroupSchema) -> ChatGroupSchema:
        if group.id in self._data.groups:
            raise ChatRepoRequestError(detail=f"Group {group.id} already exists")
        self._data.groups[group.id] = group
        return group

    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        return self._data.groups.get(group_id)

    async def add_user_to_group(self, group_id: uuid.UUID, user_id: uuid.UUID) -> None:
        if group_id not in self._data.groups:
            raise ChatRepoRequestError(detail=f"Group with id={group_id} doesn't exist")
        members = self._data.group_members[group_id]
        if user_id in members:
            raise ChatRepoRequestError(
                detail=f"User {user_id} is already a member of group {group_id}"
            )
        members.add(user_id)

    async def remove_user_from_group(
        self, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        self._data.group_members[group_id].discard(user_id)

    async def get_group_member_ids(self, group_id: uuid.UUID) -> list[uuid.UUID]:
        return list(self._data.group_members.get(group_id, set()))

    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        return [
            group_id
            for group_id, members in self._data.group_members.items()
            if user_id in members
        ]
