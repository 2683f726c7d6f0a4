import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Collection

from messaging.schemas.chat_identity import ChatIdentity, ChatType
from messaging.schemas.message import MessageCreateSchema, MessageSchema
from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.schemas.read_state import ChatReadStateSchema

MAX_MESSAGE_COUNT_PER_PAGE: int = 100


class AbstractChatRepo(ABC):

    # ---------------------------------------------------------------------------------
    # Messages

    @abstractmethod
    async def add_message(self, message: MessageCreateSchema) -> MessageSchema:
        """
        Add message record to the DB. `created_at` is assigned by the repository.

        Raises:
         - ChatRepoRequestError (duplicated client_token, ...)
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_message_by_client_token(
        self, sender_id: uuid.UUID, client_token: str
    ) -> MessageSchema | None:
        """
        Get the message sent by `sender_id` with the idempotency token
        `client_token`. Returns None if there is no such message.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_message_list(
        self,
        viewer_id: uuid.UUID,
        chat: ChatIdentity,
        offset: int = 0,
        limit: int = MAX_MESSAGE_COUNT_PER_PAGE,
        before: datetime | None = None,
    ) -> list[MessageSchema]:
        """
        Get list of chat's messages ordered newest-first.
        If `before` is set, only messages with created_at <= before are returned.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_direct_counterpart_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Get ids of all users that `user_id` has ever sent direct messages to or
        received direct messages from.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def mark_direct_messages_read(
        self, receiver_id: uuid.UUID, sender_id: uuid.UUID, read_at: datetime
    ) -> int:
        """
        Set read_at for unread direct messages sent by `sender_id` to `receiver_id`.
        Messages that already have read_at are not updated.
        Returns number of updated messages.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    # ---------------------------------------------------------------------------------
    # Read state

    @abstractmethod
    async def increment_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        message_at: datetime,
    ) -> None:
        """
        Atomically increment unread_count (creates the record if it doesn't exist)
        and set last_message_at.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def reset_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        read_at: datetime,
    ) -> None:
        """
        Atomically set unread_count to 0 and last_read_at to `read_at` (creates the
        record if it doesn't exist).

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_read_state(
        self, user_id: uuid.UUID, chat_id: str, chat_type: ChatType
    ) -> ChatReadStateSchema | None:
        """
        Get read state record. Returns None if it doesn't exist.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_read_state_list(
        self, user_id: uuid.UUID
    ) -> list[ChatReadStateSchema]:
        """
        Get all read state records of the user.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_total_unread_count(
        self, user_id: uuid.UUID, group_ids: Collection[uuid.UUID] | None = None
    ) -> int:
        """
        Get sum of unread_count over all read state records of the user.
        If `group_ids` is passed, group records of other groups are not counted.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    # ---------------------------------------------------------------------------------
    # Profiles and groups

    @abstractmethod
    async def add_profile(self, profile: ProfileSchema) -> ProfileSchema:
        """
        Add profile record to the DB.

        Raises:
         - ChatRepoRequestError (duplicated id, ...)
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_profile(self, user_id: uuid.UUID) -> ProfileSchema | None:
        """
        Get profile by user id. Returns None if it doesn't exist.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def add_group(self, group: ChatGroupSchema) -> ChatGroupSchema:
        """
        Add chat group record to the DB.

        Raises:
         - ChatRepoRequestError (duplicated id, ...)
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        """
        Get chat group by id. Returns None if it doesn't exist.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def add_user_to_group(self, group_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """
        Add group membership record to the DB.

        Raises:
         - ChatRepoRequestError (group doesn't exist, user is already a member)
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def remove_user_from_group(
        self, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        """
        Remove group membership record.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_group_member_ids(self, group_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Get ids of the current members of the group.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Get ids of the groups the user is a member of.

        Raises:
         - ChatRepoDatabaseError if the database fails
        """
        raise NotImplementedError()
