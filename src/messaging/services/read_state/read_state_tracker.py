import logging
import uuid

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.message import MessageSchema
from messaging.schemas.read_state import ChatReadStateSchema
from messaging.services.chat_repo.abstract_chat_repo import AbstractChatRepo
from messaging.services.chat_repo.utils import utc_now
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
)
from messaging.services.uow.abstract_uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


class ReadStateTracker:
    """
    Keeps unread counters per (user, chat).
    The only writer of unread counters. All updates are atomic on the storage side.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        membership: AbstractGroupMembershipProvider,
    ):
        self._uow_factory = uow_factory
        self._membership = membership

    async def get_recipients(
        self, sender_id: uuid.UUID, chat: ChatIdentity
    ) -> list[uuid.UUID]:
        """
        Users whose unread counters grow when `sender_id` sends a message to `chat`.
        Group members are read fresh on every call.
        """
        if chat.is_group:
            members = await self._membership.get_member_ids(chat.chat_id)
            return sorted(set(members) - {sender_id}, key=str)
        if chat.chat_id == sender_id:
            return []
        return [chat.chat_id]

    async def increment_unread_counts(
        self,
        chat_repo: AbstractChatRepo,
        message: MessageSchema,
        recipients: list[uuid.UUID],
    ) -> None:
        """
        Increment unread counters of the recipients using caller's transaction.
        """
        chat_id = message.chat_key()
        for recipient_id in recipients:
            await chat_repo.increment_unread_count(
                user_id=recipient_id,
                chat_id=chat_id,
                chat_type=message.chat_type,
                message_at=message.created_at,
            )
        logger.debug(
            "Unread counters incremented for %d recipients of message %s",
            len(recipients),
            message.id,
        )

    async def on_message_inserted(self, message: MessageSchema) -> list[uuid.UUID]:
        """
        Increment unread counters of all recipients of the already saved message
        (sender excluded) in a separate transaction.
        Returns the list of recipients whose counters were incremented.

        Raises:
         - ChatRepoException on repository failure
        """
        recipients = await self.get_recipients(
            message.sender_id, message.chat_identity(message.sender_id)
        )
        if not recipients:
            return []
        async with self._uow_factory() as uow:
            await self.increment_unread_counts(uow.chat_repo, message, recipients)
            await uow.commit()
        return recipients

    async def mark_read(self, user_id: uuid.UUID, chat: ChatIdentity) -> None:
        """
        Reset user's unread counter for the chat and remember when it was read.
        For private chats also sets read_at of counterpart's messages.

        Raises:
         - NotAuthorized if user is not a member of the group
         - ChatRepoException on repository failure
        """
        if chat.is_group:
            await self._membership.check_member(chat.chat_id, user_id)
        now = utc_now()
        async with self._uow_factory() as uow:
            await uow.chat_repo.reset_unread_count(
                user_id=user_id,
                chat_id=chat.chat_key(user_id),
                chat_type=chat.chat_type,
                read_at=now,
            )
            if not chat.is_group:
                await uow.chat_repo.mark_direct_messages_read(
                    receiver_id=user_id, sender_id=chat.chat_id, read_at=now
                )
            await uow.commit()

    async def get_unread_count(self, user_id: uuid.UUID, chat: ChatIdentity) -> int:
        async with self._uow_factory() as uow:
            state = await uow.chat_repo.get_read_state(
                user_id=user_id,
                chat_id=chat.chat_key(user_id),
                chat_type=chat.chat_type,
            )
        return state.unread_count if state is not None else 0

    async def get_total_unread_count(self, user_id: uuid.UUID) -> int:
        """
        Sum of unread counters over the chats the user participates in.
        Counters of groups the user has left are not counted.
        """
        group_ids = await self._membership.get_joined_group_ids(user_id)
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_total_unread_count(
                user_id, group_ids=group_ids
            )

    async def get_read_state_list(
        self, user_id: uuid.UUID
    ) -> list[ChatReadStateSchema]:
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_read_state_list(user_id)
