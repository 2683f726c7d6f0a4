import logging
import uuid
import weakref

from messaging.schemas.chat_identity import ChatIdentity, ChatType
from messaging.schemas.conversation import NO_MESSAGES_PLACEHOLDER, ConversationSchema
from messaging.services.conversations.total_unread_count import TotalUnreadCount
from messaging.services.message_store.message_store import MessageStore
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
    AbstractIdentityProvider,
)
from messaging.services.read_state.read_state_tracker import ReadStateTracker

UNKNOWN_USER_NAME = "Unknown"

logger = logging.getLogger(__name__)


class ConversationAggregator:
    """
    Builds the conversation list of a user from the message log, read states,
    profiles and group memberships. Keeps observable total unread counters.
    """

    def __init__(
        self,
        store: MessageStore,
        tracker: ReadStateTracker,
        identity: AbstractIdentityProvider,
        membership: AbstractGroupMembershipProvider,
    ):
        self._store = store
        self._tracker = tracker
        self._identity = identity
        self._membership = membership
        # Entries live as long as somebody (e.g. a badge) holds the counter
        self._totals: weakref.WeakValueDictionary[uuid.UUID, TotalUnreadCount] = (
            weakref.WeakValueDictionary()
        )

    async def get_conversations(
        self, user_id: uuid.UUID, name_filter: str | None = None
    ) -> list[ConversationSchema]:
        """
        Get the list of user's conversations (direct chats with at least one
        message and all joined groups), newest activity first.

        Raises:
         - ChatRepoException on repository failure
        """
        unread_counts = {
            (state.chat_type, state.chat_id): state.unread_count
            for state in await self._tracker.get_read_state_list(user_id)
        }

        conversations: list[ConversationSchema] = []

        for counterpart_id in await self._store.get_counterpart_ids(user_id):
            chat = ChatIdentity.private(counterpart_id)
            last_message = await self._store.get_last_message(user_id, chat)
            if last_message is None:
                continue
            profile = await self._identity.get_profile(counterpart_id)
            conversations.append(
                ConversationSchema(
                    id=counterpart_id,
                    name=profile.name if profile else UNKNOWN_USER_NAME,
                    avatar_url=profile.avatar_url if profile else None,
                    last_message=last_message.content,
                    last_message_time=last_message.created_at,
                    unread_count=unread_counts.get(
                        (ChatType.private, chat.chat_key(user_id)), 0
                    ),
                    is_group=False,
                )
            )

        for group_id in await self._membership.get_joined_group_ids(user_id):
            group = await self._membership.get_group(group_id)
            if group is None:
                logger.warning("Group %s of user %s not found", group_id, user_id)
                continue
            chat = ChatIdentity.group(group_id)
            last_message = await self._store.get_last_message(user_id, chat)
            conversations.append(
                ConversationSchema(
                    id=group_id,
                    name=group.name,
                    avatar_url=group.avatar_url,
                    last_message=(
                        last_message.content
                        if last_message
                        else NO_MESSAGES_PLACEHOLDER
                    ),
                    last_message_time=(
                        last_message.created_at if last_message else group.created_at
                    ),
                    unread_count=unread_counts.get((ChatType.group, str(group_id)), 0),
                    is_group=True,
                )
            )

        if name_filter:
            needle = name_filter.strip().casefold()
            conversations = [c for c in conversations if needle in c.name.casefold()]

        # Stable sorts: ties by time are ordered by id
        conversations.sort(key=lambda c: str(c.id))
        conversations.sort(key=lambda c: c.last_message_time, reverse=True)
        return conversations

    def total_unread_count(self, user_id: uuid.UUID) -> TotalUnreadCount:
        """
        Observable total unread count of the user. The same object is returned for
        the same user while it's referenced anywhere else.
        """
        total = self._totals.get(user_id)
        if total is None:
            total = TotalUnreadCount()
            self._totals[user_id] = total
        return total

    async def refresh_total_unread_count(self, user_id: uuid.UUID) -> TotalUnreadCount:
        """
        Recompute total unread count of the user and update the observable value.

        Raises:
         - ChatRepoException on repository failure
        """
        total = self.total_unread_count(user_id)
        total.set(await self._tracker.get_total_unread_count(user_id))
        return total
