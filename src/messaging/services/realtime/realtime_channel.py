import logging
import uuid
from typing import Any, Callable

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.event import AnyEvent, ChatMessageEvent, ReadStateChanged
from messaging.schemas.message import MessageSchema
from messaging.services.chat_repo.chat_repo_exc import ChatRepoException
from messaging.services.event_broker.abstract_event_broker import AbstractEventBroker
from messaging.services.messaging_service.messaging_service import process_exceptions
from messaging.services.messaging_service.messaging_service_exc import ChannelDropped
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
)
from messaging.services.realtime.subscription import (
    BrokerSubscription,
    DroppedCallback,
    call_handler,
)
from messaging.services.realtime.utils import chat_channel, user_channel
from messaging.services.uow.uow_exc import UnitOfWorkException
from messaging.settings import MessagingSettings

MessageHandler = Callable[[MessageSchema], Any]
ReadStateHandler = Callable[[ReadStateChanged], Any]

logger = logging.getLogger(__name__)


class RealtimeChannel(BrokerSubscription):
    """
    Delivers new messages of one chat to the handler.

    Usage:
    ```
    channel = RealtimeChannel(event_broker, viewer_id, membership)
    await channel.subscribe(chat, handler)
    ...
    await channel.unsubscribe()
    ```
    Messages that don't belong to the chat are filtered out. The same message can
    be delivered more than once.
    Group membership is checked on subscribe and on every group message: a viewer
    removed from the group is unsubscribed and `on_dropped` is called.
    """

    def __init__(
        self,
        event_broker: AbstractEventBroker,
        viewer_id: uuid.UUID,
        membership: AbstractGroupMembershipProvider,
        settings: MessagingSettings | None = None,
        on_dropped: DroppedCallback | None = None,
    ):
        super().__init__(event_broker, settings=settings, on_dropped=on_dropped)
        self.viewer_id = viewer_id
        self._membership = membership
        self._chat: ChatIdentity | None = None
        self._handler: MessageHandler | None = None

    async def subscribe(self, chat: ChatIdentity, handler: MessageHandler) -> None:
        """
        Raises:
         - NotAuthorized if viewer is not a member of the group
         - TransientIOFailure if membership can't be checked
         - EventBrokerFail in case of Event broker failure
         - RuntimeError if the channel has already been used
        """
        if chat.is_group:
            with process_exceptions():
                await self._membership.check_member(chat.chat_id, self.viewer_id)
        self._chat = chat
        self._handler = handler
        await self._open([chat_channel(self.viewer_id, chat)])

    async def _dispatch(self, event: AnyEvent) -> None:
        if not isinstance(event, ChatMessageEvent):
            return
        assert self._chat is not None and self._handler is not None
        if not event.message.belongs_to(self.viewer_id, self._chat):
            logger.debug("Skip message %s: another chat", event.message.id)
            return
        if self._chat.is_group and not await self._still_member(event.message.id):
            return
        await call_handler(self._handler, event.message)

    async def _still_member(self, message_id: int) -> bool:
        assert self._chat is not None
        group_id = self._chat.chat_id
        try:
            members = await self._membership.get_member_ids(group_id)
        except (ChatRepoException, UnitOfWorkException) as exc:
            logger.warning(
                "Skip message %s: can't check membership in %s: %s",
                message_id,
                group_id,
                exc,
            )
            return False
        if self.viewer_id in members:
            return True
        logger.info("%s is no longer a member of group %s", self.viewer_id, group_id)
        await self.unsubscribe()
        if self._on_dropped is not None:
            await call_handler(
                self._on_dropped,
                ChannelDropped(
                    detail=f"User {self.viewer_id} is not a member of group {group_id}"
                ),
            )
        return False


class ReadStateFeed(BrokerSubscription):
    """
    Delivers read-state changes of one user to the handler.
    """

    def __init__(
        self,
        event_broker: AbstractEventBroker,
        user_id: uuid.UUID,
        settings: MessagingSettings | None = None,
        on_dropped: DroppedCallback | None = None,
    ):
        super().__init__(event_broker, settings=settings, on_dropped=on_dropped)
        self.user_id = user_id
        self._handler: ReadStateHandler | None = None

    async def subscribe(self, handler: ReadStateHandler) -> None:
        self._handler = handler
        await self._open([user_channel(self.user_id)])

    async def _dispatch(self, event: AnyEvent) -> None:
        if isinstance(event, ReadStateChanged) and event.user_id == self.user_id:
            assert self._handler is not None
            await call_handler(self._handler, event)
