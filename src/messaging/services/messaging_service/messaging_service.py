import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Awaitable, Callable, TypeVar

from pydantic import ValidationError

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.conversation import ConversationSchema
from messaging.schemas.event import ChatMessageEvent, ReadStateChanged
from messaging.schemas.message import MessagePage, MessageSchema
from messaging.services.chat_repo.abstract_chat_repo import AbstractChatRepo
from messaging.services.chat_repo.chat_repo_exc import (
    ChatRepoException,
    ChatRepoRequestError,
)
from messaging.services.conversations.conversation_aggregator import (
    UNKNOWN_USER_NAME,
    ConversationAggregator,
)
from messaging.services.conversations.total_unread_count import TotalUnreadCount
from messaging.services.event_broker.abstract_event_broker import AbstractEventBroker
from messaging.services.event_broker.event_broker_exc import EventBrokerException
from messaging.services.message_store.message_store import (
    MessageStore,
    validation_error_detail,
)
from messaging.services.messaging_service.messaging_service_exc import (
    TransientIOFailure,
    ValidationFailed,
)
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
    AbstractIdentityProvider,
    AbstractNotificationSink,
)
from messaging.services.providers.repo_providers import (
    LoggingNotificationSink,
    RepoGroupMembershipProvider,
    RepoIdentityProvider,
)
from messaging.services.read_state.read_state_tracker import ReadStateTracker
from messaging.services.realtime.utils import message_channel, user_channel
from messaging.services.uow.abstract_uow import UnitOfWorkFactory
from messaging.services.uow.uow_exc import UnitOfWorkException
from messaging.settings import MessagingSettings, get_settings

NOTIFICATION_KIND_MESSAGE = "message"
NOTIFICATION_PREVIEW_LENGTH = 100

T = TypeVar("T")

logger = logging.getLogger(__name__)


@contextmanager
def process_exceptions(*args, **kwds):
    """
    Intercept ChatRepo's, UoW's and EventBroker's exceptions and raise
    MessagingException
    """
    try:
        yield
    except ChatRepoRequestError as exc:
        raise ValidationFailed(detail=exc.detail)
    except (ChatRepoException, UnitOfWorkException) as exc:
        raise TransientIOFailure(detail=str(exc))
    except EventBrokerException as exc:
        raise TransientIOFailure(detail=str(exc))
    except ValidationError as exc:
        raise ValidationFailed(detail=validation_error_detail(exc))


def message_preview(content: str) -> str:
    if len(content) <= NOTIFICATION_PREVIEW_LENGTH:
        return content
    return content[: NOTIFICATION_PREVIEW_LENGTH - 3] + "..."


class MessagingService:
    """
    Operation boundary of the messaging core.

    Every public method either returns a result or raises one of the
    MessagingException subclasses: ValidationFailed, NotAuthorized or
    TransientIOFailure.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        event_broker: AbstractEventBroker,
        identity: AbstractIdentityProvider | None = None,
        membership: AbstractGroupMembershipProvider | None = None,
        notification_sink: AbstractNotificationSink | None = None,
        settings: MessagingSettings | None = None,
    ):
        self.settings = settings or get_settings()
        self.event_broker = event_broker
        self._identity = identity or RepoIdentityProvider(uow_factory)
        self.membership = membership or RepoGroupMembershipProvider(uow_factory)
        self._notification_sink = notification_sink or LoggingNotificationSink()
        self.message_store = MessageStore(
            uow_factory, self.membership, page_size=self.settings.page_size
        )
        self.read_state_tracker = ReadStateTracker(uow_factory, self.membership)
        self.conversation_aggregator = ConversationAggregator(
            store=self.message_store,
            tracker=self.read_state_tracker,
            identity=self._identity,
            membership=self.membership,
        )

    async def send_message(
        self,
        current_user_id: uuid.UUID,
        chat: ChatIdentity,
        content: str,
        client_token: str | None = None,
    ) -> MessageSchema:
        """
        Send message to the chat.
        Saves the message and increments unread counters of recipients in one
        transaction, posts the message to the chat's channel and notifies
        recipients about changed counters.
        Sending again with the same `client_token` returns the already saved message.

        Raises:
         - ValidationFailed if content is empty or request is wrong
         - NotAuthorized if user is not a member of the group
         - TransientIOFailure on repository or event broker failure or timeout
        """
        with process_exceptions():
            recipients = await self._with_timeout(
                self.read_state_tracker.get_recipients(current_user_id, chat)
            )

            async def increment_unread_counts(
                chat_repo: AbstractChatRepo, message: MessageSchema
            ):
                await self.read_state_tracker.increment_unread_counts(
                    chat_repo, message, recipients
                )

            result = await self._with_timeout(
                self.message_store.send(
                    sender_id=current_user_id,
                    target=chat,
                    content=content,
                    client_token=client_token,
                    on_insert=increment_unread_counts,
                )
            )
            message = result.message
            if not result.created:
                # Counters were incremented when the message was saved
                recipients = []

            await self.event_broker.post_event(
                channel=message_channel(message),
                event=ChatMessageEvent(message=message),
            )
            for recipient_id in recipients:
                await self.event_broker.post_event(
                    channel=user_channel(recipient_id),
                    event=ReadStateChanged(
                        user_id=recipient_id,
                        chat_type=message.chat_type,
                        chat_id=message.chat_key(),
                    ),
                )

        if result.created and not chat.is_group:
            await self._notify_first_message(message)
        return message

    async def fetch_page(
        self,
        current_user_id: uuid.UUID,
        chat: ChatIdentity,
        page_index: int = 0,
        page_size: int | None = None,
        before: datetime | None = None,
    ) -> MessagePage:
        """
        Get one page of chat history (see MessageStore.fetch_page).

        Raises:
         - ValidationFailed on wrong page parameters
         - NotAuthorized if user is not a member of the group
         - TransientIOFailure on repository failure or timeout
        """
        return await self._read(
            lambda: self.message_store.fetch_page(
                viewer_id=current_user_id,
                chat=chat,
                page_index=page_index,
                page_size=page_size,
                before=before,
            )
        )

    async def mark_read(self, current_user_id: uuid.UUID, chat: ChatIdentity):
        """
        Mark all messages in the chat as read by the user.
        Idempotent.

        Raises:
         - TransientIOFailure on repository or event broker failure or timeout
        """
        with process_exceptions():
            await self._with_timeout(
                self.read_state_tracker.mark_read(user_id=current_user_id, chat=chat)
            )
            await self.event_broker.post_event(
                channel=user_channel(current_user_id),
                event=ReadStateChanged(
                    user_id=current_user_id,
                    chat_type=chat.chat_type,
                    chat_id=chat.chat_key(current_user_id),
                    unread_count=0,
                ),
            )

    async def get_unread_count(
        self, current_user_id: uuid.UUID, chat: ChatIdentity
    ) -> int:
        """
        Raises:
         - TransientIOFailure on repository failure or timeout
        """
        return await self._read(
            lambda: self.read_state_tracker.get_unread_count(current_user_id, chat)
        )

    async def get_total_unread_count(self, current_user_id: uuid.UUID) -> int:
        """
        Raises:
         - TransientIOFailure on repository failure or timeout
        """
        return await self._read(
            lambda: self.read_state_tracker.get_total_unread_count(current_user_id)
        )

    async def refresh_total_unread_count(
        self, current_user_id: uuid.UUID
    ) -> TotalUnreadCount:
        """
        Recompute the observable total unread count of the user.
        On failure the previous value is kept.

        Raises:
         - TransientIOFailure on repository failure or timeout
        """
        return await self._read(
            lambda: self.conversation_aggregator.refresh_total_unread_count(
                current_user_id
            )
        )

    async def get_conversations(
        self, current_user_id: uuid.UUID, name_filter: str | None = None
    ) -> list[ConversationSchema]:
        """
        Raises:
         - TransientIOFailure on repository failure or timeout
        """
        return await self._read(
            lambda: self.conversation_aggregator.get_conversations(
                user_id=current_user_id, name_filter=name_filter
            )
        )

    async def _with_timeout(self, aw: Awaitable[T]) -> T:
        timeout = self.settings.io_timeout_sec
        try:
            return await asyncio.wait_for(aw, timeout=timeout)
        except TimeoutError:
            raise TransientIOFailure(detail=f"Operation timed out after {timeout}s")

    async def _read(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                with process_exceptions():
                    return await self._with_timeout(operation())
            except TransientIOFailure as exc:
                if attempt >= self.settings.read_retry_attempts:
                    raise
                attempt += 1
                logger.warning("Read failed (%s), retry %d", exc, attempt)

    async def _notify_first_message(self, message: MessageSchema):
        assert message.receiver_id is not None
        try:
            page = await self._with_timeout(
                self.message_store.fetch_page(
                    viewer_id=message.sender_id,
                    chat=ChatIdentity.private(message.receiver_id),
                    page_size=2,
                )
            )
            if len(page.messages) != 1:
                return
            sender = await self._with_timeout(
                self._identity.get_profile(message.sender_id)
            )
            sender_name = sender.name if sender else UNKNOWN_USER_NAME
            await self._with_timeout(
                self._notification_sink.notify(
                    user_id=message.receiver_id,
                    kind=NOTIFICATION_KIND_MESSAGE,
                    title=f"New message from {sender_name}",
                    body=message_preview(message.content),
                    action_url=f"/chat/user/{message.sender_id}",
                )
            )
        except Exception:
            # Notifications are best-effort
            logger.exception("Failed to notify %s about message", message.receiver_id)
