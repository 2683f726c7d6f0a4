import bisect
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.message import MessagePage, MessageSchema
from messaging.services.event_broker.event_broker_exc import EventBrokerException
from messaging.services.messaging_service.messaging_service import MessagingService
from messaging.services.messaging_service.messaging_service_exc import (
    ChannelDropped,
    MessagingException,
    NotAuthorized,
    TransientIOFailure,
    ValidationFailed,
)
from messaging.services.realtime.realtime_channel import RealtimeChannel

logger = logging.getLogger(__name__)


class SendStatus(str, Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"


@dataclass
class OutgoingMessage:
    """
    Message sent by the current user and shown before the server confirmed it.
    """

    client_token: str
    content: str
    status: SendStatus = SendStatus.pending
    message: MessageSchema | None = None
    error: MessagingException | None = None


def _sort_key(message: MessageSchema) -> tuple[datetime, int]:
    return (message.created_at, message.id)


class LocalMessageList:
    """
    Messages of the open chat ordered by (created_at, id), without duplicates.
    Outgoing messages that haven't been confirmed yet are kept separately, after
    confirmed ones.
    """

    def __init__(self):
        self._ids: set[int] = set()
        self._messages: list[MessageSchema] = []
        self._outgoing: dict[str, OutgoingMessage] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._ids

    @property
    def messages(self) -> list[MessageSchema]:
        return list(self._messages)

    @property
    def outgoing(self) -> list[OutgoingMessage]:
        return list(self._outgoing.values())

    def add(self, message: MessageSchema) -> bool:
        """
        Add confirmed message. Returns False if it's already in the list.
        """
        if message.client_token is not None:
            self._outgoing.pop(message.client_token, None)
        if message.id in self._ids:
            return False
        self._ids.add(message.id)
        bisect.insort(self._messages, message, key=_sort_key)
        return True

    def add_many(self, messages: list[MessageSchema]) -> int:
        return sum(self.add(message) for message in messages)

    def add_outgoing(self, outgoing: OutgoingMessage):
        self._outgoing[outgoing.client_token] = outgoing

    def remove_outgoing(self, client_token: str):
        self._outgoing.pop(client_token, None)


class ChatRoom:
    """
    Client state of one open chat.

    On open loads the newest page, subscribes to realtime messages and marks the
    chat as read. Errors are stored in `last_error` instead of being raised.
    """

    def __init__(
        self,
        messaging_service: MessagingService,
        current_user_id: uuid.UUID,
        chat: ChatIdentity,
        channel: RealtimeChannel | None = None,
        page_size: int | None = None,
    ):
        self._service = messaging_service
        self.current_user_id = current_user_id
        self.chat = chat
        self._channel = channel or RealtimeChannel(
            messaging_service.event_broker,
            current_user_id,
            messaging_service.membership,
            settings=messaging_service.settings,
            on_dropped=self._on_channel_dropped,
        )
        self._page_size = page_size or messaging_service.settings.page_size
        self.messages = LocalMessageList()
        self.has_more = False
        self.last_error: MessagingException | None = None
        self._next_page_index = 0
        self._anchor: datetime | None = None
        self._loading_more = False

    @property
    def is_loading_more(self) -> bool:
        return self._loading_more

    async def __aenter__(self) -> "ChatRoom":
        await self.open()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def open(self):
        # Subscribe first to not miss messages sent while the first page is loading
        try:
            await self._channel.subscribe(self.chat, self._on_realtime_message)
        except NotAuthorized as exc:
            self.last_error = exc
            return
        except TransientIOFailure as exc:
            logger.warning("Realtime updates for %s unavailable: %s", self.chat, exc)
            self.last_error = exc
        except EventBrokerException as exc:
            logger.warning("Realtime updates for %s unavailable: %s", self.chat, exc)
            self.last_error = TransientIOFailure(detail=str(exc))
        try:
            page = await self._service.fetch_page(
                self.current_user_id, self.chat, page_index=0, page_size=self._page_size
            )
        except MessagingException as exc:
            self.last_error = exc
            return
        self._apply_page(page)
        await self.mark_read()

    async def close(self):
        await self._channel.unsubscribe()

    async def load_more(self) -> bool:
        """
        Load the next page of older messages.
        Returns False if there is nothing to load, the previous call is still in
        progress or loading failed.
        """
        if self._loading_more or not self.has_more:
            return False
        self._loading_more = True
        try:
            page = await self._service.fetch_page(
                self.current_user_id,
                self.chat,
                page_index=self._next_page_index,
                page_size=self._page_size,
                before=self._anchor,
            )
        except MessagingException as exc:
            self.last_error = exc
            return False
        finally:
            self._loading_more = False
        self._apply_page(page)
        return True

    async def send(self, content: str) -> OutgoingMessage | None:
        """
        Optimistic send. The message is shown as pending until the server confirms
        it. Returns None if the content is empty.
        """
        content = content.strip()
        if not content:
            return None
        outgoing = OutgoingMessage(client_token=uuid.uuid4().hex, content=content)
        self.messages.add_outgoing(outgoing)
        return await self._deliver(outgoing)

    async def retry_send(self, outgoing: OutgoingMessage) -> OutgoingMessage:
        """
        Send failed message again with the same client token.
        """
        if outgoing.status is not SendStatus.failed:
            return outgoing
        outgoing.status = SendStatus.pending
        outgoing.error = None
        self.messages.add_outgoing(outgoing)
        return await self._deliver(outgoing)

    async def mark_read(self):
        try:
            await self._service.mark_read(self.current_user_id, self.chat)
        except MessagingException as exc:
            self.last_error = exc

    async def _deliver(self, outgoing: OutgoingMessage) -> OutgoingMessage:
        try:
            message = await self._service.send_message(
                self.current_user_id,
                self.chat,
                outgoing.content,
                client_token=outgoing.client_token,
            )
        except MessagingException as exc:
            outgoing.status = SendStatus.failed
            outgoing.error = exc
            self.last_error = exc
            if isinstance(exc, (ValidationFailed, NotAuthorized)):
                # Retrying won't help
                self.messages.remove_outgoing(outgoing.client_token)
            return outgoing
        outgoing.status = SendStatus.sent
        outgoing.message = message
        self.messages.add(message)
        return outgoing

    async def _on_realtime_message(self, message: MessageSchema):
        if not self.messages.add(message):
            return
        if message.sender_id != self.current_user_id:
            await self.mark_read()

    def _on_channel_dropped(self, exc: ChannelDropped):
        logger.warning("Realtime updates for %s stopped: %s", self.chat, exc)
        self.last_error = exc

    def _apply_page(self, page: MessagePage):
        self.messages.add_many(page.messages)
        self.has_more = page.has_more
        self._next_page_index += 1
        if self._anchor is None:
            self._anchor = page.anchor

