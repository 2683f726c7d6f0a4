import logging
import uuid

from messaging.schemas.event import ReadStateChanged
from messaging.services.event_broker.event_broker_exc import EventBrokerException
from messaging.services.messaging_service.messaging_service import MessagingService
from messaging.services.messaging_service.messaging_service_exc import (
    MessagingException,
    TransientIOFailure,
)
from messaging.services.realtime.realtime_channel import ReadStateFeed

logger = logging.getLogger(__name__)


def document_title(unread_count: int, app_title: str) -> str:
    if unread_count > 0:
        return f"({unread_count}) {app_title}"
    return app_title


class UnreadBadge:
    """
    Total unread count of the current user, refreshed on every read-state change.
    `title` is the document title with the count prefix.
    """

    def __init__(
        self,
        messaging_service: MessagingService,
        user_id: uuid.UUID,
        feed: ReadStateFeed | None = None,
    ):
        self._service = messaging_service
        self.user_id = user_id
        self._app_title = messaging_service.settings.app_title
        self._feed = feed or ReadStateFeed(
            messaging_service.event_broker, user_id, settings=messaging_service.settings
        )
        self.total = messaging_service.conversation_aggregator.total_unread_count(
            user_id
        )
        self.last_error: MessagingException | None = None

    @property
    def unread_count(self) -> int:
        return self.total.value

    @property
    def title(self) -> str:
        return document_title(self.total.value, self._app_title)

    async def __aenter__(self) -> "UnreadBadge":
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def start(self):
        try:
            await self._feed.subscribe(self._on_read_state_changed)
        except EventBrokerException as exc:
            logger.warning("Unread count updates unavailable: %s", exc)
            self.last_error = TransientIOFailure(detail=str(exc))
        await self.refresh()

    async def stop(self):
        await self._feed.unsubscribe()

    async def refresh(self) -> int:
        """
        Reload total unread count. Keeps the previous value on failure.
        """
        try:
            await self._service.refresh_total_unread_count(self.user_id)
        except MessagingException as exc:
            self.last_error = exc
        return self.total.value

    async def _on_read_state_changed(self, event: ReadStateChanged):
        await self.refresh()
