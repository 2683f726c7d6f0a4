import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator

from pydantic import TypeAdapter

from messaging.schemas.event import AnyEvent, AnyEventDiscr
from messaging.services.event_broker.event_broker_exc import (
    EventBrokerException,
    EventBrokerFail,
)

USE_CONTEXT_ERROR = (
    "EventBroker should be used as a async context manager. "
    "Example: `async with event_broker.session(subscriber_id):`"
)
ACK_TIMEOUT_SEC = 2.0

logger = logging.getLogger(__name__)

event_adapter: TypeAdapter[AnyEvent] = TypeAdapter(
    AnyEventDiscr  # type: ignore[arg-type]
)


@dataclass
class UnacknowledgedEvents:
    expire_dt: datetime
    sent_events: list[AnyEvent]


@contextmanager
def handle_exceptions(*args, **kwds):
    """
    Intercept exceptions and raise EventBrokerFail exceptions
    """
    try:
        yield
    except EventBrokerException as exc:
        if isinstance(exc, EventBrokerFail):
            raise
        raise EventBrokerFail(detail=exc.detail)
    except Exception as exc:
        raise EventBrokerFail(detail=f"{exc}")


class AbstractEventBroker(ABC):
    """
    Publish/subscribe broker of realtime events.

    Every subscriber has its own queue that lives while the subscriber's session is
    open. Events returned by get_events() should be acknowledged by
    acknowledge_events(). Unacknowledged events are returned again after
    `ack_timeout_sec`, so the delivery is at-least-once.
    """

    def __init__(self, ack_timeout_sec: float = ACK_TIMEOUT_SEC):
        self._ack_timeout = timedelta(seconds=ack_timeout_sec)
        self._unacknowledged_events: dict[int, UnacknowledgedEvents | None] = {}

    @asynccontextmanager
    async def session(self, subscriber_id: uuid.UUID) -> AsyncIterator[None]:
        """
        Context manager for managing session.
        Will create new session on Enter and close it (removes queue) on Exit.

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        async with AsyncExitStack() as stack:
            with handle_exceptions():
                await stack.enter_async_context(
                    self._session(subscriber_id=subscriber_id)
                )
            self._unacknowledged_events[subscriber_id.int] = None
            try:
                yield
            finally:
                self._unacknowledged_events.pop(subscriber_id.int, None)

    @abstractmethod
    @asynccontextmanager
    async def _session(self, subscriber_id: uuid.UUID) -> AsyncIterator[None]:
        """
        Abstract method to manage session that should be implemented in the derived
        class.
        Only for internal use. Don't use it in your code!
        """
        raise NotImplementedError()
        yield

    @abstractmethod
    async def subscribe(self, channel: str, subscriber_id: uuid.UUID):
        """
        Subscribe to all new events in specific channel.

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        raise NotImplementedError()

    async def subscribe_list(self, channels: list[str], subscriber_id: uuid.UUID):
        """
        Subscribe to all new events in all channels in the list.

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        for channel in channels:
            await self.subscribe(channel=channel, subscriber_id=subscriber_id)

    @abstractmethod
    async def _get_events_str(
        self, subscriber_id: uuid.UUID, limit: int | None = None
    ) -> list[str]:
        """
        Return all new events for specific subscriber as a list of strings.
        Abstract method that should be implemented in the derived class.
        Only for internal use. Don't use it in your code!

        Raises:
         - EventBrokerNotSubscribedError if there is no session for the subscriber
         - EventBrokerFail in case of Event broker failure
        """
        raise NotImplementedError()

    async def get_events(
        self, subscriber_id: uuid.UUID, limit: int | None = None
    ) -> list[AnyEvent]:
        """
        Return new events for specific subscriber.
        Returns previously sent events again if they weren't acknowledged in time.

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        with handle_exceptions():
            subscriber_id_int = subscriber_id.int
            if unack_data := self._unacknowledged_events.get(subscriber_id_int):
                if unack_data.sent_events:
                    if unack_data.expire_dt > datetime.now():
                        return []  # Waiting for aknowledgment of previous events
                    else:
                        # Ack timeout reached. Send previous events again
                        logger.debug(
                            "Redelivering %d unacknowledged events to %s",
                            len(unack_data.sent_events),
                            subscriber_id,
                        )
                        unack_data.expire_dt = datetime.now() + self._ack_timeout
                        return unack_data.sent_events
                self._unacknowledged_events[subscriber_id_int] = None

            events = await self._get_events_str(
                subscriber_id=subscriber_id, limit=limit
            )
            events_validated = [event_adapter.validate_json(event) for event in events]

            if events_validated:
                self._unacknowledged_events[subscriber_id_int] = UnacknowledgedEvents(
                    expire_dt=(datetime.now() + self._ack_timeout),
                    sent_events=events_validated,
                )
            return events_validated

    async def acknowledge_events(self, subscriber_id: uuid.UUID) -> list[AnyEvent]:
        """
        Acknowledge receiving the list of events.
        Returns list of events that were acknowledged by this call.
        """
        with handle_exceptions():
            acknowledged_events = self._unacknowledged_events.get(subscriber_id.int)
            self._unacknowledged_events[subscriber_id.int] = None
            return acknowledged_events.sent_events if acknowledged_events else []

    @abstractmethod
    async def _post_event_str(self, channel: str, event: str):
        """
        Post new event (string representation) to the specific channel.
        Abstract method that should be implemented in the derived class.
        Only for internal use. Don't use it in your code!

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        raise NotImplementedError()

    async def post_event(self, channel: str, event: AnyEvent):
        """
        Post new event to the specific channel.

        Raises:
         - EventBrokerFail in case of Event broker failure
        """
        with handle_exceptions():
            await self._post_event_str(channel=channel, event=event.model_dump_json())
