import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import AsyncIterator

from messaging.services.event_broker.abstract_event_broker import (
    ACK_TIMEOUT_SEC,
    USE_CONTEXT_ERROR,
    AbstractEventBroker,
    handle_exceptions,
)
from messaging.services.event_broker.event_broker_exc import (
    EventBrokerNotSubscribedError,
)

MAX_DEQUE_SIZE = 1000


class InMemoryEventBroker(AbstractEventBroker):
    """
    Event broker that keeps queues in the process memory.
    State is shared by all instances of the class, so instances created by different
    components work together.
    """

    _cls_initialized: bool = False
    _max_deque_size: int
    _subscribers: set[str]
    _subscribtions: defaultdict[str, set[str]]
    _event_queue: dict[str, deque[str]]

    def __init__(
        self,
        max_deque_size: int = MAX_DEQUE_SIZE,
        ack_timeout_sec: float = ACK_TIMEOUT_SEC,
    ):
        super().__init__(ack_timeout_sec=ack_timeout_sec)
        cls = InMemoryEventBroker
        if cls._cls_initialized is False:
            cls._max_deque_size = max_deque_size
            cls._subscribers = set()
            cls._subscribtions = defaultdict(set)
            cls._event_queue = {}
            cls._cls_initialized = True

    @asynccontextmanager
    async def _session(self, subscriber_id: uuid.UUID) -> AsyncIterator[None]:
        cls = InMemoryEventBroker
        subscriber_id_str = str(subscriber_id)
        assert (
            subscriber_id_str not in cls._subscribers
        ), f"session already exists for subscriber {subscriber_id_str}"
        cls._event_queue[subscriber_id_str] = deque()
        cls._subscribers.add(subscriber_id_str)
        try:
            yield
        finally:
            cls._event_queue.pop(subscriber_id_str, None)
            cls._subscribers.discard(subscriber_id_str)
            for channel_subscribers in cls._subscribtions.values():
                channel_subscribers.discard(subscriber_id_str)

    async def subscribe(self, channel: str, subscriber_id: uuid.UUID):
        with handle_exceptions():
            cls = InMemoryEventBroker
            subscriber_id_str = str(subscriber_id)
            assert subscriber_id_str in cls._subscribers, USE_CONTEXT_ERROR
            cls._subscribtions[channel].add(subscriber_id_str)

    async def _get_events_str(
        self, subscriber_id: uuid.UUID, limit: int | None = None
    ) -> list[str]:
        cls = InMemoryEventBroker
        subscriber_id_str = str(subscriber_id)
        events = cls._event_queue.get(subscriber_id_str)
        if events is None:
            raise EventBrokerNotSubscribedError(
                detail=f"There is no session for subscriber {subscriber_id_str}"
            )
        if limit is None:
            limit = len(events)
        return [events.popleft() for _ in range(min(len(events), limit))]

    async def _post_event_str(self, channel: str, event: str):
        cls = InMemoryEventBroker
        channel_subscribers = cls._subscribtions[channel]
        overflowed: list[str] = []
        for subscriber_id_str in channel_subscribers:
            queue = cls._event_queue[subscriber_id_str]
            queue.append(event)
            if len(queue) > cls._max_deque_size:
                overflowed.append(subscriber_id_str)
        # Subscribers that don't read their queue are unsubscribed from the channel
        channel_subscribers.difference_update(overflowed)
