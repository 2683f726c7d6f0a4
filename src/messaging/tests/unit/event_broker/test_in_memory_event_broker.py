import uuid
from contextlib import asynccontextmanager
from unittest.mock import Mock, patch

import pytest

from messaging.schemas.event import ChatMessageEvent
from messaging.services.event_broker.in_memory_event_broker import InMemoryEventBroker
from messaging.services.realtime.utils import channel_code
from messaging.tests.unit.event_broker.event_broker_test_base import (
    EventBrokerTestBase,
)
from messaging.tests.unit.event_broker.helpers import create_chat_event


class TestInMemoryEventBroker(EventBrokerTestBase):
    """
    Test class for InMemoryEventBroker
    (concrete implementation of AbstractEventBroker interface).

    Test methods are implemented in the base test class (EventBrokerTestBase).
    """

    @pytest.fixture(autouse=True)
    def _init(self):
        self.event_broker = InMemoryEventBroker()
        self.event_broker_instance_2 = InMemoryEventBroker()

    async def _post_message(self, routing_key: str, message: str):
        await self.event_broker._post_event_str(channel=routing_key, event=message)

    @asynccontextmanager
    async def _brake_event_broker_derrived(self, exception: Exception):
        with (
            patch.object(
                InMemoryEventBroker, "_event_queue", new=Mock(side_effect=exception)
            ),
            patch.object(
                InMemoryEventBroker, "_subscribers", new=Mock(side_effect=exception)
            ),
            patch.object(
                InMemoryEventBroker, "_subscribtions", new=Mock(side_effect=exception)
            ),
        ):
            yield

    async def test_overflowed_subscriber_is_unsubscribed(self):
        """
        Subscriber that doesn't read its queue is unsubscribed from the channel when
        the queue overflows. Other subscribers keep receiving events.
        """
        slow_subscriber, fast_subscriber = uuid.uuid4(), uuid.uuid4()
        channel = channel_code("group", uuid.uuid4())

        async with (
            self.event_broker.session(slow_subscriber),
            self.event_broker.session(fast_subscriber),
        ):
            await self.event_broker.subscribe_list(
                channels=[channel], subscriber_id=slow_subscriber
            )
            await self.event_broker.subscribe_list(
                channels=[channel], subscriber_id=fast_subscriber
            )
            with patch.object(InMemoryEventBroker, "_max_deque_size", new=2):
                for _ in range(3):
                    await self.event_broker.post_event(
                        channel=channel, event=create_chat_event(ChatMessageEvent)
                    )
                    events = await self.event_broker.get_events(fast_subscriber)
                    await self.event_broker.acknowledge_events(fast_subscriber)
                    assert len(events) == 1

            channel_subscribers = InMemoryEventBroker._subscribtions[channel]
            assert str(slow_subscriber) not in channel_subscribers
            assert str(fast_subscriber) in channel_subscribers

    async def test_session_removes_subscriptions_on_exit(self):
        subscriber_id = uuid.uuid4()
        channel = channel_code("group", uuid.uuid4())

        async with self.event_broker.session(subscriber_id):
            await self.event_broker.subscribe(
                channel=channel, subscriber_id=subscriber_id
            )
            assert str(subscriber_id) in InMemoryEventBroker._subscribtions[channel]

        assert str(subscriber_id) not in InMemoryEventBroker._subscribtions[channel]
        assert str(subscriber_id) not in InMemoryEventBroker._event_queue
