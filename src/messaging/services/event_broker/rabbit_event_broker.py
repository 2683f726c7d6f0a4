import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from aio_pika import ExchangeType, Message
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractQueue,
    AbstractRobustConnection,
)

from messaging.services.event_broker.abstract_event_broker import (
    ACK_TIMEOUT_SEC,
    USE_CONTEXT_ERROR,
    AbstractEventBroker,
    handle_exceptions,
)
from messaging.services.event_broker.event_broker_exc import (
    EventBrokerNotSubscribedError,
)

EXCHANGE_NAME = "messaging_events"
USE_AINIT_ERROR = (
    "RabbitEventBroker should be initialized by calling `await event_broker.ainit()` "
    "before using"
)


@dataclass
class SubscriberConData:
    channel: AbstractChannel
    exchange: AbstractExchange
    queue: AbstractQueue


class RabbitEventBroker(AbstractEventBroker):
    """
    Event broker over RabbitMQ: one direct exchange, routing key is the channel name,
    one exclusive queue per subscriber session.
    """

    def __init__(
        self,
        connection: AbstractRobustConnection,
        ack_timeout_sec: float = ACK_TIMEOUT_SEC,
    ):
        super().__init__(ack_timeout_sec=ack_timeout_sec)
        self._connection = connection
        self._con_data: dict[int, SubscriberConData] = {}
        self._common_channel: AbstractChannel | None = None
        self._common_exchange: AbstractExchange | None = None

    async def ainit(self):
        self._common_channel = await self._connection.channel()
        self._common_exchange = await self._common_channel.declare_exchange(
            EXCHANGE_NAME, ExchangeType.DIRECT, auto_delete=True
        )

    @asynccontextmanager
    async def _session(self, subscriber_id: uuid.UUID) -> AsyncIterator[None]:
        subscriber_id_int = subscriber_id.int
        assert (
            self._con_data.get(subscriber_id_int) is None
        ), f"session already exists for subscriber {subscriber_id}"
        with handle_exceptions():
            channel = await self._connection.channel()
            exchange = await channel.declare_exchange(
                EXCHANGE_NAME, ExchangeType.DIRECT, auto_delete=True
            )
            queue = await channel.declare_queue(name="", exclusive=True)
        self._con_data[subscriber_id_int] = SubscriberConData(
            channel=channel, exchange=exchange, queue=queue
        )
        try:
            yield
        finally:
            con_data = self._con_data.pop(subscriber_id_int, None)
            if con_data is not None:
                with handle_exceptions():
                    await con_data.channel.close()

    async def subscribe(self, channel: str, subscriber_id: uuid.UUID):
        with handle_exceptions():
            con_data = self._con_data.get(subscriber_id.int)
            assert con_data is not None, USE_CONTEXT_ERROR
            await con_data.queue.bind(con_data.exchange, routing_key=channel)

    async def _get_events_str(
        self, subscriber_id: uuid.UUID, limit: int | None = None
    ) -> list[str]:
        con_data = self._con_data.get(subscriber_id.int)
        if con_data is None:
            raise EventBrokerNotSubscribedError(
                detail=f"There is no session for subscriber {subscriber_id}"
            )
        events: list[str] = []
        count = limit if (limit is not None) else 1_000_000
        for _ in range(count):
            message = await con_data.queue.get(no_ack=True, fail=False)
            if message:
                events.append(message.body.decode())
            else:
                break
        return events

    async def _post_event_str(self, channel: str, event: str):
        assert self._common_exchange is not None, USE_AINIT_ERROR
        await self._common_exchange.publish(
            Message(event.encode()), routing_key=channel
        )
