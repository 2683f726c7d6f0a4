import asyncio
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Callable

from messaging.schemas.event import AnyEvent
from messaging.services.event_broker.abstract_event_broker import AbstractEventBroker
from messaging.services.event_broker.event_broker_exc import EventBrokerException
from messaging.services.messaging_service.messaging_service_exc import ChannelDropped
from messaging.settings import MessagingSettings, get_settings

SUBSCRIPTION_REUSE_ERROR = "Subscription can't be reused. Create a new one instead"

DroppedCallback = Callable[[ChannelDropped], Any]

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    idle = "idle"
    subscribing = "subscribing"
    subscribed = "subscribed"
    unsubscribed = "unsubscribed"


async def call_handler(handler: Callable[..., Any], *args) -> None:
    """
    Call sync or async handler. Handler errors are logged and never propagated.
    """
    try:
        result = handler(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Realtime handler %r failed", handler)


class BrokerSubscription(ABC):
    """
    Subscription to a set of event broker channels.

    Opens own broker session, polls events in a background task, passes them to
    `_dispatch()` and acknowledges them. Unacknowledged events are redelivered by
    the broker, so `_dispatch()` may receive the same event more than once.

    When the broker fails, the subscription reconnects with exponential backoff.
    If all attempts fail, it moves to `unsubscribed` and calls `on_dropped`.
    """

    def __init__(
        self,
        event_broker: AbstractEventBroker,
        settings: MessagingSettings | None = None,
        on_dropped: DroppedCallback | None = None,
    ):
        settings = settings or get_settings()
        self._event_broker = event_broker
        self._poll_interval = settings.realtime_poll_interval_sec
        self._reconnect_attempts = settings.realtime_reconnect_attempts
        self._reconnect_backoff = settings.realtime_reconnect_backoff_sec
        self._on_dropped = on_dropped
        self._subscriber_id = uuid.uuid4()
        self._state = SubscriptionState.idle
        self._channels: list[str] = []
        self._exit_stack: AsyncExitStack | None = None
        self._pump_task: asyncio.Task | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def channels(self) -> list[str]:
        return list(self._channels)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.unsubscribe()

    async def unsubscribe(self) -> None:
        """
        Stop receiving events and close the broker session.
        Idempotent. Safe to call from inside the handler.
        """
        was_active = self._state in (
            SubscriptionState.subscribing,
            SubscriptionState.subscribed,
        )
        self._state = SubscriptionState.unsubscribed
        task, self._pump_task = self._pump_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if task is not asyncio.current_task():
            await self._disconnect()
        # Otherwise the pump task closes the session when the handler returns
        if was_active:
            logger.info("Unsubscribed %s from %s", self._subscriber_id, self._channels)

    async def _open(self, channels: list[str]) -> None:
        if self._state is not SubscriptionState.idle:
            raise RuntimeError(SUBSCRIPTION_REUSE_ERROR)
        self._state = SubscriptionState.subscribing
        self._channels = channels
        try:
            await self._connect()
        except BaseException:
            self._state = SubscriptionState.unsubscribed
            raise
        if self._state is not SubscriptionState.subscribing:
            # unsubscribe() was called while subscribing
            await self._disconnect()
            return
        self._state = SubscriptionState.subscribed
        self._pump_task = asyncio.create_task(
            self._pump(), name=f"realtime-{self._subscriber_id}"
        )
        logger.info("Subscribed %s to %s", self._subscriber_id, channels)

    @abstractmethod
    async def _dispatch(self, event: AnyEvent) -> None:
        raise NotImplementedError()

    async def _connect(self) -> None:
        exit_stack = AsyncExitStack()
        try:
            await exit_stack.enter_async_context(
                self._event_broker.session(self._subscriber_id)
            )
            await self._event_broker.subscribe_list(
                channels=self._channels, subscriber_id=self._subscriber_id
            )
        except BaseException:
            await exit_stack.aclose()
            raise
        self._exit_stack = exit_stack

    async def _disconnect(self) -> None:
        exit_stack, self._exit_stack = self._exit_stack, None
        if exit_stack is None:
            return
        try:
            await exit_stack.aclose()
        except EventBrokerException as exc:
            logger.warning(
                "Failed to close broker session %s: %s", self._subscriber_id, exc
            )

    async def _pump(self) -> None:
        try:
            while self._state is SubscriptionState.subscribed:
                try:
                    events = await self._event_broker.get_events(self._subscriber_id)
                    for event in events:
                        if self._state is not SubscriptionState.subscribed:
                            break
                        await self._dispatch(event)
                    if events:
                        await self._event_broker.acknowledge_events(self._subscriber_id)
                except EventBrokerException as exc:
                    if not await self._reconnect(exc):
                        break
                    continue
                await asyncio.sleep(self._poll_interval)
        finally:
            await self._disconnect()

    async def _reconnect(self, exc: EventBrokerException) -> bool:
        logger.warning("Subscription %s lost: %s", self._subscriber_id, exc)
        await self._disconnect()
        for attempt in range(1, self._reconnect_attempts + 1):
            await asyncio.sleep(self._reconnect_backoff * 2 ** (attempt - 1))
            if self._state is not SubscriptionState.subscribed:
                return False
            try:
                await self._connect()
            except EventBrokerException as reconnect_exc:
                logger.warning(
                    "Reconnect attempt %d of %s failed: %s",
                    attempt,
                    self._subscriber_id,
                    reconnect_exc,
                )
                exc = reconnect_exc
                continue
            logger.info("Subscription %s reconnected", self._subscriber_id)
            return True

        self._state = SubscriptionState.unsubscribed
        self._pump_task = None
        logger.error(
            "Subscription %s to %s dropped: %s",
            self._subscriber_id,
            self._channels,
            exc,
        )
        if self._on_dropped is not None:
            await call_handler(self._on_dropped, ChannelDropped(detail=str(exc)))
        return False
