import aio_pika
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from messaging.database import async_session_maker, engine
from messaging.models.base import BaseModel
from messaging.services.chat_repo.memory_chat_repo import InMemoryStorage
from messaging.services.event_broker.abstract_event_broker import AbstractEventBroker
from messaging.services.event_broker.in_memory_event_broker import InMemoryEventBroker
from messaging.services.event_broker.rabbit_event_broker import RabbitEventBroker
from messaging.services.messaging_service.messaging_service import MessagingService
from messaging.services.uow.memory_uow import memory_uow_factory
from messaging.services.uow.sqla_uow import sqla_uow_factory
from messaging.settings import MessagingSettings, get_settings


async def init_database(db_engine: AsyncEngine = engine):
    """
    Create all tables. Intended for local runs and tests, use migrations otherwise.
    """
    async with db_engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)


def in_memory_event_broker(settings: MessagingSettings | None = None):
    settings = settings or get_settings()
    return InMemoryEventBroker(
        max_deque_size=settings.max_queue_size,
        ack_timeout_sec=settings.ack_timeout_sec,
    )


async def rabbit_event_broker(
    settings: MessagingSettings | None = None,
) -> RabbitEventBroker:
    settings = settings or get_settings()
    if settings.rabbitmq_url is None:
        raise ValueError("MESSAGING_RABBITMQ_URL is not set")
    connection = await aio_pika.connect_robust(settings.rabbitmq_url)
    event_broker = RabbitEventBroker(
        connection=connection, ack_timeout_sec=settings.ack_timeout_sec
    )
    await event_broker.ainit()
    return event_broker


def sqla_messaging_service(
    session_maker: async_sessionmaker = async_session_maker,
    event_broker: AbstractEventBroker | None = None,
    settings: MessagingSettings | None = None,
) -> MessagingService:
    """
    Messaging service that stores data in the DB via SQLAlchemy.
    """
    return MessagingService(
        uow_factory=sqla_uow_factory(session_maker),
        event_broker=event_broker or in_memory_event_broker(settings),
        settings=settings,
    )


def in_memory_messaging_service(
    storage: InMemoryStorage | None = None,
    event_broker: AbstractEventBroker | None = None,
    settings: MessagingSettings | None = None,
) -> MessagingService:
    """
    Messaging service that keeps all data in the process memory.
    """
    return MessagingService(
        uow_factory=memory_uow_factory(storage or InMemoryStorage()),
        event_broker=event_broker or in_memory_event_broker(settings),
        settings=settings,
    )
