import uuid
from datetime import datetime
from typing import AsyncGenerator, Generator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from messaging.models.base import BaseModel
from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.services.chat_repo.memory_chat_repo import InMemoryStorage
from messaging.services.event_broker.in_memory_event_broker import InMemoryEventBroker
from messaging.services.messaging_service.messaging_service import MessagingService
from messaging.services.uow.abstract_uow import UnitOfWorkFactory
from messaging.services.uow.memory_uow import memory_uow_factory
from messaging.services.uow.sqla_uow import sqla_uow_factory
from messaging.settings import MessagingSettings
from messaging.tests.unit.helpers import Users


@pytest.fixture(scope="session")
def engine() -> Generator[AsyncEngine, None, None]:
    yield create_async_engine(
        "sqlite+aiosqlite://", connect_args={"check_same_thread": False}
    )


@pytest.fixture()
async def prepare_database(engine):
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)


@pytest.fixture()
def async_session_maker(
    engine, prepare_database
) -> Generator[async_sessionmaker, None, None]:
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def async_session(
    async_session_maker: async_sessionmaker,
) -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


@pytest.fixture()
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture(params=["sqla", "memory"])
def uow_factory(request) -> UnitOfWorkFactory:
    """
    Runs the test twice: with SQLAlchemy and with in-memory storage
    """
    if request.param == "sqla":
        return sqla_uow_factory(request.getfixturevalue("async_session_maker"))
    return memory_uow_factory(request.getfixturevalue("memory_storage"))


@pytest.fixture()
def settings() -> MessagingSettings:
    return MessagingSettings(
        io_timeout_sec=2.0,
        ack_timeout_sec=0.3,
        realtime_poll_interval_sec=0.01,
        realtime_reconnect_attempts=2,
        realtime_reconnect_backoff_sec=0.01,
    )


@pytest.fixture()
def event_broker(settings: MessagingSettings) -> InMemoryEventBroker:
    return InMemoryEventBroker(ack_timeout_sec=settings.ack_timeout_sec)


@pytest.fixture()
async def users(uow_factory: UnitOfWorkFactory) -> Users:
    """
    Three users with profiles and a group "Campus" that all of them joined
    """
    users = Users(
        alice=uuid.uuid4(), bob=uuid.uuid4(), carol=uuid.uuid4(), group_id=uuid.uuid4()
    )
    async with uow_factory() as uow:
        for user_id, name in (
            (users.alice, "Alice"),
            (users.bob, "Bob"),
            (users.carol, "Carol"),
        ):
            await uow.chat_repo.add_profile(ProfileSchema(id=user_id, name=name))
        await uow.chat_repo.add_group(
            ChatGroupSchema(
                id=users.group_id, name="Campus", created_at=datetime(2024, 1, 1)
            )
        )
        for user_id in (users.alice, users.bob, users.carol):
            await uow.chat_repo.add_user_to_group(users.group_id, user_id)
        await uow.commit()
    return users


@pytest.fixture()
def messaging_service(
    uow_factory: UnitOfWorkFactory,
    event_broker: InMemoryEventBroker,
    settings: MessagingSettings,
) -> MessagingService:
    return MessagingService(
        uow_factory=uow_factory, event_broker=event_broker, settings=settings
    )
