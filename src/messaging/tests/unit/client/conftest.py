import pytest

from messaging.services.chat_repo.memory_chat_repo import InMemoryStorage
from messaging.services.uow.abstract_uow import UnitOfWorkFactory
from messaging.services.uow.memory_uow import memory_uow_factory


@pytest.fixture()
def uow_factory(memory_storage: InMemoryStorage) -> UnitOfWorkFactory:
    """
    In-memory storage only: realtime handlers access the storage concurrently with
    the test
    """
    return memory_uow_factory(memory_storage)
