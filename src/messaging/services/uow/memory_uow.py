from copy import deepcopy

from messaging.services.chat_repo.memory_chat_repo import (
    InMemoryChatRepo,
    InMemoryChatRepoData,
    InMemoryStorage,
)
from messaging.services.uow.abstract_uow import (
    USE_AS_CONTEXT_MANAGER_ERROR,
    AbstractUnitOfWork,
    UnitOfWorkFactory,
)
from messaging.services.uow.uow_exc import UnitOfWorkException


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Unit of work over InMemoryStorage.
    Holds the storage lock until exit, rollback restores the last committed snapshot.
    """

    _snapshot: InMemoryChatRepoData | None = None

    def __init__(self, storage: InMemoryStorage):
        self._storage = storage

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        if self._snapshot is not None:
            raise UnitOfWorkException(detail="UoW is already in use")
        await self._storage.lock.acquire()
        self._snapshot = deepcopy(self._storage.data)
        self.chat_repo = InMemoryChatRepo(self._storage)
        return self

    async def __aexit__(self, *args):
        if self._snapshot is not None:
            try:
                await self.rollback()
            finally:
                self._snapshot = None
                self._storage.lock.release()

    async def commit(self):
        if self._snapshot is None:
            raise UnitOfWorkException(detail=USE_AS_CONTEXT_MANAGER_ERROR)
        self._snapshot = deepcopy(self._storage.data)

    async def rollback(self):
        if self._snapshot is None:
            raise UnitOfWorkException(detail=USE_AS_CONTEXT_MANAGER_ERROR)
        self._storage.data = deepcopy(self._snapshot)


def memory_uow_factory(storage: InMemoryStorage) -> UnitOfWorkFactory:
    def create_uow() -> AbstractUnitOfWork:
        return InMemoryUnitOfWork(storage=storage)

    return create_uow
