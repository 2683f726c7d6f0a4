from abc import ABC, abstractmethod
from typing import Callable, TypeAlias

from messaging.services.chat_repo.abstract_chat_repo import AbstractChatRepo

USE_AS_CONTEXT_MANAGER_ERROR = "UoW should be used as a context manager"


class AbstractUnitOfWork(ABC):
    """
    One transaction over the chat repository.

    Usage:
    ```
    async with uow_factory() as uow:
        await uow.chat_repo.add_message(...)
        await uow.commit()
    ```
    Changes that weren't committed are rolled back on exit.
    """

    chat_repo: AbstractChatRepo

    @abstractmethod
    async def __aenter__(self) -> "AbstractUnitOfWork":
        raise NotImplementedError

    @abstractmethod
    async def __aexit__(self, *args):
        raise NotImplementedError

    @abstractmethod
    async def commit(self):
        raise NotImplementedError

    @abstractmethod
    async def rollback(self):
        raise NotImplementedError


UnitOfWorkFactory: TypeAlias = Callable[[], AbstractUnitOfWork]
