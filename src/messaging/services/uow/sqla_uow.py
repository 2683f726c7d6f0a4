from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messaging.services.chat_repo.chat_repo_exc import ChatRepoDatabaseError
from messaging.services.chat_repo.sqla_chat_repo import SQLAlchemyChatRepo
from messaging.services.uow.abstract_uow import (
    USE_AS_CONTEXT_MANAGER_ERROR,
    AbstractUnitOfWork,
    UnitOfWorkFactory,
)
from messaging.services.uow.uow_exc import UnitOfWorkException


@contextmanager
def handle_session_errors():
    """
    Intercept session's exceptions and raise ChatRepoDatabaseError (DB failure) or
    UnitOfWorkException (anything else)
    """
    try:
        yield
    except SQLAlchemyError as exc:
        raise ChatRepoDatabaseError(detail=str(exc))
    except Exception as exc:
        raise UnitOfWorkException(detail=str(exc))


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Unit of work with its own AsyncSession.
    The session is opened on enter and closed on exit.
    """

    _session: AsyncSession | None = None

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self._session is not None:
            raise UnitOfWorkException(detail="UoW is already in use")
        self._session = self._session_maker()
        self.chat_repo = SQLAlchemyChatRepo(self._session)
        return self

    async def __aexit__(self, *args):
        session, self._session = self._session, None
        if session is None:
            return
        with handle_session_errors():
            try:
                await session.rollback()
            finally:
                await session.close()

    async def commit(self):
        session = self._get_session()
        with handle_session_errors():
            await session.commit()

    async def rollback(self):
        session = self._get_session()
        with handle_session_errors():
            await session.rollback()

    def _get_session(self) -> AsyncSession:
        if self._session is None:
            raise UnitOfWorkException(detail=USE_AS_CONTEXT_MANAGER_ERROR)
        return self._session


def sqla_uow_factory(session_maker: async_sessionmaker) -> UnitOfWorkFactory:
    def create_uow() -> AbstractUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker=session_maker)

    return create_uow
