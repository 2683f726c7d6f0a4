from typing import cast

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from messaging.services.chat_repo.sqla_chat_repo import SQLAlchemyChatRepo
from messaging.tests.unit.chat_repo.chat_repo_test_base import ChatRepoTestBase


class TestSQLAlchemyChatRepo(ChatRepoTestBase):
    """
    Test class for SQLAlchemyChatRepo
    (concrete implementation of AbstractChatRepo interface).

    Test methods are implemented in the base test class (ChatRepoTestBase).
    """

    @pytest.fixture(autouse=True)
    def _create_repo(self, async_session: AsyncSession):
        self._session = async_session
        self.repo = SQLAlchemyChatRepo(async_session)
        yield

    async def _break_connection(self):
        async def raise_error(*args, **kwargs):
            raise OperationalError("", "", Exception())

        sqla_repo = cast(SQLAlchemyChatRepo, self.repo)
        sqla_repo._session.execute = raise_error  # type: ignore
        sqla_repo._session.scalar = raise_error  # type: ignore
        sqla_repo._session.scalars = raise_error  # type: ignore
        sqla_repo._session.get = raise_error  # type: ignore
