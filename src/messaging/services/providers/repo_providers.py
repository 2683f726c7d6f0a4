import logging
import uuid

from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
    AbstractIdentityProvider,
    AbstractNotificationSink,
)
from messaging.services.uow.abstract_uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


class RepoIdentityProvider(AbstractIdentityProvider):
    """
    Identity provider that reads profiles from the chat repository.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self._uow_factory = uow_factory

    async def get_profile(self, user_id: uuid.UUID) -> ProfileSchema | None:
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_profile(user_id)


class RepoGroupMembershipProvider(AbstractGroupMembershipProvider):
    """
    Group membership provider that reads groups and members from the chat
    repository.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self._uow_factory = uow_factory

    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_group(group_id)

    async def get_member_ids(self, group_id: uuid.UUID) -> set[uuid.UUID]:
        async with self._uow_factory() as uow:
            return set(await uow.chat_repo.get_group_member_ids(group_id))

    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_joined_group_ids(user_id)


class LoggingNotificationSink(AbstractNotificationSink):
    """
    Notification sink that only writes notifications to the log.
    """

    async def notify(
        self,
        user_id: uuid.UUID,
        kind: str,
        title: str,
        body: str,
        action_url: str | None = None,
    ) -> None:
        logger.info(
            "Notification (%s) for %s: %s | %s | %s",
            kind,
            user_id,
            title,
            body,
            action_url,
        )
