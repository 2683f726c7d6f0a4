import uuid
from abc import ABC, abstractmethod

from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.services.messaging_service.messaging_service_exc import NotAuthorized


class AbstractIdentityProvider(ABC):

    @abstractmethod
    async def get_profile(self, user_id: uuid.UUID) -> ProfileSchema | None:
        """
        Get user's public profile (name, avatar). Returns None for unknown users.
        """
        raise NotImplementedError()


class AbstractGroupMembershipProvider(ABC):

    @abstractmethod
    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        """
        Get group metadata. Returns None if group doesn't exist.
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_member_ids(self, group_id: uuid.UUID) -> set[uuid.UUID]:
        """
        Get ids of the current members of the group.
        Should never be cached: membership changes should have immediate effect.
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Get ids of the groups the user is currently a member of.
        """
        raise NotImplementedError()

    async def check_member(self, group_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """
        Raises:
         - NotAuthorized if user is not a current member of the group (or the group
           doesn't exist)
        """
        if user_id not in await self.get_member_ids(group_id):
            raise NotAuthorized(
                detail=f"User {user_id} is not a member of group {group_id}"
            )


class AbstractNotificationSink(ABC):

    @abstractmethod
    async def notify(
        self,
        user_id: uuid.UUID,
        kind: str,
        title: str,
        body: str,
        action_url: str | None = None,
    ) -> None:
        """
        Deliver a user notification. Fire-and-forget: callers don't rely on the
        delivery and don't fail if this method raises.
        """
        raise NotImplementedError()
