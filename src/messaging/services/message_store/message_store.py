import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, TypeAlias

from pydantic import ValidationError

from messaging.schemas.chat_identity import ChatIdentity
from messaging.schemas.message import (
    MessageCreateSchema,
    MessagePage,
    MessageSchema,
    SendResult,
)
from messaging.services.chat_repo.abstract_chat_repo import (
    MAX_MESSAGE_COUNT_PER_PAGE,
    AbstractChatRepo,
)
from messaging.services.chat_repo.chat_repo_exc import ChatRepoRequestError
from messaging.services.messaging_service.messaging_service_exc import ValidationFailed
from messaging.services.providers.abstract_providers import (
    AbstractGroupMembershipProvider,
)
from messaging.services.uow.abstract_uow import UnitOfWorkFactory

DEFAULT_PAGE_SIZE = 15

# Called in the transaction that inserts the message, before commit
InsertHook: TypeAlias = Callable[[AbstractChatRepo, MessageSchema], Awaitable[None]]

logger = logging.getLogger(__name__)


def validation_error_detail(exc: ValidationError) -> str:
    return "; ".join(error["msg"] for error in exc.errors())


class MessageStore:
    """
    Append-only log of messages with reverse-chronological pagination.
    Doesn't touch read state: that's the job of ReadStateTracker.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        membership: AbstractGroupMembershipProvider,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self._uow_factory = uow_factory
        self._membership = membership
        self.page_size = page_size

    async def send(
        self,
        sender_id: uuid.UUID,
        target: ChatIdentity,
        content: str,
        client_token: str | None = None,
        on_insert: InsertHook | None = None,
    ) -> SendResult:
        """
        Persist new message.
        If the message with the same `client_token` has already been sent by this
        sender, returns that message with `created=False`.

        `on_insert` is awaited in the same transaction as the insert. If it fails,
        the message is not saved.

        Raises:
         - ValidationFailed if content is empty
         - NotAuthorized if sender is not a member of the target group
         - ChatRepoException on repository failure
        """
        try:
            message = MessageCreateSchema.for_chat(
                sender_id=sender_id,
                chat=target,
                content=content,
                client_token=client_token,
            )
        except ValidationError as exc:
            raise ValidationFailed(detail=validation_error_detail(exc))

        if target.is_group:
            await self._membership.check_member(target.chat_id, sender_id)

        try:
            async with self._uow_factory() as uow:
                if client_token is not None:
                    existing = await uow.chat_repo.get_message_by_client_token(
                        sender_id=sender_id, client_token=client_token
                    )
                    if existing is not None:
                        logger.debug(
                            "Message with token %s already exists (id=%s)",
                            client_token,
                            existing.id,
                        )
                        return SendResult(message=existing, created=False)
                message_in_db = await uow.chat_repo.add_message(message)
                if on_insert is not None:
                    await on_insert(uow.chat_repo, message_in_db)
                await uow.commit()
        except ChatRepoRequestError:
            if client_token is None:
                raise
            # Concurrent send with the same token
            async with self._uow_factory() as uow:
                existing = await uow.chat_repo.get_message_by_client_token(
                    sender_id=sender_id, client_token=client_token
                )
            if existing is None:
                raise
            return SendResult(message=existing, created=False)

        logger.debug("Message %s stored (chat %s)", message_in_db.id, target)
        return SendResult(message=message_in_db)

    async def fetch_page(
        self,
        viewer_id: uuid.UUID,
        chat: ChatIdentity,
        page_index: int = 0,
        page_size: int | None = None,
        before: datetime | None = None,
    ) -> MessagePage:
        """
        Get one page of chat history.

        Pages are counted from the newest message: page 0 contains the newest
        `page_size` messages. Messages inside the page are ordered oldest-first, so
        the next (older) page can be put in front of already loaded messages.

        Raises:
         - ValidationFailed on wrong page_index or page_size
         - NotAuthorized if viewer is not a member of the group
         - ChatRepoException on repository failure
        """
        if page_size is None:
            page_size = self.page_size
        if page_index < 0:
            raise ValidationFailed(detail=f"Wrong page index: {page_index}")
        if not 0 < page_size <= MAX_MESSAGE_COUNT_PER_PAGE:
            raise ValidationFailed(detail=f"Wrong page size: {page_size}")
        if chat.is_group:
            await self._membership.check_member(chat.chat_id, viewer_id)

        async with self._uow_factory() as uow:
            raw_page = await uow.chat_repo.get_message_list(
                viewer_id=viewer_id,
                chat=chat,
                offset=page_index * page_size,
                limit=page_size,
                before=before,
            )

        anchor = before
        if anchor is None and page_index == 0 and raw_page:
            anchor = raw_page[0].created_at
        return MessagePage(
            messages=list(reversed(raw_page)),
            has_more=(len(raw_page) == page_size),
            anchor=anchor,
        )

    async def get_last_message(
        self, viewer_id: uuid.UUID, chat: ChatIdentity
    ) -> MessageSchema | None:
        async with self._uow_factory() as uow:
            messages = await uow.chat_repo.get_message_list(
                viewer_id=viewer_id, chat=chat, limit=1
            )
        return messages[0] if messages else None

    async def get_counterpart_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        """
        Ids of all users the user has direct chat history with.
        """
        async with self._uow_factory() as uow:
            return await uow.chat_repo.get_direct_counterpart_ids(user_id)
