import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Collection

from sqlalchemy import and_, delete, func, insert, or_, select, union, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from messaging.models.chat_group import ChatGroup, ChatGroupMember
from messaging.models.chat_read_state import ChatReadState
from messaging.models.message import Message
from messaging.models.profile import Profile
from messaging.schemas.chat_identity import ChatIdentity, ChatType
from messaging.schemas.message import MessageCreateSchema, MessageSchema
from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.schemas.read_state import ChatReadStateSchema
from messaging.services.chat_repo.abstract_chat_repo import (
    MAX_MESSAGE_COUNT_PER_PAGE,
    AbstractChatRepo,
)
from messaging.services.chat_repo.chat_repo_exc import (
    ChatRepoDatabaseError,
    ChatRepoException,
    ChatRepoRequestError,
)
from messaging.services.chat_repo.utils import message_clock

READ_STATE_PK = ["user_id", "chat_id", "chat_type"]


@contextmanager
def sqla_exceptions_to_repo_exc(*args, **kwds):
    """
    Intercept SQLAlchemy exceptions and raise ChatRepo exceptions
    """
    try:
        yield
    except (IntegrityError,) as exc:
        raise ChatRepoRequestError(detail=str(exc))
    except OperationalError as exc:
        raise ChatRepoDatabaseError(detail=str(exc))
    except SQLAlchemyError as exc:
        raise ChatRepoDatabaseError(detail=str(exc))


class SQLAlchemyChatRepo(AbstractChatRepo):
    def __init__(self, session: AsyncSession):
        self._session = session

    # ---------------------------------------------------------------------------------
    # Messages

    async def add_message(self, message: MessageCreateSchema) -> MessageSchema:
        with sqla_exceptions_to_repo_exc():
            message_in_db = await self._session.scalar(
                insert(Message).returning(Message),
                {**message.model_dump(), "created_at": message_clock.now()},
            )
        if message_in_db:
            return MessageSchema.model_validate(message_in_db)
        else:
            raise ChatRepoException()

    async def get_message_by_client_token(
        self, sender_id: uuid.UUID, client_token: str
    ) -> MessageSchema | None:
        with sqla_exceptions_to_repo_exc():
            message = await self._session.scalar(
                select(Message).where(
                    Message.sender_id == sender_id,
                    Message.client_token == client_token,
                )
            )
        if message is not None:
            return MessageSchema.model_validate(message)
        return None

    async def get_message_list(
        self,
        viewer_id: uuid.UUID,
        chat: ChatIdentity,
        offset: int = 0,
        limit: int = MAX_MESSAGE_COUNT_PER_PAGE,
        before: datetime | None = None,
    ) -> list[MessageSchema]:
        st = select(Message)
        if chat.is_group:
            st = st.where(Message.chat_group_id == chat.chat_id)
        else:
            st = st.where(
                or_(
                    and_(
                        Message.sender_id == viewer_id,
                        Message.receiver_id == chat.chat_id,
                    ),
                    and_(
                        Message.sender_id == chat.chat_id,
                        Message.receiver_id == viewer_id,
                    ),
                )
            )
        if before is not None:
            st = st.where(Message.created_at <= before)
        st = (
            st.order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with sqla_exceptions_to_repo_exc():
            res = await self._session.scalars(st)
            return [MessageSchema.model_validate(message) for message in res]

    async def get_direct_counterpart_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        sent_to = select(Message.receiver_id.label("user_id")).where(
            Message.sender_id == user_id, Message.receiver_id.is_not(None)
        )
        received_from = select(Message.sender_id.label("user_id")).where(
            Message.receiver_id == user_id
        )
        with sqla_exceptions_to_repo_exc():
            res = await self._session.execute(union(sent_to, received_from))
            return [row[0] for row in res]

    async def mark_direct_messages_read(
        self, receiver_id: uuid.UUID, sender_id: uuid.UUID, read_at: datetime
    ) -> int:
        with sqla_exceptions_to_repo_exc():
            res = await self._session.execute(
                update(Message)
                .where(
                    Message.receiver_id == receiver_id,
                    Message.sender_id == sender_id,
                    Message.read_at.is_(None),
                )
                .values(read_at=read_at)
            )
        return res.rowcount

    # ---------------------------------------------------------------------------------
    # Read state

    def _upsert_read_state(self):
        """
        Dialect-specific INSERT that supports `ON CONFLICT DO UPDATE`
        """
        if self._session.get_bind().dialect.name == "postgresql":
            return postgresql.insert(ChatReadState)
        return sqlite.insert(ChatReadState)

    async def increment_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        message_at: datetime,
    ) -> None:
        st = self._upsert_read_state().values(
            user_id=user_id,
            chat_id=chat_id,
            chat_type=chat_type.value,
            unread_count=1,
            last_message_at=message_at,
        )
        st = st.on_conflict_do_update(
            index_elements=READ_STATE_PK,
            set_={
                "unread_count": ChatReadState.unread_count + 1,
                "last_message_at": st.excluded.last_message_at,
            },
        )
        with sqla_exceptions_to_repo_exc():
            await self._session.execute(st)

    async def reset_unread_count(
        self,
        user_id: uuid.UUID,
        chat_id: str,
        chat_type: ChatType,
        read_at: datetime,
    ) -> None:
        st = self._upsert_read_state().values(
            user_id=user_id,
            chat_id=chat_id,
            chat_type=chat_type.value,
            unread_count=0,
            last_read_at=read_at,
        )
        st = st.on_conflict_do_update(
            index_elements=READ_STATE_PK,
            set_={"unread_count": 0, "last_read_at": st.excluded.last_read_at},
        )
        with sqla_exceptions_to_repo_exc():
            await self._session.execute(st)

    async def get_read_state(
        self, user_id: uuid.UUID, chat_id: str, chat_type: ChatType
    ) -> ChatReadStateSchema | None:
        with sqla_exceptions_to_repo_exc():
            state = await self._session.get(
                ChatReadState,
                (user_id, chat_id, chat_type.value),
                populate_existing=True,
            )
            if state is not None:
                return ChatReadStateSchema.model_validate(state)
            return None

    async def get_read_state_list(
        self, user_id: uuid.UUID
    ) -> list[ChatReadStateSchema]:
        with sqla_exceptions_to_repo_exc():
            res = await self._session.scalars(
                select(ChatReadState)
                .where(ChatReadState.user_id == user_id)
                .execution_options(populate_existing=True)
            )
            return [ChatReadStateSchema.model_validate(state) for state in res.all()]

    async def get_total_unread_count(
        self, user_id: uuid.UUID, group_ids: Collection[uuid.UUID] | None = None
    ) -> int:
        st = select(func.coalesce(func.sum(ChatReadState.unread_count), 0)).where(
            ChatReadState.user_id == user_id
        )
        if group_ids is not None:
            st = st.where(
                or_(
                    ChatReadState.chat_type == ChatType.private.value,
                    ChatReadState.chat_id.in_(
                        [str(group_id) for group_id in group_ids]
                    ),
                )
            )
        with sqla_exceptions_to_repo_exc():
            total = await self._session.scalar(st)
        return int(total or 0)

    # ---------------------------------------------------------------------------------
    # Profiles and groups

    async def add_profile(self, profile: ProfileSchema) -> ProfileSchema:
        with sqla_exceptions_to_repo_exc():
            profile_db = await self._session.scalar(
                insert(Profile).returning(Profile), profile.model_dump()
            )
        return ProfileSchema.model_validate(profile_db)

    async def get_profile(self, user_id: uuid.UUID) -> ProfileSchema | None:
        with sqla_exceptions_to_repo_exc():
            profile = await self._session.get(Profile, user_id)
            if profile is not None:
                return ProfileSchema.model_validate(profile)
            return None

    async def add_group(self, group: ChatGroupSchema) -> ChatGroupSchema:
        with sqla_exceptions_to_repo_exc():
            group_db = await self._session.scalar(
                insert(ChatGroup).returning(ChatGroup), group.model_dump()
            )
        return ChatGroupSchema.model_validate(group_db)

    async def get_group(self, group_id: uuid.UUID) -> ChatGroupSchema | None:
        with sqla_exceptions_to_repo_exc():
            group = await self._session.get(ChatGroup, group_id)
            if group is not None:
                return ChatGroupSchema.model_validate(group)
            return None

    async def add_user_to_group(self, group_id: uuid.UUID, user_id: uuid.UUID) -> None:
        with sqla_exceptions_to_repo_exc():
            if await self._session.get(ChatGroup, group_id) is None:
                raise ChatRepoRequestError(
                    detail=f"Group with id={group_id} doesn't exist"
                )
            await self._session.execute(
                insert(ChatGroupMember), {"group_id": group_id, "user_id": user_id}
            )

    async def remove_user_from_group(
        self, group_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        with sqla_exceptions_to_repo_exc():
            await self._session.execute(
                delete(ChatGroupMember).where(
                    ChatGroupMember.group_id == group_id,
                    ChatGroupMember.user_id == user_id,
                )
            )

    async def get_group_member_ids(self, group_id: uuid.UUID) -> list[uuid.UUID]:
        with sqla_exceptions_to_repo_exc():
            res = await self._session.scalars(
                select(ChatGroupMember.user_id).where(
                    ChatGroupMember.group_id == group_id
                )
            )
            return list(res)

    async def get_joined_group_ids(self, user_id: uuid.UUID) -> list[uuid.UUID]:
        with sqla_exceptions_to_repo_exc():
            res = await self._session.scalars(
                select(ChatGroupMember.group_id).where(
                    ChatGroupMember.user_id == user_id
                )
            )
            return list(res)
