import uuid
from datetime import datetime, timedelta

import pytest

from messaging.schemas.chat_identity import ChatIdentity, ChatType, direct_chat_key
from messaging.schemas.message import MessageCreateSchema
from messaging.schemas.profile import ChatGroupSchema, ProfileSchema
from messaging.services.chat_repo.abstract_chat_repo import AbstractChatRepo
from messaging.services.chat_repo.chat_repo_exc import (
    ChatRepoDatabaseError,
    ChatRepoRequestError,
)


def direct_message(
    sender_id: uuid.UUID,
    receiver_id: uuid.UUID,
    content: str = "hi",
    client_token: str | None = None,
) -> MessageCreateSchema:
    return MessageCreateSchema(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        client_token=client_token,
    )


def group_message(
    sender_id: uuid.UUID, group_id: uuid.UUID, content: str = "hi all"
) -> MessageCreateSchema:
    return MessageCreateSchema(
        sender_id=sender_id, chat_group_id=group_id, content=content
    )


class ChatRepoTestBase:
    """
    Base class for testing concrete implementations of AbstractChatRepo interface.

    To add tests for a concrete class:
     - create a descendant class from ChatRepoTestBase
     - add fixture (with autouse=True) that initializes self.repo with the concrete
        implementation of the AbstractChatRepo interface
     - implement _break_connection()
    """

    repo: AbstractChatRepo  # Should be initialized by fixture

    # ---------------------------------------------------------------------------------
    # Tests for add_message() method

    async def test_add_message(self):
        """
        add_message() creates Message record and returns created record's data
        with id and created_at assigned.
        """
        sender_id, receiver_id = uuid.uuid4(), uuid.uuid4()
        message_before = direct_message(sender_id, receiver_id, "hello")

        message_after = await self.repo.add_message(message_before)

        assert message_after.id is not None
        assert message_after.created_at is not None
        assert message_after.sender_id == sender_id
        assert message_after.receiver_id == receiver_id
        assert message_after.chat_group_id is None
        assert message_after.content == "hello"
        assert message_after.read_at is None

        # Check that the record was persisted
        messages = await self.repo.get_message_list(
            sender_id, ChatIdentity.private(receiver_id)
        )
        assert [msg.id for msg in messages] == [message_after.id]

    async def test_add_message__created_at_strictly_increases(self):
        """
        Messages added one after another have strictly increasing created_at
        """
        sender_id, receiver_id = uuid.uuid4(), uuid.uuid4()
        messages = [
            await self.repo.add_message(direct_message(sender_id, receiver_id))
            for _ in range(5)
        ]
        for prev, next in zip(messages, messages[1:]):
            assert next.created_at > prev.created_at

    async def test_add_message__duplicated_client_token(self):
        """
        add_message() raises ChatRepoRequestError if the sender has already sent the
        message with the same client_token
        """
        sender_id, receiver_id = uuid.uuid4(), uuid.uuid4()
        await self.repo.add_message(
            direct_message(sender_id, receiver_id, client_token="token-1")
        )

        with pytest.raises(ChatRepoRequestError):
            await self.repo.add_message(
                direct_message(sender_id, receiver_id, client_token="token-1")
            )

    async def test_add_message__same_client_token_different_senders(self):
        """
        client_token is unique per sender
        """
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        await self.repo.add_message(direct_message(user_1, user_2, client_token="t"))
        message = await self.repo.add_message(
            direct_message(user_2, user_1, client_token="t")
        )
        assert message.client_token == "t"

    async def test_add_message_database_failure(self):
        """
        add_message() raises ChatRepoDatabaseError in case of DB failure.
        """
        await self._break_connection()

        with pytest.raises(ChatRepoDatabaseError):
            await self.repo.add_message(direct_message(uuid.uuid4(), uuid.uuid4()))

    # ---------------------------------------------------------------------------------
    # Tests for get_message_by_client_token() method

    async def test_get_message_by_client_token(self):
        sender_id, receiver_id = uuid.uuid4(), uuid.uuid4()
        message = await self.repo.add_message(
            direct_message(sender_id, receiver_id, client_token="abc")
        )

        found = await self.repo.get_message_by_client_token(sender_id, "abc")
        assert found is not None
        assert found.id == message.id

        assert await self.repo.get_message_by_client_token(sender_id, "xyz") is None
        assert await self.repo.get_message_by_client_token(receiver_id, "abc") is None

    # ---------------------------------------------------------------------------------
    # Tests for get_message_list() method

    async def test_get_message_list__direct_chat_both_directions(self):
        """
        get_message_list() returns messages of both participants of the direct chat,
        newest first. Messages of other chats are not included.
        """
        user_1, user_2, user_3 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        msg_1 = await self.repo.add_message(direct_message(user_1, user_2, "1"))
        msg_2 = await self.repo.add_message(direct_message(user_2, user_1, "2"))
        await self.repo.add_message(direct_message(user_1, user_3, "another chat"))
        await self.repo.add_message(direct_message(user_3, user_2, "another chat"))
        msg_3 = await self.repo.add_message(direct_message(user_1, user_2, "3"))

        messages_1 = await self.repo.get_message_list(
            user_1, ChatIdentity.private(user_2)
        )
        messages_2 = await self.repo.get_message_list(
            user_2, ChatIdentity.private(user_1)
        )

        expected_ids = [msg_3.id, msg_2.id, msg_1.id]
        assert [msg.id for msg in messages_1] == expected_ids
        assert [msg.id for msg in messages_2] == expected_ids

    async def test_get_message_list__group_chat(self):
        group_id = uuid.uuid4()
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        msg_1 = await self.repo.add_message(group_message(user_1, group_id))
        await self.repo.add_message(group_message(user_1, uuid.uuid4()))
        await self.repo.add_message(direct_message(user_1, user_2))
        msg_2 = await self.repo.add_message(group_message(user_2, group_id))

        messages = await self.repo.get_message_list(
            user_1, ChatIdentity.group(group_id)
        )

        assert [msg.id for msg in messages] == [msg_2.id, msg_1.id]

    @pytest.mark.parametrize(
        ("offset", "limit", "expected_indexes"),
        (
            (0, 3, [9, 8, 7]),
            (3, 3, [6, 5, 4]),
            (8, 3, [1, 0]),
            (10, 3, []),
        ),
    )
    async def test_get_message_list__offset_limit(
        self, offset: int, limit: int, expected_indexes: list[int]
    ):
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        messages = [
            await self.repo.add_message(direct_message(user_1, user_2, str(i)))
            for i in range(10)
        ]

        res = await self.repo.get_message_list(
            user_1, ChatIdentity.private(user_2), offset=offset, limit=limit
        )

        assert [msg.id for msg in res] == [messages[i].id for i in expected_indexes]

    async def test_get_message_list__before(self):
        """
        Messages created after `before` are not included
        """
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        msg_1 = await self.repo.add_message(direct_message(user_1, user_2))
        msg_2 = await self.repo.add_message(direct_message(user_1, user_2))
        await self.repo.add_message(direct_message(user_1, user_2))

        res = await self.repo.get_message_list(
            user_1, ChatIdentity.private(user_2), before=msg_2.created_at
        )

        assert [msg.id for msg in res] == [msg_2.id, msg_1.id]

    # ---------------------------------------------------------------------------------
    # Tests for get_direct_counterpart_ids() method

    async def test_get_direct_counterpart_ids(self):
        user_1, user_2, user_3, user_4 = (uuid.uuid4() for _ in range(4))
        await self.repo.add_message(direct_message(user_1, user_2))
        await self.repo.add_message(direct_message(user_2, user_1))
        await self.repo.add_message(direct_message(user_3, user_1))
        await self.repo.add_message(direct_message(user_3, user_4))
        await self.repo.add_message(group_message(user_1, uuid.uuid4()))

        counterparts = await self.repo.get_direct_counterpart_ids(user_1)

        assert sorted(counterparts, key=str) == sorted([user_2, user_3], key=str)

    # ---------------------------------------------------------------------------------
    # Tests for mark_direct_messages_read() method

    async def test_mark_direct_messages_read(self):
        """
        mark_direct_messages_read() sets read_at of unread messages sent by
        sender to receiver. Messages sent in opposite direction are not changed.
        """
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        await self.repo.add_message(direct_message(user_1, user_2))
        await self.repo.add_message(direct_message(user_1, user_2))
        await self.repo.add_message(direct_message(user_2, user_1))
        read_at = datetime(2024, 5, 1, 12, 0)

        updated = await self.repo.mark_direct_messages_read(
            receiver_id=user_2, sender_id=user_1, read_at=read_at
        )

        assert updated == 2
        messages = await self.repo.get_message_list(
            user_1, ChatIdentity.private(user_2)
        )
        for message in messages:
            if message.sender_id == user_1:
                assert message.read_at == read_at
            else:
                assert message.read_at is None

    async def test_mark_direct_messages_read__write_once(self):
        """
        read_at is not overwritten by subsequent calls
        """
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        await self.repo.add_message(direct_message(user_1, user_2))
        first_read_at = datetime(2024, 5, 1, 12, 0)
        await self.repo.mark_direct_messages_read(user_2, user_1, first_read_at)

        updated = await self.repo.mark_direct_messages_read(
            user_2, user_1, first_read_at + timedelta(hours=1)
        )

        assert updated == 0
        messages = await self.repo.get_message_list(
            user_2, ChatIdentity.private(user_1)
        )
        assert messages[0].read_at == first_read_at

    # ---------------------------------------------------------------------------------
    # Tests for read state methods

    async def test_increment_unread_count__creates_record(self):
        user_id = uuid.uuid4()
        chat_key = direct_chat_key(user_id, uuid.uuid4())
        message_at = datetime(2024, 5, 1, 12, 0)

        await self.repo.increment_unread_count(
            user_id, chat_key, ChatType.private, message_at
        )

        state = await self.repo.get_read_state(user_id, chat_key, ChatType.private)
        assert state is not None
        assert state.unread_count == 1
        assert state.last_message_at == message_at
        assert state.last_read_at is None

    async def test_increment_unread_count__increments(self):
        user_id = uuid.uuid4()
        group_key = str(uuid.uuid4())
        for i in range(3):
            await self.repo.increment_unread_count(
                user_id, group_key, ChatType.group, datetime(2024, 5, 1, 12, i)
            )

        state = await self.repo.get_read_state(user_id, group_key, ChatType.group)
        assert state is not None
        assert state.unread_count == 3
        assert state.last_message_at == datetime(2024, 5, 1, 12, 2)

    async def test_reset_unread_count(self):
        user_id = uuid.uuid4()
        group_key = str(uuid.uuid4())
        await self.repo.increment_unread_count(
            user_id, group_key, ChatType.group, datetime(2024, 5, 1, 12, 0)
        )
        read_at = datetime(2024, 5, 1, 13, 0)

        await self.repo.reset_unread_count(user_id, group_key, ChatType.group, read_at)

        state = await self.repo.get_read_state(user_id, group_key, ChatType.group)
        assert state is not None
        assert state.unread_count == 0
        assert state.last_read_at == read_at

    async def test_reset_unread_count__creates_record(self):
        """
        Reading the chat that has no read state record creates it
        """
        user_id = uuid.uuid4()
        group_key = str(uuid.uuid4())

        await self.repo.reset_unread_count(
            user_id, group_key, ChatType.group, datetime(2024, 5, 1)
        )

        state = await self.repo.get_read_state(user_id, group_key, ChatType.group)
        assert state is not None
        assert state.unread_count == 0

    async def test_get_read_state__not_exist(self):
        state = await self.repo.get_read_state(
            uuid.uuid4(), str(uuid.uuid4()), ChatType.group
        )
        assert state is None

    async def test_read_state__keyed_by_user(self):
        """
        Read states of different users in the same chat are independent
        """
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()
        chat_key = direct_chat_key(user_1, user_2)
        now = datetime(2024, 5, 1)
        await self.repo.increment_unread_count(user_1, chat_key, ChatType.private, now)
        await self.repo.increment_unread_count(user_2, chat_key, ChatType.private, now)
        await self.repo.reset_unread_count(user_1, chat_key, ChatType.private, now)

        state_1 = await self.repo.get_read_state(user_1, chat_key, ChatType.private)
        state_2 = await self.repo.get_read_state(user_2, chat_key, ChatType.private)
        assert state_1 is not None and state_1.unread_count == 0
        assert state_2 is not None and state_2.unread_count == 1

    async def test_get_read_state_list_and_total(self):
        user_id = uuid.uuid4()
        now = datetime(2024, 5, 1)
        chat_key = direct_chat_key(user_id, uuid.uuid4())
        group_key = str(uuid.uuid4())
        await self.repo.increment_unread_count(user_id, chat_key, ChatType.private, now)
        await self.repo.increment_unread_count(user_id, group_key, ChatType.group, now)
        await self.repo.increment_unread_count(user_id, group_key, ChatType.group, now)
        await self.repo.increment_unread_count(
            uuid.uuid4(), group_key, ChatType.group, now
        )

        states = await self.repo.get_read_state_list(user_id)
        total = await self.repo.get_total_unread_count(user_id)

        assert {(s.chat_type, s.chat_id): s.unread_count for s in states} == {
            (ChatType.private, chat_key): 1,
            (ChatType.group, group_key): 2,
        }
        assert total == 3

    async def test_get_total_unread_count__filtered_by_groups(self):
        """
        With `group_ids`, only the listed groups and all private chats are counted
        """
        user_id = uuid.uuid4()
        now = datetime(2024, 5, 1)
        chat_key = direct_chat_key(user_id, uuid.uuid4())
        joined_group_id, left_group_id = uuid.uuid4(), uuid.uuid4()
        await self.repo.increment_unread_count(user_id, chat_key, ChatType.private, now)
        for group_id in (joined_group_id, left_group_id, left_group_id):
            await self.repo.increment_unread_count(
                user_id, str(group_id), ChatType.group, now
            )

        assert await self.repo.get_total_unread_count(user_id) == 4
        assert (
            await self.repo.get_total_unread_count(
                user_id, group_ids=[joined_group_id]
            )
            == 2
        )
        assert await self.repo.get_total_unread_count(user_id, group_ids=[]) == 1

    async def test_get_total_unread_count__no_records(self):
        assert await self.repo.get_total_unread_count(uuid.uuid4()) == 0

    async def test_get_total_unread_count_database_failure(self):
        await self._break_connection()

        with pytest.raises(ChatRepoDatabaseError):
            await self.repo.get_total_unread_count(uuid.uuid4())

    # ---------------------------------------------------------------------------------
    # Tests for profiles and groups

    async def test_add_get_profile(self):
        profile = ProfileSchema(id=uuid.uuid4(), name="Alice", avatar_url="a.png")
        await self.repo.add_profile(profile)

        profile_from_db = await self.repo.get_profile(profile.id)
        assert profile_from_db == profile
        assert await self.repo.get_profile(uuid.uuid4()) is None

    async def test_add_get_group(self):
        group = ChatGroupSchema(
            id=uuid.uuid4(), name="Campus", created_at=datetime(2024, 1, 1)
        )
        await self.repo.add_group(group)

        group_from_db = await self.repo.get_group(group.id)
        assert group_from_db == group
        assert await self.repo.get_group(uuid.uuid4()) is None

    async def test_group_membership(self):
        group = ChatGroupSchema(
            id=uuid.uuid4(), name="Campus", created_at=datetime(2024, 1, 1)
        )
        await self.repo.add_group(group)
        user_1, user_2 = uuid.uuid4(), uuid.uuid4()

        await self.repo.add_user_to_group(group.id, user_1)
        await self.repo.add_user_to_group(group.id, user_2)
        assert set(await self.repo.get_group_member_ids(group.id)) == {user_1, user_2}
        assert await self.repo.get_joined_group_ids(user_1) == [group.id]

        await self.repo.remove_user_from_group(group.id, user_1)
        assert await self.repo.get_group_member_ids(group.id) == [user_2]
        assert await self.repo.get_joined_group_ids(user_1) == []

    async def test_add_user_to_group__group_doesnt_exist(self):
        with pytest.raises(ChatRepoRequestError):
            await self.repo.add_user_to_group(uuid.uuid4(), uuid.uuid4())

    # Methods below should be implemented in the descendant class

    async def _break_connection(self):
        raise NotImplementedError()
