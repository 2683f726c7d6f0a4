import uuid
from datetime import datetime

from messaging.schemas.chat_identity import ChatType, direct_chat_key
from messaging.schemas.event import AnyEvent, ChatMessageEvent, ReadStateChanged
from messaging.schemas.message import MessageSchema


def create_chat_event(event_class: type[AnyEvent]) -> AnyEvent:
    if event_class is ChatMessageEvent:
        return ChatMessageEvent(
            message=MessageSchema(
                id=0,
                created_at=datetime.now(),
                sender_id=uuid.uuid4(),
                receiver_id=uuid.uuid4(),
                content=f"message {uuid.uuid4()}",
            )
        )
    if event_class is ReadStateChanged:
        user_id = uuid.uuid4()
        return ReadStateChanged(
            user_id=user_id,
            chat_type=ChatType.private,
            chat_id=direct_chat_key(user_id, uuid.uuid4()),
        )

    raise Exception()
