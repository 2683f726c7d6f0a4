import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class Message(BaseModel):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "(receiver_id IS NULL) <> (chat_group_id IS NULL)",
            name="ck_messages_single_target",
        ),
        UniqueConstraint("sender_id", "client_token", name="uq_messages_client_token"),
        Index("ix_messages_direct", "receiver_id", "sender_id", "created_at"),
        Index("ix_messages_group", "chat_group_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    sender_id: Mapped[uuid.UUID]
    receiver_id: Mapped[uuid.UUID | None]
    chat_group_id: Mapped[uuid.UUID | None]
    content: Mapped[str]
    created_at: Mapped[datetime]
    read_at: Mapped[datetime | None]
    client_token: Mapped[str | None]
