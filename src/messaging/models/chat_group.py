import uuid
from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class ChatGroup(BaseModel):
    __tablename__ = "chat_groups"
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        nullable=False,
    )
    name: Mapped[str]
    avatar_url: Mapped[str | None] = mapped_column(default=None)
    created_at: Mapped[datetime]


class ChatGroupMember(BaseModel):
    __tablename__ = "chat_group_members"

    group_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("chat_groups.id"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
