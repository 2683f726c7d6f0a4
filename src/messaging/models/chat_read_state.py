import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class ChatReadState(BaseModel):
    __tablename__ = "chat_read_state"
    __table_args__ = (
        CheckConstraint("unread_count >= 0", name="ck_chat_read_state_unread"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    # Canonical chat key (see ChatIdentity.chat_key)
    chat_id: Mapped[str] = mapped_column(primary_key=True)
    chat_type: Mapped[str] = mapped_column(primary_key=True)

    unread_count: Mapped[int] = mapped_column(default=0)
    last_read_at: Mapped[datetime | None]
    last_message_at: Mapped[datetime | None]
