import uuid

from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class Profile(BaseModel):
    __tablename__ = "profiles"
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        nullable=False,
    )
    name: Mapped[str]
    avatar_url: Mapped[str | None] = mapped_column(default=None)
