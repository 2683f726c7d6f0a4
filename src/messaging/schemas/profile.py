import uuid
from datetime import datetime

from .base import BaseSchema


class ProfileSchema(BaseSchema):
    id: uuid.UUID
    name: str
    avatar_url: str | None = None


class ChatGroupSchema(BaseSchema):
    id: uuid.UUID
    name: str
    avatar_url: str | None = None
    created_at: datetime
