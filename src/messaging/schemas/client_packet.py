from datetime import datetime
from typing import Literal, TypeAlias, Union

from pydantic import Field

from messaging.schemas.chat_identity import ChatIdentity

from .base import BaseSchema


class CMDSendMessage(BaseSchema):
    packet_type: Literal["CMDSendMessage"] = "CMDSendMessage"
    chat: ChatIdentity
    content: str
    client_token: str | None = None


class CMDFetchPage(BaseSchema):
    packet_type: Literal["CMDFetchPage"] = "CMDFetchPage"
    chat: ChatIdentity
    page_index: int = 0
    page_size: int | None = None
    before: datetime | None = None


class CMDMarkRead(BaseSchema):
    packet_type: Literal["CMDMarkRead"] = "CMDMarkRead"
    chat: ChatIdentity


class CMDGetConversations(BaseSchema):
    packet_type: Literal["CMDGetConversations"] = "CMDGetConversations"
    name_filter: str | None = None


class CMDGetUnreadCount(BaseSchema):
    packet_type: Literal["CMDGetUnreadCount"] = "CMDGetUnreadCount"
    chat: ChatIdentity


class CMDGetTotalUnreadCount(BaseSchema):
    packet_type: Literal["CMDGetTotalUnreadCount"] = "CMDGetTotalUnreadCount"


ClientPacketData: TypeAlias = Union[
    CMDSendMessage,
    CMDFetchPage,
    CMDMarkRead,
    CMDGetConversations,
    CMDGetUnreadCount,
    CMDGetTotalUnreadCount,
]


class ClientPacket(BaseSchema):
    """
    Container for client's command or request
    (client is sender)
    """

    id: int
    data: ClientPacketData = Field(discriminator="packet_type")
