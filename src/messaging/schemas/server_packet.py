from typing import Literal, TypeAlias, Union

from pydantic import Field

from messaging.schemas.conversation import ConversationSchema
from messaging.schemas.message import MessagePage, MessageSchema

from .base import BaseSchema

# Responses


class SrvRespError(BaseSchema):
    """
    Unsuccessful response (error)
    """

    packet_type: Literal["RespError"] = "RespError"
    success: Literal[False] = False
    error_code: str
    detail: str


class SrvRespSuccess(BaseSchema):
    """
    Common base for all successful responses
    """

    success: Literal[True] = True


class SrvRespSucessNoBody(SrvRespSuccess):
    """
    Schema for all successful responses without body (there is no need to send any data)
    """

    packet_type: Literal["RespSuccessNoBody"] = "RespSuccessNoBody"


class SrvRespSendMessage(SrvRespSuccess):
    """
    Response for CMDSendMessage command.
    Contains saved message (with id and created_at)
    """

    packet_type: Literal["RespSendMessage"] = "RespSendMessage"
    message: MessageSchema


class SrvRespFetchPage(SrvRespSuccess):
    """
    Response for CMDFetchPage command.
    """

    packet_type: Literal["RespFetchPage"] = "RespFetchPage"
    page: MessagePage


class SrvRespGetConversations(SrvRespSuccess):
    packet_type: Literal["RespGetConversations"] = "RespGetConversations"
    conversations: list[ConversationSchema]


class SrvRespUnreadCount(SrvRespSuccess):
    """
    Response for CMDGetUnreadCount and CMDGetTotalUnreadCount commands.
    """

    packet_type: Literal["RespUnreadCount"] = "RespUnreadCount"
    unread_count: int


ServerPacketData: TypeAlias = Union[
    SrvRespError,
    SrvRespSucessNoBody,
    SrvRespSendMessage,
    SrvRespFetchPage,
    SrvRespGetConversations,
    SrvRespUnreadCount,
]


class ServerPacket(BaseSchema):
    """
    Container for server's response
    (server is sender)
    """

    request_packet_id: int | None
    data: ServerPacketData = Field(discriminator="packet_type")
