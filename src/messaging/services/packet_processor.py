import logging
import uuid

from pydantic import ValidationError

from messaging.schemas.client_packet import (
    ClientPacket,
    CMDFetchPage,
    CMDGetConversations,
    CMDGetTotalUnreadCount,
    CMDGetUnreadCount,
    CMDMarkRead,
    CMDSendMessage,
)
from messaging.schemas.server_packet import (
    ServerPacket,
    ServerPacketData,
    SrvRespError,
    SrvRespFetchPage,
    SrvRespGetConversations,
    SrvRespSendMessage,
    SrvRespSucessNoBody,
    SrvRespUnreadCount,
)
from messaging.services.message_store.message_store import validation_error_detail
from messaging.services.messaging_service.messaging_service import MessagingService
from messaging.services.messaging_service.messaging_service_exc import (
    MessagingException,
    ValidationFailed,
)

logger = logging.getLogger(__name__)


def error_response(exc: MessagingException) -> SrvRespError:
    return SrvRespError(error_code=exc.error_code, detail=exc.detail)


async def process_client_request_packet(
    messaging_service: MessagingService,
    packet: ClientPacket,
    current_user_id: uuid.UUID,
) -> ServerPacket:

    response_data: ServerPacketData | None = None
    data = packet.data

    try:
        if isinstance(data, CMDSendMessage):
            message = await messaging_service.send_message(
                current_user_id=current_user_id,
                chat=data.chat,
                content=data.content,
                client_token=data.client_token,
            )
            response_data = SrvRespSendMessage(message=message)
        elif isinstance(data, CMDFetchPage):
            page = await messaging_service.fetch_page(
                current_user_id=current_user_id,
                chat=data.chat,
                page_index=data.page_index,
                page_size=data.page_size,
                before=data.before,
            )
            response_data = SrvRespFetchPage(page=page)
        elif isinstance(data, CMDMarkRead):
            await messaging_service.mark_read(
                current_user_id=current_user_id, chat=data.chat
            )
            response_data = SrvRespSucessNoBody()
        elif isinstance(data, CMDGetConversations):
            conversations = await messaging_service.get_conversations(
                current_user_id=current_user_id, name_filter=data.name_filter
            )
            response_data = SrvRespGetConversations(conversations=conversations)
        elif isinstance(data, CMDGetUnreadCount):
            unread_count = await messaging_service.get_unread_count(
                current_user_id=current_user_id, chat=data.chat
            )
            response_data = SrvRespUnreadCount(unread_count=unread_count)
        elif isinstance(data, CMDGetTotalUnreadCount):
            unread_count = await messaging_service.get_total_unread_count(
                current_user_id=current_user_id
            )
            response_data = SrvRespUnreadCount(unread_count=unread_count)
    except MessagingException as exc:
        logger.debug("Request %s failed: %s", packet.id, exc)
        response_data = error_response(exc)

    if response_data is None:
        raise ValueError(f"Unsupported packet type: {data.packet_type}")
    return ServerPacket(request_packet_id=packet.id, data=response_data)


async def process_client_request_packet_str(
    messaging_service: MessagingService,
    packet_str: str,
    current_user_id: uuid.UUID,
) -> str:
    """
    Decode JSON packet, process it and return JSON-encoded response packet.
    Malformed packets are answered with VALIDATION_FAILED error.
    """
    try:
        packet = ClientPacket.model_validate_json(packet_str)
    except ValidationError as exc:
        response = ServerPacket(
            request_packet_id=None,
            data=error_response(
                ValidationFailed(detail=validation_error_detail(exc))
            ),
        )
        return response.model_dump_json()
    response = await process_client_request_packet(
        messaging_service=messaging_service,
        packet=packet,
        current_user_id=current_user_id,
    )
    return response.model_dump_json()
