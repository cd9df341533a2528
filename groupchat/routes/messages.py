from fastapi import APIRouter, Depends, Request, status

from groupchat.config import settings
from groupchat.core.logging_config import get_logger
from groupchat.core.rate_limit import limiter
from groupchat.dependencies import ensure_caller, get_messaging_service
from groupchat.schemas.message import (
    MessageCreate,
    MessageDelete,
    MessageMatchDelete,
    MessageResponse,
)
from groupchat.services.messaging_service import MessagingService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/groups/{group_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_SEND_MESSAGE)  # Prevent message spam
async def send_message(
    request: Request,
    group_id: str,
    message_data: MessageCreate,
    messaging: MessagingService = Depends(get_messaging_service)
):
    """
    Append a message to the group's log.

    The sender must be a current member. When ``sender_name`` is omitted the
    sender's profile display name is used. Every live subscriber of the group
    receives the updated snapshot.
    """
    ensure_caller(request, message_data.sender_id)

    logger.info(
        "api_send_message",
        group_id=group_id,
        sender_id=message_data.sender_id
    )

    message = await messaging.send_message(
        group_id=group_id,
        sender_id=message_data.sender_id,
        sender_name=message_data.sender_name,
        body=message_data.body,
    )
    return MessageResponse.from_model(group_id, message)


@router.delete("/groups/{group_id}/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    request: Request,
    group_id: str,
    message_id: str,
    delete_data: MessageDelete,
    messaging: MessagingService = Depends(get_messaging_service)
):
    """Delete one message by id (sender only, the group creator included)."""
    ensure_caller(request, delete_data.requester_id)

    logger.info(
        "api_delete_message",
        group_id=group_id,
        message_id=message_id,
        requester_id=delete_data.requester_id
    )

    message = await messaging.delete_message(group_id, delete_data.requester_id, message_id)
    return MessageResponse.from_model(group_id, message)


@router.delete("/groups/{group_id}/messages", response_model=MessageResponse)
async def delete_matching_message(
    request: Request,
    group_id: str,
    delete_data: MessageMatchDelete,
    messaging: MessagingService = Depends(get_messaging_service)
):
    """
    Delete by structural match on (body, sender).

    Resolves to the first matching message in log order. Prefer deleting by id:
    identical messages from one sender cannot be told apart here.
    """
    ensure_caller(request, delete_data.requester_id)

    logger.info(
        "api_delete_matching_message",
        group_id=group_id,
        requester_id=delete_data.requester_id,
        sender_id=delete_data.sender_id
    )

    message = await messaging.delete_matching_message(
        group_id=group_id,
        requester_id=delete_data.requester_id,
        body=delete_data.body,
        sender_id=delete_data.sender_id,
    )
    return MessageResponse.from_model(group_id, message)
