from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from chathub.config import settings
from chathub.core.logging_config import get_logger
from chathub.core.rate_limit import limiter
from chathub.core.security import AuthenticatedUser, get_current_user
from chathub.dependencies import get_chat_service
from chathub.schemas.message import (
    ForwardMessageCreate,
    GroupMessageCreate,
    MessageUpdate,
    MessageView,
    PersonalMessageCreate,
    ReplyMessageCreate,
    StatusAck,
    StatusUpdate,
)
from chathub.services.chat_service import ChatService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/messages/personal",
    response_model=MessageView,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_SEND)
async def send_personal_message(
    request: Request,
    body: PersonalMessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Send a message to another user.

    The personal chatroom of the pair is created on first use and the message
    is broadcast as `new_message` on `chat/{chatroomId}`.
    """
    logger.info("api_send_personal", sender_id=user.user_id, receiver_id=body.receiver_id)
    return await chat_service.send_personal(
        sender_id=user.user_id,
        receiver_id=body.receiver_id,
        content=body.content,
        attachment_id=body.attachment_id,
    )


@router.post(
    "/messages/group",
    response_model=MessageView,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_SEND)
async def send_group_message(
    request: Request,
    body: GroupMessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Send a message to a group the caller belongs to."""
    logger.info("api_send_group", sender_id=user.user_id, group_id=body.group_id)
    return await chat_service.send_group(
        sender_id=user.user_id,
        group_id=body.group_id,
        content=body.content,
        attachment_id=body.attachment_id,
    )


@router.post(
    "/messages/reply",
    response_model=MessageView,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_SEND)
async def send_reply(
    request: Request,
    body: ReplyMessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Reply to a message.

    The reply goes to the chatroom of the message it answers. Replying to a
    soft-deleted message is allowed.
    """
    logger.info("api_send_reply", sender_id=user.user_id, replied_to_id=body.replied_to_id)
    return await chat_service.send_reply(
        sender_id=user.user_id,
        replied_to_id=body.replied_to_id,
        content=body.content,
        attachment_id=body.attachment_id,
    )


@router.post(
    "/messages/forward",
    response_model=MessageView,
    status_code=status.HTTP_201_CREATED
)
@limiter.limit(settings.RATE_LIMIT_SEND)
async def forward_message(
    request: Request,
    body: ForwardMessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    logger.info(
        "api_forward_message",
        sender_id=user.user_id,
        message_id=body.message_id,
        destination_chatroom_id=body.destination_chatroom_id
    )
    return await chat_service.forward(
        sender_id=user.user_id,
        message_id=body.message_id,
        destination_chatroom_id=body.destination_chatroom_id,
    )


@router.get(
    "/messages/{message_id}",
    response_model=MessageView,
    status_code=status.HTTP_200_OK
)
async def get_message(
    request: Request,
    message_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Fetch one message by id. Soft-deleted messages are returned with `deleted: true`."""
    return await chat_service.get_message(user.user_id, message_id)


@router.put(
    "/messages/{message_id}",
    response_model=MessageView,
    status_code=status.HTTP_200_OK
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def edit_message(
    request: Request,
    message_id: int,
    body: MessageUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Edit a message (only by sender). Deleted messages cannot be edited."""
    logger.info("api_edit_message", message_id=message_id, user_id=user.user_id)
    return await chat_service.edit_message(user.user_id, message_id, body.content)


@router.delete(
    "/messages/{message_id}",
    status_code=status.HTTP_204_NO_CONTENT
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def delete_message(
    request: Request,
    message_id: int,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Soft delete a message (only by sender). Deleting twice is a no-op."""
    logger.info("api_delete_message", message_id=message_id, user_id=user.user_id)
    await chat_service.delete_message(user.user_id, message_id)
    return None


@router.patch(
    "/messages/{message_id}/status",
    response_model=StatusAck,
    status_code=status.HTTP_200_OK
)
@limiter.limit(settings.RATE_LIMIT_MUTATE)
async def update_message_status(
    request: Request,
    message_id: int,
    body: StatusUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Move a message's delivery status forward (SENT -> DELIVERED -> READ).

    Re-sending the current status is acknowledged with `changed: false`;
    moving backwards returns 409.
    """
    logger.info(
        "api_update_status",
        message_id=message_id,
        user_id=user.user_id,
        status=body.status.value
    )
    return await chat_service.update_status(user.user_id, message_id, body.status)


@router.get(
    "/chatrooms/{chatroom_id}/messages",
    response_model=List[MessageView],
    status_code=status.HTTP_200_OK
)
async def list_messages(
    request: Request,
    chatroom_id: str,
    include_deleted: bool = Query(False, alias="includeDeleted"),
    after_id: Optional[int] = Query(None, alias="afterId", ge=0, description="Only messages with a larger id"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of messages"),
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Message history of a chatroom in id order. Soft-deleted messages are skipped unless includeDeleted."""
    return await chat_service.list_messages(
        requester_id=user.user_id,
        chatroom_id=chatroom_id,
        include_deleted=include_deleted,
        after_id=after_id,
        limit=limit,
    )
