from typing import List

from fastapi import APIRouter, Depends, Request, status

from chathub.core.logging_config import get_logger
from chathub.core.security import AuthenticatedUser, get_current_user
from chathub.dependencies import get_chat_service
from chathub.schemas.chatroom import (
    ChatRoomView,
    GroupChatRoomCreate,
    PersonalChatRoomCreate,
    project_chatroom,
)
from chathub.services.chat_service import ChatService

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/chatrooms/personal",
    response_model=ChatRoomView,
    status_code=status.HTTP_200_OK
)
async def open_personal_chatroom(
    request: Request,
    body: PersonalChatRoomCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """
    Get or create the personal chatroom of two users.

    The id is the same whichever order the participants are given in.
    """
    room = await chat_service.open_personal(user.user_id, body.participant_ids)
    logger.info("api_open_personal", chatroom_id=room.id, user_id=user.user_id)
    return project_chatroom(room)


@router.post(
    "/chatrooms/group",
    response_model=ChatRoomView,
    status_code=status.HTTP_200_OK
)
async def open_group_chatroom(
    request: Request,
    body: GroupChatRoomCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    room = await chat_service.open_group(user.user_id, body.group_id)
    logger.info("api_open_group", chatroom_id=room.id, user_id=user.user_id)
    return project_chatroom(room)


@router.get(
    "/chatrooms",
    response_model=List[ChatRoomView],
    status_code=status.HTTP_200_OK
)
async def list_chatrooms(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    """Chatrooms of the caller, most recent activity first."""
    rooms = await chat_service.list_chatrooms(user.user_id)
    return [project_chatroom(room) for room in rooms]


@router.get(
    "/chatrooms/{chatroom_id}",
    response_model=ChatRoomView,
    status_code=status.HTTP_200_OK
)
async def get_chatroom(
    request: Request,
    chatroom_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    room = await chat_service.get_chatroom(user.user_id, chatroom_id)
    return project_chatroom(room)
