from datetime import datetime
from typing import List, Optional

from pydantic import Field

from chathub.models.chatroom import ChatRoom, ChatRoomKind
from chathub.schemas.message import CamelModel


class PersonalChatRoomCreate(CamelModel):
    participant_ids: List[str] = Field(..., min_length=1)


class GroupChatRoomCreate(CamelModel):
    group_id: str


class ChatRoomView(CamelModel):
    id: str
    kind: ChatRoomKind
    participant_ids: List[str]
    group_id: Optional[str] = None
    last_activity: datetime
    created_at: datetime
    archived: bool = False


def project_chatroom(room: ChatRoom) -> ChatRoomView:
    return ChatRoomView(
        id=room.id,
        kind=room.kind,
        participant_ids=list(room.participants),
        group_id=room.group_id,
        last_activity=room.last_activity,
        created_at=room.created_at,
        archived=room.archived,
    )
