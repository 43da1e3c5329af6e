from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatRoomKind(str, Enum):
    PERSONAL = "PERSONAL"
    GROUP = "GROUP"


class ChatRoom(BaseModel):
    """
    A durable conversation context.

    Personal rooms are keyed by the ordered pair of their two participants
    ("5_9"), group rooms by their group ("group_17"). Rooms are never deleted;
    `archived` only hides them.
    """
    id: str
    kind: ChatRoomKind
    participants: List[str] = Field(default_factory=list)
    group_id: Optional[str] = None
    last_activity: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    archived: bool = False

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants
