"""
Directory - the external collaborators chathub consumes.

- Identity provider: get_user(id) -> UserProfile
- Group directory:   get_group(id) -> GroupDetails
- Attachment store:  get_attachment(id) -> AttachmentRecord
- Presence projection: set_presence(user_id, ONLINE|OFFLINE)

HttpDirectory talks to the directory API with a service token and caches
lookups in Redis (users and attachments for DIRECTORY_CACHE_TTL, group
membership for a shorter window since it is more volatile).
InMemoryDirectory backs development setups and the test suite.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from chathub.config import settings
from chathub.core.cache import cache, deserialize_from_cache, serialize_for_cache
from chathub.core.exceptions import NotFoundError
from chathub.core.logging_config import get_logger
from chathub.models.message import Attachment

logger = get_logger(__name__)

GROUP_CACHE_TTL = 60


class PresenceStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


@dataclass
class UserProfile:
    id: str
    display_name: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "UserProfile":
        return cls(**data)


@dataclass
class GroupDetails:
    id: str
    name: str = ""
    member_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "GroupDetails":
        return cls(**data)


@dataclass
class AttachmentRecord:
    """File record created out-of-band by the attachment store."""
    id: str
    url: str
    name: str
    size: int
    mime_type: str
    uploader_id: str

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AttachmentRecord":
        return cls(**data)

    def to_attachment(self) -> Attachment:
        return Attachment(**self.to_dict())


class Directory(ABC):

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile:
        """Raises NotFoundError for unknown users."""

    @abstractmethod
    async def get_group(self, group_id: str) -> GroupDetails:
        """Raises NotFoundError for unknown groups."""

    @abstractmethod
    async def get_attachment(self, attachment_id: str) -> AttachmentRecord:
        """Raises NotFoundError for unknown attachments."""

    @abstractmethod
    async def set_presence(self, user_id: str, status: PresenceStatus) -> None:
        ...

    async def close(self) -> None:
        pass


class InMemoryDirectory(Directory):

    def __init__(self):
        self.users: Dict[str, UserProfile] = {}
        self.groups: Dict[str, GroupDetails] = {}
        self.attachments: Dict[str, AttachmentRecord] = {}
        self.presence: Dict[str, PresenceStatus] = {}

    def add_user(self, user_id: str, display_name: Optional[str] = None) -> UserProfile:
        user = UserProfile(id=user_id, display_name=display_name or f"user-{user_id}")
        self.users[user_id] = user
        return user

    def add_group(self, group_id: str, member_ids: List[str], name: str = "") -> GroupDetails:
        group = GroupDetails(id=group_id, name=name, member_ids=list(member_ids))
        self.groups[group_id] = group
        return group

    def add_attachment(
        self,
        attachment_id: str,
        url: str,
        name: str,
        size: int,
        mime_type: str,
        uploader_id: str,
    ) -> AttachmentRecord:
        record = AttachmentRecord(
            id=attachment_id,
            url=url,
            name=name,
            size=size,
            mime_type=mime_type,
            uploader_id=uploader_id,
        )
        self.attachments[attachment_id] = record
        return record

    @classmethod
    def from_seed_file(cls, path: str) -> "InMemoryDirectory":
        """
        Build a directory from a JSON file:

            {"users": [{"id": "5", "display_name": "Ada"}],
             "groups": [{"id": "17", "name": "Team", "member_ids": ["5", "9"]}],
             "attachments": [{"id": "a1", "url": "...", "name": "cat.png",
                              "size": 1024, "mime_type": "image/png", "uploader_id": "5"}]}
        """
        data = json.loads(Path(path).read_text())
        directory = cls()
        for user in data.get("users", []):
            directory.users[str(user["id"])] = UserProfile(
                id=str(user["id"]), display_name=user["display_name"]
            )
        for group in data.get("groups", []):
            directory.add_group(
                str(group["id"]),
                [str(member) for member in group.get("member_ids", [])],
                name=group.get("name", ""),
            )
        for record in data.get("attachments", []):
            directory.attachments[str(record["id"])] = AttachmentRecord.from_dict(
                {**record, "id": str(record["id"]), "uploader_id": str(record["uploader_id"])}
            )
        logger.info(
            "directory_seed_loaded",
            path=path,
            users=len(directory.users),
            groups=len(directory.groups),
            attachments=len(directory.attachments),
        )
        return directory

    async def get_user(self, user_id: str) -> UserProfile:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def get_group(self, group_id: str) -> GroupDetails:
        group = self.groups.get(group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    async def get_attachment(self, attachment_id: str) -> AttachmentRecord:
        record = self.attachments.get(attachment_id)
        if record is None:
            raise NotFoundError(f"Attachment {attachment_id} not found")
        return record

    async def set_presence(self, user_id: str, status: PresenceStatus) -> None:
        self.presence[user_id] = status


class HttpDirectory(Directory):
    """
    Directory API client.

    Endpoints:
    - GET  /api/v1/users/{id}            -> {"id", "display_name"}
    - GET  /api/v1/groups/{id}           -> {"id", "name", "member_ids"}
    - GET  /api/v1/attachments/{id}      -> {"id", "url", "name", "size", "mime_type", "uploader_id"}
    - PUT  /api/v1/users/{id}/presence   <- {"status": "ONLINE" | "OFFLINE"}

    A 404 becomes NotFoundError; any other failure propagates as httpx.HTTPError.
    """

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.DIRECTORY_API_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.DIRECTORY_API_TIMEOUT),
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            headers={"X-Service-Token": settings.DIRECTORY_API_TOKEN},
            transport=transport,
        )

        logger.info("directory_client_initialized", base_url=self.base_url)

    async def _get_json(self, path: str, what: str) -> dict:
        response = await self._client.get(path)
        if response.status_code == 404:
            raise NotFoundError(f"{what} not found")
        response.raise_for_status()
        return response.json()

    async def _cached(self, key: str, ttl: int, path: str, what: str) -> dict:
        cached = await cache.get(key)
        if cached:
            try:
                return deserialize_from_cache(cached)
            except ValueError as e:
                logger.error("cache_deserialization_error", key=key, error=str(e))

        data = await self._get_json(path, what)
        await cache.set(key, serialize_for_cache(data), ttl=ttl)
        return data

    async def get_user(self, user_id: str) -> UserProfile:
        data = await self._cached(
            f"directory:user:{user_id}",
            settings.DIRECTORY_CACHE_TTL,
            f"/api/v1/users/{user_id}",
            f"User {user_id}",
        )
        return UserProfile(id=str(data["id"]), display_name=data["display_name"])

    async def get_group(self, group_id: str) -> GroupDetails:
        data = await self._cached(
            f"directory:group:{group_id}",
            GROUP_CACHE_TTL,
            f"/api/v1/groups/{group_id}",
            f"Group {group_id}",
        )
        return GroupDetails(
            id=str(data["id"]),
            name=data.get("name", ""),
            member_ids=[str(member) for member in data.get("member_ids", [])],
        )

    async def get_attachment(self, attachment_id: str) -> AttachmentRecord:
        data = await self._cached(
            f"directory:attachment:{attachment_id}",
            settings.DIRECTORY_CACHE_TTL,
            f"/api/v1/attachments/{attachment_id}",
            f"Attachment {attachment_id}",
        )
        return AttachmentRecord(
            id=str(data["id"]),
            url=data["url"],
            name=data["name"],
            size=int(data["size"]),
            mime_type=data["mime_type"],
            uploader_id=str(data["uploader_id"]),
        )

    async def set_presence(self, user_id: str, status: PresenceStatus) -> None:
        response = await self._client.put(
            f"/api/v1/users/{user_id}/presence",
            json={"status": status.value},
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("directory_client_closed")
