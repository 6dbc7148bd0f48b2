"""PostgreSQL Database models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel as BaseDBModel


class ChatRole(str, Enum):
    """Role of a user inside a chat room."""

    OWNER = "OWNER"
    MODERATOR = "MODERATOR"
    MEMBER = "MEMBER"


class JoinRequestStatus(str, Enum):
    """Lifecycle of a join request. A handled request is reopened when the user asks again."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


MANAGING_ROLES = (ChatRole.OWNER, ChatRole.MODERATOR)


class AccountDB(BaseDBModel):
    """User account database model (read only for the chat core)."""

    id: int

    name: str
    email: str
    profile_image_key: str | None = None


class ChatRoomDB(BaseDBModel):
    """Chat room database model."""

    id: int

    name: str
    description: str | None = None
    state: str | None = None
    city: str | None = None

    is_group: bool
    is_invite_only: bool
    image: str | None = None

    created_at: datetime
    updated_at: datetime


class ChatRoomUserDB(BaseDBModel):
    """Chat room membership database model."""

    id: int

    user_id: int
    chat_room_id: int

    role: ChatRole
    last_read_at: datetime | None = None

    joined_at: datetime


class JoinRequestDB(BaseDBModel):
    """Join request database model."""

    id: int

    user_id: int
    chat_room_id: int

    status: JoinRequestStatus
    requested_at: datetime


class MessageDB(BaseDBModel):
    """Message database model."""

    id: int
    chat_room_id: int

    sender_id: int
    content: str | None = None
    parent_message_id: int | None = None

    is_edited: bool

    created_at: datetime
    updated_at: datetime


class AttachmentDB(BaseDBModel):
    """Message attachment database model."""

    id: int
    message_id: int

    key: str
    file_type: str | None = None
