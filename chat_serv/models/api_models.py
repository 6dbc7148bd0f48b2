"""API models for client responses."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from chat_serv.models.db_models import ChatRole, JoinRequestStatus


T = TypeVar("T")


class ErrorCode:
    """Error codes carried in Result.errors."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    SERVER_ERROR = "SERVER_ERROR"


ERROR_HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.SERVER_ERROR: 500,
}


@dataclass
class Result(Generic[T]):
    """Universal operation result wrapper."""

    success: bool

    errors: list[tuple[str, str]] = field(default_factory=list)  # [("FORBIDDEN", "Not a member")]
    data: T | None = None
    message: str = ""

    @property
    def error_code(self) -> str | None:
        return self.errors[0][0] if self.errors else None

    @property
    def error_message(self) -> str | None:
        return self.errors[0][1] if self.errors else None


class ApiModel(BaseModel):
    """Base for payloads sent to clients, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserSummary(ApiModel):
    """Public part of a user shown next to messages and members."""

    id: int
    name: str
    profile_image_key: str | None = None


class Attachment(ApiModel):
    """Attachment stored in the file store."""

    id: int
    message_id: int

    key: str
    file_type: str | None = None


class ParentMessage(ApiModel):
    """One-level summary of the message a reply points to."""

    id: int
    content: str | None

    sender: UserSummary | None
    attachments: list[Attachment]

    is_edited: bool
    parent_message_id: int | None

    created_at: datetime
    updated_at: datetime


class Message(ApiModel):
    """Message with sender, attachments and optional parent summary."""

    id: int
    chat_room_id: int

    content: str | None
    sender: UserSummary | None

    is_edited: bool
    parent_message_id: int | None = None
    parent_message: ParentMessage | None = None

    attachments: list[Attachment]

    created_at: datetime
    updated_at: datetime


class ChatMember(ApiModel):
    """Membership row of a chat room."""

    user_id: int
    role: ChatRole
    last_read_at: datetime | None = None

    user: UserSummary | None = None


class ChatRoom(ApiModel):
    """Chat room information."""

    id: int

    name: str
    description: str | None = None
    state: str | None = None
    city: str | None = None

    is_group: bool
    is_invite_only: bool
    image: str | None = None

    users: list[ChatMember] = []

    created_at: datetime
    updated_at: datetime


class UserChatRoom(ChatRoom):
    """Chat room as shown in the user's conversation list."""

    unread_count: int
    last_message_snippet: str
    last_message_time: datetime


class UserChatRoomsPagination(ApiModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class UserChatRoomsPage(ApiModel):
    data: list[UserChatRoom]
    pagination: UserChatRoomsPagination


class DirectoryChatRoom(ApiModel):
    """Chat room as shown in the public room directory."""

    id: int
    name: str
    description: str | None = None

    is_group: bool
    is_invite_only: bool
    image: str | None = None

    member_count: int
    is_member: bool
    join_request_status: JoinRequestStatus | None = None
    is_requested_by_current_user: bool

    created_at: datetime
    updated_at: datetime


class DirectoryPagination(ApiModel):
    total_rooms: int
    current_page: int
    page_size: int
    has_more: bool


class DirectoryPage(ApiModel):
    chat_rooms: list[DirectoryChatRoom]
    pagination: DirectoryPagination


class MessagesPagination(ApiModel):
    total_messages: int
    current_page: int
    page_size: int
    next_cursor: int | None
    has_more: bool


class MessagesPage(ApiModel):
    chat_room: ChatRoom
    messages: list[Message]
    pagination: MessagesPagination


class ChatRoomDetails(ChatRoom):
    """Chat room with members, first message page and the reader's unread count."""

    current_user_role: ChatRole
    messages: list[Message]
    pagination: MessagesPagination
    unread_messages: int


class UnreadCount(ApiModel):
    chat_room_id: int
    chat_room_name: str
    unread_count: int


class JoinRequest(ApiModel):
    """Join request with requester summary."""

    id: int
    user_id: int
    chat_room_id: int

    status: JoinRequestStatus
    requested_at: datetime

    user: UserSummary | None = None


class UploadTicket(ApiModel):
    """Presigned upload handle for a freshly generated file key."""

    upload_url: str
    file_key: str
