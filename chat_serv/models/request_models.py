"""Request bodies accepted by the HTTP handlers."""

from typing import Literal

from pydantic import Field

from chat_serv.models.api_models import ApiModel


class AttachmentInput(ApiModel):
    """File already uploaded through a presigned URL."""

    file_key: str = Field(min_length=1)
    file_type: str | None = None


class CreateChatRoomBody(ApiModel):
    name: str | None = None
    description: str | None = None
    state: str | None = None
    city: str | None = None
    is_group: bool = True
    is_invite_only: bool = False
    image: str | None = None


class UpdateChatRoomBody(ApiModel):
    """Partial update; only fields present in the body are applied."""

    name: str | None = None
    description: str | None = None
    state: str | None = None
    city: str | None = None
    is_group: bool | None = None
    is_invite_only: bool | None = None
    image: str | None = None

    def present_fields(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class HandleJoinRequestBody(ApiModel):
    action: str
    target_user_id: int | None = None


class TransferOwnershipBody(ApiModel):
    new_owner_id: int


class SendMessageBody(ApiModel):
    chat_room_id: int
    content: str | None = None
    attachments: list[AttachmentInput] = []


class EditMessageBody(ApiModel):
    new_content: str | None = None


class ReplyMessageBody(ApiModel):
    content: str | None = None


class UploadUrlBody(ApiModel):
    file_type: str | None = None
    folder: str | None = None
    file_name: str = "image.jpg"


class RealtimeCommand(ApiModel):
    """Frame sent by a websocket client."""

    type: Literal["joinChat", "leaveChat", "ping"]
    chat_room_id: int | None = None
