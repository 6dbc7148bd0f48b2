"""Messages handlers."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application

from fastapi import APIRouter, Depends, Query, status

from chat_serv.middleware import logging_middleware
from chat_serv.models.request_models import EditMessageBody, ReplyMessageBody, SendMessageBody
from chat_serv.handlers.responses import make_response


def register_messages_handlers(app: "Application"):
    """Register messages handlers."""

    router = APIRouter(prefix="/api/v1/chats", tags=["messages"])

    message_service = app.message_service
    require_auth = app.auth.require_auth

    @router.post("/send")
    @logging_middleware.log_transaction
    async def send_message(body: SendMessageBody, user_id: int = Depends(require_auth)):
        """Send message with optional attachments."""

        result = await message_service.send_message(
            sender_id=user_id,
            chat_room_id=body.chat_room_id,
            content=body.content,
            attachments=[(a.file_key, a.file_type) for a in body.attachments]
        )

        return make_response(result, status.HTTP_201_CREATED)

    @router.get("/messages/{chat_room_id}")
    @logging_middleware.log_transaction_debug
    async def get_messages(
        chat_room_id: int,
        page: int = 1,
        page_size: int | None = Query(None, alias="pageSize"),
        cursor: int | None = None,
        user_id: int = Depends(require_auth)
    ):
        """Get history page older than cursor."""

        return make_response(await message_service.get_messages(
            chat_room_id=chat_room_id,
            requester_id=user_id,
            page_size=page_size,
            cursor=cursor,
            page=page
        ))

    @router.delete("/messages/{message_id}")
    @logging_middleware.log_transaction
    async def delete_message(message_id: int, user_id: int = Depends(require_auth)):
        return make_response(await message_service.delete_message(actor_id=user_id, message_id=message_id))

    @router.put("/messages/{message_id}/edit")
    @logging_middleware.log_transaction
    async def edit_message(message_id: int, body: EditMessageBody, user_id: int = Depends(require_auth)):
        result = await message_service.edit_message(
            editor_id=user_id,
            message_id=message_id,
            new_content=body.new_content
        )

        return make_response(result)

    @router.post("/messages/reply/{message_id}")
    @logging_middleware.log_transaction
    async def reply_to_message(message_id: int, body: ReplyMessageBody, user_id: int = Depends(require_auth)):
        result = await message_service.reply_to_message(
            sender_id=user_id,
            parent_message_id=message_id,
            content=body.content
        )

        return make_response(result, status.HTTP_201_CREATED)

    app.api.include_router(router)
