"""Chat room, membership and join request handlers."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application

from fastapi import APIRouter, Depends, Query, status

from chat_serv.middleware import logging_middleware
from chat_serv.models.api_models import ChatMember
from chat_serv.models.request_models import (
    CreateChatRoomBody,
    HandleJoinRequestBody,
    TransferOwnershipBody,
    UpdateChatRoomBody
)
from chat_serv.handlers.responses import make_response


def register_chats_handlers(app: "Application"):
    """Register chats handlers."""

    router = APIRouter(prefix="/api/v1/chats", tags=["chats"])

    chat_service = app.chat_service
    require_auth = app.auth.require_auth

    # Rooms

    @router.post("/createChatRoom")
    @logging_middleware.log_transaction
    async def create_chat_room(body: CreateChatRoomBody, user_id: int = Depends(require_auth)):
        """Create new chat room owned by the caller."""

        result = await chat_service.create_chat_room(
            creator_id=user_id,
            name=body.name,
            description=body.description,
            state=body.state,
            city=body.city,
            is_group=body.is_group,
            is_invite_only=body.is_invite_only,
            image=body.image
        )

        return make_response(result, status.HTTP_201_CREATED)

    @router.post("/updateChatRoom/{chat_room_id}")
    @logging_middleware.log_transaction
    async def update_chat_room(chat_room_id: int, body: UpdateChatRoomBody, user_id: int = Depends(require_auth)):
        result = await chat_service.update_chat_room(
            chat_room_id=chat_room_id,
            requester_id=user_id,
            fields=body.present_fields()
        )

        return make_response(result)

    @router.get("/getUserChatRooms")
    @logging_middleware.log_transaction_debug
    async def get_user_chat_rooms(page: int = 1, limit: int | None = None, user_id: int = Depends(require_auth)):
        """Get conversations of the caller."""

        return make_response(await chat_service.get_user_chat_rooms(user_id=user_id, page=page, limit=limit))

    @router.get("/chatRooms")
    @logging_middleware.log_transaction_debug
    async def get_chat_rooms(
        page: int = 1,
        page_size: int | None = Query(None, alias="pageSize"),
        user_id: int = Depends(require_auth)
    ):
        """Get the public room directory."""

        return make_response(await chat_service.get_chat_rooms_paginated(
            user_id=user_id,
            page=page,
            page_size=page_size
        ))

    @router.get("/getChatRoomDetail/{chat_room_id}")
    @logging_middleware.log_transaction_debug
    async def get_chat_room_detail(
        chat_room_id: int,
        page: int = 1,
        limit: int | None = None,
        cursor: int | None = None,
        user_id: int = Depends(require_auth)
    ):
        return make_response(await chat_service.get_chat_room_details(
            chat_room_id=chat_room_id,
            requester_id=user_id,
            page=page,
            limit=limit,
            cursor=cursor
        ))

    # Read state

    @router.put("/updateLastRead/{chat_room_id}")
    @logging_middleware.log_transaction
    async def update_last_read(chat_room_id: int, user_id: int = Depends(require_auth)):
        return make_response(await chat_service.mark_read(user_id=user_id, chat_room_id=chat_room_id))

    @router.get("/unread-counts")
    @logging_middleware.log_transaction_debug
    async def get_unread_counts(user_id: int = Depends(require_auth)):
        return make_response(await chat_service.get_unread_counts(user_id=user_id))

    # Membership

    @router.post("/join/{chat_room_id}")
    @logging_middleware.log_transaction
    async def join_chat_room(chat_room_id: int, user_id: int = Depends(require_auth)):
        """Join open room or request access to an invite-only one."""

        result = await chat_service.join_chat_room(user_id=user_id, chat_room_id=chat_room_id)

        # a filed request creates no membership
        if isinstance(result.data, ChatMember):
            return make_response(result, status.HTTP_201_CREATED)

        return make_response(result)

    @router.post("/{chat_room_id}/join-requests/{target_user_id}")
    @logging_middleware.log_transaction
    async def handle_join_request(
        chat_room_id: int,
        target_user_id: int,
        body: HandleJoinRequestBody,
        user_id: int = Depends(require_auth)
    ):
        """Approve or deny the join request of target user."""

        result = await chat_service.handle_join_request(
            actor_id=user_id,
            chat_room_id=chat_room_id,
            target_user_id=body.target_user_id or target_user_id,
            action=body.action
        )

        return make_response(result)

    @router.get("/{chat_room_id}/join-requests")
    @logging_middleware.log_transaction_debug
    async def get_join_requests(chat_room_id: int, user_id: int = Depends(require_auth)):
        return make_response(await chat_service.get_join_requests(actor_id=user_id, chat_room_id=chat_room_id))

    @router.delete("/removeUser/{chat_room_id}/{target_user_id}")
    @logging_middleware.log_transaction
    async def remove_user(chat_room_id: int, target_user_id: int, user_id: int = Depends(require_auth)):
        result = await chat_service.remove_member(
            actor_id=user_id,
            chat_room_id=chat_room_id,
            target_user_id=target_user_id
        )

        return make_response(result)

    @router.delete("/{chat_room_id}/leave")
    @logging_middleware.log_transaction
    async def leave_chat_room(chat_room_id: int, user_id: int = Depends(require_auth)):
        return make_response(await chat_service.leave_chat_room(user_id=user_id, chat_room_id=chat_room_id))

    @router.put("/{chat_room_id}/transfer-ownership")
    @logging_middleware.log_transaction
    async def transfer_ownership(
        chat_room_id: int,
        body: TransferOwnershipBody,
        user_id: int = Depends(require_auth)
    ):
        result = await chat_service.transfer_ownership(
            current_owner_id=user_id,
            chat_room_id=chat_room_id,
            new_owner_id=body.new_owner_id
        )

        return make_response(result)

    app.api.include_router(router)
