"""Chat service for chat room, member and join request operations."""

import logging
import math

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.common.db import DatabaseAPI
    from chat_serv.common.s3 import S3API
    from chat_serv.common.notify_manager import NotifyManager
    from chat_serv.services.messages.service import MessageService

from chat_serv.common.errors import ConflictError
from chat_serv.services.chats.repos import ChatRoomsRepository, ChatMembersRepository, JoinRequestsRepository
from chat_serv.services.messages.repos import MessagesRepository, AttachmentsRepository
from chat_serv.services.messages.service import make_snippet
from chat_serv.services.uploads.repos import ChatFilesRepository
from chat_serv.services.users.repos import AccountsRepository

from chat_serv.models.db_models import (
    MANAGING_ROLES,
    ChatRole,
    ChatRoomDB,
    JoinRequestStatus
)
from chat_serv.models.api_models import (
    ChatMember,
    ChatRoom,
    ChatRoomDetails,
    DirectoryChatRoom,
    DirectoryPage,
    DirectoryPagination,
    ErrorCode,
    JoinRequest,
    Result,
    UnreadCount,
    UserChatRoom,
    UserChatRoomsPage,
    UserChatRoomsPagination
)

from chat_serv.config import settings


MIN_ROOM_NAME_LENGTH = 3

JOIN_REQUEST_ACTIONS = {
    "approve": JoinRequestStatus.APPROVED,
    "deny": JoinRequestStatus.DENIED,
}


class ChatService:
    """Service for chat room operations."""

    def __init__(
        self,
        db: "DatabaseAPI",
        s3: "S3API",
        notify_man: "NotifyManager",
        message_service: "MessageService"
    ):
        """Initialize service with its dependencies."""

        self.logger = logging.getLogger("chat-service")
        self.logger.setLevel(settings.logging_level)

        self.db = db
        self.notify_man = notify_man
        self.message_service = message_service

        self.rooms_repo = ChatRoomsRepository(db)
        self.members_repo = ChatMembersRepository(db)
        self.requests_repo = JoinRequestsRepository(db)

        self.messages_repo = MessagesRepository(db)
        self.attachments_repo = AttachmentsRepository(db)

        self.accounts_repo = AccountsRepository(db)
        self.files_repo = ChatFilesRepository(s3)

    # Room lifecycle

    async def create_chat_room(
        self,
        creator_id: int,
        name: str | None,
        description: str | None = None,
        state: str | None = None,
        city: str | None = None,
        is_group: bool = True,
        is_invite_only: bool = False,
        image: str | None = None
    ) -> Result[ChatRoom]:
        """Create chat room with the creator as its OWNER."""

        name = (name or "").strip()
        if len(name) < MIN_ROOM_NAME_LENGTH:
            return Result(success=False, errors=[
                (ErrorCode.VALIDATION_ERROR, "Chat room name must be at least 3 characters long")
            ])

        if is_group and await self.rooms_repo.get_group_by_name(name):
            return Result(success=False, errors=[(ErrorCode.CONFLICT, "A chat room with this name already exists")])

        try:
            async with self.db.transaction() as conn:
                room_db = await self.rooms_repo.create(
                    name, description, state, city, is_group, is_invite_only, image,
                    conn=conn
                )
                await self.members_repo.add_member(room_db.id, creator_id, ChatRole.OWNER, conn=conn)

        except ConflictError:
            return Result(success=False, errors=[(ErrorCode.CONFLICT, "A chat room with this name already exists")])

        self.logger.info(f"Chat room {room_db.id} created by user {creator_id}")

        room = (await self._rooms_with_members([room_db]))[0]

        return Result(success=True, data=room, message="Chat room created successfully")

    async def update_chat_room(self, chat_room_id: int, requester_id: int, fields: dict) -> Result[ChatRoom]:
        """Apply a partial update as OWNER or MODERATOR."""

        room_db = await self.rooms_repo.get_by_id(chat_room_id)
        if not room_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Chat room not found")])

        membership = await self.members_repo.get_membership(chat_room_id, requester_id)
        if not membership or membership.role not in MANAGING_ROLES:
            return Result(success=False, errors=[
                (ErrorCode.FORBIDDEN, "Only the owner or a moderator can update this chat room")
            ])

        fields = dict(fields)

        # Flags are NOT NULL, an explicit null means "leave as is"
        for flag in ("is_group", "is_invite_only"):
            if flag in fields and fields[flag] is None:
                del fields[flag]

        if "name" in fields:
            fields["name"] = (fields["name"] or "").strip()

            if len(fields["name"]) < MIN_ROOM_NAME_LENGTH:
                return Result(success=False, errors=[
                    (ErrorCode.VALIDATION_ERROR, "Chat room name must be at least 3 characters long")
                ])

        try:
            updated_db = await self.rooms_repo.update(chat_room_id, fields)

        except ConflictError:
            return Result(success=False, errors=[(ErrorCode.CONFLICT, "A chat room with this name already exists")])

        if not updated_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Chat room not found")])

        if "image" in fields and room_db.image and fields["image"] != room_db.image:
            await self._delete_file(room_db.image)

        room = (await self._rooms_with_members([updated_db]))[0]

        return Result(success=True, data=room, message="Chat room updated successfully")

    async def get_user_chat_rooms(
        self,
        user_id: int,
        page: int = 1,
        limit: int | None = None
    ) -> Result[UserChatRoomsPage]:
        """Get rooms the user belongs to, newest room first, with unread counts and last message."""

        if limit is None:
            limit = settings.rooms_page_size

        if page < 1 or limit < 1:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Invalid pagination parameters")])

        total = await self.rooms_repo.count_by_user(user_id)
        rooms_db = await self.rooms_repo.get_page_by_user(user_id, limit, (page - 1) * limit)

        if not rooms_db and page == 1:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "No chat rooms found for this user")])

        room_ids = [r.id for r in rooms_db]
        rooms = await self._rooms_with_members(rooms_db)

        last_messages = await self.messages_repo.get_last_by_rooms(room_ids)
        last_attachments = await self.attachments_repo.get_by_messages([m.id for m in last_messages.values()])

        items = []
        for room_db, room in zip(rooms_db, rooms):
            own = next((m for m in room.users if m.user_id == user_id), None)
            unread = await self.messages_repo.count_unread(room_db.id, user_id, own.last_read_at if own else None)

            last = last_messages.get(room_db.id)
            if last:
                snippet = make_snippet(last.content, bool(last_attachments.get(last.id)), "No messages yet")
                last_time = last.created_at
            else:
                snippet = "No messages yet"
                last_time = room_db.created_at

            items.append(UserChatRoom(
                **room.model_dump(),
                unread_count=unread,
                last_message_snippet=snippet,
                last_message_time=last_time
            ))

        return Result(success=True, data=UserChatRoomsPage(
            data=items,
            pagination=UserChatRoomsPagination(
                current_page=page,
                total_pages=math.ceil(total / limit),
                total_items=total,
                items_per_page=limit
            )
        ))

    async def get_chat_rooms_paginated(
        self,
        user_id: int,
        page: int = 1,
        page_size: int | None = None
    ) -> Result[DirectoryPage]:
        """Get room directory ordered by member count, annotated for user."""

        if page_size is None:
            page_size = settings.rooms_page_size

        if page < 1 or page_size < 1:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Invalid pagination parameters")])

        total = await self.rooms_repo.count_all()
        entries = await self.rooms_repo.get_directory_page(user_id, page_size, (page - 1) * page_size)

        rooms = [
            DirectoryChatRoom(
                id=entry.room.id,
                name=entry.room.name,
                description=entry.room.description,
                is_group=entry.room.is_group,
                is_invite_only=entry.room.is_invite_only,
                image=entry.room.image,
                member_count=entry.member_count,
                is_member=entry.is_member,
                join_request_status=entry.join_request_status,
                is_requested_by_current_user=entry.join_request_status == JoinRequestStatus.PENDING,
                created_at=entry.room.created_at,
                updated_at=entry.room.updated_at
            )
            for entry in entries
        ]

        return Result(success=True, data=DirectoryPage(
            chat_rooms=rooms,
            pagination=DirectoryPagination(
                total_rooms=total,
                current_page=page,
                page_size=page_size,
                has_more=page * page_size < total
            )
        ))

    async def get_chat_room_details(
        self,
        chat_room_id: int,
        requester_id: int,
        page: int = 1,
        limit: int | None = None,
        cursor: int | None = None
    ) -> Result[ChatRoomDetails]:
        """Get room with members, first history page and the requester's unread count."""

        if limit is None:
            limit = settings.messages_page_size

        if page < 1 or limit < 1:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Invalid pagination parameters")])

        membership = await self.members_repo.get_membership(chat_room_id, requester_id)
        if not membership:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You are not a member of this chat room")])

        room_db = await self.rooms_repo.get_by_id(chat_room_id)
        if not room_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Chat room not found")])

        room = (await self._rooms_with_members([room_db]))[0]
        messages, pagination = await self.message_service.get_messages_page(chat_room_id, limit, cursor, page)
        unread = await self.messages_repo.count_unread(chat_room_id, requester_id, membership.last_read_at)

        return Result(success=True, data=ChatRoomDetails(
            **room.model_dump(),
            current_user_role=membership.role,
            messages=messages,
            pagination=pagination,
            unread_messages=unread
        ))

    # Membership & roles

    async def join_chat_room(self, user_id: int, chat_room_id: int) -> Result[ChatMember | JoinRequest]:
        """Join open room directly or file a request for an invite-only one."""

        room_db = None

        try:
            async with self.db.transaction() as conn:
                # serializes with leave and approve on the same room
                room_db = await self.rooms_repo.get_for_update(chat_room_id, conn=conn)
                if not room_db:
                    return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Chat room not found")])

                if await self.members_repo.get_membership(chat_room_id, user_id, conn=conn):
                    return Result(success=False, errors=[
                        (ErrorCode.CONFLICT, "You are already a member of this chat room")
                    ])

                if room_db.is_invite_only:
                    return await self._request_to_join(user_id, chat_room_id, conn)

                # the last member left, whoever comes next owns the room
                role = ChatRole.MEMBER
                if not await self.members_repo.count_members(chat_room_id, conn=conn):
                    role = ChatRole.OWNER

                member_db = await self.members_repo.add_member(chat_room_id, user_id, role, conn=conn)

        except ConflictError:
            if room_db and room_db.is_invite_only:
                return Result(success=False, errors=[(ErrorCode.CONFLICT, "A join request already exists")])

            return Result(success=False, errors=[(ErrorCode.CONFLICT, "You are already a member of this chat room")])

        return Result(
            success=True,
            data=self.members_repo.to_api_model(member_db),
            message="Joined chat room successfully"
        )

    async def _request_to_join(self, user_id: int, chat_room_id: int, conn) -> Result[JoinRequest]:
        existing = await self.requests_repo.get(chat_room_id, user_id, conn=conn)

        if existing:
            # an APPROVED request of a non-member means the user has left since
            reopenable = existing.status == JoinRequestStatus.APPROVED or (
                existing.status == JoinRequestStatus.DENIED and settings.allow_rerequest_after_deny
            )

            if reopenable:
                reopened = await self.requests_repo.reopen(chat_room_id, user_id, existing.status, conn=conn)

                if reopened:
                    return Result(
                        success=True,
                        data=self.requests_repo.to_api_model(reopened),
                        message="Join request sent"
                    )

            return Result(success=False, errors=[
                (ErrorCode.CONFLICT, f"A join request already exists with status {existing.status.value}")
            ])

        request_db = await self.requests_repo.create(chat_room_id, user_id, conn=conn)

        return Result(success=True, data=self.requests_repo.to_api_model(request_db), message="Join request sent")

    async def handle_join_request(
        self,
        actor_id: int,
        chat_room_id: int,
        target_user_id: int,
        action: str | None
    ) -> Result[JoinRequest]:
        """Approve or deny a pending join request."""

        new_status = JOIN_REQUEST_ACTIONS.get((action or "").lower())
        if new_status is None:
            return Result(success=False, errors=[
                (ErrorCode.VALIDATION_ERROR, "Action must be either 'approve' or 'deny'")
            ])

        try:
            async with self.db.transaction() as conn:
                await self.rooms_repo.get_for_update(chat_room_id, conn=conn)

                membership = await self.members_repo.get_membership(chat_room_id, actor_id, conn=conn)
                if not membership or membership.role not in MANAGING_ROLES:
                    return Result(success=False, errors=[
                        (ErrorCode.FORBIDDEN, "Only the owner or a moderator can handle join requests")
                    ])

                request_db = await self.requests_repo.get(chat_room_id, target_user_id, conn=conn)
                if not request_db:
                    return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Join request not found")])

                if request_db.status != JoinRequestStatus.PENDING:
                    return Result(success=False, errors=[
                        (ErrorCode.CONFLICT, "Join request has already been handled")
                    ])

                if new_status == JoinRequestStatus.APPROVED:
                    await self.members_repo.add_member(chat_room_id, target_user_id, ChatRole.MEMBER, conn=conn)

                if not await self.requests_repo.set_status(chat_room_id, target_user_id, new_status, conn=conn):
                    raise ConflictError("join_requests_status")

        except ConflictError:
            return Result(success=False, errors=[(ErrorCode.CONFLICT, "Join request could not be handled")])

        await self.notify_man.send_join_request_handled(chat_room_id, target_user_id, new_status.value, actor_id)

        return Result(
            success=True,
            data=self.requests_repo.to_api_model(request_db.model_copy(update={"status": new_status})),
            message=f"Join request {new_status.value.lower()}"
        )

    async def get_join_requests(self, actor_id: int, chat_room_id: int) -> Result[list[JoinRequest]]:
        """Get pending join requests, oldest first."""

        membership = await self.members_repo.get_membership(chat_room_id, actor_id)
        if not membership or membership.role not in MANAGING_ROLES:
            return Result(success=False, errors=[
                (ErrorCode.FORBIDDEN, "Only the owner or a moderator can view join requests")
            ])

        requests_db = await self.requests_repo.get_pending_by_room(chat_room_id)
        if not requests_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "No pending join requests")])

        accounts = await self.accounts_repo.get_by_ids([r.user_id for r in requests_db])

        return Result(success=True, data=[
            self.requests_repo.to_api_model(r, self.accounts_repo.to_summary(accounts.get(r.user_id)))
            for r in requests_db
        ])

    async def remove_member(self, actor_id: int, chat_room_id: int, target_user_id: int) -> Result[None]:
        """Remove another member according to the role hierarchy."""

        if actor_id == target_user_id:
            return Result(success=False, errors=[
                (ErrorCode.VALIDATION_ERROR, "Use leave to remove yourself from a chat room")
            ])

        actor = await self.members_repo.get_membership(chat_room_id, actor_id)
        if not actor:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You are not a member of this chat room")])

        target = await self.members_repo.get_membership(chat_room_id, target_user_id)
        if not target:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "User is not a member of this chat room")])

        if actor.role == ChatRole.MEMBER:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "Members cannot remove other users")])

        if actor.role == ChatRole.MODERATOR and target.role != ChatRole.MEMBER:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "Moderators can only remove members")])

        if not await self.members_repo.remove_member(chat_room_id, target_user_id):
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "User is not a member of this chat room")])

        await self.notify_man.send_member_removed(chat_room_id, target_user_id, actor_id)

        return Result(success=True, message="User removed from chat room")

    async def leave_chat_room(self, user_id: int, chat_room_id: int) -> Result[None]:
        """Leave room. The OWNER has to transfer ownership first unless alone."""

        async with self.db.transaction() as conn:
            # a join between the count and the delete would be left without an OWNER
            await self.rooms_repo.get_for_update(chat_room_id, conn=conn)

            membership = await self.members_repo.get_membership(chat_room_id, user_id, conn=conn)
            if not membership:
                return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "You are not a member of this chat room")])

            if membership.role == ChatRole.OWNER:
                if await self.members_repo.count_members(chat_room_id, conn=conn) > 1:
                    return Result(success=False, errors=[
                        (ErrorCode.FORBIDDEN, "Transfer ownership before leaving the chat room")
                    ])

            await self.members_repo.remove_member(chat_room_id, user_id, conn=conn)

        await self.notify_man.send_member_removed(chat_room_id, user_id, user_id)

        return Result(success=True, message="Left chat room successfully")

    async def transfer_ownership(self, current_owner_id: int, chat_room_id: int, new_owner_id: int) -> Result[None]:
        """Promote a member to OWNER and demote the current one to MEMBER."""

        actor = await self.members_repo.get_membership(chat_room_id, current_owner_id)
        if not actor or actor.role != ChatRole.OWNER:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You must be the owner to transfer ownership")])

        target = await self.members_repo.get_membership(chat_room_id, new_owner_id)
        if not target:
            return Result(success=False, errors=[
                (ErrorCode.NOT_FOUND, "The selected user is not a member of this chat room")
            ])

        if current_owner_id == new_owner_id:
            return Result(success=False, errors=[
                (ErrorCode.VALIDATION_ERROR, "You are already the owner of this chat room")
            ])

        try:
            async with self.db.transaction() as conn:
                demoted = await self.members_repo.set_role(
                    chat_room_id, current_owner_id, ChatRole.MEMBER,
                    expected_role=ChatRole.OWNER,
                    conn=conn
                )
                promoted = await self.members_repo.set_role(chat_room_id, new_owner_id, ChatRole.OWNER, conn=conn)

                if not (demoted and promoted):
                    raise ConflictError("chat_room_users_role")

        except ConflictError:
            return Result(success=False, errors=[(ErrorCode.CONFLICT, "Chat room ownership has changed")])

        self.logger.info(f"Chat room {chat_room_id} ownership moved from {current_owner_id} to {new_owner_id}")

        await self.notify_man.send_ownership_transferred(chat_room_id, current_owner_id, new_owner_id)

        return Result(success=True, message="Ownership transferred successfully")

    # Read state

    async def mark_read(self, user_id: int, chat_room_id: int) -> Result[ChatMember]:
        """Mark every message of the room as read for user."""

        membership = await self.members_repo.get_membership(chat_room_id, user_id)
        if not membership:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "You are not a member of this chat room")])

        read_at = await self.members_repo.update_last_read(chat_room_id, user_id)
        if read_at is None:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "You are not a member of this chat room")])

        await self.notify_man.send_read_updated(chat_room_id, user_id, read_at)

        return Result(
            success=True,
            data=self.members_repo.to_api_model(membership.model_copy(update={"last_read_at": read_at})),
            message="Last read time updated"
        )

    async def get_unread_counts(self, user_id: int) -> Result[list[UnreadCount]]:
        """Get unread message count for every room of user."""

        memberships = await self.members_repo.get_memberships_by_user(user_id)
        rooms = await self.rooms_repo.get_by_ids([m.chat_room_id for m in memberships])

        counts = []
        for membership in memberships:
            room_db = rooms.get(membership.chat_room_id)
            if not room_db:
                continue

            counts.append(UnreadCount(
                chat_room_id=room_db.id,
                chat_room_name=room_db.name,
                unread_count=await self.messages_repo.count_unread(room_db.id, user_id, membership.last_read_at)
            ))

        return Result(success=True, data=counts)

    async def is_member(self, chat_room_id: int, user_id: int) -> bool:
        """Check if user is member of chat room."""

        return await self.members_repo.get_membership(chat_room_id, user_id) is not None

    # Helpers

    async def _rooms_with_members(self, rooms_db: list[ChatRoomDB]) -> list[ChatRoom]:
        members_by_room = await self.members_repo.get_members_by_rooms([r.id for r in rooms_db])

        user_ids = [m.user_id for members in members_by_room.values() for m in members]
        accounts = await self.accounts_repo.get_by_ids(user_ids)

        return [
            self.rooms_repo.to_api_model(room_db, [
                self.members_repo.to_api_model(m, self.accounts_repo.to_summary(accounts.get(m.user_id)))
                for m in members_by_room.get(room_db.id, [])
            ])
            for room_db in rooms_db
        ]

    async def _delete_file(self, key: str) -> None:
        """Best-effort removal of a replaced file."""

        if not await self.files_repo.delete(key):
            self.logger.warning(f"Old chat room image {key} was not deleted")
