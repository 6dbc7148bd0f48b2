"""Message service for message operations."""

import logging

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.common.db import DatabaseAPI
    from chat_serv.common.s3 import S3API
    from chat_serv.common.notify_manager import NotifyManager

from chat_serv.services.messages.repos import MessagesRepository, AttachmentsRepository
from chat_serv.services.chats.repos import ChatRoomsRepository, ChatMembersRepository
from chat_serv.services.uploads.repos import ChatFilesRepository
from chat_serv.services.users.repos import AccountsRepository

from chat_serv.models.db_models import MANAGING_ROLES, ChatRoomDB, MessageDB
from chat_serv.models.api_models import (
    ChatRoom,
    ErrorCode,
    Message,
    MessagesPage,
    MessagesPagination,
    ParentMessage,
    Result
)

from chat_serv.config import settings


ATTACHMENT_SNIPPET = "📷 Image/File"


def make_snippet(content: str | None, has_attachments: bool, fallback: str) -> str:
    """Short preview of a message for conversation lists."""

    if content:
        limit = settings.snippet_length
        if len(content) > limit:
            return content[:limit - 3] + "..."
        return content

    if has_attachments:
        return ATTACHMENT_SNIPPET

    return fallback


class MessageService:
    """Service for message operations."""

    def __init__(self, db: "DatabaseAPI", s3: "S3API", notify_man: "NotifyManager"):
        """Initialize service with its dependencies."""

        self.logger = logging.getLogger("message-service")
        self.logger.setLevel(settings.logging_level)

        self.db = db
        self.notify_man = notify_man

        self.messages_repo = MessagesRepository(db)
        self.attachments_repo = AttachmentsRepository(db)

        self.rooms_repo = ChatRoomsRepository(db)
        self.members_repo = ChatMembersRepository(db)

        self.accounts_repo = AccountsRepository(db)
        self.files_repo = ChatFilesRepository(s3)

    async def send_message(
        self,
        sender_id: int,
        chat_room_id: int,
        content: str | None = None,
        attachments: list[tuple[str, str | None]] | None = None
    ) -> Result[Message]:
        """Send message with optional (key, file_type) attachments."""

        content = (content or "").strip() or None
        attachments = attachments or []

        if content is None and not attachments:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Message must have content or attachments")])

        membership = await self.members_repo.get_membership(chat_room_id, sender_id)
        if not membership:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You are not a member of this chat room")])

        async with self.db.transaction() as conn:
            message_db = await self.messages_repo.create(chat_room_id, sender_id, content, conn=conn)
            await self.attachments_repo.add_many(message_db.id, attachments, conn=conn)

        message = (await self.build_messages([message_db]))[0]

        await self.notify_man.send_new_message(message)
        await self.notify_man.send_conversation_updated(
            chat_room_id,
            make_snippet(content, bool(attachments), "Empty message"),
            message_db.created_at
        )

        return Result(success=True, data=message, message="Message sent successfully")

    async def reply_to_message(self, sender_id: int, parent_message_id: int, content: str | None) -> Result[Message]:
        """Reply to message in the parent's chat room."""

        content = (content or "").strip()
        if not content:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Reply content cannot be empty")])

        parent_db = await self.messages_repo.get_by_id(parent_message_id)
        if not parent_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Original message not found")])

        membership = await self.members_repo.get_membership(parent_db.chat_room_id, sender_id)
        if not membership:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You are not a member of this chat room")])

        message_db = await self.messages_repo.create(
            parent_db.chat_room_id,
            sender_id,
            content,
            parent_message_id=parent_db.id
        )

        message = (await self.build_messages([message_db]))[0]

        await self.notify_man.send_new_message(message)
        await self.notify_man.send_conversation_updated(
            message_db.chat_room_id,
            make_snippet(content, False, "Empty message"),
            message_db.created_at
        )

        return Result(success=True, data=message, message="Reply sent successfully")

    async def edit_message(self, editor_id: int, message_id: int, new_content: str | None) -> Result[Message]:
        """Replace content of own message."""

        new_content = (new_content or "").strip()
        if not new_content:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Message content cannot be empty")])

        message_db = await self.messages_repo.get_by_id(message_id)
        if not message_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Message not found")])

        if message_db.sender_id != editor_id:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You can only edit your own messages")])

        updated_db = await self.messages_repo.update_content(message_id, new_content)
        if not updated_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Message not found")])

        message = (await self.build_messages([updated_db]))[0]

        await self.notify_man.send_message_edited(message)

        return Result(success=True, data=message, message="Message updated successfully")

    async def delete_message(self, actor_id: int, message_id: int) -> Result[None]:
        """Delete message as its sender or as a room OWNER/MODERATOR."""

        message_db = await self.messages_repo.get_by_id(message_id)
        if not message_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Message not found")])

        if message_db.sender_id != actor_id:
            membership = await self.members_repo.get_membership(message_db.chat_room_id, actor_id)

            if not membership or membership.role not in MANAGING_ROLES:
                return Result(success=False, errors=[
                    (ErrorCode.FORBIDDEN, "You do not have permission to delete this message")
                ])

        # Files go first; a failed removal only leaves an orphaned object
        for attachment_db in await self.attachments_repo.get_by_message(message_id):
            if not await self.files_repo.delete(attachment_db.key):
                self.logger.warning(f"Attachment file {attachment_db.key} of message {message_id} was not deleted")

        if not await self.messages_repo.delete(message_id):
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Message not found")])

        await self.notify_man.send_message_deleted(message_db.chat_room_id, message_id, actor_id)

        return Result(success=True, message="Message deleted successfully")

    async def get_messages(
        self,
        chat_room_id: int,
        requester_id: int,
        page_size: int | None = None,
        cursor: int | None = None,
        page: int = 1
    ) -> Result[MessagesPage]:
        """Get one page of chat room history, oldest first."""

        if page_size is None:
            page_size = settings.messages_page_size

        if page_size < 1 or page < 1:
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "Invalid pagination parameters")])

        membership = await self.members_repo.get_membership(chat_room_id, requester_id)
        if not membership:
            return Result(success=False, errors=[(ErrorCode.FORBIDDEN, "You are not a member of this chat room")])

        room_db = await self.rooms_repo.get_by_id(chat_room_id)
        if not room_db:
            return Result(success=False, errors=[(ErrorCode.NOT_FOUND, "Chat room not found")])

        messages, pagination = await self.get_messages_page(chat_room_id, page_size, cursor, page)

        return Result(success=True, data=MessagesPage(
            chat_room=await self._room_with_members(room_db),
            messages=messages,
            pagination=pagination
        ))

    async def get_messages_page(
        self,
        chat_room_id: int,
        page_size: int,
        cursor: int | None = None,
        page: int = 1
    ) -> tuple[list[Message], MessagesPagination]:
        """Load messages strictly older than cursor, returned oldest first."""

        batch = await self.messages_repo.get_page(chat_room_id, page_size, before_id=cursor)
        total = await self.messages_repo.count_by_room(chat_room_id)

        # batch is newest first, so its last element is the oldest one
        next_cursor = batch[-1].id if batch else None
        has_more = len(batch) == page_size

        messages = await self.build_messages(list(reversed(batch)))

        return messages, MessagesPagination(
            total_messages=total,
            current_page=page,
            page_size=page_size,
            next_cursor=next_cursor,
            has_more=has_more
        )

    async def build_messages(self, messages_db: list[MessageDB]) -> list[Message]:
        """Attach senders, attachments and a one-level parent summary to messages."""

        parent_ids = [m.parent_message_id for m in messages_db if m.parent_message_id is not None]
        parents = await self.messages_repo.get_by_ids(parent_ids)

        message_ids = [m.id for m in messages_db] + list(parents)
        attachments = await self.attachments_repo.get_by_messages(message_ids)

        sender_ids = [m.sender_id for m in messages_db] + [p.sender_id for p in parents.values()]
        accounts = await self.accounts_repo.get_by_ids(sender_ids)

        def attachments_of(message_id: int):
            return [self.attachments_repo.to_api_model(a) for a in attachments.get(message_id, [])]

        messages = []
        for message_db in messages_db:
            parent_db = parents.get(message_db.parent_message_id) if message_db.parent_message_id else None

            parent = None
            if parent_db:
                parent = ParentMessage(
                    id=parent_db.id,
                    content=parent_db.content,
                    sender=self.accounts_repo.to_summary(accounts.get(parent_db.sender_id)),
                    attachments=attachments_of(parent_db.id),
                    is_edited=parent_db.is_edited,
                    parent_message_id=parent_db.parent_message_id,
                    created_at=parent_db.created_at,
                    updated_at=parent_db.updated_at
                )

            messages.append(Message(
                id=message_db.id,
                chat_room_id=message_db.chat_room_id,
                content=message_db.content,
                sender=self.accounts_repo.to_summary(accounts.get(message_db.sender_id)),
                is_edited=message_db.is_edited,
                parent_message_id=message_db.parent_message_id,
                parent_message=parent,
                attachments=attachments_of(message_db.id),
                created_at=message_db.created_at,
                updated_at=message_db.updated_at
            ))

        return messages

    async def _room_with_members(self, room_db: ChatRoomDB) -> ChatRoom:
        members_db = await self.members_repo.get_members_by_room(room_db.id)
        accounts = await self.accounts_repo.get_by_ids([m.user_id for m in members_db])

        members = [
            self.members_repo.to_api_model(m, self.accounts_repo.to_summary(accounts.get(m.user_id)))
            for m in members_db
        ]

        return self.rooms_repo.to_api_model(room_db, members)
