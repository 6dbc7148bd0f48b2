"""In-memory stand-ins for the PostgreSQL and S3 repositories."""

import asyncio
import copy

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from chat_serv.common.errors import ConflictError
from chat_serv.services.chats.repos import (
    ROOM_UPDATABLE_FIELDS,
    ChatMembersRepository,
    ChatRoomsRepository,
    DirectoryEntry,
    JoinRequestsRepository
)
from chat_serv.services.messages.repos import AttachmentsRepository, MessagesRepository
from chat_serv.services.uploads.repos import ChatFilesRepository
from chat_serv.services.users.repos import AccountsRepository
from chat_serv.models.db_models import (
    AccountDB,
    AttachmentDB,
    ChatRole,
    ChatRoomDB,
    ChatRoomUserDB,
    JoinRequestDB,
    JoinRequestStatus,
    MessageDB
)


class FakeStore:
    """Tables as dicts plus a strictly increasing clock."""

    def __init__(self):
        self.users: dict[int, AccountDB] = {}
        self.rooms: dict[int, ChatRoomDB] = {}
        self.members: dict[tuple[int, int], ChatRoomUserDB] = {}
        self.requests: dict[tuple[int, int], JoinRequestDB] = {}
        self.messages: dict[int, MessageDB] = {}
        self.attachments: dict[int, AttachmentDB] = {}

        self.last_id = 0
        self.clock = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def next_id(self) -> int:
        self.last_id += 1
        return self.last_id

    def now(self) -> datetime:
        self.clock += timedelta(seconds=1)
        return self.clock

    def add_user(self, user_id: int, name: str | None = None) -> AccountDB:
        account = AccountDB(id=user_id, name=name or f"user{user_id}", email=f"user{user_id}@example.com")
        self.users[user_id] = account
        return account


class FakeConnection:
    """Connection of one transaction, holding the row locks it took."""

    def __init__(self):
        self.locks: list[asyncio.Lock] = []


class FakeDB:
    """Transactions snapshot the store and restore it on error."""

    def __init__(self, store: FakeStore):
        self.store = store

    @asynccontextmanager
    async def transaction(self):
        snapshot = copy.deepcopy(self.store.__dict__)
        conn = FakeConnection()

        try:
            yield conn

        except BaseException:
            self.store.__dict__.clear()
            self.store.__dict__.update(snapshot)
            raise

        finally:
            for lock in conn.locks:
                lock.release()


class FakeAccountsRepository(AccountsRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store

    async def get_by_id(self, account_id):
        return self.store.users.get(account_id)

    async def get_by_ids(self, account_ids):
        return {i: self.store.users[i] for i in set(account_ids) if i in self.store.users}


class FakeChatRoomsRepository(ChatRoomsRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store
        self.row_locks: dict[int, asyncio.Lock] = {}

    def _check_name(self, name: str, is_group: bool, skip_id: int | None = None) -> None:
        if not is_group:
            return

        for room in self.store.rooms.values():
            if room.is_group and room.name == name and room.id != skip_id:
                raise ConflictError("chat_rooms_group_name_key")

    async def get_by_id(self, chat_room_id, conn=None):
        return self.store.rooms.get(chat_room_id)

    async def get_for_update(self, chat_room_id, conn):
        if chat_room_id not in self.store.rooms:
            return None

        lock = self.row_locks.setdefault(chat_room_id, asyncio.Lock())
        await lock.acquire()
        conn.locks.append(lock)

        return self.store.rooms.get(chat_room_id)

    async def get_by_ids(self, chat_room_ids):
        return {i: self.store.rooms[i] for i in set(chat_room_ids) if i in self.store.rooms}

    async def get_group_by_name(self, name):
        return next((r for r in self.store.rooms.values() if r.is_group and r.name == name), None)

    async def create(self, name, description, state, city, is_group, is_invite_only, image, conn=None):
        self._check_name(name, is_group)

        now = self.store.now()
        room = ChatRoomDB(
            id=self.store.next_id(),
            name=name,
            description=description,
            state=state,
            city=city,
            is_group=is_group,
            is_invite_only=is_invite_only,
            image=image,
            created_at=now,
            updated_at=now
        )
        self.store.rooms[room.id] = room
        return room

    async def update(self, chat_room_id, fields, conn=None):
        room = self.store.rooms.get(chat_room_id)
        if not room:
            return None

        changes = {k: v for k, v in fields.items() if k in ROOM_UPDATABLE_FIELDS}
        updated = room.model_copy(update={**changes, "updated_at": self.store.now()})
        self._check_name(updated.name, updated.is_group, skip_id=chat_room_id)

        self.store.rooms[chat_room_id] = updated
        return updated

    def _user_rooms(self, user_id):
        room_ids = {room_id for room_id, member_id in self.store.members if member_id == user_id}
        rooms = [self.store.rooms[i] for i in room_ids if i in self.store.rooms]
        return sorted(rooms, key=lambda r: (r.created_at, r.id), reverse=True)

    async def count_by_user(self, user_id):
        return len(self._user_rooms(user_id))

    async def get_page_by_user(self, user_id, limit, offset):
        return self._user_rooms(user_id)[offset:offset + limit]

    async def count_all(self):
        return len(self.store.rooms)

    async def get_directory_page(self, user_id, limit, offset):
        entries = []
        for room in self.store.rooms.values():
            request = self.store.requests.get((room.id, user_id))
            entries.append(DirectoryEntry(
                room=room,
                member_count=sum(1 for room_id, _ in self.store.members if room_id == room.id),
                is_member=(room.id, user_id) in self.store.members,
                join_request_status=request.status if request else None
            ))

        entries.sort(key=lambda e: (-e.member_count, e.room.id))
        return entries[offset:offset + limit]


class FakeChatMembersRepository(ChatMembersRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store

    async def add_member(self, chat_room_id, user_id, role=ChatRole.MEMBER, conn=None):
        if (chat_room_id, user_id) in self.store.members:
            raise ConflictError("chat_room_users_user_id_chat_room_id_key")

        member = ChatRoomUserDB(
            id=self.store.next_id(),
            user_id=user_id,
            chat_room_id=chat_room_id,
            role=role,
            joined_at=self.store.now()
        )
        self.store.members[(chat_room_id, user_id)] = member
        return member

    async def get_membership(self, chat_room_id, user_id, conn=None):
        return self.store.members.get((chat_room_id, user_id))

    async def get_members_by_room(self, chat_room_id):
        members = [m for (room_id, _), m in self.store.members.items() if room_id == chat_room_id]
        return sorted(members, key=lambda m: (m.joined_at, m.id))

    async def get_members_by_rooms(self, chat_room_ids):
        return {room_id: await self.get_members_by_room(room_id) for room_id in chat_room_ids}

    async def get_memberships_by_user(self, user_id):
        members = [m for (_, member_id), m in self.store.members.items() if member_id == user_id]
        return sorted(members, key=lambda m: m.chat_room_id)

    async def remove_member(self, chat_room_id, user_id, conn=None):
        return self.store.members.pop((chat_room_id, user_id), None) is not None

    async def set_role(self, chat_room_id, user_id, role, expected_role=None, conn=None):
        member = self.store.members.get((chat_room_id, user_id))
        if not member or (expected_role is not None and member.role != expected_role):
            return False

        self.store.members[(chat_room_id, user_id)] = member.model_copy(update={"role": role})
        return True

    async def count_members(self, chat_room_id, conn=None):
        return sum(1 for room_id, _ in self.store.members if room_id == chat_room_id)

    async def update_last_read(self, chat_room_id, user_id):
        member = self.store.members.get((chat_room_id, user_id))
        if not member:
            return None

        read_at = self.store.now()
        self.store.members[(chat_room_id, user_id)] = member.model_copy(update={"last_read_at": read_at})
        return read_at


class FakeJoinRequestsRepository(JoinRequestsRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store

    async def get(self, chat_room_id, user_id, conn=None):
        return self.store.requests.get((chat_room_id, user_id))

    async def create(self, chat_room_id, user_id, conn=None):
        if (chat_room_id, user_id) in self.store.requests:
            raise ConflictError("join_requests_user_id_chat_room_id_key")

        request = JoinRequestDB(
            id=self.store.next_id(),
            user_id=user_id,
            chat_room_id=chat_room_id,
            status=JoinRequestStatus.PENDING,
            requested_at=self.store.now()
        )
        self.store.requests[(chat_room_id, user_id)] = request
        return request

    async def set_status(self, chat_room_id, user_id, status, expected_status=JoinRequestStatus.PENDING, conn=None):
        request = self.store.requests.get((chat_room_id, user_id))
        if not request or request.status != expected_status:
            return False

        self.store.requests[(chat_room_id, user_id)] = request.model_copy(update={"status": status})
        return True

    async def reopen(self, chat_room_id, user_id, expected_status, conn=None):
        request = self.store.requests.get((chat_room_id, user_id))
        if not request or request.status != expected_status:
            return None

        reopened = request.model_copy(update={
            "status": JoinRequestStatus.PENDING,
            "requested_at": self.store.now()
        })
        self.store.requests[(chat_room_id, user_id)] = reopened
        return reopened

    async def get_pending_by_room(self, chat_room_id):
        pending = [
            r for (room_id, _), r in self.store.requests.items()
            if room_id == chat_room_id and r.status == JoinRequestStatus.PENDING
        ]
        return sorted(pending, key=lambda r: (r.requested_at, r.id))


class FakeMessagesRepository(MessagesRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store

    async def get_by_id(self, message_id, conn=None):
        return self.store.messages.get(message_id)

    async def get_by_ids(self, message_ids):
        return {i: self.store.messages[i] for i in set(message_ids) if i in self.store.messages}

    async def create(self, chat_room_id, sender_id, content, parent_message_id=None, conn=None):
        now = self.store.now()
        message = MessageDB(
            id=self.store.next_id(),
            chat_room_id=chat_room_id,
            sender_id=sender_id,
            content=content,
            parent_message_id=parent_message_id,
            is_edited=False,
            created_at=now,
            updated_at=now
        )
        self.store.messages[message.id] = message
        return message

    async def update_content(self, message_id, content, conn=None):
        message = self.store.messages.get(message_id)
        if not message:
            return None

        updated = message.model_copy(update={
            "content": content,
            "is_edited": True,
            "updated_at": self.store.now()
        })
        self.store.messages[message_id] = updated
        return updated

    async def delete(self, message_id, conn=None):
        if self.store.messages.pop(message_id, None) is None:
            return False

        for attachment_id in [a.id for a in self.store.attachments.values() if a.message_id == message_id]:
            del self.store.attachments[attachment_id]

        return True

    def _room_messages(self, chat_room_id):
        messages = [m for m in self.store.messages.values() if m.chat_room_id == chat_room_id]
        return sorted(messages, key=lambda m: (m.created_at, m.id), reverse=True)

    async def get_page(self, chat_room_id, limit, before_id=None):
        messages = self._room_messages(chat_room_id)

        if before_id is not None:
            cursor = self.store.messages.get(before_id)
            if not cursor or cursor.chat_room_id != chat_room_id:
                return []

            messages = [m for m in messages if (m.created_at, m.id) < (cursor.created_at, cursor.id)]

        return messages[:limit]

    async def count_by_room(self, chat_room_id):
        return len(self._room_messages(chat_room_id))

    async def count_unread(self, chat_room_id, user_id, since):
        return sum(
            1 for m in self._room_messages(chat_room_id)
            if m.sender_id != user_id and (since is None or m.created_at > since)
        )

    async def get_last_by_rooms(self, chat_room_ids):
        last = {}
        for room_id in chat_room_ids:
            messages = self._room_messages(room_id)
            if messages:
                last[room_id] = messages[0]
        return last


class FakeAttachmentsRepository(AttachmentsRepository):

    def __init__(self, store: FakeStore):
        super().__init__(db=None)
        self.store = store

    async def add_many(self, message_id, attachments, conn=None):
        added = []
        for key, file_type in attachments:
            attachment = AttachmentDB(id=self.store.next_id(), message_id=message_id, key=key, file_type=file_type)
            self.store.attachments[attachment.id] = attachment
            added.append(attachment)
        return added

    async def get_by_message(self, message_id, conn=None):
        return sorted(
            (a for a in self.store.attachments.values() if a.message_id == message_id),
            key=lambda a: a.id
        )

    async def get_by_messages(self, message_ids):
        return {message_id: await self.get_by_message(message_id) for message_id in message_ids}


class FakeFilesRepository(ChatFilesRepository):
    """File store recording deletions, optionally failing them."""

    def __init__(self, fail_deletes: bool = False):
        super().__init__(s3=None)

        self.fail_deletes = fail_deletes
        self.deleted: list[str] = []
        self.put_calls: list[tuple[str, str, str]] = []

    async def put(self, folder, filename, file_type):
        self.put_calls.append((folder, filename, file_type))

        key = self.generate_key(folder, filename)
        return key, f"https://files.example.com/{key}?signature=test"

    async def delete(self, key):
        if self.fail_deletes:
            return False

        self.deleted.append(key)
        return True


def install_fakes(store: FakeStore, files: FakeFilesRepository, *services) -> None:
    """Swap every repository attribute of services for its in-memory version."""

    fakes = {
        "rooms_repo": FakeChatRoomsRepository(store),
        "members_repo": FakeChatMembersRepository(store),
        "requests_repo": FakeJoinRequestsRepository(store),
        "messages_repo": FakeMessagesRepository(store),
        "attachments_repo": FakeAttachmentsRepository(store),
        "accounts_repo": FakeAccountsRepository(store),
        "files_repo": files,
    }

    for service in services:
        if hasattr(service, "db"):
            service.db = FakeDB(store)

        for name, fake in fakes.items():
            if hasattr(service, name):
                setattr(service, name, fake)
