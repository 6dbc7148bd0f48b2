"""Chat repositories for rooms, members and join requests."""

from dataclasses import dataclass
from datetime import datetime

from chat_serv.common.base_repos import BaseDBRepository
from chat_serv.models.api_models import ChatMember, ChatRoom, JoinRequest, UserSummary
from chat_serv.models.db_models import (
    ChatRole,
    ChatRoomDB,
    ChatRoomUserDB,
    JoinRequestDB,
    JoinRequestStatus
)


ROOM_UPDATABLE_FIELDS = ("name", "description", "state", "city", "is_group", "is_invite_only", "image")


@dataclass
class DirectoryEntry:
    """Room as seen from the directory, annotated for one user."""

    room: ChatRoomDB

    member_count: int
    is_member: bool
    join_request_status: JoinRequestStatus | None


class ChatRoomsRepository(BaseDBRepository):
    """Repository for chat room operations."""

    repository_name = "chat-rooms"
    table_name = "chat_rooms"

    async def get_by_id(self, chat_room_id: int, conn=None) -> ChatRoomDB | None:
        """Get chat room by ID."""

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE id = $1",
            chat_room_id,
            conn=conn
        )

        return ChatRoomDB(**row) if row else None

    async def get_for_update(self, chat_room_id: int, conn) -> ChatRoomDB | None:
        """Get chat room and lock its row until the transaction of conn ends.

        Membership changes of one room take this lock first, so owner checks
        and member counts stay valid until commit.
        """

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE id = $1 FOR UPDATE",
            chat_room_id,
            conn=conn
        )

        return ChatRoomDB(**row) if row else None

    async def get_by_ids(self, chat_room_ids: list[int]) -> dict[int, ChatRoomDB]:
        """Get chat rooms keyed by ID."""

        if not chat_room_ids:
            return {}

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE id = ANY($1::int[])",
            list(set(chat_room_ids))
        )

        return {row["id"]: ChatRoomDB(**row) for row in rows}

    async def get_group_by_name(self, name: str) -> ChatRoomDB | None:
        """Get group chat room by its unique name."""

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE name = $1 AND is_group",
            name
        )

        return ChatRoomDB(**row) if row else None

    async def create(
        self,
        name: str,
        description: str | None,
        state: str | None,
        city: str | None,
        is_group: bool,
        is_invite_only: bool,
        image: str | None,
        conn=None
    ) -> ChatRoomDB:
        """Create new chat room and return it."""

        row = await self.fetchrow(
            f"""INSERT INTO {self._get_table_name()}
                (name, description, state, city, is_group, is_invite_only, image)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *""",
            name, description, state, city, is_group, is_invite_only, image,
            conn=conn
        )

        return ChatRoomDB(**row)

    async def update(self, chat_room_id: int, fields: dict, conn=None) -> ChatRoomDB | None:
        """Update given chat room fields, always bumping updated_at."""

        updates = ["updated_at = now()"]
        params = []
        param_idx = 1

        for name in ROOM_UPDATABLE_FIELDS:
            if name not in fields:
                continue

            updates.append(f"{name} = ${param_idx}")
            params.append(fields[name])
            param_idx += 1

        params.append(chat_room_id)
        row = await self.fetchrow(
            f"UPDATE {self._get_table_name()} SET {', '.join(updates)} WHERE id = ${param_idx} RETURNING *",
            *params,
            conn=conn
        )

        return ChatRoomDB(**row) if row else None

    async def count_by_user(self, user_id: int) -> int:
        """Count chat rooms where user is member."""

        return await self.fetchval(
            f"""SELECT COUNT(*) FROM {self._get_table_name()} c
                JOIN {self._table('chat_room_users')} cm ON c.id = cm.chat_room_id
                WHERE cm.user_id = $1""",
            user_id
        )

    async def get_page_by_user(self, user_id: int, limit: int, offset: int) -> list[ChatRoomDB]:
        """Get one page of chat rooms where user is member."""

        rows = await self.fetch(
            f"""SELECT c.* FROM {self._get_table_name()} c
                JOIN {self._table('chat_room_users')} cm ON c.id = cm.chat_room_id
                WHERE cm.user_id = $1
                ORDER BY c.created_at DESC, c.id DESC
                LIMIT $2 OFFSET $3""",
            user_id, limit, offset
        )

        return [ChatRoomDB(**row) for row in rows]

    async def count_all(self) -> int:
        """Count every chat room."""

        return await self.fetchval(f"SELECT COUNT(*) FROM {self._get_table_name()}")

    async def get_directory_page(self, user_id: int, limit: int, offset: int) -> list[DirectoryEntry]:
        """Get rooms ordered by member count, annotated for the given user."""

        members_table = self._table("chat_room_users")
        requests_table = self._table("join_requests")

        rows = await self.fetch(
            f"""SELECT c.*,
                    (SELECT COUNT(*) FROM {members_table} m WHERE m.chat_room_id = c.id) AS member_count,
                    EXISTS(
                        SELECT 1 FROM {members_table} m WHERE m.chat_room_id = c.id AND m.user_id = $1
                    ) AS is_member,
                    (SELECT j.status FROM {requests_table} j
                        WHERE j.chat_room_id = c.id AND j.user_id = $1) AS join_request_status
                FROM {self._get_table_name()} c
                ORDER BY member_count DESC, c.id ASC
                LIMIT $2 OFFSET $3""",
            user_id, limit, offset
        )

        entries = []
        for row in rows:
            row = dict(row)
            member_count = row.pop("member_count")
            is_member = row.pop("is_member")
            status = row.pop("join_request_status")

            entries.append(DirectoryEntry(
                room=ChatRoomDB(**row),
                member_count=member_count,
                is_member=is_member,
                join_request_status=JoinRequestStatus(status) if status else None
            ))

        return entries

    @staticmethod
    def to_api_model(chat_room_db: ChatRoomDB, members: list[ChatMember] | None = None) -> ChatRoom:
        """Convert DB model to API model."""

        return ChatRoom(**chat_room_db.model_dump(), users=members or [])


class ChatMembersRepository(BaseDBRepository):
    """Repository for chat room membership operations."""

    repository_name = "chat-members"
    table_name = "chat_room_users"

    async def add_member(
        self,
        chat_room_id: int,
        user_id: int,
        role: ChatRole = ChatRole.MEMBER,
        conn=None
    ) -> ChatRoomUserDB:
        """Add member to chat room and return the membership."""

        row = await self.fetchrow(
            f"""INSERT INTO {self._get_table_name()} (chat_room_id, user_id, role)
                VALUES ($1, $2, $3)
                RETURNING *""",
            chat_room_id, user_id, role.value,
            conn=conn
        )

        return ChatRoomUserDB(**row)

    async def get_membership(self, chat_room_id: int, user_id: int, conn=None) -> ChatRoomUserDB | None:
        """Get membership of user in chat room."""

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE chat_room_id = $1 AND user_id = $2",
            chat_room_id, user_id,
            conn=conn
        )

        return ChatRoomUserDB(**row) if row else None

    async def get_members_by_room(self, chat_room_id: int) -> list[ChatRoomUserDB]:
        """Get all members of chat room."""

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE chat_room_id = $1 ORDER BY joined_at, id",
            chat_room_id
        )

        return [ChatRoomUserDB(**row) for row in rows]

    async def get_members_by_rooms(self, chat_room_ids: list[int]) -> dict[int, list[ChatRoomUserDB]]:
        """Get members of several chat rooms keyed by room ID."""

        members: dict[int, list[ChatRoomUserDB]] = {room_id: [] for room_id in chat_room_ids}
        if not chat_room_ids:
            return members

        rows = await self.fetch(
            f"""SELECT * FROM {self._get_table_name()}
                WHERE chat_room_id = ANY($1::int[])
                ORDER BY joined_at, id""",
            chat_room_ids
        )

        for row in rows:
            members[row["chat_room_id"]].append(ChatRoomUserDB(**row))

        return members

    async def get_memberships_by_user(self, user_id: int) -> list[ChatRoomUserDB]:
        """Get every membership of user."""

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE user_id = $1 ORDER BY chat_room_id",
            user_id
        )

        return [ChatRoomUserDB(**row) for row in rows]

    async def remove_member(self, chat_room_id: int, user_id: int, conn=None) -> bool:
        """Remove member from chat room. Returns False if no row was deleted."""

        result = await self.execute(
            f"DELETE FROM {self._get_table_name()} WHERE chat_room_id = $1 AND user_id = $2",
            chat_room_id, user_id,
            conn=conn
        )

        return self._affected_rows(result) > 0

    async def set_role(
        self,
        chat_room_id: int,
        user_id: int,
        role: ChatRole,
        expected_role: ChatRole | None = None,
        conn=None
    ) -> bool:
        """Set member role, optionally only if the current role matches."""

        result = await self.execute(
            f"""UPDATE {self._get_table_name()} SET role = $3
                WHERE chat_room_id = $1 AND user_id = $2
                  AND ($4::text IS NULL OR role = $4::text)""",
            chat_room_id, user_id, role.value,
            expected_role.value if expected_role else None,
            conn=conn
        )

        return self._affected_rows(result) > 0

    async def count_members(self, chat_room_id: int, conn=None) -> int:
        """Count members in chat room."""

        return await self.fetchval(
            f"SELECT COUNT(*) FROM {self._get_table_name()} WHERE chat_room_id = $1",
            chat_room_id,
            conn=conn
        )

    async def update_last_read(self, chat_room_id: int, user_id: int) -> datetime | None:
        """Set last_read_at of a membership to now. Returns the stored time."""

        return await self.fetchval(
            f"""UPDATE {self._get_table_name()} SET last_read_at = now()
                WHERE chat_room_id = $1 AND user_id = $2
                RETURNING last_read_at""",
            chat_room_id, user_id
        )

    @staticmethod
    def to_api_model(member_db: ChatRoomUserDB, user: UserSummary | None = None) -> ChatMember:
        """Convert DB model to API model."""

        return ChatMember(
            user_id=member_db.user_id,
            role=member_db.role,
            last_read_at=member_db.last_read_at,
            user=user
        )


class JoinRequestsRepository(BaseDBRepository):
    """Repository for join request operations."""

    repository_name = "join-requests"
    table_name = "join_requests"

    async def get(self, chat_room_id: int, user_id: int, conn=None) -> JoinRequestDB | None:
        """Get the join request of user for chat room."""

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE chat_room_id = $1 AND user_id = $2",
            chat_room_id, user_id,
            conn=conn
        )

        return JoinRequestDB(**row) if row else None

    async def create(self, chat_room_id: int, user_id: int, conn=None) -> JoinRequestDB:
        """Create pending join request."""

        row = await self.fetchrow(
            f"""INSERT INTO {self._get_table_name()} (chat_room_id, user_id, status)
                VALUES ($1, $2, $3)
                RETURNING *""",
            chat_room_id, user_id, JoinRequestStatus.PENDING.value,
            conn=conn
        )

        return JoinRequestDB(**row)

    async def set_status(
        self,
        chat_room_id: int,
        user_id: int,
        status: JoinRequestStatus,
        expected_status: JoinRequestStatus = JoinRequestStatus.PENDING,
        conn=None
    ) -> bool:
        """Move request to a new status if it is still in the expected one."""

        result = await self.execute(
            f"""UPDATE {self._get_table_name()} SET status = $3
                WHERE chat_room_id = $1 AND user_id = $2 AND status = $4""",
            chat_room_id, user_id, status.value, expected_status.value,
            conn=conn
        )

        return self._affected_rows(result) > 0

    async def reopen(
        self,
        chat_room_id: int,
        user_id: int,
        expected_status: JoinRequestStatus,
        conn=None
    ) -> JoinRequestDB | None:
        """Turn a handled request back into a fresh pending one."""

        row = await self.fetchrow(
            f"""UPDATE {self._get_table_name()} SET status = $3, requested_at = now()
                WHERE chat_room_id = $1 AND user_id = $2 AND status = $4
                RETURNING *""",
            chat_room_id, user_id,
            JoinRequestStatus.PENDING.value, expected_status.value,
            conn=conn
        )

        return JoinRequestDB(**row) if row else None

    async def get_pending_by_room(self, chat_room_id: int) -> list[JoinRequestDB]:
        """Get pending requests of chat room, oldest first."""

        rows = await self.fetch(
            f"""SELECT * FROM {self._get_table_name()}
                WHERE chat_room_id = $1 AND status = $2
                ORDER BY requested_at ASC, id ASC""",
            chat_room_id, JoinRequestStatus.PENDING.value
        )

        return [JoinRequestDB(**row) for row in rows]

    @staticmethod
    def to_api_model(join_request_db: JoinRequestDB, user: UserSummary | None = None) -> JoinRequest:
        """Convert DB model to API model."""

        return JoinRequest(**join_request_db.model_dump(), user=user)
