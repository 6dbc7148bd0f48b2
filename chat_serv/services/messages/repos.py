"""Message repositories for messages and attachments."""

from datetime import datetime

from chat_serv.common.base_repos import BaseDBRepository
from chat_serv.models.db_models import MessageDB, AttachmentDB
from chat_serv.models.api_models import Attachment


class MessagesRepository(BaseDBRepository):
    """Repository for message operations."""

    repository_name = "messages"
    table_name = "messages"

    async def get_by_id(self, message_id: int, conn=None) -> MessageDB | None:
        """Get message by ID."""

        row = await self.fetchrow(
            f"SELECT * FROM {self._get_table_name()} WHERE id = $1",
            message_id,
            conn=conn
        )

        return MessageDB(**row) if row else None

    async def get_by_ids(self, message_ids: list[int]) -> dict[int, MessageDB]:
        """Get messages keyed by ID. Missing IDs are simply absent."""

        if not message_ids:
            return {}

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE id = ANY($1::int[])",
            list(set(message_ids))
        )

        return {row["id"]: MessageDB(**row) for row in rows}

    async def create(
        self,
        chat_room_id: int,
        sender_id: int,
        content: str | None,
        parent_message_id: int | None = None,
        conn=None
    ) -> MessageDB:
        """Create new message and return it."""

        row = await self.fetchrow(
            f"""INSERT INTO {self._get_table_name()} (chat_room_id, sender_id, content, parent_message_id)
                VALUES ($1, $2, $3, $4)
                RETURNING *""",
            chat_room_id, sender_id, content, parent_message_id,
            conn=conn
        )

        return MessageDB(**row)

    async def update_content(self, message_id: int, content: str, conn=None) -> MessageDB | None:
        """Replace message content and flag it as edited."""

        row = await self.fetchrow(
            f"""UPDATE {self._get_table_name()}
                SET content = $2, is_edited = true, updated_at = now()
                WHERE id = $1
                RETURNING *""",
            message_id, content,
            conn=conn
        )

        return MessageDB(**row) if row else None

    async def delete(self, message_id: int, conn=None) -> bool:
        """Delete message (CASCADE will delete attachments)."""

        result = await self.execute(
            f"DELETE FROM {self._get_table_name()} WHERE id = $1",
            message_id,
            conn=conn
        )

        return self._affected_rows(result) > 0

    async def get_page(
        self,
        chat_room_id: int,
        limit: int,
        before_id: int | None = None
    ) -> list[MessageDB]:
        """Get messages older than before_id, newest first.

        An unknown before_id yields an empty page.
        """

        if before_id is not None:
            rows = await self.fetch(
                f"""SELECT m.* FROM {self._get_table_name()} m
                    JOIN {self._get_table_name()} c ON c.id = $2 AND c.chat_room_id = m.chat_room_id
                    WHERE m.chat_room_id = $1
                      AND (m.created_at, m.id) < (c.created_at, c.id)
                    ORDER BY m.created_at DESC, m.id DESC
                    LIMIT $3""",
                chat_room_id, before_id, limit
            )
        else:
            rows = await self.fetch(
                f"""SELECT * FROM {self._get_table_name()}
                    WHERE chat_room_id = $1
                    ORDER BY created_at DESC, id DESC
                    LIMIT $2""",
                chat_room_id, limit
            )

        return [MessageDB(**row) for row in rows]

    async def count_by_room(self, chat_room_id: int) -> int:
        """Count messages in chat room."""

        return await self.fetchval(
            f"SELECT COUNT(*) FROM {self._get_table_name()} WHERE chat_room_id = $1",
            chat_room_id
        )

    async def count_unread(self, chat_room_id: int, user_id: int, since: datetime | None) -> int:
        """Count messages from other users created after since (all of them if None)."""

        return await self.fetchval(
            f"""SELECT COUNT(*) FROM {self._get_table_name()}
                WHERE chat_room_id = $1
                  AND sender_id <> $2
                  AND ($3::timestamptz IS NULL OR created_at > $3::timestamptz)""",
            chat_room_id, user_id, since
        )

    async def get_last_by_rooms(self, chat_room_ids: list[int]) -> dict[int, MessageDB]:
        """Get the newest message of each chat room."""

        if not chat_room_ids:
            return {}

        rows = await self.fetch(
            f"""SELECT DISTINCT ON (chat_room_id) * FROM {self._get_table_name()}
                WHERE chat_room_id = ANY($1::int[])
                ORDER BY chat_room_id, created_at DESC, id DESC""",
            chat_room_ids
        )

        return {row["chat_room_id"]: MessageDB(**row) for row in rows}


class AttachmentsRepository(BaseDBRepository):
    """Repository for message attachment operations."""

    repository_name = "attachments"
    table_name = "attachments"

    async def add_many(
        self,
        message_id: int,
        attachments: list[tuple[str, str | None]],
        conn=None
    ) -> list[AttachmentDB]:
        """Add (key, file_type) attachments to message and return them."""

        if not attachments:
            return []

        keys = [key for key, _ in attachments]
        file_types = [file_type for _, file_type in attachments]

        rows = await self.fetch(
            f"""INSERT INTO {self._get_table_name()} (message_id, key, file_type)
                SELECT $1, a.key, a.file_type
                FROM unnest($2::text[], $3::text[]) AS a(key, file_type)
                RETURNING *""",
            message_id, keys, file_types,
            conn=conn
        )

        return [AttachmentDB(**row) for row in rows]

    async def get_by_message(self, message_id: int, conn=None) -> list[AttachmentDB]:
        """Get all attachments of message."""

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE message_id = $1 ORDER BY id",
            message_id,
            conn=conn
        )

        return [AttachmentDB(**row) for row in rows]

    async def get_by_messages(self, message_ids: list[int]) -> dict[int, list[AttachmentDB]]:
        """Get attachments of several messages keyed by message ID."""

        attachments: dict[int, list[AttachmentDB]] = {message_id: [] for message_id in message_ids}
        if not message_ids:
            return attachments

        rows = await self.fetch(
            f"SELECT * FROM {self._get_table_name()} WHERE message_id = ANY($1::int[]) ORDER BY id",
            list(set(message_ids))
        )

        for row in rows:
            attachments.setdefault(row["message_id"], []).append(AttachmentDB(**row))

        return attachments

    @staticmethod
    def to_api_model(attachment_db: AttachmentDB) -> Attachment:
        """Convert DB model to API model."""

        return Attachment(**attachment_db.model_dump())
