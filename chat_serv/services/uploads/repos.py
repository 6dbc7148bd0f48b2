"""File-object store repository for chat files."""

import secrets
import time

from pathlib import PurePosixPath

from chat_serv.common.base_repos import BaseS3Repository
from chat_serv.config import settings


class ChatFilesRepository(BaseS3Repository):
    """Chat room images and message attachments in S3."""

    repository_name = "chat-files"
    resources_dir = ""

    @staticmethod
    def generate_key(folder: str, filename: str) -> str:
        """
        Generate object key: {folder}/{random}_{epoch_ms}{ext}

        Example: uploads/chatrooms/3f9a0c1b2d4e_1718000000000.jpg
        """

        ext = PurePosixPath(filename).suffix
        random_part = secrets.token_hex(6)
        timestamp = int(time.time() * 1000)

        return f"{folder.strip('/')}/{random_part}_{timestamp}{ext}"

    async def put(self, folder: str, filename: str, file_type: str) -> tuple[str, str]:
        """Reserve a key and return it together with a presigned upload URL."""

        key = self.generate_key(folder, filename)
        upload_url = await self.s3.generate_upload_url(
            self._get_full_key(key),
            content_type=file_type,
            expires_in=settings.s3_upload_url_expires
        )

        return key, upload_url

    async def delete(self, key: str) -> bool:
        """Delete file from S3."""

        return await self.s3.delete_file(self._get_full_key(key))
