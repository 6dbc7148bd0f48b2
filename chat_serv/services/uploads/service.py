"""Upload service for presigned file uploads."""

import logging

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.common.s3 import S3API

from chat_serv.services.uploads.repos import ChatFilesRepository
from chat_serv.models.api_models import ErrorCode, Result, UploadTicket

from chat_serv.config import settings


class UploadService:
    """Service for direct-to-store uploads."""

    def __init__(self, s3: "S3API"):
        self.logger = logging.getLogger("upload-service")
        self.logger.setLevel(settings.logging_level)

        self.files_repo = ChatFilesRepository(s3)

    async def generate_upload_url(
        self,
        file_type: str | None,
        folder: str | None = None,
        file_name: str = "image.jpg"
    ) -> Result[UploadTicket]:
        """Reserve a file key and sign an upload URL for it.

        A missing folder falls back to the default upload folder, an explicitly
        empty one is rejected.
        """

        if not file_type or not file_type.strip():
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "fileType is required")])

        if folder is None:
            folder = settings.s3_default_upload_folder

        if not folder.strip("/ "):
            return Result(success=False, errors=[(ErrorCode.VALIDATION_ERROR, "folder cannot be empty")])

        key, upload_url = await self.files_repo.put(folder.strip(), file_name or "image.jpg", file_type.strip())

        self.logger.debug(f"Upload URL generated for {key}")

        return Result(success=True, data=UploadTicket(upload_url=upload_url, file_key=key))
