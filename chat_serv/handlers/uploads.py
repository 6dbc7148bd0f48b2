"""Upload handlers."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application

from fastapi import APIRouter, Depends

from chat_serv.middleware import logging_middleware
from chat_serv.models.request_models import UploadUrlBody
from chat_serv.handlers.responses import make_response


def register_uploads_handlers(app: "Application"):
    """Register uploads handlers."""

    router = APIRouter(prefix="/api/v1/uploads", tags=["uploads"])

    upload_service = app.upload_service
    require_auth = app.auth.require_auth

    @router.post("/generate-upload-url")
    @logging_middleware.log_transaction
    async def generate_upload_url(body: UploadUrlBody, user_id: int = Depends(require_auth)):
        """Sign a direct upload for the client."""

        result = await upload_service.generate_upload_url(
            file_type=body.file_type,
            folder=body.folder,
            file_name=body.file_name
        )

        return make_response(result)

    app.api.include_router(router)
