"""
Main application class with lifecycle management.
"""

import logging

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_serv.middleware import AuthMiddleware, setup_logging

from chat_serv.common.db import DatabaseAPI
from chat_serv.common.s3 import S3API
from chat_serv.common.notify_manager import NotifyManager

from chat_serv.services.chats import ChatService
from chat_serv.services.messages import MessageService
from chat_serv.services.uploads import UploadService

from chat_serv.handlers import register_handlers
from chat_serv.handlers.responses import envelope

from chat_serv.config import settings
from chat_serv.version import VERSION


class Application:
    """Main application class."""

    def __init__(self, configure_logging: bool = True):
        """Initialize application components."""

        if configure_logging:
            setup_logging()

        self.logger = logging.getLogger("chat-core")
        self.logger.setLevel(settings.logging_level)

        self.db: DatabaseAPI = DatabaseAPI()
        self.s3: S3API = S3API()

        self.notify_man: NotifyManager = NotifyManager()
        self.auth: AuthMiddleware = AuthMiddleware()

        self.message_service = MessageService(self.db, self.s3, self.notify_man)
        self.chat_service = ChatService(self.db, self.s3, self.notify_man, self.message_service)
        self.upload_service = UploadService(self.s3)

        self.api: Optional[FastAPI] = None

        self.logger.info("Application initialized")

    async def startup(self) -> None:
        """
        Startup routine: connect to database and S3.

        Raises:
            RuntimeError: If critical services fail to start
        """

        self.logger.info("Starting server:")

        await self.db.safely_connect()

        await self.s3.safely_connect()

        self.logger.info("Application startup complete")

    async def shutdown(self) -> None:
        """Shutdown routine: close subscriptions and disconnect from services."""

        self.logger.info("Shutting down application:")

        await self.notify_man.close()
        self.logger.info("Subscriptions closed")

        if self.db.pool:
            await self.db.disconnect()

        if self.s3.session:
            await self.s3.disconnect()
            self.logger.info("S3 disconnected")

        self.logger.info("Application shutdown complete")

    def create_api(self, manage_lifecycle: bool = True) -> FastAPI:
        """
        Create and configure the FastAPI application.

        Args:
            manage_lifecycle: Run startup/shutdown from the ASGI lifespan

        Returns:
            Configured FastAPI instance
        """

        @asynccontextmanager
        async def lifespan(_: FastAPI):
            await self.startup()
            try:
                yield
            finally:
                await self.shutdown()

        self.api = FastAPI(
            title="chat_serv",
            version=VERSION,
            lifespan=lifespan if manage_lifecycle else None
        )

        self.api.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._register_exception_handlers(self.api)

        register_handlers(app=self)

        return self.api

    def _register_exception_handlers(self, api: FastAPI) -> None:
        """Render every error with the common response envelope."""

        @api.exception_handler(RequestValidationError)
        async def validation_error_handler(request: Request, exc: RequestValidationError):
            errors = exc.errors()
            message = "Invalid request"

            if errors:
                location = ".".join(str(part) for part in errors[0].get("loc", ()))
                message = f"Invalid request: {location} {errors[0].get('msg', '')}".strip()

            return envelope(status.HTTP_400_BAD_REQUEST, None, message)

        @api.exception_handler(StarletteHTTPException)
        async def http_error_handler(request: Request, exc: StarletteHTTPException):
            return envelope(exc.status_code, None, str(exc.detail))

        @api.exception_handler(Exception)
        async def unexpected_error_handler(request: Request, exc: Exception):
            self.logger.error(
                f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}",
                exc_info=settings.showing_tracebacks
            )

            return envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, None, "Internal server error")
