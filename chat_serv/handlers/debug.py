from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application

from fastapi import APIRouter

from chat_serv.middleware import logging_middleware
from chat_serv.handlers.responses import envelope
from chat_serv.version import API_VERSION, VERSION


def register_debug_handlers(app: "Application"):
    """Register debug handlers."""

    router = APIRouter(tags=["debug"])

    @router.get("/health")
    @logging_middleware.log_transaction_debug
    async def health():
        return envelope(200, {"status": "ok", "version": VERSION, "apiVersion": API_VERSION}, "Server is running")

    app.api.include_router(router)
