from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application

from chat_serv.handlers.debug import register_debug_handlers

from chat_serv.handlers.chats import register_chats_handlers
from chat_serv.handlers.messages import register_messages_handlers
from chat_serv.handlers.uploads import register_uploads_handlers

from chat_serv.handlers.realtime import register_realtime_handlers


def register_handlers(app: "Application"):
    """Register all handlers."""

    register_debug_handlers(app=app)

    register_chats_handlers(app=app)
    register_messages_handlers(app=app)
    register_uploads_handlers(app=app)

    register_realtime_handlers(app=app)
