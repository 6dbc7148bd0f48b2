"""Realtime websocket handlers."""

import asyncio
import json
import logging

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_serv.app import Application
    from chat_serv.common.notify_manager import Subscriber

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chat_serv.middleware import logging_middleware
from chat_serv.models.request_models import RealtimeCommand

from chat_serv.config import settings


UNAUTHORIZED_CLOSE_CODE = 4401


def register_realtime_handlers(app: "Application"):
    """Register realtime handlers."""

    router = APIRouter(tags=["realtime"])

    logger = logging.getLogger("realtime")
    logger.setLevel(settings.logging_level)

    notify_man = app.notify_man
    chat_service = app.chat_service

    @logging_middleware.log_subscription
    async def chat_events(subscriber: "Subscriber", user_id: int):
        """Events of every room the connection joined."""

        async for event in notify_man.events(subscriber):
            yield event

    async def send_error(websocket: WebSocket, message: str) -> None:
        await websocket.send_json({"event": "error", "data": {"message": message}})

    async def handle_command(websocket: WebSocket, subscriber: "Subscriber", command: RealtimeCommand) -> None:
        if command.type == "ping":
            await websocket.send_json({"event": "pong", "data": {}})
            return

        if command.chat_room_id is None:
            await send_error(websocket, "chatRoomId is required")
            return

        topic = notify_man.chat_room_topic(command.chat_room_id)

        if command.type == "joinChat":
            if not await chat_service.is_member(command.chat_room_id, subscriber.user_id):
                await send_error(websocket, "You are not a member of this chat room")
                return

            await notify_man.join_topic(subscriber, topic)
            await websocket.send_json({"event": "joinedChat", "data": {"chatRoomId": command.chat_room_id}})

        elif command.type == "leaveChat":
            await notify_man.leave_topic(subscriber, topic)
            await websocket.send_json({"event": "leftChat", "data": {"chatRoomId": command.chat_room_id}})

    async def read_commands(websocket: WebSocket, subscriber: "Subscriber") -> None:
        while True:
            raw = await websocket.receive_text()

            try:
                command = RealtimeCommand.model_validate(json.loads(raw))
            except (ValueError, ValidationError):
                await send_error(websocket, "Unknown command")
                continue

            await handle_command(websocket, subscriber, command)

    async def write_events(websocket: WebSocket, subscriber: "Subscriber") -> None:
        async for event in chat_events(subscriber, user_id=subscriber.user_id):
            await websocket.send_json(event.to_frame())

    @router.websocket("/ws/chat")
    async def chat_socket(websocket: WebSocket):
        """Room event stream. Clients join rooms with joinChat frames."""

        user_id = app.auth.user_id_from_token(websocket.query_params.get("token"))
        if user_id is None:
            await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
            return

        await websocket.accept()

        async with notify_man.subscription(user_id) as subscriber:
            reader = asyncio.create_task(read_commands(websocket, subscriber))
            writer = asyncio.create_task(write_events(websocket, subscriber))

            done, pending = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)

            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                exc = task.exception()
                if exc and not isinstance(exc, WebSocketDisconnect):
                    logger.error(f"[user:{user_id}] Websocket failed: {type(exc).__name__}: {exc}")

            # server side shutdown ends the writer first
            if writer in done and reader not in done:
                await websocket.close()

    app.api.include_router(router)
