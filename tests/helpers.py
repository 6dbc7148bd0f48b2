"""Shared helpers for tests."""

import jwt

from chat_serv.config import settings


def drain(subscriber) -> list:
    """Pop every queued event without waiting."""

    events = []
    while not subscriber.queue.empty():
        events.append(subscriber.queue.get_nowait())
    return events


def make_token(user_id: int, **claims) -> str:
    return jwt.encode({"id": user_id, **claims}, settings.jwt_access_secret, algorithm=settings.jwt_algorithm)


def auth_header(user_id: int) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}
