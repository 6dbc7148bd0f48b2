import logging

from types import SimpleNamespace

import pytest

from chat_serv.middleware.logging_middleware import LoggingMiddleware


@pytest.fixture
def middleware():
    middleware = LoggingMiddleware()
    middleware.logger.setLevel(logging.DEBUG)
    return middleware


def test_sanitize_redacts_and_drops_objects():
    params = {"user_id": 1, "token": "abc", "body": object(), "cursor": None}

    assert LoggingMiddleware._sanitize_params(params) == {"user_id": 1, "token": "***REDACTED***", "cursor": None}


async def test_transaction_logs_status_and_room(middleware, caplog):
    @middleware.log_transaction
    async def leave_chat_room(chat_room_id, user_id):
        return SimpleNamespace(status_code=200)

    with caplog.at_level(logging.INFO, logger="request-logger"):
        await leave_chat_room(chat_room_id=5, user_id=2)

    assert "[user:2 room:5] Transaction 'leave_chat_room' completed -> 200" in caplog.text


async def test_transaction_logs_rejections(middleware, caplog):
    @middleware.log_transaction_debug
    async def get_join_requests(chat_room_id, user_id):
        return SimpleNamespace(status_code=403)

    with caplog.at_level(logging.INFO, logger="request-logger"):
        await get_join_requests(chat_room_id=5, user_id=4)

    assert "rejected -> 403" in caplog.text


async def test_transaction_reraises_failures(middleware, caplog):
    @middleware.log_transaction
    async def send_message(user_id):
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="request-logger"):
        with pytest.raises(RuntimeError):
            await send_message(user_id=1)

    assert "Transaction 'send_message' failed: RuntimeError: boom" in caplog.text


async def test_subscription_counts_delivered_events(middleware, caplog):
    @middleware.log_subscription
    async def chat_events(user_id):
        for i in range(3):
            yield i

    with caplog.at_level(logging.INFO, logger="request-logger"):
        items = [item async for item in chat_events(user_id=7)]

    assert items == [0, 1, 2]
    assert "[user:7] Subscription 'chat_events' finished after 3 events" in caplog.text
