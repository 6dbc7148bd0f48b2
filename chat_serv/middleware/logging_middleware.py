import sys
import logging
import time

from functools import wraps
from pathlib import Path
from typing import Callable

from chat_serv.config import settings


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("botocore", "aiobotocore", "aioboto3", "urllib3", "asyncio")

# uvicorn runs with log_config=None, its loggers go through the root handlers
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging() -> None:
    """Configure root logger: console, optional file, quiet third-party loggers.

    Calling it again replaces the handlers it installed before.
    """

    log_level = getattr(logging, settings.logging_level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in [h for h in root_logger.handlers if getattr(h, "chat_serv_handler", False)]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if settings.logging_on_file:
        logs_dir = Path(settings.logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        handlers.append(logging.FileHandler(logs_dir / "chat_serv.log", encoding="utf-8"))

    for handler in handlers:
        handler.chat_serv_handler = True
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name in UVICORN_LOGGERS:
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True


class LoggingMiddleware:
    """Logging of route handlers and realtime event streams."""

    def __init__(self):
        self.logger = logging.getLogger("request-logger")
        self.logger.setLevel(settings.logging_level)

    @staticmethod
    def _sanitize_params(params: dict) -> dict:
        """
        Keep scalar parameters for the log line, redact the sensitive ones.
        Request bodies and other objects are left out.
        """
        sensitive_keys = {"password", "token", "secret", "api_key", "private_key", "authorization"}

        sanitized = {}
        for key, value in params.items():
            if any(sensitive in key.lower() for sensitive in sensitive_keys):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, (str, int, float, bool)) or value is None:
                sanitized[key] = value

        return sanitized

    @staticmethod
    def _prefix(kwargs: dict) -> str:
        """[user:1 room:5] style prefix of a log line."""

        prefix = f"user:{kwargs.get('user_id', 'anonymous')}"

        if kwargs.get("chat_room_id") is not None:
            prefix += f" room:{kwargs['chat_room_id']}"

        return f"[{prefix}]"

    def _transaction_decorator(self, func: Callable, level: int) -> Callable:
        """Log outcome and duration of a route handler.

        Handlers return responses for expected failures, those are logged with
        their status code. Exceptions are logged and re-raised for the
        application error handler.
        """

        @wraps(func)
        async def wrapper(*args, **kwargs):
            transaction_name = func.__name__
            prefix = self._prefix(kwargs)
            start_time = time.time()

            try:
                result = await func(*args, **kwargs)

            except Exception as e:
                duration = time.time() - start_time

                self.logger.error(
                    f"{prefix} Transaction '{transaction_name}' failed: "
                    f"{type(e).__name__}: {e} {self._sanitize_params(kwargs)} [{duration:.3f}s]",
                    exc_info=settings.showing_tracebacks
                )

                raise

            duration = time.time() - start_time
            status_code = getattr(result, "status_code", None)

            if status_code is not None and status_code >= 500:
                self.logger.error(f"{prefix} Transaction '{transaction_name}' -> {status_code} [{duration:.3f}s]")
            elif status_code is not None and status_code >= 400:
                self.logger.log(
                    max(level, logging.INFO),
                    f"{prefix} Transaction '{transaction_name}' rejected -> {status_code} "
                    f"{self._sanitize_params(kwargs)} [{duration:.3f}s]"
                )
            else:
                self.logger.log(
                    level,
                    f"{prefix} Transaction '{transaction_name}' completed -> {status_code} [{duration:.3f}s]"
                )

            return result

        return wrapper

    def log_transaction(self, func: Callable) -> Callable:
        """Decorator for mutating handlers, logged at INFO level."""

        return self._transaction_decorator(func, logging.INFO)

    def log_transaction_debug(self, func: Callable) -> Callable:
        """Decorator for read-only handlers, logged at DEBUG level."""

        return self._transaction_decorator(func, logging.DEBUG)

    def _subscription_decorator(self, func: Callable, level: int) -> Callable:
        """Log start, end and number of delivered events of an event stream."""

        @wraps(func)
        async def wrapper(*args, **kwargs):
            subscription_name = func.__name__
            prefix = self._prefix(kwargs)
            delivered = 0
            start_time = time.time()

            self.logger.log(level, f"{prefix} Subscription '{subscription_name}' started")

            try:
                async for item in func(*args, **kwargs):
                    delivered += 1
                    yield item

            except GeneratorExit:
                self.logger.log(
                    level,
                    f"{prefix} Subscription '{subscription_name}' closed after {delivered} events "
                    f"[{time.time() - start_time:.1f}s]"
                )
                raise

            except Exception as e:
                self.logger.error(
                    f"{prefix} Subscription '{subscription_name}' error after {delivered} events: "
                    f"{type(e).__name__}: {e}",
                    exc_info=settings.showing_tracebacks
                )
                raise

            self.logger.log(
                level,
                f"{prefix} Subscription '{subscription_name}' finished after {delivered} events "
                f"[{time.time() - start_time:.1f}s]"
            )

        return wrapper

    def log_subscription(self, func: Callable) -> Callable:
        """Decorator for realtime event streams, logged at INFO level."""

        return self._subscription_decorator(func, logging.INFO)
