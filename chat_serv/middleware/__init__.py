from chat_serv.middleware.logging_middleware import LoggingMiddleware, setup_logging
from chat_serv.middleware.auth_middleware import AuthMiddleware


logging_middleware = LoggingMiddleware()

__all__ = ["LoggingMiddleware", "AuthMiddleware", "setup_logging", "logging_middleware"]
