"""
Chat server configuration, read from the environment and .env.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Chat server settings."""

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 6000
    cors_origins: str = "*"  # comma separated

    # PostgreSQL
    psql_server_host: str = "localhost"
    psql_server_port: int = 5432
    psql_db: str = "chat_db"
    psql_user: str = "chat_app"
    psql_password: str = "-"
    psql_pool_min_size: int = 2
    psql_pool_max_size: int = 10

    # File-object store
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    s3_access_key: str = "<access-key>"
    s3_secret_key: str = "<secret-key>"
    s3_bucket_name: str = "<bkt>"
    s3_verify_ssl: bool = True
    s3_addressing_style: Literal["auto", "path", "virtual"] = "auto"
    s3_upload_url_expires: int = Field(900, gt=0)
    s3_default_upload_folder: str = "uploads/chatrooms"

    # Access tokens, issued by the auth service
    jwt_access_secret: str = "<jwt-secret>"
    jwt_algorithm: str = "HS256"

    # Chat behaviour
    rooms_page_size: int = Field(10, gt=0)
    messages_page_size: int = Field(20, gt=0)
    snippet_length: int = Field(50, gt=3)
    notify_queue_size: int = Field(256, gt=0)
    allow_rerequest_after_deny: bool = False

    # Logging
    logging_level: str = "DEBUG"
    logging_on_file: bool = True
    logs_dir: str = "logs"
    showing_tracebacks: bool = False

    @field_validator("logging_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
