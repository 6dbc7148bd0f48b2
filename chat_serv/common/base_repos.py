"""Base repository classes for data access"""

import logging

from contextlib import contextmanager
from typing import TYPE_CHECKING, Optional, Any

import asyncpg

if TYPE_CHECKING:
    from chat_serv.common.db import DatabaseAPI
    from chat_serv.common.s3 import S3API

from chat_serv.common.errors import ConflictError
from chat_serv.config import settings


@contextmanager
def unique_violation_as_conflict():
    """Re-raise a unique constraint violation as ConflictError naming the constraint."""

    try:
        yield
    except asyncpg.UniqueViolationError as exc:
        raise ConflictError(exc.constraint_name) from exc


class BaseDBRepository:
    """Base class for database repositories.

    Every query accepts `conn=` to run inside a transaction opened by the caller.
    """

    repository_name = "base"
    table_name = None
    schema_name = "chat_schema"

    def __init__(self, db: "DatabaseAPI"):
        self.logger = logging.getLogger(f"{self.repository_name}-repo")
        self.logger.setLevel(settings.logging_level)

        self.db = db

    def _get_table_name(self) -> str:
        if not self.table_name:
            raise ValueError(f"table_name not set for {self.__class__.__name__}")

        return self._table(self.table_name)

    def _table(self, name: str) -> str:
        return f"{self.schema_name}.{name}"

    async def execute(self, query: str, *args, conn=None) -> str:
        with unique_violation_as_conflict():
            return await self.db.execute(query, *args, conn=conn)

    async def fetchrow(self, query: str, *args, conn=None) -> Optional[Any]:
        with unique_violation_as_conflict():
            return await self.db.fetchrow(query, *args, conn=conn)

    async def fetch(self, query: str, *args, conn=None) -> list:
        with unique_violation_as_conflict():
            return await self.db.fetch(query, *args, conn=conn)

    async def fetchval(self, query: str, *args, conn=None) -> Any:
        with unique_violation_as_conflict():
            return await self.db.fetchval(query, *args, conn=conn)

    @staticmethod
    def _affected_rows(status: str) -> int:
        """Row count of a status string like 'DELETE 1'"""

        try:
            return int(status.rsplit(" ", 1)[-1])
        except (ValueError, AttributeError):
            return 0


class BaseS3Repository:
    """Base class for S3 repositories"""

    repository_name = "base"
    resources_dir = ""

    def __init__(self, s3: "S3API"):
        self.logger = logging.getLogger(f"{self.repository_name}-repo")
        self.logger.setLevel(settings.logging_level)

        self.s3 = s3

    def _get_full_key(self, key: str) -> str:
        return f"{self.resources_dir}{key}"
