"""
PostgreSQL access for chat_serv: connection pool, transactions and migrations.
"""
import logging
import asyncpg

from pathlib import Path
from typing import Any, AsyncIterator, Optional, List
from contextlib import asynccontextmanager

from chat_serv.config import settings

from chat_serv.version import DB_SCHEMA_VERSION


MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def migration_version(script_path: Path) -> int:
    """Version of a migration script, taken from its numeric prefix (001_init.sql -> 1)."""

    return int(script_path.name.split("_", 1)[0])


class DatabaseAPI:
    """Pool of asyncpg connections shared by every repository.

    Query helpers run on a pooled connection unless they get `conn=`, which
    is how repositories take part in a transaction opened by a service.
    """

    schema_name = "chat_schema"

    def __init__(self, dsn: Optional[str] = None):
        self.logger = logging.getLogger("db-api")
        self.logger.setLevel(settings.logging_level)

        # a DSN replaces the psql_* connection settings
        self.dsn = dsn
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self.dsn:
            target = {"dsn": self.dsn}
        else:
            target = {
                "host": settings.psql_server_host,
                "port": settings.psql_server_port,
                "user": settings.psql_user,
                "password": settings.psql_password,
                "database": settings.psql_db,
            }

        self.pool = await asyncpg.create_pool(
            **target,
            min_size=settings.psql_pool_min_size,
            max_size=settings.psql_pool_max_size
        )

    async def safely_connect(self, check_schema: bool = True) -> None:
        """Open the pool, ping it and make sure the schema is up to date.

        Raises:
            RuntimeError: If PostgreSQL is unreachable or the schema is outdated
        """

        try:
            await self.connect()

            if not await self.ping():
                raise RuntimeError("PostgreSQL ping failed")

            self.logger.info(
                f"PostgreSQL connected: {settings.psql_server_host}:{settings.psql_server_port}/{settings.psql_db}"
            )

        except asyncpg.InvalidPasswordError:
            self.logger.critical("PostgreSQL authentication failed")
            raise RuntimeError("PostgreSQL authentication failed")

        except asyncpg.InvalidCatalogNameError:
            self.logger.critical(f"Database '{settings.psql_db}' does not exist")
            raise RuntimeError(f"Database '{settings.psql_db}' does not exist")

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.critical(f"Failed to connect to PostgreSQL: {e}")
            raise RuntimeError(f"Failed to connect to PostgreSQL: {e}") from e

        if check_schema:
            version = await self.schema_version()

            if version != DB_SCHEMA_VERSION:
                raise RuntimeError(
                    f"Schema version is {version}, expected {DB_SCHEMA_VERSION}. "
                    "Run migrations with: python -m chat_serv --migrate"
                )

            self.logger.info(f"Schema version OK: {version}")

    async def schema_version(self) -> int:
        """Current schema version, 0 when migrations never ran."""

        try:
            version = await self.fetchval(f"SELECT version FROM {self.schema_name}.schema_info LIMIT 1")
        except (asyncpg.UndefinedTableError, asyncpg.InvalidSchemaNameError):
            return 0

        return version or 0

    async def apply_migrations(self) -> int:
        """Apply migration scripts newer than the current schema version.

        Every script runs in its own transaction together with the version
        bump, so a failed script leaves the previous version in place.

        Returns:
            Schema version after migrating
        """

        current = await self.schema_version()
        self.logger.info(f"Schema version before migrating: {current}")

        for script_path in sorted(MIGRATIONS_DIR.glob("*.sql"), key=migration_version):
            version = migration_version(script_path)
            if version <= current:
                continue

            self.logger.info(f"Applying migration {script_path.name}")

            async with self.transaction() as conn:
                await conn.execute(script_path.read_text(encoding="utf-8"))
                await conn.execute(f"UPDATE {self.schema_name}.schema_info SET version = $1", version)

            current = version

        self.logger.info(f"Schema version after migrating: {current}")

        return current

    async def disconnect(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None

            self.logger.info("Database disconnected")

    async def ping(self) -> bool:
        try:
            return await self.fetchval("SELECT 1") == 1

        except (OSError, asyncpg.PostgresError) as e:
            self.logger.warning(f"PostgreSQL ping failed: {e}")
            return False

    @asynccontextmanager
    async def acquire(self, conn: Optional[asyncpg.Connection] = None) -> AsyncIterator[asyncpg.Connection]:
        """Yield conn if given, otherwise a connection borrowed from the pool."""

        if conn is not None:
            yield conn
            return

        async with self.pool.acquire() as pooled:
            yield pooled

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Transaction context manager. Commits on exit, rolls back on exception.

        Usage:
            async with db.transaction() as conn:
                room = await rooms_repo.create(..., conn=conn)
                await members_repo.add_member(room.id, ..., conn=conn)
        """

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args, conn=None) -> str:
        """Run query, return its status string (e.g. "DELETE 1")."""

        async with self.acquire(conn) as c:
            return await c.execute(query, *args)

    async def fetchrow(self, query: str, *args, conn=None) -> Optional[asyncpg.Record]:
        async with self.acquire(conn) as c:
            return await c.fetchrow(query, *args)

    async def fetch(self, query: str, *args, conn=None) -> List[asyncpg.Record]:
        async with self.acquire(conn) as c:
            return await c.fetch(query, *args)

    async def fetchval(self, query: str, *args, conn=None) -> Any:
        async with self.acquire(conn) as c:
            return await c.fetchval(query, *args)
