"""
PostgreSQL Client Wrapper

Centralized asyncpg pool wrapper giving every repository the same
query/query_row/execute surface with `$n` parameters, plus a transaction
context manager for unit-of-work style operations.

Usage:
    from core.postgres_client import PostgresClient

    db = PostgresClient("notification_service", infra_config)
    await db.connect()

    rows = await db.query("SELECT * FROM notification.templates WHERE channel = $1", ["email"])

    async with db.transaction() as tx:
        row = await tx.query_row("SELECT ... FOR UPDATE", [campaign_id])
        await tx.execute("UPDATE ...", [...])
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class PostgresExecutor:
    """Query helpers bound to a single connection"""

    def __init__(self, connection: asyncpg.Connection):
        self._connection = connection

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        records = await self._connection.fetch(sql, *(params or []))
        return [dict(record) for record in records]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        record = await self._connection.fetchrow(sql, *(params or []))
        return dict(record) if record is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement, returning the command status tag"""
        return await self._connection.execute(sql, *(params or []))


class PostgresClient:
    """
    asyncpg connection pool wrapper.

    The pool is created lazily by connect(); every helper acquires a
    connection for the duration of one statement.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        config = config or InfraConfig.from_env()

        self.service_name = service_name
        self.host = config.postgres_host
        self.port = config.postgres_port
        self.database = config.postgres_db
        self.username = config.postgres_user
        self.password = config.postgres_password
        self.min_size = config.postgres_pool_min
        self.max_size = config.postgres_pool_max

        self._pool: Optional[asyncpg.Pool] = None

        logger.info(f"PostgreSQL client configured for {service_name}: {self.host}:{self.port}/{self.database}")

    async def connect(self) -> None:
        """Create the connection pool"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.username,
            password=self.password,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL client not connected. Call connect() first.")
        return self._pool

    async def __aenter__(self):
        """Async context manager entry"""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def health_check(self) -> bool:
        """Check database health"""
        row = await self.query_row("SELECT 1 AS healthy")
        return row is not None

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        async with self.pool.acquire() as connection:
            return await PostgresExecutor(connection).query(sql, params)

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        async with self.pool.acquire() as connection:
            return await PostgresExecutor(connection).query_row(sql, params)

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement"""
        async with self.pool.acquire() as connection:
            return await PostgresExecutor(connection).execute(sql, params)

    async def execute_script(self, sql: str) -> None:
        """Execute a multi-statement script (migrations)"""
        async with self.pool.acquire() as connection:
            await connection.execute(sql)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresExecutor]:
        """Run statements in one transaction; rolls back when the block raises"""
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield PostgresExecutor(connection)

    async def close(self) -> None:
        """Close connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")
