"""
Database connection management for auditsync.

Provides an async MySQL connection pool wrapper with the small query
surface the catalog reader and the DDL executor need.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import aiomysql
from pydantic import BaseModel, Field, field_validator

from ..config import DatabaseSettings
from ..exceptions import DatabaseConnectionError


logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Database connection configuration."""

    host: str = Field("localhost", description="Database host")
    port: int = Field(3306, description="Database port")
    user: str = Field(..., description="Database user")
    password: str = Field("", description="Database password")
    database: str = Field(..., description="Default schema of the connections")
    charset: str = Field("utf8mb4", description="Connection character set")

    # Connection pool settings
    min_size: int = Field(1, description="Minimum connections in pool")
    max_size: int = Field(4, description="Maximum connections in pool")

    connect_timeout: int = Field(10, description="Connection timeout in seconds")

    @field_validator("database")
    @classmethod
    def validate_database(cls, v):
        if not v or not v.strip():
            raise ValueError("Database name is required")
        return v

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "ConnectionConfig":
        """Create connection configuration from the audit configuration."""
        return cls(
            host=settings.host_name,
            port=settings.port,
            user=settings.user_name,
            password=settings.password,
            database=settings.data_schema,
            charset=settings.charset,
            connect_timeout=settings.connect_timeout,
        )

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Convert to aiomysql connection kwargs."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "db": self.database,
            "charset": self.charset,
            "connect_timeout": self.connect_timeout,
            "autocommit": True,
        }


class ConnectionPool:
    """Async MySQL connection pool wrapper."""

    def __init__(self, config: ConnectionConfig):
        self.config = config
        self._pool: Optional[aiomysql.Pool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(
                    f"Initializing connection pool to {self.config.host}:{self.config.port}"
                    f"/{self.config.database} (min={self.config.min_size}, max={self.config.max_size})"
                )

                self._pool = await aiomysql.create_pool(
                    **self.config.to_connection_kwargs(),
                    minsize=self.config.min_size,
                    maxsize=self.config.max_size,
                )

                logger.debug("Connection pool initialized successfully")

            except Exception as e:
                logger.error(f"Failed to initialize connection pool: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize connection pool: {e}", cause=e
                ) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.debug(f"Closing connection pool: {self.get_stats()}")
                self._pool.close()
                await self._pool.wait_closed()
                self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiomysql.Connection]:
        """Acquire a connection from the pool.

        MySQL table locks belong to the session, so statements that must run
        under one lock have to share the connection yielded here.
        """
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, query: str, *args, conn: Optional[aiomysql.Connection] = None) -> int:
        """Execute a statement and return the affected row count."""
        if conn is not None:
            return await self._execute(conn, query, args)
        async with self.acquire() as connection:
            return await self._execute(connection, query, args)

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        """Fetch all results from a query as dicts."""
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cur:
                await cur.execute(query, args or None)
                return list(await cur.fetchall())

    async def fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """Fetch a single row from a query."""
        async with self.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cur:
                await cur.execute(query, args or None)
                return await cur.fetchone()

    @staticmethod
    async def _execute(conn: aiomysql.Connection, query: str, args: tuple) -> int:
        async with conn.cursor() as cur:
            # Without args the statement is sent verbatim, so '%' in trigger
            # bodies is not taken for a placeholder.
            return await cur.execute(query, args or None)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        if self._pool is None:
            return {
                "size": 0,
                "free": 0,
                "acquired": 0,
                "initialized": False
            }

        return {
            "size": self._pool.size,
            "free": self._pool.freesize,
            "acquired": self._pool.size - self._pool.freesize,
            "initialized": True
        }

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
