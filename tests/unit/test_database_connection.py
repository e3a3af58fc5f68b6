"""
Unit tests for database connection management.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from auditsync.config import DatabaseSettings
from auditsync.database.connection import ConnectionConfig, ConnectionPool
from auditsync.exceptions import DatabaseConnectionError


def make_connection(rows=None, row=None):
    """A mock aiomysql connection whose cursor returns the given rows."""
    conn = MagicMock()
    cursor = conn.cursor.return_value.__aenter__.return_value
    cursor.execute = AsyncMock(return_value=1)
    cursor.fetchall = AsyncMock(return_value=rows or [])
    cursor.fetchone = AsyncMock(return_value=row)
    return conn, cursor


def make_pool(conn):
    pool = MagicMock()
    pool.size = 4
    pool.freesize = 3
    pool.wait_closed = AsyncMock()

    @asynccontextmanager
    async def acquire():
        yield conn

    pool.acquire = acquire
    return pool


class TestConnectionConfig:
    """Test cases for ConnectionConfig."""

    def test_from_settings(self):
        """Test building connection config from database settings."""
        settings = DatabaseSettings(
            host_name="db.local",
            user_name="auditor",
            password="secret",
            data_schema="shop",
            audit_schema="shop_audit",
        )

        config = ConnectionConfig.from_settings(settings)

        assert config.host == "db.local"
        assert config.port == 3306
        assert config.database == "shop"
        assert config.charset == "utf8mb4"

    def test_connection_kwargs_enable_autocommit(self):
        """Test aiomysql kwargs use autocommit."""
        config = ConnectionConfig(user="auditor", database="shop")

        kwargs = config.to_connection_kwargs()

        assert kwargs["db"] == "shop"
        assert kwargs["autocommit"] is True


class TestConnectionPool:
    """Test cases for ConnectionPool."""

    @pytest.fixture
    def config(self):
        return ConnectionConfig(user="auditor", database="shop", min_size=1, max_size=2)

    @pytest.mark.asyncio
    async def test_initialize_and_close(self, config):
        """Test pool creation and close through the context manager."""
        conn, _ = make_connection()
        mock_pool = make_pool(conn)

        with patch(
            "auditsync.database.connection.aiomysql.create_pool",
            new=AsyncMock(return_value=mock_pool),
        ) as create_pool:
            async with ConnectionPool(config) as pool:
                assert pool.is_initialized
                assert pool.get_stats() == {"size": 4, "free": 3, "acquired": 1, "initialized": True}

        create_pool.assert_awaited_once()
        assert create_pool.await_args.kwargs["minsize"] == 1
        assert create_pool.await_args.kwargs["maxsize"] == 2
        mock_pool.close.assert_called_once()
        assert not pool.is_initialized

    @pytest.mark.asyncio
    async def test_initialize_failure(self, config):
        """Test pool creation failure."""
        with patch(
            "auditsync.database.connection.aiomysql.create_pool",
            new=AsyncMock(side_effect=OSError("Connection refused")),
        ):
            pool = ConnectionPool(config)
            with pytest.raises(DatabaseConnectionError, match="Connection refused"):
                await pool.initialize()

    @pytest.mark.asyncio
    async def test_acquire_requires_initialization(self, config):
        """Test acquire before initialize."""
        pool = ConnectionPool(config)

        with pytest.raises(DatabaseConnectionError):
            async with pool.acquire():
                pass

    def test_stats_before_initialization(self, config):
        """Test stats of an uninitialized pool."""
        assert ConnectionPool(config).get_stats()["initialized"] is False

    @pytest.mark.asyncio
    async def test_fetch_passes_parameters(self, config):
        """Test fetch passes query parameters."""
        conn, cursor = make_connection(rows=[{"table_name": "users"}])
        pool = ConnectionPool(config)
        pool._pool = make_pool(conn)

        rows = await pool.fetch("select ... where TABLE_SCHEMA = %s", "shop")

        assert rows == [{"table_name": "users"}]
        cursor.execute.assert_awaited_once_with("select ... where TABLE_SCHEMA = %s", ("shop",))

    @pytest.mark.asyncio
    async def test_execute_without_args_is_verbatim(self, config):
        """Test statements without args are sent verbatim."""
        conn, cursor = make_connection()
        pool = ConnectionPool(config)
        pool._pool = make_pool(conn)

        await pool.execute("create trigger ... like '%x%'")

        cursor.execute.assert_awaited_once_with("create trigger ... like '%x%'", None)

    @pytest.mark.asyncio
    async def test_execute_on_given_connection(self, config):
        """Test execute on an explicitly given connection."""
        pooled, pooled_cursor = make_connection()
        locked, locked_cursor = make_connection()
        pool = ConnectionPool(config)
        pool._pool = make_pool(pooled)

        await pool.execute("unlock tables", conn=locked)

        locked_cursor.execute.assert_awaited_once_with("unlock tables", None)
        pooled_cursor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetchrow(self, config):
        """Test fetching a single row."""
        conn, _ = make_connection(row={"engine": "InnoDB"})
        pool = ConnectionPool(config)
        pool._pool = make_pool(conn)

        assert await pool.fetchrow("select engine") == {"engine": "InnoDB"}
