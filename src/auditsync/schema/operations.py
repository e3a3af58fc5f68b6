"""
Schema operations for auditsync.

Executes the DDL produced by the synthesizers: creating audit tables, adding
audit columns, and dropping/creating triggers under a table lock. Every
statement is recorded as a :class:`SchemaChange`. Nothing in this module
ever drops a column or a table.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import pymysql

from ..database.connection import ConnectionPool
from ..exceptions import DdlExecutionError, LockTimeoutError
from .columns import ColumnSet
from .ddl import build_add_columns_sql, build_create_table_sql, qualified_name


logger = logging.getLogger(__name__)

# ER_LOCK_WAIT_TIMEOUT
LOCK_WAIT_TIMEOUT_ERROR = 1205


class ChangeType(str, Enum):
    """Types of schema changes."""

    CREATE_TABLE = "create_table"
    ADD_COLUMNS = "add_columns"
    CREATE_TRIGGER = "create_trigger"
    DROP_TRIGGER = "drop_trigger"
    LOCK_TABLE = "lock_table"
    UNLOCK_TABLES = "unlock_tables"


class OperationMode(str, Enum):
    """Schema operation modes."""

    SAFE = "safe"              # Execute statements
    DRY_RUN = "dry_run"        # Generate SQL but don't execute


@dataclass
class SchemaChange:
    """Represents a schema change operation."""

    change_type: ChangeType
    schema: str
    table: str
    description: str
    sql: str
    target_object: Optional[str] = None  # Column list, trigger name, etc.

    # Execution results
    executed: bool = False
    execution_time_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def full_table_name(self) -> str:
        """Get fully qualified table name."""
        return f"{self.schema}.{self.table}"

    @property
    def has_error(self) -> bool:
        """Check if this change has an error."""
        return self.error is not None

    @property
    def change_id(self) -> str:
        """Get identifier for this change."""
        target = self.target_object or self.table
        return f"{self.change_type.value}_{self.schema}_{self.table}_{target}"


class AuditSchemaOperations:
    """DDL executor for audit tables and triggers."""

    def __init__(
        self,
        pool: ConnectionPool,
        operation_mode: OperationMode = OperationMode.SAFE,
        lock_wait_timeout: int = 30,
    ):
        self.pool = pool
        self.operation_mode = operation_mode
        self.lock_wait_timeout = lock_wait_timeout

        # Every change attempted through this executor, in order
        self.changes: List[SchemaChange] = []

    @property
    def dry_run(self) -> bool:
        return self.operation_mode == OperationMode.DRY_RUN

    async def create_table(
        self,
        schema: str,
        table: str,
        audit_columns: ColumnSet,
        data_columns: ColumnSet,
        engine: Optional[str] = None,
        character_set: Optional[str] = None,
        collation: Optional[str] = None,
    ) -> SchemaChange:
        """Create an audit table from the fixed audit columns and the data columns."""
        sql = build_create_table_sql(
            schema, table, audit_columns, data_columns, engine, character_set, collation
        )
        change = SchemaChange(
            change_type=ChangeType.CREATE_TABLE,
            schema=schema,
            table=table,
            description=f"Create audit table {schema}.{table}",
            sql=sql,
        )
        return await self._execute_change(change)

    async def add_columns(
        self,
        schema: str,
        table: str,
        columns: ColumnSet,
        audit_column_names: Optional[List[str]] = None,
    ) -> SchemaChange:
        """Add columns to an audit table with a single ALTER TABLE."""
        sql = build_add_columns_sql(schema, table, columns, audit_column_names or [])
        change = SchemaChange(
            change_type=ChangeType.ADD_COLUMNS,
            schema=schema,
            table=table,
            description=f"Add columns {', '.join(columns.names())} to {schema}.{table}",
            sql=sql,
            target_object=",".join(columns.names()),
        )
        return await self._execute_change(change)

    async def create_trigger(
        self,
        schema: str,
        table: str,
        name: str,
        sql: str,
        conn: Any = None,
    ) -> SchemaChange:
        """Create a trigger from a complete CREATE TRIGGER statement."""
        change = SchemaChange(
            change_type=ChangeType.CREATE_TRIGGER,
            schema=schema,
            table=table,
            description=f"Create trigger {schema}.{name} on {schema}.{table}",
            sql=sql,
            target_object=name,
        )
        return await self._execute_change(change, conn)

    async def drop_trigger(
        self,
        schema: str,
        table: str,
        name: str,
        conn: Any = None,
    ) -> SchemaChange:
        """Drop a trigger by name."""
        change = SchemaChange(
            change_type=ChangeType.DROP_TRIGGER,
            schema=schema,
            table=table,
            description=f"Drop trigger {schema}.{name} on {schema}.{table}",
            sql=f"drop trigger {qualified_name(schema, name)}",
            target_object=name,
        )
        return await self._execute_change(change, conn)

    @asynccontextmanager
    async def table_lock(self, schema: str, table: str) -> AsyncIterator[Any]:
        """Hold a write lock on a table and yield the locking connection.

        Statements that must run under the lock have to be executed on the
        yielded connection. The lock is released on every exit path. In dry
        run mode no lock is taken and None is yielded.
        """
        if self.dry_run:
            self._record(self._lock_change(schema, table))
            try:
                yield None
            finally:
                self._record(self._unlock_change(schema, table))
            return

        async with self.pool.acquire() as conn:
            lock = self._lock_change(schema, table)
            try:
                await self.pool.execute(
                    f"set session lock_wait_timeout = {int(self.lock_wait_timeout)}", conn=conn
                )
                await self._execute_change(lock, conn)
            except pymysql.err.MySQLError as e:
                raise DdlExecutionError(
                    f"Could not prepare session for locking: {e}",
                    table=lock.full_table_name,
                    cause=e,
                ) from e
            except DdlExecutionError as e:
                if _error_code(e.cause) == LOCK_WAIT_TIMEOUT_ERROR:
                    raise LockTimeoutError(
                        lock.full_table_name, self.lock_wait_timeout, cause=e.cause
                    ) from e
                raise

            try:
                yield conn
            finally:
                await self._unlock(schema, table, conn)

    async def _unlock(self, schema: str, table: str, conn: Any) -> None:
        try:
            await self._execute_change(self._unlock_change(schema, table), conn)
        except DdlExecutionError:
            # A closed session releases its locks; the pool discards it.
            logger.error(f"Could not unlock {schema}.{table}, closing the connection")
            conn.close()
            raise

    def _lock_change(self, schema: str, table: str) -> SchemaChange:
        return SchemaChange(
            change_type=ChangeType.LOCK_TABLE,
            schema=schema,
            table=table,
            description=f"Lock table {schema}.{table}",
            sql=f"lock tables {qualified_name(schema, table)} write",
        )

    def _unlock_change(self, schema: str, table: str) -> SchemaChange:
        return SchemaChange(
            change_type=ChangeType.UNLOCK_TABLES,
            schema=schema,
            table=table,
            description=f"Unlock tables (held for {schema}.{table})",
            sql="unlock tables",
        )

    def _record(self, change: SchemaChange) -> None:
        self.changes.append(change)
        logger.debug(f"SQL: {change.sql}")

    async def _execute_change(self, change: SchemaChange, conn: Any = None) -> SchemaChange:
        """Execute a schema change, raising DdlExecutionError on failure."""
        self._record(change)

        if self.dry_run:
            change.executed = False
            logger.info(f"DRY RUN: {change.description}")
            return change

        start_time = time.time()
        try:
            await self.pool.execute(change.sql, conn=conn)
        except pymysql.err.MySQLError as e:
            change.error = str(e)
            logger.error(f"Failed to execute {change.change_id}: {e}")
            raise DdlExecutionError(
                f"{change.description} failed: {e}",
                sql=change.sql,
                table=change.full_table_name,
                cause=e,
            ) from e

        change.executed = True
        change.execution_time_ms = (time.time() - start_time) * 1000
        logger.debug(f"Executed {change.change_id} ({change.execution_time_ms:.1f}ms)")
        return change

    def get_execution_summary(self) -> Dict[str, Any]:
        """Get summary of execution results."""
        ddl = [c for c in self.changes if c.change_type not in (
            ChangeType.LOCK_TABLE, ChangeType.UNLOCK_TABLES
        )]
        return {
            "total_operations": len(ddl),
            "successful": sum(1 for c in ddl if c.executed),
            "failed": sum(1 for c in ddl if c.error),
            "total_execution_time_ms": sum(c.execution_time_ms or 0 for c in ddl),
            "failed_operations": [
                {
                    "change_id": c.change_id,
                    "error": c.error,
                    "change_type": c.change_type.value,
                }
                for c in ddl if c.error
            ],
        }


def _error_code(error: Optional[BaseException]) -> Optional[int]:
    if error is not None and error.args and isinstance(error.args[0], int):
        return error.args[0]
    return None
