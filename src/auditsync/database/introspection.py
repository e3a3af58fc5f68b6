"""
Database schema introspection for auditsync.

Reads table, column and trigger metadata from MySQL's information_schema.
Every failure is raised as :class:`CatalogReadError`; nothing here is ever
skipped silently.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .connection import ConnectionPool
from ..exceptions import CatalogReadError
from ..schema.columns import ColumnSet
from ..schema.metadata import TableMetadata


logger = logging.getLogger(__name__)


@dataclass
class TriggerInfo:
    """Information about a trigger on a table."""

    name: str
    event: str
    timing: str
    statement: str


class SchemaIntrospector:
    """Database schema introspection utilities."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    async def list_tables(self, schema: str) -> List[str]:
        """List the base tables of a schema in name order."""
        query = """
            select TABLE_NAME as table_name
            from   information_schema.TABLES
            where  TABLE_SCHEMA = %s
            and    TABLE_TYPE   = 'BASE TABLE'
            order by TABLE_NAME
        """

        try:
            rows = await self.pool.fetch(query, schema)
        except Exception as e:
            logger.error(f"Error listing tables of schema {schema}: {e}")
            raise CatalogReadError(
                f"Failed to list tables: {e}", schema=schema, cause=e
            ) from e

        return [row["table_name"] for row in rows]

    async def get_columns(self, schema: str, table: str) -> ColumnSet:
        """Get all columns of a table in ordinal order."""
        query = """
            select COLUMN_NAME as column_name
            ,      DATA_TYPE   as data_type
            ,      COLUMN_TYPE as column_type
            ,      IS_NULLABLE as is_nullable
            from   information_schema.COLUMNS
            where  TABLE_SCHEMA = %s
            and    TABLE_NAME   = %s
            order by ORDINAL_POSITION
        """

        try:
            rows = await self.pool.fetch(query, schema, table)
        except Exception as e:
            logger.error(f"Error getting columns for {schema}.{table}: {e}")
            raise CatalogReadError(
                f"Failed to get columns: {e}", schema=schema, table=table, cause=e
            ) from e

        return ColumnSet.from_catalog_rows(rows)

    async def get_table_metadata(self, schema: str, table: str) -> Optional[TableMetadata]:
        """Get the options and columns of a table, None when it does not exist."""
        query = """
            select t.TABLE_SCHEMA       as table_schema
            ,      t.TABLE_NAME         as table_name
            ,      t.ENGINE             as engine
            ,      c.CHARACTER_SET_NAME as character_set_name
            ,      t.TABLE_COLLATION    as table_collation
            from   information_schema.TABLES t
            left join information_schema.COLLATION_CHARACTER_SET_APPLICABILITY c
                   on c.COLLATION_NAME = t.TABLE_COLLATION
            where  t.TABLE_SCHEMA = %s
            and    t.TABLE_NAME   = %s
        """

        try:
            row = await self.pool.fetchrow(query, schema, table)
        except Exception as e:
            logger.error(f"Error getting metadata for {schema}.{table}: {e}")
            raise CatalogReadError(
                f"Failed to get table metadata: {e}", schema=schema, table=table, cause=e
            ) from e

        if row is None:
            return None

        columns = await self.get_columns(schema, table)
        return TableMetadata.from_catalog_row(row, columns)

    async def get_triggers(self, schema: str, table: str) -> List[TriggerInfo]:
        """Get the triggers defined on a table."""
        query = """
            select TRIGGER_NAME       as trigger_name
            ,      EVENT_MANIPULATION as event_manipulation
            ,      ACTION_TIMING      as action_timing
            ,      ACTION_STATEMENT   as action_statement
            from   information_schema.TRIGGERS
            where  TRIGGER_SCHEMA     = %s
            and    EVENT_OBJECT_TABLE = %s
            order by TRIGGER_NAME
        """

        try:
            rows = await self.pool.fetch(query, schema, table)
        except Exception as e:
            logger.error(f"Error getting triggers for {schema}.{table}: {e}")
            raise CatalogReadError(
                f"Failed to get triggers: {e}", schema=schema, table=table, cause=e
            ) from e

        return [
            TriggerInfo(
                name=row["trigger_name"],
                event=row["event_manipulation"],
                timing=row["action_timing"],
                statement=row["action_statement"],
            )
            for row in rows
        ]
