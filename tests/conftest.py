"""
Pytest configuration and shared fixtures for auditsync tests.

The ``fake_db`` fixture stands in for the connection pool. It answers the
information_schema queries issued by the introspector from an in-memory
catalog and applies the effect of the DDL that auditsync generates, so the
reconciler can be driven through several passes without a server.
"""

import json
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pymysql
import pytest

from auditsync.config import AuditConfig


DATA_SCHEMA = "shop"
AUDIT_SCHEMA = "shop_audit"

_CREATE_TABLE = re.compile(r"create table `([^`]+)`\.`([^`]+)`")
_ALTER_TABLE = re.compile(r"alter table `([^`]+)`\.`([^`]+)`")
_ADD_COLUMN = re.compile(r"add column `([^`]+)` ([^\n]+)")
_DEFINITION = re.compile(r"^\s*,?\s*`([^`]+)` (.+)$")
_DROP_TRIGGER = re.compile(r"drop trigger `([^`]+)`\.`([^`]+)`")
_CREATE_TRIGGER = re.compile(
    r"create trigger `([^`]+)`\.`([^`]+)`\nafter (\w+) on `[^`]+`\.`([^`]+)`\nfor each row\n(.*)",
    re.DOTALL,
)
_CONSTRAINTS = re.compile(r"\s+(?:not null|null|default)\b", re.IGNORECASE)


def column_row(name: str, definition: str) -> Dict[str, Any]:
    """An information_schema.COLUMNS row for a column definition."""
    column_type = _CONSTRAINTS.split(definition, maxsplit=1)[0].strip()
    return {
        "column_name": name,
        "data_type": re.split(r"[\s(]", column_type, maxsplit=1)[0].lower(),
        "column_type": column_type,
        "is_nullable": "NO" if "not null" in definition.lower() else "YES",
    }


class FakeMySQL:
    """In-memory catalog with the query surface of ``ConnectionPool``."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        self.options: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.triggers: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self.executed: List[str] = []
        self.queries: List[Tuple[str, tuple]] = []
        self.connection = MagicMock(name="connection")
        self._failures: List[Tuple[str, Exception]] = []

    # -- setup -------------------------------------------------------------

    def add_table(
        self,
        schema: str,
        table: str,
        columns: List[Tuple[str, str]],
        engine: str = "InnoDB",
        character_set: str = "utf8mb4",
        collation: str = "utf8mb4_general_ci",
    ) -> None:
        self.tables.setdefault(schema, {})[table] = [
            column_row(name, definition) for name, definition in columns
        ]
        self.options[(schema, table)] = {
            "engine": engine,
            "character_set_name": character_set,
            "table_collation": collation,
        }

    def add_trigger(self, schema: str, table: str, name: str, event: str, statement: str) -> None:
        self.triggers.setdefault((schema, table), {})[name] = {
            "trigger_name": name,
            "event_manipulation": event.upper(),
            "action_timing": "AFTER",
            "action_statement": statement,
        }

    def fail_on(self, pattern: str, error: Exception) -> None:
        """Raise ``error`` for every statement or query containing ``pattern``."""
        self._failures.append((pattern, error))

    def clear_failures(self) -> None:
        self._failures.clear()

    def column_names(self, schema: str, table: str) -> List[str]:
        return [row["column_name"] for row in self.tables[schema][table]]

    def trigger_names(self, schema: str, table: str) -> List[str]:
        return sorted(self.triggers.get((schema, table), {}))

    def statements(self, prefix: str) -> List[str]:
        return [sql for sql in self.executed if sql.startswith(prefix)]

    # -- pool surface ------------------------------------------------------

    @asynccontextmanager
    async def acquire(self):
        yield self.connection

    async def execute(self, query: str, *args, conn: Any = None) -> int:
        self._check_failure(query, args)
        self.executed.append(query)
        self._apply(query)
        return 0

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        self.queries.append((query, args))
        self._check_failure(query, args)

        if "information_schema.TRIGGERS" in query:
            schema, table = args
            rows = self.triggers.get((schema, table), {})
            return [dict(rows[name]) for name in sorted(rows)]
        if "information_schema.COLUMNS" in query:
            schema, table = args
            return [dict(row) for row in self.tables.get(schema, {}).get(table, [])]
        if "information_schema.TABLES" in query:
            return [{"table_name": name} for name in sorted(self.tables.get(args[0], {}))]
        raise AssertionError(f"Unexpected query: {query}")

    async def fetchrow(self, query: str, *args) -> Optional[Dict[str, Any]]:
        self.queries.append((query, args))
        self._check_failure(query, args)

        schema, table = args
        if table not in self.tables.get(schema, {}):
            return None
        return {"table_schema": schema, "table_name": table, **self.options[(schema, table)]}

    # -- internals ---------------------------------------------------------

    def _check_failure(self, query: str, args: tuple) -> None:
        for pattern, error in self._failures:
            if pattern in query or pattern in args:
                raise error

    def _apply(self, sql: str) -> None:
        match = _CREATE_TABLE.match(sql)
        if match:
            schema, table = match.groups()
            body = sql[sql.index("(\n") + 2:sql.rindex("\n)")]
            columns = []
            for line in body.split("\n"):
                definition = _DEFINITION.match(line)
                columns.append(definition.groups())
            self.add_table(schema, table, columns)
            return

        match = _ALTER_TABLE.match(sql)
        if match:
            schema, table = match.groups()
            for name, definition in _ADD_COLUMN.findall(sql):
                self.tables[schema][table].append(column_row(name, definition))
            return

        match = _DROP_TRIGGER.match(sql)
        if match:
            schema, name = match.groups()
            for (trigger_schema, _), triggers in self.triggers.items():
                if trigger_schema == schema:
                    triggers.pop(name, None)
            return

        match = _CREATE_TRIGGER.match(sql)
        if match:
            schema, name, event, table, body = match.groups()
            self.add_trigger(schema, table, name, event, body)


@pytest.fixture
def fake_db() -> FakeMySQL:
    """Fake connection pool backed by an in-memory catalog."""
    return FakeMySQL()


@pytest.fixture
def lock_timeout_error() -> Exception:
    return pymysql.err.OperationalError(1205, "Lock wait timeout exceeded; try restarting transaction")


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    """Configuration file content for the ``shop`` schemas."""
    return {
        "database": {
            "host_name": "localhost",
            "port": 3306,
            "user_name": "auditor",
            "password": "secret",
            "data_schema": DATA_SCHEMA,
            "audit_schema": AUDIT_SCHEMA,
            "lock_wait_timeout": 5,
        },
        "audit_columns": [
            {
                "column_name": "audit_timestamp",
                "column_type": "timestamp not null default current_timestamp",
                "expression": "now()",
            },
            {
                "column_name": "audit_statement",
                "column_type": "enum('INSERT','DELETE','UPDATE') not null",
                "value_type": "ACTION",
            },
        ],
        "tables": {
            "users": True,
            "logs": False,
        },
        "table_columns": {},
    }


@pytest.fixture
def sample_config(sample_config_data) -> AuditConfig:
    return AuditConfig.from_dict(sample_config_data)


@pytest.fixture
def temp_config_file(tmp_path, sample_config_data) -> str:
    """Write the sample configuration to a JSON file."""
    path = tmp_path / "audit.json"
    path.write_text(json.dumps(sample_config_data, indent=4))
    return str(path)


@pytest.fixture
def shop_db(fake_db) -> FakeMySQL:
    """``users(id, name)`` and ``logs(id, msg)`` with a bare ``users`` audit table."""
    fake_db.add_table(DATA_SCHEMA, "users", [("id", "int(11) not null"), ("name", "varchar(45)")])
    fake_db.add_table(DATA_SCHEMA, "logs", [("id", "int(11) not null"), ("msg", "text")])
    fake_db.add_table(AUDIT_SCHEMA, "users", [("id", "int(11)")])
    return fake_db
