"""
Audit triggers for auditsync.

Each audited table carries exactly three AFTER triggers (INSERT, UPDATE,
DELETE) that copy the changed row into the audit table. Trigger names are
derived from a stable per-table alias, so repeated runs produce the same
names. The triggers of a table are always replaced as a set while the table
is write locked.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from ..config import MAX_ALIAS_LENGTH
from ..database.introspection import SchemaIntrospector, TriggerInfo
from ..exceptions import DdlExecutionError
from .columns import Column, ColumnSet, combine
from .ddl import qualified_name, quote_identifier
from .operations import AuditSchemaOperations, SchemaChange


logger = logging.getLogger(__name__)

MAX_IDENTIFIER_LENGTH = 64
TRIGGER_PREFIX = "trg_"


class TriggerAction(str, Enum):
    """Row events that are audited."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @property
    def row_image(self) -> str:
        """The row a trigger for this action reads from."""
        return "old" if self is TriggerAction.DELETE else "new"


ACTIONS = (TriggerAction.INSERT, TriggerAction.UPDATE, TriggerAction.DELETE)


def derive_alias(table: str) -> str:
    """Deterministic alias for a table, short enough for trigger names."""
    alias = table.lower()
    if len(alias) <= MAX_ALIAS_LENGTH:
        return alias
    digest = hashlib.sha1(table.encode("utf-8")).hexdigest()[:8]
    return f"{alias[:MAX_ALIAS_LENGTH - 9]}_{digest}"


def resolve_alias(table: str, configured_alias: Optional[str] = None) -> str:
    if configured_alias:
        return configured_alias.lower()
    return derive_alias(table)


def trigger_name(alias: str, action: TriggerAction) -> str:
    name = f"{TRIGGER_PREFIX}{alias}_{action.value}".lower()
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(f"Trigger name '{name}' exceeds {MAX_IDENTIFIER_LENGTH} characters")
    return name


def audit_value(column: Column, action: TriggerAction) -> str:
    """The SQL expression a trigger assigns to a fixed audit column."""
    if column.value_type == "ACTION":
        return f"'{action.value}'"
    if column.expression:
        return column.expression
    return "null"


def build_trigger_body(
    audit_schema: str,
    table: str,
    action: TriggerAction,
    audit_columns: ColumnSet,
    data_columns: ColumnSet,
    skip_variable: Optional[str] = None,
    additional_sql: Sequence[str] = (),
) -> str:
    """The ``begin ... end`` block of an audit trigger.

    When ``skip_variable`` is given the insert only happens while that
    session variable is unset or zero.
    """
    columns = combine(audit_columns, data_columns)

    names = []
    values = []
    for column in columns:
        names.append(quote_identifier(column.name))
        if audit_columns.contains(column.name):
            values.append(audit_value(column, action))
        else:
            values.append(f"{action.row_image}.{quote_identifier(column.name)}")

    indent = "  "
    lines = ["begin"]
    if skip_variable:
        lines.append(f"  if (ifnull({skip_variable}, 0) = 0) then")
        indent = "    "

    for statement in additional_sql:
        lines.append(indent + statement)

    lines.append(f"{indent}insert into {qualified_name(audit_schema, table)}({','.join(names)})")
    lines.append(f"{indent}values({','.join(values)});")

    if skip_variable:
        lines.append("  end if;")
    lines.append("end")

    return "\n".join(lines)


def build_create_trigger_sql(schema: str, table: str, name: str, action: TriggerAction, body: str) -> str:
    return (
        f"create trigger {qualified_name(schema, name)}\n"
        f"after {action.value.lower()} on {qualified_name(schema, table)}\n"
        f"for each row\n"
        f"{body}"
    )


@dataclass
class TriggerDefinition:
    """A trigger to be created on a data table."""

    schema: str
    table: str
    name: str
    action: TriggerAction
    body: str

    @property
    def sql(self) -> str:
        return build_create_trigger_sql(self.schema, self.table, self.name, self.action, self.body)

    def matches(self, existing: TriggerInfo) -> bool:
        """Whether an existing trigger is this definition."""
        return (
            existing.name == self.name
            and existing.event.upper() == self.action.value
            and existing.timing.upper() == "AFTER"
            and _normalize_statement(existing.statement) == _normalize_statement(self.body)
        )


def build_trigger_definitions(
    data_schema: str,
    audit_schema: str,
    table: str,
    alias: str,
    audit_columns: ColumnSet,
    data_columns: ColumnSet,
    skip_variable: Optional[str] = None,
    additional_sql: Sequence[str] = (),
) -> List[TriggerDefinition]:
    """Definitions of the INSERT, UPDATE and DELETE triggers of a table."""
    return [
        TriggerDefinition(
            schema=data_schema,
            table=table,
            name=trigger_name(alias, action),
            action=action,
            body=build_trigger_body(
                audit_schema, table, action, audit_columns, data_columns,
                skip_variable, additional_sql,
            ),
        )
        for action in ACTIONS
    ]


def _normalize_statement(statement: str) -> str:
    return " ".join(statement.split())


class TriggerManager:
    """Replaces the audit triggers of data tables."""

    def __init__(self, operations: AuditSchemaOperations, introspector: SchemaIntrospector):
        self.operations = operations
        self.introspector = introspector

    async def is_up_to_date(
        self, schema: str, table: str, definitions: Iterable[TriggerDefinition]
    ) -> bool:
        """True when the table carries exactly the given triggers and no others."""
        existing = {t.name: t for t in await self.introspector.get_triggers(schema, table)}
        definitions = list(definitions)
        if set(existing) != {d.name for d in definitions}:
            return False
        return all(d.matches(existing[d.name]) for d in definitions)

    async def regenerate(
        self, schema: str, table: str, definitions: Iterable[TriggerDefinition]
    ) -> List[SchemaChange]:
        """Drop every trigger on a table and create the given ones.

        The data table is write locked from before the first drop until after
        the last create. The lock is released on every path; a failure after a
        drop leaves the table without some of its triggers until the next run
        recreates them.
        """
        definitions = list(definitions)
        changes: List[SchemaChange] = []
        dropped = False

        async with self.operations.table_lock(schema, table) as conn:
            try:
                for trigger in await self.introspector.get_triggers(schema, table):
                    logger.debug(f"Dropping trigger {trigger.name} on {schema}.{table}")
                    changes.append(
                        await self.operations.drop_trigger(schema, table, trigger.name, conn=conn)
                    )
                    dropped = True

                for definition in definitions:
                    logger.debug(
                        f"Creating trigger {schema}.{definition.name} on {schema}.{table}"
                    )
                    changes.append(
                        await self.operations.create_trigger(
                            schema, table, definition.name, definition.sql, conn=conn
                        )
                    )
            except DdlExecutionError:
                if dropped:
                    logger.error(
                        f"Table {schema}.{table} has an incomplete set of audit triggers; "
                        f"run again to recreate them"
                    )
                raise

        return changes
