"""
DDL for audit tables.

Data columns always become nullable in an audit table: a row copied by the
DELETE trigger, or a row written before a column existed, has no value for
it. Timestamp columns get ``NULL`` without ``DEFAULT NULL`` because MySQL
rejects that combination for timestamps when
``explicit_defaults_for_timestamp`` is off.
"""

from typing import Iterable, List, Optional

from .columns import Column, ColumnSet


def quote_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


def qualified_name(schema: str, name: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def audit_column_definition(column: Column) -> str:
    """Fixed audit columns are defined exactly as configured."""
    return column.sql_type


def data_column_definition(column: Column) -> str:
    if column.is_timestamp:
        return f"{column.sql_type} NULL"
    return f"{column.sql_type} DEFAULT NULL"


def column_definitions(
    columns: Iterable[Column], audit_column_names: Iterable[str]
) -> List[str]:
    """Render ``name definition`` pairs for columns of an audit table."""
    audit_names = set(audit_column_names)
    definitions = []
    for column in columns:
        if column.name in audit_names:
            definition = audit_column_definition(column)
        else:
            definition = data_column_definition(column)
        definitions.append(f"{quote_identifier(column.name)} {definition}")
    return definitions


def table_options_clause(
    engine: Optional[str] = None,
    character_set: Optional[str] = None,
    collation: Optional[str] = None,
) -> str:
    parts = []
    if engine:
        parts.append(f"engine={engine}")
    if character_set:
        parts.append(f"default charset={character_set}")
    if collation:
        parts.append(f"collate={collation}")
    return " ".join(parts)


def build_create_table_sql(
    schema: str,
    table: str,
    audit_columns: ColumnSet,
    data_columns: ColumnSet,
    engine: Optional[str] = None,
    character_set: Optional[str] = None,
    collation: Optional[str] = None,
) -> str:
    """CREATE TABLE for a missing audit table.

    Fixed audit columns come first in configured order, then every data
    column in catalog order. A data column sharing its name with an audit
    column is left out; the audit column wins.
    """
    columns = list(audit_columns) + [
        column for column in data_columns if not audit_columns.contains(column.name)
    ]
    definitions = column_definitions(columns, audit_columns.names())

    sql = f"create table {qualified_name(schema, table)}\n(\n  "
    sql += "\n, ".join(definitions)
    sql += "\n)"

    options = table_options_clause(engine, character_set, collation)
    if options:
        sql += " " + options

    return sql


def build_add_columns_sql(
    schema: str,
    table: str,
    columns: ColumnSet,
    audit_column_names: Iterable[str] = (),
) -> str:
    """ALTER TABLE adding columns to an audit table. Additive only."""
    if not columns:
        raise ValueError("No columns to add")

    clauses = [
        f"add column {definition}"
        for definition in column_definitions(columns, audit_column_names)
    ]
    return f"alter table {qualified_name(schema, table)}\n  " + "\n, ".join(clauses)
