"""
Unit tests for audit table DDL synthesis.
"""

import pytest

from auditsync.schema.columns import Column, ColumnSet
from auditsync.schema.ddl import (
    build_add_columns_sql,
    build_create_table_sql,
    data_column_definition,
    qualified_name,
    quote_identifier,
    table_options_clause,
)


@pytest.fixture
def audit_columns():
    return ColumnSet([
        Column("audit_timestamp", "timestamp not null default current_timestamp", expression="now()"),
        Column("audit_statement", "enum('INSERT','DELETE','UPDATE') not null", value_type="ACTION"),
    ])


@pytest.fixture
def data_columns():
    return ColumnSet([
        Column("id", "int(11)", nullable=False, is_nullable_raw="NO"),
        Column("name", "varchar(45)"),
        Column("created", "timestamp", data_type="timestamp"),
    ])


class TestIdentifiers:
    """Test identifier quoting."""

    def test_quote_identifier(self):
        """Test quoting with embedded backticks."""
        assert quote_identifier("users") == "`users`"
        assert quote_identifier("we`ird") == "`we``ird`"

    def test_qualified_name(self):
        """Test schema-qualified names."""
        assert qualified_name("shop", "users") == "`shop`.`users`"


class TestColumnDefinitions:
    """Test the nullability policy of audit table columns."""

    def test_data_columns_become_nullable(self):
        """Test NOT NULL data columns become nullable in the audit table."""
        assert data_column_definition(Column("id", "int(11)", nullable=False)) == "int(11) DEFAULT NULL"

    def test_timestamp_has_no_default(self):
        """Test timestamp columns get an explicit NULL."""
        assert data_column_definition(Column("created", "timestamp")) == "timestamp NULL"

    def test_datetime_keeps_default(self):
        """Test datetime columns keep DEFAULT NULL."""
        assert data_column_definition(Column("created", "datetime")) == "datetime DEFAULT NULL"

    def test_table_options_clause(self):
        """Test the table options clause."""
        assert table_options_clause("InnoDB", "utf8mb4", "utf8mb4_bin") == (
            "engine=InnoDB default charset=utf8mb4 collate=utf8mb4_bin"
        )
        assert table_options_clause() == ""


class TestCreateTable:
    """Test CREATE TABLE generation."""

    def test_column_order_and_definitions(self, audit_columns, data_columns):
        """Test audit columns first, then data columns."""
        sql = build_create_table_sql("shop_audit", "users", audit_columns, data_columns)

        assert sql == (
            "create table `shop_audit`.`users`\n"
            "(\n"
            "  `audit_timestamp` timestamp not null default current_timestamp\n"
            ", `audit_statement` enum('INSERT','DELETE','UPDATE') not null\n"
            ", `id` int(11) DEFAULT NULL\n"
            ", `name` varchar(45) DEFAULT NULL\n"
            ", `created` timestamp NULL\n"
            ")"
        )

    def test_table_options_appended(self, audit_columns, data_columns):
        """Test configured table options are appended."""
        sql = build_create_table_sql(
            "shop_audit", "users", audit_columns, data_columns,
            engine="InnoDB", character_set="utf8mb4", collation="utf8mb4_general_ci",
        )

        assert sql.endswith(") engine=InnoDB default charset=utf8mb4 collate=utf8mb4_general_ci")

    def test_audit_column_wins_name_clash(self, audit_columns):
        """Test a data column named like an audit column is skipped."""
        data = ColumnSet([Column("audit_timestamp", "datetime"), Column("id", "int")])

        sql = build_create_table_sql("shop_audit", "users", audit_columns, data)

        assert sql.count("`audit_timestamp`") == 1
        assert "datetime" not in sql


class TestAddColumns:
    """Test ALTER TABLE generation."""

    def test_single_statement_for_all_columns(self, audit_columns):
        """Test all new columns go into one ALTER TABLE."""
        columns = ColumnSet([
            audit_columns.get("audit_statement"),
            Column("name", "varchar(45)"),
            Column("created", "timestamp"),
        ])

        sql = build_add_columns_sql("shop_audit", "users", columns, audit_columns.names())

        assert sql == (
            "alter table `shop_audit`.`users`\n"
            "  add column `audit_statement` enum('INSERT','DELETE','UPDATE') not null\n"
            ", add column `name` varchar(45) DEFAULT NULL\n"
            ", add column `created` timestamp NULL"
        )
        assert "drop" not in sql.lower()

    def test_no_columns_raises(self):
        """Test an empty column set."""
        with pytest.raises(ValueError):
            build_add_columns_sql("shop_audit", "users", ColumnSet())
