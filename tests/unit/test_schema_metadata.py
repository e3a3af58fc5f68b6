"""
Unit tests for table metadata and option comparison.
"""

import pytest

from auditsync.schema.columns import ColumnSet
from auditsync.schema.metadata import TABLE_OPTIONS, TableMetadata, compare_options


class TestTableMetadata:
    """Test the TableMetadata model."""

    def test_from_catalog_row(self):
        """Test building table metadata from an information_schema row."""
        table = TableMetadata.from_catalog_row({
            "table_schema": "shop",
            "table_name": "users",
            "engine": "InnoDB",
            "character_set_name": "utf8mb4",
            "table_collation": "utf8mb4_general_ci",
        })

        assert table.full_name == "shop.users"
        assert table.engine == "InnoDB"
        assert table.character_set == "utf8mb4"
        assert table.collation == "utf8mb4_general_ci"
        assert table.columns == ColumnSet()

    def test_get_property_rejects_identity_fields(self):
        """Test schema and name are not options."""
        table = TableMetadata(schema="shop", name="users")
        with pytest.raises(KeyError):
            table.get_property("name")


class TestCompareOptions:
    """Test table option comparison."""

    def test_identical_options(self):
        """Test identical options."""
        t1 = TableMetadata("shop", "users", "InnoDB", "utf8mb4", "utf8mb4_general_ci")
        t2 = TableMetadata("shop_audit", "users", "InnoDB", "utf8mb4", "utf8mb4_general_ci")

        assert compare_options(t1, t2) == []

    def test_identity_is_never_compared(self):
        """Test schema and name are ignored."""
        t1 = TableMetadata("shop", "users", "InnoDB")
        t2 = TableMetadata("other", "customers", "InnoDB")

        assert compare_options(t1, t2) == []

    def test_differing_options(self):
        """Test differing options are listed in order."""
        t1 = TableMetadata("shop", "users", "InnoDB", "utf8mb4", "utf8mb4_general_ci")
        t2 = TableMetadata("shop_audit", "users", "ARCHIVE", "latin1", "utf8mb4_general_ci")

        assert compare_options(t1, t2) == ["engine", "character_set"]

    def test_option_names(self):
        """Test the compared option names."""
        assert TABLE_OPTIONS == ("engine", "character_set", "collation")
