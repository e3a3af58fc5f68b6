"""
Table metadata for auditsync.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from .columns import ColumnSet


# Table level properties that describe state rather than identity
TABLE_OPTIONS = ("engine", "character_set", "collation")


@dataclass
class TableMetadata:
    """Schema level properties of a table and its columns."""

    schema: str
    name: str
    engine: Optional[str] = None
    character_set: Optional[str] = None
    collation: Optional[str] = None
    columns: ColumnSet = field(default_factory=ColumnSet)

    @property
    def full_name(self) -> str:
        """Get the fully qualified table name."""
        return f"{self.schema}.{self.name}"

    def get_property(self, name: str) -> Optional[str]:
        if name not in TABLE_OPTIONS:
            raise KeyError(f"Unknown table property '{name}'")
        return getattr(self, name)

    @classmethod
    def from_catalog_row(
        cls, row: Mapping[str, Any], columns: Optional[ColumnSet] = None
    ) -> "TableMetadata":
        return cls(
            schema=row["table_schema"],
            name=row["table_name"],
            engine=row.get("engine"),
            character_set=row.get("character_set_name"),
            collation=row.get("table_collation"),
            columns=columns if columns is not None else ColumnSet(),
        )


def compare_options(table1: TableMetadata, table2: TableMetadata) -> List[str]:
    """Names of the table options whose values differ between two tables."""
    return [
        option
        for option in TABLE_OPTIONS
        if table1.get_property(option) != table2.get_property(option)
    ]
