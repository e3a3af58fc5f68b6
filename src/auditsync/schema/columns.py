"""
Column metadata for auditsync.

A :class:`ColumnSet` holds the columns of one table (or one perspective on a
table) keyed by name, in discovery order. The three set operations at the
bottom of this module are all the schema reconciler needs to derive new,
obsolete and altered columns.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional


_WHITESPACE = re.compile(r"\s+")

# Clauses of a column definition that information_schema.COLUMNS.COLUMN_TYPE
# does not carry
_ATTRIBUTE_CLAUSES = re.compile(
    r"\s+(?:"
    r"default\s+(?:'(?:[^']|'')*'|\S+)"
    r"|on update\s+\S+"
    r"|(?:character set|charset|collate)\s+\S+"
    r"|comment\s+'(?:[^']|'')*'"
    r")"
)
_BARE_NULL = re.compile(r"(?<!not)\s+null\b")


def normalize_type(sql_type: Optional[str]) -> str:
    """Normalize a type string for comparison: case, backticks and spacing."""
    if not sql_type:
        return ""
    return _WHITESPACE.sub(" ", sql_type.replace("`", "").strip().lower())


def comparable_definition(definition: Optional[str]) -> str:
    """Reduce a column definition to its type and ``not null``.

    ``timestamp not null default current_timestamp`` becomes
    ``timestamp not null``.
    """
    reduced = _ATTRIBUTE_CLAUSES.sub("", normalize_type(definition))
    return _BARE_NULL.sub("", reduced).strip()


@dataclass(frozen=True)
class Column:
    """One column of one table."""

    name: str
    sql_type: str
    nullable: bool = True
    is_nullable_raw: Optional[str] = None
    data_type: Optional[str] = None

    # Only set for the fixed audit columns
    expression: Optional[str] = None
    value_type: Optional[str] = None

    @property
    def base_type(self) -> str:
        """The bare type name, e.g. ``varchar`` for ``varchar(45)``."""
        if self.data_type:
            return self.data_type.lower()
        return re.split(r"[\s(]", self.sql_type.strip(), maxsplit=1)[0].lower()

    @property
    def normalized_type(self) -> str:
        return normalize_type(self.sql_type)

    @property
    def is_timestamp(self) -> bool:
        return self.base_type == "timestamp"

    def with_type(self, sql_type: str) -> "Column":
        return replace(self, sql_type=sql_type)

    @classmethod
    def from_catalog_row(cls, row: Mapping[str, Any]) -> "Column":
        """Build a column from an information_schema.columns row."""
        raw_nullable = row.get("is_nullable")
        return cls(
            name=row["column_name"],
            sql_type=row.get("column_type") or row["data_type"],
            nullable=raw_nullable != "NO",
            is_nullable_raw=raw_nullable,
            data_type=row.get("data_type"),
        )

    def __str__(self) -> str:
        return f"{self.name} {self.sql_type}"


class ColumnSet:
    """Ordered, name-keyed set of columns.

    Names are unique within a set. Iteration follows insertion order, which
    is the catalog order for sets read from the database.
    """

    def __init__(self, columns: Iterable[Column] = ()):
        self._columns: Dict[str, Column] = {}
        for column in columns:
            self.add(column)

    @classmethod
    def from_catalog_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "ColumnSet":
        return cls(Column.from_catalog_row(row) for row in rows)

    @classmethod
    def from_type_map(cls, types: Optional[Mapping[str, str]]) -> "ColumnSet":
        """Build a set from the ``{name: type}`` form stored in the configuration."""
        if not types:
            return cls()
        return cls(Column(name=name, sql_type=sql_type) for name, sql_type in types.items())

    @classmethod
    def from_audit_columns(cls, audit_columns: Iterable[Any]) -> "ColumnSet":
        """Build a set from configured audit columns (``AuditColumn`` models)."""
        return cls(
            Column(
                name=column.column_name,
                sql_type=column.column_type,
                nullable="not null" not in normalize_type(column.column_type),
                expression=column.expression,
                value_type=column.value_type,
            )
            for column in audit_columns
        )

    def add(self, column: Column) -> None:
        if column.name in self._columns:
            raise ValueError(f"Duplicate column name '{column.name}'")
        self._columns[column.name] = column

    def contains(self, name: str) -> bool:
        return name in self._columns

    def get(self, name: str) -> Optional[Column]:
        return self._columns.get(name)

    def names(self) -> List[str]:
        return list(self._columns)

    def to_type_map(self) -> Dict[str, str]:
        return {column.name: column.sql_type for column in self}

    def __contains__(self, name: object) -> bool:
        return name in self._columns

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns.values())

    def __len__(self) -> int:
        return len(self._columns)

    def __bool__(self) -> bool:
        return bool(self._columns)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ColumnSet):
            return NotImplemented
        return list(self._columns.items()) == list(other._columns.items())

    def __repr__(self) -> str:
        return f"ColumnSet({self.names()!r})"


def combine(primary: ColumnSet, secondary: ColumnSet) -> ColumnSet:
    """Union of two sets by name; ``primary`` wins and comes first."""
    result = ColumnSet(primary)
    for column in secondary:
        if not result.contains(column.name):
            result.add(column)
    return result


def not_in_other_set(reference: ColumnSet, comparand: ColumnSet) -> ColumnSet:
    """Columns of ``reference`` whose name does not occur in ``comparand``."""
    return ColumnSet(column for column in reference if not comparand.contains(column.name))


def different_column_types(a: ColumnSet, b: ColumnSet) -> ColumnSet:
    """Columns present in both sets whose normalized types differ.

    The returned columns carry the definition from ``a``.
    """
    result = ColumnSet()
    for column in a:
        other = b.get(column.name)
        if other is not None and other.normalized_type != column.normalized_type:
            result.add(column)
    return result
