"""
Schema management package for auditsync.

This package provides:
- Column and table metadata models
- Audit table DDL synthesis
- Audit trigger synthesis and lifecycle
- Schema reconciliation and the read-only diff report

Only the pure models are exported here; import the reconciler, operations,
triggers and diff modules directly.
"""

from .columns import Column, ColumnSet, combine, different_column_types, not_in_other_set
from .metadata import TableMetadata, compare_options

__all__ = [
    "Column",
    "ColumnSet",
    "combine",
    "different_column_types",
    "not_in_other_set",
    "TableMetadata",
    "compare_options",
]
