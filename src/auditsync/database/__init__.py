"""
Database integration package for auditsync.

This package provides:
- Async MySQL connection pooling
- Catalog introspection of tables, columns and triggers
"""

from .connection import ConnectionConfig, ConnectionPool
from .introspection import SchemaIntrospector, TriggerInfo

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "SchemaIntrospector",
    "TriggerInfo",
]
