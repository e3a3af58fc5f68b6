"""
auditsync: audit tables and triggers for MySQL data tables.

auditsync keeps an audit table and a set of INSERT/UPDATE/DELETE triggers in
step with every audited data table while the data schema evolves.
"""

__version__ = "0.1.0"
__author__ = "auditsync Contributors"

from .config import AuditConfig
from .exceptions import (
    AuditSyncError,
    CatalogReadError,
    ConfigurationError,
    DatabaseError,
    DdlExecutionError,
    LockTimeoutError,
)

__all__ = [
    "__version__",
    "AuditConfig",
    "AuditSyncError",
    "CatalogReadError",
    "ConfigurationError",
    "DatabaseError",
    "DdlExecutionError",
    "LockTimeoutError",
]
