"""
Audit store adapters.

Provides:
- AuditStore: contract every store implements
- FileAuditStore: JSON-lines files with rotation
- DatabaseAuditStore: SQLAlchemy-backed ``audit_logs`` table
- InMemoryAuditStore: in-process list
"""

from fastaudit.stores.base import (
    DEFAULT_QUERY_LIMIT,
    EXPORT_LIMIT,
    AuditStore,
    apply_filter,
    matches_filter,
)
from fastaudit.stores.database import DatabaseAuditStore, DatabaseStoreConfig
from fastaudit.stores.export import ExportFormat, serialize_events
from fastaudit.stores.file import FileAuditStore, FileStoreConfig, RotationPolicy
from fastaudit.stores.memory import InMemoryAuditStore

__all__ = [
    "DEFAULT_QUERY_LIMIT",
    "EXPORT_LIMIT",
    "AuditStore",
    "DatabaseAuditStore",
    "DatabaseStoreConfig",
    "ExportFormat",
    "FileAuditStore",
    "FileStoreConfig",
    "InMemoryAuditStore",
    "RotationPolicy",
    "apply_filter",
    "matches_filter",
    "serialize_events",
]
