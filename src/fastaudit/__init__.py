"""
fastaudit - embeddable audit-event pipeline.

Collects structured audit events, filters and masks them according to a
policy, evaluates real-time alert rules, and persists batches to one or
more pluggable stores.
"""

__version__ = "0.1.0"

from fastaudit.audit import (
    AlertLevel,
    AuditAlert,
    AuditAlertRule,
    AuditCategory,
    AuditError,
    AuditEvent,
    AuditFilter,
    AuditPolicy,
    AuditSeverity,
    AuditStoreError,
    DataMasker,
    ManagerDestroyedError,
    NoStoresAvailableError,
    UnsupportedExportFormatError,
)
from fastaudit.stores import (
    AuditStore,
    DatabaseAuditStore,
    DatabaseStoreConfig,
    ExportFormat,
    FileAuditStore,
    FileStoreConfig,
    InMemoryAuditStore,
    RotationPolicy,
)
from fastaudit.audit.manager import AuditManager
from fastaudit.audit.instrument import audit_operation, audited
from fastaudit.core.config import AuditConfig, load_config
from fastaudit.audit.factory import (
    create_audit_manager,
    create_database_audit_manager,
    create_database_store,
    create_file_audit_manager,
    create_file_store,
)
from fastaudit.telemetry import InMemoryMetrics, OpenTelemetryMetrics, StandardLogger

__all__ = [
    "__version__",
    "AlertLevel",
    "AuditAlert",
    "AuditAlertRule",
    "AuditCategory",
    "AuditConfig",
    "AuditError",
    "AuditEvent",
    "AuditFilter",
    "AuditManager",
    "AuditPolicy",
    "AuditSeverity",
    "AuditStore",
    "AuditStoreError",
    "DataMasker",
    "DatabaseAuditStore",
    "DatabaseStoreConfig",
    "ExportFormat",
    "FileAuditStore",
    "FileStoreConfig",
    "InMemoryAuditStore",
    "InMemoryMetrics",
    "ManagerDestroyedError",
    "NoStoresAvailableError",
    "OpenTelemetryMetrics",
    "RotationPolicy",
    "StandardLogger",
    "UnsupportedExportFormatError",
    "audit_operation",
    "audited",
    "create_audit_manager",
    "create_database_audit_manager",
    "create_database_store",
    "create_file_audit_manager",
    "create_file_store",
    "load_config",
]
