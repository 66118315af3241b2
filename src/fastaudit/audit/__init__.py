"""
Audit domain: events, policy, filters, masking and alerting.

The manager, factories and instrumentation live in
``fastaudit.audit.manager``, ``fastaudit.audit.factory`` and
``fastaudit.audit.instrument``; they are re-exported from ``fastaudit``.
"""

from fastaudit.audit.alerts import AlertEngine
from fastaudit.audit.errors import (
    AuditError,
    AuditStoreError,
    ManagerDestroyedError,
    NoStoresAvailableError,
    UnsupportedExportFormatError,
)
from fastaudit.audit.masking import DataMasker
from fastaudit.audit.model import (
    AlertLevel,
    AuditAlert,
    AuditAlertRule,
    AuditCategory,
    AuditEvent,
    AuditFilter,
    AuditPolicy,
    AuditSeverity,
)

__all__ = [
    "AlertEngine",
    "AlertLevel",
    "AuditAlert",
    "AuditAlertRule",
    "AuditCategory",
    "AuditError",
    "AuditEvent",
    "AuditFilter",
    "AuditPolicy",
    "AuditSeverity",
    "AuditStoreError",
    "DataMasker",
    "ManagerDestroyedError",
    "NoStoresAvailableError",
    "UnsupportedExportFormatError",
]
