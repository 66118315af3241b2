"""
Factories for wiring audit managers and stores.

Nothing here caches instances: every call builds new objects, and the
host decides how long they live.
"""

from pathlib import Path
from typing import Any, Iterable

from fastaudit.audit.manager import AuditManager
from fastaudit.audit.masking import DataMasker
from fastaudit.audit.model import AuditPolicy
from fastaudit.core.config import AuditConfig
from fastaudit.ports.telemetry import Logger, MetricsRegistry
from fastaudit.stores.base import AuditStore
from fastaudit.stores.database import DatabaseAuditStore, DatabaseStoreConfig
from fastaudit.stores.file import FileAuditStore, FileStoreConfig
from fastaudit.stores.memory import InMemoryAuditStore
from fastaudit.telemetry import InMemoryMetrics, StandardLogger


def create_file_store(
    config: FileStoreConfig | str | Path,
    policy: AuditPolicy | None = None,
) -> FileAuditStore:
    """
    Create a JSON-lines file store.

    A bare path takes its compression setting from ``policy``.
    """
    if not isinstance(config, FileStoreConfig):
        config = FileStoreConfig(
            file_path=Path(config),
            compression=policy.compression if policy is not None else False,
        )
    return FileAuditStore(config)


def create_database_store(config: DatabaseStoreConfig | str) -> DatabaseAuditStore:
    """Create a database store from a config or a database URL."""
    if isinstance(config, str):
        config = DatabaseStoreConfig(url=config)
    return DatabaseAuditStore(config)


def create_store(store_type: str, target: str | Path | None = None, **kwargs: Any) -> AuditStore:
    """
    Create a store by type name.

    Args:
        store_type: "file", "database" or "memory"
        target: File path (file) or database URL (database)
        **kwargs: Extra config fields for the store

    Returns:
        AuditStore instance
    """
    if store_type == "file":
        if target is None:
            raise ValueError("A file store needs a file path")
        return create_file_store(FileStoreConfig(file_path=Path(target), **kwargs))
    if store_type == "database":
        if target is None:
            raise ValueError("A database store needs a database URL")
        return create_database_store(DatabaseStoreConfig(url=str(target), **kwargs))
    if store_type == "memory":
        return InMemoryAuditStore(**kwargs)
    raise ValueError(f"Unknown audit store type: {store_type}")


def stores_from_config(config: AuditConfig) -> list[AuditStore]:
    """Build the stores enabled in ``config``, file store first."""
    stores: list[AuditStore] = []
    if config.file_store.enabled:
        stores.append(create_file_store(config.file_store.to_store_config(config.policy)))
    if config.database.enabled:
        stores.append(create_database_store(config.database.to_store_config()))
    return stores


def create_audit_manager(
    config: AuditConfig | None = None,
    *,
    logger: Logger | None = None,
    metrics: MetricsRegistry | None = None,
    stores: Iterable[AuditStore] | None = None,
    masker: DataMasker | None = None,
) -> AuditManager:
    """
    Create an audit manager from configuration.

    Stores enabled in ``config`` are registered first, then any extra
    ``stores``. Alert rules from ``config`` are registered too. Without
    ``logger`` or ``metrics`` a ``StandardLogger`` and ``InMemoryMetrics``
    are used.

    Call ``await manager.initialize()`` before logging to verify the
    stores.
    """
    config = config or AuditConfig()
    registered = stores_from_config(config) + list(stores or ())
    return AuditManager(
        logger or StandardLogger("fastaudit"),
        metrics or InMemoryMetrics(),
        config.policy,
        masker=masker,
        stores=registered,
        alert_rules=config.alert_rules,
    )


def create_file_audit_manager(
    path: str | Path,
    *,
    logger: Logger | None = None,
    metrics: MetricsRegistry | None = None,
    policy: AuditPolicy | None = None,
    **file_options: Any,
) -> AuditManager:
    """Create a manager writing to a single JSON-lines file."""
    policy = policy or AuditPolicy()
    file_options.setdefault("compression", policy.compression)
    store = create_file_store(FileStoreConfig(file_path=Path(path), **file_options))
    return AuditManager(
        logger or StandardLogger("fastaudit"),
        metrics or InMemoryMetrics(),
        policy,
        stores=[store],
    )


def create_database_audit_manager(
    url: str,
    *,
    logger: Logger | None = None,
    metrics: MetricsRegistry | None = None,
    policy: AuditPolicy | None = None,
    **database_options: Any,
) -> AuditManager:
    """Create a manager writing to the ``audit_logs`` table at ``url``."""
    store = create_database_store(DatabaseStoreConfig(url=url, **database_options))
    return AuditManager(
        logger or StandardLogger("fastaudit"),
        metrics or InMemoryMetrics(),
        policy,
        stores=[store],
    )
