"""
fastaudit configuration management.

Configuration lives in a YAML file:

    fastaudit:
      policy:
        min_severity: MEDIUM
        batch_size: 50
        flush_interval: 2.0
      stores:
        file:
          path: .fastaudit/audit.log
          rotation_policy: daily
          compression: true
        database:
          url: sqlite:///.fastaudit/audit.db
          create_tables: true
      alert_rules:
        - name: failed-logins
          level: WARNING
          message_template: "Failed login for {{userId}}"
          filter:
            event_types: [USER_LOGIN]
            success: false
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fastaudit.audit.model import AuditAlertRule, AuditPolicy
from fastaudit.stores.database import DEFAULT_TABLE_NAME, DatabaseStoreConfig
from fastaudit.stores.file import DEFAULT_MAX_FILE_SIZE, FileStoreConfig, RotationPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(".fastaudit") / "config.yaml"


@dataclass
class FileStoreSettings:
    """File store section. The store is enabled when ``path`` is set."""

    path: str | None = None
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    rotation_policy: str = RotationPolicy.SIZE.value  # size, daily, weekly, monthly
    compression: bool | None = None  # None inherits policy.compression
    backup_count: int = 5
    name: str = "file"

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    def to_store_config(self, policy: AuditPolicy | None = None) -> FileStoreConfig:
        compression = self.compression
        if compression is None:
            compression = policy.compression if policy is not None else False
        return FileStoreConfig(
            file_path=Path(self.path or ""),
            max_file_size=self.max_file_size,
            rotation_policy=RotationPolicy(self.rotation_policy.lower()),
            compression=compression,
            backup_count=self.backup_count,
            name=self.name,
        )


@dataclass
class DatabaseSettings:
    """Database store section. The store is enabled when ``url`` is set."""

    url: str | None = None
    table_name: str = DEFAULT_TABLE_NAME
    create_tables: bool = False
    echo: bool = False
    name: str = "database"

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def to_store_config(self) -> DatabaseStoreConfig:
        return DatabaseStoreConfig(
            url=self.url or "",
            table_name=self.table_name,
            create_tables=self.create_tables,
            echo=self.echo,
            name=self.name,
        )


@dataclass
class AuditConfig:
    """
    Complete fastaudit configuration.

    Loaded from .fastaudit/config.yaml or environment variables.
    """

    version: str = "1"
    policy: AuditPolicy = field(default_factory=AuditPolicy)
    file_store: FileStoreSettings = field(default_factory=FileStoreSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    alert_rules: list[AuditAlertRule] = field(default_factory=list)

    @classmethod
    def from_file(cls, path: Path) -> "AuditConfig":
        """Load configuration from YAML file. A missing file yields defaults."""
        path = Path(path)
        if not path.exists():
            logger.debug(f"No audit config at {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("fastaudit", data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditConfig":
        """Create config from dictionary."""
        config = cls()

        if "version" in data:
            config.version = str(data["version"])

        if "policy" in data:
            config.policy = AuditPolicy.from_dict(data["policy"] or {})

        stores = data.get("stores") or {}
        if "file" in stores:
            s = stores["file"] or {}
            config.file_store = FileStoreSettings(
                path=s.get("path"),
                max_file_size=s.get("max_file_size", DEFAULT_MAX_FILE_SIZE),
                rotation_policy=s.get("rotation_policy", RotationPolicy.SIZE.value),
                compression=s.get("compression"),
                backup_count=s.get("backup_count", 5),
                name=s.get("name", "file"),
            )

        if "database" in stores:
            d = stores["database"] or {}
            config.database = DatabaseSettings(
                url=d.get("url"),
                table_name=d.get("table_name", DEFAULT_TABLE_NAME),
                create_tables=d.get("create_tables", False),
                echo=d.get("echo", False),
                name=d.get("name", "database"),
            )

        config.alert_rules = [
            AuditAlertRule.from_dict(rule) for rule in data.get("alert_rules") or []
        ]

        return config

    @classmethod
    def from_env(cls) -> "AuditConfig":
        """
        Create config from environment variables.

        FASTAUDIT_CONFIG names a YAML file to start from;
        FASTAUDIT_LOG_PATH and FASTAUDIT_DATABASE_URL override the store
        locations.
        """
        config_path = os.getenv("FASTAUDIT_CONFIG")
        config = cls.from_file(Path(config_path)) if config_path else cls()

        log_path = os.getenv("FASTAUDIT_LOG_PATH")
        if log_path:
            config.file_store.path = log_path

        database_url = os.getenv("FASTAUDIT_DATABASE_URL")
        if database_url:
            config.database.url = database_url

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result: dict[str, Any] = {
            "fastaudit": {
                "version": self.version,
                "policy": self.policy.to_dict(),
            }
        }

        stores: dict[str, Any] = {}
        if self.file_store.enabled:
            stores["file"] = {
                "path": self.file_store.path,
                "max_file_size": self.file_store.max_file_size,
                "rotation_policy": self.file_store.rotation_policy,
                "compression": self.file_store.compression,
                "backup_count": self.file_store.backup_count,
                "name": self.file_store.name,
            }
        if self.database.enabled:
            stores["database"] = {
                "url": self.database.url,
                "table_name": self.database.table_name,
                "create_tables": self.database.create_tables,
                "echo": self.database.echo,
                "name": self.database.name,
            }
        if stores:
            result["fastaudit"]["stores"] = stores

        if self.alert_rules:
            result["fastaudit"]["alert_rules"] = [rule.to_dict() for rule in self.alert_rules]

        return result

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def load_config(path: Path | None = None) -> AuditConfig:
    """
    Load fastaudit configuration.

    Reads ``path`` or .fastaudit/config.yaml in the current directory and
    falls back to defaults if not found. Every call returns a fresh
    config; nothing is cached.
    """
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_PATH
    return AuditConfig.from_file(path)
