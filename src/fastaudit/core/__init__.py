"""fastaudit core: configuration."""

from fastaudit.core.config import AuditConfig, load_config

__all__ = ["AuditConfig", "load_config"]
