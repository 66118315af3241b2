"""Shared fixtures for the fastaudit test suite."""

from typing import Any

import pytest

from fastaudit.audit.manager import AuditManager
from fastaudit.audit.model import AuditEvent, AuditPolicy
from fastaudit.stores.memory import InMemoryAuditStore
from fastaudit.telemetry import InMemoryMetrics


class RecordingLogger:
    """Logger that collects entries for assertions."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    def _record(
        self,
        level: str,
        message: str,
        exc: BaseException | None = None,
        **context: Any,
    ) -> None:
        self.entries.append(
            {"level": level, "message": message, "exc": exc, "context": context}
        )

    def debug(self, message: str, **context: Any) -> None:
        self._record("debug", message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._record("info", message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._record("warning", message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._record("error", message, **context)

    def exception(self, message: str, exc: BaseException, **context: Any) -> None:
        self._record("error", message, exc=exc, **context)

    def messages(self, level: str | None = None) -> list[str]:
        return [e["message"] for e in self.entries if level is None or e["level"] == level]


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def metrics() -> InMemoryMetrics:
    return InMemoryMetrics()


@pytest.fixture
def memory_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
async def manager(logger, metrics, memory_store):
    """Manager with a memory store and a flush interval long enough to never fire."""
    audit_manager = AuditManager(logger, metrics, AuditPolicy(flush_interval=60))
    audit_manager.add_store(memory_store)
    yield audit_manager
    await audit_manager.destroy()


@pytest.fixture
def make_event():
    """Build events with sensible defaults."""

    def _make(**overrides: Any) -> AuditEvent:
        values: dict[str, Any] = {
            "event_type": "USER_LOGIN",
            "category": "SECURITY",
            "severity": "MEDIUM",
            "operation": "login",
            "resource": "session",
            "user_id": "user-1",
            "service": "auth",
        }
        values.update(overrides)
        return AuditEvent.create(**values)

    return _make
