"""
Telemetry adapters for the fastaudit ports.

Provides:
- StandardLogger: structured ``Logger`` on top of stdlib logging
- InMemoryMetrics: process-local counters (tests, embedded hosts)
- OpenTelemetryMetrics: counters backed by the OpenTelemetry metrics API

OpenTelemetry is an optional dependency. It is imported lazily so hosts
that never build an ``OpenTelemetryMetrics`` don't need it installed:

    pip install 'fastaudit[telemetry]'
"""

import logging
import threading
from typing import Any

from fastaudit.ports.telemetry import Counter, MetricsRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# LOGGING
# =============================================================================


class StandardLogger:
    """
    ``Logger`` implementation that forwards to a stdlib logger.

    Structured context is rendered after the message as ``key=value``
    pairs and also attached to the record as ``extra["context"]`` so
    structured handlers can pick it up.
    """

    def __init__(
        self,
        name: str = "fastaudit",
        base_context: dict[str, Any] | None = None,
    ):
        self._logger = logging.getLogger(name)
        self._base_context = dict(base_context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def with_context(self, **context: Any) -> "StandardLogger":
        """Create a child logger with additional context."""
        return StandardLogger(self._logger.name, {**self._base_context, **context})

    def _log(
        self,
        level: int,
        message: str,
        context: dict[str, Any],
        exc: BaseException | None = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self._base_context, **context}
        text = message
        if merged:
            rendered = " ".join(f"{key}={value!r}" for key, value in merged.items())
            text = f"{message} [{rendered}]"
        self._logger.log(level, text, exc_info=exc, extra={"context": merged})

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(logging.ERROR, message, context)

    def critical(self, message: str, **context: Any) -> None:
        self._log(logging.CRITICAL, message, context)

    def exception(self, message: str, exc: BaseException, **context: Any) -> None:
        self._log(logging.ERROR, message, context, exc=exc)


# =============================================================================
# IN-MEMORY METRICS
# =============================================================================


class InMemoryCounter(Counter):
    """Thread-safe counter that keeps its total in process memory."""

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._value = 0.0
        self._labelled: dict[tuple[tuple[str, str], ...], float] = {}
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        return self._value

    def inc(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        if value < 0:
            raise ValueError(f"Counter {self.name} can only increase, got {value}")
        with self._lock:
            self._value += value
            if labels:
                key = tuple(sorted(labels.items()))
                self._labelled[key] = self._labelled.get(key, 0.0) + value

    def labelled_value(self, **labels: str) -> float:
        """Total recorded for an exact label set."""
        return self._labelled.get(tuple(sorted(labels.items())), 0.0)


class InMemoryMetrics(MetricsRegistry):
    """
    Metrics registry that keeps counters in memory.

    Asking twice for the same name returns the same counter.
    """

    def __init__(self) -> None:
        self._counters: dict[str, InMemoryCounter] = {}
        self._lock = threading.Lock()

    def counter(
        self,
        name: str,
        description: str,
        label_names: list[str] | None = None,
    ) -> InMemoryCounter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = InMemoryCounter(name, description)
            return self._counters[name]

    def get(self, name: str) -> InMemoryCounter | None:
        """Look up a counter that has already been created."""
        return self._counters.get(name)

    def value(self, name: str) -> float:
        """Current value of a counter, 0 if it was never created."""
        counter = self._counters.get(name)
        return counter.value if counter else 0.0

    def snapshot(self) -> dict[str, float]:
        """All counter totals keyed by name."""
        return {name: counter.value for name, counter in self._counters.items()}


# =============================================================================
# OPENTELEMETRY METRICS
# =============================================================================


class OpenTelemetryCounter(Counter):
    """Counter that records into an OpenTelemetry ``Counter`` instrument."""

    def __init__(self, instrument: Any):
        self._instrument = instrument

    def inc(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        self._instrument.add(value, attributes=labels or {})


class OpenTelemetryMetrics(MetricsRegistry):
    """
    Metrics registry backed by the OpenTelemetry metrics API.

    Uses the given ``meter_provider`` or, when omitted, the globally
    configured one.

    Example:
        from opentelemetry.sdk.metrics import MeterProvider

        metrics = OpenTelemetryMetrics(meter_provider=MeterProvider())
        manager = AuditManager(StandardLogger(), metrics)
    """

    def __init__(
        self,
        meter_name: str = "fastaudit",
        meter_provider: Any | None = None,
    ):
        from opentelemetry import metrics

        from fastaudit import __version__

        if meter_provider is None:
            self._meter = metrics.get_meter(meter_name, __version__)
        else:
            self._meter = meter_provider.get_meter(meter_name, __version__)
        self._counters: dict[str, OpenTelemetryCounter] = {}
        self._lock = threading.Lock()
        logger.debug(f"OpenTelemetry metrics registry created: {meter_name}")

    def counter(
        self,
        name: str,
        description: str,
        label_names: list[str] | None = None,
    ) -> OpenTelemetryCounter:
        with self._lock:
            if name not in self._counters:
                instrument = self._meter.create_counter(name, description=description)
                self._counters[name] = OpenTelemetryCounter(instrument)
            return self._counters[name]
