"""
Telemetry port interfaces.

The audit manager reports through these abstractions instead of a
concrete logging or metrics backend. Hosts may pass any object that
satisfies the ``Logger`` protocol and any ``MetricsRegistry``.

These are pure interfaces - no telemetry SDK imports allowed.
"""

from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Logger(Protocol):
    """
    Protocol for structured logging.

    Context is passed as keyword arguments and attached to the record by
    the implementation.
    """

    def debug(self, message: str, **context: Any) -> None:
        """Log at DEBUG level."""
        ...

    def info(self, message: str, **context: Any) -> None:
        """Log at INFO level."""
        ...

    def warning(self, message: str, **context: Any) -> None:
        """Log at WARNING level."""
        ...

    def error(self, message: str, **context: Any) -> None:
        """Log at ERROR level."""
        ...

    def exception(self, message: str, exc: BaseException, **context: Any) -> None:
        """Log an exception with traceback."""
        ...


class Counter(ABC):
    """
    Abstract base for counter metrics.

    Monotonically increasing value (e.g., events processed).
    """

    @abstractmethod
    def inc(self, value: float = 1.0, labels: dict[str, str] | None = None) -> None:
        """
        Increment the counter.

        Args:
            value: Amount to increment (must be positive).
            labels: Optional metric labels.
        """
        ...


class MetricsRegistry(ABC):
    """
    Abstract base for metrics registration and creation.

    Creates and manages metric instances.
    """

    @abstractmethod
    def counter(
        self,
        name: str,
        description: str,
        label_names: list[str] | None = None,
    ) -> Counter:
        """
        Create or retrieve a counter metric.

        Args:
            name: Metric name.
            description: Human-readable description.
            label_names: Names of labels this metric uses.

        Returns:
            A counter instance.
        """
        ...
