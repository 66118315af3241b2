"""
Port interfaces consumed by fastaudit.

Ports are pure abstractions. Concrete adapters live in
``fastaudit.telemetry`` or are supplied by the embedding host.
"""

from fastaudit.ports.telemetry import Counter, Logger, MetricsRegistry

__all__ = ["Counter", "Logger", "MetricsRegistry"]
