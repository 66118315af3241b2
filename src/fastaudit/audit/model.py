"""
Audit domain models.

Pure domain types for the audit pipeline: events, the processing policy,
query filters and alerting.

Architecture Rules:
- No database driver imports
- No logging initialization
- No file I/O on import
- Only stdlib + typing allowed
- Events are immutable (frozen dataclasses)

Python attributes are snake_case. ``to_dict`` produces the camelCase wire
shape used by the JSON-lines files and the exports; ``from_dict`` accepts
either spelling.
"""

import secrets
import string
import time
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def generate_event_id() -> str:
    """Generate an event id of the form ``audit_<epochMillis>_<random>``."""
    return f"audit_{int(time.time() * 1000)}_{_random_suffix()}"


def generate_alert_id() -> str:
    """Generate an alert id of the form ``alert_<epochMillis>_<random>``."""
    return f"alert_{int(time.time() * 1000)}_{_random_suffix()}"


def ensure_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: datetime | str | int | float) -> datetime:
    """Parse an ISO-8601 string, epoch seconds or datetime into UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 in UTC."""
    return ensure_utc(value).isoformat()


def format_timestamp_z(value: datetime) -> str:
    """Render a timestamp as ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    moment = ensure_utc(value)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


# =============================================================================
# ENUMS
# =============================================================================


class AuditCategory(str, Enum):
    """High-level audit categories for filtering and routing."""

    SECURITY = "SECURITY"
    DATA = "DATA"
    SYSTEM = "SYSTEM"
    BUSINESS = "BUSINESS"


class AuditSeverity(str, Enum):
    """Audit event severity levels, ordered LOW < MEDIUM < HIGH < CRITICAL."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AuditSeverity.LOW: 0,
    AuditSeverity.MEDIUM: 1,
    AuditSeverity.HIGH: 2,
    AuditSeverity.CRITICAL: 3,
}


class AlertLevel(str, Enum):
    """Alert levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _coerce_enum(enum_cls: type[Enum], value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        return enum_cls(value.upper())
    raise ValueError(f"Invalid {enum_cls.__name__}: {value!r}")


def _coerce_enum_set(enum_cls: type[Enum], values: Any) -> set | None:
    if values is None:
        return None
    if isinstance(values, (str, enum_cls)):
        values = [values]
    return {_coerce_enum(enum_cls, v) for v in values}


# =============================================================================
# AUDIT EVENT
# =============================================================================

# (attribute, wire name) in wire order
_EVENT_FIELDS: tuple[tuple[str, str], ...] = (
    ("id", "id"),
    ("timestamp", "timestamp"),
    ("event_type", "eventType"),
    ("category", "category"),
    ("severity", "severity"),
    ("operation", "operation"),
    ("resource", "resource"),
    ("resource_id", "resourceId"),
    ("user_id", "userId"),
    ("user_agent", "userAgent"),
    ("ip_address", "ipAddress"),
    ("session_id", "sessionId"),
    ("success", "success"),
    ("error_code", "errorCode"),
    ("error_message", "errorMessage"),
    ("metadata", "metadata"),
    ("service", "service"),
    ("request_id", "requestId"),
    ("trace_id", "traceId"),
    ("retention_policy", "retentionPolicy"),
    ("classification", "classification"),
)

WIRE_TO_ATTR: dict[str, str] = {wire: attr for attr, wire in _EVENT_FIELDS}
ATTR_TO_WIRE: dict[str, str] = {attr: wire for attr, wire in _EVENT_FIELDS}


def normalize_event_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase wire keys to attribute names, leaving others untouched."""
    return {WIRE_TO_ATTR.get(key, key): value for key, value in data.items()}


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """
    Immutable audit event.

    Every event accepted by the manager carries a unique ``id`` and a UTC
    ``timestamp``. Use ``AuditEvent.create`` to build one from partial
    fields; it fills in the defaults for anything missing.

    Example:
        event = AuditEvent.create(
            event_type="USER_LOGIN",
            category=AuditCategory.SECURITY,
            severity=AuditSeverity.MEDIUM,
            operation="login",
            resource="session",
            user_id="user-1",
        )
    """

    id: str
    timestamp: datetime
    event_type: str
    category: AuditCategory
    severity: AuditSeverity
    operation: str
    resource: str
    resource_id: str | None = None
    user_id: str | None = None
    user_agent: str | None = None
    ip_address: str | None = None
    session_id: str | None = None
    success: bool = True
    error_code: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = None
    service: str = "unknown"
    request_id: str | None = None
    trace_id: str | None = None
    retention_policy: str | None = None
    classification: str | None = None

    @classmethod
    def create(cls, **values: Any) -> "AuditEvent":
        """
        Build an event from partial fields, applying enrichment defaults.

        Missing ``id`` and ``timestamp`` are generated. Enum fields accept
        their string values and timestamps accept ISO-8601 strings.

        Raises:
            TypeError: If an unknown field name is given.
            ValueError: If an enum value is invalid.
        """
        unknown = set(values) - ATTR_TO_WIRE.keys()
        if unknown:
            raise TypeError(f"Unknown audit event field(s): {', '.join(sorted(unknown))}")

        data = {key: value for key, value in values.items() if value is not None}
        timestamp = data.get("timestamp")
        metadata = data.get("metadata")

        return cls(
            id=data.get("id") or generate_event_id(),
            timestamp=parse_timestamp(timestamp) if timestamp is not None else _utc_now(),
            event_type=data.get("event_type") or "UNKNOWN",
            category=_coerce_enum(AuditCategory, data.get("category", AuditCategory.SYSTEM)),
            severity=_coerce_enum(AuditSeverity, data.get("severity", AuditSeverity.LOW)),
            operation=data.get("operation") or "UNKNOWN",
            resource=data.get("resource") or "unknown",
            resource_id=data.get("resource_id"),
            user_id=data.get("user_id"),
            user_agent=data.get("user_agent"),
            ip_address=data.get("ip_address"),
            session_id=data.get("session_id"),
            success=bool(data.get("success", True)),
            error_code=data.get("error_code"),
            error_message=data.get("error_message"),
            metadata=dict(metadata) if metadata is not None else None,
            service=data.get("service") or "unknown",
            request_id=data.get("request_id"),
            trace_id=data.get("trace_id"),
            retention_policy=data.get("retention_policy"),
            classification=data.get("classification"),
        )

    def with_changes(self, **changes: Any) -> "AuditEvent":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to the camelCase wire dictionary.

        ``None`` fields are omitted. The output is JSON-safe as long as
        ``metadata`` is.
        """
        result: dict[str, Any] = {}
        for attr, wire in _EVENT_FIELDS:
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = format_timestamp(value)
            result[wire] = value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditEvent":
        """Create from a wire or snake_case dictionary. Unknown keys are ignored."""
        normalized = normalize_event_keys(data)
        return cls.create(
            **{key: value for key, value in normalized.items() if key in ATTR_TO_WIRE}
        )

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


# =============================================================================
# POLICY
# =============================================================================


@dataclass(slots=True)
class AuditPolicy:
    """
    Processing policy applied by the audit manager.

    The manager holds exactly one current policy. ``merged`` returns a new
    policy with some fields replaced; enum fields accept strings.
    """

    enabled: bool = True
    categories: set[AuditCategory] = field(default_factory=lambda: set(AuditCategory))
    min_severity: AuditSeverity = AuditSeverity.LOW
    retention_days: int = 90
    real_time_alerting: bool = True
    async_processing: bool = True
    batch_size: int = 100
    flush_interval: float = 5.0  # seconds
    data_masking: bool = True
    compression: bool = False

    def __post_init__(self) -> None:
        self.categories = _coerce_enum_set(AuditCategory, self.categories) or set()
        self.min_severity = _coerce_enum(AuditSeverity, self.min_severity)
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be positive, got {self.flush_interval}")
        if self.retention_days < 0:
            raise ValueError(f"retention_days must not be negative, got {self.retention_days}")

    def merged(self, **changes: Any) -> "AuditPolicy":
        """Return a new policy with ``changes`` applied (shallow merge)."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise TypeError(f"Unknown audit policy field(s): {', '.join(sorted(unknown))}")
        return replace(self.copy(), **changes)

    def copy(self) -> "AuditPolicy":
        """Defensive copy."""
        return replace(self, categories=set(self.categories))

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "categories": sorted(c.value for c in self.categories),
            "min_severity": self.min_severity.value,
            "retention_days": self.retention_days,
            "real_time_alerting": self.real_time_alerting,
            "async_processing": self.async_processing,
            "batch_size": self.batch_size,
            "flush_interval": self.flush_interval,
            "data_masking": self.data_masking,
            "compression": self.compression,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditPolicy":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


# =============================================================================
# FILTER
# =============================================================================


@dataclass(slots=True)
class AuditFilter:
    """
    Query filter shared by query, count, export and purge.

    Empty collections behave like unset ones. ``limit=None`` means the
    store default (100).
    """

    start_date: datetime | None = None
    end_date: datetime | None = None
    user_ids: list[str] | None = None
    event_types: list[str] | None = None
    categories: set[AuditCategory] | None = None
    severities: set[AuditSeverity] | None = None
    services: list[str] | None = None
    resources: list[str] | None = None
    success: bool | None = None
    search: str | None = None
    offset: int = 0
    limit: int | None = None
    order_by: str = "timestamp"
    order_direction: str = "DESC"

    def __post_init__(self) -> None:
        if self.start_date is not None:
            self.start_date = parse_timestamp(self.start_date)
        if self.end_date is not None:
            self.end_date = parse_timestamp(self.end_date)
        self.categories = _coerce_enum_set(AuditCategory, self.categories)
        self.severities = _coerce_enum_set(AuditSeverity, self.severities)
        self.order_by = WIRE_TO_ATTR.get(self.order_by, self.order_by)
        self.order_direction = self.order_direction.upper()
        if self.order_direction not in ("ASC", "DESC"):
            raise ValueError(f"order_direction must be ASC or DESC, got {self.order_direction}")
        if self.offset < 0:
            raise ValueError(f"offset must not be negative, got {self.offset}")

    @property
    def descending(self) -> bool:
        return self.order_direction == "DESC"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditFilter":
        """Create from a snake_case or camelCase dictionary."""
        aliases = {
            "startDate": "start_date",
            "endDate": "end_date",
            "userIds": "user_ids",
            "eventTypes": "event_types",
            "orderBy": "order_by",
            "orderDirection": "order_direction",
        }
        known = {f.name for f in fields(cls)}
        values = {aliases.get(key, key): value for key, value in data.items()}
        return cls(**{key: value for key, value in values.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, datetime):
                value = format_timestamp(value)
            elif isinstance(value, set):
                value = sorted(v.value for v in value)
            result[f.name] = value
        return result


# =============================================================================
# ALERTING
# =============================================================================


@dataclass(slots=True)
class AuditAlertRule:
    """
    Real-time alert rule.

    Only the ``categories``, ``severities``, ``services``, ``event_types``
    and ``success`` dimensions of ``filter`` are consulted. The message
    template supports ``{{eventType}}``, ``{{resource}}``, ``{{userId}}``,
    ``{{service}}`` and ``{{timestamp}}``.

    ``time_window``, ``threshold`` and ``suppression_time`` are carried for
    configuration compatibility and are not evaluated yet.
    """

    name: str
    filter: AuditFilter = field(default_factory=AuditFilter)
    level: AlertLevel = AlertLevel.WARNING
    message_template: str = "Audit alert: {{eventType}} on {{resource}}"
    enabled: bool = True
    time_window: float | None = None  # seconds
    threshold: int | None = None
    suppression_time: float | None = None  # seconds

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Alert rule name is required")
        self.level = _coerce_enum(AlertLevel, self.level)
        if isinstance(self.filter, Mapping):
            self.filter = AuditFilter.from_dict(self.filter)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "enabled": self.enabled,
            "level": self.level.value,
            "message_template": self.message_template,
            "filter": self.filter.to_dict(),
        }
        if self.time_window is not None:
            result["time_window"] = self.time_window
        if self.threshold is not None:
            result["threshold"] = self.threshold
        if self.suppression_time is not None:
            result["suppression_time"] = self.suppression_time
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditAlertRule":
        return cls(
            name=data["name"],
            filter=AuditFilter.from_dict(data.get("filter") or {}),
            level=data.get("level", AlertLevel.WARNING),
            message_template=data.get(
                "message_template", "Audit alert: {{eventType}} on {{resource}}"
            ),
            enabled=data.get("enabled", True),
            time_window=data.get("time_window"),
            threshold=data.get("threshold"),
            suppression_time=data.get("suppression_time"),
        )


@dataclass(slots=True)
class AuditAlert:
    """An alert fired by a rule. Only ``acknowledged`` changes after creation."""

    rule_name: str
    event: AuditEvent
    level: AlertLevel
    message: str
    id: str = field(default_factory=generate_alert_id)
    alert_time: datetime = field(default_factory=_utc_now)
    acknowledged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ruleName": self.rule_name,
            "event": self.event.to_dict(),
            "alertTime": format_timestamp(self.alert_time),
            "level": self.level.value,
            "message": self.message,
            "acknowledged": self.acknowledged,
        }
