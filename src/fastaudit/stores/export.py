"""
Export codecs shared by every audit store.

Supported formats:
- json: pretty-printed array of wire dictionaries
- csv: fixed column set, one row per event
- xml: ``<auditEvents>`` document with CDATA-wrapped field values
"""

import csv
import io
import json
from enum import Enum
from typing import Any, Sequence

from fastaudit.audit.errors import UnsupportedExportFormatError
from fastaudit.audit.model import AuditEvent


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSON = "json"
    CSV = "csv"
    XML = "xml"

    @classmethod
    def parse(cls, value: "ExportFormat | str") -> "ExportFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedExportFormatError(str(value)) from None


CSV_COLUMNS: tuple[str, ...] = (
    "id",
    "timestamp",
    "eventType",
    "category",
    "severity",
    "operation",
    "resource",
    "resourceId",
    "userId",
    "userAgent",
    "ipAddress",
    "sessionId",
    "success",
    "errorCode",
    "errorMessage",
    "service",
    "requestId",
    "traceId",
    "retentionPolicy",
    "classification",
)


def _csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def to_json(events: Sequence[AuditEvent]) -> str:
    return json.dumps([e.to_dict() for e in events], indent=2, ensure_ascii=False)


def to_csv(events: Sequence[AuditEvent]) -> str:
    """Render events as CSV. No events produce an empty string."""
    if not events:
        return ""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for event in events:
        row = event.to_dict()
        writer.writerow([_csv_value(row.get(column)) for column in CSV_COLUMNS])
    return buffer.getvalue().rstrip("\n")


def _cdata(text: str) -> str:
    # "]]>" cannot appear inside a CDATA section, so split it across two
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def to_xml(events: Sequence[AuditEvent]) -> str:
    lines = ['<?xml version="1.0" encoding="UTF-8"?>', "<auditEvents>"]
    for event in events:
        lines.append("  <event>")
        for key, value in event.to_dict().items():
            if isinstance(value, (dict, list)):
                text = json.dumps(value, ensure_ascii=False)
            elif isinstance(value, bool):
                text = "true" if value else "false"
            else:
                text = str(value)
            lines.append(f"    <{key}>{_cdata(text)}</{key}>")
        lines.append("  </event>")
    lines.append("</auditEvents>")
    return "\n".join(lines)


def serialize_events(events: Sequence[AuditEvent], format: ExportFormat | str) -> str:
    """
    Serialize events in the requested format.

    Raises:
        UnsupportedExportFormatError: If ``format`` is not json, csv or xml.
    """
    fmt = ExportFormat.parse(format)
    if fmt is ExportFormat.JSON:
        return to_json(events)
    if fmt is ExportFormat.CSV:
        return to_csv(events)
    return to_xml(events)
