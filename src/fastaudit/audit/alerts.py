"""
Real-time alert evaluation.

The engine owns the rule registry and the list of fired alerts. It is
owned by an ``AuditManager``; the manager adds logging and metrics
around it.
"""

from typing import Iterable

from fastaudit.audit.model import (
    AlertLevel,
    AuditAlert,
    AuditAlertRule,
    AuditEvent,
    format_timestamp_z,
)


def rule_matches(rule: AuditAlertRule, event: AuditEvent) -> bool:
    """Check the populated dimensions of a rule's filter against an event."""
    f = rule.filter
    if f.categories and event.category not in f.categories:
        return False
    if f.severities and event.severity not in f.severities:
        return False
    if f.services and event.service not in f.services:
        return False
    if f.event_types and event.event_type not in f.event_types:
        return False
    if f.success is not None and event.success != f.success:
        return False
    return True


def render_message(template: str, event: AuditEvent) -> str:
    """Substitute ``{{placeholder}}`` values from the event into a template."""
    replacements = {
        "{{eventType}}": event.event_type,
        "{{resource}}": event.resource,
        "{{userId}}": event.user_id or "unknown",
        "{{service}}": event.service,
        "{{timestamp}}": format_timestamp_z(event.timestamp),
    }
    message = template
    for placeholder, value in replacements.items():
        message = message.replace(placeholder, value)
    return message


class AlertEngine:
    """
    Rule registry plus the in-memory, append-only alert list.

    Rules are keyed by name; adding a rule with an existing name replaces
    it. Alerts are kept for the lifetime of the engine.
    """

    def __init__(self, rules: Iterable[AuditAlertRule] = ()):
        self._rules: dict[str, AuditAlertRule] = {}
        self._alerts: list[AuditAlert] = []
        for rule in rules:
            self.add_rule(rule)

    @property
    def rules(self) -> list[AuditAlertRule]:
        return list(self._rules.values())

    def add_rule(self, rule: AuditAlertRule) -> None:
        self._rules[rule.name] = rule

    def remove_rule(self, name: str) -> bool:
        return self._rules.pop(name, None) is not None

    def evaluate(self, event: AuditEvent) -> list[AuditAlert]:
        """Fire an alert for every enabled rule that matches ``event``."""
        fired: list[AuditAlert] = []
        for rule in list(self._rules.values()):
            if not rule.enabled or not rule_matches(rule, event):
                continue
            alert = AuditAlert(
                rule_name=rule.name,
                event=event,
                level=rule.level,
                message=render_message(rule.message_template, event),
            )
            self._alerts.append(alert)
            fired.append(alert)
        return fired

    def get_alerts(
        self,
        *,
        id: str | None = None,
        rule_name: str | None = None,
        level: AlertLevel | str | None = None,
        acknowledged: bool | None = None,
    ) -> list[AuditAlert]:
        """Alerts matching every given criterion, most recent first."""
        if isinstance(level, str):
            level = AlertLevel(level.upper())
        alerts = [
            alert
            for alert in self._alerts
            if (id is None or alert.id == id)
            and (rule_name is None or alert.rule_name == rule_name)
            and (level is None or alert.level == level)
            and (acknowledged is None or alert.acknowledged == acknowledged)
        ]
        # Insertion order breaks ties between alerts fired in the same instant
        indexed = list(enumerate(alerts))
        indexed.sort(key=lambda pair: (pair[1].alert_time, pair[0]), reverse=True)
        return [alert for _, alert in indexed]

    def acknowledge(self, alert_id: str) -> bool:
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                return True
        return False
