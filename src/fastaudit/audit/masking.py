"""
Sensitive-data masking for audit metadata.

Field names decide both whether a value is masked and how: emails keep
their domain, phone numbers and card numbers keep their last four
digits, social security numbers keep their last four. Everything else
gets the default strategy, which keeps a couple of characters at each
end.

Example:
    masker = DataMasker()
    masker.mask_object({"email": "john.doe@example.com", "password": "secret123"})
    # {"email": "j***e@example.com", "password": "se***23"}
"""

import re
from typing import Any, Mapping, Sequence

MASK = "***"
OBJECT_PLACEHOLDER = "***[object]***"

DEFAULT_SENSITIVE_PATTERNS: tuple[str, ...] = (
    # Credentials
    r"password",
    r"passwd",
    r"pwd",
    r"secret",
    r"token",
    r"api[_\-]?key",
    r"access[_\-]?key",
    r"private[_\-]?key",
    r"credential",
    # PII
    r"e[_\-]?mail",
    r"phone",
    r"mobile",
    r"ssn(?!(?-i:[a-z]))",
    r"social[_\-]?security",
    r"(?<!ip)(?<!ip_)(?<!ip-)address",
    r"passport",
    r"birth",
    # Financial
    r"credit",
    r"card",
    r"cvv",
    r"iban",
    r"bank",
    r"account[_\-]?(number|no)",
    r"routing",
    r"balance",
    r"salary",
    r"income",
)


class DataMasker:
    """
    Recursive masker for sensitive fields.

    Patterns are matched case-insensitively against field names. Extra
    patterns can be registered with ``add_sensitive_pattern``.
    """

    def __init__(self, patterns: Sequence[str | re.Pattern[str]] | None = None):
        self._patterns: list[re.Pattern[str]] = [
            re.compile(p, re.IGNORECASE) for p in DEFAULT_SENSITIVE_PATTERNS
        ]
        for pattern in patterns or ():
            self.add_sensitive_pattern(pattern)

    def add_sensitive_pattern(self, pattern: str | re.Pattern[str]) -> None:
        """
        Register another sensitive-field pattern.

        Strings are matched as literal substrings; compiled patterns are
        used as given.
        """
        if isinstance(pattern, re.Pattern):
            self._patterns.append(pattern)
        else:
            self._patterns.append(re.compile(re.escape(pattern), re.IGNORECASE))

    def is_sensitive_field(self, field_name: str) -> bool:
        lowered = field_name.lower()
        return any(p.search(field_name) or p.search(lowered) for p in self._patterns)

    # =========================================================================
    # VALUES
    # =========================================================================

    def mask_value(self, value: Any, field_name: str) -> Any:
        """
        Mask ``value`` if ``field_name`` is sensitive, else return it unchanged.

        ``None`` and booleans are never masked.
        """
        if value is None or isinstance(value, bool):
            return value
        if not self.is_sensitive_field(field_name):
            return value

        name = field_name.lower()
        if isinstance(value, str):
            if "mail" in name and "@" in value:
                return self._mask_email(value)
            if "phone" in name or "mobile" in name:
                return self._mask_phone(value)
            if "card" in name or "credit" in name:
                return self._mask_card(value)
            if "ssn" in name or "social" in name:
                return self._mask_ssn(value)
        return self._mask_default(value)

    def _mask_default(self, value: Any) -> str:
        if isinstance(value, str):
            if len(value) <= 2:
                return MASK
            if len(value) <= 5:
                return f"{value[0]}{MASK}{value[-1]}"
            return f"{value[:2]}{MASK}{value[-2:]}"
        if isinstance(value, (int, float)):
            text = str(value)
            if len(text) <= 2:
                return MASK
            return f"{text[0]}{MASK}{text[-1]}"
        # dicts, lists, datetimes and anything else without a textual form
        return OBJECT_PLACEHOLDER

    def _mask_email(self, value: str) -> str:
        local, _, domain = value.rpartition("@")
        if len(local) <= 2:
            return f"{MASK}@{domain}"
        return f"{local[0]}{MASK}{local[-1]}@{domain}"

    def _mask_phone(self, value: str) -> str:
        digit_count = sum(ch.isdigit() for ch in value)
        keep = 4 if digit_count >= 4 else 0
        to_mask = digit_count - keep
        masked = []
        for ch in value:
            if ch.isdigit() and to_mask > 0:
                masked.append("*")
                to_mask -= 1
            else:
                masked.append(ch)
        return "".join(masked)

    def _mask_card(self, value: str) -> str:
        digits = "".join(ch for ch in value if ch.isdigit())
        if len(digits) < 4:
            return MASK
        if len(digits) < 12:
            return "****" + digits[-4:]
        return digits[:4] + "*" * (len(digits) - 8) + digits[-4:]

    def _mask_ssn(self, value: str) -> str:
        digits = "".join(ch for ch in value if ch.isdigit())
        if len(digits) == 9:
            return f"***-**-{digits[-4:]}"
        return self._mask_default(value)

    # =========================================================================
    # CONTAINERS
    # =========================================================================

    def mask_object(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Mask a mapping depth-first, preserving its shape."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, Mapping):
                result[key] = self.mask_object(value)
            elif isinstance(value, list):
                result[key] = self.mask_array(value)
            else:
                result[key] = self.mask_value(value, str(key))
        return result

    def mask_array(self, items: Sequence[Any]) -> list[Any]:
        """Mask a list; leaves are checked under the field name ``item_<index>``."""
        result: list[Any] = []
        for index, item in enumerate(items):
            if isinstance(item, Mapping):
                result.append(self.mask_object(item))
            elif isinstance(item, list):
                result.append(self.mask_array(item))
            else:
                result.append(self.mask_value(item, f"item_{index}"))
        return result
