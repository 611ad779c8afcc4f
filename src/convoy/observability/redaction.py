"""Redaction helpers for safe logging. Webhook data must pass through these.

Contact addresses are phone numbers and message bodies are free text, so both
are redacted by pattern. Keys that name credentials are masked outright.
"""

import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_SECRET_KEY_PATTERN = re.compile(r"(secret|token|signature|password)", re.IGNORECASE)

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def mask_address(address: str | None) -> str:
    """Keep the last four digits of a contact address, e.g. ``***0000``."""
    if not address:
        return "null"
    return f"***{address[-4:]}"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    context: dict[str, str] = {}
    for key, value in kwargs.items():
        if value is not None and _SECRET_KEY_PATTERN.search(key):
            context[key] = _REDACTED
        else:
            context[key] = redact_value(value)
    return context
