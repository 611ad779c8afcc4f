"""Contact address normalization.

Conversations are keyed by (tenant, normalized address), so every address
coming from a webhook must pass through ``normalize_address`` first.
"""

import re

from convoy.errors import MalformedPayloadError

_NON_DIGITS = re.compile(r"\D")


def normalize_address(raw: str | int | None, default_country_code: str | None = None) -> str:
    """Strip everything but digits; optionally prefix a country code.

    Args:
        raw: Address as carried by the platform ("+1 555-123-0000", "15551230000").
        default_country_code: Prefixed when the result has exactly 10 digits.

    Returns:
        Digits-only address.

    Raises:
        MalformedPayloadError: If no digits remain.
    """
    if raw is None:
        raise MalformedPayloadError("missing contact address")
    digits = _NON_DIGITS.sub("", str(raw))
    if not digits:
        raise MalformedPayloadError("contact address has no digits")
    if default_country_code and len(digits) == 10:
        digits = f"{default_country_code}{digits}"
    return digits
