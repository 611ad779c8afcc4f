"""Webhook authenticity verification (X-Hub-Signature-256).

The platform signs the exact raw request body with HMAC-SHA256 using the
app secret, sent as ``sha256=<hex>``. The body must be the bytes as received;
re-serialized JSON does not reproduce the signature.
"""

from __future__ import annotations

import hashlib
import hmac
from enum import Enum

from convoy.tenants.models import Tenant

SIGNATURE_PREFIX = "sha256="


class Verification(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"
    SKIPPED = "skipped"


def compute_signature(payload_bytes: bytes, app_secret: str) -> str:
    """Return the header value the platform would send for this body."""
    digest = hmac.new(
        key=app_secret.encode("utf-8"),
        msg=payload_bytes,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class SignatureVerifier:
    """Per-tenant signature check.

    Args:
        reject_unsigned: When True a request without a signature header is
            REJECTED instead of SKIPPED (MISSING_SIGNATURE_POLICY=reject).
    """

    def __init__(self, *, reject_unsigned: bool = False) -> None:
        self._reject_unsigned = reject_unsigned

    def verify(self, tenant: Tenant, payload_bytes: bytes, signature_header: str | None) -> Verification:
        """Verify payload_bytes against the tenant's app secret.

        Returns:
            SKIPPED when the tenant has no secret configured, or when the
            header is absent and unsigned requests are accepted.
            VERIFIED on a constant-time match, REJECTED otherwise.
        """
        if not tenant.app_secret:
            return Verification.SKIPPED

        if not signature_header:
            return Verification.REJECTED if self._reject_unsigned else Verification.SKIPPED

        if not signature_header.startswith(SIGNATURE_PREFIX):
            return Verification.REJECTED

        expected = compute_signature(payload_bytes, tenant.app_secret)
        if hmac.compare_digest(expected.encode("utf-8"), signature_header.strip().encode("utf-8")):
            return Verification.VERIFIED
        return Verification.REJECTED
