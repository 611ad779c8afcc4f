"""Exception taxonomy for webhook ingestion.

Benign aggregate outcomes (duplicate, not found) are reported as values of
``convoy.conversations.models.Outcome`` and never raised.
"""


class ConvoyError(Exception):
    """Base class for ingestion errors."""


class MalformedPayloadError(ConvoyError):
    """Raised when a vendor sub-event lacks required fields."""

    def __init__(self, message: str, *, kind: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind


class TenantMismatchError(ConvoyError):
    """Raised when identifiers carried by one change resolve to different tenants."""


class BackingStoreUnavailable(ConvoyError):
    """Raised when the database is unreachable or a statement timed out."""


class NotifierUnavailable(ConvoyError):
    """Raised by notifier transports; always swallowed by the notifier."""
