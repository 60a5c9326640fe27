"""
Custom exception classes for the request metrics service.

Each exception class maps to one category of operational failure and is
handled by the centralised error-handling layer (``error_handling.py``) to
produce a consistent JSON error response with a machine-readable code.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError (base class for all service exceptions)
        ├── MetricsNotConfiguredError   → HTTP 503
        ├── MetricsQueryError           → HTTP 500
        └── MetricsStoreError           (raised by store backends)

Only the read path raises these to callers.  The write path (recording
and flushing) logs its failures and never propagates them, so
``MetricsStoreError`` raised during a flush stops at the flush service.
"""


class ServiceError(Exception):
    """
    Base exception for all service-level errors.

    Every service exception carries a ``detail`` attribute containing a
    human-readable description of the failure, safe for inclusion in API
    responses.  Subclasses define ``default_detail`` as the fallback
    message when no explicit detail is passed to the constructor.
    """

    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class MetricsNotConfiguredError(ServiceError):
    """
    Raised when historical metrics are requested but no metrics store is
    configured.

    Mapped to HTTP 503 (Service Unavailable) with the error code
    ``metrics_not_configured``.  An operator asking for history must not
    receive an empty result that looks like an idle service.
    """

    default_detail = "Metrics storage is not configured."


class MetricsStoreError(ServiceError):
    """
    Raised by a metrics store backend when the underlying storage cannot
    be reached or rejects an operation.
    """

    default_detail = "The metrics store is unavailable."


class MetricsQueryError(ServiceError):
    """
    Raised when historical metrics cannot be loaded: the store failed, or
    a stored record does not match the expected layout.

    Mapped to HTTP 500 (Internal Server Error) with the error code
    ``metrics_query_failed``.
    """

    default_detail = "Failed to query metrics."
