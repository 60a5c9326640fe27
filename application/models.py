"""
Pydantic models for stored metrics records and API responses.

Stored records and API responses use camelCase field names, matching the
layout of the hourly documents in the metrics table and the JSON contract
consumed by the admin dashboard.  Python code uses the snake_case
attribute names; ``populate_by_name`` lets either form construct a model.
"""

import pydantic
import pydantic.alias_generators

# ──────────────────────────────────────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────────────────────────────────────

HOURLY_RECORD_TYPE = "hourly"

# Lookback windows accepted by the history query, in hours.
PERIOD_HOURS: dict[str, int] = {
    "24h": 24,
    "7d": 7 * 24,
    "30d": 30 * 24,
}

DEFAULT_PERIOD = "24h"

_CAMEL_CASE_MODEL_CONFIGURATION = pydantic.ConfigDict(
    alias_generator=pydantic.alias_generators.to_camel,
    populate_by_name=True,
)

# ──────────────────────────────────────────────────────────────────────────────
#  Stored Records
# ──────────────────────────────────────────────────────────────────────────────


class HourlyMetricsRecord(pydantic.BaseModel):
    """
    Snapshot of one hourly metrics window as written to the metrics store.

    Records are identified by ``(metric_type, time_bucket)`` and written
    with overwrite semantics: a later flush of the same hour replaces the
    earlier document rather than adding to it.

    ``unique_users`` is the number of distinct callers in the hour, used
    for the per-hour time series.  ``unique_user_ids`` carries the callers
    themselves so that a multi-hour summary can count each caller once.
    Records written before identities were stored load with an empty list.
    """

    metric_type: str = pydantic.Field(default=HOURLY_RECORD_TYPE)

    time_bucket: str = pydantic.Field(
        ...,
        description="Hour-floor of the window as an ISO 8601 UTC string.",
    )

    total_requests: int = pydantic.Field(..., ge=0)

    by_endpoint: dict[str, int] = pydantic.Field(default_factory=dict)

    by_method: dict[str, int] = pydantic.Field(default_factory=dict)

    by_status: dict[str, int] = pydantic.Field(default_factory=dict)

    unique_users: int = pydantic.Field(default=0, ge=0)

    unique_user_ids: list[str] = pydantic.Field(default_factory=list)

    new_signups: int = pydantic.Field(default=0, ge=0)

    total_response_time_ms: float = pydantic.Field(default=0, ge=0)

    flushed_at: str | None = None

    ttl: int | None = pydantic.Field(
        default=None,
        description="Expiry as Unix epoch seconds, honoured by the store.",
    )

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION

    @property
    def error_count(self) -> int:
        """Number of 4xx and 5xx responses in the hour."""
        return self.by_status.get("4xx", 0) + self.by_status.get("5xx", 0)


# ──────────────────────────────────────────────────────────────────────────────
#  Response Models
# ──────────────────────────────────────────────────────────────────────────────


class TimeSeriesPoint(pydantic.BaseModel):
    """One hour of the history time series."""

    time: str
    requests: int
    errors: int
    unique_users: int
    avg_response_ms: int

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class EndpointCount(pydantic.BaseModel):
    endpoint: str
    count: int


class SummaryReport(pydantic.BaseModel):
    """
    Roll-up of every hourly record in the requested period.

    ``active_users`` counts distinct callers across the whole period, so a
    caller seen in several hours is counted once.
    """

    total_requests: int
    avg_response_ms: int
    error_rate: int = pydantic.Field(
        ...,
        description="Percentage of requests answered with 4xx or 5xx, rounded.",
    )
    new_signups: int
    active_users: int
    top_endpoints: list[EndpointCount]

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class MetricsQueryResponse(pydantic.BaseModel):
    """Response body of ``GET /api/admin/metrics``."""

    period: str = pydantic.Field(..., examples=list(PERIOD_HOURS))
    time_series: list[TimeSeriesPoint]
    summary: SummaryReport

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


class ActiveWindowSnapshot(pydantic.BaseModel):
    """Response body of ``GET /api/admin/metrics/current``."""

    time_bucket: str
    total_requests: int
    by_endpoint: dict[str, int]
    by_method: dict[str, int]
    by_status: dict[str, int]
    unique_users: int
    new_signups: int
    total_response_time_ms: float

    model_config = _CAMEL_CASE_MODEL_CONFIGURATION


# ──────────────────────────────────────────────────────────────────────────────
#  Error Models
# ──────────────────────────────────────────────────────────────────────────────


class ErrorDetail(pydantic.BaseModel):
    """Detailed error information nested inside the error response."""

    code: str = pydantic.Field(
        ...,
        description="A machine-readable error code in snake_case format.",
    )

    message: str = pydantic.Field(
        ...,
        description="A human-readable error description safe for display to end users.",
    )

    correlation_id: str = pydantic.Field(
        ...,
        description="UUID v4 correlation identifier matching the X-Correlation-ID response header.",
    )


class ErrorResponse(pydantic.BaseModel):
    """
    Standardised error response returned for all error conditions.

    Every error response from this service follows this nested structure
    so that clients can rely on a consistent error format.
    """

    error: ErrorDetail = pydantic.Field(
        ...,
        description="An object containing error details.",
    )
