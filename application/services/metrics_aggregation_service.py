"""
Historical metrics query.

Loads the hourly records of a lookback period (``24h``, ``7d`` or ``30d``)
from the metrics store and turns them into:

- a **time series** with one point per stored hour, each point describing
  that hour alone; and
- a **summary** over the whole period.

Summary semantics
-----------------
Averages and the error rate are computed from the period's totals, not by
averaging the hourly figures.  ``activeUsers`` is the size of the union of
every hour's caller list, so a caller active in several hours is counted
once; the hourly ``uniqueUsers`` counts are never summed.  Endpoint
counters are summed across hours and ranked by count, with ties ordered by
endpoint key.

Failure policy
--------------
Unlike the write path, the query fails loudly.  A missing store raises
``MetricsNotConfiguredError``; a store failure or a malformed record raises
``MetricsQueryError``.  A period with no stored records is a valid, empty
result.
"""

import collections
import collections.abc
import datetime
import math

import pydantic
import structlog

import application.exceptions
import application.metrics
import application.models
import application.services.metrics_store

logger = structlog.get_logger()

DEFAULT_TOP_ENDPOINTS_LIMIT = 10


def resolve_period(period: str | None) -> str:
    """Return ``period`` if it is a known lookback window, otherwise ``"24h"``."""
    if period in application.models.PERIOD_HOURS:
        return period
    return application.models.DEFAULT_PERIOD


def round_half_up(value: float) -> int:
    """Round a non-negative number to the nearest integer, halves rounding up."""
    return math.floor(value + 0.5)


def _average_or_zero(total: float, count: int) -> int:
    if count <= 0:
        return 0
    return round_half_up(total / count)


def build_time_series_point(
    record: application.models.HourlyMetricsRecord,
) -> application.models.TimeSeriesPoint:
    return application.models.TimeSeriesPoint(
        time=record.time_bucket,
        requests=record.total_requests,
        errors=record.error_count,
        unique_users=record.unique_users,
        avg_response_ms=_average_or_zero(record.total_response_time_ms, record.total_requests),
    )


def summarise_records(
    records: collections.abc.Iterable[application.models.HourlyMetricsRecord],
    top_endpoints_limit: int = DEFAULT_TOP_ENDPOINTS_LIMIT,
) -> application.models.SummaryReport:
    total_requests = 0
    total_response_time_ms = 0.0
    total_errors = 0
    total_signups = 0
    active_users: set[str] = set()
    endpoint_totals: collections.Counter[str] = collections.Counter()

    for record in records:
        total_requests += record.total_requests
        total_response_time_ms += record.total_response_time_ms
        total_errors += record.error_count
        total_signups += record.new_signups
        active_users.update(record.unique_user_ids)
        endpoint_totals.update(record.by_endpoint)

    ranked_endpoints = sorted(
        endpoint_totals.items(),
        key=lambda endpoint_and_count: (-endpoint_and_count[1], endpoint_and_count[0]),
    )

    return application.models.SummaryReport(
        total_requests=total_requests,
        avg_response_ms=_average_or_zero(total_response_time_ms, total_requests),
        error_rate=_average_or_zero(total_errors * 100, total_requests),
        new_signups=total_signups,
        active_users=len(active_users),
        top_endpoints=[
            application.models.EndpointCount(endpoint=endpoint, count=count)
            for endpoint, count in ranked_endpoints[:top_endpoints_limit]
        ],
    )


class MetricsAggregationService:
    """
    Read-only query over stored hourly records.

    Holds no mutable state, so any number of queries may run concurrently.
    """

    def __init__(
        self,
        store: application.services.metrics_store.MetricsStore | None,
        clock: application.metrics.HourBucketClock | None = None,
        top_endpoints_limit: int = DEFAULT_TOP_ENDPOINTS_LIMIT,
    ) -> None:
        self._store = store
        self._clock = clock or application.metrics.HourBucketClock()
        self._top_endpoints_limit = top_endpoints_limit

    async def query(self, period: str | None = None) -> application.models.MetricsQueryResponse:
        resolved_period = resolve_period(period)

        if self._store is None:
            raise application.exceptions.MetricsNotConfiguredError()

        now = self._clock.now()
        from_time_bucket = application.metrics.format_hour_key(
            now - datetime.timedelta(hours=application.models.PERIOD_HOURS[resolved_period]),
        )
        to_time_bucket = application.metrics.format_hour_key(now)

        try:
            documents = await self._store.query_hourly_records(from_time_bucket, to_time_bucket)
            records = [application.models.HourlyMetricsRecord.model_validate(document) for document in documents]
        except (application.exceptions.MetricsStoreError, pydantic.ValidationError) as query_error:
            logger.error(
                "metrics_query_failed",
                period=resolved_period,
                from_time_bucket=from_time_bucket,
                error=str(query_error),
            )
            raise application.exceptions.MetricsQueryError() from query_error

        logger.info(
            "metrics_queried",
            period=resolved_period,
            from_time_bucket=from_time_bucket,
            to_time_bucket=to_time_bucket,
            record_count=len(records),
        )

        return application.models.MetricsQueryResponse(
            period=resolved_period,
            time_series=[build_time_series_point(record) for record in records],
            summary=summarise_records(records, top_endpoints_limit=self._top_endpoints_limit),
        )
