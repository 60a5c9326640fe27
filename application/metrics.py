"""
In-memory hourly request metrics.

Every completed HTTP request is folded into a single live
``HourlyMetricsWindow``: request totals, per-endpoint, per-method and
per-status-class counters, the distinct callers seen, signups, and the sum
of response times.  The window covers one clock hour.  When a request
arrives in a later hour, the live window is swapped for a fresh one and the
closed window is handed to the flush service for persistence.

Ownership
---------
The live window is held by an ``ActiveWindowState`` object rather than a
module global.  The recorder (writer) and the flush service (reader) both
receive the same state instance, so tests and multiple applications in one
process each get an isolated window.

Thread safety
-------------
Counter updates, the rollover swap and record snapshots all happen under a
``threading.Lock``, and the current hour is read under the same lock so the
live window never moves back to an earlier hour.  The service itself runs on asyncio, where the updates
never yield, but the lock keeps the recorder correct when it is called from
worker threads as well.
"""

import collections.abc
import dataclasses
import datetime
import threading

import structlog

import application.endpoint_normalization
import application.models

logger = structlog.get_logger()

_HOUR_KEY_FORMAT = "%Y-%m-%dT%H:00:00.000Z"

_SECONDS_PER_DAY = 24 * 60 * 60


def floor_to_hour(moment: datetime.datetime) -> datetime.datetime:
    """Truncate ``moment`` to the start of its hour, in UTC."""
    return moment.astimezone(datetime.UTC).replace(minute=0, second=0, microsecond=0)


def format_hour_key(hour: datetime.datetime) -> str:
    """
    Format an hour-floor as the ISO 8601 key used by stored records.

    Example output: ``"2024-01-01T13:00:00.000Z"``.  Keys sort
    lexicographically in chronological order, which the range query relies on.
    """
    return floor_to_hour(hour).strftime(_HOUR_KEY_FORMAT)


def format_utc_timestamp(moment: datetime.datetime) -> str:
    return moment.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def status_class(status: int) -> str:
    """Group an HTTP status code by its leading digit, e.g. ``404 -> "4xx"``."""
    return f"{status // 100}xx"


class HourBucketClock:
    """
    Source of the current time and of the hour the live window belongs to.

    ``now`` defaults to the system UTC clock; tests pass a callable
    returning fixed datetimes to drive hour rollover deterministically.
    """

    def __init__(
        self,
        now: collections.abc.Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._now = now or (lambda: datetime.datetime.now(datetime.UTC))

    def now(self) -> datetime.datetime:
        return self._now()

    def current_hour(self) -> datetime.datetime:
        return floor_to_hour(self._now())


@dataclasses.dataclass
class HourlyMetricsWindow:
    """Mutable accumulator for the requests completed in one clock hour."""

    hour: datetime.datetime
    total_requests: int = 0
    by_endpoint: dict[str, int] = dataclasses.field(default_factory=dict)
    by_method: dict[str, int] = dataclasses.field(default_factory=dict)
    by_status: dict[str, int] = dataclasses.field(default_factory=dict)
    unique_users: set[str] = dataclasses.field(default_factory=set)
    new_signups: int = 0
    total_response_time_ms: float = 0.0

    @property
    def hour_key(self) -> str:
        return format_hour_key(self.hour)

    @property
    def is_empty(self) -> bool:
        return self.total_requests == 0

    def add_request(
        self,
        endpoint_key: str,
        method: str,
        status: int,
        response_time_ms: float,
        caller_identity: str | None = None,
        is_signup: bool = False,
    ) -> None:
        self.total_requests += 1
        self.total_response_time_ms += response_time_ms
        self.by_endpoint[endpoint_key] = self.by_endpoint.get(endpoint_key, 0) + 1
        self.by_method[method] = self.by_method.get(method, 0) + 1
        status_group = status_class(status)
        self.by_status[status_group] = self.by_status.get(status_group, 0) + 1

        if caller_identity:
            self.unique_users.add(caller_identity)

        if is_signup:
            self.new_signups += 1

    def to_record(
        self,
        flushed_at: datetime.datetime,
        retention_days: int,
    ) -> application.models.HourlyMetricsRecord:
        """
        Build the stored form of this window.

        The distinct callers are stored twice: as a count for the per-hour
        time series, and as a sorted list so that queries spanning several
        hours can count each caller once.
        """
        return application.models.HourlyMetricsRecord(
            metric_type=application.models.HOURLY_RECORD_TYPE,
            time_bucket=self.hour_key,
            total_requests=self.total_requests,
            by_endpoint=dict(self.by_endpoint),
            by_method=dict(self.by_method),
            by_status=dict(self.by_status),
            unique_users=len(self.unique_users),
            unique_user_ids=sorted(self.unique_users),
            new_signups=self.new_signups,
            total_response_time_ms=self.total_response_time_ms,
            flushed_at=format_utc_timestamp(flushed_at),
            ttl=int(flushed_at.timestamp()) + retention_days * _SECONDS_PER_DAY,
        )

    def to_snapshot(self) -> application.models.ActiveWindowSnapshot:
        return application.models.ActiveWindowSnapshot(
            time_bucket=self.hour_key,
            total_requests=self.total_requests,
            by_endpoint=dict(self.by_endpoint),
            by_method=dict(self.by_method),
            by_status=dict(self.by_status),
            unique_users=len(self.unique_users),
            new_signups=self.new_signups,
            total_response_time_ms=self.total_response_time_ms,
        )


class ActiveWindowState:
    """
    Owner of the single live ``HourlyMetricsWindow``.

    The live window is replaced, never reset in place: ``add_request``
    installs a new empty window stamped with the current hour and returns
    the old one, so a flush of the old window never races with requests
    accumulating into the new one.
    """

    def __init__(self, clock: HourBucketClock | None = None) -> None:
        self._clock = clock or HourBucketClock()
        self._lock = threading.Lock()
        self._window = HourlyMetricsWindow(hour=self._clock.current_hour())

    @property
    def clock(self) -> HourBucketClock:
        return self._clock

    @property
    def window(self) -> HourlyMetricsWindow:
        return self._window

    def add_request(
        self,
        endpoint_key: str,
        method: str,
        status: int,
        response_time_ms: float,
        caller_identity: str | None = None,
        is_signup: bool = False,
    ) -> HourlyMetricsWindow | None:
        """
        Fold one request into the window for the current hour.

        Returns the window that was closed by an hour rollover, or ``None``
        when the request belonged to the live window's hour.  The window
        only ever moves forward: a request stamped with an hour earlier than
        the live window's is folded into the live window.
        """
        with self._lock:
            target_hour = self._clock.current_hour()
            closed_window = None
            if target_hour > self._window.hour:
                closed_window = self._window
                self._window = HourlyMetricsWindow(hour=target_hour)

            self._window.add_request(
                endpoint_key=endpoint_key,
                method=method,
                status=status,
                response_time_ms=response_time_ms,
                caller_identity=caller_identity,
                is_signup=is_signup,
            )
            return closed_window

    def build_record(
        self,
        window: HourlyMetricsWindow,
        retention_days: int,
    ) -> application.models.HourlyMetricsRecord | None:
        """Snapshot ``window`` for storage, or return ``None`` if it is empty."""
        with self._lock:
            if window.is_empty:
                return None
            return window.to_record(
                flushed_at=self._clock.now(),
                retention_days=retention_days,
            )

    def snapshot(self) -> application.models.ActiveWindowSnapshot:
        with self._lock:
            return self._window.to_snapshot()


class RequestMetricsRecorder:
    """
    Entry point called once per completed HTTP request.

    Recording is a best-effort side channel: ``record`` never raises.  Any
    internal fault is logged as ``metrics_record_failed`` and the request
    continues unaffected.

    Requests to the health-check path are ignored entirely, including the
    rollover check, so load balancer probes neither inflate counts nor
    trigger flushes.
    """

    def __init__(
        self,
        state: ActiveWindowState,
        on_window_closed: collections.abc.Callable[[HourlyMetricsWindow], None] | None = None,
        health_check_path: str = "/health",
    ) -> None:
        self._state = state
        self._on_window_closed = on_window_closed
        self._health_check_path = health_check_path

    def record(
        self,
        method: str,
        url: str,
        status: int,
        response_time_ms: float,
        caller_identity: str | None = None,
        is_signup: bool = False,
    ) -> None:
        try:
            self._record(method, url, status, response_time_ms, caller_identity, is_signup)
        except Exception:
            logger.exception(
                "metrics_record_failed",
                method=method,
                path=application.endpoint_normalization.strip_query_string(str(url)),
                status=status,
            )

    def _record(
        self,
        method: str,
        url: str,
        status: int,
        response_time_ms: float,
        caller_identity: str | None,
        is_signup: bool,
    ) -> None:
        if application.endpoint_normalization.normalize_path(url) == self._health_check_path:
            return

        closed_window = self._state.add_request(
            endpoint_key=application.endpoint_normalization.normalize_endpoint(method, url),
            method=method,
            status=status,
            response_time_ms=response_time_ms,
            caller_identity=caller_identity,
            is_signup=is_signup,
        )

        if closed_window is not None:
            logger.info(
                "metrics_window_rolled_over",
                closed_time_bucket=closed_window.hour_key,
                closed_total_requests=closed_window.total_requests,
                time_bucket=self._state.window.hour_key,
            )
            if self._on_window_closed is not None:
                self._on_window_closed(closed_window)
