"""
Tests for the hourly request metrics window (application/metrics.py).

Validates that:

- Hour keys are UTC hour-floors formatted as ``YYYY-MM-DDTHH:00:00.000Z``.
- The recorder accumulates totals, endpoint, method and status-class
  counters, distinct callers and signups into the live window.
- Health-check requests are ignored entirely.
- A request in a later hour swaps in a fresh window and hands the closed
  window to the flush callback.
- Recording never raises, and never writes to the store by itself.
"""

import asyncio
import datetime
import threading
import time
from unittest.mock import MagicMock

import application.metrics
import application.services.metrics_flush_service
import application.services.metrics_store


def _record(recorder, url="/api/weight", status=200, response_time_ms=10, method="GET", **keyword_arguments):
    recorder.record(
        method=method,
        url=url,
        status=status,
        response_time_ms=response_time_ms,
        **keyword_arguments,
    )


class _GatedMetricsStore(application.services.metrics_store.InMemoryMetricsStore):
    """In-memory store whose writes block until the test releases them."""

    def __init__(self) -> None:
        super().__init__()
        self.release = threading.Event()
        self.written = threading.Event()

    async def put_hourly_record(self, record) -> None:
        await asyncio.to_thread(self.release.wait, 5)
        await super().put_hourly_record(record)
        self.written.set()


class TestHourKeys:
    def test_floor_to_hour_truncates_minutes_seconds_and_microseconds(self):
        moment = datetime.datetime(2024, 1, 1, 13, 59, 59, 999999, tzinfo=datetime.UTC)

        assert application.metrics.floor_to_hour(moment) == datetime.datetime(2024, 1, 1, 13, tzinfo=datetime.UTC)

    def test_floor_to_hour_converts_to_utc(self):
        plus_two = datetime.timezone(datetime.timedelta(hours=2))
        moment = datetime.datetime(2024, 1, 1, 15, 30, tzinfo=plus_two)

        assert application.metrics.floor_to_hour(moment) == datetime.datetime(2024, 1, 1, 13, tzinfo=datetime.UTC)

    def test_format_hour_key(self):
        moment = datetime.datetime(2024, 1, 1, 13, 42, 7, tzinfo=datetime.UTC)

        assert application.metrics.format_hour_key(moment) == "2024-01-01T13:00:00.000Z"

    def test_status_class(self):
        assert application.metrics.status_class(200) == "2xx"
        assert application.metrics.status_class(404) == "4xx"
        assert application.metrics.status_class(503) == "5xx"

    def test_clock_reports_current_hour(self, hour_bucket_clock):
        assert hour_bucket_clock.current_hour() == datetime.datetime(2024, 1, 2, 10, tzinfo=datetime.UTC)


class TestActiveWindowState:
    def test_initial_window_is_empty_and_stamped_with_current_hour(self, active_window_state):
        window = active_window_state.window

        assert window.is_empty
        assert window.hour_key == "2024-01-02T10:00:00.000Z"

    def test_build_record_returns_none_for_empty_window(self, active_window_state):
        assert active_window_state.build_record(active_window_state.window, retention_days=90) is None

    def test_build_record_sets_expiry_from_retention(self, active_window_state, adjustable_clock):
        active_window_state.add_request("GET /api/weight", "GET", 200, 10)

        record = active_window_state.build_record(active_window_state.window, retention_days=90)

        assert record.ttl == int(adjustable_clock.moment.timestamp()) + 90 * 24 * 60 * 60
        assert record.flushed_at == "2024-01-02T10:15:30.000000Z"
        assert record.metric_type == "hourly"

    def test_add_request_in_same_hour_does_not_rotate(self, active_window_state, adjustable_clock):
        original_window = active_window_state.window
        adjustable_clock.advance(minutes=40)

        closed_window = active_window_state.add_request("GET /api/weight", "GET", 200, 10)

        assert closed_window is None
        assert active_window_state.window is original_window

    def test_add_request_in_new_hour_replaces_window(self, active_window_state, adjustable_clock):
        active_window_state.add_request("GET /api/weight", "GET", 200, 10)
        original_window = active_window_state.window
        adjustable_clock.advance(hours=1)

        closed_window = active_window_state.add_request("GET /api/weight", "GET", 200, 10)

        assert closed_window is original_window
        assert closed_window.total_requests == 1
        assert active_window_state.window is not original_window
        assert active_window_state.window.hour_key == "2024-01-02T11:00:00.000Z"
        assert active_window_state.window.total_requests == 1

    def test_request_stamped_with_earlier_hour_folds_into_live_window(self, active_window_state, adjustable_clock):
        adjustable_clock.advance(hours=1)
        active_window_state.add_request("GET /api/weight", "GET", 200, 10)
        live_window = active_window_state.window
        adjustable_clock.advance(minutes=-30)

        closed_window = active_window_state.add_request("GET /api/weight", "GET", 200, 10)

        assert closed_window is None
        assert active_window_state.window is live_window
        assert live_window.hour_key == "2024-01-02T11:00:00.000Z"
        assert live_window.total_requests == 2

    def test_snapshot_reports_live_counters(self, active_window_state):
        active_window_state.add_request("GET /api/weight", "GET", 200, 12, caller_identity="a@b.com")

        snapshot = active_window_state.snapshot()

        assert snapshot.total_requests == 1
        assert snapshot.unique_users == 1
        assert snapshot.total_response_time_ms == 12


class TestRequestMetricsRecorderCounters:
    def test_increments_total_requests_and_response_time(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, response_time_ms=50)
        _record(metrics_recorder, response_time_ms=30)
        _record(metrics_recorder, response_time_ms=20)

        assert active_window_state.window.total_requests == 3
        assert active_window_state.window.total_response_time_ms == 100

    def test_groups_statuses_by_class(self, metrics_recorder, active_window_state):
        for status in (200, 201, 404, 500):
            _record(metrics_recorder, status=status)

        assert active_window_state.window.by_status == {"2xx": 2, "4xx": 1, "5xx": 1}

    def test_counts_methods(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, method="GET")
        _record(metrics_recorder, method="POST")
        _record(metrics_recorder, method="GET")

        assert active_window_state.window.by_method == {"GET": 2, "POST": 1}

    def test_counts_normalized_endpoints(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, url="/api/habits/abc")
        _record(metrics_recorder, url="/api/habits/def")
        _record(metrics_recorder, url="/api/habits/stats")

        assert active_window_state.window.by_endpoint == {
            "GET /api/habits/:id": 2,
            "GET /api/habits/stats": 1,
        }

    def test_tracks_distinct_callers(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, caller_identity="a@b.com")
        _record(metrics_recorder, caller_identity="a@b.com")
        _record(metrics_recorder, caller_identity="c@d.com")
        _record(metrics_recorder, caller_identity=None)

        record = active_window_state.build_record(active_window_state.window, retention_days=90)

        assert record.unique_users == 2
        assert record.unique_user_ids == ["a@b.com", "c@d.com"]

    def test_counts_signups_only_when_flagged(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, method="POST", url="/api/signup", status=201, is_signup=True)
        _record(metrics_recorder, method="POST", url="/api/signup", status=409, is_signup=False)
        _record(metrics_recorder)

        assert active_window_state.window.new_signups == 1


class TestRequestMetricsRecorderHealthChecks:
    def test_health_check_is_not_counted(self, metrics_recorder, active_window_state):
        _record(metrics_recorder, url="/health")
        _record(metrics_recorder, url="/health?probe=lb")

        assert active_window_state.window.is_empty

    def test_health_check_does_not_trigger_rollover(self, active_window_state, adjustable_clock):
        on_window_closed = MagicMock()
        recorder = application.metrics.RequestMetricsRecorder(
            state=active_window_state,
            on_window_closed=on_window_closed,
        )
        _record(recorder)
        original_window = active_window_state.window
        adjustable_clock.advance(hours=2)

        _record(recorder, url="/health")

        on_window_closed.assert_not_called()
        assert active_window_state.window is original_window

    def test_custom_health_check_path(self, active_window_state):
        recorder = application.metrics.RequestMetricsRecorder(
            state=active_window_state,
            health_check_path="/healthz",
        )

        _record(recorder, url="/healthz")
        _record(recorder, url="/health")

        assert active_window_state.window.total_requests == 1


class TestRequestMetricsRecorderRollover:
    def test_closed_window_is_passed_to_callback(self, active_window_state, adjustable_clock):
        on_window_closed = MagicMock()
        recorder = application.metrics.RequestMetricsRecorder(
            state=active_window_state,
            on_window_closed=on_window_closed,
        )
        _record(recorder)
        _record(recorder)
        adjustable_clock.advance(hours=1)

        _record(recorder)

        on_window_closed.assert_called_once()
        closed_window = on_window_closed.call_args.args[0]
        assert closed_window.hour_key == "2024-01-02T10:00:00.000Z"
        assert closed_window.total_requests == 2
        assert active_window_state.window.total_requests == 1

    def test_rollover_outside_event_loop_does_not_wait_for_the_write(self, active_window_state, adjustable_clock):
        store = _GatedMetricsStore()
        flush_service = application.services.metrics_flush_service.MetricsFlushService(
            state=active_window_state,
            store=store,
        )
        recorder = application.metrics.RequestMetricsRecorder(
            state=active_window_state,
            on_window_closed=flush_service.schedule_flush,
        )
        _record(recorder, caller_identity="a@b.com")
        adjustable_clock.advance(hours=1)

        _record(recorder)

        assert store.write_count == 0
        store.release.set()
        assert store.written.wait(timeout=5)
        assert store.write_count == 1

    def test_recording_never_writes_to_store(self, metrics_recorder, in_memory_metrics_store):
        for _ in range(25):
            _record(metrics_recorder)

        assert in_memory_metrics_store.write_count == 0


class TestRequestMetricsRecorderNeverRaises:
    def test_internal_failure_is_swallowed(self):
        failing_state = MagicMock()
        failing_state.add_request.side_effect = RuntimeError("boom")
        recorder = application.metrics.RequestMetricsRecorder(state=failing_state)

        _record(recorder)

        failing_state.add_request.assert_called_once()

    def test_failing_rollover_callback_is_swallowed(self, active_window_state, adjustable_clock):
        recorder = application.metrics.RequestMetricsRecorder(
            state=active_window_state,
            on_window_closed=MagicMock(side_effect=RuntimeError("flush scheduling failed")),
        )
        _record(recorder)
        adjustable_clock.advance(hours=1)

        _record(recorder)

        assert active_window_state.window.total_requests == 1


class TestConcurrentRollover:
    """
    Requests completing on several threads around an hour boundary must
    leave exactly one forward rollover, whatever order the threads reach
    the window in.
    """

    def test_late_reader_of_previous_hour_does_not_roll_window_back(self):
        slow_thread_name = "request-at-10:59:59"
        slow_request_reading_clock = threading.Event()
        release_slow_request = threading.Event()
        main_moment = [datetime.datetime(2024, 1, 2, 10, 30, tzinfo=datetime.UTC)]

        def clock() -> datetime.datetime:
            if threading.current_thread().name == slow_thread_name:
                slow_request_reading_clock.set()
                release_slow_request.wait(timeout=5)
                return datetime.datetime(2024, 1, 2, 10, 59, 59, tzinfo=datetime.UTC)
            return main_moment[0]

        state = application.metrics.ActiveWindowState(clock=application.metrics.HourBucketClock(now=clock))
        closed_windows = []
        recorder = application.metrics.RequestMetricsRecorder(state=state, on_window_closed=closed_windows.append)

        slow_request = threading.Thread(target=_record, args=(recorder,), name=slow_thread_name)
        slow_request.start()
        assert slow_request_reading_clock.wait(timeout=5)

        main_moment[0] = datetime.datetime(2024, 1, 2, 11, 0, 1, tzinfo=datetime.UTC)
        fast_request = threading.Thread(target=_record, args=(recorder,))
        fast_request.start()
        time.sleep(0.05)
        release_slow_request.set()
        slow_request.join(timeout=5)
        fast_request.join(timeout=5)

        assert state.window.hour_key == "2024-01-02T11:00:00.000Z"
        assert state.window.total_requests == 1
        assert [(window.hour_key, window.total_requests) for window in closed_windows] == [
            ("2024-01-02T10:00:00.000Z", 1),
        ]

    def test_parallel_requests_are_all_counted(self, active_window_state, metrics_recorder):
        threads = [threading.Thread(target=_record, args=(metrics_recorder,)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert active_window_state.window.total_requests == 8
