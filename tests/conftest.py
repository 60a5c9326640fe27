"""Root test configuration: shared clock, window state and store fixtures."""

import datetime

import pytest

import application.metrics
import application.services.metrics_flush_service
import application.services.metrics_store


class AdjustableClock:
    """Callable clock whose current time tests can move forward explicitly."""

    def __init__(self, moment: datetime.datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime.datetime:
        return self.moment

    def advance(self, **timedelta_arguments: float) -> None:
        self.moment = self.moment + datetime.timedelta(**timedelta_arguments)


@pytest.fixture
def adjustable_clock() -> AdjustableClock:
    return AdjustableClock(datetime.datetime(2024, 1, 2, 10, 15, 30, tzinfo=datetime.UTC))


@pytest.fixture
def hour_bucket_clock(adjustable_clock) -> application.metrics.HourBucketClock:
    return application.metrics.HourBucketClock(now=adjustable_clock)


@pytest.fixture
def active_window_state(hour_bucket_clock) -> application.metrics.ActiveWindowState:
    return application.metrics.ActiveWindowState(clock=hour_bucket_clock)


@pytest.fixture
def in_memory_metrics_store() -> application.services.metrics_store.InMemoryMetricsStore:
    return application.services.metrics_store.InMemoryMetricsStore()


@pytest.fixture
def metrics_flush_service(active_window_state, in_memory_metrics_store):
    return application.services.metrics_flush_service.MetricsFlushService(
        state=active_window_state,
        store=in_memory_metrics_store,
    )


@pytest.fixture
def metrics_recorder(active_window_state, metrics_flush_service) -> application.metrics.RequestMetricsRecorder:
    return application.metrics.RequestMetricsRecorder(
        state=active_window_state,
        on_window_closed=metrics_flush_service.schedule_flush,
    )
