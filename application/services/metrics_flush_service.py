"""
Persistence of hourly metrics windows.

The flush service writes a window to the metrics store on three triggers:

1. **Hour rollover**: the recorder hands over the window it just closed;
   ``schedule_flush`` writes it in the background without delaying the
   request that caused the rollover, whether that request was recorded on
   the event loop or on a worker thread.
2. **Periodic timer**: ``start`` launches an asyncio task that writes the
   live window every ``interval_seconds``, so a crash loses at most one
   interval of data.
3. **Shutdown**: ``stop`` cancels the timer and writes whatever remains in
   the live window.

Every write is an overwrite of the record for the window's hour, so the
timer and a rollover writing the same window, or two successive timer
ticks, leave the store consistent.

Silent skips and failures
-------------------------
An empty window or an unconfigured store is skipped without any I/O.  A
store failure is logged as ``metrics_flush_failed`` and swallowed; it is
not retried, so an hour whose every flush fails is lost.  Metrics are a
best-effort side channel and never affect request handling.
"""

import asyncio
import concurrent.futures
import contextlib
import threading

import structlog

import application.metrics
import application.services.metrics_store

logger = structlog.get_logger()

DEFAULT_RETENTION_DAYS = 90


class MetricsFlushService:
    def __init__(
        self,
        state: application.metrics.ActiveWindowState,
        store: application.services.metrics_store.MetricsStore | None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._state = state
        self._store = store
        self._retention_days = retention_days
        self._periodic_flush_task: asyncio.Task[None] | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None
        self._pending_flush_tasks: set[asyncio.Task[bool]] = set()
        self._pending_flush_futures: set[concurrent.futures.Future] = set()
        self._pending_flush_threads: set[threading.Thread] = set()
        self._pending_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._periodic_flush_task is not None

    async def flush(self, window: application.metrics.HourlyMetricsWindow) -> bool:
        """
        Write ``window`` to the store.

        Returns ``True`` when a record was written, ``False`` when the
        write was skipped or failed.  Never raises.
        """
        if self._store is None:
            return False

        record = self._state.build_record(window, retention_days=self._retention_days)
        if record is None:
            return False

        try:
            await self._store.put_hourly_record(record)
        except Exception:
            logger.exception(
                "metrics_flush_failed",
                time_bucket=record.time_bucket,
                total_requests=record.total_requests,
                backend=self._store.backend_name,
            )
            return False

        logger.debug(
            "metrics_flushed",
            time_bucket=record.time_bucket,
            total_requests=record.total_requests,
            unique_users=record.unique_users,
        )
        return True

    async def flush_active_window(self) -> bool:
        return await self.flush(self._state.window)

    def schedule_flush(self, window: application.metrics.HourlyMetricsWindow) -> None:
        """
        Flush ``window`` without waiting for the write to complete.

        Inside a running event loop the flush becomes a background task.
        From a thread with no running loop, the flush is submitted to the
        loop captured by ``start``, or, when the service has not been
        started, to a daemon worker thread.  Every pending flush is tracked
        until it finishes so that ``stop`` can drain it.
        """
        try:
            event_loop = asyncio.get_running_loop()
        except RuntimeError:
            event_loop = None

        if event_loop is not None:
            flush_task = event_loop.create_task(self.flush(window))
            self._pending_flush_tasks.add(flush_task)
            flush_task.add_done_callback(self._pending_flush_tasks.discard)
            return

        service_loop = self._event_loop
        if service_loop is not None and service_loop.is_running():
            flush_future = asyncio.run_coroutine_threadsafe(self.flush(window), service_loop)
            with self._pending_lock:
                self._pending_flush_futures.add(flush_future)
            flush_future.add_done_callback(self._discard_flush_future)
            return

        flush_thread = threading.Thread(
            target=self._flush_in_worker_thread,
            args=(window,),
            name="metrics-flush",
            daemon=True,
        )
        with self._pending_lock:
            self._pending_flush_threads.add(flush_thread)
        flush_thread.start()

    def _discard_flush_future(self, flush_future: concurrent.futures.Future) -> None:
        with self._pending_lock:
            self._pending_flush_futures.discard(flush_future)

    def _flush_in_worker_thread(self, window: application.metrics.HourlyMetricsWindow) -> None:
        try:
            asyncio.run(self.flush(window))
        finally:
            with self._pending_lock:
                self._pending_flush_threads.discard(threading.current_thread())

    def start(self, interval_seconds: float) -> None:
        """Start the periodic flush task.  Calling it again while running has no effect."""
        if self._periodic_flush_task is not None:
            return
        self._event_loop = asyncio.get_running_loop()
        self._periodic_flush_task = self._event_loop.create_task(
            self._run_periodic_flush(interval_seconds),
        )
        logger.info("metrics_flush_started", interval_seconds=interval_seconds)

    async def stop(self) -> bool:
        """
        Cancel the periodic flush task and flush the live window one last time.

        Rollover flushes still in flight are awaited first, whichever way
        they were scheduled.  Safe to call repeatedly: with no task running
        it still attempts the final flush, which is a no-op when the live
        window is empty.
        """
        self._event_loop = None
        if self._periodic_flush_task is not None:
            self._periodic_flush_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._periodic_flush_task
            self._periodic_flush_task = None
            logger.info("metrics_flush_stopped")

        await self._drain_pending_flushes()

        return await self.flush_active_window()

    async def _drain_pending_flushes(self) -> None:
        if self._pending_flush_tasks:
            await asyncio.gather(*self._pending_flush_tasks)

        with self._pending_lock:
            flush_futures = list(self._pending_flush_futures)
            flush_threads = list(self._pending_flush_threads)

        if flush_futures:
            await asyncio.gather(*(asyncio.wrap_future(flush_future) for flush_future in flush_futures))
        for flush_thread in flush_threads:
            await asyncio.to_thread(flush_thread.join)

    async def _run_periodic_flush(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.flush_active_window()
