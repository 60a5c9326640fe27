"""
FastAPI application factory.

The ``create_application`` function constructs a fully configured FastAPI
instance with metrics lifecycle management, error handling, and route
registration. Using a factory function (rather than a module-level global)
gives every application its own metrics window, which keeps tests isolated.
"""

import collections.abc
import contextlib

import fastapi
import structlog

import application.error_handling
import application.logging_config
import application.metrics
import application.middleware
import application.routes.admin_metrics_routes
import application.routes.health_routes
import application.services.metrics_aggregation_service
import application.services.metrics_flush_service
import application.services.metrics_store
import configuration

logger = structlog.get_logger()


def create_application(
    application_configuration: configuration.ApplicationConfiguration | None = None,
    metrics_store: application.services.metrics_store.MetricsStore | None = None,
    clock: application.metrics.HourBucketClock | None = None,
) -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    This function:
      1. Reads configuration from environment variables (unless a
         configuration object is supplied).
      2. Builds the metrics pipeline: the live window state, the flush
         service, the recorder and the aggregation service.  An explicit
         ``metrics_store`` replaces the store built from configuration.
      3. Defines a lifespan that starts the periodic flush on startup and
         drains the live window on shutdown.
      4. Registers error handlers, the correlation-ID middleware and the
         routes.
    """
    if application_configuration is None:
        application_configuration = configuration.ApplicationConfiguration()
    application.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    if metrics_store is None:
        metrics_store = application.services.metrics_store.create_metrics_store(application_configuration)

    active_window_state = application.metrics.ActiveWindowState(clock=clock)
    metrics_flush_service = application.services.metrics_flush_service.MetricsFlushService(
        state=active_window_state,
        store=metrics_store,
        retention_days=application_configuration.metrics_retention_days,
    )
    metrics_recorder = application.metrics.RequestMetricsRecorder(
        state=active_window_state,
        on_window_closed=metrics_flush_service.schedule_flush,
        health_check_path=application_configuration.health_check_path,
    )
    metrics_aggregation_service = application.services.metrics_aggregation_service.MetricsAggregationService(
        store=metrics_store,
        clock=active_window_state.clock,
        top_endpoints_limit=application_configuration.metrics_top_endpoints_limit,
    )

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        """
        Start the periodic metrics flush on startup; on shutdown, stop it
        and persist whatever the live window still holds.
        """
        metrics_flush_service.start(
            interval_seconds=application_configuration.metrics_flush_interval_seconds,
        )
        logger.info(
            "services_initialised",
            metrics_store_backend=(metrics_store.backend_name if metrics_store is not None else None),
            metrics_flush_interval_seconds=application_configuration.metrics_flush_interval_seconds,
        )

        yield

        logger.info("graceful_shutdown_initiated")
        await metrics_flush_service.stop()
        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="Request Metrics Service",
        description=(
            "Collects per-request metrics into hourly windows, persists them "
            "to a metrics store, and serves historical summaries to the "
            "admin dashboard."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    fastapi_application.state.active_window_state = active_window_state
    fastapi_application.state.metrics_flush_service = metrics_flush_service
    fastapi_application.state.metrics_recorder = metrics_recorder
    fastapi_application.state.metrics_aggregation_service = metrics_aggregation_service

    application.error_handling.register_error_handlers(fastapi_application)

    fastapi_application.add_middleware(
        application.middleware.CorrelationIdMiddleware,
        metrics_recorder=metrics_recorder,
        signup_path=application_configuration.signup_path,
    )

    fastapi_application.include_router(
        application.routes.admin_metrics_routes.admin_metrics_router,
    )
    fastapi_application.include_router(
        application.routes.health_routes.health_router,
    )

    return fastapi_application
