"""
FastAPI dependency injection providers.

Each function in this module retrieves a shared service instance from the
FastAPI application state. This pattern keeps route handlers decoupled from
service construction and makes the application straightforward to test.
"""

import fastapi

import application.metrics
import application.services.metrics_aggregation_service


def get_metrics_aggregation_service(
    request: fastapi.Request,
) -> application.services.metrics_aggregation_service.MetricsAggregationService:
    """
    Retrieve the shared MetricsAggregationService from application state.

    The service exists even when no metrics store is configured; it is the
    service's query that reports the missing store, with HTTP 503.
    """
    return request.app.state.metrics_aggregation_service  # type: ignore[no-any-return]


def get_active_window_state(
    request: fastapi.Request,
) -> application.metrics.ActiveWindowState:
    """Retrieve the live hourly metrics window owner from application state."""
    return request.app.state.active_window_state  # type: ignore[no-any-return]
