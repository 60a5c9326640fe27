"""
Route definitions for the admin metrics endpoints.

- ``GET /api/admin/metrics?period=24h|7d|30d``: hourly time series and
  summary for the lookback period, read from the metrics store.  Unknown
  or missing ``period`` values fall back to ``24h``.
- ``GET /api/admin/metrics/current``: the live, not yet persisted window
  of the current hour, read from memory.

Access control for these routes belongs to the admin authorisation layer
mounted in front of the service.  Responses are never cached.
"""

import typing

import fastapi
import fastapi.responses

import application.dependencies
import application.metrics
import application.models
import application.services.metrics_aggregation_service

admin_metrics_router = fastapi.APIRouter(
    prefix="/api/admin",
    tags=["Admin Metrics"],
)

_NO_STORE_HEADERS: dict[str, str] = {"Cache-Control": "no-store"}


@admin_metrics_router.get(
    "/metrics",
    response_model=application.models.MetricsQueryResponse,
    summary="Historical request metrics",
    description=(
        "Returns one time-series point per stored hour in the requested "
        "period together with a summary: total requests, average response "
        "time, error rate, new signups, distinct active users and the most "
        "requested endpoints."
    ),
    status_code=200,
    responses={
        500: {
            "description": (
                "Internal Server Error: the metrics store failed or returned "
                "a malformed record (``metrics_query_failed``)."
            ),
            "model": application.models.ErrorResponse,
        },
        503: {
            "description": (
                "Service Unavailable: no metrics store is configured "
                "(``metrics_not_configured``)."
            ),
            "model": application.models.ErrorResponse,
        },
    },
)
async def get_historical_metrics(
    metrics_aggregation_service: typing.Annotated[
        application.services.metrics_aggregation_service.MetricsAggregationService,
        fastapi.Depends(application.dependencies.get_metrics_aggregation_service),
    ],
    period: typing.Annotated[
        str | None,
        fastapi.Query(description="Lookback period: 24h, 7d or 30d. Defaults to 24h."),
    ] = None,
) -> fastapi.responses.JSONResponse:
    query_response = await metrics_aggregation_service.query(period)
    return fastapi.responses.JSONResponse(
        content=query_response.model_dump(by_alias=True),
        headers=_NO_STORE_HEADERS,
    )


@admin_metrics_router.get(
    "/metrics/current",
    response_model=application.models.ActiveWindowSnapshot,
    summary="Live metrics window",
    description="Returns the counters accumulated so far in the current hour.",
    status_code=200,
)
async def get_current_metrics_window(
    active_window_state: typing.Annotated[
        application.metrics.ActiveWindowState,
        fastapi.Depends(application.dependencies.get_active_window_state),
    ],
) -> fastapi.responses.JSONResponse:
    """
    Return the live window without touching the metrics store.

    The window is the one currently accumulating; if the hour has turned
    but no request has arrived since, it still describes the previous hour.
    """
    return fastapi.responses.JSONResponse(
        content=active_window_state.snapshot().model_dump(by_alias=True),
        headers=_NO_STORE_HEADERS,
    )
