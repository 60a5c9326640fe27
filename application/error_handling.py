"""
Centralised error-handling registration for the FastAPI application.

Every exception type that can be raised within the service is mapped to
a specific HTTP status code and a consistent JSON error response body:

    - Request validation failure          →  400 Bad Request
    - Undefined endpoint                  →  404 Not Found
    - Wrong HTTP method                   →  405 Method Not Allowed
    - Metrics query failure               →  500 Internal Server Error
    - Metrics store not configured        →  503 Service Unavailable
    - Unexpected internal errors          →  500 Internal Server Error

Starlette raises its own ``HTTPException`` (distinct from FastAPI's
``HTTPException``) for framework-level errors such as 404 and 405.
A handler for ``starlette.exceptions.HTTPException`` intercepts these and
returns structured JSON rather than the framework's default plain text.
"""

import fastapi
import fastapi.exceptions
import fastapi.responses
import starlette.exceptions
import structlog

import application.exceptions
import application.models

logger = structlog.get_logger()

_HTTP_STATUS_CODE_TO_ERROR_CODE: dict[int, str] = {
    404: "not_found",
    405: "method_not_allowed",
}

_HTTP_STATUS_CODE_TO_ERROR_MESSAGE: dict[int, str] = {
    404: "The requested endpoint does not exist.",
    405: "The HTTP method is not allowed for this endpoint.",
}

_HTTP_STATUS_CODE_TO_LOG_EVENT_NAME: dict[int, str] = {
    404: "http_not_found",
    405: "http_method_not_allowed",
}


def _get_correlation_id(request: fastapi.Request) -> str:
    """
    Extract the correlation ID set by ``CorrelationIdMiddleware``, or
    ``"unknown"`` if the middleware has not run.
    """
    return getattr(request.state, "correlation_id", "unknown")


def _build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
) -> fastapi.responses.JSONResponse:
    error_response = application.models.ErrorResponse(
        error=application.models.ErrorDetail(
            code=code,
            message=message,
            correlation_id=correlation_id,
        ),
    )

    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(),
    )


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """
    Register all custom exception handlers on the given FastAPI application.

    The catch-all handler for unexpected exceptions (HTTP 500) lives in
    ``CorrelationIdMiddleware`` rather than here, so that the failed
    request is still logged and counted by the metrics recorder.
    """

    @fastapi_application.exception_handler(
        fastapi.exceptions.RequestValidationError,
    )
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        logger.warning("http_validation_failed", errors=validation_error.errors())
        return _build_error_response(
            400,
            "request_validation_failed",
            "The request failed validation.",
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        application.exceptions.MetricsNotConfiguredError,
    )
    async def handle_metrics_not_configured(
        request: fastapi.Request,
        not_configured_error: application.exceptions.MetricsNotConfiguredError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 503 Service Unavailable when history is requested but no
        metrics store is configured.
        """
        logger.warning("metrics_not_configured", detail=not_configured_error.detail)
        return _build_error_response(
            503,
            "metrics_not_configured",
            not_configured_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        application.exceptions.MetricsQueryError,
    )
    async def handle_metrics_query_error(
        request: fastapi.Request,
        query_error: application.exceptions.MetricsQueryError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 500 Internal Server Error when the metrics store fails or a
        stored record is malformed.  The underlying cause is logged by the
        aggregation service and is not exposed to the client.
        """
        return _build_error_response(
            500,
            "metrics_query_failed",
            query_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        starlette.exceptions.HTTPException,
    )
    async def handle_starlette_http_exception(
        request: fastapi.Request,
        http_exception: starlette.exceptions.HTTPException,
    ) -> fastapi.responses.JSONResponse:
        """
        Return structured JSON for framework-raised HTTP errors such as
        undefined endpoints (404) and disallowed methods (405).  Unmapped
        status codes fall back to ``"unexpected_error"``.
        """
        error_code = _HTTP_STATUS_CODE_TO_ERROR_CODE.get(
            http_exception.status_code,
            "unexpected_error",
        )
        error_message = _HTTP_STATUS_CODE_TO_ERROR_MESSAGE.get(
            http_exception.status_code,
            str(http_exception.detail),
        )

        logger.warning(
            _HTTP_STATUS_CODE_TO_LOG_EVENT_NAME.get(http_exception.status_code, "http_framework_error"),
            status_code=http_exception.status_code,
            error_code=error_code,
        )

        response = _build_error_response(
            http_exception.status_code,
            error_code,
            error_message,
            _get_correlation_id(request),
        )
        if http_exception.headers:
            response.headers.update(http_exception.headers)
        return response
