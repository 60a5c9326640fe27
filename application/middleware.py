"""
HTTP middleware for the FastAPI application.

``CorrelationIdMiddleware`` is the single, outermost middleware layer.  For
every HTTP request it:

- assigns a UUID v4 correlation ID, returned in the ``X-Correlation-ID``
  response header and bound to the structured log context;
- logs ``http_request_received`` and ``http_request_completed``;
- acts as the catch-all error boundary, turning unhandled exceptions into
  a JSON HTTP 500 response;
- reports the completed request to the ``RequestMetricsRecorder``.

Metrics telemetry
-----------------
The recorder receives the method, the raw URL (path plus query string),
the final status, the duration in whole milliseconds, the caller identity
and a signup flag.  The caller identity is read from
``request.state.caller_identity``, which the authentication layer sets for
authenticated requests.  A request counts as a signup when it is a
``POST`` to the configured signup path answered with HTTP 201.

A request whose application returned without starting a response has no
status to report; it is logged but not recorded.
"""

import json
import time
import uuid

import starlette.types
import structlog
import structlog.contextvars

import application.metrics

logger = structlog.get_logger()

CALLER_IDENTITY_STATE_KEY = "caller_identity"


def _build_raw_url(scope: starlette.types.Scope) -> str:
    path = scope.get("path", "")
    query_string = scope.get("query_string", b"")
    if query_string:
        return f"{path}?{query_string.decode('latin-1')}"
    return path


class CorrelationIdMiddleware:
    """
    Assign a correlation ID to every request and record its metrics.

    Implemented as a pure ASGI middleware to avoid two Starlette issues:

    1. BaseHTTPMiddleware wraps unhandled exceptions in ExceptionGroup,
       preventing catch-all exception handlers from firing.
    2. Starlette routes ``Exception`` handlers to ServerErrorMiddleware,
       which always re-raises after sending the response.  Catching
       unhandled exceptions here fully contains the error and still lets
       the failed request be counted as a 5xx.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        metrics_recorder: application.metrics.RequestMetricsRecorder | None = None,
        signup_path: str = "/api/signup",
    ) -> None:
        self.app = app
        self._metrics_recorder = metrics_recorder
        self._signup_path = signup_path

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        path = scope.get("path", "")
        start_time = time.monotonic()
        response_status = 0

        if "state" not in scope:
            scope["state"] = {}
        scope["state"]["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info("http_request_received", method=method, path=path)

        async def send_with_correlation_id(message: starlette.types.Message) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
                headers = list(message.get("headers", []))
                headers.append((b"x-correlation-id", correlation_id.encode()))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation_id)
        except Exception:
            response_status = 500
            logger.exception("unexpected_exception")
            error_response_body = json.dumps(
                {
                    "error": {
                        "code": "internal_server_error",
                        "message": "An unexpected internal error occurred.",
                        "correlation_id": correlation_id,
                    }
                }
            ).encode()
            await send(
                {
                    "type": "http.response.start",
                    "status": 500,
                    "headers": [
                        (b"content-type", b"application/json"),
                        (b"x-correlation-id", correlation_id.encode()),
                    ],
                }
            )
            await send(
                {
                    "type": "http.response.body",
                    "body": error_response_body,
                }
            )
        finally:
            duration_milliseconds = (time.monotonic() - start_time) * 1000
            logger.info(
                "http_request_completed",
                method=method,
                path=path,
                status=response_status,
                duration_milliseconds=round(duration_milliseconds, 1),
            )
            # No response was started, e.g. the client disconnected first.
            if self._metrics_recorder is not None and response_status:
                self._metrics_recorder.record(
                    method=method,
                    url=_build_raw_url(scope),
                    status=response_status,
                    response_time_ms=int(duration_milliseconds),
                    caller_identity=scope["state"].get(CALLER_IDENTITY_STATE_KEY),
                    is_signup=(method == "POST" and path == self._signup_path and response_status == 201),
                )
