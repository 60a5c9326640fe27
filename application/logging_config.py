"""
Structured logging configuration for the request metrics service.

Every log record is rendered as one JSON object on stdout carrying the
fields ``timestamp`` (ISO 8601 UTC), ``level``, ``event``,
``service_name`` and, inside a request, ``correlation_id``.

structlog-native loggers and standard library loggers (Uvicorn, boto3)
share one processing pipeline, so both produce identical JSON output.
"""

import logging
import sys

import structlog

SERVICE_NAME = "request-metrics-service"

# Third-party loggers that are chatty at INFO and below.  They are capped at
# WARNING regardless of the configured application level.
_NOISY_THIRD_PARTY_LOGGER_NAMES: tuple[str, ...] = (
    "botocore",
    "boto3",
    "urllib3",
)


def _add_service_name(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Inject the service name into every log entry."""
    event_dict["service_name"] = SERVICE_NAME
    return event_dict


def _uppercase_level(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured JSON logging to stdout.

    Unknown level names fall back to INFO.  Should be called once during
    application startup, before any log messages are emitted; calling it
    again replaces the root handler rather than adding a second one.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service_name,
        structlog.stdlib.add_log_level,
        _uppercase_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for noisy_logger_name in _NOISY_THIRD_PARTY_LOGGER_NAMES:
        logging.getLogger(noisy_logger_name).setLevel(max(level, logging.WARNING))
