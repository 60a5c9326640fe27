"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
REQUEST_METRICS_. Default values are provided for local development. A .env
file is also supported via pydantic-settings.

This module is the single source of truth for all runtime configuration
within the service process.
"""

import typing

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the request metrics service.

    Every field maps to an environment variable prefixed with
    REQUEST_METRICS_.  For example, the field ``metrics_table_name`` is
    populated from the environment variable REQUEST_METRICS_METRICS_TABLE_NAME.

    Configuration categories
    ------------------------
    - **Application**: host, port, log level
    - **Metrics store**: backend, table name, AWS region, endpoint override
    - **Metrics collection**: flush interval, retention, health-check and
      signup paths, number of top endpoints reported

    Unconfigured store
    ------------------
    Leaving ``metrics_table_name`` empty disables persistence.  Flushes are
    then skipped silently, while the history query fails with HTTP 503 so
    that operators never mistake a missing store for an idle service.
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(default=8000, ge=1, le=65535)

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    # ── Metrics store settings ────────────────────────────────────────────

    metrics_store_backend: typing.Literal["dynamodb", "memory"] = pydantic.Field(
        default="dynamodb",
        description=(
            "Persistence backend for hourly metrics records. 'dynamodb' "
            "writes to the table named by metrics_table_name; 'memory' keeps "
            "records in process and is intended for local development."
        ),
    )

    metrics_table_name: str = pydantic.Field(
        default="",
        description=(
            "Name of the table holding hourly metrics records. An empty "
            "value leaves the store unconfigured."
        ),
    )

    aws_region: str = pydantic.Field(
        default="us-east-1",
        description="AWS region of the DynamoDB metrics table.",
    )

    dynamodb_endpoint_url: str | None = pydantic.Field(
        default=None,
        description=(
            "Optional endpoint override for DynamoDB, for example "
            "'http://localhost:8001' when running DynamoDB Local."
        ),
    )

    # ── Metrics collection settings ───────────────────────────────────────

    metrics_flush_interval_seconds: float = pydantic.Field(
        default=60.0,
        gt=0,
        description=(
            "Period of the background task that persists the live hourly "
            "window. Each flush overwrites the record for the current hour."
        ),
    )

    metrics_retention_days: int = pydantic.Field(
        default=90,
        ge=1,
        description="Number of days after which stored hourly records expire.",
    )

    metrics_top_endpoints_limit: int = pydantic.Field(
        default=10,
        ge=1,
        description="Number of endpoints listed in the summary ranking.",
    )

    health_check_path: str = pydantic.Field(
        default="/health",
        description="Path of the liveness probe, which is never counted.",
    )

    signup_path: str = pydantic.Field(
        default="/api/signup",
        description=(
            "Path whose successful POST (HTTP 201) is counted as a new "
            "signup."
        ),
    )

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="REQUEST_METRICS_",
    )
