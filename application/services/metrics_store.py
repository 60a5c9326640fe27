"""
Persistence backends for hourly metrics records.

A metrics store is an upsert-by-key document store.  Records are keyed by
``(metricType, timeBucket)``; writing a record whose key already exists
replaces the stored document unconditionally.  Reads return the raw stored
documents for a range of hour keys in ascending order, leaving validation
to the caller.

Two backends are provided:

- ``DynamoDBMetricsStore``: the production backend.  The table's partition
  key is ``metricType`` and its sort key is ``timeBucket``; DynamoDB's TTL
  feature deletes records once their ``ttl`` attribute has passed.  boto3
  is synchronous, so every call runs in a worker thread via
  ``asyncio.to_thread``.
- ``InMemoryMetricsStore``: a process-local backend for development and
  tests.  Expiry is not enforced.

Backend failures surface as ``MetricsStoreError``.  Whether that error is
swallowed (flush) or reported (query) is decided by the caller.
"""

import abc
import asyncio
import copy
import decimal
import json
import typing

import boto3
import boto3.dynamodb.conditions
import botocore.exceptions
import structlog

import application.exceptions
import application.models
import configuration

logger = structlog.get_logger()


class MetricsStore(abc.ABC):
    """Abstract upsert-by-key store for hourly metrics records."""

    @property
    @abc.abstractmethod
    def backend_name(self) -> str:
        raise NotImplementedError

    @abc.abstractmethod
    async def put_hourly_record(self, record: application.models.HourlyMetricsRecord) -> None:
        """Write ``record``, overwriting any stored record with the same key."""
        raise NotImplementedError

    @abc.abstractmethod
    async def query_hourly_records(
        self,
        from_time_bucket: str,
        to_time_bucket: str,
    ) -> list[dict[str, typing.Any]]:
        """Return stored documents with ``from <= timeBucket <= to``, ascending."""
        raise NotImplementedError


class InMemoryMetricsStore(MetricsStore):
    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, typing.Any]] = {}
        self.write_count = 0

    @property
    def backend_name(self) -> str:
        return "memory"

    async def put_hourly_record(self, record: application.models.HourlyMetricsRecord) -> None:
        document = record.model_dump(by_alias=True)
        self._documents[(record.metric_type, record.time_bucket)] = document
        self.write_count += 1

    async def put_document(self, document: dict[str, typing.Any]) -> None:
        """Store a raw document as-is.  Used to seed records written by older versions."""
        key = (document.get("metricType", application.models.HOURLY_RECORD_TYPE), document["timeBucket"])
        self._documents[key] = copy.deepcopy(document)

    async def query_hourly_records(
        self,
        from_time_bucket: str,
        to_time_bucket: str,
    ) -> list[dict[str, typing.Any]]:
        return [
            copy.deepcopy(document)
            for (metric_type, time_bucket), document in sorted(self._documents.items())
            if metric_type == application.models.HOURLY_RECORD_TYPE
            and from_time_bucket <= time_bucket <= to_time_bucket
        ]


class DynamoDBMetricsStore(MetricsStore):
    """
    Metrics store backed by a DynamoDB table.

    ``table`` may be supplied directly (an object exposing boto3's
    ``Table.put_item`` and ``Table.query``); otherwise a table resource is
    created on first use from ``table_name``, ``region_name`` and the
    optional ``endpoint_url``.
    """

    def __init__(
        self,
        table_name: str,
        region_name: str = "us-east-1",
        endpoint_url: str | None = None,
        table: typing.Any | None = None,
    ) -> None:
        self._table_name = table_name
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        self._table = table

    @property
    def backend_name(self) -> str:
        return "dynamodb"

    @property
    def table_name(self) -> str:
        return self._table_name

    def _get_table(self) -> typing.Any:
        if self._table is None:
            dynamodb_resource = boto3.resource(
                "dynamodb",
                region_name=self._region_name,
                endpoint_url=self._endpoint_url,
            )
            self._table = dynamodb_resource.Table(self._table_name)
        return self._table

    async def put_hourly_record(self, record: application.models.HourlyMetricsRecord) -> None:
        item = _to_dynamodb_item(record.model_dump(by_alias=True))

        def _put() -> None:
            self._get_table().put_item(Item=item)

        try:
            await asyncio.to_thread(_put)
        except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as dynamodb_error:
            raise application.exceptions.MetricsStoreError(
                f"Failed to write metrics record to table '{self._table_name}'.",
            ) from dynamodb_error

    async def query_hourly_records(
        self,
        from_time_bucket: str,
        to_time_bucket: str,
    ) -> list[dict[str, typing.Any]]:
        key_condition = boto3.dynamodb.conditions.Key("metricType").eq(
            application.models.HOURLY_RECORD_TYPE,
        ) & boto3.dynamodb.conditions.Key("timeBucket").between(from_time_bucket, to_time_bucket)

        def _query() -> list[dict[str, typing.Any]]:
            items: list[dict[str, typing.Any]] = []
            query_arguments: dict[str, typing.Any] = {
                "KeyConditionExpression": key_condition,
                "ScanIndexForward": True,
            }
            while True:
                page = self._get_table().query(**query_arguments)
                items.extend(page.get("Items", []))
                last_evaluated_key = page.get("LastEvaluatedKey")
                if not last_evaluated_key:
                    return items
                query_arguments["ExclusiveStartKey"] = last_evaluated_key

        try:
            items = await asyncio.to_thread(_query)
        except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as dynamodb_error:
            raise application.exceptions.MetricsStoreError(
                f"Failed to query metrics records from table '{self._table_name}'.",
            ) from dynamodb_error

        return [_from_dynamodb_value(item) for item in items]


def _to_dynamodb_item(document: dict[str, typing.Any]) -> dict[str, typing.Any]:
    # boto3 rejects Python floats; the JSON round trip turns them into Decimals.
    return json.loads(json.dumps(document), parse_float=decimal.Decimal)


def _from_dynamodb_value(value: typing.Any) -> typing.Any:
    """Convert the Decimals boto3 returns for numbers back to int or float."""
    if isinstance(value, decimal.Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {key: _from_dynamodb_value(nested) for key, nested in value.items()}
    if isinstance(value, (list, set)):
        return [_from_dynamodb_value(nested) for nested in value]
    return value


def create_metrics_store(
    application_configuration: configuration.ApplicationConfiguration,
) -> MetricsStore | None:
    """
    Build the configured metrics store, or return ``None`` when no table
    name is configured.
    """
    if not application_configuration.metrics_table_name:
        logger.warning("metrics_store_not_configured")
        return None

    if application_configuration.metrics_store_backend == "memory":
        return InMemoryMetricsStore()

    return DynamoDBMetricsStore(
        table_name=application_configuration.metrics_table_name,
        region_name=application_configuration.aws_region,
        endpoint_url=application_configuration.dynamodb_endpoint_url,
    )
