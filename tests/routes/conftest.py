"""Shared fixtures for route integration tests."""

import httpx
import pytest
import pytest_asyncio

import application.metrics
import application.server_factory
import application.services.metrics_store
import configuration


@pytest.fixture
def application_configuration():
    return configuration.ApplicationConfiguration(
        metrics_table_name="TestMetrics",
        metrics_store_backend="memory",
    )


@pytest.fixture
def test_app(application_configuration, in_memory_metrics_store, adjustable_clock):
    """
    Fully assembled application backed by the in-memory store, with its
    clock pinned to the shared adjustable test clock.
    """
    return application.server_factory.create_application(
        application_configuration=application_configuration,
        metrics_store=in_memory_metrics_store,
        clock=application.metrics.HourBucketClock(now=adjustable_clock),
    )


@pytest.fixture
def unconfigured_app(adjustable_clock):
    """Application started without a metrics table name."""
    return application.server_factory.create_application(
        application_configuration=configuration.ApplicationConfiguration(metrics_table_name=""),
        clock=application.metrics.HourBucketClock(now=adjustable_clock),
    )


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
