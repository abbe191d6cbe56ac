"""Shared fixtures for kubeingest tests."""

from __future__ import annotations

import pytest
import structlog

from kubeingest.models.config import KindSelectorDefinition, KubeIngestConfig
from kubeingest.sink import InMemoryCatalogSink
from tests.factories import FakeCustomObjectsApi


@pytest.fixture(autouse=True, scope="session")
def _quiet_structlog() -> None:
    """Render log events to nothing so tests never depend on a captured stream."""
    structlog.configure(
        processors=[structlog.processors.add_log_level, structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def _clear_kubeingest_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Tests start without any KUBEINGEST_* variables from the outer environment."""
    import os

    for key in list(os.environ):
        if key.startswith("KUBEINGEST_"):
            monkeypatch.delenv(key)


@pytest.fixture()
def fake_api() -> FakeCustomObjectsApi:
    return FakeCustomObjectsApi()


@pytest.fixture()
def memory_sink() -> InMemoryCatalogSink:
    return InMemoryCatalogSink()


@pytest.fixture()
def ingest_config() -> KubeIngestConfig:
    """Crossplane discovery on, plus a static selector for cluster-scoped S3 Buckets."""
    config = KubeIngestConfig()
    config.scheduler.poll_interval_seconds = 10
    config.ingestion.kind_selectors = [
        KindSelectorDefinition(
            api_group="s3.aws.upbound.io",
            api_version="v1beta1",
            kind="Bucket",
            namespaced=False,
        )
    ]
    return config

