"""Tests for the read API: health, status, graphs, metrics and the error envelope."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

from kubeingest import __version__
from kubeingest.api import create_app
from kubeingest.models.config import KubeIngestConfig
from kubeingest.models.resources import RawResource
from kubeingest.scheduler import IngestionScheduler
from kubeingest.sink import InMemoryCatalogSink
from tests.factories import FakeCustomObjectsApi, build_scheduler, seed_xbuckets

ROOT_ID = "cluster-1/xbucket/cluster-scoped/media-0"


@pytest.fixture()
def ingested(ingest_config: KubeIngestConfig) -> IngestionScheduler:
    """Scheduler that has completed one cycle against a seeded fake cluster."""
    api = FakeCustomObjectsApi()
    seed_xbuckets(api)
    scheduler = build_scheduler({"cluster-1": api}, InMemoryCatalogSink(), ingest_config)
    asyncio.run(scheduler.run_cycle("cluster-1"))
    return scheduler


def _hide_first_bucket(request: Request, resource: RawResource) -> bool:
    if request.headers.get("X-Team") == "admins":
        return True
    return resource.name != "media-0-0"


class TestHealthAndStatus:
    def test_health(self, ingested: IngestionScheduler) -> None:
        response = TestClient(create_app(ingested)).get("/api/v1/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__, "scheduler_running": False}

    def test_status_lists_clusters(self, ingested: IngestionScheduler) -> None:
        body = TestClient(create_app(ingested)).get("/api/v1/status").json()

        assert body["version"] == __version__
        [cluster] = body["clusters"]
        assert cluster["name"] == "cluster-1"
        assert cluster["state"] == "idle"
        assert cluster["entity_count"] == 9
        assert cluster["consecutive_failures"] == 0


class TestGraphs:
    def test_graph_by_root_entity_id(self, ingested: IngestionScheduler) -> None:
        response = TestClient(create_app(ingested)).get(f"/api/v1/graphs/{ROOT_ID}")

        assert response.status_code == 200
        body = response.json()
        assert body["root_entity_id"] == ROOT_ID
        assert body["cluster"] == "cluster-1"
        assert [n["name"] for n in body["nodes"]] == ["media-0", "media-0-0", "media-0-1"]
        assert body["nodes"][1]["parent"] == body["root"]
        assert {e["type"] for e in body["edges"]} == {"owner_reference"}

    def test_unknown_graph_is_404_envelope(self, ingested: IngestionScheduler) -> None:
        response = TestClient(create_app(ingested)).get("/api/v1/graphs/cluster-1/xbucket/cluster-scoped/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "GRAPH_NOT_FOUND"

    def test_authorize_hook_filters_nodes(self, ingested: IngestionScheduler) -> None:
        client = TestClient(create_app(ingested, authorize=_hide_first_bucket))

        restricted = client.get(f"/api/v1/graphs/{ROOT_ID}").json()
        admin = client.get(f"/api/v1/graphs/{ROOT_ID}", headers={"X-Team": "admins"}).json()

        assert [n["name"] for n in restricted["nodes"]] == ["media-0", "media-0-1"]
        assert len(admin["nodes"]) == 3

    def test_unauthorized_root_looks_absent(self, ingested: IngestionScheduler) -> None:
        client = TestClient(create_app(ingested, authorize=lambda request, resource: resource.kind != "XBucket"))
        response = client.get(f"/api/v1/graphs/{ROOT_ID}")

        assert response.status_code == 404
        assert response.json()["error"] == "GRAPH_NOT_FOUND"


class TestMetricsAndErrors:
    def test_metrics_exposed(self, ingested: IngestionScheduler) -> None:
        response = TestClient(create_app(ingested)).get("/api/v1/metrics")

        assert response.status_code == 200
        assert "kubeingest_cycles_total" in response.text

    def test_unexpected_error_is_500_envelope(self) -> None:
        scheduler = MagicMock()
        scheduler.status.side_effect = RuntimeError("boom")
        client = TestClient(create_app(scheduler), raise_server_exceptions=False)

        response = client.get("/api/v1/status")

        assert response.status_code == 500
        assert response.json() == {"error": "INTERNAL_ERROR", "detail": "An unexpected error occurred."}


class TestGraphIdFuzz:
    @settings(max_examples=50, deadline=None)
    @given(
        st.text(
            alphabet=st.characters(min_codepoint=0x21, max_codepoint=0x7E, exclude_characters="#?%."),
            max_size=60,
        )
    )
    def test_arbitrary_ids_never_500(self, root_entity_id: str) -> None:
        scheduler = MagicMock()
        scheduler.get_graph.return_value = None
        client = TestClient(create_app(scheduler), raise_server_exceptions=False)

        response = client.get(f"/api/v1/graphs/{root_entity_id}")

        assert response.status_code == 404
        assert set(response.json()) == {"error", "detail"}
