"""Tests for paged, timeout-bounded resource listing."""

from __future__ import annotations

import aiohttp
import pytest
from kubernetes_asyncio.client import ApiException  # type: ignore[import-untyped]

from kubeingest.errors import ErrorScope, FetchError, ValidationError
from kubeingest.fetcher import ResourceFetcher, to_raw_resource
from kubeingest.models.entities import CycleError
from kubeingest.models.resources import KindSelector
from tests.factories import FakeCustomObjectsApi, bucket_selector, fake_client_factory, make_cluster, make_obj

_BUCKET_KEY = ("s3.aws.upbound.io", "v1beta1", "buckets")


def _buckets(count: int) -> list[dict]:
    return [
        make_obj("Bucket", f"bucket-{i}", f"uid-{i}", api_version="s3.aws.upbound.io/v1beta1") for i in range(count)
    ]


def _fetcher(api: FakeCustomObjectsApi, page_size: int = 2, kind_timeout: float = 2.0) -> ResourceFetcher:
    return ResourceFetcher(
        client_factory=fake_client_factory({"cluster-1": api}),
        page_size=page_size,
        kind_timeout=kind_timeout,
    )


class TestPagination:
    async def test_follows_continue_tokens(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(_BUCKET_KEY, *_buckets(5))
        resources = await _fetcher(fake_api).fetch(make_cluster(), bucket_selector())

        assert [r.name for r in resources] == [f"bucket-{i}" for i in range(5)]
        assert [c["continue"] for c in fake_api.calls] == [None, "2", "4"]
        assert all(c["limit"] == 2 for c in fake_api.calls)

    async def test_namespaced_selector_uses_namespaced_call(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(
            ("example.org", "v1", "claims"),
            make_obj("Claim", "a", "uid-a", namespace="team-a"),
            make_obj("Claim", "b", "uid-b", namespace="team-b"),
        )
        selector = KindSelector("example.org", "v1", "Claim", namespace="team-a")
        resources = await _fetcher(fake_api).fetch(make_cluster(), selector)

        assert [r.name for r in resources] == ["a"]
        assert fake_api.calls[0]["namespace"] == "team-a"

    async def test_parsed_fields(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(
            _BUCKET_KEY,
            make_obj(
                "Bucket",
                "logs",
                "uid-logs",
                api_version="s3.aws.upbound.io/v1beta1",
                owners=[("XBucket", "uid-xr")],
                labels={"team": "data"},
                annotations={"note": "x"},
                spec={"forProvider": {"region": "eu-west-1"}},
                status={"atProvider": {"arn": "arn:aws:s3:::logs"}},
            ),
        )
        [resource] = await _fetcher(fake_api).fetch(make_cluster(), bucket_selector())

        assert resource.api_group == "s3.aws.upbound.io"
        assert resource.api_version == "v1beta1"
        assert resource.owner_refs[0].uid == "uid-xr"
        assert resource.owner_refs[0].controller is True
        assert resource.labels == {"team": "data"}
        assert resource.spec == {"forProvider": {"region": "eu-west-1"}}
        assert resource.status == {"atProvider": {"arn": "arn:aws:s3:::logs"}}
        assert resource.namespaced is False


class TestFailures:
    async def test_not_installed_kind_is_empty(self, fake_api: FakeCustomObjectsApi) -> None:
        assert await _fetcher(fake_api).fetch(make_cluster(), bucket_selector()) == []

    async def test_api_error_raises_fetch_error(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(_BUCKET_KEY, *_buckets(1))
        fake_api.failures[_BUCKET_KEY] = ApiException(status=403, reason="Forbidden")
        with pytest.raises(FetchError) as exc_info:
            await _fetcher(fake_api).fetch(make_cluster(), bucket_selector())
        assert exc_info.value.scope == ErrorScope.KIND
        assert "403" in str(exc_info.value)

    async def test_failure_mid_pagination_discards_partial_pages(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(_BUCKET_KEY, *_buckets(5))
        fake_api.fail_on_page[_BUCKET_KEY] = (1, aiohttp.ClientConnectionError("reset"))
        with pytest.raises(FetchError):
            await _fetcher(fake_api).fetch(make_cluster(), bucket_selector())

    async def test_timeout_raises_fetch_error(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(_BUCKET_KEY, *_buckets(1))
        fake_api.delays[_BUCKET_KEY] = 1.0
        with pytest.raises(FetchError, match="timed out"):
            await _fetcher(fake_api, kind_timeout=0.05).fetch(make_cluster(), bucket_selector())

    async def test_invalid_items_dropped_and_recorded(self, fake_api: FakeCustomObjectsApi) -> None:
        nameless = make_obj("Bucket", "", "uid-x", api_version="s3.aws.upbound.io/v1beta1")
        fake_api.add(_BUCKET_KEY, nameless, *_buckets(1))
        errors: list[CycleError] = []
        resources = await _fetcher(fake_api).fetch(make_cluster(), bucket_selector(), errors)

        assert [r.name for r in resources] == ["bucket-0"]
        assert len(errors) == 1
        assert errors[0].scope == ErrorScope.RESOURCE


class TestFetchAll:
    async def test_one_kind_failing_leaves_others(self, fake_api: FakeCustomObjectsApi) -> None:
        fake_api.add(_BUCKET_KEY, *_buckets(3))
        broken = KindSelector("rds.aws.upbound.io", "v1beta1", "Instance", namespaced=False)
        fake_api.add(("rds.aws.upbound.io", "v1beta1", "instances"), make_obj("Instance", "db", "uid-db"))
        fake_api.failures[("rds.aws.upbound.io", "v1beta1", "instances")] = ApiException(status=500, reason="Boom")

        outcome = await _fetcher(fake_api).fetch_all(make_cluster(), [bucket_selector(), broken])

        assert len(outcome.resources) == 3
        assert outcome.failed == [broken]
        assert [e.scope for e in outcome.errors] == [ErrorScope.KIND]


class TestToRawResource:
    def test_missing_uid_is_validation_error(self) -> None:
        obj = make_obj("Bucket", "b", "")
        with pytest.raises(ValidationError):
            to_raw_resource(make_cluster(), bucket_selector(), obj)

    def test_kind_and_version_fall_back_to_selector(self) -> None:
        obj = {"metadata": {"name": "b", "uid": "u"}}
        resource = to_raw_resource(make_cluster(), bucket_selector(), obj)
        assert resource.kind == "Bucket"
        assert resource.full_api_version == "s3.aws.upbound.io/v1beta1"
