"""Resource Fetcher: lists custom resources of one kind from one cluster.

Listing is paged with ``limit``/``continue`` until the server reports no
further pages. A kind is all-or-nothing: if any page fails, or the whole
listing exceeds the per-kind timeout, the pages already received are
discarded and a FetchError is raised. Only list calls are issued.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

from kubeingest.errors import FetchError, ValidationError
from kubeingest.models.entities import CycleError
from kubeingest.models.resources import ClusterRef, KindSelector, OwnerRef, RawResource

_log = structlog.get_logger(component="fetcher")

ClientFactory = Callable[[ClusterRef], AbstractAsyncContextManager[Any]]


@asynccontextmanager
async def kubernetes_client_factory(cluster: ClusterRef) -> AsyncIterator[Any]:
    """Open a CustomObjectsApi bound to *cluster*'s endpoint and credentials."""
    configuration = k8s_client.Configuration()
    configuration.host = cluster.api_base_url
    credentials = cluster.credentials
    if credentials.token:
        configuration.api_key = {"authorization": credentials.token}
        configuration.api_key_prefix = {"authorization": "Bearer"}
    if credentials.ca_cert_path:
        configuration.ssl_ca_cert = credentials.ca_cert_path
    configuration.verify_ssl = not credentials.skip_tls_verify

    async with k8s_client.ApiClient(configuration) as api_client:
        for header, value in credentials.headers.items():
            api_client.set_default_header(header, value)
        yield k8s_client.CustomObjectsApi(api_client)


@dataclass
class FetchOutcome:
    """Result of fetching every selected kind from one cluster."""

    resources: list[RawResource] = field(default_factory=list)
    errors: list[CycleError] = field(default_factory=list)
    failed: list[KindSelector] = field(default_factory=list)


def _str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def to_raw_resource(cluster: ClusterRef, selector: KindSelector, obj: Any) -> RawResource:
    """Convert one listed object into a RawResource.

    Raises:
        ValidationError: the object has no ``metadata.uid`` or ``metadata.name``.
    """
    if not isinstance(obj, dict):
        raise ValidationError(f"{selector} returned a non-object item", subject=f"{cluster.name}/{selector.kind}")
    metadata = obj.get("metadata") or {}
    name = str(metadata.get("name") or "")
    uid = str(metadata.get("uid") or "")
    kind = str(obj.get("kind") or selector.kind)
    if not name or not uid:
        raise ValidationError(
            f"{kind} is missing metadata.name or metadata.uid",
            subject=f"{cluster.name}/{kind.lower()}/{name or '<unnamed>'}",
        )

    api_version = str(obj.get("apiVersion") or selector.group_version)
    group, _, version = api_version.rpartition("/")

    owner_refs: list[OwnerRef] = []
    for ref in metadata.get("ownerReferences") or []:
        if isinstance(ref, dict) and ref.get("uid"):
            owner_refs.append(
                OwnerRef(
                    uid=str(ref["uid"]),
                    kind=str(ref.get("kind", "")),
                    name=str(ref.get("name", "")),
                    controller=bool(ref.get("controller", False)),
                )
            )

    return RawResource(
        cluster=cluster,
        api_group=group or selector.api_group,
        api_version=version or selector.api_version,
        kind=kind,
        name=name,
        uid=uid,
        namespace=metadata.get("namespace") or None,
        resource_version=str(metadata.get("resourceVersion") or ""),
        owner_refs=tuple(owner_refs),
        annotations=_str_map(metadata.get("annotations")),
        labels=_str_map(metadata.get("labels")),
        spec=obj.get("spec"),
        status=obj.get("status"),
        namespaced=selector.namespaced,
    )


class ResourceFetcher:
    """Lists custom resources through the Kubernetes API, one kind at a time.

    Args:
        client_factory:   Opens a CustomObjectsApi-compatible client for a
                          cluster. Defaults to kubernetes_asyncio.
        page_size:        ``limit`` sent with every list request.
        kind_timeout:     Upper bound in seconds for listing one kind, all pages.
        request_timeout:  Upper bound in seconds for a single list request.
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        page_size: int = 500,
        kind_timeout: float = 30.0,
        request_timeout: float = 10.0,
    ) -> None:
        self._client_factory = client_factory or kubernetes_client_factory
        self._page_size = page_size
        self._kind_timeout = kind_timeout
        self._request_timeout = request_timeout

    def open(self, cluster: ClusterRef) -> AbstractAsyncContextManager[Any]:
        """Open a client for *cluster* that can be shared across several fetches."""
        return self._client_factory(cluster)

    async def fetch(
        self,
        cluster: ClusterRef,
        selector: KindSelector,
        errors: list[CycleError] | None = None,
        api: Any = None,
    ) -> list[RawResource]:
        """List every object of *selector*'s kind in *cluster*.

        Items failing validation are dropped; when *errors* is given a
        resource-scope CycleError is appended for each.

        Raises:
            FetchError: the listing failed or timed out. No partial result is returned.
        """
        if api is None:
            async with self.open(cluster) as opened:
                return await self.fetch(cluster, selector, errors, api=opened)

        subject = f"{cluster.name}/{selector}"
        try:
            items = await asyncio.wait_for(self._list_all(api, selector), timeout=self._kind_timeout)
        except TimeoutError as exc:
            raise FetchError(f"listing {selector} timed out after {self._kind_timeout}s", subject=subject) from exc
        except k8s_client.ApiException as exc:
            if exc.status == 404:
                _log.debug("kind_not_installed", cluster=cluster.name, selector=str(selector))
                return []
            raise FetchError(f"listing {selector} failed: {exc.status} {exc.reason}", subject=subject) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise FetchError(f"listing {selector} failed: {exc}", subject=subject) from exc

        resources: list[RawResource] = []
        for item in items:
            try:
                resources.append(to_raw_resource(cluster, selector, item))
            except ValidationError as exc:
                _log.warning("resource_dropped", cluster=cluster.name, subject=exc.subject, reason=str(exc))
                if errors is not None:
                    errors.append(CycleError.from_exception(exc))
        return resources

    async def fetch_all(
        self,
        cluster: ClusterRef,
        selectors: list[KindSelector],
        api: Any = None,
    ) -> FetchOutcome:
        """Fetch all *selectors* concurrently. One kind failing never affects another."""
        if api is None:
            async with self.open(cluster) as opened:
                return await self.fetch_all(cluster, selectors, api=opened)

        outcome = FetchOutcome()
        per_kind_errors: list[list[CycleError]] = [[] for _ in selectors]
        results = await asyncio.gather(
            *(self.fetch(cluster, selector, per_kind_errors[i], api=api) for i, selector in enumerate(selectors)),
            return_exceptions=True,
        )
        for selector, result, item_errors in zip(selectors, results, per_kind_errors, strict=True):
            if isinstance(result, FetchError):
                _log.warning("kind_fetch_failed", cluster=cluster.name, selector=str(selector), error=str(result))
                outcome.errors.append(CycleError.from_exception(result))
                outcome.failed.append(selector)
                continue
            if isinstance(result, BaseException):
                raise result
            outcome.resources.extend(result)
            outcome.errors.extend(item_errors)
        return outcome

    async def _list_all(self, api: Any, selector: KindSelector) -> list[Any]:
        items: list[Any] = []
        continue_token = ""
        while True:
            kwargs: dict[str, Any] = {
                "limit": self._page_size,
                "_request_timeout": self._request_timeout,
            }
            if continue_token:
                kwargs["_continue"] = continue_token
            if selector.namespace:
                page = await api.list_namespaced_custom_object(
                    selector.api_group, selector.api_version, selector.namespace, selector.plural, **kwargs
                )
            else:
                page = await api.list_cluster_custom_object(
                    selector.api_group, selector.api_version, selector.plural, **kwargs
                )
            page = page or {}
            items.extend(page.get("items") or [])
            next_token = (page.get("metadata") or {}).get("continue") or ""
            if not next_token:
                return items
            if next_token == continue_token:
                raise FetchError(f"listing {selector} returned a repeated continue token", subject=str(selector))
            continue_token = next_token
