"""Cluster Locator: which clusters to ingest from, and with which credentials.

Static definitions come from configuration; an optional discovery
collaborator contributes more. Resolution runs at the start of every tick so
that rotated tokens and added/removed clusters are picked up without a
restart.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod

import httpx
import structlog

from kubeingest.errors import ConfigError, CycleFatalError, ErrorScope
from kubeingest.models.config import ClusterDefinition, DiscoveryConfig
from kubeingest.models.resources import ClusterCredentials, ClusterRef

_log = structlog.get_logger(component="locator")

_CLUSTER_HEADER = "Backstage-Kubernetes-Cluster"


class ClusterDiscovery(ABC):
    """Source of clusters beyond the static configuration."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Identifier used in logs."""

    @abstractmethod
    async def discover(self) -> list[ClusterRef]:
        """Return the clusters currently known to this source.

        Raises any exception on failure; the locator decides whether that is fatal.
        """


class HttpClusterDiscovery(ClusterDiscovery):
    """Discovers clusters from a Kubernetes proxy backend.

    ``GET {base_url}/clusters`` returns ``{"items": [{"name": ..., "authProvider": ...}]}``.
    Every discovered cluster is reached through ``{base_url}/proxy`` with the
    cluster selected by a request header.

    Args:
        base_url:                 Root URL of the proxy backend.
        token:                    Bearer token for the backend.
        excluded_auth_providers:  Providers needing client-side auth (e.g. oidc)
                                  that cannot work server-to-server.
        timeout:                  HTTP timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        excluded_auth_providers: list[str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        if not base_url:
            raise ValueError("Discovery base_url must not be empty")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._excluded = {p.lower() for p in (excluded_auth_providers or ["oidc"])}
        self._timeout = timeout

    @property
    def source_name(self) -> str:
        return "http"

    async def discover(self) -> list[ClusterRef]:
        headers = {"X-Kubernetes-Ingestor": "true"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(f"{self._base_url}/clusters", headers=headers)
            response.raise_for_status()
            payload = response.json()

        clusters: list[ClusterRef] = []
        for item in payload.get("items", []):
            name = str(item.get("name", ""))
            if not name:
                continue
            auth_provider = str(item.get("authProvider", "")).lower()
            if auth_provider in self._excluded:
                _log.debug("discovered_cluster_excluded", cluster=name, auth_provider=auth_provider)
                continue
            clusters.append(
                ClusterRef(
                    name=name,
                    api_base_url=f"{self._base_url}/proxy",
                    credentials=ClusterCredentials(
                        token=self._token,
                        headers={_CLUSTER_HEADER: name},
                    ),
                )
            )
        return clusters


class ClusterLocator:
    """Resolves the ordered set of clusters for one tick.

    Static clusters come first in configuration order, discovered clusters
    after them. Names are unique: the first definition of a name wins.
    """

    def __init__(
        self,
        definitions: list[ClusterDefinition],
        discovery: ClusterDiscovery | None = None,
        allowed_cluster_names: list[str] | None = None,
    ) -> None:
        self._definitions = list(definitions)
        self._discovery = discovery
        self._allowed = set(allowed_cluster_names or [])
        self._discovered: set[str] = set()
        self._discovery_failed = False

    @property
    def unavailable_clusters(self) -> set[str]:
        """Names from the last successful discovery while discovery is failing.

        These clusters are missing from the latest resolution only because their
        source could not be asked, not because they were removed.
        """
        return set(self._discovered) if self._discovery_failed else set()

    async def resolve_clusters(self) -> list[ClusterRef]:
        """Return the clusters to ingest from this tick.

        Malformed static definitions are skipped with a warning.

        Raises:
            CycleFatalError: discovery is configured, it failed, and no static
                cluster resolved either.
        """
        resolved: list[ClusterRef] = []
        for definition in self._definitions:
            try:
                resolved.append(self._resolve_definition(definition))
            except ConfigError as exc:
                _log.warning("cluster_definition_skipped", cluster=exc.subject, reason=str(exc))

        if self._discovery is not None:
            try:
                discovered = await self._discovery.discover()
            except Exception as exc:
                self._discovery_failed = True
                if not resolved:
                    raise CycleFatalError(
                        f"cluster discovery via {self._discovery.source_name} failed "
                        f"and no static cluster is configured: {exc}",
                        subject=self._discovery.source_name,
                    ) from exc
                _log.error(
                    "cluster_discovery_failed",
                    source=self._discovery.source_name,
                    error=str(exc),
                    static_clusters=len(resolved),
                )
            else:
                self._discovery_failed = False
                self._discovered = {c.name for c in discovered}
                resolved.extend(discovered)

        return self._dedupe_and_filter(resolved)

    def _resolve_definition(self, definition: ClusterDefinition) -> ClusterRef:
        subject = definition.name or "<unnamed>"
        if not definition.name:
            raise ConfigError("cluster definition has no name", subject=subject, scope=ErrorScope.CLUSTER)
        if not definition.api_base_url:
            raise ConfigError(
                f"cluster {definition.name!r} has no apiBaseUrl", subject=subject, scope=ErrorScope.CLUSTER
            )
        token = ""
        if definition.credentials_ref:
            token = os.environ.get(definition.credentials_ref, "")
            if not token:
                raise ConfigError(
                    f"credentials ref {definition.credentials_ref!r} for cluster {definition.name!r} is empty",
                    subject=subject,
                    scope=ErrorScope.CLUSTER,
                )
        return ClusterRef(
            name=definition.name,
            api_base_url=definition.api_base_url.rstrip("/"),
            credentials=ClusterCredentials(
                token=token,
                ca_cert_path=definition.ca_cert_path,
                skip_tls_verify=definition.skip_tls_verify,
            ),
        )

    def _dedupe_and_filter(self, clusters: list[ClusterRef]) -> list[ClusterRef]:
        seen: set[str] = set()
        result: list[ClusterRef] = []
        for cluster in clusters:
            if cluster.name in seen:
                _log.warning("duplicate_cluster_name", cluster=cluster.name)
                continue
            seen.add(cluster.name)
            if self._allowed and cluster.name not in self._allowed:
                _log.debug("cluster_not_allowed", cluster=cluster.name)
                continue
            result.append(cluster)
        return result


def build_cluster_locator(
    definitions: list[ClusterDefinition],
    discovery_config: DiscoveryConfig,
    allowed_cluster_names: list[str] | None = None,
) -> ClusterLocator:
    """Build a ClusterLocator, enabling HTTP discovery when a discovery URL is set.

    The discovery token is read from the environment variable named by
    ``discovery_config.token_ref``.
    """
    discovery: ClusterDiscovery | None = None
    if discovery_config.url:
        token = os.environ.get(discovery_config.token_ref, "") if discovery_config.token_ref else ""
        discovery = HttpClusterDiscovery(
            base_url=discovery_config.url,
            token=token,
            excluded_auth_providers=discovery_config.excluded_auth_providers,
        )
        _log.info("cluster_discovery_enabled", url=discovery_config.url)
    return ClusterLocator(
        definitions=definitions,
        discovery=discovery,
        allowed_cluster_names=allowed_cluster_names,
    )
