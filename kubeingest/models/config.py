"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_ANNOTATION_PREFIX = "terasky.backstage.io"


@dataclass
class ClusterDefinition:
    """Static connection definition for one cluster.

    ``credentials_ref`` is the name of an environment variable holding the
    bearer token, never the token itself.
    """

    name: str = ""
    api_base_url: str = ""
    credentials_ref: str = ""
    ca_cert_path: str = ""
    skip_tls_verify: bool = False


@dataclass
class KindSelectorDefinition:
    """Configured kind selector, validated into a KindSelector by the fetcher."""

    api_group: str = ""
    api_version: str = ""
    kind: str = ""
    plural: str = ""
    namespace: str = ""
    namespaced: bool = True


@dataclass
class DiscoveryConfig:
    """Cluster discovery through a Kubernetes proxy backend."""

    url: str = ""
    token_ref: str = ""
    excluded_auth_providers: list[str] = field(default_factory=lambda: ["oidc"])


@dataclass
class ClusterNameMappingConfig:
    """Maps ingestion cluster names to the names shown in catalog annotations."""

    mode: str = ""  # "", "prefix-replacement" or "explicit"
    source_prefix: str = ""
    target_prefix: str = ""
    mappings: dict[str, str] = field(default_factory=dict)


@dataclass
class SchedulerConfig:
    """Polling, timeouts and failure backoff."""

    poll_interval_seconds: int = 600
    kind_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 10.0
    page_size: int = 500
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0
    cache_max_clusters: int = 256


@dataclass
class IngestionConfig:
    """What to fetch and how to turn it into entities."""

    annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX
    kind_selectors: list[KindSelectorDefinition] = field(default_factory=list)
    crossplane_enabled: bool = True
    crossplane_managed_discovery: bool = False
    kro_enabled: bool = False
    excluded_namespaces: list[str] = field(default_factory=list)
    only_ingest_annotated: bool = False
    argo_integration: bool = True
    cluster_name_mapping: ClusterNameMappingConfig = field(default_factory=ClusterNameMappingConfig)


@dataclass
class SinkConfig:
    """Downstream catalog sink. Empty url selects the in-memory sink."""

    url: str = ""
    token_ref: str = ""
    timeout_seconds: float = 30.0


@dataclass
class APIConfig:
    """REST API configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeIngestConfig:
    """Top-level kubeingest configuration."""

    clusters: list[ClusterDefinition] = field(default_factory=list)
    allowed_cluster_names: list[str] = field(default_factory=list)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    sink: SinkConfig = field(default_factory=SinkConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
