"""Configuration loading from environment variables."""

from __future__ import annotations

import json
import os
from typing import Any

from kubeingest.errors import ConfigError, ErrorScope
from kubeingest.models.config import (
    DEFAULT_ANNOTATION_PREFIX,
    APIConfig,
    ClusterDefinition,
    ClusterNameMappingConfig,
    DiscoveryConfig,
    IngestionConfig,
    KindSelectorDefinition,
    KubeIngestConfig,
    LogConfig,
    SchedulerConfig,
    SinkConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEINGEST_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _env_list(key: str) -> list[str]:
    return [item.strip() for item in _env(key).split(",") if item.strip()]


def _env_json(key: str, default: Any) -> Any:
    raw = _env(key)
    if not raw.strip():
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"KUBEINGEST_{key} is not valid JSON: {exc}",
            subject=key,
            scope=ErrorScope.CYCLE,
        ) from exc


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ConfigError(
            f"Invalid log level: {value}. Must be one of {valid}",
            subject="LOG_LEVEL",
            scope=ErrorScope.CYCLE,
        )
    return value.lower()


def _validate_mapping_mode(value: str) -> str:
    valid = {"", "prefix-replacement", "explicit"}
    if value not in valid:
        raise ConfigError(
            f"Invalid cluster name mapping mode: {value}",
            subject="CLUSTER_NAME_MAPPING_MODE",
            scope=ErrorScope.CYCLE,
        )
    return value


def _parse_clusters(raw: Any) -> list[ClusterDefinition]:
    """Parse the CLUSTERS JSON list. Entries are validated later by the locator."""
    if not isinstance(raw, list):
        raise ConfigError("KUBEINGEST_CLUSTERS must be a JSON list", subject="CLUSTERS", scope=ErrorScope.CYCLE)
    clusters: list[ClusterDefinition] = []
    for item in raw:
        if not isinstance(item, dict):
            item = {}
        clusters.append(
            ClusterDefinition(
                name=str(item.get("name", "")),
                api_base_url=str(item.get("apiBaseUrl", item.get("url", ""))),
                credentials_ref=str(item.get("credentialsRef", "")),
                ca_cert_path=str(item.get("caCertPath", "")),
                skip_tls_verify=bool(item.get("skipTLSVerify", False)),
            )
        )
    return clusters


def _parse_kind_selectors(raw: Any) -> list[KindSelectorDefinition]:
    if not isinstance(raw, list):
        raise ConfigError(
            "KUBEINGEST_KIND_SELECTORS must be a JSON list", subject="KIND_SELECTORS", scope=ErrorScope.CYCLE
        )
    selectors: list[KindSelectorDefinition] = []
    for item in raw:
        if not isinstance(item, dict):
            item = {}
        selectors.append(
            KindSelectorDefinition(
                api_group=str(item.get("apiGroup", item.get("group", ""))),
                api_version=str(item.get("apiVersion", "")),
                kind=str(item.get("kind", "")),
                plural=str(item.get("plural", "")),
                namespace=str(item.get("namespace", "")),
                namespaced=bool(item.get("namespaced", True)),
            )
        )
    return selectors


def load_config() -> KubeIngestConfig:
    """Load configuration from KUBEINGEST_* environment variables.

    Raises:
        ConfigError: on unparseable JSON or an invalid enum value. Individual
            malformed cluster or kind entries are not rejected here.
    """
    mappings = _env_json("CLUSTER_NAME_MAPPINGS", {})
    if not isinstance(mappings, dict):
        raise ConfigError(
            "KUBEINGEST_CLUSTER_NAME_MAPPINGS must be a JSON object",
            subject="CLUSTER_NAME_MAPPINGS",
            scope=ErrorScope.CYCLE,
        )

    return KubeIngestConfig(
        clusters=_parse_clusters(_env_json("CLUSTERS", [])),
        allowed_cluster_names=_env_list("ALLOWED_CLUSTER_NAMES"),
        discovery=DiscoveryConfig(
            url=_env("DISCOVERY_URL", ""),
            token_ref=_env("DISCOVERY_TOKEN_REF", ""),
        ),
        scheduler=SchedulerConfig(
            poll_interval_seconds=_env_int("POLL_INTERVAL", 600, min_val=10),
            kind_timeout_seconds=_env_float("KIND_TIMEOUT", 30.0, min_val=1.0),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT", 10.0, min_val=1.0),
            page_size=_env_int("PAGE_SIZE", 500, min_val=1, max_val=5000),
            backoff_base_seconds=_env_float("BACKOFF_BASE", 5.0, min_val=0.0),
            backoff_max_seconds=_env_float("BACKOFF_MAX", 300.0, min_val=0.0),
            cache_max_clusters=_env_int("CACHE_MAX_CLUSTERS", 256, min_val=1),
        ),
        ingestion=IngestionConfig(
            annotation_prefix=_env("ANNOTATION_PREFIX", DEFAULT_ANNOTATION_PREFIX) or DEFAULT_ANNOTATION_PREFIX,
            kind_selectors=_parse_kind_selectors(_env_json("KIND_SELECTORS", [])),
            crossplane_enabled=_env_bool("CROSSPLANE_ENABLED", True),
            crossplane_managed_discovery=_env_bool("CROSSPLANE_MANAGED_DISCOVERY", False),
            kro_enabled=_env_bool("KRO_ENABLED", False),
            excluded_namespaces=_env_list("EXCLUDED_NAMESPACES"),
            only_ingest_annotated=_env_bool("ONLY_INGEST_ANNOTATED", False),
            argo_integration=_env_bool("ARGO_INTEGRATION", True),
            cluster_name_mapping=ClusterNameMappingConfig(
                mode=_validate_mapping_mode(_env("CLUSTER_NAME_MAPPING_MODE", "")),
                source_prefix=_env("CLUSTER_NAME_SOURCE_PREFIX", ""),
                target_prefix=_env("CLUSTER_NAME_TARGET_PREFIX", ""),
                mappings={str(k): str(v) for k, v in mappings.items()},
            ),
        ),
        sink=SinkConfig(
            url=_env("SINK_URL", ""),
            token_ref=_env("SINK_TOKEN_REF", ""),
            timeout_seconds=_env_float("SINK_TIMEOUT", 30.0, min_val=1.0),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
