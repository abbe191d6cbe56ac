"""Catalog annotation conventions shared with the kubernetes ingestor plugins."""

from __future__ import annotations

from kubeingest.models.config import ClusterNameMappingConfig

KUBERNETES_CLUSTER = "backstage.io/kubernetes-cluster"
MANAGED_BY_LOCATION = "backstage.io/managed-by-location"
MANAGED_BY_ORIGIN_LOCATION = "backstage.io/managed-by-origin-location"
ARGO_TRACKING_ID = "argocd.argoproj.io/tracking-id"
ARGO_APP_NAME = "argocd/app-name"


def map_cluster_name(name: str, mapping: ClusterNameMappingConfig) -> str:
    """Name under which *name* is shown in the catalog.

    ``prefix-replacement`` swaps ``source_prefix`` for ``target_prefix``;
    ``explicit`` looks the name up in ``mappings``. Unmatched names pass
    through unchanged.
    """
    if mapping.mode == "prefix-replacement":
        if mapping.source_prefix and name.startswith(mapping.source_prefix):
            return mapping.target_prefix + name[len(mapping.source_prefix):]
        return name
    if mapping.mode == "explicit":
        return mapping.mappings.get(name, name)
    return name


def origin_annotations(cluster_name: str) -> dict[str, str]:
    location = f"cluster origin: {cluster_name}"
    return {MANAGED_BY_LOCATION: location, MANAGED_BY_ORIGIN_LOCATION: location}


def parse_component_annotations(value: str) -> dict[str, str]:
    """Parse ``key=value,key2=value2``. Pairs with an empty key or value are ignored."""
    parsed: dict[str, str] = {}
    for pair in value.split(","):
        key, sep, val = pair.partition("=")
        key, val = key.strip(), val.strip()
        if sep and key and val:
            parsed[key] = val
    return parsed


def argo_annotations(annotations: dict[str, str]) -> dict[str, str]:
    """``argocd/app-name`` from the Argo CD tracking id (``app:group/kind:ns/name``)."""
    tracking_id = annotations.get(ARGO_TRACKING_ID, "")
    app_name = tracking_id.split(":", 1)[0]
    return {ARGO_APP_NAME: app_name} if app_name else {}
