"""Cluster Locator.

Exports:
    ClusterLocator        -- Resolves static and discovered clusters each tick.
    ClusterDiscovery      -- ABC for discovery collaborators.
    HttpClusterDiscovery  -- Discovery through a Kubernetes proxy backend.
    build_cluster_locator -- Factory used by the application bootstrap.
"""

from kubeingest.locator.cluster_locator import (
    ClusterDiscovery,
    ClusterLocator,
    HttpClusterDiscovery,
    build_cluster_locator,
)

__all__ = [
    "ClusterDiscovery",
    "ClusterLocator",
    "HttpClusterDiscovery",
    "build_cluster_locator",
]
