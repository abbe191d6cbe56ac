"""Resource Fetcher and kind discovery.

Exports:
    ResourceFetcher            -- Paged, timeout-bounded listing of one kind.
    FetchOutcome               -- Resources, errors and failed kinds of a fan-out fetch.
    kubernetes_client_factory  -- Default kubernetes_asyncio client factory.
    discover_selectors         -- Resolve the kinds to fetch from a cluster.
    DiscoveryOutcome           -- Selectors, errors and completeness of discovery.
    build_selector             -- Validate a configured kind selector.
"""

from kubeingest.fetcher.discovery import (
    DiscoveryOutcome,
    build_selector,
    discover_selectors,
    merge_selectors,
)
from kubeingest.fetcher.resource_fetcher import (
    FetchOutcome,
    ResourceFetcher,
    kubernetes_client_factory,
    to_raw_resource,
)

__all__ = [
    "DiscoveryOutcome",
    "FetchOutcome",
    "ResourceFetcher",
    "build_selector",
    "discover_selectors",
    "kubernetes_client_factory",
    "merge_selectors",
    "to_raw_resource",
]
