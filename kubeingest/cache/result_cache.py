"""Previous-result cache: what was last delivered for each cluster.

Holds, per cluster, the content hash and kind of every entity the sink has
accepted, plus the graphs of that cycle for the read API. Bounded by cluster
count with least-recently-updated eviction. Each cluster's entry is written
only by that cluster's task.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from kubeingest.graph.models import ResourceGraph
from kubeingest.models.entities import NormalizedEntity

_log = structlog.get_logger(component="cache")


@dataclass(frozen=True)
class EntityFingerprint:
    content_hash: str
    kind_key: str


@dataclass
class CachedResult:
    """Last successfully delivered cycle of one cluster."""

    cluster: str
    fingerprints: dict[str, EntityFingerprint] = field(default_factory=dict)
    graphs: list[ResourceGraph] = field(default_factory=list)
    entity_ids: dict[str, str] = field(default_factory=dict)  # uid -> entity id
    completed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def graph_for(self, root_entity_id: str) -> ResourceGraph | None:
        for graph in self.graphs:
            if self.entity_ids.get(graph.root) == root_entity_id:
                return graph
        return None


class ResultCache:
    """Bounded mapping of cluster name to CachedResult.

    Args:
        max_clusters: Entries kept before the least recently stored is evicted.
    """

    def __init__(self, max_clusters: int = 256) -> None:
        if max_clusters < 1:
            raise ValueError("max_clusters must be at least 1")
        self._max = max_clusters
        self._entries: OrderedDict[str, CachedResult] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, cluster: object) -> bool:
        return cluster in self._entries

    def get(self, cluster: str) -> CachedResult | None:
        return self._entries.get(cluster)

    def fingerprints(self, cluster: str) -> dict[str, EntityFingerprint]:
        entry = self._entries.get(cluster)
        return dict(entry.fingerprints) if entry else {}

    def store(
        self,
        cluster: str,
        entities: Iterable[NormalizedEntity],
        graphs: list[ResourceGraph],
        entity_ids: dict[str, str],
        retained: dict[str, EntityFingerprint] | None = None,
    ) -> CachedResult:
        """Replace *cluster*'s entry.

        *retained* carries fingerprints of entities that were not re-fetched
        this cycle (their kind failed) and must stay known for the next diff.
        """
        fingerprints = dict(retained or {})
        for entity in entities:
            fingerprints[entity.id] = EntityFingerprint(entity.content_hash, entity.kind_key)
        entry = CachedResult(cluster=cluster, fingerprints=fingerprints, graphs=graphs, entity_ids=entity_ids)
        self._entries[cluster] = entry
        self._entries.move_to_end(cluster)
        while len(self._entries) > self._max:
            evicted, _ = self._entries.popitem(last=False)
            _log.warning("cache_evicted", cluster=evicted, max_clusters=self._max)
        return entry

    def drop(self, cluster: str) -> CachedResult | None:
        return self._entries.pop(cluster, None)

    def find_graph(self, root_entity_id: str) -> ResourceGraph | None:
        """Graph whose root has *root_entity_id*, searched across all clusters."""
        cluster = root_entity_id.split("/", 1)[0]
        entry = self._entries.get(cluster)
        if entry is not None:
            graph = entry.graph_for(root_entity_id)
            if graph is not None:
                return graph
        for other in self._entries.values():
            if other is entry:
                continue
            graph = other.graph_for(root_entity_id)
            if graph is not None:
                return graph
        return None

    def clusters(self) -> list[str]:
        return list(self._entries)
