"""In-memory catalog sink, keyed by entity id."""

from __future__ import annotations

import structlog

from kubeingest.models.entities import EntityDelta, NormalizedEntity
from kubeingest.sink.base import CatalogSink

_log = structlog.get_logger(component="sink.memory")


class InMemoryCatalogSink(CatalogSink):
    """Keeps the current catalog in a dict. Applying the same delta twice is a no-op."""

    def __init__(self) -> None:
        self.entities: dict[str, NormalizedEntity] = {}
        self.deltas: list[EntityDelta] = []

    @property
    def sink_name(self) -> str:
        return "memory"

    async def apply(self, delta: EntityDelta) -> None:
        for entity in (*delta.added, *delta.updated):
            self.entities[entity.id] = entity
        for entity_id in delta.removed:
            self.entities.pop(entity_id, None)
        self.deltas.append(delta)
        _log.debug("delta_applied", cluster=delta.cluster, **delta.summary())

    def for_cluster(self, cluster: str) -> list[NormalizedEntity]:
        return [e for e in self.entities.values() if e.cluster == cluster]
