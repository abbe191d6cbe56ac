"""Normalized entity, delta and cycle result data structures."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from kubeingest.errors import ErrorScope, IngestionError

if TYPE_CHECKING:
    from kubeingest.graph.models import ResourceGraph
    from kubeingest.models.resources import ClusterRef


class EntityKind(StrEnum):
    """Catalog-facing classification of a graph node."""

    ROOT = "Root"
    MANAGED = "Managed"
    COMPOSITION = "Composition"
    OTHER = "Other"


class RelationType(StrEnum):
    """Relation from one entity to another."""

    OWNED_BY = "ownedBy"
    OWNS = "owns"
    DEPENDS_ON = "dependsOn"
    DEPENDENCY_OF = "dependencyOf"


class CycleState(StrEnum):
    """Per-cluster ingestion state machine."""

    IDLE = "idle"
    FETCHING = "fetching"
    BUILDING = "building"
    NORMALIZING = "normalizing"
    EMITTING = "emitting"
    FAILED = "failed"


@dataclass(frozen=True)
class Relation:
    type: RelationType
    target_id: str


@dataclass(frozen=True)
class NormalizedEntity:
    """Catalog-ready record derived from one cluster resource.

    ``id`` is stable across cycles for the same object so the sink can tell
    an update from a new entity. ``to_json`` is canonical: identical
    entities always encode to identical bytes.
    """

    id: str
    kind: EntityKind
    name: str
    cluster: str
    source_kind: str
    api_version: str
    namespace: str | None = None
    annotations: dict[str, str] = field(default_factory=dict)
    relations: tuple[Relation, ...] = ()
    spec: Any = None
    status: Any = None

    @property
    def kind_key(self) -> str:
        return f"{self.api_version}/{self.source_kind}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "namespace": self.namespace,
            "cluster": self.cluster,
            "sourceKind": self.source_kind,
            "apiVersion": self.api_version,
            "annotations": dict(sorted(self.annotations.items())),
            "relations": [{"type": r.type.value, "targetId": r.target_id} for r in self.relations],
            "spec": self.spec,
            "status": self.status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CycleError:
    """An error contained to one scope of one cycle."""

    scope: ErrorScope
    subject: str
    cause: str

    @classmethod
    def from_exception(cls, exc: IngestionError) -> CycleError:
        return cls(scope=exc.scope, subject=exc.subject, cause=str(exc))


@dataclass
class EntityDelta:
    """Changes between two consecutive cycles of one cluster."""

    cluster: str
    added: list[NormalizedEntity] = field(default_factory=list)
    updated: list[NormalizedEntity] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.updated or self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster,
            "added": [e.to_dict() for e in self.added],
            "updated": [e.to_dict() for e in self.updated],
            "removed": list(self.removed),
        }

    def summary(self) -> dict[str, int]:
        return {"added": len(self.added), "updated": len(self.updated), "removed": len(self.removed)}


@dataclass
class IngestionCycleResult:
    """Output of one tick for one cluster. Consumed by the sink, then discarded."""

    cluster: ClusterRef
    entities: list[NormalizedEntity] = field(default_factory=list)
    graphs: list[ResourceGraph] = field(default_factory=list)
    errors: list[CycleError] = field(default_factory=list)
    state: CycleState = CycleState.IDLE
    failed_kinds: set[str] = field(default_factory=set)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    delta: EntityDelta | None = None

    def record(self, exc: IngestionError) -> None:
        self.errors.append(CycleError.from_exception(exc))
