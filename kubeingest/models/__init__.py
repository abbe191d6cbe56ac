"""Core data structures for kubeingest."""

from kubeingest.models.config import KubeIngestConfig
from kubeingest.models.entities import (
    CycleError,
    CycleState,
    EntityDelta,
    EntityKind,
    IngestionCycleResult,
    NormalizedEntity,
    Relation,
    RelationType,
)
from kubeingest.models.resources import (
    ClusterCredentials,
    ClusterRef,
    KindSelector,
    OwnerRef,
    RawResource,
    pluralize,
)

__all__ = [
    "ClusterCredentials",
    "ClusterRef",
    "CycleError",
    "CycleState",
    "EntityDelta",
    "EntityKind",
    "IngestionCycleResult",
    "KindSelector",
    "KubeIngestConfig",
    "NormalizedEntity",
    "OwnerRef",
    "RawResource",
    "Relation",
    "RelationType",
    "pluralize",
]
