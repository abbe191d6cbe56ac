"""Entity normalization and ingestion filters."""

from kubeingest.normalizer.entity_normalizer import (
    EntityNormalizer,
    classify,
    component_type,
    entity_id,
    normalize,
    validate_resource,
)
from kubeingest.normalizer.filters import ResourceFilter

__all__ = [
    "EntityNormalizer",
    "ResourceFilter",
    "classify",
    "component_type",
    "entity_id",
    "normalize",
    "validate_resource",
]
