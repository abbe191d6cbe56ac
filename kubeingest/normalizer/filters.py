"""Ingestion filters applied to fetched resources before graph building."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from kubeingest.models.config import IngestionConfig
from kubeingest.models.resources import RawResource

_log = structlog.get_logger(component="normalizer.filters")


class ResourceFilter:
    """Drops resources opted out of the catalog.

    A resource is excluded when it carries ``{prefix}/exclude-from-catalog``,
    lives in an excluded namespace, or, with ``only_ingest_annotated``, lacks
    ``{prefix}/add-to-catalog``.
    """

    def __init__(self, config: IngestionConfig) -> None:
        self._exclude_key = f"{config.annotation_prefix}/exclude-from-catalog"
        self._include_key = f"{config.annotation_prefix}/add-to-catalog"
        self._excluded_namespaces = frozenset(config.excluded_namespaces)
        self._only_annotated = config.only_ingest_annotated

    def accepts(self, resource: RawResource) -> bool:
        if self._exclude_key in resource.annotations:
            return False
        if resource.namespace and resource.namespace in self._excluded_namespaces:
            return False
        if self._only_annotated and self._include_key not in resource.annotations:
            return False
        return True

    def apply(self, resources: Iterable[RawResource]) -> list[RawResource]:
        kept: list[RawResource] = []
        dropped = 0
        for resource in resources:
            if self.accepts(resource):
                kept.append(resource)
            else:
                dropped += 1
        if dropped:
            _log.debug("resources_filtered", kept=len(kept), dropped=dropped)
        return kept
