"""Delta computation between two consecutive cycles of one cluster."""

from __future__ import annotations

from collections.abc import Iterable

from kubeingest.cache.result_cache import EntityFingerprint
from kubeingest.models.entities import EntityDelta, NormalizedEntity


def compute_delta(
    cluster: str,
    previous: dict[str, EntityFingerprint],
    current: Iterable[NormalizedEntity],
    failed_kinds: Iterable[str] = (),
) -> tuple[EntityDelta, dict[str, EntityFingerprint]]:
    """Diff *current* against *previous* by entity id and content hash.

    Entities missing from *current* are removed, unless their kind is in
    *failed_kinds*: those were simply not seen this cycle and are returned
    as the second element so the caller keeps tracking them.
    """
    failed = set(failed_kinds)
    delta = EntityDelta(cluster=cluster)
    seen: set[str] = set()
    for entity in current:
        seen.add(entity.id)
        before = previous.get(entity.id)
        if before is None:
            delta.added.append(entity)
        elif before.content_hash != entity.content_hash:
            delta.updated.append(entity)

    retained: dict[str, EntityFingerprint] = {}
    for entity_id, fingerprint in previous.items():
        if entity_id in seen:
            continue
        if fingerprint.kind_key in failed:
            retained[entity_id] = fingerprint
        else:
            delta.removed.append(entity_id)
    return delta, retained
