"""Cluster and raw resource data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_IRREGULAR_PLURALS = {
    "ingress": "ingresses",
    "proxy": "proxies",
    "index": "indices",
    "matrix": "matrices",
    "vertex": "vertices",
}


def pluralize(kind: str) -> str:
    """Lowercase plural resource name for a kind, following the CRD naming habit."""
    lower = kind.lower()
    if lower in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[lower]
    if lower.endswith(("s", "x", "ch", "sh")):
        return f"{lower}es"
    if lower.endswith("y") and lower[-2:-1] not in ("a", "e", "i", "o", "u"):
        return f"{lower[:-1]}ies"
    return f"{lower}s"


@dataclass(frozen=True)
class ClusterCredentials:
    """Opaque access material for one cluster. Only the client factory reads it."""

    token: str = field(default="", repr=False)
    ca_cert_path: str = ""
    skip_tls_verify: bool = False
    headers: dict[str, str] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class ClusterRef:
    """A reachable cluster, resolved fresh at the start of every tick."""

    name: str
    api_base_url: str
    credentials: ClusterCredentials = field(default_factory=ClusterCredentials)


@dataclass(frozen=True)
class KindSelector:
    """One custom resource kind to list from a cluster."""

    api_group: str
    api_version: str
    kind: str
    plural: str = ""
    namespace: str = ""  # empty = all namespaces
    namespaced: bool = True

    def __post_init__(self) -> None:
        if not self.plural:
            object.__setattr__(self, "plural", pluralize(self.kind))

    @property
    def group_version(self) -> str:
        return f"{self.api_group}/{self.api_version}"

    @property
    def key(self) -> tuple[str, str, str, str]:
        """Deduplication key: two selectors with the same key list the same objects."""
        return (self.api_group, self.api_version, self.plural, self.namespace)

    @property
    def kind_key(self) -> str:
        """``group/version/Kind``, matching ``NormalizedEntity.kind_key``."""
        return f"{self.group_version}/{self.kind}"

    def __str__(self) -> str:
        suffix = f"@{self.namespace}" if self.namespace else ""
        return f"{self.api_group}/{self.api_version}/{self.plural}{suffix}"


@dataclass(frozen=True)
class OwnerRef:
    """Entry of ``metadata.ownerReferences``."""

    uid: str
    kind: str
    name: str = ""
    controller: bool = False


@dataclass(frozen=True)
class RawResource:
    """One object as listed from a cluster.

    Identity is ``(cluster.name, uid)``. ``spec`` and ``status`` are passed
    through untouched; nothing in the core interprets them beyond the few
    Crossplane/KRO reference fields the graph builder reads.
    """

    cluster: ClusterRef
    api_group: str
    api_version: str
    kind: str
    name: str
    uid: str
    namespace: str | None = None
    resource_version: str = ""
    owner_refs: tuple[OwnerRef, ...] = ()
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    spec: Any = None
    status: Any = None
    namespaced: bool = True

    @property
    def key(self) -> tuple[str, str]:
        return (self.cluster.name, self.uid)

    @property
    def full_api_version(self) -> str:
        return f"{self.api_group}/{self.api_version}" if self.api_group else self.api_version

    def spec_field(self, *path: str) -> Any:
        """Walk ``spec`` by dict keys, returning None when any step is missing."""
        current: Any = self.spec
        for part in path:
            if not isinstance(current, dict):
                return None
            current = current.get(part)
        return current
