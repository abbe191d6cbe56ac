"""Entity Normalizer: graph nodes to catalog-ready entities.

Entity ids are ``{cluster}/{kind}/{namespace}/{name}`` with the kind
lowercased and ``cluster-scoped`` standing in for the namespace of
cluster-scoped kinds. They depend only on the object's identity, so the
same object keeps its id across cycles. Output is fully deterministic:
identical input graphs produce byte-identical ``to_json()`` output.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

import structlog

from kubeingest.errors import ValidationError
from kubeingest.graph.builder import KRO_INSTANCE_LABEL, KRO_RGD_LABEL
from kubeingest.graph.models import GraphNode, ResourceGraph
from kubeingest.models.config import IngestionConfig
from kubeingest.models.entities import CycleError, EntityKind, NormalizedEntity, Relation, RelationType
from kubeingest.models.resources import RawResource
from kubeingest.normalizer.annotations import (
    KUBERNETES_CLUSTER,
    argo_annotations,
    map_cluster_name,
    origin_annotations,
    parse_component_annotations,
)

_log = structlog.get_logger(component="normalizer")

CLUSTER_SCOPED = "cluster-scoped"

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_COMPOSITION_KINDS = frozenset({"Composition", "ResourceGraphDefinition"})
_ROOT_COMPONENT_TYPES = frozenset({"crossplane-xr", "crossplane-claim", "kro-instance"})


def entity_id(resource: RawResource) -> str:
    namespace = resource.namespace if resource.namespaced and resource.namespace else CLUSTER_SCOPED
    return f"{resource.cluster.name}/{resource.kind.lower()}/{namespace}/{resource.name}"


def validate_resource(resource: RawResource) -> None:
    """Raises ValidationError when a namespaced resource has no usable namespace."""
    if not resource.namespaced:
        return
    namespace = resource.namespace or ""
    if not namespace or len(namespace) > 63 or not _DNS1123_LABEL.match(namespace):
        raise ValidationError(
            f"{resource.kind} {resource.name!r} is namespaced but has invalid namespace {namespace!r}",
            subject=f"{resource.cluster.name}/{resource.kind.lower()}/{namespace or '<none>'}/{resource.name}",
        )


def composition_name(resource: RawResource) -> str | None:
    for path in (("crossplane", "compositionRef", "name"), ("compositionRef", "name")):
        value = resource.spec_field(*path)
        if isinstance(value, str) and value:
            return value
    return None


def component_type(resource: RawResource) -> str | None:
    """Coarse Crossplane/KRO role of a resource, or None when it has none."""
    if resource.kind == "Composition" and resource.api_group == "apiextensions.crossplane.io":
        return "crossplane-composition"
    if resource.kind == "ResourceGraphDefinition" and resource.api_group == "kro.run":
        return "kro-rgd"
    if KRO_INSTANCE_LABEL in resource.labels:
        return "managed-resource"
    if KRO_RGD_LABEL in resource.labels:
        return "kro-instance"
    if isinstance(resource.spec_field("resourceRef"), dict):
        return "crossplane-claim"
    if (
        isinstance(resource.spec_field("resourceRefs"), list)
        or isinstance(resource.spec_field("crossplane", "resourceRefs"), list)
        or composition_name(resource) is not None
    ):
        return "crossplane-xr"
    if resource.spec_field("forProvider") is not None or resource.spec_field("providerConfigRef") is not None:
        return "managed-resource"
    return None


def classify(node: GraphNode) -> EntityKind:
    resource = node.resource
    if resource.kind in _COMPOSITION_KINDS:
        return EntityKind.COMPOSITION
    if node.parent is not None:
        return EntityKind.MANAGED
    if node.children or component_type(resource) in _ROOT_COMPONENT_TYPES:
        return EntityKind.ROOT
    return EntityKind.OTHER


@dataclass
class _Context:
    """Cross-graph lookups for one normalization batch."""

    nodes: dict[str, GraphNode] = field(default_factory=dict)
    roots: dict[str, str] = field(default_factory=dict)  # uid -> root uid
    ids: dict[str, str] = field(default_factory=dict)  # uid -> entity id, valid nodes only
    dependents: dict[str, list[str]] = field(default_factory=dict)  # uid -> uids depending on it


class EntityNormalizer:
    """Normalizes the graphs of one cluster cycle.

    Args:
        config: Annotation prefix, cluster name mapping and Argo integration switch.
    """

    def __init__(self, config: IngestionConfig | None = None) -> None:
        self._config = config or IngestionConfig()
        self._indexed: tuple[ResourceGraph, _Context] | None = None

    @property
    def prefix(self) -> str:
        return self._config.annotation_prefix

    def normalize_graphs(self, graphs: Iterable[ResourceGraph]) -> tuple[list[NormalizedEntity], list[CycleError]]:
        """Normalize every node of *graphs*.

        Invalid resources are left out and recorded as resource-scope errors;
        relations pointing at them are not emitted. When two resources map
        to the same entity id, the first one in graph order is kept.
        """
        ctx, ordered, errors = self._index(graphs)
        entities = [self._normalize(node, ctx) for node in ordered if node.id in ctx.ids]
        return entities, errors

    def _index(self, graphs: Iterable[ResourceGraph]) -> tuple[_Context, list[GraphNode], list[CycleError]]:
        errors: list[CycleError] = []
        ctx = _Context()
        ordered: list[GraphNode] = []
        for graph in graphs:
            for node in graph.nodes:
                ctx.nodes[node.id] = node
                ctx.roots[node.id] = graph.root
                ordered.append(node)

        taken: set[str] = set()
        for node in ordered:
            try:
                validate_resource(node.resource)
                eid = entity_id(node.resource)
                if eid in taken:
                    raise ValidationError(
                        f"entity id {eid!r} is already used by another resource", subject=eid
                    )
            except ValidationError as exc:
                _log.warning("resource_invalid", subject=exc.subject, reason=str(exc))
                errors.append(CycleError.from_exception(exc))
                continue
            taken.add(eid)
            ctx.ids[node.id] = eid

        for node in ordered:
            for dep in node.dependencies:
                ctx.dependents.setdefault(dep, []).append(node.id)
        return ctx, ordered, errors

    def normalize_graph(self, graph: ResourceGraph) -> tuple[list[NormalizedEntity], list[CycleError]]:
        return self.normalize_graphs([graph])

    def normalize(self, node: GraphNode, graph: ResourceGraph) -> NormalizedEntity:
        """Normalize a single node of *graph*.

        The lookups for *graph* are built once and reused while the same
        graph object is passed in, so normalizing each node of a graph in
        turn stays linear.

        Raises:
            ValidationError: the node's resource is invalid, or another
                resource of the graph already uses its entity id.
        """
        validate_resource(node.resource)
        if self._indexed is None or self._indexed[0] is not graph:
            ctx, _, _ = self._index([graph])
            self._indexed = (graph, ctx)
        ctx = self._indexed[1]
        if node.id not in ctx.ids:
            eid = entity_id(node.resource)
            raise ValidationError(f"no entity produced for {eid!r}", subject=eid)
        return self._normalize(node, ctx)

    def _normalize(self, node: GraphNode, ctx: _Context) -> NormalizedEntity:
        resource = node.resource
        kind = classify(node)
        return NormalizedEntity(
            id=ctx.ids[node.id],
            kind=kind,
            name=resource.name,
            namespace=resource.namespace if resource.namespaced else None,
            cluster=resource.cluster.name,
            source_kind=resource.kind,
            api_version=resource.full_api_version,
            annotations=self._annotations(node, kind, ctx),
            relations=tuple(self._relations(node, ctx)),
            spec=resource.spec,
            status=resource.status,
        )

    def _relations(self, node: GraphNode, ctx: _Context) -> list[Relation]:
        relations: list[Relation] = []
        if node.parent in ctx.ids:
            relations.append(Relation(RelationType.OWNED_BY, ctx.ids[node.parent]))
        relations.extend(Relation(RelationType.OWNS, ctx.ids[c]) for c in node.children if c in ctx.ids)
        relations.extend(Relation(RelationType.DEPENDS_ON, ctx.ids[d]) for d in node.dependencies if d in ctx.ids)
        relations.extend(
            Relation(RelationType.DEPENDENCY_OF, ctx.ids[d]) for d in ctx.dependents.get(node.id, []) if d in ctx.ids
        )
        return relations

    def _annotations(self, node: GraphNode, kind: EntityKind, ctx: _Context) -> dict[str, str]:
        resource = node.resource
        cluster = resource.cluster.name
        prefix = self.prefix

        annotations = dict(resource.annotations)
        annotations.update(origin_annotations(cluster))
        custom = resource.annotations.get(f"{prefix}/component-annotations")
        if custom:
            annotations.update(parse_component_annotations(custom))
        annotations[KUBERNETES_CLUSTER] = map_cluster_name(cluster, self._config.cluster_name_mapping)
        if self._config.argo_integration:
            annotations.update(argo_annotations(resource.annotations))

        root_id = ctx.ids.get(ctx.roots.get(node.id, node.id))
        synthesized = {
            "cluster": cluster,
            "source-kind": resource.kind,
            "source-api-version": resource.full_api_version,
            "entity-kind": kind.value,
            "uid": resource.uid,
        }
        if root_id is not None:
            synthesized["graph-root"] = root_id
        ctype = component_type(resource)
        if ctype is not None:
            synthesized["component-type"] = ctype
        comp = composition_name(resource)
        if comp is not None:
            synthesized["composition-name"] = comp
        rgd_id = resource.labels.get(KRO_RGD_LABEL)
        if rgd_id:
            synthesized["kro-rgd-id"] = rgd_id
        annotations.update({f"{prefix}/{key}": value for key, value in synthesized.items()})
        return annotations


def normalize(
    node: GraphNode,
    graph: ResourceGraph,
    config: IngestionConfig | None = None,
    *,
    annotation_prefix: str | None = None,
) -> NormalizedEntity:
    """Normalize one node of *graph* with *config* (defaults when omitted).

    *annotation_prefix* overrides the prefix configured in *config*.
    """
    config = config or IngestionConfig()
    if annotation_prefix is not None:
        config = replace(config, annotation_prefix=annotation_prefix)
    return EntityNormalizer(config).normalize(node, graph)
