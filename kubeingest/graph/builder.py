"""Graph Builder: turns a flat list of resources into ownership trees.

Parents are resolved per resource, first match wins:

    1. the first ownerReference whose uid was fetched (self references ignored)
    2. the ``kro.run/instance-id`` label
    3. a composite listing the resource in its resourceRefs

Owner references to objects outside the fetched set resolve to nothing, so
such a resource roots its own graph. Cycles are cut deterministically and no
resource is ever dropped.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import Any

import structlog

from kubeingest.graph.models import EdgeType, GraphEdge, GraphNode, ResourceGraph
from kubeingest.models.resources import RawResource

_log = structlog.get_logger(component="graph.builder")

KRO_INSTANCE_LABEL = "kro.run/instance-id"
KRO_RGD_LABEL = "kro.run/resource-graph-definition-id"

_RESOURCE_REF_PATHS: tuple[tuple[str, ...], ...] = (
    ("resourceRefs",),
    ("crossplane", "resourceRefs"),
)
_COMPOSITION_REF_PATHS: tuple[tuple[str, ...], ...] = (
    ("crossplane", "compositionRef", "name"),
    ("compositionRef", "name"),
)

# (kind, name, namespace) -> (composite uid, source field)
_RefIndex = dict[tuple[str, str, str | None], tuple[str, str]]


def _iter_refs(resource: RawResource) -> Iterable[tuple[dict[str, Any], str]]:
    for path in _RESOURCE_REF_PATHS:
        refs = resource.spec_field(*path)
        if isinstance(refs, list):
            prefix = "spec." + ".".join(path)
            for i, ref in enumerate(refs):
                if isinstance(ref, dict):
                    yield ref, f"{prefix}[{i}]"
    # claim -> composite
    single = resource.spec_field("resourceRef")
    if isinstance(single, dict):
        yield single, "spec.resourceRef"


class GraphBuilder:
    """Builds one ResourceGraph per root. Output order follows input order."""

    def build(self, resources: Iterable[RawResource]) -> list[ResourceGraph]:
        arena: dict[str, GraphNode] = {}
        for resource in resources:
            existing = arena.get(resource.uid)
            if existing is not None:
                _log.debug("duplicate_uid", uid=resource.uid, kind=resource.kind, name=resource.name)
                existing.resource = resource
            else:
                arena[resource.uid] = GraphNode(id=resource.uid, resource=resource)
        order = list(arena)

        ref_index = self._index_resource_refs(arena, order)
        parents: dict[str, tuple[str, EdgeType, str]] = {}
        for uid in order:
            resolved = self._resolve_parent(arena[uid].resource, arena, ref_index)
            if resolved is not None:
                parents[uid] = resolved

        self._cut_cycles(order, parents)

        parent_edges: dict[str, GraphEdge] = {}
        for uid in order:
            if uid not in parents:
                continue
            parent_uid, edge_type, source_field = parents[uid]
            arena[uid].parent = parent_uid
            arena[parent_uid].children.append(uid)
            parent_edges[uid] = GraphEdge(parent_uid, uid, edge_type, source_field)

        dependency_edges = self._link_dependencies(arena, order)

        graphs: list[ResourceGraph] = []
        for uid in order:
            if arena[uid].parent is not None:
                continue
            nodes = self._breadth_first(arena, uid)
            edges: list[GraphEdge] = []
            for node in nodes:
                if node.id in parent_edges:
                    edges.append(parent_edges[node.id])
                edges.extend(dependency_edges.get(node.id, []))
            graphs.append(ResourceGraph(root=uid, nodes=nodes, edges=edges))

        _log.debug("graphs_built", resources=len(arena), graphs=len(graphs))
        return graphs

    def _index_resource_refs(self, arena: dict[str, GraphNode], order: list[str]) -> _RefIndex:
        index: _RefIndex = {}
        for uid in order:
            composite = arena[uid].resource
            for ref, source_field in _iter_refs(composite):
                kind, name = ref.get("kind"), ref.get("name")
                if not kind or not name:
                    continue
                key = (str(kind), str(name), ref.get("namespace") or None)
                index.setdefault(key, (uid, source_field))
        return index

    def _resolve_parent(
        self,
        resource: RawResource,
        arena: dict[str, GraphNode],
        ref_index: _RefIndex,
    ) -> tuple[str, EdgeType, str] | None:
        for i, owner in enumerate(resource.owner_refs):
            if owner.uid != resource.uid and owner.uid in arena:
                return owner.uid, EdgeType.OWNER_REFERENCE, f"metadata.ownerReferences[{i}]"

        instance_id = resource.labels.get(KRO_INSTANCE_LABEL)
        if instance_id and instance_id != resource.uid and instance_id in arena:
            return instance_id, EdgeType.INSTANCE_LABEL, f"metadata.labels[{KRO_INSTANCE_LABEL}]"

        for namespace in (resource.namespace, None):
            hit = ref_index.get((resource.kind, resource.name, namespace))
            if hit is not None and hit[0] != resource.uid:
                return hit[0], EdgeType.RESOURCE_REF, hit[1]
            if namespace is None:
                break
        return None

    def _cut_cycles(self, order: list[str], parents: dict[str, tuple[str, EdgeType, str]]) -> None:
        """Remove the parent link that closes each cycle, walking in input order."""
        done: set[str] = set()
        for start in order:
            path: list[str] = []
            on_path: set[str] = set()
            current: str | None = start
            while current is not None and current not in done:
                if current in on_path:
                    last = path[-1]
                    _log.warning("ownership_cycle_broken", uid=last, parent=parents[last][0])
                    del parents[last]
                    break
                on_path.add(current)
                path.append(current)
                current = parents[current][0] if current in parents else None
            done.update(path)

    def _link_dependencies(self, arena: dict[str, GraphNode], order: list[str]) -> dict[str, list[GraphEdge]]:
        compositions: dict[str, str] = {}
        for uid in order:
            resource = arena[uid].resource
            if resource.kind == "Composition":
                compositions.setdefault(resource.name, uid)

        edges: dict[str, list[GraphEdge]] = {}
        for uid in order:
            node = arena[uid]
            resource = node.resource

            for path in _COMPOSITION_REF_PATHS:
                name = resource.spec_field(*path)
                target = compositions.get(name) if isinstance(name, str) else None
                if target is not None and target != uid:
                    node.dependencies.append(target)
                    edges.setdefault(uid, []).append(
                        GraphEdge(uid, target, EdgeType.COMPOSITION_REF, "spec." + ".".join(path))
                    )
                    break

            rgd_id = resource.labels.get(KRO_RGD_LABEL)
            if rgd_id and rgd_id != uid and rgd_id in arena and rgd_id not in node.dependencies:
                node.dependencies.append(rgd_id)
                edges.setdefault(uid, []).append(
                    GraphEdge(uid, rgd_id, EdgeType.DEFINITION_REF, f"metadata.labels[{KRO_RGD_LABEL}]")
                )
        return edges

    @staticmethod
    def _breadth_first(arena: dict[str, GraphNode], root: str) -> list[GraphNode]:
        nodes: list[GraphNode] = []
        queue: deque[str] = deque([root])
        while queue:
            node = arena[queue.popleft()]
            nodes.append(node)
            queue.extend(node.children)
        return nodes
