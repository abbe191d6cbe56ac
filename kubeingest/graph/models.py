"""Data structures for the resource ownership graph."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from kubeingest.models.resources import RawResource


class EdgeType(StrEnum):
    """Types of relationships between custom resources."""

    OWNER_REFERENCE = "owner_reference"
    INSTANCE_LABEL = "instance_label"
    RESOURCE_REF = "resource_ref"
    COMPOSITION_REF = "composition_ref"
    DEFINITION_REF = "definition_ref"

    @property
    def is_parent_edge(self) -> bool:
        """Parent edges shape the tree; dependency edges never do."""
        return self in (EdgeType.OWNER_REFERENCE, EdgeType.INSTANCE_LABEL, EdgeType.RESOURCE_REF)


@dataclass
class GraphNode:
    """A node in the ownership graph. ``id`` is the resource uid."""

    id: str
    resource: RawResource
    parent: str | None = None
    children: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GraphEdge:
    """A typed edge between two nodes. Parent edges point parent -> child."""

    source: str
    target: str
    edge_type: EdgeType
    source_field: str  # field path of the reference that creates this relationship


@dataclass
class ResourceGraph:
    """One tree rooted at ``root``, with nodes in breadth-first order."""

    root: str
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    _index: dict[str, GraphNode] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._index = {node.id: node for node in self.nodes}

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def get(self, node_id: str) -> GraphNode | None:
        return self._index.get(node_id)

    @property
    def root_node(self) -> GraphNode:
        return self._index[self.root]

    def parent_of(self, node_id: str) -> GraphNode | None:
        node = self._index.get(node_id)
        if node is None or node.parent is None:
            return None
        return self._index.get(node.parent)

    def children_of(self, node_id: str) -> list[GraphNode]:
        node = self._index.get(node_id)
        if node is None:
            return []
        return [self._index[c] for c in node.children if c in self._index]

    def filtered(self, authorize: Callable[[RawResource], bool]) -> ResourceGraph | None:
        """Copy of this graph keeping only nodes *authorize* accepts.

        A rejected node takes its whole subtree with it. Returns None when
        the root itself is rejected. Dependency edges of kept nodes are kept.
        """
        if not authorize(self.root_node.resource):
            return None

        kept: dict[str, GraphNode] = {}
        for node in self.nodes:
            if node.id != self.root and (node.parent not in kept or not authorize(node.resource)):
                continue
            kept[node.id] = GraphNode(
                id=node.id,
                resource=node.resource,
                parent=node.parent if node.id != self.root else None,
            )

        for node in self.nodes:
            copy = kept.get(node.id)
            if copy is None:
                continue
            copy.children = [c for c in node.children if c in kept]
            copy.dependencies = list(node.dependencies)

        edges = [
            e for e in self.edges if e.source in kept and (e.target in kept or not e.edge_type.is_parent_edge)
        ]
        return ResourceGraph(root=self.root, nodes=list(kept.values()), edges=edges)

