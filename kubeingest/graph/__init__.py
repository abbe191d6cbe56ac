"""Resource ownership graph.

Built per cluster per cycle from the fetched resources: ownerReferences,
KRO instance labels and Crossplane resourceRefs shape the trees;
compositionRefs and RGD labels add dependency edges between them.
"""

from kubeingest.graph.builder import GraphBuilder
from kubeingest.graph.models import EdgeType, GraphEdge, GraphNode, ResourceGraph

__all__ = [
    "EdgeType",
    "GraphBuilder",
    "GraphEdge",
    "GraphNode",
    "ResourceGraph",
]
