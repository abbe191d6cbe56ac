"""Pydantic response models for the read API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from kubeingest.graph.models import ResourceGraph
from kubeingest.scheduler.ingestion import ClusterStatus


class ErrorResponse(BaseModel):
    """Error envelope shared by every non-2xx response."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str
    version: str
    scheduler_running: bool


class CycleErrorSchema(BaseModel):
    scope: str
    subject: str
    cause: str


class ClusterStatusSchema(BaseModel):
    name: str
    state: str
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    error_count: int = 0
    entity_count: int = 0
    last_errors: list[CycleErrorSchema] = Field(default_factory=list)

    @classmethod
    def from_status(cls, status: ClusterStatus) -> ClusterStatusSchema:
        return cls(
            name=status.name,
            state=status.state.value,
            last_started_at=status.last_started_at,
            last_finished_at=status.last_finished_at,
            last_success_at=status.last_success_at,
            consecutive_failures=status.consecutive_failures,
            error_count=status.error_count,
            entity_count=status.entity_count,
            last_errors=[
                CycleErrorSchema(scope=e.scope.value, subject=e.subject, cause=e.cause) for e in status.last_errors
            ],
        )


class StatusResponse(BaseModel):
    version: str
    clusters: list[ClusterStatusSchema]


class GraphNodeSchema(BaseModel):
    uid: str
    entity_id: str | None = None
    kind: str
    api_version: str
    name: str
    namespace: str | None = None
    parent: str | None = None
    children: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class GraphEdgeSchema(BaseModel):
    source: str
    target: str
    type: str
    source_field: str


class GraphResponse(BaseModel):
    """One ownership tree, nodes in breadth-first order from the root."""

    root: str
    root_entity_id: str | None = None
    cluster: str
    nodes: list[GraphNodeSchema]
    edges: list[GraphEdgeSchema]

    @classmethod
    def from_graph(cls, graph: ResourceGraph, entity_ids: dict[str, str]) -> GraphResponse:
        return cls(
            root=graph.root,
            root_entity_id=entity_ids.get(graph.root),
            cluster=graph.root_node.resource.cluster.name,
            nodes=[
                GraphNodeSchema(
                    uid=node.id,
                    entity_id=entity_ids.get(node.id),
                    kind=node.resource.kind,
                    api_version=node.resource.full_api_version,
                    name=node.resource.name,
                    namespace=node.resource.namespace,
                    parent=node.parent,
                    children=list(node.children),
                    dependencies=list(node.dependencies),
                )
                for node in graph.nodes
            ],
            edges=[
                GraphEdgeSchema(
                    source=edge.source,
                    target=edge.target,
                    type=edge.edge_type.value,
                    source_field=edge.source_field,
                )
                for edge in graph.edges
            ],
        )
