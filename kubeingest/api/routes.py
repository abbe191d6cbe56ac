"""Read API routes: health, ingestion status, graphs and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubeingest import __version__
from kubeingest.api.schemas import (
    ClusterStatusSchema,
    ErrorResponse,
    GraphResponse,
    HealthResponse,
    StatusResponse,
)
from kubeingest.models.resources import RawResource

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    scheduler = request.app.state.scheduler
    return HealthResponse(status="ok", version=__version__, scheduler_running=scheduler.running)


@router.get("/status", response_model=StatusResponse)
async def status(request: Request) -> StatusResponse:
    scheduler = request.app.state.scheduler
    clusters = sorted(scheduler.status().values(), key=lambda s: s.name)
    return StatusResponse(
        version=__version__,
        clusters=[ClusterStatusSchema.from_status(s) for s in clusters],
    )


@router.get(
    "/graphs/{root_entity_id:path}",
    response_model=GraphResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_graph(root_entity_id: str, request: Request) -> GraphResponse | JSONResponse:
    """Last delivered graph rooted at the given entity, filtered for the caller.

    An absent graph and an unauthorized root both answer 404, so callers
    cannot discover resources they may not see.
    """
    scheduler = request.app.state.scheduler
    authorize_hook = request.app.state.authorize

    def _authorize(resource: RawResource) -> bool:
        return bool(authorize_hook(request, resource))

    graph = scheduler.get_graph(root_entity_id, authorize=_authorize if authorize_hook else None)
    if graph is None:
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="GRAPH_NOT_FOUND", detail=f"No graph rooted at {root_entity_id}").model_dump(),
        )
    entity_ids = scheduler.entity_ids(graph.root_node.resource.cluster.name)
    return GraphResponse.from_graph(graph, entity_ids)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
