import time
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from mindforge.schemas.mindmap import (
    CacheEntry,
    ExpandRequest,
    ExpansionDelta,
    MindMapRequest,
    MindMapResponse,
    ProcessingMeta,
)
from mindforge.services.mindmap_service import MindMapService

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def get_mindmap_service() -> MindMapService:
    """Process-wide service: one rate limiter, one cache."""
    return MindMapService()


# ── Helper: SSE Event Stream ─────────────────────────────────────────────────

async def _sse_wrapper(generator):
    """Wraps an async generator into SSE format."""
    async for chunk in generator:
        yield f"data: {chunk}\n\n"
    yield "data: [DONE]\n\n"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 1. MIND MAP
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@router.post("/mindmap", response_model=MindMapResponse)
async def create_mindmap(
    request: MindMapRequest,
    service: MindMapService = Depends(get_mindmap_service),
):
    """Synthesize a laid-out mind map graph from text. Always returns a graph."""
    start = time.perf_counter()
    graph, cached = await service.generate_mind_map_with_meta(
        request.content,
        request.topic,
        request.max_depth,
        request.session_id,
    )
    elapsed = time.perf_counter() - start
    return MindMapResponse(
        meta=ProcessingMeta(
            processing_time=f"{elapsed:.1f}s",
            cached=cached,
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
        ),
        data=graph,
    )


@router.post("/mindmap/stream")
async def create_mindmap_stream(
    request: MindMapRequest,
    service: MindMapService = Depends(get_mindmap_service),
):
    """Stream mind map generation via Server-Sent Events."""
    return StreamingResponse(
        _sse_wrapper(
            service.generate_mind_map_stream(
                request.content,
                request.topic,
                request.max_depth,
                request.session_id,
            )
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 2. EXPANSION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@router.post("/mindmap/expand", response_model=ExpansionDelta)
async def expand_mindmap_node(
    request: ExpandRequest,
    service: MindMapService = Depends(get_mindmap_service),
):
    """Generate additional children for one node. Empty delta on failure."""
    return await service.expand_node(request.node_id, request.graph, request.context)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 3. CACHE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@router.get("/mindmap/cache/{session_id}", response_model=CacheEntry)
async def get_cached_mindmap(
    session_id: str,
    service: MindMapService = Depends(get_mindmap_service),
):
    """Raw cache entry for the session layer to persist."""
    entry = service.cache.entry(session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No cached mind map for session '{session_id}'.")
    return entry


@router.delete("/mindmap/cache")
async def clear_mindmap_cache(service: MindMapService = Depends(get_mindmap_service)):
    service.cache.clear()
    return {"status": "success"}
