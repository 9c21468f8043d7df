"""
Mindforge — Mind Map Service
============================
Single entry point for the synthesis pipeline:

  cache lookup → segment → synthesize (concurrent, by index) → merge (sequential)
  → build graph → layout → cache store

``generate_mind_map`` and ``expand_node`` never raise; the worst case is a
single-node graph labeled with the topic, or an empty expansion delta.
"""

import json
import time
import asyncio
import logging
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

from mindforge.ai_engine import TextOracle, build_default_oracle
from mindforge.core.config import Settings, settings as default_settings
from mindforge.schemas.mindmap import ExpansionDelta, MindMapGraph
from mindforge.services.cache import MindMapCache, content_hash
from mindforge.services.expansion import ExpansionService
from mindforge.services.graph_builder import GraphBuilder
from mindforge.services.layout import LayoutEngine
from mindforge.services.segmenter import ContentSegmenter
from mindforge.services.tree_merger import TreeMerger
from mindforge.services.tree_synthesizer import TreeSynthesizer

logger = logging.getLogger(__name__)

MAX_SIMPLE_CONCEPTS = 6


class MindMapService:

    def __init__(
        self,
        oracle: Optional[TextOracle] = None,
        config: Optional[Settings] = None,
        cache: Optional[MindMapCache] = None,
    ):
        self.config = config or default_settings
        self.oracle = oracle if oracle is not None else build_default_oracle(self.config)
        c = self.config

        self.segmenter = ContentSegmenter(
            self.oracle,
            max_segments=c.MAX_SEGMENTS,
            segment_chars=c.SEGMENT_CHARS,
            min_segment_chars=c.MIN_SEGMENT_CHARS,
            chunk_size=c.CHUNK_SIZE,
            input_chunks=c.SEGMENTER_INPUT_CHUNKS,
        )
        self.synthesizer = TreeSynthesizer(
            self.oracle,
            max_levels=c.TREE_LEVELS,
            max_children=c.MAX_CHILDREN,
            fallback_label_chars=c.FALLBACK_LABEL_CHARS,
        )
        self.merger = TreeMerger(
            self.oracle,
            master_snapshot_depth=c.MASTER_SNAPSHOT_DEPTH,
            candidate_snapshot_depth=c.CANDIDATE_SNAPSHOT_DEPTH,
            root_fanout_warning=c.ROOT_FANOUT_WARNING,
        )
        self.builder = GraphBuilder(
            max_nodes=c.MAX_NODES,
            label_chars=c.NODE_LABEL_CHARS,
            relationship_chars=c.EDGE_LABEL_CHARS,
            animated_max_level=c.ANIMATED_MAX_LEVEL,
        )
        self.layout = LayoutEngine(
            direction=c.LAYOUT_DIRECTION,
            node_sep=c.NODE_SEP,
            rank_sep=c.RANK_SEP,
            margin=c.LAYOUT_MARGIN,
            anti_cluster_min_level=c.ANTI_CLUSTER_MIN_LEVEL,
        )
        self.expansion = ExpansionService(
            self.oracle,
            builder=self.builder,
            direction=c.LAYOUT_DIRECTION,
            node_sep=c.NODE_SEP,
            rank_sep=c.RANK_SEP,
        )
        self.cache = cache if cache is not None else MindMapCache(
            ttl_seconds=c.CACHE_TTL_SECONDS,
            max_entries=c.CACHE_MAX_ENTRIES,
        )

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PIPELINE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def _pipeline(
        self,
        content: str,
        topic: str,
        max_depth: int,
        session_id: Optional[str],
    ) -> AsyncGenerator[Dict[str, Any], None]:
        """Yields status events and finally ``{"type": "result", ...}``."""
        digest = content_hash(content or "", topic or "", max_depth)
        if session_id:
            cached = self.cache.get(session_id, digest)
            if cached is not None:
                yield {"type": "result", "graph": cached, "cached": True}
                return

        yield {"type": "status", "message": "Segmenting content...", "progress": 10}
        segments = await self.segmenter.segment(content or "")

        if not segments:
            logger.warning("[MINDMAP] No content to segment; returning topic-only map")
            graph = self.layout.apply(self.builder.fallback_graph(topic))
        else:
            yield {"type": "status", "message": f"Extracting concepts from {len(segments)} segments...", "progress": 30}
            trees = await asyncio.gather(
                *(self.synthesizer.synthesize(segment, topic) for segment in segments)
            )

            yield {"type": "status", "message": "Merging concept trees...", "progress": 55}
            master = await self.merger.merge(list(trees), topic)

            yield {"type": "status", "message": "Building and laying out the graph...", "progress": 80}
            graph = self.layout.apply(self.builder.build(master, max_depth))

        if session_id:
            self.cache.put(session_id, digest, graph)
        yield {"type": "result", "graph": graph, "cached": False}

    async def generate_mind_map_with_meta(
        self,
        content: str,
        topic: str,
        max_depth: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Tuple[MindMapGraph, bool]:
        """Like ``generate_mind_map`` but also reports whether the cache answered."""
        max_depth = self.config.DEFAULT_MAX_DEPTH if max_depth is None else max_depth
        start = time.perf_counter()
        logger.info(f"[MINDMAP] Starting generation for '{(topic or '')[:60]}' (max depth {max_depth})")

        try:
            result = None
            async for event in self._pipeline(content, topic, max_depth, session_id):
                if event["type"] == "result":
                    result = event
            if result is not None:
                graph, cached = result["graph"], result["cached"]
                logger.info(
                    f"[MINDMAP] ✓ {len(graph.nodes)} nodes, {len(graph.edges)} edges "
                    f"({'cached' if cached else f'{time.perf_counter() - start:.1f}s'})"
                )
                return graph, cached
        except Exception as e:
            logger.error(f"[MINDMAP] Pipeline failed: {e}", exc_info=True)

        return self.fallback_mind_map(topic), False

    async def generate_mind_map(
        self,
        content: str,
        topic: str,
        max_depth: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> MindMapGraph:
        graph, _ = await self.generate_mind_map_with_meta(content, topic, max_depth, session_id)
        return graph

    async def generate_mind_map_stream(
        self,
        content: str,
        topic: str,
        max_depth: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        """Stream generation progress as JSON events; always ends with a result."""
        max_depth = self.config.DEFAULT_MAX_DEPTH if max_depth is None else max_depth
        graph, cached = None, False
        try:
            async for event in self._pipeline(content, topic, max_depth, session_id):
                if event["type"] == "result":
                    graph, cached = event["graph"], event["cached"]
                else:
                    yield json.dumps(event)
        except Exception as e:
            logger.error(f"[MINDMAP] Stream pipeline failed: {e}", exc_info=True)

        if graph is None:
            graph = self.fallback_mind_map(topic)
        yield json.dumps({"type": "status", "message": "Done ✓", "progress": 100})
        yield json.dumps({"type": "result", "cached": cached, "data": graph.model_dump(mode="json", by_alias=True)})

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # EXPANSION & SIMPLE MAPS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def expand_node(self, node_id: str, current_graph: MindMapGraph, context: str = "") -> ExpansionDelta:
        """Additive delta for one node; empty on any failure."""
        try:
            return await self.expansion.expand_node(node_id, current_graph, context)
        except Exception as e:
            logger.error(f"[EXPAND] Expansion failed: {e}", exc_info=True)
            return ExpansionDelta()

    def fallback_mind_map(self, topic: str) -> MindMapGraph:
        return self.layout.apply(self.builder.fallback_graph(topic))

    def build_simple_mind_map(self, topic: str, concepts: List[str]) -> MindMapGraph:
        """Topic root plus up to six concept children, no oracle involved."""
        graph = self.builder.fallback_graph(topic)
        root_id = graph.nodes[0].id
        labels = [c.strip() for c in concepts if isinstance(c, str) and c.strip()]
        for index, label in enumerate(labels[:MAX_SIMPLE_CONCEPTS]):
            child_id = f"concept-{index + 1}"
            graph.nodes.append(self.builder.make_node(child_id, label, 1))
            graph.edges.append(self.builder.make_edge(root_id, child_id, "explores", 1))
        return self.layout.apply(graph)
