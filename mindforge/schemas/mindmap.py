"""
Mindforge — Mind Map Schemas
============================
Synthesis-time tree, presentation graph, cache entry and HTTP envelopes.

Graph-facing models serialize with camelCase aliases (``nodeType``,
``labelStyle``, ``contentHash`` …) so the rendering surface can consume them
directly; snake_case field names are accepted on input as well.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NodeType = Literal["concept", "detail", "example", "connection"]
NODE_TYPES = ("concept", "detail", "example", "connection")

ROOT_RELATIONSHIP = "is the central topic of"
DEFAULT_RELATIONSHIP = "relates to"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Synthesis Tree ───────────────────────────────────────────────────────────

class HierarchicalNode(CamelModel):
    """A concept in a synthesized tree. Children are owned by their parent."""
    id: str
    label: str
    relationship_to_parent: str = DEFAULT_RELATIONSHIP
    level: int = Field(default=0, ge=0)
    node_type: NodeType = "concept"
    summary: Optional[str] = None
    children: List[HierarchicalNode] = Field(default_factory=list)

    def iter_nodes(self):
        """Depth-first, pre-order walk over this node and its descendants."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def count(self) -> int:
        return sum(1 for _ in self.iter_nodes())


# ── Presentation Graph ───────────────────────────────────────────────────────

class Position(CamelModel):
    x: float = 0.0
    y: float = 0.0


class NodeData(CamelModel):
    label: str
    level: int = Field(default=0, ge=0)
    node_type: NodeType = "concept"
    summary: Optional[str] = None


class MindMapNode(CamelModel):
    """A positionable node as the rendering surface expects it."""
    id: str
    position: Position = Field(default_factory=Position)
    data: NodeData
    style: Dict[str, Any] = Field(default_factory=dict)


class MindMapEdge(CamelModel):
    """A parent → child edge carrying the (truncated) relationship text."""
    id: str
    source: str
    target: str
    label: str = ""
    animated: bool = False
    style: Dict[str, Any] = Field(default_factory=dict)
    label_style: Dict[str, Any] = Field(default_factory=dict)


class MindMapGraph(CamelModel):
    nodes: List[MindMapNode] = Field(default_factory=list)
    edges: List[MindMapEdge] = Field(default_factory=list)

    def node_ids(self) -> set:
        return {node.id for node in self.nodes}

    def get_node(self, node_id: str) -> Optional[MindMapNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def root(self) -> Optional[MindMapNode]:
        for node in self.nodes:
            if node.data.level == 0:
                return node
        return None


class ExpansionDelta(CamelModel):
    """Nodes and edges to add to an existing graph. Never removes anything."""
    new_nodes: List[MindMapNode] = Field(default_factory=list)
    new_edges: List[MindMapEdge] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.new_nodes and not self.new_edges


# ── Cache ────────────────────────────────────────────────────────────────────

class CacheEntry(CamelModel):
    """A completed graph for one session. Replaced wholesale, never edited."""
    key: str
    content_hash: str
    graph: MindMapGraph
    generated_at: datetime


# ── Requests ─────────────────────────────────────────────────────────────────

class MindMapRequest(CamelModel):
    """Request body for mind map generation."""
    content: str = Field(default="", description="Chat answer or extracted document text")
    topic: str = Field(default="", description="Overall topic; becomes the root label")
    max_depth: int = Field(default=4, ge=0, le=12, description="Deepest level rendered")
    session_id: Optional[str] = Field(default=None, description="Enables result caching")


class ExpandRequest(CamelModel):
    """Request body for on-demand node expansion."""
    node_id: str
    graph: MindMapGraph
    context: str = ""


# ── Responses ────────────────────────────────────────────────────────────────

class ProcessingMeta(CamelModel):
    """Metadata about the processing run."""
    processing_time: str = Field(..., description="e.g. '12.4s'")
    cached: bool = False
    node_count: int
    edge_count: int


class MindMapResponse(CamelModel):
    """Standard success envelope."""
    status: str = "success"
    meta: ProcessingMeta
    data: MindMapGraph


class ErrorResponse(CamelModel):
    """Standard error envelope."""
    status: str = "error"
    message: str
    detail: Optional[str] = None
