"""
Mindforge — Graph Builder
=========================
Flattens the master tree into the node/edge lists the viewer renders.

  - Depth-first traversal, pruning levels deeper than ``max_depth``
  - Display caps on node labels and edge labels
  - Node budget: deepest level first, leaves only, root never removed
  - Consistency pass: no dangling edges, no node unreachable from the root
"""

import logging
from typing import Any, Dict, List, Optional

import networkx as nx

from mindforge.core.config import settings
from mindforge.schemas.mindmap import (
    DEFAULT_RELATIONSHIP,
    HierarchicalNode,
    MindMapEdge,
    MindMapGraph,
    MindMapNode,
    NodeData,
    Position,
)

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Mind Map"
ELLIPSIS = "..."


def truncate(text: Optional[str], cap: int) -> str:
    """Collapse whitespace and cut to at most ``cap`` characters, ellipsis included."""
    text = " ".join((text or "").split())
    if len(text) <= cap:
        return text
    if cap <= len(ELLIPSIS):
        return text[:cap]
    return text[:cap - len(ELLIPSIS)].rstrip() + ELLIPSIS


# ── Style hints ──────────────────────────────────────────────────────────────

_LEVEL_STYLES = [
    {"background": "linear-gradient(135deg, #667eea 0%, #764ba2 100%)", "borderColor": "#4c63d2", "fontSize": "15px", "padding": "14px 18px"},
    {"background": "linear-gradient(135deg, #f093fb 0%, #f5576c 100%)", "borderColor": "#e91e63", "fontSize": "14px", "padding": "12px 16px"},
    {"background": "linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)", "borderColor": "#2196f3", "fontSize": "13px", "padding": "10px 14px"},
    {"background": "linear-gradient(135deg, #a8edea 0%, #fed6e3 100%)", "borderColor": "#4dd0e1", "fontSize": "12px", "padding": "8px 12px", "color": "#333"},
    {"background": "rgba(255, 255, 255, 0.9)", "borderColor": "#e0e0e0", "fontSize": "11px", "padding": "6px 10px", "color": "#666"},
]


def node_style(level: int) -> Dict[str, Any]:
    conf = _LEVEL_STYLES[min(level, len(_LEVEL_STYLES) - 1)]
    return {
        "borderRadius": "12px",
        "border": "2px solid",
        "wordBreak": "break-word",
        "whiteSpace": "normal",
        "color": "white",
        **conf,
        "fontWeight": "600" if level < 2 else "500",
    }


def edge_style(level: int) -> Dict[str, Any]:
    stroke_width = max(3 - level * 0.5, 1)
    opacity = max(1 - level * 0.1, 0.6)
    stroke = "#667eea" if level <= 1 else "#f093fb" if level <= 2 else "#4facfe"
    return {"stroke": stroke, "strokeWidth": f"{stroke_width}px", "opacity": f"{opacity:.1f}"}


def edge_label_style(level: int) -> Dict[str, Any]:
    return {
        "fill": "#666",
        "fontWeight": "600" if level <= 1 else "500",
        "fontSize": "12px" if level <= 1 else "11px",
    }


# ── Builder ──────────────────────────────────────────────────────────────────

class GraphBuilder:

    def __init__(
        self,
        max_nodes: int = settings.MAX_NODES,
        label_chars: int = settings.NODE_LABEL_CHARS,
        relationship_chars: int = settings.EDGE_LABEL_CHARS,
        animated_max_level: int = settings.ANIMATED_MAX_LEVEL,
    ):
        self.max_nodes = max(1, max_nodes)
        self.label_chars = label_chars
        self.relationship_chars = relationship_chars
        self.animated_max_level = animated_max_level

    def make_node(
        self,
        node_id: str,
        label: str,
        level: int,
        node_type: str = "concept",
        summary: Optional[str] = None,
        position: Optional[Position] = None,
    ) -> MindMapNode:
        return MindMapNode(
            id=node_id,
            position=position or Position(),
            data=NodeData(
                label=truncate(label, self.label_chars) or truncate(DEFAULT_TOPIC, self.label_chars),
                level=level,
                node_type=node_type,
                summary=summary,
            ),
            style=node_style(level),
        )

    def make_edge(self, source: str, target: str, relationship: str, level: int) -> MindMapEdge:
        """``level`` is the level of the target node."""
        return MindMapEdge(
            id=f"edge-{source}-{target}",
            source=source,
            target=target,
            label=truncate(relationship or DEFAULT_RELATIONSHIP, self.relationship_chars),
            animated=level <= self.animated_max_level,
            style=edge_style(level),
            label_style=edge_label_style(level),
        )

    def fallback_graph(self, topic: str) -> MindMapGraph:
        """Minimal graph: a single root labeled from the topic."""
        label = (topic or "").strip() or DEFAULT_TOPIC
        return MindMapGraph(nodes=[self.make_node("root", label, 0)], edges=[])

    def build(self, root: HierarchicalNode, max_depth: int = settings.DEFAULT_MAX_DEPTH) -> MindMapGraph:
        nodes: List[MindMapNode] = []
        edges: List[MindMapEdge] = []
        seen: Dict[str, int] = {}

        stack = [(root, None)]
        while stack:
            node, parent_id = stack.pop()
            if parent_id is not None and node.level > max_depth:
                continue

            node_id = node.id
            if node_id in seen:
                suffix = seen[node.id]
                while node_id in seen:
                    suffix += 1
                    node_id = f"{node.id}~{suffix}"
                seen[node.id] = suffix
            seen.setdefault(node_id, 0)

            nodes.append(
                self.make_node(node_id, node.label, node.level, node.node_type, node.summary)
            )
            if parent_id is not None:
                edges.append(self.make_edge(parent_id, node_id, node.relationship_to_parent, node.level))

            stack.extend((child, node_id) for child in reversed(node.children))

        graph = MindMapGraph(nodes=nodes, edges=edges)
        graph = self.enforce_budget(graph)
        graph = self.ensure_consistency(graph)
        logger.info(f"[GRAPH] ✓ {len(graph.nodes)} nodes, {len(graph.edges)} edges (max depth {max_depth})")
        return graph

    def enforce_budget(self, graph: MindMapGraph) -> MindMapGraph:
        """
        Remove nodes deepest level first until at most ``max_nodes`` remain.

        Within a level, nodes later in traversal order go first. A level is
        only touched after every deeper level is gone, so only leaves are
        removed and no kept node loses its parent.
        """
        nodes = graph.nodes
        excess = len(nodes) - self.max_nodes
        if excess <= 0:
            return graph

        root = graph.root()
        ranked = sorted(range(len(nodes)), key=lambda i: (nodes[i].data.level, i), reverse=True)
        removed = set()
        for i in ranked:
            if len(removed) >= excess:
                break
            if root is not None and nodes[i].id == root.id:
                continue
            removed.add(nodes[i].id)

        logger.warning(f"[GRAPH] Node budget {self.max_nodes} exceeded by {excess}; pruned {len(removed)} leaves")
        return MindMapGraph(
            nodes=[n for n in nodes if n.id not in removed],
            edges=[e for e in graph.edges if e.source not in removed and e.target not in removed],
        )

    def ensure_consistency(self, graph: MindMapGraph) -> MindMapGraph:
        """Drop dangling edges and any node the root cannot reach."""
        root = graph.root()
        if root is None:
            return graph

        g = nx.DiGraph()
        g.add_nodes_from(n.id for n in graph.nodes)
        valid_edges = [e for e in graph.edges if g.has_node(e.source) and g.has_node(e.target)]
        g.add_edges_from((e.source, e.target) for e in valid_edges)

        reachable = nx.descendants(g, root.id) | {root.id}
        nodes = [n for n in graph.nodes if n.id in reachable]
        edges = [e for e in valid_edges if e.source in reachable and e.target in reachable]

        dropped = (len(graph.nodes) - len(nodes), len(graph.edges) - len(edges))
        if any(dropped):
            logger.warning(f"[GRAPH] Consistency pass dropped {dropped[0]} nodes, {dropped[1]} edges")
        return MindMapGraph(nodes=nodes, edges=edges)
