"""
Mindforge — Layout Engine
=========================
Layered (rank-based) tidy-tree layout with an anti-clustering pass.

Ranks follow depth from the root. Each subtree gets a band wide enough for
its widest rank, siblings are ``node_sep`` apart, parents sit centered over
their children, and consecutive ranks are ``rank_sep`` apart. Positions are
top-left corners, as the viewer expects.
"""

import logging
from typing import Dict, List, Tuple

import networkx as nx

from mindforge.core.config import settings
from mindforge.schemas.mindmap import MindMapGraph, MindMapNode, Position

logger = logging.getLogger(__name__)


class LayoutEngine:

    def __init__(
        self,
        direction: str = settings.LAYOUT_DIRECTION,
        node_sep: float = settings.NODE_SEP,
        rank_sep: float = settings.RANK_SEP,
        margin: float = settings.LAYOUT_MARGIN,
        anti_cluster_min_level: int = settings.ANTI_CLUSTER_MIN_LEVEL,
        char_width: float = 7.5,
        min_width: float = 100.0,
        max_width: float = 280.0,
        node_height: float = 50.0,
        root_height: float = 60.0,
    ):
        direction = direction.upper()
        if direction not in ("TB", "LR"):
            raise ValueError(f"Unsupported layout direction: {direction}")
        self.direction = direction
        self.node_sep = node_sep
        self.rank_sep = rank_sep
        self.margin = margin
        self.anti_cluster_min_level = anti_cluster_min_level
        self.char_width = char_width
        self.min_width = min_width
        self.max_width = max_width
        self.node_height = node_height
        self.root_height = root_height

    def estimate_size(self, node: MindMapNode) -> Tuple[float, float]:
        """Width grows with the (already truncated) label so long labels don't collide."""
        width = len(node.data.label) * self.char_width + 40
        width = min(max(width, self.min_width), self.max_width)
        height = self.root_height if node.data.level == 0 else self.node_height
        return width, height

    def _tree(self, graph: MindMapGraph) -> Tuple[nx.DiGraph, List[str]]:
        """First-parent-wins tree over the graph; nodes nobody reaches become extra roots."""
        tree = nx.DiGraph()
        tree.add_nodes_from(node.id for node in graph.nodes)
        for edge in graph.edges:
            if (
                tree.has_node(edge.source)
                and tree.has_node(edge.target)
                and tree.in_degree(edge.target) == 0
                and edge.target != edge.source
                and not nx.has_path(tree, edge.target, edge.source)
            ):
                tree.add_edge(edge.source, edge.target)

        roots = [n for n in tree.nodes if tree.in_degree(n) == 0]
        return tree, roots

    def apply(self, graph: MindMapGraph) -> MindMapGraph:
        """Return a new graph with every node positioned; edges are copied unchanged."""
        if not graph.nodes:
            return graph.model_copy(deep=True)

        by_id = {node.id: node for node in graph.nodes}
        sizes = {node_id: self.estimate_size(node) for node_id, node in by_id.items()}
        tree, roots = self._tree(graph)

        # Breadth runs along a rank, depth across ranks.
        breadth_index, depth_index = (0, 1) if self.direction == "TB" else (1, 0)

        ranks: Dict[str, int] = {}
        for root in roots:
            ranks.update(nx.single_source_shortest_path_length(tree, root))

        depth_extent: Dict[int, float] = {}
        for node_id, rank in ranks.items():
            depth_extent[rank] = max(depth_extent.get(rank, 0.0), sizes[node_id][depth_index])
        rank_offset: Dict[int, float] = {}
        cursor = self.margin
        for rank in sorted(depth_extent):
            rank_offset[rank] = cursor
            cursor += depth_extent[rank] + self.rank_sep

        span: Dict[str, float] = {}
        for root in roots:
            for node_id in nx.dfs_postorder_nodes(tree, root):
                kids = list(tree.successors(node_id))
                kids_span = sum(span[k] for k in kids) + self.node_sep * max(0, len(kids) - 1)
                span[node_id] = max(sizes[node_id][breadth_index], kids_span)

        centers: Dict[str, float] = {}
        start = self.margin
        for root in roots:
            stack = [(root, start)]
            while stack:
                node_id, left = stack.pop()
                center = left + span[node_id] / 2
                centers[node_id] = center
                kids = list(tree.successors(node_id))
                kids_span = sum(span[k] for k in kids) + self.node_sep * max(0, len(kids) - 1)
                child_left = center - kids_span / 2
                for kid in kids:
                    stack.append((kid, child_left))
                    child_left += span[kid] + self.node_sep
            start += span[root] + self.node_sep

        offsets = self._anti_cluster_offsets(tree, by_id)

        nodes = []
        for node in graph.nodes:
            width, height = sizes[node.id]
            breadth_size = width if self.direction == "TB" else height
            along = centers[node.id] - breadth_size / 2
            across = rank_offset[ranks[node.id]]
            x, y = (along, across) if self.direction == "TB" else (across, along)
            dx, dy = offsets.get(node.id, (0.0, 0.0))

            positioned = node.model_copy(deep=True)
            positioned.position = Position(x=round(x + dx, 2), y=round(y + dy, 2))
            nodes.append(positioned)

        logger.info(f"[LAYOUT] ✓ {len(nodes)} nodes over {len(rank_offset)} ranks ({self.direction})")
        return MindMapGraph(nodes=nodes, edges=[edge.model_copy(deep=True) for edge in graph.edges])

    def _anti_cluster_offsets(
        self,
        tree: nx.DiGraph,
        by_id: Dict[str, MindMapNode],
    ) -> Dict[str, Tuple[float, float]]:
        """Stagger deep siblings sharing a parent: 3 per row, 30px across, 15px down."""
        offsets: Dict[str, Tuple[float, float]] = {}
        for parent in tree.nodes:
            siblings = [
                kid for kid in tree.successors(parent)
                if by_id[kid].data.level >= self.anti_cluster_min_level
            ]
            for index, kid in enumerate(siblings):
                offsets[kid] = ((index % 3) * 30.0, (index // 3) * 15.0)
        return offsets
