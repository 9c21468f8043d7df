"""
Mindforge — Expansion Service
=============================
Grows one node of an existing graph by 2-4 oracle-suggested children.

The result is an additive delta; the caller's graph is never touched and
nothing is re-laid-out. Any failure yields an empty delta.
"""

import logging
from typing import Any, List, Optional

from mindforge.ai_engine import TextOracle, ask_oracle, clean_and_parse_json
from mindforge.core.config import settings
from mindforge.core.errors import Ok
from mindforge.schemas.mindmap import (
    DEFAULT_RELATIONSHIP,
    NODE_TYPES,
    ExpansionDelta,
    MindMapGraph,
    MindMapNode,
    Position,
)
from mindforge.services.graph_builder import GraphBuilder

logger = logging.getLogger(__name__)

MIN_EXPANSION = 2
MAX_EXPANSION = 4

EXPAND_PROMPT = (
    "Generate 2-4 sub-concepts for the mind map node titled '{label}' "
    'in the context of "{context}".\n'
    "Each sub-concept 'label' MUST be a highly concise keyphrase of 2-3 words.\n"
    "For each sub-concept also provide a 'relationship' (1-3 words) describing its "
    "connection to the parent node '{label}', and a 'nodeType'.\n\n"
    "Output MUST be valid JSON matching this EXACT schema:\n"
    '{{"children": [{{"label": "Concise Sub-concept", "relationship": "Short Connection", '
    '"nodeType": "concept|detail|example"}}]}}'
)


def parse_expansions(raw: str) -> List[dict]:
    """
    Accept ``{"children": [...]}`` or a bare JSON array; keep labeled items only.
    Fewer than two usable children counts as malformed.
    """
    parsed: Any = clean_and_parse_json(raw)
    if isinstance(parsed, dict):
        parsed = parsed.get("children")
    if not isinstance(parsed, list):
        raise ValueError("expansion response is not a list")

    items = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        label = item.get("label")
        if not isinstance(label, str) or not label.strip():
            continue
        relationship = item.get("relationship")
        node_type = str(item.get("nodeType") or "").strip().lower()
        items.append({
            "label": label.strip(),
            "relationship": relationship.strip() if isinstance(relationship, str) and relationship.strip() else DEFAULT_RELATIONSHIP,
            "node_type": node_type if node_type in NODE_TYPES else "concept",
        })
        if len(items) >= MAX_EXPANSION:
            break

    if len(items) < MIN_EXPANSION:
        raise ValueError(f"expansion response has {len(items)} usable children, need {MIN_EXPANSION}")
    return items


class ExpansionService:

    def __init__(
        self,
        oracle: TextOracle,
        builder: Optional[GraphBuilder] = None,
        direction: str = settings.LAYOUT_DIRECTION,
        node_sep: float = settings.NODE_SEP,
        rank_sep: float = settings.RANK_SEP,
    ):
        self.oracle = oracle
        self.builder = builder or GraphBuilder()
        self.direction = direction.upper()
        self.node_sep = node_sep
        self.rank_sep = rank_sep

    async def expand_node(self, node_id: str, graph: MindMapGraph, context: str = "") -> ExpansionDelta:
        parent = graph.get_node(node_id)
        if parent is None:
            logger.warning(f"[EXPAND] ✗ Node '{node_id}' not in graph")
            return ExpansionDelta()

        room = self.builder.max_nodes - len(graph.nodes)
        if room <= 0:
            logger.warning(f"[EXPAND] ✗ Node budget {self.builder.max_nodes} already reached")
            return ExpansionDelta()

        prompt = EXPAND_PROMPT.format(label=parent.data.label, context=context)
        outcome = await ask_oracle(self.oracle, prompt, parse_expansions, tag="EXPAND")
        if not isinstance(outcome, Ok):
            return ExpansionDelta()

        items = outcome.value[:room]
        delta = self._build_delta(parent, graph, items)
        logger.info(f"[EXPAND] ✓ {len(delta.new_nodes)} children for '{parent.data.label[:40]}'")
        return delta

    def _build_delta(self, parent: MindMapNode, graph: MindMapGraph, items: List[dict]) -> ExpansionDelta:
        taken = graph.node_ids()
        level = parent.data.level + 1
        count = len(items)

        new_nodes = []
        new_edges = []
        index = 0
        for slot, item in enumerate(items):
            child_id = f"{parent.id}-x{index}"
            while child_id in taken:
                index += 1
                child_id = f"{parent.id}-x{index}"
            taken.add(child_id)
            index += 1

            # One rank past the parent, centered on it.
            offset = (slot - (count - 1) / 2) * self.node_sep
            if self.direction == "LR":
                position = Position(x=parent.position.x + self.rank_sep, y=parent.position.y + offset)
            else:
                position = Position(x=parent.position.x + offset, y=parent.position.y + self.rank_sep)

            new_nodes.append(
                self.builder.make_node(child_id, item["label"], level, item["node_type"], position=position)
            )
            new_edges.append(self.builder.make_edge(parent.id, child_id, item["relationship"], level))

        return ExpansionDelta(new_nodes=new_nodes, new_edges=new_edges)


def apply_expansion(graph: MindMapGraph, delta: ExpansionDelta) -> MindMapGraph:
    """New graph holding ``graph`` plus ``delta``; neither input is modified."""
    combined = graph.model_copy(deep=True)
    combined.nodes.extend(node.model_copy(deep=True) for node in delta.new_nodes)
    combined.edges.extend(edge.model_copy(deep=True) for edge in delta.new_edges)
    return combined
