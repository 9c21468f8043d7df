"""
Mindforge — Tree Synthesizer
============================
Turns one segment into a 3-level concept tree via the oracle.
Falls back to a single node carrying the segment's own text; never raises.
"""

import uuid
import logging
from typing import Any, Optional

from mindforge.ai_engine import TextOracle, ask_oracle, clean_and_parse_json
from mindforge.core.config import settings
from mindforge.core.errors import Ok
from mindforge.schemas.mindmap import DEFAULT_RELATIONSHIP, NODE_TYPES, HierarchicalNode

logger = logging.getLogger(__name__)

FALLBACK_RELATIONSHIP = "describes"
UNTITLED = "Untitled Concept"

TREE_PROMPT = (
    "You are a knowledge architect.\n"
    'Overall topic: "{topic}"\n\n'
    "From ONLY the TEXT SEGMENT below, build a concept tree exactly 3 levels deep:\n"
    "Root (the single most salient concept of the segment) → Concepts → Details.\n\n"
    "Output MUST be valid JSON matching this EXACT schema:\n"
    "{{\n"
    '  "label": "Root Concept",\n'
    '  "relationship": "is the focus of",\n'
    '  "nodeType": "concept",\n'
    '  "summary": "One sentence from the segment.",\n'
    '  "children": [\n'
    "    {{\n"
    '      "label": "Concept",\n'
    '      "relationship": "is part of",\n'
    '      "nodeType": "concept|detail|example|connection",\n'
    '      "children": [\n'
    '        {{"label": "Detail", "relationship": "is an example of", "nodeType": "example", "children": []}}\n'
    "      ]\n"
    "    }}\n"
    "  ]\n"
    "}}\n\n"
    "Constraints:\n"
    "- Every node has a 'relationship': a 1-4 word phrase linking it to its parent.\n"
    "- At most {max_children} children per node.\n"
    "- Max 6 words per label.\n"
    "- Labels must be in the SAME language as the segment.\n\n"
    "TEXT SEGMENT:\n{segment}"
)


def new_node_id() -> str:
    return f"n-{uuid.uuid4().hex[:12]}"


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def normalize_tree(raw: Any, max_levels: int = 3, max_children: int = 4) -> HierarchicalNode:
    """
    Coerce loosely-shaped oracle JSON into a HierarchicalNode.

    Nodes without a label are dropped, missing relationships default to
    "relates to", unknown node types become "concept", and anything at or
    below ``max_levels`` is discarded. Raises ValueError if no root label.
    """
    if isinstance(raw, dict) and isinstance(raw.get("root"), dict):
        raw = raw["root"]
    if not isinstance(raw, dict):
        raise ValueError("tree response is not a JSON object")

    def build(item: dict, level: int) -> Optional[HierarchicalNode]:
        label = _clean_str(item.get("label"))
        if not label:
            return None
        relationship = (
            _clean_str(item.get("relationship"))
            or _clean_str(item.get("relationshipToParent"))
            or DEFAULT_RELATIONSHIP
        )
        node_type = _clean_str(item.get("nodeType")).lower()
        if node_type not in NODE_TYPES:
            node_type = "concept"

        children = []
        raw_children = item.get("children")
        if level + 1 < max_levels and isinstance(raw_children, list):
            for child in raw_children:
                if not isinstance(child, dict):
                    continue
                built = build(child, level + 1)
                if built is not None:
                    children.append(built)
                if len(children) >= max_children:
                    break

        return HierarchicalNode(
            id=new_node_id(),
            label=label,
            relationship_to_parent=relationship,
            level=level,
            node_type=node_type,
            summary=_clean_str(item.get("summary")) or None,
            children=children,
        )

    root = build(raw, 0)
    if root is None:
        raise ValueError("tree response has a blank root label")
    return root


def fallback_tree(segment: str, label_chars: int = settings.FALLBACK_LABEL_CHARS) -> HierarchicalNode:
    """Single-node tree labeled with the segment's own (truncated) text."""
    text = (segment or "").strip()
    return HierarchicalNode(
        id=new_node_id(),
        label=text[:label_chars] or UNTITLED,
        relationship_to_parent=FALLBACK_RELATIONSHIP,
        level=0,
        node_type="concept",
        summary=text or None,
    )


class TreeSynthesizer:

    def __init__(
        self,
        oracle: TextOracle,
        max_levels: int = settings.TREE_LEVELS,
        max_children: int = settings.MAX_CHILDREN,
        fallback_label_chars: int = settings.FALLBACK_LABEL_CHARS,
    ):
        self.oracle = oracle
        self.max_levels = max_levels
        self.max_children = max_children
        self.fallback_label_chars = fallback_label_chars

    async def synthesize(self, segment: str, topic: str = "") -> HierarchicalNode:
        """Always returns a well-formed tree rooted at level 0."""
        if not segment or not segment.strip():
            return fallback_tree(segment, self.fallback_label_chars)

        prompt = TREE_PROMPT.format(
            topic=topic,
            segment=segment.strip(),
            max_children=self.max_children,
        )
        outcome = await ask_oracle(
            self.oracle,
            prompt,
            lambda raw: normalize_tree(clean_and_parse_json(raw), self.max_levels, self.max_children),
            tag="SYNTH",
        )
        if isinstance(outcome, Ok):
            tree = outcome.value
            logger.info(f"[SYNTH] ✓ '{tree.label[:40]}' with {tree.count()} nodes")
            return tree

        logger.warning(f"[SYNTH] Using single-node fallback ({outcome.reason})")
        return fallback_tree(segment, self.fallback_label_chars)
