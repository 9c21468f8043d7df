"""
Mindforge — Tree Merger
=======================
Folds the per-segment trees into one master tree.

The first tree seeds the master (its root relabeled with the topic). Every
later tree is grafted, in order, under the anchor the oracle names by path;
any failure or unresolvable path grafts at the root instead, so merging
never fails. Each step sees the master tree left by the previous one.
"""

import re
import json
import logging
from typing import Any, Dict, List, Optional

from mindforge.ai_engine import TextOracle, ask_oracle, clean_and_parse_json
from mindforge.core.config import settings
from mindforge.core.errors import MergeAnchorUnresolved, Ok
from mindforge.schemas.mindmap import ROOT_RELATIONSHIP, HierarchicalNode

logger = logging.getLogger(__name__)

ROOT_PATH = "root"
DEFAULT_TOPIC = "Mind Map"

PATH_PATTERN = re.compile(r"root(?:\.children\[\d+\])*")
PATH_STEP = re.compile(r"children\[(\d+)\]")

ANCHOR_PROMPT = (
    "You are merging concept trees into one mind map.\n"
    'Overall topic: "{topic}"\n\n'
    "MASTER TREE (every node lists its path):\n{master}\n\n"
    "NEW TREE:\n{candidate}\n\n"
    "Pick the node of the MASTER TREE under which the NEW TREE fits best semantically.\n"
    'Answer with its path exactly as listed, or "root" if nothing fits better than the central topic.\n\n'
    "Output MUST be valid JSON matching this EXACT schema:\n"
    '{{"anchorPath": "root.children[0]"}}'
)


# ── Tree helpers ─────────────────────────────────────────────────────────────

def clone_tree(node: HierarchicalNode) -> HierarchicalNode:
    return node.model_copy(deep=True)


def relevel(node: HierarchicalNode, level: int) -> None:
    """Rewrite ``level`` on the whole subtree so it starts at ``level``."""
    stack = [(node, level)]
    while stack:
        current, depth = stack.pop()
        current.level = depth
        stack.extend((child, depth + 1) for child in current.children)


def snapshot_tree(
    node: HierarchicalNode,
    max_depth: int,
    path: Optional[str] = ROOT_PATH,
    depth: int = 0,
) -> Dict[str, Any]:
    """Prompt-sized view of a tree: labels only, cut off below ``max_depth``."""
    entry: Dict[str, Any] = {"label": node.label}
    if path is not None:
        entry["path"] = path
    if depth < max_depth and node.children:
        entry["children"] = [
            snapshot_tree(
                child,
                max_depth,
                f"{path}.children[{i}]" if path is not None else None,
                depth + 1,
            )
            for i, child in enumerate(node.children)
        ]
    return entry


def get_node_by_path(tree: HierarchicalNode, path: str) -> Optional[HierarchicalNode]:
    """Resolve ``root.children[i].children[j]…``; None when it does not resolve."""
    path = (path or "").strip()
    if path == ROOT_PATH:
        return tree
    if not path.startswith(ROOT_PATH + "."):
        return None

    current = tree
    for part in path[len(ROOT_PATH) + 1:].split("."):
        match = PATH_STEP.fullmatch(part)
        if not match:
            return None
        index = int(match.group(1))
        if index >= len(current.children):
            return None
        current = current.children[index]
    return current


def resolve_anchor(tree: HierarchicalNode, path: str) -> HierarchicalNode:
    node = get_node_by_path(tree, path)
    if node is None:
        raise MergeAnchorUnresolved(path)
    return node


def parse_anchor_path(raw: str) -> str:
    """Pull a path out of ``{"anchorPath": ...}``, a JSON string, or plain text."""
    try:
        parsed = clean_and_parse_json(raw)
    except (ValueError, RecursionError):
        parsed = raw

    if isinstance(parsed, dict):
        parsed = parsed.get("anchorPath") or parsed.get("anchor_path") or parsed.get("path")
    elif not isinstance(parsed, str):
        # Prose that merely contains brackets, e.g. "under root.children[1]".
        parsed = raw
    if not isinstance(parsed, str):
        raise ValueError("anchor response carries no path")

    match = PATH_PATTERN.search(parsed.strip())
    if not match:
        raise ValueError(f"anchor path is malformed: {parsed[:80]!r}")
    return match.group(0)


def topic_root(topic: str) -> HierarchicalNode:
    return HierarchicalNode(
        id="root",
        label=(topic or "").strip() or DEFAULT_TOPIC,
        relationship_to_parent=ROOT_RELATIONSHIP,
        level=0,
        node_type="concept",
    )


# ── Merger ───────────────────────────────────────────────────────────────────

class TreeMerger:

    def __init__(
        self,
        oracle: TextOracle,
        master_snapshot_depth: int = settings.MASTER_SNAPSHOT_DEPTH,
        candidate_snapshot_depth: int = settings.CANDIDATE_SNAPSHOT_DEPTH,
        root_fanout_warning: int = settings.ROOT_FANOUT_WARNING,
    ):
        self.oracle = oracle
        self.master_snapshot_depth = master_snapshot_depth
        self.candidate_snapshot_depth = candidate_snapshot_depth
        self.root_fanout_warning = root_fanout_warning

    async def merge(self, trees: List[HierarchicalNode], topic: str = "") -> HierarchicalNode:
        """Sequential fold; the caller's trees are never mutated."""
        if not trees:
            return topic_root(topic)

        master = self.seed(trees[0], topic)
        for index, candidate in enumerate(trees[1:], start=2):
            master = await self.graft(master, candidate, topic, index)

        logger.info(
            f"[MERGE] ✓ Master tree: {master.count()} nodes, "
            f"{len(master.children)} root branches from {len(trees)} trees"
        )
        return master

    def seed(self, first: HierarchicalNode, topic: str) -> HierarchicalNode:
        master = clone_tree(first)
        if topic and topic.strip():
            master.label = topic.strip()
        master.relationship_to_parent = ROOT_RELATIONSHIP
        relevel(master, 0)
        return master

    async def graft(
        self,
        master: HierarchicalNode,
        candidate: HierarchicalNode,
        topic: str,
        index: int = 0,
    ) -> HierarchicalNode:
        """Attach a clone of ``candidate`` under the chosen anchor and return the master."""
        prompt = ANCHOR_PROMPT.format(
            topic=topic,
            master=json.dumps(snapshot_tree(master, self.master_snapshot_depth), ensure_ascii=False),
            candidate=json.dumps(
                snapshot_tree(candidate, self.candidate_snapshot_depth, path=None),
                ensure_ascii=False,
            ),
        )
        outcome = await ask_oracle(self.oracle, prompt, parse_anchor_path, tag="MERGE")

        anchor = master
        if isinstance(outcome, Ok):
            try:
                anchor = resolve_anchor(master, outcome.value)
            except MergeAnchorUnresolved as e:
                logger.warning(f"[MERGE] Tree #{index}: {e}; attaching at root")
        else:
            logger.warning(f"[MERGE] Tree #{index}: anchor search failed ({outcome.reason}); attaching at root")

        subtree = clone_tree(candidate)
        anchor.children.append(subtree)
        relevel(subtree, anchor.level + 1)
        logger.info(f"[MERGE] Tree #{index} '{subtree.label[:40]}' grafted under '{anchor.label[:40]}'")

        if anchor is master and len(master.children) > self.root_fanout_warning:
            logger.warning(f"[MERGE] Root fan-out is {len(master.children)} branches")
        return master
