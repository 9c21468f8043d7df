"""
Tests for GraphBuilder: flattening, truncation, node budget and the
consistency pass.
"""

import pytest

from conftest import make_tree
from mindforge.schemas.mindmap import HierarchicalNode, MindMapGraph
from mindforge.services.graph_builder import GraphBuilder, truncate


def assert_consistent(graph: MindMapGraph):
    """Exactly one root, every other node has one parent, no dangling edges."""
    ids = graph.node_ids()
    assert len(ids) == len(graph.nodes)
    assert len([n for n in graph.nodes if n.data.level == 0]) == 1
    targets = [e.target for e in graph.edges]
    assert len(targets) == len(set(targets)) == len(graph.nodes) - 1
    for edge in graph.edges:
        assert edge.source in ids
        assert edge.target in ids


class TestBuild:

    def test_flattens_whole_tree(self):
        graph = GraphBuilder().build(make_tree(depth=2, fanout=3), max_depth=4)

        assert len(graph.nodes) == 13
        assert len(graph.edges) == 12
        assert graph.nodes[0].id == "n"
        assert_consistent(graph)

    def test_edge_shape(self):
        graph = GraphBuilder(animated_max_level=2).build(make_tree(depth=3, fanout=1), max_depth=4)
        by_target = {e.target: e for e in graph.edges}

        edge = by_target["n.0"]
        assert edge.id == "edge-n-n.0"
        assert edge.source == "n"
        assert edge.label == "is part of"
        assert edge.animated is True
        assert by_target["n.0.0.0"].animated is False

    def test_max_depth_prunes_deeper_levels(self):
        graph = GraphBuilder().build(make_tree(depth=4, fanout=2), max_depth=2)

        assert max(n.data.level for n in graph.nodes) == 2
        assert len(graph.nodes) == 7
        assert_consistent(graph)

    def test_max_depth_zero_keeps_root_only(self):
        graph = GraphBuilder().build(make_tree(depth=2, fanout=2), max_depth=0)
        assert [n.id for n in graph.nodes] == ["n"]
        assert graph.edges == []

    def test_labels_are_truncated(self):
        tree = HierarchicalNode(
            id="r",
            label="R" * 500,
            children=[HierarchicalNode(id="c", label="child", relationship_to_parent="x " * 200, level=1)],
        )
        graph = GraphBuilder(label_chars=70, relationship_chars=50).build(tree)

        assert len(graph.nodes[0].data.label) <= 70
        assert graph.nodes[0].data.label.endswith("...")
        assert len(graph.edges[0].label) <= 50

    def test_duplicate_ids_are_made_unique(self):
        tree = HierarchicalNode(id="a", label="Root", children=[HierarchicalNode(id="a", label="Twin", level=1)])
        graph = GraphBuilder().build(tree)

        assert [n.id for n in graph.nodes] == ["a", "a~1"]
        assert graph.edges[0].target == "a~1"

    def test_suffixed_ids_skip_existing_ids(self):
        """A suffix that is already taken by another node is never reused."""
        tree = HierarchicalNode(id="r", label="Root", children=[
            HierarchicalNode(id="a~1", label="First", level=1),
            HierarchicalNode(id="a", label="Second", level=1),
            HierarchicalNode(id="a", label="Third", level=1),
        ])
        graph = GraphBuilder().build(tree)

        ids = [n.id for n in graph.nodes]
        assert ids == ["r", "a~1", "a", "a~2"]
        assert_consistent(graph)

    def test_level_styles_differ(self):
        graph = GraphBuilder().build(make_tree(depth=1, fanout=1))
        assert graph.nodes[0].style["borderColor"] != graph.nodes[1].style["borderColor"]


class TestNodeBudget:

    def test_budget_removes_deepest_leaves_first(self):
        """A 259-node tree is cut to 150 by dropping level-3 nodes only."""
        graph = GraphBuilder(max_nodes=150).build(make_tree(depth=3, fanout=6), max_depth=4)

        assert len(graph.nodes) == 150
        assert graph.get_node("n") is not None
        levels = [n.data.level for n in graph.nodes]
        assert levels.count(1) == 6
        assert levels.count(2) == 36
        assert levels.count(3) == 107
        assert_consistent(graph)

    def test_budget_of_one_keeps_root(self):
        graph = GraphBuilder(max_nodes=1).build(make_tree(depth=2, fanout=2))
        assert [n.id for n in graph.nodes] == ["n"]
        assert graph.edges == []


class TestConsistency:

    def test_drops_dangling_edges_and_orphans(self):
        builder = GraphBuilder()
        graph = MindMapGraph(
            nodes=[
                builder.make_node("root", "Root", 0),
                builder.make_node("a", "A", 1),
                builder.make_node("orphan", "Orphan", 1),
            ],
            edges=[
                builder.make_edge("root", "a", "has", 1),
                builder.make_edge("a", "ghost", "has", 2),
            ],
        )
        fixed = builder.ensure_consistency(graph)

        assert fixed.node_ids() == {"root", "a"}
        assert [e.id for e in fixed.edges] == ["edge-root-a"]

    @pytest.mark.parametrize("topic, label", [("Biology", "Biology"), ("", "Mind Map"), ("   ", "Mind Map")])
    def test_fallback_graph(self, topic, label):
        graph = GraphBuilder().fallback_graph(topic)
        assert len(graph.nodes) == 1
        assert graph.nodes[0].id == "root"
        assert graph.nodes[0].data.label == label
        assert graph.edges == []


class TestTruncate:

    @pytest.mark.parametrize("text, cap, expected", [
        ("short", 10, "short"),
        ("exactly ten", 11, "exactly ten"),
        ("a much longer label here", 10, "a much..."),
        ("  spaced\n\tout  ", 20, "spaced out"),
        (None, 5, ""),
    ])
    def test_truncate(self, text, cap, expected):
        assert truncate(text, cap) == expected
