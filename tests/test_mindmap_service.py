"""
End-to-end tests for MindMapService with a scripted oracle.
"""

import json

import pytest

from conftest import FakeOracle, tree_json
from mindforge.core.config import Settings
from mindforge.services.cache import MindMapCache
from mindforge.services.mindmap_service import MindMapService

CONTENT = (
    "Photosynthesis happens in chloroplasts and turns light into chemical energy. "
    "Cellular respiration releases that energy in the mitochondria of every cell."
)


def happy_oracle():
    return (
        FakeOracle()
        .when(FakeOracle.SEGMENT, json.dumps({"segments": [
            "Photosynthesis happens in chloroplasts.",
            "Cellular respiration releases energy.",
        ]}))
        .when(FakeOracle.TREE, tree_json())
        .when(FakeOracle.ANCHOR, json.dumps({"anchorPath": "root"}))
    )


def assert_well_formed(graph):
    ids = graph.node_ids()
    assert len(ids) == len(graph.nodes) >= 1
    assert len([n for n in graph.nodes if n.data.level == 0]) == 1
    for edge in graph.edges:
        assert edge.source in ids and edge.target in ids


class TestGenerateMindMap:

    @pytest.mark.asyncio
    async def test_full_pipeline(self, test_settings):
        oracle = happy_oracle()
        service = MindMapService(oracle=oracle, config=test_settings)

        graph = await service.generate_mind_map(CONTENT, "Biology")

        assert_well_formed(graph)
        root = graph.root()
        assert root.data.label == "Biology"
        assert len(graph.nodes) == 10
        assert len(graph.edges) == 9
        assert len([e for e in graph.edges if e.source == root.id]) == 3
        assert len(oracle.calls(FakeOracle.TREE)) == 2
        assert len(oracle.calls(FakeOracle.ANCHOR)) == 1

    @pytest.mark.asyncio
    async def test_nodes_are_laid_out(self, test_settings):
        service = MindMapService(oracle=happy_oracle(), config=test_settings)
        graph = await service.generate_mind_map(CONTENT, "Biology")

        positions = {(n.position.x, n.position.y) for n in graph.nodes}
        assert len(positions) == len(graph.nodes)

    @pytest.mark.asyncio
    async def test_max_depth_is_honored(self, test_settings):
        service = MindMapService(oracle=happy_oracle(), config=test_settings)
        graph = await service.generate_mind_map(CONTENT, "Biology", max_depth=2)

        assert max(n.data.level for n in graph.nodes) == 2
        assert len(graph.nodes) == 8

    @pytest.mark.asyncio
    async def test_node_budget_is_honored(self):
        config = Settings(_env_file=None, MAX_NODES=5)
        service = MindMapService(oracle=happy_oracle(), config=config)
        graph = await service.generate_mind_map(CONTENT, "Biology")

        assert len(graph.nodes) == 5
        assert_well_formed(graph)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   "])
    async def test_empty_content_gives_topic_node(self, oracle, test_settings, content):
        service = MindMapService(oracle=oracle, config=test_settings)
        graph = await service.generate_mind_map(content, "Topic")

        assert len(graph.nodes) == 1
        assert graph.nodes[0].data.label == "Topic"
        assert graph.edges == []
        assert oracle.prompts == []

    @pytest.mark.asyncio
    async def test_unparseable_segment_keeps_the_others(self, test_settings):
        """A pathological reply for one segment degrades that segment only."""
        def tree_reply(prompt):
            return "[" * 200000 if "chloroplasts" in prompt else tree_json()

        oracle = happy_oracle()
        oracle.rules[1] = (FakeOracle.TREE, tree_reply)
        service = MindMapService(oracle=oracle, config=test_settings)

        graph = await service.generate_mind_map(CONTENT, "Biology")

        assert_well_formed(graph)
        assert graph.root().data.label == "Biology"
        assert len(graph.nodes) == 6
        assert "Photosynthesis" in {n.data.label for n in graph.nodes}

    @pytest.mark.asyncio
    async def test_total_oracle_failure_still_yields_a_map(self, oracle, test_settings):
        """Every oracle call fails; the map degrades but is well-formed and repeatable."""
        service = MindMapService(oracle=oracle, config=test_settings)

        first = await service.generate_mind_map(CONTENT, "Energy")
        second = await service.generate_mind_map(CONTENT, "Energy")

        assert_well_formed(first)
        assert first.root().data.label == "Energy"
        assert [n.data.label for n in first.nodes] == [n.data.label for n in second.nodes]
        assert len(first.edges) == len(second.edges)

    @pytest.mark.asyncio
    async def test_labels_respect_display_caps(self, test_settings):
        long_label = "Extraordinarily " * 20
        oracle = happy_oracle()
        oracle.rules[1] = (FakeOracle.TREE, tree_json(label=long_label, concepts=(long_label,)))
        service = MindMapService(oracle=oracle, config=test_settings)

        graph = await service.generate_mind_map(CONTENT, "Biology")

        assert all(len(n.data.label) <= test_settings.NODE_LABEL_CHARS for n in graph.nodes)
        assert all(len(e.label) <= test_settings.EDGE_LABEL_CHARS for e in graph.edges)


class TestCaching:

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, test_settings):
        oracle = happy_oracle()
        service = MindMapService(oracle=oracle, config=test_settings, cache=MindMapCache())

        first, cached_first = await service.generate_mind_map_with_meta(CONTENT, "Biology", session_id="s1")
        calls = len(oracle.prompts)
        second, cached_second = await service.generate_mind_map_with_meta(CONTENT, "Biology", session_id="s1")

        assert (cached_first, cached_second) == (False, True)
        assert second == first
        assert len(oracle.prompts) == calls

    @pytest.mark.asyncio
    async def test_changed_content_regenerates(self, test_settings):
        oracle = happy_oracle()
        service = MindMapService(oracle=oracle, config=test_settings, cache=MindMapCache())

        await service.generate_mind_map(CONTENT, "Biology", session_id="s1")
        _, cached = await service.generate_mind_map_with_meta(CONTENT + " More.", "Biology", session_id="s1")

        assert cached is False

    @pytest.mark.asyncio
    async def test_no_session_no_cache(self, test_settings):
        service = MindMapService(oracle=happy_oracle(), config=test_settings, cache=MindMapCache())
        await service.generate_mind_map(CONTENT, "Biology")
        assert len(service.cache) == 0


class TestStream:

    @pytest.mark.asyncio
    async def test_stream_ends_with_result(self, test_settings):
        service = MindMapService(oracle=happy_oracle(), config=test_settings)
        events = [json.loads(e) async for e in service.generate_mind_map_stream(CONTENT, "Biology")]

        assert events[0]["type"] == "status"
        progress = [e["progress"] for e in events if e["type"] == "status"]
        assert progress == sorted(progress)
        assert progress[-1] == 100
        result = events[-1]
        assert result["type"] == "result"
        assert result["cached"] is False
        assert len(result["data"]["nodes"]) == 10
        assert "nodeType" in result["data"]["nodes"][0]["data"]


class TestExpansionAndSimpleMaps:

    @pytest.mark.asyncio
    async def test_expand_node(self, test_settings):
        oracle = happy_oracle().when(FakeOracle.EXPAND, json.dumps({"children": [{"label": "Stomata"}, {"label": "Xylem"}]}))
        service = MindMapService(oracle=oracle, config=test_settings)
        graph = await service.generate_mind_map(CONTENT, "Biology")
        root_id = graph.root().id

        delta = await service.expand_node(root_id, graph, "Biology")

        assert [n.data.label for n in delta.new_nodes] == ["Stomata", "Xylem"]
        assert all(e.source == root_id for e in delta.new_edges)

    @pytest.mark.asyncio
    async def test_expand_failure_is_empty(self, oracle, test_settings):
        service = MindMapService(oracle=oracle, config=test_settings)
        graph = service.fallback_mind_map("Topic")
        assert (await service.expand_node("root", graph)).is_empty()

    def test_simple_mind_map(self, oracle, test_settings):
        service = MindMapService(oracle=oracle, config=test_settings)
        graph = service.build_simple_mind_map("Biology", [f"Idea {i}" for i in range(9)] + ["  "])

        assert graph.root().data.label == "Biology"
        assert len(graph.nodes) == 7
        assert [e.target for e in graph.edges] == [f"concept-{i}" for i in range(1, 7)]
        assert oracle.prompts == []
