"""
Pytest Configuration
====================

Shared fakes: a scripted text oracle and a controllable clock.
"""

import json

import pytest

from mindforge.core.config import Settings
from mindforge.core.errors import OracleUnavailable
from mindforge.schemas.mindmap import HierarchicalNode


class FakeOracle:
    """
    Replies are chosen by the first rule whose marker occurs in the prompt.
    A reply may be a string, an exception (raised), a callable taking the
    prompt, or a list consumed one item per call (the last item repeats).
    With no matching rule the oracle behaves as unavailable.
    """

    SEGMENT = "thematically self-contained segments"
    TREE = "TEXT SEGMENT"
    ANCHOR = "MASTER TREE"
    EXPAND = "sub-concepts for the mind map node"

    def __init__(self, rules=None):
        self.rules = list(rules or [])
        self.prompts = []

    def when(self, marker, reply):
        self.rules.append((marker, reply))
        return self

    def calls(self, marker):
        return [p for p in self.prompts if marker in p]

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        for marker, reply in self.rules:
            if marker in prompt:
                if isinstance(reply, list):
                    reply = reply.pop(0) if len(reply) > 1 else reply[0]
                if isinstance(reply, Exception):
                    raise reply
                if callable(reply):
                    return reply(prompt)
                return reply
        raise OracleUnavailable("no oracle configured")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def tree_json(label="Photosynthesis", concepts=("Light Reactions", "Calvin Cycle"), details=("Chlorophyll",)):
    """A well-formed 3-level tree as the oracle would return it."""
    return json.dumps({
        "label": label,
        "relationship": "is the focus of",
        "nodeType": "concept",
        "children": [
            {
                "label": concept,
                "relationship": "is a stage of",
                "nodeType": "concept",
                "children": [
                    {"label": detail, "relationship": "is used in", "nodeType": "detail", "children": []}
                    for detail in details
                ],
            }
            for concept in concepts
        ],
    })


def make_tree(depth: int, fanout: int, prefix: str = "n", level: int = 0) -> HierarchicalNode:
    """Full tree with ``fanout`` children per node down to ``depth`` levels below the root."""
    children = []
    if level < depth:
        children = [make_tree(depth, fanout, f"{prefix}.{i}", level + 1) for i in range(fanout)]
    return HierarchicalNode(
        id=prefix,
        label=f"Concept {prefix}",
        relationship_to_parent="is part of",
        level=level,
        children=children,
    )


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        GROQ_API_KEY=None,
        GOOGLE_API_KEY=None,
        CACHE_TTL_SECONDS=3600.0,
    )
