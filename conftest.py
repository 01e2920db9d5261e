"""
conftest.py - Shared pytest configuration and fixtures

Provides:
- Marker registration
- World graph builders (entities by kind, relationships, hubs)
- Distribution targets and seeded random sources
- Growth template fixtures with production profiles
"""
from typing import Dict, List, Optional

import numpy as np
import pytest


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated, no external dependencies)")


def pytest_collection_modifyitems(config, items):
    """Everything under tests/unit is a unit test"""
    for item in items:
        if "tests/unit" in str(item.fspath).replace("\\", "/"):
            item.add_marker(pytest.mark.unit)


# ============================================================================
# Graph Builders
# ============================================================================

def build_graph(kind_counts: Dict[str, int], tick: int = 0, era: Optional[str] = None, **entity_fields):
    """WorldGraph holding kind_counts[kind] fresh entities of each kind"""
    from world import WorldGraph
    from schemas import EntityDraft

    graph = WorldGraph(tick=tick, current_era=era)
    for kind, count in kind_counts.items():
        for _ in range(count):
            graph.create_entity(EntityDraft(kind=kind, **entity_fields))
    return graph


def link_many(graph, entity_id: str, partners: List[str], kind: str = "ally_of"):
    for partner in partners:
        graph.add_relationship(kind, entity_id, partner)


@pytest.fixture
def empty_graph():
    from world import WorldGraph
    return WorldGraph()


@pytest.fixture
def hub_graph():
    """
    Four npcs with 2, 1, 4 and 7 links respectively.

    Links point at location entities so npc link counts are exact.
    """
    graph = build_graph({"npc": 4, "location": 7})
    npcs = [e.id for e in graph.find_entities("npc")]
    locations = [e.id for e in graph.find_entities("location")]
    for npc_id, n_links in zip(npcs, [2, 1, 4, 7]):
        link_many(graph, npc_id, locations[:n_links], kind="visits")
    return graph


# ============================================================================
# Targets and Randomness
# ============================================================================

@pytest.fixture
def default_targets():
    from distribution.targets import DistributionTargets
    return DistributionTargets.default()


@pytest.fixture
def seeded_rng():
    return np.random.default_rng(1234)


@pytest.fixture
def kind_templates():
    """One template per kind, each producing only that kind"""
    from selection.template_selector import GrowthTemplate
    from selection.profiles import EntityKindEffect, TemplateMetadata

    return [
        GrowthTemplate(
            id=f"spawn_{kind}",
            metadata=TemplateMetadata(produces=[EntityKindEffect(kind=kind)]),
        )
        for kind in ["npc", "location", "faction"]
    ]
