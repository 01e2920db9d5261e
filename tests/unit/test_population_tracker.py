"""
Unit tests for PopulationTracker: per-subtype, relationship and pressure
feedback metrics with bounded trend history.
"""

import pytest

from conftest import build_graph
from distribution.population import (
    DEFAULT_PRESSURE_TARGETS,
    FALLBACK_PRESSURE_TARGET,
    PopulationTracker,
    calculate_trend,
    relative_deviation,
)
from distribution.targets import DistributionTargets
from schemas import DomainSchema, EntityDraft


# --- Helpers ---

def make_schema():
    return DomainSchema.model_validate({
        "entityKinds": [
            {"kind": "npc", "subtypes": ["merchant", "guard"]},
            {"kind": "location", "subtypes": ["colony"]},
        ]
    })


def make_targets():
    return DistributionTargets.model_validate({
        "populationTargets": {"npc": {"merchant": 10, "guard": 4}},
        "relationshipTargets": {"ally_of": 2},
        "pressureTargets": {"conflict": 20},
    })


# --- Helper functions ---

class TestHelpers:
    def test_relative_deviation(self):
        assert relative_deviation(15, 10) == pytest.approx(0.5)
        assert relative_deviation(5, 10) == pytest.approx(-0.5)
        assert relative_deviation(5, 0) == 0.0

    def test_trend_needs_two_samples(self):
        assert calculate_trend([]) == 0.0
        assert calculate_trend([4]) == 0.0

    def test_trend_is_mean_first_difference(self):
        assert calculate_trend([1, 3, 7]) == pytest.approx(3.0)
        assert calculate_trend([5, 5, 5]) == 0.0


# --- Seeding ---

class TestSeeding:
    def test_declared_subtypes_seeded_below_target(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        metrics = tracker.get_metrics()

        assert set(metrics.entities) == {"npc:merchant", "npc:guard", "location:colony"}
        merchant = metrics.entities["npc:merchant"]
        assert merchant.count == 0
        assert merchant.deviation == -1.0
        assert merchant.target == 10.0

    def test_no_schema_seeds_nothing(self):
        tracker = PopulationTracker(make_targets())
        assert tracker.get_metrics().entities == {}


# --- update ---

class TestUpdate:
    def test_entity_counts_and_deviation(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        graph = build_graph({"npc": 15}, subtype="merchant")

        metrics = tracker.update(graph)
        merchant = metrics.entities["npc:merchant"]
        assert merchant.count == 15
        assert merchant.deviation == pytest.approx(0.5)
        # Declared but absent subtype drops to its real deviation
        assert metrics.entities["npc:guard"].deviation == pytest.approx(-1.0)
        # No target configured
        assert metrics.entities["location:colony"].deviation == 0.0

    def test_undeclared_subtype_discovered(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        graph = build_graph({"faction": 2}, subtype="guild")

        metrics = tracker.update(graph)
        assert metrics.entities["faction:guild"].count == 2
        assert metrics.entities["faction:guild"].kind == "faction"
        assert metrics.entities["faction:guild"].subtype == "guild"

    def test_one_metric_per_key_per_update(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        graph = build_graph({"npc": 3}, subtype="merchant")
        tracker.update(graph)
        tracker.update(graph)

        assert len(tracker.get_metrics().entities["npc:merchant"].history) == 2

    def test_history_bounded_and_trend(self):
        tracker = PopulationTracker(make_targets(), make_schema(), history_window=3)
        graph = build_graph({})
        for _ in range(5):
            graph.create_entity(EntityDraft(kind="npc", subtype="merchant"))
            tracker.update(graph)

        merchant = tracker.get_metrics().entities["npc:merchant"]
        assert list(merchant.history) == [3, 4, 5]
        assert merchant.history.maxlen == 3
        assert merchant.trend == pytest.approx(1.0)

    def test_relationship_metrics_drop_to_zero(self):
        tracker = PopulationTracker(make_targets())
        graph = build_graph({"npc": 3})
        a, b, c = [e.id for e in graph.get_entities()]
        rel = graph.add_relationship("ally_of", a, b)
        graph.add_relationship("ally_of", b, c)

        metrics = tracker.update(graph)
        assert metrics.relationships["ally_of"].count == 2
        assert metrics.relationships["ally_of"].deviation == 0.0

        graph.archive_relationship(rel)
        graph.retire_entity(c)
        metrics = tracker.update(graph)
        assert metrics.relationships["ally_of"].count == 0
        assert metrics.relationships["ally_of"].deviation == pytest.approx(-1.0)

    def test_pressure_targets(self):
        tracker = PopulationTracker(make_targets())
        graph = build_graph({})
        graph.set_pressure("conflict", 30)
        graph.set_pressure("stability", 60)
        graph.set_pressure("omens", 25)

        metrics = tracker.update(graph)
        assert metrics.pressures["conflict"].deviation == pytest.approx(0.5)
        assert metrics.pressures["stability"].target == DEFAULT_PRESSURE_TARGETS["stability"]
        assert metrics.pressures["stability"].deviation == 0.0
        assert metrics.pressures["omens"].target == FALLBACK_PRESSURE_TARGET


# --- Outliers, summary, reset ---

class TestReporting:
    def test_outliers(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        graph = build_graph({"npc": 20}, subtype="merchant")
        tracker.update(graph)

        outliers = tracker.get_outliers(threshold=0.3)
        assert [m.key for m in outliers.overpopulated] == ["npc:merchant"]
        assert [m.key for m in outliers.underpopulated] == ["npc:guard"]

    def test_summary(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        graph = build_graph({"npc": 20}, subtype="merchant")
        graph.set_pressure("conflict", 10)
        tracker.update(graph)

        summary = tracker.get_summary()
        assert summary.total_entities == 20
        assert summary.max_entity_deviation == pytest.approx(1.0)
        assert summary.avg_entity_deviation == pytest.approx(1.0)
        assert summary.pressure_deviations == {"conflict": -0.5}

    def test_empty_summary(self):
        summary = PopulationTracker(DistributionTargets()).get_summary()
        assert summary.total_entities == 0
        assert summary.avg_entity_deviation == 0.0

    def test_reset_reseeds(self):
        tracker = PopulationTracker(make_targets(), make_schema())
        tracker.update(build_graph({"faction": 1}, subtype="guild"))
        tracker.reset()

        metrics = tracker.get_metrics()
        assert "faction:guild" not in metrics.entities
        assert metrics.entities["npc:merchant"].deviation == -1.0
