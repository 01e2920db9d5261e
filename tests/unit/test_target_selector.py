"""
Unit tests for TargetSelector: anti-hub scoring, hard filters, saturation
creation, diagnostics and diversity tracking.
"""

import pytest

from conftest import build_graph, link_many
from schemas import EntityDraft
from selection.target_selector import (
    AvoidanceBias,
    DiversityTracking,
    ExcludeRelatedTo,
    PreferenceBias,
    SaturationCreation,
    SelectionBias,
    SelectionTracker,
    TargetSelector,
)


# --- Helpers ---

def npc_ids(graph):
    return [e.id for e in graph.find_entities("npc")]


def draft_factory(calls=None):
    def factory(graph, context):
        if calls is not None:
            calls.append(context)
        return EntityDraft(kind=context.kind, subtype="newcomer")
    return factory


def saturated(threshold=100.0, max_created=None, factory=None):
    return SelectionBias(create_if_saturated=SaturationCreation(
        factory=factory or draft_factory(), threshold=threshold, max_created=max_created,
    ))


# --- Hub suppression ---

class TestHubSuppression:
    def test_low_degree_entity_ranks_above_hub(self, hub_graph):
        """npc link counts {2, 1, 4, 7}; the 7-link hub must come last."""
        ids = npc_ids(hub_graph)
        result = TargetSelector().select_targets(hub_graph, "npc", 4, {})

        ranked = [e.id for e in result.existing]
        assert len(ranked) == 4
        assert ranked.index(ids[1]) < ranked.index(ids[3])
        assert ranked[-1] == ids[3]

    def test_ties_keep_graph_order(self, hub_graph):
        ids = npc_ids(hub_graph)
        result = TargetSelector().select_targets(hub_graph, "npc", 3)
        assert [e.id for e in result.existing] == ids[:3]

    def test_score_strictly_decreases_past_five_links(self):
        graph = build_graph({"npc": 4, "location": 12})
        ids = npc_ids(graph)
        locations = [e.id for e in graph.find_entities("location")]
        for npc_id, n_links in zip(ids, [5, 6, 7, 9]):
            link_many(graph, npc_id, locations[:n_links], kind="visits")

        selector = TargetSelector()
        scores = [selector.score_candidate(graph, graph.get_entity(i), SelectionBias()) for i in ids]
        assert scores[0] == 1.0
        assert scores[0] > scores[1] > scores[2] > scores[3]
        assert scores[1] == pytest.approx(0.5)

    def test_avoidance_penalty_for_penalized_kinds(self):
        graph = build_graph({"npc": 2, "faction": 2})
        a, b = npc_ids(graph)
        factions = [e.id for e in graph.find_entities("faction")]
        link_many(graph, a, factions, kind="member_of")

        bias = SelectionBias(avoid=AvoidanceBias(relationship_kinds=["member_of"]))
        selector = TargetSelector()
        assert selector.score_candidate(graph, graph.get_entity(a), bias) == pytest.approx(1 / 3)
        assert selector.score_candidate(graph, graph.get_entity(b), bias) == 1.0

    def test_hub_penalty_strength_sharpens_penalty(self):
        graph = build_graph({"npc": 1, "faction": 2})
        [a] = npc_ids(graph)
        link_many(graph, a, [e.id for e in graph.find_entities("faction")], kind="member_of")

        selector = TargetSelector()
        entity = graph.get_entity(a)
        soft = selector.score_candidate(graph, entity, SelectionBias(
            avoid=AvoidanceBias(relationship_kinds=["member_of"], hub_penalty_strength=1.0)))
        sharp = selector.score_candidate(graph, entity, SelectionBias(
            avoid=AvoidanceBias(relationship_kinds=["member_of"], hub_penalty_strength=2.0)))
        assert sharp == pytest.approx(1 / 5)
        assert sharp < soft

    def test_negative_strength_clamped(self):
        assert AvoidanceBias(hub_penalty_strength=-3).hub_penalty_strength == 0.0


# --- Preferences ---

class TestPreferences:
    def test_each_matching_dimension_boosts(self):
        graph = build_graph({})
        star = graph.create_entity(EntityDraft(kind="npc", subtype="merchant", prominence="renowned",
                                               tags=["guild"]))
        plain = graph.create_entity(EntityDraft(kind="npc", subtype="guard"))

        bias = SelectionBias(prefer=PreferenceBias(
            subtypes=["merchant"], tags=["guild"], prominence=["Renowned"],
        ))
        selector = TargetSelector()
        assert selector.score_candidate(graph, star, bias) == pytest.approx(8.0)
        assert selector.score_candidate(graph, plain, bias) == 1.0

    def test_same_location_preference(self):
        graph = build_graph({"npc": 3, "location": 2})
        a, b, c = npc_ids(graph)
        home, away = [e.id for e in graph.find_entities("location")]
        graph.add_relationship("resident_of", a, home)
        graph.add_relationship("resident_of", b, home)
        graph.add_relationship("resident_of", c, away)

        bias = SelectionBias(prefer=PreferenceBias(same_location_as=a))
        result = TargetSelector().select_targets(graph, "npc", 3, bias)
        scores = {e.id: TargetSelector().score_candidate(graph, e, bias) for e in result.existing}
        assert scores[b] == 2.0
        assert scores[c] == 1.0
        assert [e.id for e in result.existing][-1] == c

    def test_unknown_reference_entity_gives_no_boost(self):
        graph = build_graph({"npc": 1})
        bias = SelectionBias(prefer=PreferenceBias(same_location_as="npc_999"))
        entity = graph.get_entities()[0]
        assert TargetSelector().score_candidate(graph, entity, bias) == 1.0


# --- Hard filters ---

class TestHardFilters:
    def test_max_total_relationships(self, hub_graph):
        bias = SelectionBias(avoid=AvoidanceBias(max_total_relationships=4))
        result = TargetSelector().select_targets(hub_graph, "npc", 4, bias)

        assert len(result.existing) == 2
        assert all(len(e.links) < 4 for e in result.existing)
        assert result.diagnostics.candidates_evaluated == 4

    def test_exclude_related_to(self):
        graph = build_graph({"npc": 3, "faction": 1})
        a, b, c = npc_ids(graph)
        [guild] = [e.id for e in graph.find_entities("faction")]
        graph.add_relationship("member_of", a, guild)
        graph.add_relationship("enemy_of", b, guild)

        any_kind = SelectionBias(avoid=AvoidanceBias(exclude_related_to=ExcludeRelatedTo(entity_id=guild)))
        only_members = SelectionBias(avoid=AvoidanceBias(
            exclude_related_to=ExcludeRelatedTo(entity_id=guild, relationship_kind="member_of")))

        selector = TargetSelector()
        assert [e.id for e in selector.select_targets(graph, "npc", 3, any_kind).existing] == [c]
        assert {e.id for e in selector.select_targets(graph, "npc", 3, only_members).existing} == {b, c}

    def test_camel_case_bias_dict(self, hub_graph):
        result = TargetSelector().select_targets(hub_graph, "npc", 4, {"avoid": {"maxTotalRelationships": 3}})
        assert all(len(e.links) < 3 for e in result.existing)


# --- Malformed bias input ---

class TestBiasInput:
    def test_bad_field_falls_back_to_default(self, hub_graph):
        bias = {"avoid": {"maxTotalRelationships": "many", "relationshipKinds": ["visits"]}}
        selector = TargetSelector()
        result = selector.select_targets(hub_graph, "npc", 4, bias)

        # No cap applied, but the valid sibling field still penalizes
        assert len(result.existing) == 4
        assert result.existing[0].id == npc_ids(hub_graph)[1]

    def test_missing_required_field_drops_section(self, hub_graph):
        selector = TargetSelector()
        result = selector.select_targets(hub_graph, "npc", 2, {"diversityTracking": {"strength": 2.0}})

        assert len(result.existing) == 2
        assert selector.tracker.tracking_ids() == []

    def test_snake_case_keys_repaired(self, hub_graph):
        bias = {"prefer": {"subtypes": "merchant", "preference_boost": 3.0}}
        result = TargetSelector().select_targets(hub_graph, "npc", 4, bias)
        assert len(result.existing) == 4

    def test_non_dict_bias_uses_defaults(self, hub_graph):
        result = TargetSelector().select_targets(hub_graph, "npc", 2, "prefer merchants")
        assert len(result.existing) == 2


# --- Saturation creation ---

class TestCreation:
    def test_threshold_zero_never_creates(self, hub_graph):
        calls = []
        result = TargetSelector().select_targets(hub_graph, "npc", 4, saturated(threshold=0.0,
                                                                               factory=draft_factory(calls)))
        assert calls == []
        assert result.created == []
        assert result.diagnostics.creation_triggered is False
        assert len(result.existing) == 4

    def test_unreachable_threshold_always_creates(self, hub_graph):
        result = TargetSelector().select_targets(hub_graph, "npc", 4, saturated(threshold=100.0))
        assert result.diagnostics.creation_triggered is True
        assert "threshold" in result.diagnostics.creation_reason
        assert len(result.created) == 2  # ceil(4 / 2)
        assert len(result.existing) == 2

    def test_max_created_bounds_result(self, hub_graph):
        result = TargetSelector().select_targets(hub_graph, "npc", 5, saturated(max_created=1))
        assert len(result.created) <= 1
        assert len(result.existing) + len(result.created) <= 5

    def test_no_candidates_without_factory(self, hub_graph):
        result = TargetSelector().select_targets(hub_graph, "dragon", 3)
        assert result.existing == []
        assert result.created == []
        diagnostics = result.diagnostics
        assert (diagnostics.best_score, diagnostics.worst_score, diagnostics.avg_score) == (0.0, 0.0, 0.0)
        assert diagnostics.candidates_evaluated == 0

    def test_no_candidates_with_factory(self, hub_graph):
        calls = []
        result = TargetSelector().select_targets(hub_graph, "dragon", 3,
                                                 saturated(threshold=0.0, factory=draft_factory(calls)))
        assert len(result.created) == 2
        assert result.diagnostics.creation_triggered is True
        assert "dragon" in result.diagnostics.creation_reason
        assert calls[0].requested_count == 3
        assert calls[0].best_candidate_score == 0.0

    def test_factory_context_sees_ranked_candidates(self, hub_graph):
        calls = []
        TargetSelector().select_targets(hub_graph, "npc", 2, saturated(factory=draft_factory(calls)))
        context = calls[0]
        assert context.kind == "npc"
        assert context.best_candidate_score == 1.0
        assert [c.score for c in context.candidates] == sorted(
            [c.score for c in context.candidates], reverse=True)

    def test_factory_output_normalised(self, hub_graph):
        outputs = iter([{"subtype": "scout", "tags": ["new"]}, None, EntityDraft(kind="npc", name="Ada")])
        bias = saturated(max_created=3, factory=lambda graph, context: next(outputs))
        result = TargetSelector().select_targets(hub_graph, "npc", 4, bias)

        assert len(result.created) == 2
        first, second = result.created
        assert first.kind == "npc"
        assert first.subtype == "scout"
        assert first.tags == {"new": True}
        assert second.name == "Ada"
        # The skipped slot is filled from existing candidates
        assert len(result.existing) == 2
        assert result.total == 4

    def test_empty_factory_slots_filled_from_existing(self):
        graph = build_graph({"npc": 6})
        bias = saturated(max_created=2, factory=lambda graph, context: None)
        result = TargetSelector().select_targets(graph, "npc", 4, bias)

        assert result.created == []
        assert len(result.existing) == 4
        assert result.diagnostics.creation_triggered is True


# --- Diagnostics ---

class TestDiagnostics:
    def test_worst_avg_best_ordering(self, hub_graph):
        diagnostics = TargetSelector().select_targets(hub_graph, "npc", 2).diagnostics
        assert diagnostics.worst_score <= diagnostics.avg_score <= diagnostics.best_score
        assert diagnostics.best_score == 1.0
        assert diagnostics.worst_score == pytest.approx(1 / (1 + 2 ** 0.5))
        assert diagnostics.candidates_evaluated == 4

    def test_empty_after_filters_is_zero(self, hub_graph):
        bias = SelectionBias(avoid=AvoidanceBias(max_total_relationships=0))
        diagnostics = TargetSelector().select_targets(hub_graph, "npc", 2, bias).diagnostics
        assert (diagnostics.best_score, diagnostics.worst_score, diagnostics.avg_score) == (0.0, 0.0, 0.0)


# --- Diversity tracking ---

class TestDiversityTracking:
    def test_repeat_selection_penalized(self):
        graph = build_graph({"npc": 3})
        a, b, c = npc_ids(graph)
        bias = SelectionBias(diversity_tracking=DiversityTracking(tracking_id="quests"))
        selector = TargetSelector()

        assert [e.id for e in selector.select_targets(graph, "npc", 1, bias).existing] == [a]
        assert [e.id for e in selector.select_targets(graph, "npc", 3, bias).existing] == [b, c, a]

    def test_reset_restores_original_order(self):
        graph = build_graph({"npc": 3})
        bias = SelectionBias(diversity_tracking=DiversityTracking(tracking_id="quests"))
        selector = TargetSelector()

        before = [e.id for e in selector.select_targets(graph, "npc", 3, bias).existing]
        selector.select_targets(graph, "npc", 1, bias)
        selector.reset_diversity_tracking("quests")
        after = [e.id for e in selector.select_targets(graph, "npc", 3, bias).existing]
        assert after == before

    def test_reset_one_id_keeps_others(self):
        tracker = SelectionTracker()
        tracker.track("quests", "npc_1")
        tracker.track("raids", "npc_1")
        selector = TargetSelector(tracker)

        selector.reset_diversity_tracking("quests")
        assert tracker.get_count("quests", "npc_1") == 0
        assert tracker.get_count("raids", "npc_1") == 1

        selector.reset_diversity_tracking()
        assert tracker.tracking_ids() == []

    def test_selectors_do_not_share_history(self):
        graph = build_graph({"npc": 2})
        a, _ = npc_ids(graph)
        bias = SelectionBias(diversity_tracking=DiversityTracking(tracking_id="quests"))
        first, second = TargetSelector(), TargetSelector()

        first.select_targets(graph, "npc", 1, bias)
        assert second.tracker.get_count("quests", a) == 0
        assert [e.id for e in second.select_targets(graph, "npc", 1, bias).existing] == [a]

    def test_creation_path_tracks_existing(self, hub_graph):
        ids = npc_ids(hub_graph)
        bias = saturated(max_created=1)
        bias.diversity_tracking = DiversityTracking(tracking_id="quests")
        selector = TargetSelector()

        result = selector.select_targets(hub_graph, "npc", 3, bias)
        assert len(result.existing) == 2
        for entity in result.existing:
            assert selector.tracker.get_count("quests", entity.id) == 1
        assert selector.tracker.get_count("quests", ids[3]) == 0
