"""
Distribution tracking: measure a world graph's statistical shape and score
its deviation from the configured targets.

Two steps per measurement:

1. ``measure_state`` counts entities by kind, subtype and prominence,
   relationships by kind and category, and computes connectivity metrics.
2. ``calculate_deviation`` merges the active era's overrides over the global
   targets and reduces the gaps to one score per dimension plus a
   correction-strength weighted overall score.

Neither step raises on an empty graph; both return well-formed zero values.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional

from distribution.targets import DistributionTargets, GlobalTargets
from graph import (
    ConnectivityMetrics,
    DegreeStats,
    compute_connectivity_metrics,
    compute_degree_stats,
    relationship_diversity,
)
from schemas import PROMINENCE_ORDER

logger = logging.getLogger(__name__)

PROMINENCE_LABELS = [p.value for p in PROMINENCE_ORDER]


def _ratios(counts: Dict[str, int], total: int) -> Dict[str, float]:
    if total <= 0:
        return {key: 0.0 for key in counts}
    return {key: count / total for key, count in counts.items()}


@dataclass
class DistributionState:
    """Measured statistical state of the world at one tick"""
    tick: int = 0
    total_entities: int = 0
    total_relationships: int = 0
    entity_kind_counts: Dict[str, int] = field(default_factory=dict)
    entity_kind_ratios: Dict[str, float] = field(default_factory=dict)
    entity_subtype_counts: Dict[str, int] = field(default_factory=dict)
    prominence_counts: Dict[str, int] = field(default_factory=lambda: {p: 0 for p in PROMINENCE_LABELS})
    prominence_ratios: Dict[str, float] = field(default_factory=lambda: {p: 0.0 for p in PROMINENCE_LABELS})
    prominence_by_kind: Dict[str, Dict[str, float]] = field(default_factory=dict)
    relationship_type_counts: Dict[str, int] = field(default_factory=dict)
    relationship_type_ratios: Dict[str, float] = field(default_factory=dict)
    relationship_category_counts: Dict[str, int] = field(default_factory=dict)
    relationship_category_ratios: Dict[str, float] = field(default_factory=dict)
    relationship_diversity: float = 0.0
    graph_metrics: ConnectivityMetrics = field(default_factory=ConnectivityMetrics)
    degree_stats: DegreeStats = field(default_factory=DegreeStats)

    @classmethod
    def zero(cls, tick: int = 0) -> "DistributionState":
        """Empty-world state: all counts, ratios and metrics zero"""
        return cls(tick=tick)

    @property
    def max_type_ratio(self) -> float:
        return max(self.relationship_type_ratios.values(), default=0.0)

    @property
    def types_present(self) -> int:
        return len(self.relationship_type_counts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DimensionDeviation:
    """Score for one dimension plus per-key absolute gaps"""
    score: float = 0.0
    deviations: Dict[str, float] = field(default_factory=dict)


@dataclass
class RelationshipDeviation:
    score: float = 0.0
    max_type_ratio: float = 0.0
    types_present: int = 0
    underrepresented_types: Dict[str, float] = field(default_factory=dict)
    category_balance: float = 0.0


@dataclass
class ConnectivityDeviation:
    score: float = 0.0
    cluster_count: int = 0
    cluster_deviation: float = 0.0
    density_balance: float = 0.0
    isolated_nodes: int = 0
    isolated_excess: float = 0.0


@dataclass
class TotalEntitiesDeviation:
    actual: int = 0
    target: int = 0
    deviation: float = 0.0
    within_tolerance: bool = True


@dataclass
class DeviationScore:
    """How far a measured state sits from the effective targets"""
    overall: float = 0.0
    entity_kind: DimensionDeviation = field(default_factory=DimensionDeviation)
    prominence: DimensionDeviation = field(default_factory=DimensionDeviation)
    relationship: RelationshipDeviation = field(default_factory=RelationshipDeviation)
    connectivity: ConnectivityDeviation = field(default_factory=ConnectivityDeviation)
    total_entities: TotalEntitiesDeviation = field(default_factory=TotalEntitiesDeviation)
    era: Optional[str] = None

    def is_converged(self, threshold: float) -> bool:
        return self.overall < threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DistributionTracker:
    """
    Tracks distribution metrics and calculates deviations from targets.

    Usage:
        tracker = DistributionTracker(DistributionTargets.default())
        state = tracker.measure_state(graph)
        deviation = tracker.calculate_deviation(state, graph.current_era)
        if deviation.is_converged(tracker.targets.tuning.convergence_threshold):
            ...
    """

    def __init__(self, targets: DistributionTargets):
        self.targets = targets

    # ------------------------------------------------------------------
    # Measurement
    # ------------------------------------------------------------------

    def measure_state(self, graph) -> DistributionState:
        """Measure the current state of the world"""
        entities = graph.get_entities()
        relationships = graph.get_relationships()
        total_entities = len(entities)
        tick = getattr(graph, "tick", 0)

        if total_entities == 0 and not relationships:
            return DistributionState.zero(tick)

        kind_counts = Counter(e.kind for e in entities)
        subtype_counts = Counter(e.subtype_key for e in entities)

        prominence_counts = {label: 0 for label in PROMINENCE_LABELS}
        by_kind: Dict[str, Dict[str, int]] = {}
        for entity in entities:
            label = entity.prominence.value
            prominence_counts[label] += 1
            kind_row = by_kind.setdefault(entity.kind, {l: 0 for l in PROMINENCE_LABELS})
            kind_row[label] += 1

        prominence_by_kind = {
            kind: _ratios(row, kind_counts[kind]) for kind, row in by_kind.items()
        }

        rel_counts = Counter(r.kind for r in relationships)
        total_relationships = len(relationships)

        category_counts: Dict[str, int] = {}
        for category, kinds in self.targets.relationship_categories.items():
            category_counts[category] = sum(rel_counts.get(kind, 0) for kind in kinds)

        connectivity = self.targets.global_targets.graph_connectivity
        metrics = compute_connectivity_metrics(
            entities, relationships, connectivity.clustering_strength_threshold
        )

        return DistributionState(
            tick=tick,
            total_entities=total_entities,
            total_relationships=total_relationships,
            entity_kind_counts=dict(kind_counts),
            entity_kind_ratios=_ratios(dict(kind_counts), total_entities),
            entity_subtype_counts=dict(subtype_counts),
            prominence_counts=prominence_counts,
            prominence_ratios=_ratios(prominence_counts, total_entities),
            prominence_by_kind=prominence_by_kind,
            relationship_type_counts=dict(rel_counts),
            relationship_type_ratios=_ratios(dict(rel_counts), total_relationships),
            relationship_category_counts=category_counts,
            relationship_category_ratios=_ratios(category_counts, total_relationships),
            relationship_diversity=relationship_diversity(relationships),
            graph_metrics=metrics,
            degree_stats=compute_degree_stats(entities),
        )

    # ------------------------------------------------------------------
    # Deviation
    # ------------------------------------------------------------------

    def effective_targets(self, era_name: Optional[str]) -> GlobalTargets:
        return self.targets.targets_for_era(era_name)

    def calculate_deviation(self, state: DistributionState, era_name: Optional[str] = None) -> DeviationScore:
        """Calculate deviation of a measured state from the era's effective targets"""
        effective = self.effective_targets(era_name)

        entity_kind = self._ratio_deviation(
            state.entity_kind_ratios, effective.entity_kind_distribution.targets
        )
        prominence = self._ratio_deviation(
            state.prominence_ratios, effective.prominence_distribution.targets
        )
        relationship = self._relationship_deviation(state, effective)
        connectivity = self._connectivity_deviation(state, effective)
        total = self._total_entities_deviation(state, effective)

        strength = self.targets.tuning.correction_strength
        weight_sum = strength.total()
        if weight_sum > 0:
            overall = (
                entity_kind.score * strength.entity_kind
                + prominence.score * strength.prominence
                + relationship.score * strength.relationship
                + connectivity.score * strength.connectivity
            ) / weight_sum
        else:
            overall = 0.0

        logger.debug(
            f"Deviation at tick {state.tick} (era={era_name}): overall={overall:.3f} "
            f"kind={entity_kind.score:.3f} prominence={prominence.score:.3f} "
            f"relationship={relationship.score:.3f} connectivity={connectivity.score:.3f}"
        )

        return DeviationScore(
            overall=max(0.0, overall),
            entity_kind=entity_kind,
            prominence=prominence,
            relationship=relationship,
            connectivity=connectivity,
            total_entities=total,
            era=era_name,
        )

    @staticmethod
    def _ratio_deviation(actual: Dict[str, float], targets: Dict[str, float]) -> DimensionDeviation:
        if not targets:
            return DimensionDeviation()
        deviations = {
            key: abs(actual.get(key, 0.0) - target) for key, target in targets.items()
        }
        return DimensionDeviation(
            score=sum(deviations.values()) / len(deviations),
            deviations=deviations,
        )

    @staticmethod
    def _relationship_deviation(state: DistributionState, effective: GlobalTargets) -> RelationshipDeviation:
        rules = effective.relationship_distribution
        max_type_ratio = state.max_type_ratio
        types_present = state.types_present

        underrepresented = {
            kind: rules.min_type_ratio - ratio
            for kind, ratio in state.relationship_type_ratios.items()
            if ratio < rules.min_type_ratio
        }
        score = (
            max(0.0, max_type_ratio - rules.max_single_type_ratio)
            + max(0, rules.min_types_present - types_present) * 0.05
            + sum(underrepresented.values())
        )

        category_ratios = list(state.relationship_category_ratios.values())
        category_balance = 0.0
        if category_ratios:
            mean_ratio = sum(category_ratios) / len(category_ratios)
            category_balance = sum(abs(r - mean_ratio) for r in category_ratios)

        return RelationshipDeviation(
            score=score,
            max_type_ratio=max_type_ratio,
            types_present=types_present,
            underrepresented_types=underrepresented,
            category_balance=category_balance,
        )

    @staticmethod
    def _connectivity_deviation(state: DistributionState, effective: GlobalTargets) -> ConnectivityDeviation:
        connectivity = effective.graph_connectivity
        metrics = state.graph_metrics

        preferred = connectivity.target_clusters.preferred
        cluster_dev = abs(metrics.clusters - preferred) / preferred if preferred > 0 else 0.0
        density_dev = (
            abs(metrics.intra_cluster_density - connectivity.density_targets.intra_cluster)
            + abs(metrics.inter_cluster_density - connectivity.density_targets.inter_cluster)
        )
        isolated_excess = max(0.0, metrics.isolated_node_ratio - connectivity.isolated_node_ratio.max)

        return ConnectivityDeviation(
            score=(cluster_dev + density_dev + isolated_excess) / 3,
            cluster_count=metrics.clusters,
            cluster_deviation=cluster_dev,
            density_balance=density_dev,
            isolated_nodes=metrics.isolated_nodes,
            isolated_excess=isolated_excess,
        )

    @staticmethod
    def _total_entities_deviation(state: DistributionState, effective: GlobalTargets) -> TotalEntitiesDeviation:
        target = effective.total_entities.target
        deviation = (state.total_entities - target) / target if target > 0 else 0.0
        return TotalEntitiesDeviation(
            actual=state.total_entities,
            target=target,
            deviation=deviation,
            within_tolerance=abs(deviation) <= effective.total_entities.tolerance,
        )
