"""
Distribution-guided template selection.

Turns the current deviation from distribution targets into per-template
weight corrections, then draws the templates to run this growth step.

For each eligible template the base weight (era weight, default 1.0) is
multiplied by exp(adjustment), where adjustment sums one term per declared
effect category:

    entity kind   sensitivity * strength.entity_kind  * mean relative shortfall of produced kinds
    prominence    sensitivity * strength.prominence   * probability-weighted shortfall of levels
    relationship  sensitivity * strength.relationship * concentration/absence pressure on kinds
    graph shape   sensitivity * (strength.relationship * diversity term
                                 + strength.connectivity * (cluster term + density term))

The product is clamped to [min_template_weight, max_template_weight].
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from distribution.targets import DistributionTargets, GlobalTargets
from distribution.tracker import DistributionState, DistributionTracker, DeviationScore
from selection.profiles import (
    EntityKindEffect,
    GraphShapeEffect,
    ProminenceEffect,
    RelationshipEffect,
    TemplateMetadata,
)
from selection.weighted import weighted_sample

logger = logging.getLogger(__name__)

MAX_RELATIVE_SHORTFALL = 2.0


@dataclass
class GrowthTemplate:
    """
    A generative action the simulation can run.

    ``apply`` is the hook an external interpreter uses to execute the
    template; ``can_apply`` optionally gates availability per graph.
    """
    id: str
    name: str = ""
    metadata: Optional[TemplateMetadata] = None
    apply: Optional[Callable[..., Any]] = None
    can_apply: Optional[Callable[[Any], bool]] = None

    def __post_init__(self):
        if not self.name:
            self.name = self.id
        if isinstance(self.metadata, dict):
            if isinstance(self.metadata.get("produces"), list):
                self.metadata = TemplateMetadata.model_validate(self.metadata)
            else:
                self.metadata = TemplateMetadata.from_legacy(self.metadata)

    def is_applicable(self, graph) -> bool:
        if self.can_apply is None:
            return True
        return bool(self.can_apply(graph))


@dataclass
class GuidedWeight:
    """Selection weight of one template with the reasons it moved"""
    template: GrowthTemplate
    base_weight: float
    adjusted_weight: float
    adjustment_reasons: List[str] = field(default_factory=list)
    final_probability: float = 0.0

    @property
    def template_id(self) -> str:
        return self.template.id


class TemplateSelector:
    """
    Selects growth templates with weights steered by distribution deviation.

    Usage:
        selector = TemplateSelector(targets, templates, rng=np.random.default_rng(7))
        chosen = selector.select_templates(graph, None, era_weights={"raid": 0.5}, count=3)
        for template in chosen:
            interpreter.run(template, graph)
    """

    def __init__(
        self,
        targets: DistributionTargets,
        templates: Optional[Sequence[GrowthTemplate]] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.targets = targets
        self.templates: List[GrowthTemplate] = list(templates or [])
        self.rng = rng if rng is not None else np.random.default_rng()
        self.tracker = DistributionTracker(targets)

    def set_templates(self, templates: Sequence[GrowthTemplate]):
        """Replace the template catalog"""
        self.templates = list(templates)

    def set_targets(self, targets: DistributionTargets):
        """Re-apply distribution targets between runs"""
        self.targets = targets
        self.tracker = DistributionTracker(targets)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def get_state(self, graph) -> DistributionState:
        return self.tracker.measure_state(graph)

    def get_deviation(self, graph, era_name: Optional[str] = None) -> DeviationScore:
        era = era_name if era_name is not None else getattr(graph, "current_era", None)
        return self.tracker.calculate_deviation(self.get_state(graph), era)

    # ------------------------------------------------------------------
    # Weighting
    # ------------------------------------------------------------------

    def calculate_guided_weights(
        self,
        graph,
        available_templates: Optional[Sequence[GrowthTemplate]] = None,
        era_weights: Optional[Dict[str, float]] = None,
        era_name: Optional[str] = None,
    ) -> List[GuidedWeight]:
        """Base weights corrected by each template's production profile"""
        templates = self.templates if available_templates is None else list(available_templates)
        if not templates:
            return []
        era_weights = era_weights or {}
        era = era_name if era_name is not None else getattr(graph, "current_era", None)

        state = self.tracker.measure_state(graph)
        deviation = self.tracker.calculate_deviation(state, era)
        effective = self.targets.targets_for_era(era)
        preferred = self.targets.preferred_relationship_kinds(era)
        tuning = self.targets.tuning

        weights: List[GuidedWeight] = []
        for template in templates:
            if template is None:
                continue
            base = float(era_weights.get(template.id, 1.0))
            if base <= 0:
                weights.append(GuidedWeight(template, base, 0.0, ["disabled by era weight"]))
                continue

            metadata = template.metadata
            if metadata is None or metadata.is_empty:
                weights.append(GuidedWeight(template, base, base, ["no production profile"]))
                continue

            adjustment, reasons = self._profile_adjustment(metadata, state, deviation, effective, preferred)
            raw = base * math.exp(adjustment)
            adjusted = float(np.clip(raw, tuning.min_template_weight, tuning.max_template_weight))
            if adjusted != raw:
                reasons.append(f"clamped {raw:.3f} to {adjusted:.3f}")
            weights.append(GuidedWeight(template, base, adjusted, reasons))

        total = sum(w.adjusted_weight for w in weights)
        for w in weights:
            w.final_probability = w.adjusted_weight / total if total > 0 else 0.0
        return weights

    def _profile_adjustment(
        self,
        metadata: TemplateMetadata,
        state: DistributionState,
        deviation: DeviationScore,
        effective: GlobalTargets,
        preferred: Dict[str, float],
    ) -> Tuple[float, List[str]]:
        tuning = self.targets.tuning
        sensitivity = tuning.deviation_sensitivity
        strength = tuning.correction_strength
        reasons: List[str] = []
        adjustment = 0.0

        kind_effects = metadata.effects_of(EntityKindEffect)
        if kind_effects:
            shortfall = self._entity_kind_shortfall(kind_effects, state, effective, reasons)
            adjustment += sensitivity * strength.entity_kind * shortfall

        prominence_effects = metadata.effects_of(ProminenceEffect)
        if prominence_effects:
            shortfall = self._prominence_shortfall(prominence_effects, state, effective, reasons)
            adjustment += sensitivity * strength.prominence * shortfall

        relationship_effects = metadata.effects_of(RelationshipEffect)
        if relationship_effects:
            pressure = self._relationship_pressure(relationship_effects, state, effective, preferred, reasons)
            adjustment += sensitivity * strength.relationship * pressure

        for shape in metadata.effects_of(GraphShapeEffect):
            adjustment += self._shape_adjustment(shape, state, deviation, effective, reasons)

        return adjustment, reasons

    @staticmethod
    def _relative_shortfall(actual: float, target: float) -> float:
        if target <= 0:
            return 0.0
        return float(np.clip((target - actual) / target, -MAX_RELATIVE_SHORTFALL, MAX_RELATIVE_SHORTFALL))

    def _entity_kind_shortfall(self, effects, state, effective, reasons) -> float:
        targets = effective.entity_kind_distribution.targets
        shortfalls = []
        for effect in effects:
            if effect.kind not in targets:
                continue
            actual = state.entity_kind_ratios.get(effect.kind, 0.0)
            shortfall = self._relative_shortfall(actual, targets[effect.kind])
            shortfalls.append(shortfall)
            if shortfall != 0:
                direction = "under" if shortfall > 0 else "over"
                reasons.append(
                    f"{effect.kind} {direction}-represented ({actual:.2f} vs target {targets[effect.kind]:.2f})"
                )
        return float(np.mean(shortfalls)) if shortfalls else 0.0

    def _prominence_shortfall(self, effects, state, effective, reasons) -> float:
        targets = effective.prominence_distribution.targets
        weighted = 0.0
        total_probability = 0.0
        for effect in effects:
            if effect.level not in targets:
                continue
            actual = state.prominence_ratios.get(effect.level, 0.0)
            shortfall = self._relative_shortfall(actual, targets[effect.level])
            weighted += effect.probability * shortfall
            total_probability += effect.probability
            if shortfall != 0 and effect.probability > 0:
                direction = "under" if shortfall > 0 else "over"
                reasons.append(f"{effect.level} prominence {direction}-represented")
        return weighted / total_probability if total_probability > 0 else 0.0

    def _relationship_pressure(self, effects, state, effective, preferred, reasons) -> float:
        rules = effective.relationship_distribution
        weighted = 0.0
        total_probability = 0.0
        for effect in effects:
            ratio = state.relationship_type_ratios.get(effect.kind, 0.0)
            pressure = 0.0
            if ratio > rules.max_single_type_ratio:
                cap = rules.max_single_type_ratio
                pressure = -min(MAX_RELATIVE_SHORTFALL, (ratio - cap) / cap) if cap > 0 else -1.0
                reasons.append(f"{effect.kind} concentration {ratio:.2f} above {cap:.2f}")
            elif ratio == 0 and state.types_present < rules.min_types_present:
                shortfall = rules.min_types_present - state.types_present
                pressure = shortfall / rules.min_types_present
                reasons.append(f"{effect.kind} adds a missing relationship kind")
            elif 0 < ratio < rules.min_type_ratio and rules.min_type_ratio > 0:
                pressure = (rules.min_type_ratio - ratio) / rules.min_type_ratio
                reasons.append(f"{effect.kind} below minimum share")
            if effect.kind in preferred:
                pressure += preferred[effect.kind]
                reasons.append(f"{effect.kind} preferred this era")
            weighted += effect.probability * pressure
            total_probability += effect.probability
        return weighted / total_probability if total_probability > 0 else 0.0

    def _shape_adjustment(self, shape, state, deviation, effective, reasons) -> float:
        tuning = self.targets.tuning
        sensitivity = tuning.deviation_sensitivity
        strength = tuning.correction_strength
        connectivity = effective.graph_connectivity
        metrics = state.graph_metrics

        diversity_term = shape.diversity_impact * deviation.relationship.score

        preferred = connectivity.target_clusters.preferred
        cluster_gap = 0.0
        if preferred > 0:
            cluster_gap = float(np.clip((preferred - metrics.clusters) / preferred, -1.0, 1.0))
        cluster_term = shape.cluster_formation * cluster_gap

        density_gap = (
            connectivity.density_targets.intra_cluster - metrics.intra_cluster_density
            + deviation.connectivity.isolated_excess
        )
        density_term = shape.graph_density * density_gap

        if diversity_term:
            reasons.append(f"diversity impact {diversity_term:+.3f}")
        if cluster_term:
            reasons.append(f"cluster formation {cluster_term:+.3f}")
        if density_term:
            reasons.append(f"graph density {density_term:+.3f}")

        return sensitivity * (
            strength.relationship * diversity_term
            + strength.connectivity * (cluster_term + density_term)
        )

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def draw(self, weights: Sequence[GuidedWeight], count: int) -> List[GrowthTemplate]:
        """
        count independent weighted draws with replacement.

        Draws with no eligible template are omitted, so the result is
        shorter than count only when every weight is zero.
        """
        eligible = [w for w in weights if w.adjusted_weight > 0]
        if count > 0 and not eligible:
            logger.debug(f"No eligible templates among {len(weights)}; skipping {count} draws")
            return []
        return weighted_sample(
            [w.template for w in eligible],
            [w.adjusted_weight for w in eligible],
            count,
            self.rng,
        )

    def select_templates(
        self,
        graph,
        available_templates: Optional[Sequence[GrowthTemplate]] = None,
        era_weights: Optional[Dict[str, float]] = None,
        count: int = 1,
    ) -> List[GrowthTemplate]:
        """Draw count templates using distribution-guided weights"""
        if count <= 0:
            return []
        weights = self.calculate_guided_weights(graph, available_templates, era_weights)
        selected = self.draw(weights, count)
        logger.debug(f"Selected templates at tick {getattr(graph, 'tick', 0)}: {[t.id for t in selected]}")
        return selected
