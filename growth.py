# ============================================================================
# growth.py - Closed-loop growth step driver
# ============================================================================
"""
Growth Controller: one simulation growth step at a time.

Each step measures the graph, refreshes distribution-guided template weights
on the configured measurement interval, draws templates, hands each one to
the caller's executor together with the target selector, then advances the
clock and records the resulting deviation.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional, Set

from distribution.population import PopulationTracker
from graph import find_hubs
from selection.target_selector import TargetSelector
from selection.template_selector import GrowthTemplate, GuidedWeight, TemplateSelector

logger = logging.getLogger(__name__)

Executor = Callable[[Any, GrowthTemplate, TargetSelector], Any]


@dataclass
class StepReport:
    """What happened during one growth step"""
    tick: int
    templates: List[str] = field(default_factory=list)
    reweighted: bool = False
    deviation: float = 0.0
    converged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GrowthMetrics:
    steps: int = 0
    templates_executed: int = 0
    empty_steps: int = 0
    reweights: int = 0
    epochs_completed: int = 0


class GrowthController:
    """
    Drive world growth toward distribution targets.

    Example:
        controller = GrowthController(
            graph,
            TemplateSelector(targets, templates, rng=np.random.default_rng(11)),
            TargetSelector(),
            executor=run_template,
            templates_per_step=2,
            epoch_length=20,
        )
        while not controller.converged and graph.tick < 500:
            controller.step(era_weights)
        print(controller.get_summary())
    """

    def __init__(
        self,
        graph,
        template_selector: TemplateSelector,
        target_selector: TargetSelector,
        executor: Executor,
        population_tracker: Optional[PopulationTracker] = None,
        templates_per_step: int = 1,
        epoch_length: Optional[int] = None,
    ):
        self.graph = graph
        self.template_selector = template_selector
        self.target_selector = target_selector
        self.executor = executor
        self.population_tracker = population_tracker
        self.templates_per_step = max(0, templates_per_step)
        self.epoch_length = epoch_length if epoch_length and epoch_length > 0 else None

        self.metrics = GrowthMetrics()
        self.deviation_history: List[float] = []
        self._weights: Dict[str, float] = {}
        self._era_disabled: Set[str] = set()
        self._last_measured_tick: Optional[int] = None

    @property
    def tuning(self):
        return self.template_selector.targets.tuning

    def _needs_reweight(self, available: List[GrowthTemplate], era_weights: Dict[str, float]) -> bool:
        if self._last_measured_tick is None:
            return True
        if self.graph.tick - self._last_measured_tick >= self.tuning.measurement_interval:
            return True
        for template in available:
            if template.id not in self._weights:
                return True
            # Re-enabled by the era since the last measurement
            if template.id in self._era_disabled and era_weights.get(template.id, 1.0) > 0:
                return True
        return False

    def _refresh_weights(self, available: List[GrowthTemplate], era_weights: Dict[str, float]):
        """Move cached weights toward freshly guided ones at adjustment_speed"""
        speed = self.tuning.adjustment_speed
        self._era_disabled = {t.id for t in available if era_weights.get(t.id, 1.0) <= 0}
        guided = self.template_selector.calculate_guided_weights(self.graph, available, era_weights)
        for weight in guided:
            previous = self._weights.get(weight.template_id)
            if weight.adjusted_weight <= 0 or previous is None:
                self._weights[weight.template_id] = weight.adjusted_weight
            else:
                self._weights[weight.template_id] = previous + speed * (weight.adjusted_weight - previous)
        self._last_measured_tick = self.graph.tick
        self.metrics.reweights += 1
        logger.debug(
            f"Reweighted {len(guided)} templates at tick {self.graph.tick}: "
            f"{ {k: round(v, 3) for k, v in self._weights.items()} }"
        )

    def _current_weights(self, available: List[GrowthTemplate], era_weights: Dict[str, float]) -> List[GuidedWeight]:
        weights = []
        for template in available:
            # Era weights can disable a template between measurements
            if era_weights.get(template.id, 1.0) <= 0:
                value = 0.0
            else:
                value = self._weights.get(template.id, 0.0)
            weights.append(GuidedWeight(template, era_weights.get(template.id, 1.0), value))
        return weights

    def step(self, era_weights: Optional[Dict[str, float]] = None) -> StepReport:
        """
        Run one growth step.

        Args:
            era_weights: Template id to base weight for the current era

        Returns:
            StepReport for the tick that was just completed
        """
        era_weights = era_weights or {}
        available = [t for t in self.template_selector.templates if t.is_applicable(self.graph)]

        reweighted = False
        if available and self._needs_reweight(available, era_weights):
            self._refresh_weights(available, era_weights)
            reweighted = True

        selected = self.template_selector.draw(
            self._current_weights(available, era_weights), self.templates_per_step
        )
        if not selected:
            self.metrics.empty_steps += 1

        for template in selected:
            self.executor(self.graph, template, self.target_selector)
            self.metrics.templates_executed += 1

        tick = self.graph.advance_tick()
        self.metrics.steps += 1

        if self.population_tracker is not None:
            self.population_tracker.update(self.graph)

        was_converged = self.converged
        deviation = self.template_selector.get_deviation(self.graph)
        self.deviation_history.append(deviation.overall)
        if self.converged and not was_converged:
            logger.info(f"Distribution converged at tick {tick} (deviation {deviation.overall:.3f})")

        if self.epoch_length and tick % self.epoch_length == 0:
            self.target_selector.reset_diversity_tracking()
            self.metrics.epochs_completed += 1
            logger.info(f"Epoch {self.metrics.epochs_completed} complete at tick {tick}; diversity tracking reset")

        return StepReport(
            tick=tick,
            templates=[t.id for t in selected],
            reweighted=reweighted,
            deviation=deviation.overall,
            converged=self.converged,
        )

    @property
    def converged(self) -> bool:
        if not self.deviation_history:
            return False
        return self.deviation_history[-1] < self.tuning.convergence_threshold

    def get_summary(self) -> Dict[str, Any]:
        """Counters plus the latest deviation"""
        summary = asdict(self.metrics)
        summary.update({
            "tick": self.graph.tick,
            "current_deviation": self.deviation_history[-1] if self.deviation_history else None,
            "best_deviation": min(self.deviation_history) if self.deviation_history else None,
            "converged": self.converged,
            "template_weights": dict(self._weights),
            "hub_entities": [e.id for e in find_hubs(self.graph.get_entities())],
        })
        if self.population_tracker is not None:
            summary["population"] = asdict(self.population_tracker.get_summary())
        return summary
