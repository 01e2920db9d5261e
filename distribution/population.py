"""
Population Tracker: per-subtype, per-relationship-kind and per-pressure
feedback metrics.

Each metric carries its current count, target, relative deviation and a
trend computed over a bounded history window. Every subtype declared in the
domain schema is seeded at construction so under-produced content is
visible from the first tick.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import numpy as np

from distribution.targets import DistributionTargets
from schemas import DomainSchema

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 10

# Equilibrium values for world pressures when no target is configured
DEFAULT_PRESSURE_TARGETS = {
    "resource_scarcity": 30.0,
    "conflict": 40.0,
    "magical_instability": 25.0,
    "cultural_tension": 35.0,
    "stability": 60.0,
    "external_threat": 15.0,
}
FALLBACK_PRESSURE_TARGET = 50.0


def relative_deviation(value: float, target: float) -> float:
    """(value - target) / target, or 0 when there is no positive target"""
    if target > 0:
        return (value - target) / target
    return 0.0


def calculate_trend(history) -> float:
    """Mean first difference of the history; 0 with fewer than two samples"""
    if len(history) < 2:
        return 0.0
    return float(np.mean(np.diff(np.asarray(history, dtype=float))))


@dataclass
class PopulationMetric:
    """Count/target/deviation/trend for one tracked key"""
    key: str
    count: float = 0.0
    target: float = 0.0
    deviation: float = 0.0
    trend: float = 0.0
    history: Deque[float] = field(default_factory=deque)
    kind: Optional[str] = None
    subtype: Optional[str] = None

    def observe(self, value: float, target: float) -> None:
        self.count = value
        self.target = target
        self.deviation = relative_deviation(value, target)
        self.history.append(value)
        self.trend = calculate_trend(self.history)


@dataclass
class PopulationMetrics:
    tick: int = 0
    entities: Dict[str, PopulationMetric] = field(default_factory=dict)
    relationships: Dict[str, PopulationMetric] = field(default_factory=dict)
    pressures: Dict[str, PopulationMetric] = field(default_factory=dict)


@dataclass
class PopulationOutliers:
    overpopulated: List[PopulationMetric] = field(default_factory=list)
    underpopulated: List[PopulationMetric] = field(default_factory=list)


@dataclass
class PopulationSummary:
    total_entities: float = 0.0
    total_relationships: float = 0.0
    avg_entity_deviation: float = 0.0
    max_entity_deviation: float = 0.0
    pressure_deviations: Dict[str, float] = field(default_factory=dict)


class PopulationTracker:
    """
    Real-time population monitoring for homeostatic feedback.

    Example:
        tracker = PopulationTracker(targets, schema)
        tracker.update(graph)
        outliers = tracker.get_outliers(threshold=0.3)
        for metric in outliers.underpopulated:
            print(f"{metric.key} is {abs(metric.deviation):.0%} below target")
    """

    def __init__(
        self,
        targets: DistributionTargets,
        domain_schema: Optional[DomainSchema] = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.targets = targets
        self.domain_schema = domain_schema or DomainSchema()
        self.history_window = max(1, history_window)
        self.metrics = PopulationMetrics()
        self._seed_subtype_metrics()

    def _new_metric(self, **fields) -> PopulationMetric:
        return PopulationMetric(history=deque(maxlen=self.history_window), **fields)

    def _seed_subtype_metrics(self):
        """Zero-count metrics for every declared subtype, all starting below target"""
        for definition in self.domain_schema.entity_kinds:
            for subtype in definition.subtypes:
                key = f"{definition.kind}:{subtype}"
                self.metrics.entities[key] = self._new_metric(
                    key=key,
                    kind=definition.kind,
                    subtype=subtype,
                    count=0,
                    target=self.targets.entity_target(definition.kind, subtype),
                    deviation=-1.0,
                )

    def update(self, graph) -> PopulationMetrics:
        """Refresh all metrics from the current graph"""
        self.metrics.tick = getattr(graph, "tick", 0)
        self._update_entity_metrics(graph)
        self._update_relationship_metrics(graph)
        self._update_pressure_metrics(graph)
        return self.metrics

    def _update_entity_metrics(self, graph):
        counts = Counter(e.subtype_key for e in graph.get_entities())
        for key in set(self.metrics.entities) | set(counts):
            metric = self.metrics.entities.get(key)
            if metric is None:
                kind, _, subtype = key.partition(":")
                metric = self._new_metric(key=key, kind=kind, subtype=subtype)
                self.metrics.entities[key] = metric
                logger.debug(f"Tracking newly observed subtype {key}")
            metric.observe(
                counts.get(key, 0),
                self.targets.entity_target(metric.kind, metric.subtype),
            )

    def _update_relationship_metrics(self, graph):
        counts = Counter(r.kind for r in graph.get_relationships())
        for kind in set(self.metrics.relationships) | set(counts):
            metric = self.metrics.relationships.setdefault(kind, self._new_metric(key=kind, kind=kind))
            metric.observe(
                counts.get(kind, 0),
                self.targets.relationship_targets.get(kind, 0.0),
            )

    def _update_pressure_metrics(self, graph):
        for pressure_id, value in getattr(graph, "pressures", {}).items():
            metric = self.metrics.pressures.setdefault(pressure_id, self._new_metric(key=pressure_id))
            metric.observe(value, self.get_pressure_target(pressure_id))

    def get_pressure_target(self, pressure_id: str) -> float:
        if pressure_id in self.targets.pressure_targets:
            return self.targets.pressure_targets[pressure_id]
        return DEFAULT_PRESSURE_TARGETS.get(pressure_id, FALLBACK_PRESSURE_TARGET)

    def get_metrics(self) -> PopulationMetrics:
        return self.metrics

    def get_outliers(self, threshold: float = 0.3) -> PopulationOutliers:
        """Entity subtypes more than threshold above or below a positive target"""
        outliers = PopulationOutliers()
        for metric in self.metrics.entities.values():
            if metric.target <= 0:
                continue
            if metric.deviation > threshold:
                outliers.overpopulated.append(metric)
            elif metric.deviation < -threshold:
                outliers.underpopulated.append(metric)
        return outliers

    def get_summary(self) -> PopulationSummary:
        targeted = [m for m in self.metrics.entities.values() if m.target > 0]
        abs_devs = [abs(m.deviation) for m in targeted]
        return PopulationSummary(
            total_entities=sum(m.count for m in self.metrics.entities.values()),
            total_relationships=sum(m.count for m in self.metrics.relationships.values()),
            avg_entity_deviation=sum(abs_devs) / len(abs_devs) if abs_devs else 0.0,
            max_entity_deviation=max(abs_devs, default=0.0),
            pressure_deviations={k: m.deviation for k, m in self.metrics.pressures.items()},
        )

    def reset(self):
        """Drop all history and reseed declared subtypes"""
        self.metrics = PopulationMetrics()
        self._seed_subtype_metrics()
