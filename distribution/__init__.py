# distribution/__init__.py - Statistical state measurement and target deviation
"""
Distribution module for measuring how a growing world graph compares with
its author-specified statistical targets.

This module provides tools for:
- Loading and validating distribution targets (global, per-era, tuning)
- Measuring entity, prominence, relationship and connectivity distributions
- Scoring deviation from the effective targets of the active era
- Tracking per-subtype population metrics and trends for feedback control
"""

from distribution.exceptions import DistributionError, TargetsConfigError, TargetsNotFoundError
from distribution.targets import (
    DistributionTargets,
    GlobalTargets,
    EraTargetOverrides,
    TuningParameters,
    CorrectionStrength,
    load_distribution_targets,
)
from distribution.tracker import DistributionTracker, DistributionState, DeviationScore
from distribution.population import PopulationTracker, PopulationMetric

__all__ = [
    "DistributionError",
    "TargetsConfigError",
    "TargetsNotFoundError",
    "DistributionTargets",
    "GlobalTargets",
    "EraTargetOverrides",
    "TuningParameters",
    "CorrectionStrength",
    "load_distribution_targets",
    "DistributionTracker",
    "DistributionState",
    "DeviationScore",
    "PopulationTracker",
    "PopulationMetric",
]
