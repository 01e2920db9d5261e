# selection/__init__.py - Distribution-guided template and target selection
"""
Selection module for steering world growth toward distribution targets.

This module provides tools for:
- Declaring template production profiles as tagged effect variants
- Weighting growth templates by how well they correct current deviation
- Drawing templates with an injected random source
- Choosing relationship endpoints with anti-hub, preference and diversity scoring
"""

from selection.profiles import (
    CountRange,
    EntityKindEffect,
    ProminenceEffect,
    RelationshipEffect,
    GraphShapeEffect,
    TemplateMetadata,
)
from selection.template_selector import GrowthTemplate, GuidedWeight, TemplateSelector
from selection.target_selector import (
    AvoidanceBias,
    CreationContext,
    DiversityTracking,
    ExcludeRelatedTo,
    PreferenceBias,
    SaturationCreation,
    SelectionBias,
    SelectionDiagnostics,
    SelectionResult,
    SelectionTracker,
    TargetSelector,
)
from selection.weighted import weighted_choice, weighted_sample

__all__ = [
    "CountRange",
    "EntityKindEffect",
    "ProminenceEffect",
    "RelationshipEffect",
    "GraphShapeEffect",
    "TemplateMetadata",
    "GrowthTemplate",
    "GuidedWeight",
    "TemplateSelector",
    "AvoidanceBias",
    "CreationContext",
    "DiversityTracking",
    "ExcludeRelatedTo",
    "PreferenceBias",
    "SaturationCreation",
    "SelectionBias",
    "SelectionDiagnostics",
    "SelectionResult",
    "SelectionTracker",
    "TargetSelector",
    "weighted_choice",
    "weighted_sample",
]
