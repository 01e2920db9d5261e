"""
Distribution Targets with Pydantic Validation

Author-specified statistical shape for a growing world graph:
- Global targets (entity kinds, prominence, relationship diversity, connectivity)
- Per-era overrides merged leaf-by-leaf over the global targets
- Tuning parameters for the template weight controller

Keys may be given in snake_case or in the camelCase used by
distributionTargets.json files.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from distribution.exceptions import TargetsConfigError, TargetsNotFoundError

logger = logging.getLogger(__name__)


def _numeric_only(values: Any) -> Dict[str, float]:
    """Drop comment strings and other non-numeric entries from a ratio map"""
    if not values:
        return {}
    return {
        str(key): float(value)
        for key, value in dict(values).items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


class TargetsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Global targets
# ============================================================================

class TotalEntitiesTarget(TargetsModel):
    target: int = Field(default=150, ge=0, description="Desired total entity count")
    tolerance: float = Field(default=0.1, ge=0.0, description="Relative tolerance around target")


class EntityKindDistribution(TargetsModel):
    type: Literal["uniform", "normal", "custom"] = "custom"
    targets: Dict[str, float] = Field(default_factory=dict, description="Kind -> ratio of all entities")
    tolerance: float = Field(default=0.1, ge=0.0)

    @field_validator("targets", mode="before")
    @classmethod
    def drop_comments(cls, v):
        return _numeric_only(v)


class ProminenceDistribution(TargetsModel):
    type: Literal["normal", "uniform", "powerlaw"] = "normal"
    mean: Optional[str] = None
    std_dev: Optional[float] = None
    targets: Dict[str, float] = Field(
        default_factory=lambda: {
            "forgotten": 0.05,
            "marginal": 0.40,
            "recognized": 0.35,
            "renowned": 0.15,
            "mythic": 0.05,
        }
    )

    @field_validator("targets", mode="before")
    @classmethod
    def drop_comments(cls, v):
        return _numeric_only(v)


class RelationshipDistribution(TargetsModel):
    type: Literal["diverse", "concentrated", "custom"] = "diverse"
    max_single_type_ratio: float = Field(default=0.25, description="Cap on any one relationship kind's share")
    min_types_present: int = Field(default=5, description="Distinct kinds expected in the graph")
    min_type_ratio: float = Field(default=0.02, description="Floor share for every present kind")
    preferred_diversity: Dict[str, float] = Field(default_factory=dict)

    @field_validator("preferred_diversity", mode="before")
    @classmethod
    def drop_comments(cls, v):
        return _numeric_only(v)


class ClusterRange(TargetsModel):
    min: int = 3
    max: int = 10
    preferred: int = 5


class ClusterSizeDistribution(TargetsModel):
    type: Literal["powerlaw", "normal", "uniform"] = "powerlaw"
    alpha: Optional[float] = 2.0


class DensityTargets(TargetsModel):
    intra_cluster: float = 0.3
    inter_cluster: float = 0.05


class IsolatedNodeRatio(TargetsModel):
    max: float = 0.1


class GraphConnectivity(TargetsModel):
    type: Literal["clustered", "uniform", "hierarchical"] = "clustered"
    clustering_strength_threshold: float = Field(
        default=0.0,
        description="Minimum relationship strength that links two entities into one cluster"
    )
    target_clusters: ClusterRange = Field(default_factory=ClusterRange)
    cluster_size_distribution: ClusterSizeDistribution = Field(default_factory=ClusterSizeDistribution)
    density_targets: DensityTargets = Field(default_factory=DensityTargets)
    isolated_node_ratio: IsolatedNodeRatio = Field(default_factory=IsolatedNodeRatio)


class GlobalTargets(TargetsModel):
    total_entities: TotalEntitiesTarget = Field(default_factory=TotalEntitiesTarget)
    entity_kind_distribution: EntityKindDistribution = Field(default_factory=EntityKindDistribution)
    prominence_distribution: ProminenceDistribution = Field(default_factory=ProminenceDistribution)
    relationship_distribution: RelationshipDistribution = Field(default_factory=RelationshipDistribution)
    graph_connectivity: GraphConnectivity = Field(default_factory=GraphConnectivity)

    @model_validator(mode="after")
    def clamp_contradictions(self):
        """Repair contradictory ranges instead of rejecting them"""
        clusters = self.graph_connectivity.target_clusters
        if clusters.min > clusters.max:
            logger.warning(f"Cluster range min {clusters.min} > max {clusters.max}; swapping")
            clusters.min, clusters.max = clusters.max, clusters.min
        clusters.min = max(0, clusters.min)
        clamped = max(clusters.min, min(clusters.max, clusters.preferred))
        if clamped != clusters.preferred:
            logger.warning(f"Preferred cluster count {clusters.preferred} outside range; using {clamped}")
            clusters.preferred = clamped

        rel = self.relationship_distribution
        rel.max_single_type_ratio = _clamp_ratio("maxSingleTypeRatio", rel.max_single_type_ratio)
        rel.min_type_ratio = _clamp_ratio("minTypeRatio", rel.min_type_ratio)
        if rel.min_types_present < 0:
            logger.warning(f"minTypesPresent {rel.min_types_present} < 0; using 0")
            rel.min_types_present = 0

        connectivity = self.graph_connectivity
        connectivity.clustering_strength_threshold = _clamp_ratio(
            "clusteringStrengthThreshold", connectivity.clustering_strength_threshold
        )
        connectivity.isolated_node_ratio.max = _clamp_ratio(
            "isolatedNodeRatio.max", connectivity.isolated_node_ratio.max
        )
        return self


def _clamp_ratio(name: str, value: float) -> float:
    clamped = max(0.0, min(1.0, value))
    if clamped != value:
        logger.warning(f"{name} {value} outside [0, 1]; clamped to {clamped}")
    return clamped


# ============================================================================
# Era overrides
# ============================================================================

class EraRelationshipOverrides(TargetsModel):
    max_single_type_ratio: Optional[float] = None
    min_types_present: Optional[int] = None
    min_type_ratio: Optional[float] = None
    preferred_types: List[str] = Field(default_factory=list)
    preferred_ratio: float = Field(default=0.0, description="Boost share for preferred kinds")


class EraConnectivityOverrides(TargetsModel):
    intra_cluster: Optional[float] = None
    inter_cluster: Optional[float] = None
    preferred_clusters: Optional[int] = None
    max_isolated_ratio: Optional[float] = None


class EraTargetOverrides(TargetsModel):
    """Partial targets for one era; present leaves replace the global value"""
    entity_kind_distribution: Dict[str, float] = Field(default_factory=dict)
    prominence_distribution: Dict[str, float] = Field(default_factory=dict)
    relationship_distribution: Optional[EraRelationshipOverrides] = None
    graph_connectivity: Optional[EraConnectivityOverrides] = None

    @field_validator("entity_kind_distribution", "prominence_distribution", mode="before")
    @classmethod
    def drop_comments(cls, v):
        return _numeric_only(v)


# ============================================================================
# Tuning
# ============================================================================

class CorrectionStrength(TargetsModel):
    entity_kind: float = 1.0
    prominence: float = 0.8
    relationship: float = 0.6
    connectivity: float = 0.4

    @model_validator(mode="after")
    def non_negative(self):
        for name in ("entity_kind", "prominence", "relationship", "connectivity"):
            value = getattr(self, name)
            if value < 0:
                logger.warning(f"correctionStrength.{name} {value} < 0; using 0")
                setattr(self, name, 0.0)
        return self

    def total(self) -> float:
        return self.entity_kind + self.prominence + self.relationship + self.connectivity


class TuningParameters(TargetsModel):
    adjustment_speed: float = Field(default=0.5, description="Blend factor toward freshly computed weights")
    deviation_sensitivity: float = Field(default=1.0, description="Global scale of weight corrections")
    min_template_weight: float = 0.1
    max_template_weight: float = 3.0
    convergence_threshold: float = Field(default=0.15, description="Overall deviation counted as converged")
    measurement_interval: int = Field(default=10, description="Ticks between weight recomputations")
    correction_strength: CorrectionStrength = Field(default_factory=CorrectionStrength)

    @model_validator(mode="after")
    def clamp_ranges(self):
        if self.min_template_weight < 0:
            logger.warning(f"minTemplateWeight {self.min_template_weight} < 0; using 0")
            self.min_template_weight = 0.0
        if self.min_template_weight > self.max_template_weight:
            logger.warning(
                f"minTemplateWeight {self.min_template_weight} > maxTemplateWeight "
                f"{self.max_template_weight}; swapping"
            )
            self.min_template_weight, self.max_template_weight = (
                self.max_template_weight, self.min_template_weight
            )
        self.adjustment_speed = _clamp_ratio("adjustmentSpeed", self.adjustment_speed)
        if self.deviation_sensitivity < 0:
            logger.warning(f"deviationSensitivity {self.deviation_sensitivity} < 0; using 0")
            self.deviation_sensitivity = 0.0
        if self.measurement_interval < 1:
            logger.warning(f"measurementInterval {self.measurement_interval} < 1; using 1")
            self.measurement_interval = 1
        return self


# ============================================================================
# Root configuration
# ============================================================================

class DistributionTargets(TargetsModel):
    """
    Complete distribution target configuration.

    Example:
        targets = DistributionTargets(
            global_targets=GlobalTargets(
                entity_kind_distribution=EntityKindDistribution(
                    targets={"npc": 0.4, "location": 0.2, "faction": 0.2}
                )
            ),
            per_era={"expansion": EraTargetOverrides(entity_kind_distribution={"location": 0.3})},
        )
        effective = targets.targets_for_era("expansion")
    """
    version: str = "1.0"
    global_targets: GlobalTargets = Field(default_factory=GlobalTargets, alias="global")
    per_era: Dict[str, EraTargetOverrides] = Field(default_factory=dict)
    tuning: TuningParameters = Field(default_factory=TuningParameters)
    relationship_categories: Dict[str, List[str]] = Field(default_factory=dict)

    # Population feedback targets: kind -> subtype -> absolute count
    population_targets: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    relationship_targets: Dict[str, float] = Field(default_factory=dict)
    pressure_targets: Dict[str, float] = Field(default_factory=dict)

    @field_validator("relationship_categories", mode="before")
    @classmethod
    def drop_comment_categories(cls, v):
        if not v:
            return {}
        return {k: list(kinds) for k, kinds in dict(v).items() if isinstance(kinds, (list, tuple))}

    @field_validator("population_targets", mode="before")
    @classmethod
    def flatten_population_targets(cls, v):
        # Accept {"npc": {"merchant": {"target": 20}}} as well as plain counts
        if not v:
            return {}
        flattened = {}
        for kind, subtypes in dict(v).items():
            if not isinstance(subtypes, dict):
                continue
            flattened[kind] = {}
            for subtype, spec in subtypes.items():
                if isinstance(spec, dict):
                    spec = spec.get("target", 0)
                if isinstance(spec, (int, float)) and not isinstance(spec, bool):
                    flattened[kind][subtype] = float(spec)
        return flattened

    @field_validator("relationship_targets", "pressure_targets", mode="before")
    @classmethod
    def drop_comments(cls, v):
        return _numeric_only(v)

    def targets_for_era(self, era_name: Optional[str]) -> GlobalTargets:
        """Global targets with the era's overrides applied (global left untouched)"""
        merged = self.global_targets.model_copy(deep=True)
        overrides = self.per_era.get(era_name) if era_name else None
        if overrides is None:
            return merged

        merged.entity_kind_distribution.targets.update(overrides.entity_kind_distribution)
        merged.prominence_distribution.targets.update(overrides.prominence_distribution)

        rel = overrides.relationship_distribution
        if rel is not None:
            target = merged.relationship_distribution
            if rel.max_single_type_ratio is not None:
                target.max_single_type_ratio = rel.max_single_type_ratio
            if rel.min_types_present is not None:
                target.min_types_present = rel.min_types_present
            if rel.min_type_ratio is not None:
                target.min_type_ratio = rel.min_type_ratio

        conn = overrides.graph_connectivity
        if conn is not None:
            target = merged.graph_connectivity
            if conn.intra_cluster is not None:
                target.density_targets.intra_cluster = conn.intra_cluster
            if conn.inter_cluster is not None:
                target.density_targets.inter_cluster = conn.inter_cluster
            if conn.preferred_clusters is not None:
                target.target_clusters.preferred = conn.preferred_clusters
            if conn.max_isolated_ratio is not None:
                target.isolated_node_ratio.max = conn.max_isolated_ratio
        return merged

    def preferred_relationship_kinds(self, era_name: Optional[str]) -> Dict[str, float]:
        """Era-preferred relationship kinds mapped to their boost share"""
        overrides = self.per_era.get(era_name) if era_name else None
        if overrides is None or overrides.relationship_distribution is None:
            return {}
        rel = overrides.relationship_distribution
        return {kind: rel.preferred_ratio for kind in rel.preferred_types}

    def entity_target(self, kind: str, subtype: str) -> float:
        return self.population_targets.get(kind, {}).get(subtype, 0.0)

    @classmethod
    def default(cls) -> "DistributionTargets":
        """Balanced targets for a five-kind fantasy world"""
        return cls(
            global_targets=GlobalTargets(
                entity_kind_distribution=EntityKindDistribution(
                    targets={
                        "npc": 0.4,
                        "location": 0.2,
                        "faction": 0.2,
                        "abilities": 0.1,
                        "rules": 0.1,
                    }
                )
            )
        )


def load_distribution_targets(path) -> DistributionTargets:
    """
    Load distribution targets from a JSON file.

    Args:
        path: Path to a distributionTargets.json file

    Returns:
        Validated DistributionTargets

    Raises:
        TargetsNotFoundError: If the file doesn't exist
        TargetsConfigError: If the JSON is invalid or fails validation
    """
    targets_path = Path(path)
    if not targets_path.exists():
        raise TargetsNotFoundError(f"Distribution targets not found at {targets_path}")

    try:
        with open(targets_path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise TargetsConfigError(f"Invalid JSON in distribution targets '{targets_path}': {e}")

    try:
        targets = DistributionTargets.model_validate(data)
    except ValidationError as e:
        raise TargetsConfigError(f"Invalid distribution targets '{targets_path}': {e}")

    logger.info(
        f"Loaded distribution targets v{targets.version} from {targets_path} "
        f"({len(targets.per_era)} era overrides)"
    )
    return targets
