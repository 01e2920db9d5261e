"""
Production profiles: what a growth template tends to produce.

A profile is a list of tagged effect variants. Each variant covers one
category the template weight controller corrects for:

- EntityKindEffect:   creates entities of a kind (and optionally subtype)
- ProminenceEffect:   creates entities at a prominence level
- RelationshipEffect: creates relationships of a kind
- GraphShapeEffect:   shifts graph density, cluster formation or diversity

Profiles in the nested ``produces``/``effects`` shape used by template
metadata files are converted with ``TemplateMetadata.from_legacy``.
"""

from typing import Annotated, Dict, List, Literal, Optional, Union, Any

from pydantic import BaseModel, Field, field_validator


class CountRange(BaseModel):
    min: int = 1
    max: int = 1


class EntityKindEffect(BaseModel):
    effect: Literal["entity_kind"] = "entity_kind"
    kind: str
    subtype: Optional[str] = None
    count: CountRange = Field(default_factory=CountRange)


class ProminenceEffect(BaseModel):
    effect: Literal["prominence"] = "prominence"
    level: str
    probability: float = Field(default=1.0, description="Chance a produced entity lands at this level")

    @field_validator("probability")
    @classmethod
    def clamp_probability(cls, v):
        return max(0.0, min(1.0, v))


class RelationshipEffect(BaseModel):
    effect: Literal["relationship"] = "relationship"
    kind: str
    probability: float = 1.0

    @field_validator("probability")
    @classmethod
    def clamp_probability(cls, v):
        return max(0.0, min(1.0, v))


class GraphShapeEffect(BaseModel):
    """Signed tendencies in [-1, 1]; positive values add density/clusters/diversity"""
    effect: Literal["graph_shape"] = "graph_shape"
    graph_density: float = 0.0
    cluster_formation: float = 0.0
    diversity_impact: float = 0.0

    @field_validator("graph_density", "cluster_formation", "diversity_impact")
    @classmethod
    def clamp_unit(cls, v):
        return max(-1.0, min(1.0, v))


ProductionEffect = Annotated[
    Union[EntityKindEffect, ProminenceEffect, RelationshipEffect, GraphShapeEffect],
    Field(discriminator="effect"),
]


class TemplateMetadata(BaseModel):
    """Declared production profile of a growth template"""
    produces: List[ProductionEffect] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    def effects_of(self, variant) -> List[Any]:
        return [e for e in self.produces if isinstance(e, variant)]

    @property
    def is_empty(self) -> bool:
        return not self.produces

    @classmethod
    def from_legacy(cls, metadata: Optional[Dict[str, Any]]) -> Optional["TemplateMetadata"]:
        """
        Convert nested template metadata into tagged effects.

        Expected format:
            {"produces": {"entityKinds": [{"kind": "npc", "subtype": "merchant",
                                            "count": {"min": 1, "max": 2},
                                            "prominence": [{"level": "marginal", "probability": 0.6}]}],
                          "relationships": [{"kind": "member_of", "probability": 1.0}]},
             "effects": {"graphDensity": 0.5, "clusterFormation": 0.3, "diversityImpact": 0.4}}

        Missing sections are skipped; returns None when nothing usable remains.
        """
        if not metadata:
            return None

        effects: List[Any] = []
        produces = metadata.get("produces") or {}
        for spec in produces.get("entityKinds") or []:
            if not spec or not spec.get("kind"):
                continue
            effects.append(EntityKindEffect(
                kind=spec["kind"],
                subtype=spec.get("subtype"),
                count=CountRange(**(spec.get("count") or {})),
            ))
            for level_spec in spec.get("prominence") or []:
                if level_spec and level_spec.get("level"):
                    effects.append(ProminenceEffect(
                        level=level_spec["level"],
                        probability=level_spec.get("probability", 1.0),
                    ))
        for spec in produces.get("relationships") or []:
            if spec and spec.get("kind"):
                effects.append(RelationshipEffect(
                    kind=spec["kind"], probability=spec.get("probability", 1.0)
                ))

        shape = metadata.get("effects") or {}
        if shape:
            effects.append(GraphShapeEffect(
                graph_density=shape.get("graphDensity", 0.0),
                cluster_formation=shape.get("clusterFormation", 0.0),
                diversity_impact=shape.get("diversityImpact", 0.0),
            ))

        if not effects:
            return None
        return cls(produces=effects, tags=list(metadata.get("tags") or []))
