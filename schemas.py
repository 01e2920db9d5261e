# schemas.py - Pydantic schemas for world entities, relationships and domain schema
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum


class Prominence(str, Enum):
    FORGOTTEN = "forgotten"
    MARGINAL = "marginal"
    RECOGNIZED = "recognized"
    RENOWNED = "renowned"
    MYTHIC = "mythic"

    @property
    def rank(self) -> int:
        """Ordinal position, forgotten=0 .. mythic=4"""
        return PROMINENCE_ORDER.index(self)

    @classmethod
    def from_value(cls, value: Any) -> "Prominence":
        """Accept a label or a numeric 0-5 scale value."""
        if isinstance(value, Prominence):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            index = int(max(0, min(len(PROMINENCE_ORDER) - 1, value)))
            return PROMINENCE_ORDER[index]
        return cls(str(value).lower())


PROMINENCE_ORDER = [
    Prominence.FORGOTTEN,
    Prominence.MARGINAL,
    Prominence.RECOGNIZED,
    Prominence.RENOWNED,
    Prominence.MYTHIC,
]


class EntityStatus(str, Enum):
    ACTIVE = "active"
    HISTORICAL = "historical"


class RelationshipStatus(str, Enum):
    ACTIVE = "active"
    HISTORICAL = "historical"


class Relationship(BaseModel):
    """Directed, typed edge between two entities"""
    kind: str
    src: str
    dst: str
    strength: float = Field(default=0.5, description="Narrative strength in [0, 1]")
    distance: Optional[float] = None
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    created_at: int = 0

    @field_validator('strength')
    @classmethod
    def clamp_strength(cls, v):
        return max(0.0, min(1.0, float(v)))

    @property
    def is_active(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE

    def touches(self, entity_id: str) -> bool:
        return self.src == entity_id or self.dst == entity_id

    def other_end(self, entity_id: str) -> str:
        return self.dst if self.src == entity_id else self.src


class Entity(BaseModel):
    id: str
    kind: str  # npc, faction, location, abilities, rules
    subtype: str = ""
    name: str = ""
    description: str = ""
    status: EntityStatus = EntityStatus.ACTIVE
    prominence: Prominence = Prominence.MARGINAL
    culture: Optional[str] = None
    tags: Dict[str, Any] = Field(default_factory=dict)
    links: List[Relationship] = Field(default_factory=list)  # Active relationships touching this entity
    created_at: int = 0
    updated_at: int = 0

    @field_validator('prominence', mode='before')
    @classmethod
    def coerce_prominence(cls, v):
        return Prominence.from_value(v)

    @field_validator('tags', mode='before')
    @classmethod
    def coerce_tags(cls, v):
        # Tag lists are accepted as presence-only tags
        if isinstance(v, (list, tuple, set)):
            return {str(tag): True for tag in v}
        return v or {}

    @property
    def subtype_key(self) -> str:
        return f"{self.kind}:{self.subtype}"

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


class EntityDraft(BaseModel):
    """
    Partial entity description produced by creation factories.

    Every field has a fallback so incomplete drafts are still usable by the
    interpreter that materialises them.
    """
    kind: str
    subtype: str = ""
    name: str = ""
    description: str = ""
    status: EntityStatus = EntityStatus.ACTIVE
    prominence: Prominence = Prominence.MARGINAL
    culture: Optional[str] = None
    tags: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('prominence', mode='before')
    @classmethod
    def coerce_prominence(cls, v):
        return Prominence.from_value(v) if v is not None else Prominence.MARGINAL

    @field_validator('tags', mode='before')
    @classmethod
    def coerce_tags(cls, v):
        if isinstance(v, (list, tuple, set)):
            return {str(tag): True for tag in v}
        return v or {}


class EntityKindDefinition(BaseModel):
    kind: str
    subtypes: List[str] = Field(default_factory=list)
    description: Optional[str] = None


class DomainSchema(BaseModel):
    """Declared entity kinds and subtypes of a world domain"""
    entity_kinds: List[EntityKindDefinition] = Field(default_factory=list, alias="entityKinds")
    relationship_kinds: List[str] = Field(default_factory=list, alias="relationshipKinds")

    model_config = {"populate_by_name": True}

    def subtype_keys(self) -> List[str]:
        return [
            f"{definition.kind}:{subtype}"
            for definition in self.entity_kinds
            for subtype in definition.subtypes
        ]
