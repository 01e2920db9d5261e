# ============================================================================
# world.py - In-memory world graph (entities, relationships, logical clock)
# ============================================================================
import logging
from typing import Dict, List, Optional, Any, Iterable

from schemas import Entity, EntityDraft, EntityStatus, Prominence, Relationship, RelationshipStatus

logger = logging.getLogger(__name__)


class WorldGraph:
    """
    Mutable entity/relationship store with a tick counter.

    Entity ids are minted per graph instance, so independent worlds never
    share an id sequence.

    Example:
        graph = WorldGraph()
        hero = graph.create_entity(EntityDraft(kind="npc", subtype="hero"))
        town = graph.create_entity({"kind": "location", "subtype": "colony"})
        graph.add_relationship("resident_of", hero.id, town.id, strength=0.3)
        graph.advance_tick()
    """

    def __init__(self, tick: int = 0, current_era: Optional[str] = None):
        self.tick = tick
        self.current_era = current_era
        self.entities: Dict[str, Entity] = {}
        self.relationships: List[Relationship] = []
        self.pressures: Dict[str, float] = {}
        self._next_id = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get_entities(self) -> List[Entity]:
        return list(self.entities.values())

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def find_entities(self, kind: Optional[str] = None, **attrs: Any) -> List[Entity]:
        """Entities filtered by kind and exact attribute matches"""
        found = []
        for entity in self.entities.values():
            if kind is not None and entity.kind != kind:
                continue
            if all(getattr(entity, name, None) == value for name, value in attrs.items()):
                found.append(entity)
        return found

    def get_relationships(self, include_historical: bool = False) -> List[Relationship]:
        if include_historical:
            return list(self.relationships)
        return [r for r in self.relationships if r.is_active]

    def has_relationship(self, a: str, b: str, kind: Optional[str] = None) -> bool:
        """True if an active relationship connects a and b in either direction"""
        for rel in self.relationships:
            if not rel.is_active:
                continue
            if kind is not None and rel.kind != kind:
                continue
            if (rel.src == a and rel.dst == b) or (rel.src == b and rel.dst == a):
                return True
        return False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _mint_id(self, kind: str) -> str:
        self._next_id += 1
        candidate = f"{kind}_{self._next_id}"
        while candidate in self.entities:
            self._next_id += 1
            candidate = f"{kind}_{self._next_id}"
        return candidate

    def create_entity(self, draft, entity_id: Optional[str] = None) -> Entity:
        """Materialise an EntityDraft (or dict) as a new entity"""
        if isinstance(draft, dict):
            draft = EntityDraft(**draft)
        new_id = entity_id or self._mint_id(draft.kind)
        entity = Entity(
            id=new_id,
            name=draft.name or new_id,
            created_at=self.tick,
            updated_at=self.tick,
            **draft.model_dump(exclude={"name"}),
        )
        self.entities[new_id] = entity
        return entity

    def add_entity(self, entity: Entity) -> Entity:
        """Insert a fully-formed entity, re-linking any active relationships"""
        entity.links = [
            r for r in self.relationships if r.is_active and r.touches(entity.id)
        ]
        self.entities[entity.id] = entity
        return entity

    def add_relationship(
        self,
        kind: str,
        src: str,
        dst: str,
        strength: float = 0.5,
        distance: Optional[float] = None,
    ) -> Optional[Relationship]:
        """Add an active relationship; returns None when an endpoint is unknown"""
        if src not in self.entities or dst not in self.entities:
            logger.warning(f"Skipping relationship {kind} {src}->{dst}: unknown endpoint")
            return None
        rel = Relationship(
            kind=kind, src=src, dst=dst, strength=strength,
            distance=distance, created_at=self.tick,
        )
        self.relationships.append(rel)
        self.entities[src].links.append(rel)
        if dst != src:
            self.entities[dst].links.append(rel)
        return rel

    def archive_relationship(self, rel: Relationship) -> None:
        """Mark a relationship historical and drop it from endpoint link lists"""
        if not rel.is_active:
            return
        rel.status = RelationshipStatus.HISTORICAL
        for entity_id in (rel.src, rel.dst):
            entity = self.entities.get(entity_id)
            if entity is not None:
                entity.links = [l for l in entity.links if l is not rel]

    def update_entity(self, entity_id: str, **changes: Any) -> Optional[Entity]:
        entity = self.entities.get(entity_id)
        if entity is None:
            return None
        for name, value in changes.items():
            if name in ("id", "links"):
                continue
            setattr(entity, name, value)
        if "prominence" in changes:
            entity.prominence = Prominence.from_value(changes["prominence"])
        entity.updated_at = self.tick
        return entity

    def retire_entity(self, entity_id: str) -> None:
        """Set an entity historical and archive its relationships"""
        entity = self.entities.get(entity_id)
        if entity is None:
            return
        for rel in list(entity.links):
            self.archive_relationship(rel)
        entity.status = EntityStatus.HISTORICAL
        entity.updated_at = self.tick

    def set_pressure(self, pressure_id: str, value: float) -> None:
        self.pressures[pressure_id] = float(value)

    def advance_tick(self, ticks: int = 1) -> int:
        self.tick += ticks
        return self.tick

    @classmethod
    def from_entities(
        cls,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship] = (),
        tick: int = 0,
        current_era: Optional[str] = None,
    ) -> "WorldGraph":
        """Build a graph from prepared entities and relationships"""
        graph = cls(tick=tick, current_era=current_era)
        for entity in entities:
            entity.links = []
            graph.entities[entity.id] = entity
        for rel in relationships:
            graph.relationships.append(rel)
            if not rel.is_active:
                continue
            for entity_id in {rel.src, rel.dst}:
                if entity_id in graph.entities:
                    graph.entities[entity_id].links.append(rel)
        return graph
