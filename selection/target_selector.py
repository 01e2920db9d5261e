"""
Target Selector: weighted entity selection that prevents super-hub formation.

Naive endpoint selection keeps choosing the same popular entities until a
few of them hold dozens of connections. Candidates are instead scored
multiplicatively:

    score = 1.0
          * preference_boost        per matching preference (subtype, tag, prominence, location)
          * 1 / (1 + n ** s)        n = links of penalized kinds, s = hub_penalty_strength
          * 1 / (1 + sqrt(d - 5))   d = total links, only when d > 5
          * 1 / (1 + k ** t)        k = prior selections under the tracking id, t = diversity strength

When even the best candidate scores below the saturation threshold, a
caller-supplied factory creates new entity drafts instead.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel, to_snake

from schemas import Entity, EntityDraft

logger = logging.getLogger(__name__)

GENERAL_HUB_FREE_LINKS = 5
MAX_BIAS_REPAIRS = 5


def _copy_sections(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy nested dicts only; factories and other values are shared"""
    return {k: _copy_sections(v) if isinstance(v, dict) else v for k, v in data.items()}


def _matching_key(node: Dict[str, Any], name: Any) -> Any:
    if name in node:
        return name
    if isinstance(name, str):
        for candidate in (to_camel(name), to_snake(name)):
            if candidate in node:
                return candidate
    return None


def _present_path(data: Dict[str, Any], loc: Tuple[Any, ...]) -> Tuple[Any, ...]:
    """
    Longest prefix of an error location that exists in the raw bias dict.

    Locations may use either the field name or its camelCase alias. A missing
    required field resolves to its parent section, and a bad list element to
    the whole list.
    """
    path = []
    node = data
    for part in loc:
        if not isinstance(node, dict):
            break
        key = _matching_key(node, part)
        if key is None:
            break
        path.append(key)
        node = node[key]
    return tuple(path)


def _delete_path(data: Dict[str, Any], path: Tuple[Any, ...]):
    node = data
    for key in path[:-1]:
        node = node.get(key) if isinstance(node, dict) else None
    if isinstance(node, dict):
        node.pop(path[-1], None)


class BiasModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PreferenceBias(BiasModel):
    subtypes: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    prominence: List[str] = Field(default_factory=list)
    same_location_as: Optional[str] = Field(default=None, description="Reference entity id")
    location_relationship_kind: str = "resident_of"
    preference_boost: float = Field(default=2.0, description="Multiplier per matching preference")

    @model_validator(mode="after")
    def clamp_boost(self):
        if self.preference_boost < 0:
            logger.warning(f"preferenceBoost {self.preference_boost} < 0; using 0")
            self.preference_boost = 0.0
        self.prominence = [str(p).lower() for p in self.prominence]
        return self


class ExcludeRelatedTo(BiasModel):
    entity_id: str
    relationship_kind: Optional[str] = None


class AvoidanceBias(BiasModel):
    relationship_kinds: List[str] = Field(default_factory=list)
    hub_penalty_strength: float = Field(default=1.0, description="Exponent on penalized link count")
    max_total_relationships: Optional[int] = Field(
        default=None, description="Exclude candidates holding this many links or more"
    )
    exclude_related_to: Optional[ExcludeRelatedTo] = None

    @model_validator(mode="after")
    def clamp_values(self):
        if self.hub_penalty_strength < 0:
            logger.warning(f"hubPenaltyStrength {self.hub_penalty_strength} < 0; using 0")
            self.hub_penalty_strength = 0.0
        if self.max_total_relationships is not None and self.max_total_relationships < 0:
            logger.warning(f"maxTotalRelationships {self.max_total_relationships} < 0; using 0")
            self.max_total_relationships = 0
        return self


class DiversityTracking(BiasModel):
    tracking_id: str
    strength: float = 1.0

    @model_validator(mode="after")
    def clamp_strength(self):
        if self.strength < 0:
            logger.warning(f"diversity strength {self.strength} < 0; using 0")
            self.strength = 0.0
        return self


class SaturationCreation(BiasModel):
    factory: Optional[Callable[..., Any]] = None
    threshold: float = Field(default=0.1, description="Create when the best score falls below this")
    max_created: Optional[int] = Field(default=None, description="Defaults to ceil(count / 2)")

    @model_validator(mode="after")
    def clamp_values(self):
        if self.max_created is not None and self.max_created < 0:
            logger.warning(f"maxCreated {self.max_created} < 0; using 0")
            self.max_created = 0
        return self


class SelectionBias(BiasModel):
    """
    Every recognized selection option with its default.

    Example:
        bias = SelectionBias(
            prefer=PreferenceBias(subtypes=["merchant"], same_location_as="npc_4"),
            avoid=AvoidanceBias(relationship_kinds=["member_of"], max_total_relationships=12),
            diversity_tracking=DiversityTracking(tracking_id="guild_recruitment"),
            create_if_saturated=SaturationCreation(factory=make_merchant, max_created=1),
        )
    """
    prefer: Optional[PreferenceBias] = None
    avoid: Optional[AvoidanceBias] = None
    diversity_tracking: Optional[DiversityTracking] = None
    create_if_saturated: Optional[SaturationCreation] = None

    @property
    def factory(self) -> Optional[Callable[..., Any]]:
        if self.create_if_saturated is None:
            return None
        return self.create_if_saturated.factory


@dataclass
class ScoredCandidate:
    entity: Entity
    score: float


@dataclass
class CreationContext:
    """What a creation factory sees when it is asked for a new entity"""
    graph: Any
    kind: str
    requested_count: int
    best_candidate_score: float
    candidates: List[ScoredCandidate] = field(default_factory=list)


@dataclass
class SelectionDiagnostics:
    candidates_evaluated: int = 0
    best_score: float = 0.0
    worst_score: float = 0.0
    avg_score: float = 0.0
    creation_triggered: bool = False
    creation_reason: Optional[str] = None


@dataclass
class SelectionResult:
    existing: List[Entity] = field(default_factory=list)
    created: List[EntityDraft] = field(default_factory=list)
    diagnostics: SelectionDiagnostics = field(default_factory=SelectionDiagnostics)

    @property
    def total(self) -> int:
        return len(self.existing) + len(self.created)


class SelectionTracker:
    """Per-tracking-id selection counts used for diversity pressure"""

    def __init__(self):
        self._counts: Dict[str, Dict[str, int]] = {}

    def track(self, tracking_id: str, entity_id: str):
        counts = self._counts.setdefault(tracking_id, {})
        counts[entity_id] = counts.get(entity_id, 0) + 1

    def get_count(self, tracking_id: str, entity_id: str) -> int:
        return self._counts.get(tracking_id, {}).get(entity_id, 0)

    def reset(self, tracking_id: Optional[str] = None):
        if tracking_id is None:
            self._counts.clear()
        else:
            self._counts.pop(tracking_id, None)

    def tracking_ids(self) -> List[str]:
        return list(self._counts)


class TargetSelector:
    """
    Scores and ranks existing entities as relationship endpoints.

    Diversity state lives in the injected SelectionTracker, so independent
    selectors never share selection history.

    Usage:
        selector = TargetSelector()
        result = selector.select_targets(graph, "npc", 3, SelectionBias(
            avoid=AvoidanceBias(relationship_kinds=["member_of"]),
        ))
        for entity in result.existing:
            graph.add_relationship("member_of", entity.id, faction.id)
    """

    def __init__(self, tracker: Optional[SelectionTracker] = None):
        self.tracker = tracker or SelectionTracker()

    def select_targets(
        self,
        graph,
        kind: str,
        count: int,
        bias: Union[SelectionBias, Dict[str, Any], None] = None,
    ) -> SelectionResult:
        """
        Select up to count entities of kind, creating new ones when saturated.

        Args:
            graph: World graph to select from
            kind: Entity kind to select
            count: Number of entities requested
            bias: Preferences, penalties, diversity tracking and creation settings

        Returns:
            SelectionResult with existing entities, created drafts and diagnostics
        """
        bias = self._coerce_bias(bias)
        candidates = [e for e in graph.get_entities() if e.kind == kind]

        if not candidates:
            if bias.factory is not None:
                return self._create_new_entities(
                    graph, kind, count, bias, [], 0,
                    reason=f"No existing '{kind}' candidates",
                )
            return SelectionResult()

        scored = [ScoredCandidate(e, self.score_candidate(graph, e, bias)) for e in candidates]
        filtered = self._apply_hard_filters(graph, scored, bias)
        # Stable: equal scores keep graph order
        filtered.sort(key=lambda s: s.score, reverse=True)

        best_score = filtered[0].score if filtered else 0.0
        creation = bias.create_if_saturated
        if creation is not None and creation.factory is not None and best_score < creation.threshold:
            return self._create_new_entities(
                graph, kind, count, bias, filtered, len(candidates),
                reason=f"Best score {best_score:.2f} < threshold {creation.threshold}",
            )

        selected = [s.entity for s in filtered[:max(0, count)]]
        self._track(bias, selected)
        return SelectionResult(
            existing=selected,
            created=[],
            diagnostics=self._diagnostics(filtered, len(candidates)),
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_candidate(self, graph, entity: Entity, bias: SelectionBias) -> float:
        """Higher score means a more desirable target"""
        score = 1.0

        prefer = bias.prefer
        if prefer is not None:
            boost = prefer.preference_boost
            if entity.subtype in prefer.subtypes:
                score *= boost
            if any(entity.has_tag(tag) for tag in prefer.tags):
                score *= boost
            if entity.prominence.value in prefer.prominence:
                score *= boost
            if prefer.same_location_as and self._shares_location(graph, entity, prefer):
                score *= boost

        avoid = bias.avoid
        if avoid is not None and avoid.relationship_kinds:
            penalized = sum(1 for link in entity.links if link.kind in avoid.relationship_kinds)
            if penalized > 0:
                score *= 1.0 / (1.0 + penalized ** avoid.hub_penalty_strength)

        total_links = len(entity.links)
        if total_links > GENERAL_HUB_FREE_LINKS:
            score *= 1.0 / (1.0 + math.sqrt(total_links - GENERAL_HUB_FREE_LINKS))

        diversity = bias.diversity_tracking
        if diversity is not None:
            selections = self.tracker.get_count(diversity.tracking_id, entity.id)
            if selections > 0:
                score *= 1.0 / (1.0 + selections ** diversity.strength)

        return max(0.0, score)

    @staticmethod
    def _shares_location(graph, entity: Entity, prefer: PreferenceBias) -> bool:
        reference = graph.get_entity(prefer.same_location_as)
        if reference is None:
            return False
        link_kind = prefer.location_relationship_kind
        reference_locations = {
            link.dst for link in reference.links
            if link.kind == link_kind and link.src == reference.id
        }
        return any(
            link.kind == link_kind and link.src == entity.id and link.dst in reference_locations
            for link in entity.links
        )

    @staticmethod
    def _apply_hard_filters(graph, scored: List[ScoredCandidate], bias: SelectionBias) -> List[ScoredCandidate]:
        avoid = bias.avoid
        if avoid is None:
            return list(scored)

        filtered = scored
        if avoid.max_total_relationships is not None:
            cap = avoid.max_total_relationships
            filtered = [s for s in filtered if len(s.entity.links) < cap]

        exclusion = avoid.exclude_related_to
        if exclusion is not None:
            filtered = [
                s for s in filtered
                if not graph.has_relationship(s.entity.id, exclusion.entity_id, exclusion.relationship_kind)
            ]
        return list(filtered)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _create_new_entities(
        self,
        graph,
        kind: str,
        count: int,
        bias: SelectionBias,
        candidates: List[ScoredCandidate],
        evaluated: int,
        reason: str,
    ) -> SelectionResult:
        creation = bias.create_if_saturated
        max_created = creation.max_created
        if max_created is None:
            max_created = math.ceil(count / 2)
        to_create = max(0, min(count, max_created))

        context = CreationContext(
            graph=graph,
            kind=kind,
            requested_count=count,
            best_candidate_score=candidates[0].score if candidates else 0.0,
            candidates=list(candidates),
        )

        created: List[EntityDraft] = []
        for _ in range(to_create):
            draft = self._normalize_draft(creation.factory(graph, context), kind)
            if draft is not None:
                created.append(draft)

        remaining = max(0, count - len(created))
        existing = [s.entity for s in candidates[:remaining]]
        self._track(bias, existing)

        diagnostics = self._diagnostics(candidates, evaluated)
        diagnostics.creation_triggered = True
        diagnostics.creation_reason = reason
        logger.debug(f"Creation triggered for '{kind}': {reason} (created {len(created)})")
        return SelectionResult(existing=existing, created=created, diagnostics=diagnostics)

    @staticmethod
    def _normalize_draft(output: Any, kind: str) -> Optional[EntityDraft]:
        """Coerce factory output into an EntityDraft, filling defaults"""
        if output is None:
            logger.warning(f"Creation factory for '{kind}' returned nothing; slot skipped")
            return None
        if isinstance(output, EntityDraft):
            return output
        if isinstance(output, Entity):
            return EntityDraft(**output.model_dump(include=set(EntityDraft.model_fields)))
        if isinstance(output, dict):
            data = {k: v for k, v in output.items() if k in EntityDraft.model_fields and v is not None}
            data.setdefault("kind", kind)
            return EntityDraft(**data)
        logger.warning(f"Creation factory for '{kind}' returned {type(output).__name__}; slot skipped")
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _track(self, bias: SelectionBias, entities: List[Entity]):
        if bias.diversity_tracking is None:
            return
        for entity in entities:
            self.tracker.track(bias.diversity_tracking.tracking_id, entity.id)

    @staticmethod
    def _diagnostics(ranked: List[ScoredCandidate], evaluated: int) -> SelectionDiagnostics:
        if not ranked:
            return SelectionDiagnostics(candidates_evaluated=evaluated)
        scores = [s.score for s in ranked]
        return SelectionDiagnostics(
            candidates_evaluated=evaluated,
            best_score=max(scores),
            worst_score=min(scores),
            avg_score=sum(scores) / len(scores),
        )

    @staticmethod
    def _coerce_bias(bias) -> SelectionBias:
        """Validate bias input, dropping bad fields back to their defaults"""
        if bias is None:
            return SelectionBias()
        if isinstance(bias, SelectionBias):
            return bias
        if not isinstance(bias, dict):
            logger.warning(f"Ignoring selection bias of type {type(bias).__name__}; using defaults")
            return SelectionBias()

        data = _copy_sections(bias)
        for _ in range(MAX_BIAS_REPAIRS):
            try:
                return SelectionBias.model_validate(data)
            except ValidationError as e:
                paths = {_present_path(data, err["loc"]) for err in e.errors()}
                paths.discard(())
                if not paths:
                    break
                for path in paths:
                    _delete_path(data, path)
                logger.warning(
                    "Invalid selection bias fields reset to defaults: "
                    f"{', '.join(sorted('.'.join(str(p) for p in path) for path in paths))}"
                )
        logger.warning("Selection bias could not be repaired; using defaults")
        return SelectionBias()

    def reset_diversity_tracking(self, tracking_id: Optional[str] = None):
        """Clear one tracking id's history, or all history when omitted"""
        self.tracker.reset(tracking_id)
