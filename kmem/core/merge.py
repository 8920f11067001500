"""
Entity merging.

Folds source entities into a target: observations and metadata are combined
(or left alone under 'replace'), relations pointing at sources are rewired to
the target, and the sources are removed.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from kmem.core.errors import NotFoundError, ValidationError
from kmem.core.models import (
    Entity,
    GraphDocument,
    Relation,
    RelationKey,
    unique_observations,
    utc_now,
)


MERGE_STRATEGIES = ("combine", "replace")


@dataclass
class MergeResult:
    """Outcome of a merge."""

    entity: Entity
    merged_sources: List[str]
    strategy: str
    relations_rewired: int = 0
    self_loops_removed: int = 0
    duplicates_collapsed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "mergedSources": list(self.merged_sources),
            "strategy": self.strategy,
            "relationsRewired": self.relations_rewired,
            "selfLoopsRemoved": self.self_loops_removed,
            "duplicatesCollapsed": self.duplicates_collapsed,
        }


def validate_merge_strategy(strategy: str) -> str:
    if strategy not in MERGE_STRATEGIES:
        raise ValidationError(
            f"Invalid merge strategy: {strategy}. Must be one of: {', '.join(MERGE_STRATEGIES)}",
            details={"strategy": strategy},
        )
    return strategy


def merge_entities(
    doc: GraphDocument,
    target: str,
    sources: Sequence[str],
    strategy: str = "combine",
    user_id: Optional[str] = None,
) -> Tuple[GraphDocument, MergeResult]:
    """Merge source entities into target.

    Args:
        doc: Graph document
        target: Name of the entity that survives
        sources: Names of the entities to absorb
        strategy: 'combine' unions observations and overlays metadata
            (target, then sources in order); 'replace' keeps the target as is
        user_id: Back-filled into createdBy when the target has none

    Returns:
        (new_document, MergeResult)

    Raises:
        ValidationError: Bad strategy, empty sources, or target among sources
        NotFoundError: If target or any source is missing (nothing is merged)
    """
    validate_merge_strategy(strategy)
    if not isinstance(sources, (list, tuple)) or not sources:
        raise ValidationError("sourceEntityNames must be a non-empty array")
    if target in sources:
        raise ValidationError(
            f"Target entity '{target}' cannot also be a source",
            details={"target": target},
        )

    missing = [name for name in [target, *sources] if doc.get_entity(name) is None]
    if missing:
        role = "Target" if missing[0] == target else "Source"
        raise NotFoundError(
            f"{role} entity '{missing[0]}' not found",
            details={"missing": missing},
        )

    source_names = list(dict.fromkeys(sources))
    source_set = set(source_names)

    new_doc = doc.copy()
    merged = new_doc.entities[target]
    source_entities = [new_doc.entities[name] for name in source_names]

    if strategy == "combine":
        merged.observations = unique_observations(
            merged.observations, *(s.observations for s in source_entities)
        )
        metadata = dict(merged.metadata or {})
        for source in source_entities:
            metadata.update(source.metadata or {})
        merged.metadata = metadata or None

    merged.updated_at = utc_now()
    if user_id and not merged.created_by:
        merged.created_by = user_id

    result = MergeResult(entity=merged, merged_sources=source_names, strategy=strategy)

    rewired: Dict[RelationKey, Relation] = {}
    for relation in new_doc.relations.values():
        if relation.from_name in source_set or relation.to_name in source_set:
            result.relations_rewired += 1
            if relation.from_name in source_set:
                relation.from_name = target
            if relation.to_name in source_set:
                relation.to_name = target
            if relation.from_name == relation.to_name:
                result.self_loops_removed += 1
                continue

        # First relation to claim a triple wins
        if relation.key in rewired:
            result.duplicates_collapsed += 1
            continue
        rewired[relation.key] = relation

    new_doc.relations = rewired

    for name in source_names:
        del new_doc.entities[name]

    return new_doc, result


__all__ = ["MERGE_STRATEGIES", "MergeResult", "merge_entities", "validate_merge_strategy"]
