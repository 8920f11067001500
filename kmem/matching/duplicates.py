"""
Duplicate detection.

Entities are partitioned by entityType and every unordered pair inside a
partition is scored. Pairs at or above the threshold are joined with
union-find, so groups are the connected components of the "similar" graph.
This is O(n^2) per type and meant for offline, manually triggered runs.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from kmem.core.errors import ValidationError
from kmem.core.models import Entity, GraphDocument, parse_timestamp
from kmem.matching.base import DuplicateGroup, SimilarityStrategy
from kmem.matching.similarity import WeightedSimilarityStrategy


def validate_threshold(threshold) -> float:
    """Coerce a threshold to float in [0, 1].

    Raises:
        ValidationError: If not a number or outside [0, 1]
    """
    if isinstance(threshold, bool):
        raise ValidationError("Threshold must be a number between 0.0 and 1.0")
    try:
        value = float(threshold)
    except (TypeError, ValueError):
        raise ValidationError("Threshold must be a number between 0.0 and 1.0")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(
            "Threshold must be a number between 0.0 and 1.0",
            details={"threshold": value},
        )
    return value


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, i: int, j: int) -> None:
        ri, rj = self.find(i), self.find(j)
        if ri != rj:
            # Lower index stays root so components keep iteration order
            if rj < ri:
                ri, rj = rj, ri
            self.parent[rj] = ri


def _created_sort_key(entity: Entity, position: int) -> Tuple[int, datetime, int]:
    """Earliest createdAt first; missing or bad timestamps last; then position."""
    if entity.created_at:
        try:
            return (0, parse_timestamp(entity.created_at), position)
        except ValidationError:
            pass
    return (1, datetime.min, position)


def suggest_merge_target(entities: List[Entity]) -> str:
    """Name of the entity with the earliest createdAt (ties: first listed)."""
    ranked = sorted(
        enumerate(entities), key=lambda pair: _created_sort_key(pair[1], pair[0])
    )
    return ranked[0][1].name


def detect_duplicates(
    doc: GraphDocument,
    threshold: float = 0.8,
    strategy: Optional[SimilarityStrategy] = None,
) -> List[DuplicateGroup]:
    """Find groups of likely-duplicate entities.

    Args:
        doc: Graph document to scan
        threshold: Minimum pair score to count as similar, in [0, 1]
        strategy: Similarity strategy (defaults to the weighted score)

    Returns:
        Duplicate groups in order of their first member's position

    Raises:
        ValidationError: If threshold is outside [0, 1]
    """
    threshold = validate_threshold(threshold)
    strategy = strategy or WeightedSimilarityStrategy()

    entities = list(doc.entities.values())
    by_type: Dict[str, List[int]] = {}
    for index, entity in enumerate(entities):
        by_type.setdefault(entity.entity_type, []).append(index)

    uf = _UnionFind(len(entities))
    matched: Dict[Tuple[int, int], float] = {}

    for indices in by_type.values():
        for a in range(len(indices) - 1):
            for b in range(a + 1, len(indices)):
                i, j = indices[a], indices[b]
                score = strategy.score(entities[i], entities[j])
                if score >= threshold:
                    matched[(i, j)] = score
                    uf.union(i, j)

    components: Dict[int, List[int]] = {}
    for i, j in matched:
        for index in (i, j):
            members = components.setdefault(uf.find(index), [])
            if index not in members:
                members.append(index)

    groups = []
    for root in sorted(components):
        members = sorted(components[root])
        pair_scores = {
            (entities[i].name, entities[j].name): score
            for (i, j), score in matched.items()
            if uf.find(i) == root
        }
        group_entities = [entities[i] for i in members]
        groups.append(
            DuplicateGroup(
                entities=group_entities,
                similarity_score=max(pair_scores.values()),
                suggested_merge_target=suggest_merge_target(group_entities),
                pair_scores=pair_scores,
            )
        )

    return groups
