"""
Pairwise entity similarity.

The weighted score combines three terms:
- name (0.4): 1 - levenshtein(lower names) / longer name length
- type (0.3): 1 if entityType strings are equal, else 0
- observations (0.3): Jaccard over lower-cased observation sets
"""

from difflib import SequenceMatcher
from typing import Iterable, Tuple

from rapidfuzz.distance import Levenshtein

from kmem.core.models import Entity
from kmem.matching.base import SimilarityStrategy, register_strategy


NAME_WEIGHT = 0.4
TYPE_WEIGHT = 0.3
OBSERVATION_WEIGHT = 0.3


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a, b)


def name_similarity(name1: str, name2: str) -> float:
    """1 - normalized Levenshtein distance of the lower-cased names."""
    a, b = name1.lower(), name2.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def observation_similarity(obs1: Iterable[str], obs2: Iterable[str]) -> float:
    """Jaccard similarity of lower-cased observation sets (0 if both empty)."""
    set1 = {o.lower() for o in obs1}
    set2 = {o.lower() for o in obs2}
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def type_similarity(type1: str, type2: str) -> float:
    return 1.0 if type1 == type2 else 0.0


def score_breakdown(entity1: Entity, entity2: Entity) -> Tuple[float, float, float]:
    """Return the unweighted (name, type, observation) terms."""
    return (
        name_similarity(entity1.name, entity2.name),
        type_similarity(entity1.entity_type, entity2.entity_type),
        observation_similarity(entity1.observations, entity2.observations),
    )


def entity_similarity(entity1: Entity, entity2: Entity) -> float:
    """Weighted similarity of two entities, in [0, 1]."""
    name_term, type_term, obs_term = score_breakdown(entity1, entity2)
    score = NAME_WEIGHT * name_term + TYPE_WEIGHT * type_term + OBSERVATION_WEIGHT * obs_term
    # Float sums can land a hair outside the range
    return max(0.0, min(1.0, score))


@register_strategy("weighted")
class WeightedSimilarityStrategy(SimilarityStrategy):
    """Levenshtein name + exact type + Jaccard observations."""

    def __init__(self, **kwargs):
        pass

    @property
    def name(self) -> str:
        return "weighted"

    def score(self, entity1: Entity, entity2: Entity) -> float:
        return entity_similarity(entity1, entity2)


@register_strategy("sequence")
class SequenceSimilarityStrategy(SimilarityStrategy):
    """Same weights, but the name term is difflib.SequenceMatcher.ratio()."""

    def __init__(self, **kwargs):
        pass

    @property
    def name(self) -> str:
        return "sequence"

    def score(self, entity1: Entity, entity2: Entity) -> float:
        name_term = SequenceMatcher(None, entity1.name.lower(), entity2.name.lower()).ratio()
        score = (
            NAME_WEIGHT * name_term
            + TYPE_WEIGHT * type_similarity(entity1.entity_type, entity2.entity_type)
            + OBSERVATION_WEIGHT
            * observation_similarity(entity1.observations, entity2.observations)
        )
        return max(0.0, min(1.0, score))
