"""Entity similarity and duplicate detection."""

from kmem.matching.base import (
    DuplicateGroup,
    SimilarityStrategy,
    register_strategy,
    get_strategy,
    list_strategies,
    load_strategy,
)

# Import strategies to register them
from kmem.matching.similarity import (
    WeightedSimilarityStrategy,
    SequenceSimilarityStrategy,
    entity_similarity,
    levenshtein_distance,
    name_similarity,
    observation_similarity,
)
from kmem.matching.duplicates import detect_duplicates, suggest_merge_target, validate_threshold

__all__ = [
    "DuplicateGroup",
    "SimilarityStrategy",
    "register_strategy",
    "get_strategy",
    "list_strategies",
    "load_strategy",
    "WeightedSimilarityStrategy",
    "SequenceSimilarityStrategy",
    "entity_similarity",
    "levenshtein_distance",
    "name_similarity",
    "observation_similarity",
    "detect_duplicates",
    "suggest_merge_target",
    "validate_threshold",
]
