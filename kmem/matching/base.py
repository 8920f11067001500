"""
Base classes for similarity strategies.

A strategy scores a pair of entities in [0, 1]. Duplicate detection uses the
configured strategy to decide which entities belong to the same group.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from kmem.core.models import Entity


@dataclass
class DuplicateGroup:
    """A transitively-closed set of mutually similar entities."""

    entities: List[Entity]
    similarity_score: float  # Max pairwise score observed inside the group
    suggested_merge_target: str
    pair_scores: Dict[Tuple[str, str], float] = field(default_factory=dict)  # Matched pairs only

    def __post_init__(self):
        """Validate similarity score."""
        if not 0.0 <= self.similarity_score <= 1.0:
            raise ValueError(
                f"similarity_score must be between 0 and 1, got {self.similarity_score}"
            )

    @property
    def names(self) -> List[str]:
        return [e.name for e in self.entities]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "similarityScore": round(self.similarity_score, 4),
            "suggestedMergeTarget": self.suggested_merge_target,
            "pairScores": [
                {"entities": [a, b], "score": round(score, 4)}
                for (a, b), score in self.pair_scores.items()
            ],
        }


class SimilarityStrategy(ABC):
    """Abstract base class for entity similarity strategies."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Strategy name (e.g., 'weighted')."""
        pass

    @abstractmethod
    def score(self, entity1: Entity, entity2: Entity) -> float:
        """Similarity of two entities, in [0, 1]."""
        pass


# Strategy registry for loading by name
_STRATEGY_REGISTRY: Dict[str, type] = {}


def register_strategy(name: str):
    """Decorator to register a similarity strategy."""
    def decorator(cls):
        _STRATEGY_REGISTRY[name] = cls
        return cls
    return decorator


def get_strategy(name: str) -> type:
    """Get a strategy class by name."""
    if name not in _STRATEGY_REGISTRY:
        raise ValueError(f"Unknown strategy: {name}. Available: {list(_STRATEGY_REGISTRY.keys())}")
    return _STRATEGY_REGISTRY[name]


def list_strategies() -> List[str]:
    """List available strategy names."""
    return list(_STRATEGY_REGISTRY.keys())


def load_strategy(name: str, **kwargs) -> SimilarityStrategy:
    """Instantiate a registered strategy by name."""
    return get_strategy(name)(**kwargs)
