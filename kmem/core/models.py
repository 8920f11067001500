"""
Graph document data model.

A workspace holds one GraphDocument: entities keyed by name and relations
keyed by the (from, to, relationType) triple. Serialized field names follow
the JSON wire format (camelCase); Python attributes are snake_case.
"""

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kmem.core.errors import ValidationError


DEFAULT_STRENGTH = 0.8

EPOCH = "1970-01-01T00:00:00.000Z"

RelationKey = Tuple[str, str, str]


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive timestamps are treated as UTC.

    Raises:
        ValidationError: If the value is not a parseable timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid time format: {value!r}")

    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(
            f"Invalid time format: {value!r}",
            hint="Use ISO-8601, e.g. 2024-01-31T12:00:00Z",
        )

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clamp_strength(value: Any) -> float:
    """Clamp a relation strength into [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"strength must be a number, got {type(value).__name__}")
    return max(0.0, min(1.0, float(value)))


def unique_observations(*groups: Iterable[str]) -> List[str]:
    """Union observation sequences, keeping first-seen order."""
    seen = set()
    result = []
    for group in groups:
        for obs in group:
            if obs not in seen:
                seen.add(obs)
                result.append(obs)
    return result


@dataclass
class Entity:
    """A named node in the knowledge graph."""

    name: str
    entity_type: str
    observations: List[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
        }
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        if self.created_by is not None:
            data["createdBy"] = self.created_by
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entity":
        return cls(
            name=data["name"],
            entity_type=data["entityType"],
            observations=unique_observations(data.get("observations") or []),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            created_by=data.get("createdBy"),
            metadata=data.get("metadata") or None,
        )


@dataclass
class Relation:
    """A typed, directed edge. Identity is (from, to, relationType)."""

    from_name: str
    to_name: str
    relation_type: str
    strength: float = DEFAULT_STRENGTH
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> RelationKey:
        return (self.from_name, self.to_name, self.relation_type)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "from": self.from_name,
            "to": self.to_name,
            "relationType": self.relation_type,
            "strength": self.strength,
        }
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        if self.created_by is not None:
            data["createdBy"] = self.created_by
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relation":
        strength = data.get("strength")
        return cls(
            from_name=data["from"],
            to_name=data["to"],
            relation_type=data["relationType"],
            strength=DEFAULT_STRENGTH if strength is None else clamp_strength(strength),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            created_by=data.get("createdBy"),
            metadata=data.get("metadata") or None,
        )


@dataclass
class GraphDocument:
    """All entities and relations of one workspace.

    Engine operations treat a document as an immutable snapshot: they call
    copy() and return the new document instead of mutating their input.
    """

    entities: Dict[str, Entity] = field(default_factory=dict)
    relations: Dict[RelationKey, Relation] = field(default_factory=dict)

    def copy(self) -> "GraphDocument":
        return copy.deepcopy(self)

    def is_empty(self) -> bool:
        return not self.entities and not self.relations

    def get_entity(self, name: str) -> Optional[Entity]:
        return self.entities.get(name)

    def add_entity(self, entity: Entity) -> None:
        self.entities[entity.name] = entity

    def add_relation(self, relation: Relation) -> None:
        self.relations[relation.key] = relation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities.values()],
            "relations": [r.to_dict() for r in self.relations.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphDocument":
        doc = cls()
        for item in data.get("entities") or []:
            doc.add_entity(Entity.from_dict(item))
        for item in data.get("relations") or []:
            relation = Relation.from_dict(item)
            # First occurrence of a triple wins
            if relation.key not in doc.relations:
                doc.add_relation(relation)
        return doc

    def to_jsonl(self) -> str:
        """One JSON object per line, entities first."""
        lines = [json.dumps(e.to_dict(), ensure_ascii=False) for e in self.entities.values()]
        lines.extend(json.dumps(r.to_dict(), ensure_ascii=False) for r in self.relations.values())
        return "\n".join(lines)

    @classmethod
    def from_jsonl(cls, text: str) -> Tuple["GraphDocument", List[str]]:
        """Parse JSONL content.

        Returns:
            Tuple of (document, skipped_lines). Lines that are not valid JSON
            or are neither an entity nor a relation are skipped.
        """
        doc = cls()
        skipped: List[str] = []

        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
                if not isinstance(item, dict):
                    raise ValueError("not an object")
                if "entityType" in item:
                    doc.add_entity(Entity.from_dict(item))
                elif "relationType" in item:
                    relation = Relation.from_dict(item)
                    if relation.key not in doc.relations:
                        doc.add_relation(relation)
                else:
                    raise ValueError("neither entity nor relation")
            except (ValueError, KeyError, TypeError):
                skipped.append(line)

        return doc, skipped


__all__ = [
    "DEFAULT_STRENGTH",
    "EPOCH",
    "RelationKey",
    "Entity",
    "Relation",
    "GraphDocument",
    "utc_now",
    "format_timestamp",
    "parse_timestamp",
    "clamp_strength",
    "unique_observations",
]
