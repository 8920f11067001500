"""
Relation store operations.

Relations are identified by (from, to, relationType). They are not checked
against the entity set: a relation may name entities that do not exist yet.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from kmem.core.errors import NotFoundError, ValidationError
from kmem.core.models import (
    DEFAULT_STRENGTH,
    GraphDocument,
    Relation,
    RelationKey,
    clamp_strength,
    utc_now,
)


_TRIPLE_FIELDS = ("from", "to", "relationType")


def validate_relation_input(data: Any) -> RelationKey:
    """Check one relation input and return its identity triple.

    Raises:
        ValidationError: If from, to or relationType is missing or not a string
    """
    if not isinstance(data, dict):
        raise ValidationError(f"Relation input must be an object, got {type(data).__name__}")

    for field_name in _TRIPLE_FIELDS:
        value = data.get(field_name)
        if not isinstance(value, str) or not value:
            raise ValidationError(
                f"Relation field '{field_name}' is required and must be a non-empty string",
                details={"field": field_name},
            )

    strength = data.get("strength")
    if strength is not None:
        clamp_strength(strength)

    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("Relation metadata must be an object", details={"field": "metadata"})

    return (data["from"], data["to"], data["relationType"])


def create_relations(
    doc: GraphDocument,
    inputs: Sequence[Dict[str, Any]],
    user_id: Optional[str] = None,
    default_strength: float = DEFAULT_STRENGTH,
) -> Tuple[GraphDocument, List[Relation]]:
    """Create relations whose triple is not already stored.

    Inputs matching an existing triple (or an earlier input in the same call)
    are dropped from the result without error and without updating the stored
    relation.

    Returns:
        (new_document, newly created relations)
    """
    if not isinstance(inputs, (list, tuple)):
        raise ValidationError("relations must be an array")
    keys = [validate_relation_input(data) for data in inputs]

    new_doc = doc.copy()
    now = utc_now()
    created: List[Relation] = []

    for key, data in zip(keys, inputs):
        if key in new_doc.relations:
            continue

        strength = data.get("strength")
        relation = Relation(
            from_name=key[0],
            to_name=key[1],
            relation_type=key[2],
            strength=default_strength if strength is None else clamp_strength(strength),
            created_at=now,
            updated_at=now,
            created_by=user_id,
            metadata=dict(data["metadata"]) if data.get("metadata") else None,
        )
        new_doc.add_relation(relation)
        created.append(relation)

    return new_doc, created


def search_relations(
    doc: GraphDocument,
    from_name: Optional[str] = None,
    to_name: Optional[str] = None,
    relation_type: Optional[str] = None,
) -> List[Relation]:
    """Case-insensitive substring match on each provided field."""
    for field, value in (("from", from_name), ("to", to_name), ("relationType", relation_type)):
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", details={"field": field})

    results = list(doc.relations.values())

    if from_name:
        needle = from_name.lower()
        results = [r for r in results if needle in r.from_name.lower()]

    if to_name:
        needle = to_name.lower()
        results = [r for r in results if needle in r.to_name.lower()]

    if relation_type:
        needle = relation_type.lower()
        results = [r for r in results if needle in r.relation_type.lower()]

    return results


def search_relations_by_user(
    doc: GraphDocument,
    user_id: Optional[str],
    relation_type: Optional[str] = None,
) -> List[Relation]:
    """Filter relations by createdBy substring and optional type substring."""
    results = list(doc.relations.values())

    if user_id:
        needle = user_id.lower()
        results = [r for r in results if r.created_by and needle in r.created_by.lower()]

    if relation_type:
        needle = relation_type.lower()
        results = [r for r in results if needle in r.relation_type.lower()]

    return results


def update_relation_strength(
    doc: GraphDocument,
    from_name: str,
    to_name: str,
    relation_type: str,
    strength: Any,
) -> Tuple[GraphDocument, Relation]:
    """Set a relation's strength (clamped to [0, 1]).

    Raises:
        NotFoundError: If the triple does not exist
    """
    value = clamp_strength(strength)
    key = (from_name, to_name, relation_type)
    if key not in doc.relations:
        raise NotFoundError(
            f"Relation '{from_name}' -[{relation_type}]-> '{to_name}' not found",
            details={"from": from_name, "to": to_name, "relationType": relation_type},
        )

    new_doc = doc.copy()
    relation = new_doc.relations[key]
    relation.strength = value
    relation.updated_at = utc_now()
    return new_doc, relation


def delete_relations(
    doc: GraphDocument, triples: Sequence[Dict[str, Any]]
) -> Tuple[GraphDocument, int]:
    """Remove every relation exactly matching one of the given triples.

    Absent triples are ignored.

    Returns:
        (new_document, number of relations removed)
    """
    if not isinstance(triples, (list, tuple)):
        raise ValidationError("relations must be an array")
    targets = {validate_relation_input(t) for t in triples}

    new_doc = doc.copy()
    before = len(new_doc.relations)
    new_doc.relations = {k: r for k, r in new_doc.relations.items() if k not in targets}
    return new_doc, before - len(new_doc.relations)


__all__ = [
    "validate_relation_input",
    "create_relations",
    "search_relations",
    "search_relations_by_user",
    "update_relation_strength",
    "delete_relations",
]
