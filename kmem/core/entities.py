"""
Entity store operations.

Each mutating function copies the input document, applies the change to the
copy and returns (new_document, result). Read-only functions return results
directly.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from kmem.core.errors import NotFoundError, ValidationError
from kmem.core.models import Entity, GraphDocument, unique_observations, utc_now


def validate_entity_input(data: Any) -> None:
    """Check one create_entities input.

    Raises:
        ValidationError: If name, entityType or observations is malformed
    """
    if not isinstance(data, dict):
        raise ValidationError(f"Entity input must be an object, got {type(data).__name__}")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(
            "Entity name is required and must be a non-empty string",
            details={"field": "name"},
        )

    if not isinstance(data.get("entityType"), str):
        raise ValidationError(
            f"Entity '{name}': entityType is required and must be a string",
            details={"field": "entityType", "entity": name},
        )

    observations = data.get("observations")
    if not isinstance(observations, list):
        raise ValidationError(
            f"Entity '{name}': observations must be an array",
            details={"field": "observations", "entity": name},
        )
    if not all(isinstance(o, str) for o in observations):
        raise ValidationError(
            f"Entity '{name}': every observation must be a string",
            details={"field": "observations", "entity": name},
        )

    metadata = data.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError(
            f"Entity '{name}': metadata must be an object",
            details={"field": "metadata", "entity": name},
        )


def _require_string_list(values: Any, message: str) -> List[str]:
    if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
        raise ValidationError(message)
    return list(values)


def _require_optional_string(value: Any, field: str) -> None:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})


def _require_entity(doc: GraphDocument, entity_name: str) -> Entity:
    entity = doc.get_entity(entity_name)
    if entity is None:
        raise NotFoundError(f"Entity '{entity_name}' not found", details={"entity": entity_name})
    return entity


def create_entities(
    doc: GraphDocument,
    inputs: Sequence[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> Tuple[GraphDocument, List[Entity]]:
    """Create entities, merging into any that already exist by name.

    Existing entity: observations are unioned (first-seen order kept) and
    updatedAt is refreshed. New entity: stamped createdAt=updatedAt=now and
    createdBy=user_id.

    Returns:
        (new_document, touched entities in input order)

    Raises:
        ValidationError: If any input is malformed (nothing is applied)
    """
    if not isinstance(inputs, (list, tuple)):
        raise ValidationError("entities must be an array")
    for data in inputs:
        validate_entity_input(data)

    new_doc = doc.copy()
    now = utc_now()
    touched: List[Entity] = []

    for data in inputs:
        existing = new_doc.get_entity(data["name"])
        if existing is not None:
            existing.observations = unique_observations(
                existing.observations, data["observations"]
            )
            existing.updated_at = now
            touched.append(existing)
            continue

        entity = Entity(
            name=data["name"],
            entity_type=data["entityType"],
            observations=unique_observations(data["observations"]),
            created_at=now,
            updated_at=now,
            created_by=user_id,
            metadata=dict(data["metadata"]) if data.get("metadata") else None,
        )
        new_doc.add_entity(entity)
        touched.append(entity)

    return new_doc, touched


def search_entities(
    doc: GraphDocument,
    name: Optional[str] = None,
    entity_type: Optional[str] = None,
) -> List[Entity]:
    """Case-insensitive substring search. Omitted fields match everything."""
    _require_optional_string(name, "name")
    _require_optional_string(entity_type, "entityType")
    results = list(doc.entities.values())

    if name:
        needle = name.lower()
        results = [e for e in results if needle in e.name.lower()]

    if entity_type:
        needle = entity_type.lower()
        results = [e for e in results if needle in e.entity_type.lower()]

    return results


def search_nodes(doc: GraphDocument, query: str) -> List[Entity]:
    """Free-text search over name, entityType and every observation."""
    _require_optional_string(query, "query")
    needle = (query or "").lower()
    return [
        e
        for e in doc.entities.values()
        if needle in e.name.lower()
        or needle in e.entity_type.lower()
        or any(needle in obs.lower() for obs in e.observations)
    ]


def open_nodes(doc: GraphDocument, names: Sequence[str]) -> List[Entity]:
    """Return entities whose name is in names (graph order, missing skipped)."""
    names = _require_string_list(names, "names must be an array of strings")
    wanted = set(names)
    return [e for e in doc.entities.values() if e.name in wanted]


def add_observation(
    doc: GraphDocument,
    entity_name: str,
    observation: str,
    user_id: Optional[str] = None,
) -> Tuple[GraphDocument, Entity]:
    """Append an observation unless it is already present (exact match).

    Raises:
        NotFoundError: If the entity does not exist
        ValidationError: If observation is not a string
    """
    if not isinstance(observation, str):
        raise ValidationError("observation must be a string")

    new_doc = doc.copy()
    entity = _require_entity(new_doc, entity_name)

    if observation not in entity.observations:
        entity.observations.append(observation)
    entity.updated_at = utc_now()
    if user_id and not entity.created_by:
        entity.created_by = user_id

    return new_doc, entity


def add_observations(
    doc: GraphDocument,
    items: Sequence[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> Tuple[GraphDocument, List[Dict[str, Any]]]:
    """Add several observations to several entities.

    Args:
        items: [{"entityName": str, "contents": [str, ...]}, ...]

    Returns:
        (new_document, [{"entityName", "addedObservations"}, ...])

    Raises:
        NotFoundError: On the first missing entity (nothing is applied)
    """
    if not isinstance(items, (list, tuple)):
        raise ValidationError("observations must be an array")

    current = doc
    results = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("each item needs entityName and a contents array")
        contents = _require_string_list(
            item.get("contents"), "each item needs entityName and a contents array of strings"
        )
        entity_name = item.get("entityName", "")
        before = current.get_entity(entity_name)
        existing = set(before.observations) if before else set()

        for content in contents:
            current, _ = add_observation(current, entity_name, content, user_id)

        added = [c for c in unique_observations(contents) if c not in existing]
        results.append({"entityName": entity_name, "addedObservations": added})

    if current is doc:
        current = doc.copy()
    return current, results


def update_entity(
    doc: GraphDocument,
    entity_name: str,
    new_observations: Optional[Sequence[str]] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[GraphDocument, Entity]:
    """Union new observations and shallow-merge metadata into an entity.

    createdBy is back-filled with user_id only when it was unset.

    Raises:
        NotFoundError: If the entity does not exist
    """
    new_observations = _require_string_list(
        new_observations or [], "newObservations must be an array of strings"
    )
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    new_doc = doc.copy()
    entity = _require_entity(new_doc, entity_name)

    entity.observations = unique_observations(entity.observations, new_observations)
    if metadata:
        entity.metadata = {**(entity.metadata or {}), **metadata}
    entity.updated_at = utc_now()
    if user_id and not entity.created_by:
        entity.created_by = user_id

    return new_doc, entity


def delete_entity(doc: GraphDocument, entity_name: str) -> Tuple[GraphDocument, int]:
    """Delete an entity and every relation that touches it.

    Returns:
        (new_document, number of relations removed by the cascade)

    Raises:
        NotFoundError: If the entity does not exist
    """
    _require_entity(doc, entity_name)

    new_doc = doc.copy()
    del new_doc.entities[entity_name]

    before = len(new_doc.relations)
    new_doc.relations = {
        key: rel
        for key, rel in new_doc.relations.items()
        if rel.from_name != entity_name and rel.to_name != entity_name
    }
    return new_doc, before - len(new_doc.relations)


def delete_entities(
    doc: GraphDocument, entity_names: Sequence[str]
) -> Tuple[GraphDocument, List[str]]:
    """Delete several entities, skipping names that do not exist.

    Returns:
        (new_document, names actually deleted)
    """
    current = doc
    deleted = []
    for name in entity_names:
        if current.get_entity(name) is None:
            continue
        current, _ = delete_entity(current, name)
        deleted.append(name)

    if current is doc:
        current = doc.copy()
    return current, deleted


def delete_observations(
    doc: GraphDocument, deletions: Sequence[Dict[str, Any]]
) -> Tuple[GraphDocument, int]:
    """Remove specific observations from entities.

    Args:
        deletions: [{"entityName": str, "observations": [str, ...]}, ...]

    Returns:
        (new_document, number of observations removed). Unknown entities are
        skipped; updatedAt changes only on entities that lost an observation.
    """
    if not isinstance(deletions, (list, tuple)):
        raise ValidationError("deletions must be an array")

    new_doc = doc.copy()
    now = utc_now()
    removed = 0

    for deletion in deletions:
        if not isinstance(deletion, dict):
            raise ValidationError("each deletion needs entityName and an observations array")
        to_remove = set(
            _require_string_list(
                deletion.get("observations") or [],
                "each deletion needs entityName and an observations array of strings",
            )
        )
        entity = new_doc.get_entity(deletion.get("entityName", ""))
        if entity is None:
            continue
        kept = [o for o in entity.observations if o not in to_remove]
        if len(kept) < len(entity.observations):
            removed += len(entity.observations) - len(kept)
            entity.observations = kept
            entity.updated_at = now

    return new_doc, removed


__all__ = [
    "validate_entity_input",
    "create_entities",
    "search_entities",
    "search_nodes",
    "open_nodes",
    "add_observation",
    "add_observations",
    "update_entity",
    "delete_entity",
    "delete_entities",
    "delete_observations",
]
