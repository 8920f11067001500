"""
Batch execution of heterogeneous graph mutations.

Operations run in order against one working copy of the document. A failing
operation is recorded and skipped; earlier successes are kept. The caller
persists the working copy once, and only if something succeeded.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from kmem.core.entities import create_entities, delete_entity, update_entity
from kmem.core.errors import KmemError, ValidationError
from kmem.core.models import GraphDocument
from kmem.core.relations import create_relations


OPERATION_TYPES = ("create_entity", "create_relation", "update_entity", "delete_entity")


@dataclass
class BatchResult:
    """Per-batch outcome. results has one slot per operation, None on failure."""

    successful: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    results: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": list(self.errors),
            "results": [_serialize(r) for r in self.results],
        }


def _serialize(value: Any) -> Any:
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _entity_name(data: Dict[str, Any]) -> str:
    name = data.get("entityName")
    if not isinstance(name, str) or not name:
        raise ValidationError("entityName is required")
    return name


def _create_entity(doc, data, user_id):
    return create_entities(doc, [data], user_id)


def _create_relation(doc, data, user_id):
    return create_relations(doc, [data], user_id)


def _update_entity(doc, data, user_id):
    return update_entity(
        doc,
        _entity_name(data),
        data.get("newObservations") or [],
        user_id,
        data.get("metadata") or None,
    )


def _delete_entity(doc, data, user_id):
    new_doc, _ = delete_entity(doc, _entity_name(data))
    return new_doc, True


_HANDLERS: Dict[str, Callable[[GraphDocument, Dict[str, Any], Optional[str]], Tuple[GraphDocument, Any]]] = dict(
    zip(OPERATION_TYPES, (_create_entity, _create_relation, _update_entity, _delete_entity))
)


def execute_batch(
    doc: GraphDocument,
    operations: Sequence[Dict[str, Any]],
    default_user_id: Optional[str] = None,
) -> Tuple[GraphDocument, BatchResult]:
    """Apply operations sequentially with per-operation isolation.

    Args:
        doc: Starting document (not mutated)
        operations: [{"type": ..., "data": {...}, "userId": optional}, ...]
        default_user_id: Used when an operation carries no userId

    Returns:
        (working_document, BatchResult)

    Raises:
        ValidationError: If operations is not a list
    """
    if not isinstance(operations, (list, tuple)):
        raise ValidationError("operations must be an array")

    working = doc.copy()
    result = BatchResult()

    for operation in operations:
        op_type = operation.get("type") if isinstance(operation, dict) else None
        try:
            handler = _HANDLERS.get(op_type) if isinstance(op_type, str) else None
            if handler is None:
                raise ValidationError(
                    f"Unknown operation type: {op_type}",
                    hint=f"Use one of: {', '.join(OPERATION_TYPES)}",
                )
            data = operation.get("data")
            if not isinstance(data, dict):
                raise ValidationError("operation data must be an object")

            working, value = handler(working, data, operation.get("userId") or default_user_id)
        except KmemError as e:
            result.errors.append(f"{op_type}: {e}")
            result.results.append(None)
            result.failed += 1
            continue

        result.results.append(value)
        result.successful += 1

    return working, result


__all__ = ["OPERATION_TYPES", "BatchResult", "execute_batch"]
