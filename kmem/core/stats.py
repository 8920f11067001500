"""Graph and per-user statistics."""

from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Optional

from kmem.core.errors import ValidationError
from kmem.core.models import GraphDocument, format_timestamp, parse_timestamp, utc_now


RECENT_ACTIVITY_DAYS = 30


def graph_stats(doc: GraphDocument, workspace_id: str) -> Dict[str, Any]:
    """Counts by type, average observations, and last modification time."""
    entity_types = Counter(e.entity_type for e in doc.entities.values())
    relation_types = Counter(r.relation_type for r in doc.relations.values())

    total_observations = sum(len(e.observations) for e in doc.entities.values())
    average = total_observations / len(doc.entities) if doc.entities else 0.0

    last_modified = None
    for item in [*doc.entities.values(), *doc.relations.values()]:
        if not item.updated_at:
            continue
        try:
            ts = parse_timestamp(item.updated_at)
        except ValidationError:
            continue
        if last_modified is None or ts > last_modified:
            last_modified = ts

    return {
        "workspaceId": workspace_id,
        "entityCount": len(doc.entities),
        "relationCount": len(doc.relations),
        "entityTypes": dict(entity_types),
        "relationTypes": dict(relation_types),
        "averageObservationsPerEntity": round(average, 2),
        "lastModified": format_timestamp(last_modified) if last_modified else None,
    }


def user_stats(
    doc: GraphDocument,
    user_id: Optional[str] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """What a user created: counts, type breakdown and recent activity.

    With user_id=None every entity and relation is counted.
    """
    entities = [e for e in doc.entities.values() if user_id is None or e.created_by == user_id]
    relations = [r for r in doc.relations.values() if user_id is None or r.created_by == user_id]

    cutoff = parse_timestamp(now or utc_now()) - timedelta(days=RECENT_ACTIVITY_DAYS)

    def _recent(item) -> bool:
        if not item.created_at:
            return False
        try:
            return parse_timestamp(item.created_at) > cutoff
        except ValidationError:
            return False

    return {
        "userId": user_id or "all",
        "entityCount": len(entities),
        "relationCount": len(relations),
        "topEntityTypes": dict(Counter(e.entity_type for e in entities).most_common()),
        "topRelationTypes": dict(Counter(r.relation_type for r in relations).most_common()),
        "recentActivity": {
            "entities": [e.to_dict() for e in entities if _recent(e)],
            "relations": [r.to_dict() for r in relations if _recent(r)],
        },
    }


__all__ = ["RECENT_ACTIVITY_DAYS", "graph_stats", "user_stats"]
