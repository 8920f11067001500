"""
Temporal queries: what was created or updated inside a time window.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from kmem.core.errors import ValidationError
from kmem.core.models import EPOCH, Entity, GraphDocument, Relation, parse_timestamp, utc_now


@dataclass
class TemporalEvents:
    """Entities and relations touched inside [start, end]."""

    entities: List[Tuple[Entity, str]] = field(default_factory=list)
    relations: List[Tuple[Relation, str]] = field(default_factory=list)
    start: str = EPOCH
    end: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [{**e.to_dict(), "actionType": action} for e, action in self.entities],
            "relations": [{**r.to_dict(), "actionType": action} for r, action in self.relations],
            "timeRange": {"start": self.start, "end": self.end},
        }


def _parse_or_none(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except ValidationError:
        return None


def classify(
    created_at: Optional[str],
    updated_at: Optional[str],
    start: datetime,
    end: datetime,
) -> Optional[str]:
    """Return 'created', 'updated' or None if neither timestamp is in range.

    'updated' requires updatedAt != createdAt and updatedAt inside the window.
    """
    created = _parse_or_none(created_at)
    updated = _parse_or_none(updated_at)

    created_in = created is not None and start <= created <= end
    updated_in = (
        updated is not None
        and updated != created
        and start <= updated <= end
    )

    if updated_in:
        return "updated"
    if created_in:
        return "created"
    return None


def get_temporal_events(
    doc: GraphDocument,
    start: Optional[str] = None,
    end: Optional[str] = None,
    entity_name: Optional[str] = None,
    relation_type: Optional[str] = None,
    user_id: Optional[str] = None,
    now: Optional[str] = None,
) -> TemporalEvents:
    """Select and classify entities and relations by timestamp.

    Args:
        doc: Graph document
        start: Window start (inclusive), defaults to the Unix epoch
        end: Window end (inclusive), defaults to now
        entity_name: Case-insensitive substring on entity name or relation from/to
        relation_type: Case-insensitive substring on relationType
        user_id: Exact match on createdBy
        now: Override for "now" when end is omitted

    Raises:
        ValidationError: If start or end is malformed, or start > end
    """
    start_text = start or EPOCH
    end_text = end or now or utc_now()
    start_dt = parse_timestamp(start_text)
    end_dt = parse_timestamp(end_text)
    if start_dt > end_dt:
        raise ValidationError(
            "startTime must not be after endTime",
            details={"start": start_text, "end": end_text},
        )

    events = TemporalEvents(start=start_text, end=end_text)

    for entity in doc.entities.values():
        action = classify(entity.created_at, entity.updated_at, start_dt, end_dt)
        if action:
            events.entities.append((entity, action))

    for relation in doc.relations.values():
        action = classify(relation.created_at, relation.updated_at, start_dt, end_dt)
        if action:
            events.relations.append((relation, action))

    if entity_name:
        needle = entity_name.lower()
        events.entities = [(e, a) for e, a in events.entities if needle in e.name.lower()]
        events.relations = [
            (r, a)
            for r, a in events.relations
            if needle in r.from_name.lower() or needle in r.to_name.lower()
        ]

    if relation_type:
        needle = relation_type.lower()
        events.relations = [
            (r, a) for r, a in events.relations if needle in r.relation_type.lower()
        ]

    if user_id:
        events.entities = [(e, a) for e, a in events.entities if e.created_by == user_id]
        events.relations = [(r, a) for r, a in events.relations if r.created_by == user_id]

    return events


__all__ = ["TemporalEvents", "classify", "get_temporal_events"]
