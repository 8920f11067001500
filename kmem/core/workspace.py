"""
Workspace service: binds the graph engine to a storage backend.

Each mutating method does load → engine operation → record deletes (for
backends that need them) → save → log. Read-only methods load and log only.
"""

import functools
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kmem.core.batch import BatchResult, execute_batch
from kmem.core.entities import (
    add_observation,
    add_observations,
    create_entities,
    delete_entities,
    delete_entity,
    delete_observations,
    open_nodes,
    search_entities,
    search_nodes,
    update_entity,
)
from kmem.core.errors import KmemError
from kmem.core.merge import MergeResult, merge_entities
from kmem.core.models import DEFAULT_STRENGTH, Entity, GraphDocument, Relation
from kmem.core.observability import ObservabilityLogger
from kmem.core.relations import (
    create_relations,
    delete_relations,
    search_relations,
    search_relations_by_user,
    update_relation_strength,
)
from kmem.core.stats import graph_stats, user_stats
from kmem.core.storage import GraphStorage, validate_workspace_id
from kmem.core.temporal import TemporalEvents, get_temporal_events
from kmem.matching import DuplicateGroup, SimilarityStrategy, detect_duplicates, load_strategy


def _logged(operation: str):
    """Record KmemErrors raised by a Workspace method, then re-raise."""

    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except KmemError as e:
                if self.logger:
                    self.logger.log_error(
                        type(e).__name__,
                        operation=operation,
                        workspace=self.workspace_id,
                        details=e.details,
                        message=e.message,
                    )
                raise

        return wrapper

    return decorator


def subgraph(doc: GraphDocument, entities: Iterable[Entity]) -> GraphDocument:
    """Document holding entities and only the relations between them."""
    result = GraphDocument()
    for entity in entities:
        result.add_entity(entity)
    for relation in doc.relations.values():
        if relation.from_name in result.entities and relation.to_name in result.entities:
            result.add_relation(relation)
    return result


class Workspace:
    """One named graph in one storage backend.

    Args:
        storage: Persistence backend
        workspace_id: Workspace name (validated)
        logger: Optional ObservabilityLogger
        default_user_id: Acting user when a call passes none
        default_strength: Strength for relations created without one
        duplicate_threshold: Default threshold for detect_duplicates
        strategy: Similarity strategy for detect_duplicates
    """

    def __init__(
        self,
        storage: GraphStorage,
        workspace_id: str = "default",
        logger: Optional[ObservabilityLogger] = None,
        default_user_id: Optional[str] = None,
        default_strength: float = DEFAULT_STRENGTH,
        duplicate_threshold: float = 0.8,
        strategy: Optional[SimilarityStrategy] = None,
    ):
        self.storage = storage
        self.workspace_id = validate_workspace_id(workspace_id)
        self.logger = logger
        self.default_user_id = default_user_id
        self.default_strength = default_strength
        self.duplicate_threshold = duplicate_threshold
        self.strategy = strategy

    @classmethod
    def from_config(
        cls,
        config,
        storage: GraphStorage,
        workspace_id: Optional[str] = None,
        logger: Optional[ObservabilityLogger] = None,
    ) -> "Workspace":
        """Build a workspace using the defaults section of a KmemConfig."""
        return cls(
            storage,
            workspace_id or config.defaults.workspace_id,
            logger=logger,
            default_user_id=config.defaults.user_id,
            default_strength=config.defaults.relation_strength,
            duplicate_threshold=config.defaults.duplicate_threshold,
            strategy=load_strategy(config.matching.strategy),
        )

    # Plumbing

    def _user(self, user_id: Optional[str]) -> Optional[str]:
        return user_id or self.default_user_id

    def _load(self) -> GraphDocument:
        doc = self.storage.load_graph(self.workspace_id)
        if self.logger:
            self.logger.log_load(
                self.workspace_id, self.storage.name, len(doc.entities), len(doc.relations)
            )
        return doc

    def _save(self, before: GraphDocument, after: GraphDocument) -> None:
        deleted = 0
        if self.storage.supports_record_deletes:
            for name in before.entities.keys() - after.entities.keys():
                self.storage.delete_entity_record(self.workspace_id, name)
                deleted += 1
            for key in before.relations.keys() - after.relations.keys():
                self.storage.delete_relation_record(self.workspace_id, *key)
                deleted += 1

        self.storage.save_graph(self.workspace_id, after)
        if self.logger:
            self.logger.log_save(
                self.workspace_id,
                self.storage.name,
                len(after.entities),
                len(after.relations),
                deleted_records=deleted,
            )

    def _mutated(self, operation: str, user_id: Optional[str], summary: Dict[str, Any]) -> None:
        if self.logger:
            self.logger.log_mutation(self.workspace_id, operation, user_id, summary)

    def _queried(self, operation: str, params: Dict[str, Any], result_count: int) -> None:
        if self.logger:
            self.logger.log_query(self.workspace_id, operation, params, result_count)

    # Entities

    @_logged("create_entities")
    def create_entities(self, inputs: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> List[Entity]:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, entities = create_entities(doc, inputs, user_id)
        self._save(doc, new_doc)
        self._mutated("create_entities", user_id, {"names": [e.name for e in entities]})
        return entities

    @_logged("read_graph")
    def read_graph(self) -> GraphDocument:
        doc = self._load()
        self._queried("read_graph", {}, len(doc.entities))
        return doc

    @_logged("search_entities")
    def search_entities(self, name: Optional[str] = None, entity_type: Optional[str] = None) -> List[Entity]:
        results = search_entities(self._load(), name, entity_type)
        self._queried("search_entities", {"name": name, "entityType": entity_type}, len(results))
        return results

    @_logged("search_nodes")
    def search_nodes(self, query: str) -> GraphDocument:
        doc = self._load()
        result = subgraph(doc, search_nodes(doc, query))
        self._queried("search_nodes", {"query": query}, len(result.entities))
        return result

    @_logged("open_nodes")
    def open_nodes(self, names: Sequence[str]) -> GraphDocument:
        doc = self._load()
        result = subgraph(doc, open_nodes(doc, names))
        self._queried("open_nodes", {"names": list(names)}, len(result.entities))
        return result

    @_logged("add_observation")
    def add_observation(self, entity_name: str, observation: str, user_id: Optional[str] = None) -> Entity:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, entity = add_observation(doc, entity_name, observation, user_id)
        self._save(doc, new_doc)
        self._mutated("add_observation", user_id, {"entity": entity_name})
        return entity

    @_logged("add_observations")
    def add_observations(self, items: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, results = add_observations(doc, items, user_id)
        self._save(doc, new_doc)
        self._mutated(
            "add_observations",
            user_id,
            {"added": sum(len(r["addedObservations"]) for r in results)},
        )
        return results

    @_logged("update_entity")
    def update_entity(
        self,
        entity_name: str,
        new_observations: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Entity:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, entity = update_entity(doc, entity_name, new_observations, user_id, metadata)
        self._save(doc, new_doc)
        self._mutated("update_entity", user_id, {"entity": entity_name})
        return entity

    @_logged("delete_entity")
    def delete_entity(self, entity_name: str, user_id: Optional[str] = None) -> int:
        """Delete an entity; returns the number of relations removed with it."""
        doc = self._load()
        new_doc, cascaded = delete_entity(doc, entity_name)
        self._save(doc, new_doc)
        self._mutated(
            "delete_entity",
            self._user(user_id),
            {"entity": entity_name, "relations_removed": cascaded},
        )
        return cascaded

    @_logged("delete_entities")
    def delete_entities(self, entity_names: Sequence[str], user_id: Optional[str] = None) -> List[str]:
        doc = self._load()
        new_doc, deleted = delete_entities(doc, entity_names)
        if deleted:
            self._save(doc, new_doc)
        self._mutated("delete_entities", self._user(user_id), {"deleted": deleted})
        return deleted

    @_logged("delete_observations")
    def delete_observations(self, deletions: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> int:
        doc = self._load()
        new_doc, removed = delete_observations(doc, deletions)
        if removed:
            self._save(doc, new_doc)
        self._mutated("delete_observations", self._user(user_id), {"removed": removed})
        return removed

    # Relations

    @_logged("create_relations")
    def create_relations(self, inputs: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> List[Relation]:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, relations = create_relations(doc, inputs, user_id, self.default_strength)
        if relations:
            self._save(doc, new_doc)
        self._mutated("create_relations", user_id, {"created": len(relations)})
        return relations

    @_logged("search_relations")
    def search_relations(
        self,
        from_name: Optional[str] = None,
        to_name: Optional[str] = None,
        relation_type: Optional[str] = None,
    ) -> List[Relation]:
        results = search_relations(self._load(), from_name, to_name, relation_type)
        self._queried(
            "search_relations",
            {"from": from_name, "to": to_name, "relationType": relation_type},
            len(results),
        )
        return results

    @_logged("search_relations_by_user")
    def search_relations_by_user(self, user_id: Optional[str], relation_type: Optional[str] = None) -> List[Relation]:
        results = search_relations_by_user(self._load(), user_id, relation_type)
        self._queried(
            "search_relations_by_user",
            {"userId": user_id, "relationType": relation_type},
            len(results),
        )
        return results

    @_logged("update_relation_strength")
    def update_relation_strength(
        self,
        from_name: str,
        to_name: str,
        relation_type: str,
        strength: Any,
        user_id: Optional[str] = None,
    ) -> Relation:
        doc = self._load()
        new_doc, relation = update_relation_strength(doc, from_name, to_name, relation_type, strength)
        self._save(doc, new_doc)
        self._mutated(
            "update_relation_strength",
            self._user(user_id),
            {"relation": list(relation.key), "strength": relation.strength},
        )
        return relation

    @_logged("delete_relations")
    def delete_relations(self, triples: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> int:
        doc = self._load()
        new_doc, removed = delete_relations(doc, triples)
        if removed:
            self._save(doc, new_doc)
        self._mutated("delete_relations", self._user(user_id), {"removed": removed})
        return removed

    # Whole graph

    @_logged("get_stats")
    def get_stats(self) -> Dict[str, Any]:
        stats = graph_stats(self._load(), self.workspace_id)
        self._queried("get_stats", {}, stats["entityCount"])
        return stats

    @_logged("get_user_stats")
    def get_user_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        stats = user_stats(self._load(), user_id)
        self._queried("get_user_stats", {"userId": user_id}, stats["entityCount"])
        return stats

    @_logged("clear_memory")
    def clear_memory(self, user_id: Optional[str] = None) -> None:
        doc = self._load()
        self._save(doc, GraphDocument())
        self._mutated(
            "clear_memory",
            self._user(user_id),
            {"entities_removed": len(doc.entities), "relations_removed": len(doc.relations)},
        )

    @_logged("replace_graph")
    def replace_graph(self, new_doc: GraphDocument, user_id: Optional[str] = None) -> None:
        """Overwrite the stored document (used by import)."""
        doc = self._load()
        self._save(doc, new_doc)
        self._mutated(
            "replace_graph",
            self._user(user_id),
            {"entities": len(new_doc.entities), "relations": len(new_doc.relations)},
        )

    @_logged("get_temporal_events")
    def get_temporal_events(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        entity_name: Optional[str] = None,
        relation_type: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> TemporalEvents:
        events = get_temporal_events(self._load(), start, end, entity_name, relation_type, user_id)
        self._queried(
            "get_temporal_events",
            {"start": start, "end": end, "entityName": entity_name, "relationType": relation_type},
            len(events.entities) + len(events.relations),
        )
        return events

    @_logged("detect_duplicate_entities")
    def detect_duplicates(self, threshold: Optional[float] = None) -> List[DuplicateGroup]:
        threshold = self.duplicate_threshold if threshold is None else threshold
        groups = detect_duplicates(self._load(), threshold, self.strategy)
        self._queried("detect_duplicate_entities", {"threshold": threshold}, len(groups))
        return groups

    @_logged("merge_entities")
    def merge_entities(
        self,
        target: str,
        sources: Sequence[str],
        strategy: str = "combine",
        user_id: Optional[str] = None,
    ) -> MergeResult:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, result = merge_entities(doc, target, sources, strategy, user_id)
        self._save(doc, new_doc)
        if self.logger:
            self.logger.log_merge(
                self.workspace_id,
                target,
                result.merged_sources,
                strategy,
                result.relations_rewired,
                user_id,
            )
        return result

    @_logged("execute_batch_operations")
    def execute_batch(self, operations: Sequence[Dict[str, Any]], user_id: Optional[str] = None) -> BatchResult:
        user_id = self._user(user_id)
        doc = self._load()
        new_doc, result = execute_batch(doc, operations, user_id)
        if result.successful > 0:
            self._save(doc, new_doc)
        if self.logger:
            self.logger.log_batch(
                self.workspace_id,
                len(operations),
                result.successful,
                result.failed,
                result.errors,
                user_id,
            )
        return result


__all__ = ["Workspace", "subgraph"]
