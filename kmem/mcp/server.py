"""kmem MCP Server - Model Context Protocol server for workspace knowledge graphs.

Provides 23 tools. Every tool accepts optional `workspace_id` (defaults to the
configured workspace, normally "default") and `user_id` (defaults to the
configured user, otherwise anonymous).

Entity Tools (10):
- create_entities, read_graph, search_entities, search_nodes, open_nodes
- add_observation, add_observations, update_entity
- delete_entity, delete_entities, delete_observations

Relation Tools (5):
- create_relations, search_relations, search_relations_by_user
- update_relation_strength, delete_relations

Workspace Tools (3):
- get_stats, get_user_stats, clear_memory

Analysis Tools (4):
- get_temporal_events, detect_duplicate_entities, merge_entities
- execute_batch_operations

Array and object arguments may be sent as JSON strings.
"""

import asyncio
import functools
import json
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from kmem.core.config import KmemConfig, load_config
from kmem.core.errors import KmemError, ValidationError
from kmem.core.observability import ObservabilityLogger, create_logger
from kmem.core.storage import GraphStorage, create_storage
from kmem.core.workspace import Workspace
from kmem.mcp.validation import (
    ErrorCode,
    error_from_exception,
    error_response,
    optional_string_arg,
    parse_threshold_arg,
    require_string_arg,
    success_response,
    validate_array_arg,
    validate_object_arg,
)

# Global instances (initialized on first use or by configure())
_config: Optional[KmemConfig] = None
_storage: Optional[GraphStorage] = None
_logger: Optional[ObservabilityLogger] = None


def configure(
    config: Optional[KmemConfig] = None,
    storage: Optional[GraphStorage] = None,
    logger: Optional[ObservabilityLogger] = None,
) -> None:
    """Set the config, storage and logger used by every handler."""
    global _config, _storage, _logger

    _config = config or load_config()
    _storage = storage or create_storage(_config)
    _logger = logger if logger is not None else create_logger(_config)


def _workspace(workspace_id: Optional[str] = None) -> Workspace:
    if _config is None or _storage is None:
        configure()
    return Workspace.from_config(_config, _storage, workspace_id or None, logger=_logger)


def _handles_errors(handler):
    """Turn KmemErrors raised by a handler into structured error responses."""

    @functools.wraps(handler)
    def wrapper(*args, **kwargs) -> Dict[str, Any]:
        try:
            return handler(*args, **kwargs)
        except KmemError as e:
            return error_from_exception(e)

    return wrapper


# ============================================================================
# Tool Handlers
# ============================================================================


@_handles_errors
def handle_create_entities(
    entities: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create entities (a single object is accepted too).

    Existing names are merged: new observations are appended.
    """
    ws = _workspace(workspace_id)
    created = ws.create_entities(validate_array_arg(entities, "entities", wrap_objects=True), user_id)
    return success_response({
        "workspaceId": ws.workspace_id,
        "entities": [e.to_dict() for e in created],
    })


@_handles_errors
def handle_create_relations(
    relations: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create relations. Triples that already exist are skipped."""
    ws = _workspace(workspace_id)
    created = ws.create_relations(validate_array_arg(relations, "relations", wrap_objects=True), user_id)
    return success_response({
        "workspaceId": ws.workspace_id,
        "relations": [r.to_dict() for r in created],
    })


@_handles_errors
def handle_read_graph(workspace_id: Optional[str] = None) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    return success_response({"workspaceId": ws.workspace_id, **ws.read_graph().to_dict()})


@_handles_errors
def handle_search_entities(
    name: Optional[str] = None,
    entity_type: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    results = ws.search_entities(name, entity_type)
    return success_response({
        "workspaceId": ws.workspace_id,
        "entities": [e.to_dict() for e in results],
        "count": len(results),
    })


@_handles_errors
def handle_search_nodes(query: str, workspace_id: Optional[str] = None) -> Dict[str, Any]:
    """Free-text search; returns matching entities and the relations among them."""
    ws = _workspace(workspace_id)
    return success_response({"workspaceId": ws.workspace_id, **ws.search_nodes(query or "").to_dict()})


@_handles_errors
def handle_open_nodes(names: Any, workspace_id: Optional[str] = None) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    result = ws.open_nodes(validate_array_arg(names, "names"))
    return success_response({"workspaceId": ws.workspace_id, **result.to_dict()})


@_handles_errors
def handle_search_relations(
    from_name: Optional[str] = None,
    to_name: Optional[str] = None,
    relation_type: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    results = ws.search_relations(from_name, to_name, relation_type)
    return success_response({
        "workspaceId": ws.workspace_id,
        "relations": [r.to_dict() for r in results],
        "count": len(results),
    })


@_handles_errors
def handle_search_relations_by_user(
    user_id: Optional[str] = None,
    relation_type: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    results = ws.search_relations_by_user(user_id or ws.default_user_id, relation_type)
    return success_response({
        "workspaceId": ws.workspace_id,
        "relations": [r.to_dict() for r in results],
        "count": len(results),
    })


@_handles_errors
def handle_add_observation(
    entity_name: str,
    observation: str,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    entity = ws.add_observation(entity_name, observation, user_id)
    return success_response({"workspaceId": ws.workspace_id, "entity": entity.to_dict()})


@_handles_errors
def handle_add_observations(
    observations: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Add observations to several entities: [{entityName, contents}, ...]."""
    ws = _workspace(workspace_id)
    results = ws.add_observations(validate_array_arg(observations, "observations"), user_id)
    return success_response({"workspaceId": ws.workspace_id, "results": results})


@_handles_errors
def handle_update_entity(
    entity_name: str,
    new_observations: Any = None,
    metadata: Any = None,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    observations = validate_array_arg(new_observations, "newObservations") if new_observations else []
    entity = ws.update_entity(
        entity_name,
        observations,
        user_id,
        validate_object_arg(metadata, "metadata"),
    )
    return success_response({"workspaceId": ws.workspace_id, "entity": entity.to_dict()})


@_handles_errors
def handle_delete_entity(
    entity_name: str,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    cascaded = ws.delete_entity(entity_name, user_id)
    return success_response({
        "workspaceId": ws.workspace_id,
        "deleted": entity_name,
        "relationsRemoved": cascaded,
    })


@_handles_errors
def handle_delete_entities(
    entity_names: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    deleted = ws.delete_entities(validate_array_arg(entity_names, "entityNames"), user_id)
    return success_response({"workspaceId": ws.workspace_id, "deleted": deleted})


@_handles_errors
def handle_delete_observations(
    deletions: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    removed = ws.delete_observations(validate_array_arg(deletions, "deletions"), user_id)
    return success_response({"workspaceId": ws.workspace_id, "removed": removed})


@_handles_errors
def handle_delete_relations(
    relations: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    removed = ws.delete_relations(validate_array_arg(relations, "relations", wrap_objects=True), user_id)
    return success_response({"workspaceId": ws.workspace_id, "removed": removed})


@_handles_errors
def handle_update_relation_strength(
    from_name: str,
    to_name: str,
    relation_type: str,
    strength: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    if isinstance(strength, str):
        try:
            strength = float(strength)
        except ValueError:
            raise ValidationError("strength must be a number", details={"strength": strength})
    relation = ws.update_relation_strength(from_name, to_name, relation_type, strength, user_id)
    return success_response({"workspaceId": ws.workspace_id, "relation": relation.to_dict()})


@_handles_errors
def handle_get_stats(workspace_id: Optional[str] = None) -> Dict[str, Any]:
    return success_response(_workspace(workspace_id).get_stats())


@_handles_errors
def handle_get_user_stats(
    user_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    return success_response({
        "workspaceId": ws.workspace_id,
        **ws.get_user_stats(user_id or ws.default_user_id),
    })


@_handles_errors
def handle_clear_memory(
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    ws.clear_memory(user_id)
    return success_response({"workspaceId": ws.workspace_id, "cleared": True})


@_handles_errors
def handle_get_temporal_events(
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    entity_name: Optional[str] = None,
    relation_type: Optional[str] = None,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """What was created or updated in [start_time, end_time].

    user_id filters events by creator here, it does not default.
    """
    ws = _workspace(workspace_id)
    events = ws.get_temporal_events(start_time, end_time, entity_name, relation_type, user_id)
    return success_response({"workspaceId": ws.workspace_id, **events.to_dict()})


@_handles_errors
def handle_detect_duplicate_entities(
    threshold: Any = None,
    workspace_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    value = parse_threshold_arg(threshold)
    groups = ws.detect_duplicates(value)
    return success_response({
        "workspaceId": ws.workspace_id,
        "threshold": ws.duplicate_threshold if value is None else value,
        "duplicateGroups": [g.to_dict() for g in groups],
        "count": len(groups),
    })


@_handles_errors
def handle_merge_entities(
    target_entity_name: str,
    source_entity_names: Any,
    merge_strategy: Optional[str] = None,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    ws = _workspace(workspace_id)
    result = ws.merge_entities(
        target_entity_name,
        validate_array_arg(source_entity_names, "sourceEntityNames"),
        merge_strategy or "combine",
        user_id,
    )
    return success_response({"workspaceId": ws.workspace_id, **result.to_dict()})


@_handles_errors
def handle_execute_batch_operations(
    operations: Any,
    workspace_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Run operations in order; failures are reported per operation."""
    ws = _workspace(workspace_id)
    result = ws.execute_batch(validate_array_arg(operations, "operations"), user_id)
    return success_response({"workspaceId": ws.workspace_id, **result.to_dict()})


# ============================================================================
# MCP Server Setup
# ============================================================================

_WORKSPACE_PROP = {
    "type": "string",
    "description": 'Unique identifier for the workspace/project (defaults to "default")',
}
_USER_PROP = {
    "type": "string",
    "description": "ID of the acting user (optional)",
}
_JSON_ARRAY = ["array", "string"]
_JSON_OBJECT = ["object", "string"]


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None, user: bool = True) -> Dict[str, Any]:
    props = {**properties, "workspace_id": _WORKSPACE_PROP}
    if user:
        props["user_id"] = _USER_PROP
    return {"type": "object", "properties": props, "required": required or []}


def _relation_triple_props() -> Dict[str, Any]:
    return {
        "from": {"type": "string", "description": "Source entity name"},
        "to": {"type": "string", "description": "Target entity name"},
        "relationType": {"type": "string", "description": "Relation type"},
    }


def create_server() -> Server:
    """Create and configure the MCP server."""
    server = Server("kmem")

    @server.list_tools()
    async def list_tools():
        return [
            Tool(
                name="create_entities",
                description="Create entities in a workspace. Existing names are merged: new observations are appended.",
                inputSchema=_schema(
                    {
                        "entities": {
                            "type": _JSON_ARRAY,
                            "description": "Entities to create, each with name, entityType, observations and optional metadata",
                        },
                    },
                    ["entities"],
                ),
            ),
            Tool(
                name="create_relations",
                description="Create directed relations between entities. Duplicate (from, to, relationType) triples are skipped.",
                inputSchema=_schema(
                    {
                        "relations": {
                            "type": _JSON_ARRAY,
                            "description": "Relations to create, each with from, to, relationType and optional strength (0-1)",
                        },
                    },
                    ["relations"],
                ),
            ),
            Tool(
                name="read_graph",
                description="Read the entire knowledge graph of a workspace",
                inputSchema=_schema({}, user=False),
            ),
            Tool(
                name="search_entities",
                description="Search entities by name and/or type (case-insensitive partial match)",
                inputSchema=_schema(
                    {
                        "name": {"type": "string", "description": "Search by entity name (partial match, optional)"},
                        "entityType": {"type": "string", "description": "Search by entity type (partial match, optional)"},
                    },
                    user=False,
                ),
            ),
            Tool(
                name="search_nodes",
                description="Free-text search over entity names, types and observations. Returns matches and the relations among them.",
                inputSchema=_schema(
                    {"query": {"type": "string", "description": "Text to search for"}},
                    ["query"],
                    user=False,
                ),
            ),
            Tool(
                name="open_nodes",
                description="Fetch entities by exact name, with the relations among them",
                inputSchema=_schema(
                    {"names": {"type": _JSON_ARRAY, "description": "Entity names to open"}},
                    ["names"],
                    user=False,
                ),
            ),
            Tool(
                name="search_relations",
                description="Search relations by endpoint names or type (case-insensitive partial match)",
                inputSchema=_schema(
                    {
                        "from": {"type": "string", "description": "Source entity name (optional)"},
                        "to": {"type": "string", "description": "Target entity name (optional)"},
                        "relationType": {"type": "string", "description": "Relation type (partial match, optional)"},
                    },
                    user=False,
                ),
            ),
            Tool(
                name="search_relations_by_user",
                description="Search relations created by a user",
                inputSchema=_schema(
                    {"relationType": {"type": "string", "description": "Relation type (partial match, optional)"}},
                ),
            ),
            Tool(
                name="add_observation",
                description="Add an observation to an existing entity",
                inputSchema=_schema(
                    {
                        "entityName": {"type": "string", "description": "Name of the entity"},
                        "observation": {"type": "string", "description": "Observation content to add"},
                    },
                    ["entityName", "observation"],
                ),
            ),
            Tool(
                name="add_observations",
                description="Add observations to several entities",
                inputSchema=_schema(
                    {
                        "observations": {
                            "type": _JSON_ARRAY,
                            "description": "Items of the form {entityName, contents: [string, ...]}",
                        },
                    },
                    ["observations"],
                ),
            ),
            Tool(
                name="update_entity",
                description="Update an existing entity with new observations and/or metadata",
                inputSchema=_schema(
                    {
                        "entityName": {"type": "string", "description": "Name of the entity to update"},
                        "newObservations": {"type": _JSON_ARRAY, "description": "Observations to add"},
                        "metadata": {"type": _JSON_OBJECT, "description": "Metadata fields to set"},
                    },
                    ["entityName"],
                ),
            ),
            Tool(
                name="delete_entity",
                description="Delete an entity and all its relations",
                inputSchema=_schema(
                    {"entityName": {"type": "string", "description": "Name of the entity to delete"}},
                    ["entityName"],
                ),
            ),
            Tool(
                name="delete_entities",
                description="Delete several entities and their relations. Unknown names are ignored.",
                inputSchema=_schema(
                    {"entityNames": {"type": _JSON_ARRAY, "description": "Names of entities to delete"}},
                    ["entityNames"],
                ),
            ),
            Tool(
                name="delete_observations",
                description="Remove specific observations from entities",
                inputSchema=_schema(
                    {
                        "deletions": {
                            "type": _JSON_ARRAY,
                            "description": "Items of the form {entityName, observations: [string, ...]}",
                        },
                    },
                    ["deletions"],
                ),
            ),
            Tool(
                name="delete_relations",
                description="Delete relations by exact (from, to, relationType)",
                inputSchema=_schema(
                    {"relations": {"type": _JSON_ARRAY, "description": "Triples {from, to, relationType}"}},
                    ["relations"],
                ),
            ),
            Tool(
                name="update_relation_strength",
                description="Set the strength (0-1) of an existing relation",
                inputSchema=_schema(
                    {
                        **_relation_triple_props(),
                        "strength": {"type": ["number", "string"], "description": "New strength, clamped to [0, 1]"},
                    },
                    ["from", "to", "relationType", "strength"],
                ),
            ),
            Tool(
                name="get_stats",
                description="Get entity/relation counts and type breakdown for a workspace",
                inputSchema=_schema({}, user=False),
            ),
            Tool(
                name="get_user_stats",
                description="Get counts and recent activity for what a user created",
                inputSchema=_schema({}),
            ),
            Tool(
                name="clear_memory",
                description="Delete every entity and relation in a workspace",
                inputSchema=_schema({}),
            ),
            Tool(
                name="get_temporal_events",
                description="Find what was created or updated in a time window",
                inputSchema=_schema(
                    {
                        "startTime": {"type": "string", "description": "Start time (ISO 8601, optional)"},
                        "endTime": {"type": "string", "description": "End time (ISO 8601, optional)"},
                        "entityName": {"type": "string", "description": "Filter by entity name (optional)"},
                        "relationType": {"type": "string", "description": "Filter by relation type (optional)"},
                    },
                ),
            ),
            Tool(
                name="detect_duplicate_entities",
                description="Find groups of likely-duplicate entities of the same type",
                inputSchema=_schema(
                    {
                        "threshold": {
                            "type": ["number", "string"],
                            "description": "Similarity threshold (0.0 to 1.0, defaults to 0.8)",
                        },
                    },
                    user=False,
                ),
            ),
            Tool(
                name="merge_entities",
                description="Merge source entities into a target entity and rewire their relations",
                inputSchema=_schema(
                    {
                        "targetEntityName": {"type": "string", "description": "Name of the entity to merge into"},
                        "sourceEntityNames": {"type": _JSON_ARRAY, "description": "Names of entities to merge from"},
                        "mergeStrategy": {
                            "type": "string",
                            "enum": ["combine", "replace"],
                            "description": 'Merge strategy (defaults to "combine")',
                        },
                    },
                    ["targetEntityName", "sourceEntityNames"],
                ),
            ),
            Tool(
                name="execute_batch_operations",
                description="Execute several operations in one call. Failed operations are reported and skipped.",
                inputSchema=_schema(
                    {
                        "operations": {
                            "type": _JSON_ARRAY,
                            "description": "Items {type, data, userId?}; type is create_entity, create_relation, update_entity or delete_entity",
                        },
                    },
                    ["operations"],
                ),
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict):
        result = dispatch_tool(name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


def dispatch_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Route a tool call to its handler."""
    try:
        workspace_id = optional_string_arg(arguments, "workspace_id", "workspaceId")
        user_id = optional_string_arg(arguments, "user_id", "userId")

        if name == "create_entities":
            return handle_create_entities(arguments.get("entities"), workspace_id, user_id)
        elif name == "create_relations":
            return handle_create_relations(arguments.get("relations"), workspace_id, user_id)
        elif name == "read_graph":
            return handle_read_graph(workspace_id)
        elif name == "search_entities":
            return handle_search_entities(
                optional_string_arg(arguments, "name"),
                optional_string_arg(arguments, "entityType"),
                workspace_id,
            )
        elif name == "search_nodes":
            return handle_search_nodes(optional_string_arg(arguments, "query"), workspace_id)
        elif name == "open_nodes":
            return handle_open_nodes(arguments.get("names"), workspace_id)
        elif name == "search_relations":
            return handle_search_relations(
                optional_string_arg(arguments, "from"),
                optional_string_arg(arguments, "to"),
                optional_string_arg(arguments, "relationType"),
                workspace_id,
            )
        elif name == "search_relations_by_user":
            return handle_search_relations_by_user(
                user_id, optional_string_arg(arguments, "relationType"), workspace_id
            )
        elif name == "add_observation":
            return handle_add_observation(
                require_string_arg(arguments, "entityName"),
                arguments.get("observation"),
                workspace_id,
                user_id,
            )
        elif name == "add_observations":
            return handle_add_observations(arguments.get("observations"), workspace_id, user_id)
        elif name == "update_entity":
            return handle_update_entity(
                require_string_arg(arguments, "entityName"),
                arguments.get("newObservations"),
                arguments.get("metadata"),
                workspace_id,
                user_id,
            )
        elif name == "delete_entity":
            return handle_delete_entity(require_string_arg(arguments, "entityName"), workspace_id, user_id)
        elif name == "delete_entities":
            return handle_delete_entities(arguments.get("entityNames"), workspace_id, user_id)
        elif name == "delete_observations":
            return handle_delete_observations(arguments.get("deletions"), workspace_id, user_id)
        elif name == "delete_relations":
            return handle_delete_relations(arguments.get("relations"), workspace_id, user_id)
        elif name == "update_relation_strength":
            return handle_update_relation_strength(
                require_string_arg(arguments, "from"),
                require_string_arg(arguments, "to"),
                require_string_arg(arguments, "relationType"),
                arguments.get("strength"),
                workspace_id,
                user_id,
            )
        elif name == "get_stats":
            return handle_get_stats(workspace_id)
        elif name == "get_user_stats":
            return handle_get_user_stats(user_id, workspace_id)
        elif name == "clear_memory":
            return handle_clear_memory(workspace_id, user_id)
        elif name == "get_temporal_events":
            return handle_get_temporal_events(
                optional_string_arg(arguments, "startTime"),
                optional_string_arg(arguments, "endTime"),
                optional_string_arg(arguments, "entityName"),
                optional_string_arg(arguments, "relationType"),
                workspace_id,
                user_id,
            )
        elif name == "detect_duplicate_entities":
            return handle_detect_duplicate_entities(arguments.get("threshold"), workspace_id)
        elif name == "merge_entities":
            return handle_merge_entities(
                require_string_arg(arguments, "targetEntityName"),
                arguments.get("sourceEntityNames"),
                optional_string_arg(arguments, "mergeStrategy"),
                workspace_id,
                user_id,
            )
        elif name == "execute_batch_operations":
            return handle_execute_batch_operations(arguments.get("operations"), workspace_id, user_id)
        else:
            return error_response(ErrorCode.VALIDATION_ERROR, f"Unknown tool: {name}")

    except KmemError as e:
        return error_from_exception(e)
    except Exception as e:
        return error_response(ErrorCode.SYSTEM_ERROR, str(e), details={"type": type(e).__name__})


async def run_server():
    """Run the MCP server over stdio."""
    server = create_server()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main():
    """CLI entry point for the MCP server."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
