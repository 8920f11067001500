import json
from pathlib import Path
from typing import Any, Dict, Optional

import click

from kmem.core.config import KmemConfig, load_config
from kmem.core.errors import KmemError
from kmem.core.models import GraphDocument
from kmem.core.observability import ObservabilityLogger, create_logger
from kmem.core.storage import STORAGE_BACKENDS, create_storage
from kmem.core.workspace import Workspace


# -------------------------
# Helpers
# -------------------------


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _workspace(ctx: click.Context) -> Workspace:
    obj: Dict[str, Any] = ctx.obj
    config: KmemConfig = obj["config"]
    if "workspace" not in obj:
        obj["workspace"] = Workspace.from_config(
            config,
            create_storage(config),
            obj.get("workspace_id"),
            logger=create_logger(config),
        )
    return obj["workspace"]


def _run(fn, *args, **kwargs):
    """Call fn, surfacing kmem errors as click errors (exit code 1)."""
    try:
        return fn(*args, **kwargs)
    except KmemError as e:
        message = e.message if not e.hint else f"{e.message} ({e.hint})"
        raise click.ClickException(message)


# -------------------------
# CLI
# -------------------------


@click.group()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None, help="Path to kmem.yaml")
@click.option("--workspace", "workspace_id", default=None, help="Workspace id (defaults to config)")
@click.option("--backend", type=click.Choice(STORAGE_BACKENDS), default=None, help="Storage backend")
@click.option("--path", "storage_path", type=click.Path(path_type=Path), default=None, help="Storage root directory")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    workspace_id: Optional[str],
    backend: Optional[str],
    storage_path: Optional[Path],
) -> None:
    """kmem CLI.

    Inspect and maintain workspace knowledge graphs, or serve them over MCP.
    """
    overrides: Dict[str, Any] = {}
    if backend:
        overrides.setdefault("storage", {})["backend"] = backend
    if storage_path:
        overrides.setdefault("storage", {})["path"] = str(storage_path.resolve())

    try:
        config = load_config(config_path, cli_overrides=overrides)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["workspace_id"] = workspace_id


# ---- serve ----


@cli.command("serve")
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the MCP server on stdio."""
    import asyncio

    from kmem.mcp import server

    server.configure(ctx.obj["config"])
    asyncio.run(server.run_server())


# ---- graph commands ----


@cli.command("stats")
@click.option("--user", "user_id", default=None, help="Show stats for what this user created")
@click.pass_context
def stats(ctx: click.Context, user_id: Optional[str]) -> None:
    """Entity/relation counts for the workspace."""
    ws = _workspace(ctx)
    if user_id:
        _echo_json(_run(ws.get_user_stats, user_id))
    else:
        _echo_json(_run(ws.get_stats))


@cli.command("search")
@click.argument("query")
@click.pass_context
def search(ctx: click.Context, query: str) -> None:
    """Free-text search over names, types and observations."""
    result = _run(_workspace(ctx).search_nodes, query)
    _echo_json(result.to_dict())


@cli.command("duplicates")
@click.option("--threshold", type=float, default=None, help="Similarity threshold (defaults to config)")
@click.pass_context
def duplicates(ctx: click.Context, threshold: Optional[float]) -> None:
    """List groups of likely-duplicate entities."""
    groups = _run(_workspace(ctx).detect_duplicates, threshold)
    _echo_json([g.to_dict() for g in groups])


@cli.command("merge")
@click.argument("target")
@click.argument("sources", nargs=-1, required=True)
@click.option(
    "--strategy",
    type=click.Choice(["combine", "replace"]),
    default="combine",
    show_default=True,
)
@click.option("--user", "user_id", default=None, help="Acting user")
@click.pass_context
def merge(ctx: click.Context, target: str, sources, strategy: str, user_id: Optional[str]) -> None:
    """Merge SOURCES into TARGET."""
    result = _run(_workspace(ctx).merge_entities, target, list(sources), strategy, user_id)
    _echo_json(result.to_dict())


@cli.command("events")
@click.option("--start", default=None, help="Window start (ISO 8601)")
@click.option("--end", default=None, help="Window end (ISO 8601)")
@click.option("--entity", "entity_name", default=None, help="Entity name filter")
@click.option("--relation-type", default=None, help="Relation type filter")
@click.option("--user", "user_id", default=None, help="Creator filter")
@click.pass_context
def events(
    ctx: click.Context,
    start: Optional[str],
    end: Optional[str],
    entity_name: Optional[str],
    relation_type: Optional[str],
    user_id: Optional[str],
) -> None:
    """What was created or updated in a time window."""
    result = _run(_workspace(ctx).get_temporal_events, start, end, entity_name, relation_type, user_id)
    _echo_json(result.to_dict())


@cli.command("export")
@click.option("--output", "-o", type=click.Path(path_type=Path), default=None, help="Write to file instead of stdout")
@click.option("--format", "fmt", type=click.Choice(["jsonl", "json"]), default="jsonl", show_default=True)
@click.pass_context
def export(ctx: click.Context, output: Optional[Path], fmt: str) -> None:
    """Export the workspace graph."""
    doc = _run(_workspace(ctx).read_graph)
    text = doc.to_jsonl() if fmt == "jsonl" else json.dumps(doc.to_dict(), indent=2) + "\n"

    if output:
        output.write_text(text, encoding="utf-8")
        click.echo(f"Exported {len(doc.entities)} entities and {len(doc.relations)} relations to {output}")
    else:
        click.echo(text, nl=False)


@cli.command("import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--merge/--replace", "merge_existing", default=False, help="Merge into the existing graph or replace it")
@click.pass_context
def import_graph(ctx: click.Context, file: Path, merge_existing: bool) -> None:
    """Load a JSONL (or JSON) export into the workspace."""
    text = file.read_text(encoding="utf-8")
    if file.suffix == ".json":
        try:
            incoming = GraphDocument.from_dict(json.loads(text))
        except ValueError as e:
            raise click.ClickException(f"Invalid JSON graph: {e}")
        skipped = []
    else:
        incoming, skipped = GraphDocument.from_jsonl(text)

    ws = _workspace(ctx)
    if merge_existing:
        doc = _run(ws.read_graph)
        for entity in incoming.entities.values():
            if entity.name not in doc.entities:
                doc.add_entity(entity)
        for relation in incoming.relations.values():
            if relation.key not in doc.relations:
                doc.add_relation(relation)
        incoming = doc

    _run(ws.replace_graph, incoming)
    _echo_json({
        "workspaceId": ws.workspace_id,
        "entityCount": len(incoming.entities),
        "relationCount": len(incoming.relations),
        "skippedLines": len(skipped),
    })


# ---- log commands ----


@cli.group()
def log() -> None:
    """Operation logs (summary, errors)."""


def _open_log(ctx: click.Context, db: Optional[Path]) -> ObservabilityLogger:
    config: KmemConfig = ctx.obj["config"]
    db = db or config.log_db_path
    if not db.exists():
        raise click.ClickException(f"No log database at {db}")
    return ObservabilityLogger(db)


@log.command("summary")
@click.option("--db", type=click.Path(path_type=Path), default=None, help="Path to logs.db (defaults to config)")
@click.option("--session", default=None, help="Session ID (defaults to the most recent session)")
@click.pass_context
def log_summary(ctx: click.Context, db: Optional[Path], session: Optional[str]) -> None:
    logger = _open_log(ctx, db)
    summary = logger.get_session_summary(session or logger.latest_session())
    _echo_json(summary)


@log.command("errors")
@click.option("--db", type=click.Path(path_type=Path), default=None, help="Path to logs.db (defaults to config)")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def log_errors(ctx: click.Context, db: Optional[Path], limit: int) -> None:
    logger = _open_log(ctx, db)
    for entry in logger.get_errors(limit=limit):
        click.echo(json.dumps({"ts": entry.ts, "session": entry.session, **entry.data}, default=str))


if __name__ == "__main__":
    cli()
