"""End-to-end tests for the kmem CLI.

Covers importing an export, querying the graph, merging duplicates and
reading the operation log back. Focuses on realistic flows over isolated units.
"""

import json
from pathlib import Path
from typing import List

from click.testing import CliRunner

from kmem.cli.main import cli


EXPORT = "\n".join(
    json.dumps(item)
    for item in [
        {"name": "John Smith", "entityType": "person", "observations": ["Engineer at Acme"],
         "createdAt": "2024-01-01T00:00:00.000Z", "updatedAt": "2024-01-01T00:00:00.000Z", "createdBy": "u1"},
        {"name": "Jon Smith", "entityType": "person", "observations": ["Engineer at Acme"],
         "createdAt": "2024-02-01T00:00:00.000Z", "updatedAt": "2024-02-01T00:00:00.000Z", "createdBy": "u2"},
        {"name": "Acme", "entityType": "organization", "observations": ["Software company"],
         "createdAt": "2024-01-01T00:00:00.000Z", "updatedAt": "2024-01-01T00:00:00.000Z"},
        {"from": "Jon Smith", "to": "Acme", "relationType": "works_at", "strength": 0.9,
         "createdAt": "2024-02-01T00:00:00.000Z", "updatedAt": "2024-02-01T00:00:00.000Z"},
    ]
)


def _invoke(runner: CliRunner, root: Path, args: List[str]):
    res = runner.invoke(cli, ["--backend", "file", "--path", str(root), *args], catch_exceptions=False)
    return res


def _import(runner: CliRunner, tmp_path: Path) -> Path:
    root = tmp_path / "store"
    source = tmp_path / "export.jsonl"
    source.write_text(EXPORT + "\n{not json\n")
    res = _invoke(runner, root, ["import", str(source)])
    assert res.exit_code == 0, res.output
    assert json.loads(res.output) == {
        "workspaceId": "default",
        "entityCount": 3,
        "relationCount": 1,
        "skippedLines": 1,
    }
    return root


def test_import_then_export_roundtrip(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)
    assert (root / "memory-default.jsonl").exists()

    res = _invoke(runner, root, ["export"])
    assert res.exit_code == 0, res.output
    assert res.output == EXPORT

    out = tmp_path / "graph.json"
    res = _invoke(runner, root, ["export", "--format", "json", "-o", str(out)])
    assert res.exit_code == 0, res.output
    assert "Exported 3 entities and 1 relations" in res.output
    data = json.loads(out.read_text())
    assert [e["name"] for e in data["entities"]] == ["John Smith", "Jon Smith", "Acme"]


def test_import_json_into_other_workspace_with_merge(tmp_path: Path) -> None:
    runner = CliRunner()
    root = tmp_path / "store"
    first = tmp_path / "first.json"
    first.write_text(json.dumps({"entities": [{"name": "A", "entityType": "t", "observations": ["one"]}]}))
    second = tmp_path / "second.json"
    second.write_text(json.dumps({
        "entities": [
            {"name": "A", "entityType": "t", "observations": ["other"]},
            {"name": "B", "entityType": "t", "observations": []},
        ],
        "relations": [{"from": "A", "to": "B", "relationType": "links"}],
    }))

    assert _invoke(runner, root, ["--workspace", "team", "import", str(first)]).exit_code == 0
    res = _invoke(runner, root, ["--workspace", "team", "import", "--merge", str(second)])
    assert res.exit_code == 0, res.output
    assert json.loads(res.output)["entityCount"] == 2

    res = _invoke(runner, root, ["--workspace", "team", "search", "one"])
    graph = json.loads(res.output)
    assert [e["name"] for e in graph["entities"]] == ["A"]
    assert not (root / "memory-default.jsonl").exists()


def test_stats_search_and_events(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)

    stats = json.loads(_invoke(runner, root, ["stats"]).output)
    assert stats["entityCount"] == 3
    assert stats["entityTypes"] == {"person": 2, "organization": 1}

    user_stats = json.loads(_invoke(runner, root, ["stats", "--user", "u2"]).output)
    assert user_stats["entityCount"] == 1

    graph = json.loads(_invoke(runner, root, ["search", "acme"]).output)
    assert len(graph["entities"]) == 3
    assert len(graph["relations"]) == 1

    events = json.loads(
        _invoke(runner, root, ["events", "--start", "2024-02-01T00:00:00Z", "--end", "2024-02-28T00:00:00Z"]).output
    )
    assert [e["name"] for e in events["entities"]] == ["Jon Smith"]
    assert events["relations"][0]["actionType"] == "created"


def test_duplicates_then_merge(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)

    groups = json.loads(_invoke(runner, root, ["duplicates"]).output)
    assert len(groups) == 1
    assert groups[0]["suggestedMergeTarget"] == "John Smith"

    res = _invoke(runner, root, ["merge", "John Smith", "Jon Smith", "--user", "ops"])
    assert res.exit_code == 0, res.output
    result = json.loads(res.output)
    assert result["relationsRewired"] == 1

    graph = json.loads(_invoke(runner, root, ["export", "--format", "json"]).output)
    assert [r["from"] for r in graph["relations"]] == ["John Smith"]
    assert "Jon Smith" not in [e["name"] for e in graph["entities"]]


def test_errors_exit_nonzero(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)

    res = _invoke(runner, root, ["merge", "John Smith", "Nobody"])
    assert res.exit_code == 1
    assert "Source entity 'Nobody' not found" in res.output

    res = _invoke(runner, root, ["duplicates", "--threshold", "2"])
    assert res.exit_code == 1
    assert "Threshold must be a number between 0.0 and 1.0" in res.output


def test_log_summary_and_errors(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)

    res = _invoke(runner, root, ["log", "summary"])
    assert res.exit_code == 0, res.output
    summary = json.loads(res.output)
    assert summary["phase_counts"] == {"load": 1, "save": 1, "mutate": 1}
    assert summary["operation_counts"] == {"replace_graph": 1}

    _invoke(runner, root, ["merge", "John Smith", "Nobody"])
    res = _invoke(runner, root, ["log", "errors", "--limit", "5"])
    assert res.exit_code == 0, res.output
    [line] = res.output.strip().splitlines()
    entry = json.loads(line)
    assert entry["error_type"] == "NotFoundError"
    assert entry["operation"] == "merge_entities"


def test_log_missing_database(tmp_path: Path) -> None:
    runner = CliRunner()
    res = _invoke(runner, tmp_path / "empty", ["log", "summary"])
    assert res.exit_code == 1
    assert "No log database" in res.output


def test_config_file_sets_workspace(tmp_path: Path) -> None:
    runner = CliRunner()
    root = _import(runner, tmp_path)
    config = tmp_path / "kmem.yaml"
    config.write_text(f"storage:\n  path: {root}\ndefaults:\n  workspace_id: default\nlogging:\n  enabled: false\n")

    res = runner.invoke(cli, ["--config", str(config), "stats"], catch_exceptions=False)
    assert res.exit_code == 0, res.output
    assert json.loads(res.output)["entityCount"] == 3


def test_invalid_config(tmp_path: Path) -> None:
    config = tmp_path / "kmem.yaml"
    config.write_text("defaults:\n  duplicate_threshold: 3\n")
    res = CliRunner().invoke(cli, ["--config", str(config), "stats"])
    assert res.exit_code == 1
    assert "Invalid configuration" in res.output
