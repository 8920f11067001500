"""Tests for the graph document model and timestamp helpers."""

import json
from datetime import datetime, timezone

import pytest

from kmem.core.errors import ValidationError
from kmem.core.models import (
    Entity,
    GraphDocument,
    Relation,
    clamp_strength,
    format_timestamp,
    parse_timestamp,
    unique_observations,
    utc_now,
)


class TestTimestamps:
    def test_format_uses_millis_and_z(self):
        dt = datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2024-01-02T03:04:05.678Z"

    def test_utc_now_round_trips(self):
        now = utc_now()
        assert now.endswith("Z")
        assert format_timestamp(parse_timestamp(now)) == now

    def test_parse_z_suffix(self):
        assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_offset_converted_to_utc(self):
        parsed = parse_timestamp("2024-01-01T02:00:00+02:00")
        assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2024-01-01T00:00:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("bad", ["yesterday", "", "2024-13-01T00:00:00Z", None])
    def test_parse_rejects_garbage(self, bad):
        with pytest.raises(ValidationError):
            parse_timestamp(bad)


class TestHelpers:
    def test_clamp_strength(self):
        assert clamp_strength(1.5) == 1.0
        assert clamp_strength(-0.2) == 0.0
        assert clamp_strength(0.3) == 0.3
        assert clamp_strength(1) == 1.0

    @pytest.mark.parametrize("bad", ["0.5", None, True, [0.5]])
    def test_clamp_strength_rejects_non_numbers(self, bad):
        with pytest.raises(ValidationError):
            clamp_strength(bad)

    def test_unique_observations_keeps_first_seen_order(self):
        assert unique_observations(["a", "b"], ["b", "c", "a"], ["d"]) == ["a", "b", "c", "d"]


class TestEntity:
    def test_to_dict_omits_unset_fields(self):
        data = Entity("Alice", "person", ["x"]).to_dict()
        assert data == {"name": "Alice", "entityType": "person", "observations": ["x"]}

    def test_from_dict_dedupes_observations(self):
        entity = Entity.from_dict({"name": "A", "entityType": "t", "observations": ["x", "x", "y"]})
        assert entity.observations == ["x", "y"]

    def test_metadata_round_trip(self):
        entity = Entity("A", "t", metadata={"k": 1}, created_by="u1")
        again = Entity.from_dict(entity.to_dict())
        assert again == entity


class TestRelation:
    def test_key_is_triple(self):
        assert Relation("A", "B", "knows").key == ("A", "B", "knows")

    def test_to_dict_always_has_strength(self):
        data = Relation("A", "B", "knows").to_dict()
        assert data["strength"] == 0.8
        assert data["from"] == "A" and data["to"] == "B"

    def test_from_dict_clamps_strength(self):
        relation = Relation.from_dict({"from": "A", "to": "B", "relationType": "r", "strength": 3})
        assert relation.strength == 1.0


class TestGraphDocument:
    def test_copy_is_independent(self, alice_doc):
        clone = alice_doc.copy()
        clone.entities["Alice"].observations.append("changed")
        del clone.relations[("Alice", "Acme", "works_at")]

        assert "changed" not in alice_doc.entities["Alice"].observations
        assert ("Alice", "Acme", "works_at") in alice_doc.relations

    def test_from_dict_first_triple_wins(self):
        doc = GraphDocument.from_dict({
            "entities": [],
            "relations": [
                {"from": "A", "to": "B", "relationType": "r", "strength": 0.1},
                {"from": "A", "to": "B", "relationType": "r", "strength": 0.9},
            ],
        })
        assert len(doc.relations) == 1
        assert doc.relations[("A", "B", "r")].strength == 0.1

    def test_to_jsonl_writes_entities_first(self, alice_doc):
        lines = alice_doc.to_jsonl().splitlines()
        assert len(lines) == 5
        kinds = ["entityType" in json.loads(line) for line in lines]
        assert kinds == [True, True, True, False, False]

    def test_from_jsonl_round_trip(self, alice_doc):
        doc, skipped = GraphDocument.from_jsonl(alice_doc.to_jsonl())
        assert skipped == []
        assert doc == alice_doc

    def test_from_jsonl_skips_bad_lines(self):
        text = "\n".join([
            "not json",
            json.dumps({"foo": 1}),
            json.dumps([1, 2]),
            json.dumps({"name": "A", "entityType": "t", "observations": []}),
            "",
            json.dumps({"from": "A", "to": "B", "relationType": "r"}),
        ])
        doc, skipped = GraphDocument.from_jsonl(text)
        assert list(doc.entities) == ["A"]
        assert list(doc.relations) == [("A", "B", "r")]
        assert len(skipped) == 3

    def test_empty(self):
        assert GraphDocument().is_empty()
