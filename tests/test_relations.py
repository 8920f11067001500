"""Tests for relation store operations."""

import pytest

from kmem.core.errors import NotFoundError, ValidationError
from kmem.core.models import GraphDocument
from kmem.core.relations import (
    create_relations,
    delete_relations,
    search_relations,
    search_relations_by_user,
    update_relation_strength,
)


class TestCreateRelations:
    def test_default_strength_and_stamps(self):
        doc, created = create_relations(
            GraphDocument(), [{"from": "A", "to": "B", "relationType": "knows"}], user_id="u1"
        )
        relation = doc.relations[("A", "B", "knows")]
        assert created == [relation]
        assert relation.strength == 0.8
        assert relation.created_by == "u1"
        assert relation.created_at == relation.updated_at

    def test_custom_default_strength(self):
        doc, _ = create_relations(
            GraphDocument(), [{"from": "A", "to": "B", "relationType": "r"}], default_strength=0.5
        )
        assert doc.relations[("A", "B", "r")].strength == 0.5

    def test_strength_is_clamped(self):
        doc, _ = create_relations(
            GraphDocument(), [{"from": "A", "to": "B", "relationType": "r", "strength": 7}]
        )
        assert doc.relations[("A", "B", "r")].strength == 1.0

    def test_existing_triple_is_skipped(self, alice_doc):
        doc, created = create_relations(
            alice_doc, [{"from": "Alice", "to": "Acme", "relationType": "works_at", "strength": 0.1}]
        )
        assert created == []
        assert doc.relations[("Alice", "Acme", "works_at")].strength == 0.9

    def test_duplicates_within_one_call(self):
        rel = {"from": "A", "to": "B", "relationType": "r"}
        doc, created = create_relations(GraphDocument(), [rel, dict(rel)])
        assert len(created) == 1
        assert len(doc.relations) == 1

    def test_same_endpoints_different_type_are_distinct(self, alice_doc):
        doc, created = create_relations(
            alice_doc, [{"from": "Alice", "to": "Acme", "relationType": "founded"}]
        )
        assert len(created) == 1
        assert len(doc.relations) == 3

    def test_endpoints_need_not_exist(self):
        doc, created = create_relations(
            GraphDocument(), [{"from": "Ghost", "to": "Phantom", "relationType": "haunts"}]
        )
        assert len(created) == 1
        assert doc.entities == {}

    @pytest.mark.parametrize(
        "bad",
        [
            {"to": "B", "relationType": "r"},
            {"from": "A", "relationType": "r"},
            {"from": "A", "to": "B"},
            {"from": "A", "to": "B", "relationType": ""},
            {"from": "A", "to": "B", "relationType": "r", "strength": "high"},
            42,
        ],
    )
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValidationError):
            create_relations(GraphDocument(), [bad])


class TestSearchRelations:
    def test_by_from_substring(self, alice_doc):
        results = search_relations(alice_doc, from_name="ali")
        assert [r.key for r in results] == [("Alice", "Acme", "works_at")]

    def test_by_to(self, alice_doc):
        results = search_relations(alice_doc, to_name="Alice")
        assert [r.key for r in results] == [("Bob", "Alice", "knows")]

    def test_by_type_case_insensitive(self, alice_doc):
        assert len(search_relations(alice_doc, relation_type="WORKS")) == 1

    def test_filters_combine(self, alice_doc):
        assert search_relations(alice_doc, from_name="Bob", relation_type="works") == []

    def test_non_string_filter_rejected(self, alice_doc):
        with pytest.raises(ValidationError, match="relationType must be a string"):
            search_relations(alice_doc, relation_type=7)

    def test_by_user(self, alice_doc):
        assert [r.key for r in search_relations_by_user(alice_doc, "U2")] == [("Bob", "Alice", "knows")]

    def test_by_user_and_type(self, alice_doc):
        assert search_relations_by_user(alice_doc, "u1", relation_type="knows") == []

    def test_by_user_none_matches_all(self, alice_doc):
        assert len(search_relations_by_user(alice_doc, None)) == 2


class TestUpdateAndDelete:
    def test_update_strength(self, alice_doc):
        doc, relation = update_relation_strength(alice_doc, "Bob", "Alice", "knows", 1.4)
        assert relation.strength == 1.0
        assert relation.updated_at != "2024-03-01T00:00:00.000Z"
        assert alice_doc.relations[("Bob", "Alice", "knows")].strength == 0.5

    def test_update_strength_missing(self, alice_doc):
        with pytest.raises(NotFoundError):
            update_relation_strength(alice_doc, "Bob", "Acme", "knows", 0.5)

    def test_delete_exact_triples(self, alice_doc):
        doc, removed = delete_relations(
            alice_doc,
            [
                {"from": "Alice", "to": "Acme", "relationType": "works_at"},
                {"from": "Alice", "to": "Acme", "relationType": "nope"},
            ],
        )
        assert removed == 1
        assert list(doc.relations) == [("Bob", "Alice", "knows")]
