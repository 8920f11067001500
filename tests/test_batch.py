"""Tests for batch execution."""

import pytest

from kmem.core.batch import execute_batch
from kmem.core.errors import ValidationError
from kmem.core.models import GraphDocument


class TestExecuteBatch:
    def test_failure_is_isolated(self):
        doc, result = execute_batch(
            GraphDocument(),
            [
                {"type": "create_entity", "data": {"name": "X", "entityType": "t", "observations": []}},
                {"type": "delete_entity", "data": {"entityName": "Missing"}},
                {"type": "create_entity", "data": {"name": "Y", "entityType": "t", "observations": []}},
            ],
        )

        assert result.successful == 2
        assert result.failed == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("delete_entity: ")
        assert "Missing" in result.errors[0]
        assert result.results[1] is None
        assert set(doc.entities) == {"X", "Y"}

    def test_operations_see_earlier_results(self):
        doc, result = execute_batch(
            GraphDocument(),
            [
                {"type": "create_entity", "data": {"name": "A", "entityType": "t", "observations": []}},
                {"type": "create_relation", "data": {"from": "A", "to": "B", "relationType": "r"}},
                {"type": "update_entity", "data": {"entityName": "A", "newObservations": ["note"], "metadata": {"k": 1}}},
                {"type": "delete_entity", "data": {"entityName": "A"}},
            ],
        )
        assert result.successful == 4
        assert doc.entities == {}
        assert doc.relations == {}
        assert result.results[3] is True

    def test_user_id_per_operation_and_default(self):
        doc, _ = execute_batch(
            GraphDocument(),
            [
                {"type": "create_entity", "data": {"name": "A", "entityType": "t", "observations": []}, "userId": "op-user"},
                {"type": "create_entity", "data": {"name": "B", "entityType": "t", "observations": []}},
            ],
            default_user_id="default-user",
        )
        assert doc.entities["A"].created_by == "op-user"
        assert doc.entities["B"].created_by == "default-user"

    def test_unknown_type_and_bad_data(self):
        doc, result = execute_batch(
            GraphDocument(),
            [
                {"type": "explode", "data": {}},
                {"type": "create_entity", "data": "nope"},
                "not even an object",
            ],
        )
        assert result.successful == 0
        assert result.failed == 3
        assert result.errors[0] == "explode: Unknown operation type: explode"

    def test_input_document_untouched(self, alice_doc):
        before = alice_doc.copy()
        execute_batch(alice_doc, [{"type": "delete_entity", "data": {"entityName": "Alice"}}])
        assert alice_doc == before

    def test_rejects_non_list(self):
        with pytest.raises(ValidationError):
            execute_batch(GraphDocument(), {"type": "create_entity"})

    def test_to_dict_serializes_results(self):
        _, result = execute_batch(
            GraphDocument(),
            [{"type": "create_entity", "data": {"name": "A", "entityType": "t", "observations": []}}],
        )
        data = result.to_dict()
        assert data["successful"] == 1
        assert data["results"][0][0]["name"] == "A"

    def test_malformed_update_is_isolated(self):
        doc, result = execute_batch(
            GraphDocument(),
            [
                {"type": "create_entity", "data": {"name": "X", "entityType": "t", "observations": []}},
                {"type": "update_entity", "data": {"entityName": "X", "newObservations": [["nested"]]}},
                {"type": "create_entity", "data": {"name": "Y", "entityType": "t", "observations": []}},
            ],
        )
        assert result.successful == 2
        assert result.failed == 1
        assert result.errors == ["update_entity: newObservations must be an array of strings"]
        assert set(doc.entities) == {"X", "Y"}
        assert doc.entities["X"].observations == []

    def test_unhashable_type_is_isolated(self):
        _, result = execute_batch(
            GraphDocument(),
            [
                {"type": ["create_entity"], "data": {}},
                {"type": "create_entity", "data": {"name": "A", "entityType": "t", "observations": []}},
            ],
        )
        assert result.successful == 1
        assert result.failed == 1
