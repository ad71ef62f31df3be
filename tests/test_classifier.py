"""
Tests for the command classifier.

Test philosophy:
- Every recognized shape classifies to its kind, from bare commands and
  from profiler entries of every capture era
- Classification never depends on key order
- Unrecognized input classifies as unknown instead of raising
- The captured document is never modified
"""

from __future__ import annotations

import copy

import pytest
from bson.son import SON

from mongoexplain.classifier import (
    OperationKind,
    ProfileEntry,
    classify,
    classify_command,
    legacy_find_command,
    unwrap_profile_entry,
)
from mongoexplain.classifier.sanitize import SESSION_FIELDS, sanitize_command

from conftest import CAPTURE_VERSIONS, load_captured_query

CASE_KINDS = {
    "aggregate": OperationKind.AGGREGATE,
    "count": OperationKind.COUNT,
    "count_with_query": OperationKind.COUNT,
    "delete": OperationKind.DELETE,
    "delete_all": OperationKind.DELETE,
    "distinct": OperationKind.DISTINCT,
    "find_empty": OperationKind.FIND,
    "find": OperationKind.FIND,
    "find_sorted": OperationKind.FIND,
    "findandmodify": OperationKind.FIND_AND_MODIFY,
    "geonear": OperationKind.GEO_NEAR,
    "group": OperationKind.GROUP,
    "insert": OperationKind.INSERT,
    "mapreduce": OperationKind.MAP_REDUCE,
    "update": OperationKind.UPDATE,
}


# =============================================================================
# Bare commands
# =============================================================================


class TestBareCommands:

    @pytest.mark.parametrize(
        "document,kind",
        [
            ({"find": "orders", "filter": {"status": "open"}}, OperationKind.FIND),
            ({"find": "orders"}, OperationKind.FIND),
            ({"count": "orders", "query": {"a": 1}}, OperationKind.COUNT),
            ({"distinct": "orders", "key": "status"}, OperationKind.DISTINCT),
            ({"aggregate": "orders", "pipeline": []}, OperationKind.AGGREGATE),
            ({"aggregate": 1, "pipeline": [{"$currentOp": {}}]}, OperationKind.AGGREGATE),
            (
                {"mapReduce": "orders", "map": "function() {}", "reduce": "function() {}"},
                OperationKind.MAP_REDUCE,
            ),
            (
                {"mapreduce": "orders", "map": "function() {}", "reduce": "function() {}"},
                OperationKind.MAP_REDUCE,
            ),
            ({"geoNear": "places", "near": [0, 0]}, OperationKind.GEO_NEAR),
            (
                {"findAndModify": "orders", "query": {}, "update": {"$set": {"a": 1}}},
                OperationKind.FIND_AND_MODIFY,
            ),
            ({"findandmodify": "orders", "remove": True}, OperationKind.FIND_AND_MODIFY),
            ({"group": {"ns": "orders", "key": {"a": 1}, "initial": {}}}, OperationKind.GROUP),
            (
                {"update": "orders", "updates": [{"q": {}, "u": {"$set": {"a": 1}}}]},
                OperationKind.UPDATE,
            ),
            (
                {"delete": "orders", "deletes": [{"q": {}, "limit": 0}]},
                OperationKind.DELETE,
            ),
            ({"insert": "orders", "documents": [{"a": 1}]}, OperationKind.INSERT),
        ],
    )
    def test_kind(self, document, kind):
        result_kind, request = classify(document)

        assert result_kind is kind
        assert request.kind is kind
        assert request.command_name == kind.command_name

    def test_collection(self):
        _, request = classify({"find": "orders", "filter": {}})
        assert request.collection == "orders"

    def test_group_collection_from_spec(self):
        _, request = classify({"group": {"ns": "orders", "key": {"a": 1}}})
        assert request.collection == "orders"

    def test_collectionless_aggregate(self):
        _, request = classify({"aggregate": 1, "pipeline": []})
        assert request.collection is None

    def test_database_from_db_field(self):
        _, request = classify({"find": "orders", "$db": "shop"})
        assert request.database == "shop"

    def test_no_database_without_db_field(self):
        _, request = classify({"find": "orders"})
        assert request.database is None

    def test_explicit_database_wins_over_db_field(self):
        request = classify_command({"find": "orders", "$db": "shop"}, database="other")
        assert request.database == "other"


class TestPrecedence:

    def test_key_order_does_not_matter(self):
        forward = SON([("find", "orders"), ("filter", {"a": 1})])
        backward = SON([("filter", {"a": 1}), ("find", "orders")])

        assert classify(forward)[0] is classify(backward)[0] is OperationKind.FIND

    def test_command_name_moves_first(self):
        document = SON([("filter", {"a": 1}), ("limit", 5), ("find", "orders")])

        _, request = classify(document)

        assert list(request.command) == ["find", "filter", "limit"]

    def test_find_and_modify_not_mistaken_for_update(self):
        document = SON([
            ("update", {"$set": {"a": 1}}),
            ("findAndModify", "orders"),
            ("query", {}),
        ])
        assert classify(document)[0] is OperationKind.FIND_AND_MODIFY

    def test_canonical_spelling(self):
        _, request = classify({"findandmodify": "orders", "remove": True})

        assert "findAndModify" in request.command
        assert "findandmodify" not in request.command

    def test_wrong_field_type_does_not_match(self):
        # count whose target is a document is not a count
        kind, _ = classify({"count": {"a": 1}})
        assert kind is OperationKind.UNKNOWN

    def test_empty_updates_is_not_an_update(self):
        kind, _ = classify({"update": "orders", "updates": []})
        assert kind is OperationKind.UNKNOWN


# =============================================================================
# Unknown input
# =============================================================================


class TestUnknown:

    def test_unrecognized_command(self):
        kind, request = classify({"ping": 1})

        assert kind is OperationKind.UNKNOWN
        assert request.is_unknown
        assert request.command_name == "ping"
        assert request.collection is None

    def test_empty_document(self):
        kind, request = classify({})

        assert kind is OperationKind.UNKNOWN
        assert request.command_name is None

    @pytest.mark.parametrize("document", [[1, 2], "find", 42, None])
    def test_non_document(self, document):
        kind, request = classify(document)

        assert kind is OperationKind.UNKNOWN
        assert request.command_name is None

    def test_profile_entry_with_unsupported_op(self):
        kind, request = classify({"op": "killcursors", "ns": "test.coll"})

        assert kind is OperationKind.UNKNOWN
        assert request.database == "test"

    def test_target_key_is_not_a_command_name(self):
        kind, _ = classify({"target": "orders", "filter": {}})
        assert kind is OperationKind.UNKNOWN


# =============================================================================
# Profiler entries
# =============================================================================


class TestProfileEntries:

    @pytest.mark.parametrize("capture", CAPTURE_VERSIONS)
    @pytest.mark.parametrize("case", sorted(CASE_KINDS))
    def test_captured_kind(self, case, capture):
        kind, request = classify(load_captured_query(f"{case}_{capture}"))

        assert kind is CASE_KINDS[case]
        assert request.database == "test"

    @pytest.mark.parametrize("capture", CAPTURE_VERSIONS)
    def test_find_collection(self, capture):
        _, request = classify(load_captured_query(f"find_{capture}"))

        assert request.collection == "coll"
        assert request.command["find"] == "coll"
        assert request.command["filter"] == {"a": 1}

    def test_legacy_update_rebuilt(self):
        _, request = classify(load_captured_query("update_2.6.12"))

        assert request.command["update"] == "coll"
        [statement] = request.command["updates"]
        assert statement["q"] == {"a": {"$gte": 2}}
        assert statement["u"] == {"$set": {"c": 1}, "$inc": {"a": -10}}

    def test_command_update_rebuilt(self):
        _, request = classify(load_captured_query("update_3.5.11"))

        [statement] = request.command["updates"]
        assert statement["multi"] is True

    def test_legacy_delete_removes_all_matches(self):
        _, request = classify(load_captured_query("delete_2.6.12"))

        [statement] = request.command["deletes"]
        assert statement["limit"] == 0

    def test_legacy_insert_wraps_document(self):
        _, request = classify(load_captured_query("insert_2.6.12"))

        assert request.command["insert"] == "coll"
        assert len(request.command["documents"]) == 1

    def test_session_fields_dropped(self):
        _, request = classify(load_captured_query("count_with_query_3.5.11"))

        assert not SESSION_FIELDS & set(request.command)
        assert request.database == "test"

    def test_negative_ntoreturn_dropped(self):
        _, request = classify(load_captured_query("find_sorted_3.2.16"))

        assert "ntoreturn" not in request.command
        assert request.command["limit"] == 100

    def test_command_namespace_database(self):
        entry = ProfileEntry.model_validate({"op": "command", "ns": "shop.$cmd"})

        assert entry.database == "shop"
        assert entry.is_command_namespace

    def test_getmore_uses_originating_command(self):
        entry = {
            "op": "getmore",
            "ns": "test.coll",
            "originatingCommand": {"find": "coll", "filter": {"a": 1}},
        }
        kind, request = classify(entry)

        assert kind is OperationKind.FIND
        assert request.command["filter"] == {"a": 1}

    def test_mongos_query_wrapper(self):
        entry = {
            "op": "command",
            "ns": "test.$cmd",
            "command": {"$query": {"count": "coll", "query": {}}, "$readPreference": {}},
        }
        kind, request = classify(entry)

        assert kind is OperationKind.COUNT
        assert request.collection == "coll"

    def test_unwrap_returns_none_without_collection(self):
        entry = ProfileEntry.model_validate({"op": "remove", "ns": "test", "query": {}})
        assert unwrap_profile_entry(entry) is None


class TestLegacyFind:

    def test_bare_filter(self):
        command = legacy_find_command("coll", {"a": 1})

        assert command == SON([("find", "coll"), ("filter", {"a": 1})])

    def test_orderby_becomes_sort(self):
        _, request = classify(load_captured_query("find_sorted_2.6.12"))

        assert request.command["sort"] == {"k": -1}
        assert "$and" in request.command["filter"]
        assert "$orderby" not in request.command

    def test_modifiers_mapped(self):
        command = legacy_find_command(
            "coll",
            {"query": {"a": 1}, "$hint": {"a": 1}, "$maxTimeMS": 10, "$showDiskLoc": True},
        )

        assert command["filter"] == {"a": 1}
        assert command["hint"] == {"a": 1}
        assert command["maxTimeMS"] == 10
        assert command["showRecordId"] is True

    def test_field_named_query_with_scalar_is_a_filter(self):
        command = legacy_find_command("coll", {"query": "text"})
        assert command["filter"] == {"query": "text"}


# =============================================================================
# Purity
# =============================================================================


class TestPurity:

    @pytest.mark.parametrize("name", ["find_sorted_3.2.16", "count_with_query_3.5.11", "update_2.6.12"])
    def test_input_not_mutated(self, name):
        document = load_captured_query(name)
        snapshot = copy.deepcopy(document)

        classify(document)

        assert document == snapshot
        assert list(document) == list(snapshot)

    def test_repeatable(self):
        document = load_captured_query("distinct_3.2.16")

        first = classify(document)
        second = classify(document)

        assert first[0] is second[0]
        assert first[1].command == second[1].command

    def test_sanitize_returns_new_document(self):
        body = SON([("count", "coll"), ("lsid", {"id": 1})])

        command = sanitize_command(body, ("count",), "count")

        assert command is not body
        assert "lsid" in body
        assert "lsid" not in command
