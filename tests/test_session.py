"""
Tests for the pymongo-backed session.
"""

from __future__ import annotations

from unittest.mock import MagicMock

from bson.son import SON

from mongoexplain.session import FALLBACK_DATABASE, PyMongoSession, find_options


def make_client(default_database: str = FALLBACK_DATABASE) -> MagicMock:
    client = MagicMock()
    client.get_default_database.return_value.name = default_database
    client.server_info.return_value = {"version": "3.4.7", "ok": 1.0}
    return client


class TestPyMongoSession:

    def test_server_version(self):
        assert PyMongoSession(make_client()).server_version() == "3.4.7"

    def test_named_database(self):
        client = make_client()
        command = SON([("explain", {"find": "coll"})])

        PyMongoSession(client).run_command("shop", command)

        client.__getitem__.assert_called_once_with("shop")
        database = client.__getitem__.return_value
        assert database.command.call_args.args == (command,)

    def test_default_database(self):
        client = make_client(default_database="from_uri")

        PyMongoSession(client).run_command("", SON([("ping", 1)]))

        client.get_default_database.assert_called_once_with(default=FALLBACK_DATABASE)
        client.__getitem__.assert_called_once_with("from_uri")

    def test_close_owned_client_only(self):
        borrowed = make_client()
        PyMongoSession(borrowed).close()
        borrowed.close.assert_not_called()

        owned = make_client()
        with PyMongoSession(owned, owns_client=True):
            pass
        owned.close.assert_called_once()

    def test_legacy_explain(self):
        client = make_client()
        command = SON([
            ("find", "coll"),
            ("filter", {"a": 1}),
            ("sort", SON([("k", -1)])),
            ("limit", 5),
        ])
        collection = client.__getitem__.return_value.get_collection.return_value
        collection.find.return_value.explain.return_value = {"cursor": "BasicCursor"}

        reply = PyMongoSession(client).legacy_explain("shop", command)

        assert reply == {"cursor": "BasicCursor"}
        client.__getitem__.assert_called_once_with("shop")
        assert client.__getitem__.return_value.get_collection.call_args.args == ("coll",)
        collection.find.assert_called_once_with({"a": 1}, sort=[("k", -1)], limit=5)

    def test_legacy_explain_without_filter(self):
        client = make_client(default_database="from_uri")
        collection = client.__getitem__.return_value.get_collection.return_value

        PyMongoSession(client).legacy_explain("", SON([("find", "coll")]))

        client.__getitem__.assert_called_once_with("from_uri")
        collection.find.assert_called_once_with({})


class TestFindOptions:

    def test_keywords(self):
        command = SON([
            ("find", "coll"),
            ("filter", {"a": 1}),
            ("projection", {"a": 1}),
            ("skip", 10),
            ("batchSize", 2),
            ("maxTimeMS", 500),
            ("returnKey", True),
            ("showRecordId", True),
        ])

        assert find_options(command) == {
            "projection": {"a": 1},
            "skip": 10,
            "batch_size": 2,
            "max_time_ms": 500,
            "return_key": True,
            "show_record_id": True,
        }

    def test_documents_become_pair_lists(self):
        command = SON([
            ("find", "coll"),
            ("sort", SON([("a", 1), ("b", -1)])),
            ("hint", {"a": 1}),
            ("min", {"a": 0}),
            ("max", {"a": 9}),
        ])

        options = find_options(command)

        assert options["sort"] == [("a", 1), ("b", -1)]
        assert options["hint"] == [("a", 1)]
        assert options["min"] == [("a", 0)]
        assert options["max"] == [("a", 9)]

    def test_index_name_hint_kept(self):
        assert find_options({"find": "coll", "hint": "a_1"}) == {"hint": "a_1"}

    def test_unsupported_fields_ignored(self):
        assert find_options({"find": "coll", "singleBatch": True, "filter": {}}) == {}
