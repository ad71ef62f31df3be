"""
Session collaborator: the only way mongoexplain talks to a server.

The explainer depends on three capabilities, captured by the Session
protocol:
- run_command(database, command): send a command, get the reply document
- legacy_explain(database, find_command): explain a find through a query
  cursor with the $explain modifier, for servers without an explain
  command that accepts find (before 3.2)
- server_version(): the build version string of the connected server

Connection management, retries and timeouts belong to the driver behind
the session. Errors it raises are propagated unchanged and only wrapped
by the normalizer.

Usage:
    from mongoexplain.session import PyMongoSession

    session = PyMongoSession.from_uri("mongodb://localhost:27017/shop")
    session.server_version()            # '3.4.7'
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from bson.codec_options import CodecOptions
from bson.son import SON
from pymongo import MongoClient

logger = logging.getLogger(__name__)

# Database used when neither the caller nor the URI names one
FALLBACK_DATABASE = "test"

# Replies decode into SON so the server's key order survives
_REPLY_CODEC_OPTIONS: CodecOptions = CodecOptions(document_class=SON)

# find command fields and the Collection.find() keyword they map to
_FIND_OPTIONS: dict[str, str] = {
    "projection": "projection",
    "skip": "skip",
    "limit": "limit",
    "batchSize": "batch_size",
    "sort": "sort",
    "hint": "hint",
    "maxTimeMS": "max_time_ms",
    "comment": "comment",
    "min": "min",
    "max": "max",
    "returnKey": "return_key",
    "showRecordId": "show_record_id",
}

# Options pymongo wants as (key, value) lists rather than documents
_PAIR_LIST_OPTIONS = frozenset({"sort", "hint", "min", "max"})


@runtime_checkable
class Session(Protocol):
    """Request/response access to one server."""

    def run_command(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        """Run ``command`` against ``database`` ("" = session default)."""
        ...

    def legacy_explain(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        """Explain a find command through a $explain query cursor."""
        ...

    def server_version(self) -> str:
        """Build version string reported by the server."""
        ...


class PyMongoSession:
    """
    Session backed by a pymongo MongoClient.

    The client is owned by the caller unless the session was created
    through from_uri(); close() only closes clients the session owns.
    """

    def __init__(self, client: MongoClient, *, owns_client: bool = False) -> None:
        self.client = client
        self._owns_client = owns_client

    @classmethod
    def from_uri(cls, uri: str, **client_kwargs: Any) -> "PyMongoSession":
        """Create a session with its own client for ``uri``."""
        client: MongoClient = MongoClient(uri, **client_kwargs)
        return cls(client, owns_client=True)

    def default_database(self) -> str:
        return self.client.get_default_database(default=FALLBACK_DATABASE).name

    def run_command(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        name = database or self.default_database()
        logger.debug("Running %s on database %s", next(iter(command), "?"), name)
        return self.client[name].command(
            command,
            codec_options=_REPLY_CODEC_OPTIONS,
        )

    def legacy_explain(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        name = database or self.default_database()
        logger.debug("Explaining find on %s.%s with $explain", name, command["find"])
        collection = self.client[name].get_collection(
            command["find"],
            codec_options=_REPLY_CODEC_OPTIONS,
        )
        cursor = collection.find(command.get("filter") or {}, **find_options(command))
        return cursor.explain()

    def server_version(self) -> str:
        return str(self.client.server_info()["version"])

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "PyMongoSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def find_options(command: Mapping[str, Any]) -> dict[str, Any]:
    """Collection.find() keyword arguments for a find command."""
    options: dict[str, Any] = {}
    for field, keyword in _FIND_OPTIONS.items():
        if field not in command:
            continue
        value = command[field]
        if keyword in _PAIR_LIST_OPTIONS and isinstance(value, Mapping):
            value = list(value.items())
        options[keyword] = value
    return options
