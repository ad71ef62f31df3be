"""
Command classifier for captured MongoDB operations.

This module handles:
- Unwrapping profiler entries (system.profile documents) into commands
- Rewriting legacy OP_QUERY finds into find commands
- Deciding the operation kind by trying each command shape in order
- Producing a sanitized ExplainRequest for the executor

Classification is a total function over decodable input: anything that
matches no known shape comes back as OperationKind.UNKNOWN, never as an
exception. The input document is never modified.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from bson.son import SON
from pydantic import ValidationError

from mongoexplain.classifier.models import (
    PRECEDENCE,
    ExplainRequest,
    OperationKind,
    ProfileEntry,
)
from mongoexplain.classifier.sanitize import sanitize_command, strip_session_fields

logger = logging.getLogger(__name__)

# Legacy query modifiers and their find command equivalents
_LEGACY_MODIFIERS: dict[str, str] = {
    "orderby": "sort",
    "$orderby": "sort",
    "$hint": "hint",
    "$maxTimeMS": "maxTimeMS",
    "$comment": "comment",
    "$max": "max",
    "$min": "min",
    "$returnKey": "returnKey",
    "$showDiskLoc": "showRecordId",
}

_QUERY_WRAPPERS = ("query", "$query")


def classify(document: Any) -> tuple[OperationKind, ExplainRequest]:
    """
    Classify a captured query and build its explain request.

    Accepts either a bare command document ({"find": "orders", ...}) or a
    profiler entry ({"op": "query", "ns": "shop.orders", ...}).

    Args:
        document: Decoded captured query

    Returns:
        (kind, request). For unrecognized shapes kind is UNKNOWN and the
        request carries the command body as found.

    Example:
        >>> kind, request = classify({"find": "orders", "filter": {"status": "open"}})
        >>> kind
        <OperationKind.FIND: 'find'>
        >>> request.collection
        'orders'
    """
    if not isinstance(document, Mapping):
        logger.debug("Captured query is a %s, not a document", type(document).__name__)
        request = _unknown_request(SON(), database=None)
        return request.kind, request

    entry = _as_profile_entry(document)
    if entry is not None:
        body = unwrap_profile_entry(entry)
        database = entry.database
        if body is None:
            logger.debug("Profiler entry op=%r has no explainable body", entry.op)
            request = _unknown_request(SON(), database=database)
            return request.kind, request
    else:
        body = document
        database = None

    request = classify_command(body, database=database)
    return request.kind, request


def classify_command(
    body: Mapping[str, Any],
    database: str | None = None,
) -> ExplainRequest:
    """
    Classify a bare command document.

    Shapes are tried in PRECEDENCE order, so the result does not depend
    on the order of keys in the document.
    """
    if database is None:
        db_field = body.get("$db")
        database = db_field if isinstance(db_field, str) and db_field else None

    for shape in PRECEDENCE:
        try:
            parsed = shape.model_validate(dict(body))
        except ValidationError:
            continue

        command = sanitize_command(body, shape.name_keys, shape.kind.command_name)
        logger.debug(
            "Classified command as %s (collection=%s)",
            shape.kind.value,
            parsed.collection,
        )
        return ExplainRequest(
            kind=shape.kind,
            command_name=shape.kind.command_name,
            collection=parsed.collection,
            database=database,
            command=command,
        )

    return _unknown_request(body, database=database)


def unwrap_profile_entry(entry: ProfileEntry) -> Mapping[str, Any] | None:
    """
    Turn a profiler entry into the command it recorded.

    Returns None when the entry does not carry enough to rebuild a
    command (unsupported op, missing namespace).
    """
    collection = entry.collection
    op = entry.op

    if op == "query":
        body = _first_mapping(entry.command, entry.query)
        if body is None:
            body = SON()
        if "find" in body or entry.is_command_namespace:
            return _unwrap_query_wrapper(body)
        if collection is None:
            return None
        return legacy_find_command(collection, body)

    if op == "update":
        spec = _first_mapping(entry.command)
        if spec is None:
            spec = SON([
                ("q", _mapping_or_empty(entry.query)),
                ("u", _mapping_or_empty(entry.updateobj)),
            ])
        if "updates" in spec:
            return spec
        if collection is None:
            return None
        return SON([("update", collection), ("updates", [spec])])

    if op == "remove":
        spec = _first_mapping(entry.command)
        if spec is None:
            spec = SON([("q", _mapping_or_empty(entry.query))])
        if "deletes" in spec:
            return spec
        if collection is None:
            return None
        if "limit" not in spec:
            spec = SON(spec)
            spec["limit"] = 0
        return SON([("delete", collection), ("deletes", [spec])])

    if op == "insert":
        body = _first_mapping(entry.command, entry.query)
        if body is not None and "insert" in body:
            return body
        if collection is None:
            return None
        documents = [body] if body else []
        return SON([("insert", collection), ("documents", documents)])

    if op == "command":
        body = _first_mapping(entry.command, entry.query)
        if body is None:
            return None
        return _unwrap_query_wrapper(body)

    if op == "getmore":
        body = _first_mapping(entry.originating_command)
        if body is None:
            return None
        return _unwrap_query_wrapper(body)

    return None


def legacy_find_command(collection: str, body: Mapping[str, Any]) -> SON:
    """
    Rewrite a legacy OP_QUERY body into a find command.

    The body is either the bare filter, or a wrapper holding the filter
    under query/$query next to modifiers such as orderby.
    """
    wrapper_key = next((k for k in _QUERY_WRAPPERS if k in body), None)
    if wrapper_key is None or not isinstance(body[wrapper_key], Mapping):
        return SON([("find", collection), ("filter", body)])

    command = SON([("find", collection), ("filter", body[wrapper_key])])
    for key, value in body.items():
        target = _LEGACY_MODIFIERS.get(key)
        if target is not None:
            command[target] = value
    return command


def _as_profile_entry(document: Mapping[str, Any]) -> ProfileEntry | None:
    if "op" not in document or "ns" not in document:
        return None
    try:
        return ProfileEntry.model_validate(dict(document))
    except ValidationError:
        return None


def _unwrap_query_wrapper(body: Mapping[str, Any]) -> Mapping[str, Any]:
    # mongos logs read-preference routed commands as {$query: {cmd}, ...}
    first_key = next(iter(body), None)
    if first_key in _QUERY_WRAPPERS and isinstance(body[first_key], Mapping):
        return body[first_key]
    return body


def _first_mapping(*candidates: Any) -> Mapping[str, Any] | None:
    for candidate in candidates:
        if isinstance(candidate, Mapping) and candidate:
            return candidate
    return None


def _mapping_or_empty(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else SON()


def _unknown_request(body: Mapping[str, Any], database: str | None) -> ExplainRequest:
    first_key = next(iter(body), None)
    command_name = first_key if isinstance(first_key, str) else None
    logger.debug("Unrecognized command shape (first key %r)", command_name)
    return ExplainRequest(
        kind=OperationKind.UNKNOWN,
        command_name=command_name,
        collection=None,
        database=database,
        command=strip_session_fields(body),
    )
