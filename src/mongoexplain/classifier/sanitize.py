"""
Rebuild captured command bodies into something the explain command accepts.

Captured commands carry session and routing fields added by drivers and
mongos. The server rejects most of them when nested inside "explain", so
they are dropped, and the command name is moved to the first position
under its canonical spelling.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bson.son import SON

# Fields the server refuses inside an explain body
SESSION_FIELDS: frozenset[str] = frozenset({
    "$db",
    "lsid",
    "$clusterTime",
    "$readPreference",
    "txnNumber",
    "autocommit",
    "startTransaction",
    "$client",
    "$configServerState",
    "shardVersion",
    "databaseVersion",
})


def sanitize_command(
    body: Mapping[str, Any],
    name_keys: tuple[str, ...],
    canonical_name: str,
) -> SON:
    """
    Copy a command body with its name first and session fields removed.

    Args:
        body: Captured command document (not modified)
        name_keys: Keys the command name may be stored under
        canonical_name: Spelling to emit

    Returns:
        A new SON document.
    """
    command = SON()
    for key in name_keys:
        if key in body:
            command[canonical_name] = body[key]
            break

    for key, value in body.items():
        if key in name_keys or key in SESSION_FIELDS:
            continue
        # Legacy drivers logged ntoreturn=-1 for single-batch finds,
        # which the find command rejects.
        if key == "ntoreturn" and isinstance(value, (int, float)) and value < 0:
            continue
        command[key] = value
    return command


def strip_session_fields(body: Mapping[str, Any]) -> SON:
    """Copy a command body keeping key order, minus session fields."""
    return SON(
        (key, value) for key, value in body.items() if key not in SESSION_FIELDS
    )
