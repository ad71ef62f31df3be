"""
Shared fixtures for mongoexplain tests.

FakeSession stands in for a server: it reports a configurable version,
records every command it is sent and answers explains with a
queryPlanner-shaped reply.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest
from bson import json_util
from bson.son import SON

from mongoexplain.config import reset_config

FIXTURES_DIR = Path(__file__).parent / "fixtures"

CAPTURE_VERSIONS = ("2.6.12", "3.2.16", "3.5.11")
SERVER_VERSIONS = ("2.6.12", "3.0.15", "3.2.16", "3.4.7", "3.5.11")

_JSON_OPTIONS = json_util.JSONOptions(
    json_mode=json_util.JSONMode.RELAXED,
    document_class=SON,
)


def load_captured_queries() -> dict[str, SON]:
    """Load profiler entries keyed by <case>_<capture version>."""
    path = FIXTURES_DIR / "profile" / "captured_queries.json"
    return json_util.loads(path.read_text(), json_options=_JSON_OPTIONS)


def load_captured_query(name: str) -> SON:
    return load_captured_queries()[name]


def captured_query_text(name: str) -> str:
    """One captured query re-encoded as Extended JSON."""
    return json_util.dumps(load_captured_query(name))


class FakeSession:
    """In-memory Session implementation."""

    def __init__(
        self,
        version: str = "3.4.7",
        error: BaseException | None = None,
        version_error: BaseException | None = None,
        default_database: str = "test",
    ) -> None:
        self.version = version
        self.error = error
        self.version_error = version_error
        self.default_database = default_database
        self.commands: list[tuple[str, Mapping[str, Any]]] = []
        self.legacy_explains: list[tuple[str, Mapping[str, Any]]] = []
        self.version_calls = 0

    def run_command(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        self.commands.append((database, command))
        if self.error is not None:
            raise self.error

        explained = command["explain"]
        name = next(iter(explained))
        collection = explained[name]
        if isinstance(collection, Mapping):
            # group carries its namespace in the group document
            collection = collection.get("ns")
        namespace = f"{database or self.default_database}.{collection}"
        return SON([
            ("queryPlanner", SON([
                ("plannerVersion", 1),
                ("namespace", namespace),
                ("indexFilterSet", False),
                ("winningPlan", SON([("stage", "COLLSCAN"), ("direction", "forward")])),
                ("rejectedPlans", []),
            ])),
            ("serverInfo", SON([("host", "fake"), ("port", 27017), ("version", self.version)])),
            ("ok", 1.0),
        ])

    def legacy_explain(self, database: str, command: Mapping[str, Any]) -> Mapping[str, Any]:
        self.legacy_explains.append((database, command))
        if self.error is not None:
            raise self.error

        # $explain output of the pre-3.0 query system
        return SON([
            ("cursor", "BasicCursor"),
            ("isMultiKey", False),
            ("n", 0),
            ("nscannedObjects", 0),
            ("nscanned", 0),
            ("indexBounds", SON()),
            ("server", "fake:27017"),
        ])

    def server_version(self) -> str:
        self.version_calls += 1
        if self.version_error is not None:
            raise self.version_error
        return self.version


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def captured_queries() -> dict[str, SON]:
    return load_captured_queries()


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from MONGOEXPLAIN_* variables and the config cache."""
    for key in (
        "URI",
        "VERBOSITY",
        "POLICY_FILE",
        "SERVER_SELECTION_TIMEOUT_MS",
        "LOG_LEVEL",
        "CONFIG_FILE",
    ):
        monkeypatch.delenv(f"MONGOEXPLAIN_{key}", raising=False)
    reset_config()
    yield
    reset_config()
