"""
Pydantic models for captured MongoDB operations.

Each command shape the classifier recognizes is one model. A captured
document is decoded by trying the models in PRECEDENCE order; the first
that validates decides the operation kind. Models only check the fields
that identify a shape and let everything else through (extra="allow"),
so unusual but well-formed commands still classify.

Profiler entries (documents from system.profile) are modelled separately
by ProfileEntry and unwrapped into a bare command before classification.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from bson.son import SON
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class OperationKind(str, Enum):
    """
    Operation kinds a captured query can be classified as.

    Values are the server's own command spelling, which is also what
    appears in "Cannot explain cmd: ..." messages.
    """

    FIND = "find"
    COUNT = "count"
    DISTINCT = "distinct"
    DELETE = "delete"
    UPDATE = "update"
    GROUP = "group"
    FIND_AND_MODIFY = "findAndModify"
    AGGREGATE = "aggregate"
    INSERT = "insert"
    MAP_REDUCE = "mapReduce"
    GEO_NEAR = "geoNear"
    UNKNOWN = "unknown"

    @property
    def command_name(self) -> str:
        return self.value


@dataclass(frozen=True)
class ExplainRequest:
    """
    Everything needed to build the explain wire command.

    Attributes:
        kind: Classified operation kind
        command_name: Command name as the server spells it
        collection: Target collection (None when not determinable)
        database: Database recorded in the captured query, if any
        command: Sanitized command body, command name first
    """

    kind: OperationKind
    command_name: str | None
    collection: str | None
    database: str | None
    command: SON

    @property
    def is_unknown(self) -> bool:
        return self.kind is OperationKind.UNKNOWN


# =============================================================================
# Command variants
# =============================================================================


class CommandShape(BaseModel):
    """Base for bare command shapes."""

    # Only the server spelling may populate a field: a captured "target"
    # key must not pass for a command name.
    model_config = ConfigDict(
        extra="allow",
        arbitrary_types_allowed=True,
        frozen=True,
    )

    kind: ClassVar[OperationKind]
    # Keys the command name may appear under in captured documents
    name_keys: ClassVar[tuple[str, ...]]

    @property
    def collection(self) -> str | None:
        return getattr(self, "target", None)


class AggregateCommand(CommandShape):
    kind = OperationKind.AGGREGATE
    name_keys = ("aggregate",)

    # aggregate: 1 runs a collection-less pipeline
    target: str | int = Field(validation_alias="aggregate")
    pipeline: list[Any]

    @property
    def collection(self) -> str | None:
        return self.target if isinstance(self.target, str) else None


class MapReduceCommand(CommandShape):
    kind = OperationKind.MAP_REDUCE
    name_keys = ("mapReduce", "mapreduce")

    target: str = Field(validation_alias=AliasChoices("mapReduce", "mapreduce"))
    map: Any
    reduce: Any


class GeoNearCommand(CommandShape):
    kind = OperationKind.GEO_NEAR
    name_keys = ("geoNear", "geonear")

    target: str = Field(validation_alias=AliasChoices("geoNear", "geonear"))


class FindAndModifyCommand(CommandShape):
    kind = OperationKind.FIND_AND_MODIFY
    name_keys = ("findAndModify", "findandmodify")

    target: str = Field(
        validation_alias=AliasChoices("findAndModify", "findandmodify"),
    )


class GroupSpec(BaseModel):
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    ns: str
    key: Any = None
    initial: Any = None


class GroupCommand(CommandShape):
    kind = OperationKind.GROUP
    name_keys = ("group",)

    group: GroupSpec

    @property
    def collection(self) -> str | None:
        return self.group.ns


class DistinctCommand(CommandShape):
    kind = OperationKind.DISTINCT
    name_keys = ("distinct",)

    target: str = Field(validation_alias="distinct")
    key: str


class CountCommand(CommandShape):
    kind = OperationKind.COUNT
    name_keys = ("count",)

    target: str = Field(validation_alias="count")
    query: dict[str, Any] | None = None


class UpdateCommand(CommandShape):
    kind = OperationKind.UPDATE
    name_keys = ("update",)

    target: str = Field(validation_alias="update")
    updates: list[dict[str, Any]] = Field(min_length=1)


class DeleteCommand(CommandShape):
    kind = OperationKind.DELETE
    name_keys = ("delete",)

    target: str = Field(validation_alias="delete")
    deletes: list[dict[str, Any]] = Field(min_length=1)


class InsertCommand(CommandShape):
    kind = OperationKind.INSERT
    name_keys = ("insert",)

    target: str = Field(validation_alias="insert")
    documents: list[Any] | None = None


class FindCommand(CommandShape):
    kind = OperationKind.FIND
    name_keys = ("find",)

    target: str = Field(validation_alias="find")
    filter: dict[str, Any] | None = None


# Order matters: the first shape that validates wins. More specific
# commands come first so that e.g. a findAndModify carrying an "update"
# sub-document is never mistaken for an update command.
PRECEDENCE: tuple[type[CommandShape], ...] = (
    AggregateCommand,
    MapReduceCommand,
    GeoNearCommand,
    FindAndModifyCommand,
    GroupCommand,
    DistinctCommand,
    CountCommand,
    UpdateCommand,
    DeleteCommand,
    InsertCommand,
    FindCommand,
)


# =============================================================================
# Profiler envelope
# =============================================================================


class ProfileEntry(BaseModel):
    """
    One document from a database's system.profile collection.

    Servers before 3.6 log legacy fields (query, updateobj) and newer ones
    log the full command; both are accepted.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        arbitrary_types_allowed=True,
        frozen=True,
    )

    op: str
    ns: str
    query: Any = None
    command: Any = None
    updateobj: Any = None
    originating_command: Any = Field(default=None, alias="originatingCommand")

    @property
    def database(self) -> str | None:
        db = self.ns.split(".", 1)[0]
        return db or None

    @property
    def collection(self) -> str | None:
        parts = self.ns.split(".", 1)
        if len(parts) == 2 and parts[1]:
            return parts[1]
        return None

    @property
    def is_command_namespace(self) -> bool:
        return self.collection == "$cmd"
