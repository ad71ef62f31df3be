"""
Package-level exception hierarchy for mongoexplain.

All exceptions inherit from MongoExplainError, enabling:
- Catching all mongoexplain errors with a single except clause
- Stable, comparable messages for the explain error taxonomy
- Structured serialization via to_dict() for JSON error output

Hierarchy:
    MongoExplainError
    ├── ParseError                  – Malformed version or constraint text
    │   └── VersionParseError
    ├── ConfigurationError          – Invalid configuration
    ├── PolicyError                 – Policy file cannot be loaded
    └── ExplainError                – One explain attempt failed (has a kind)
        ├── DecodeError             – Captured query is not a document
        ├── ClassificationUnknownError
        ├── PolicyRejectedError     – Rejected before contacting the server
        └── DriverError             – Server or transport failure
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mongoexplain.normalizer import ErrorKind


class MongoExplainError(Exception):
    """
    Base exception for all mongoexplain errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Parse Errors ─────────────────────────────────────────────────────────


class ParseError(MongoExplainError):
    """
    Input text could not be parsed.

    Attributes:
        source: The text that failed to parse.
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


class VersionParseError(ParseError):
    """A server version or a version constraint is not valid syntax."""
    pass


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(MongoExplainError):
    """
    Error in mongoexplain configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


class PolicyError(MongoExplainError):
    """
    A policy override file cannot be loaded or parsed.

    NOT raised for policy rejections of a query (those are
    PolicyRejectedError).
    """
    pass


# ── Explain Errors ───────────────────────────────────────────────────────


class ExplainError(MongoExplainError):
    """
    Terminal failure of a single explain attempt.

    The message is rendered by mongoexplain.normalizer from a fixed
    template for the error kind, so it can be compared verbatim.

    Attributes:
        kind: The ErrorKind of this failure.
    """

    def __init__(self, kind: "ErrorKind", message: str) -> None:
        self.kind = kind
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExplainError):
            return NotImplemented
        return self.kind == other.kind and self.message == other.message

    def __hash__(self) -> int:
        return hash((self.kind, self.message))

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        return result


class DecodeError(ExplainError):
    """
    The captured query cannot be decoded into a document.

    Attributes:
        detail: Decoder error text.
    """

    def __init__(self, kind: "ErrorKind", message: str, detail: str) -> None:
        self.detail = detail
        super().__init__(kind, message)


class ClassificationUnknownError(ExplainError):
    """
    The document shape matches no known operation kind.

    Attributes:
        command_name: First key of the command body, if any.
    """

    def __init__(
        self,
        kind: "ErrorKind",
        message: str,
        command_name: str | None = None,
    ) -> None:
        self.command_name = command_name
        super().__init__(kind, message)


class PolicyRejectedError(ExplainError):
    """
    The policy rejected the operation before any server contact.

    Attributes:
        command_name: Server spelling of the rejected command.
        server_version: Version the decision was made against.
    """

    def __init__(
        self,
        kind: "ErrorKind",
        message: str,
        command_name: str,
        server_version: str | None = None,
    ) -> None:
        self.command_name = command_name
        self.server_version = server_version
        super().__init__(kind, message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["command_name"] = self.command_name
        result["server_version"] = self.server_version
        return result


class DriverError(ExplainError):
    """
    The server or transport failed while running the explain.

    The underlying exception is kept in ``original_error`` (and as
    ``__cause__`` when raised via normalize()).

    Attributes:
        original_error: The exception raised by the session.
        code: Server error code, when the driver reports one.
    """

    def __init__(
        self,
        kind: "ErrorKind",
        message: str,
        original_error: BaseException,
        code: int | None = None,
    ) -> None:
        self.original_error = original_error
        self.code = code
        super().__init__(kind, message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["code"] = self.code
        result["original_error_type"] = self.original_error.__class__.__name__
        return result
