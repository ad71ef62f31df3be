"""
Error normalizer: one stable taxonomy for every explain failure.

Compatibility tests compare error text verbatim across server versions, so
each ErrorKind renders from exactly one template defined here. Nothing
else in the package formats explain error messages.

Usage:
    from mongoexplain.normalizer import ErrorKind, render, rejection_error

    render(ErrorKind.POLICY_REJECTED_PERMANENT, command="aggregate")
    # 'Cannot explain cmd: aggregate'
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pymongo.errors import OperationFailure, PyMongoError

from mongoexplain.exceptions import (
    ClassificationUnknownError,
    DecodeError,
    DriverError,
    ExplainError,
    PolicyRejectedError,
)

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Fixed set of explain failure kinds."""

    DECODE_ERROR = "decode_error"
    CLASSIFICATION_UNKNOWN = "classification_unknown"
    POLICY_REJECTED_PERMANENT = "policy_rejected_permanent"
    POLICY_REJECTED_BY_VERSION = "policy_rejected_by_version"
    DRIVER_ERROR = "driver_error"


UNKNOWN_COMMAND_NAME = "unknown"

MESSAGE_TEMPLATES: dict[ErrorKind, str] = {
    ErrorKind.DECODE_ERROR: "Cannot decode query: {detail}",
    ErrorKind.CLASSIFICATION_UNKNOWN: "Cannot explain cmd: {command}",
    ErrorKind.POLICY_REJECTED_PERMANENT: "Cannot explain cmd: {command}",
    ErrorKind.POLICY_REJECTED_BY_VERSION: (
        "Only update and delete write ops can be explained"
    ),
    ErrorKind.DRIVER_ERROR: "{detail}",
}


def render(kind: ErrorKind, **fields: Any) -> str:
    """
    Render the message for an error kind.

    Raises:
        KeyError: If the template needs a field that was not given.
    """
    return MESSAGE_TEMPLATES[kind].format(**fields)


def decode_error(detail: str) -> DecodeError:
    return DecodeError(
        ErrorKind.DECODE_ERROR,
        render(ErrorKind.DECODE_ERROR, detail=detail),
        detail=detail,
    )


def unknown_error(command_name: str | None) -> ClassificationUnknownError:
    name = command_name or UNKNOWN_COMMAND_NAME
    return ClassificationUnknownError(
        ErrorKind.CLASSIFICATION_UNKNOWN,
        render(ErrorKind.CLASSIFICATION_UNKNOWN, command=name),
        command_name=command_name,
    )


def rejection_error(
    kind: ErrorKind,
    command_name: str,
    server_version: str | None = None,
) -> PolicyRejectedError:
    """Build a policy rejection for either permanent or by-version kind."""
    if kind not in (
        ErrorKind.POLICY_REJECTED_PERMANENT,
        ErrorKind.POLICY_REJECTED_BY_VERSION,
    ):
        raise ValueError(f"Not a policy rejection kind: {kind}")
    return PolicyRejectedError(
        kind,
        render(kind, command=command_name),
        command_name=command_name,
        server_version=server_version,
    )


def normalize(error: BaseException) -> ExplainError:
    """
    Map any failure raised while explaining onto the taxonomy.

    ExplainErrors pass through untouched. Everything else is a failure of
    the session collaborator and becomes a DriverError whose message is
    the original error text.
    """
    if isinstance(error, ExplainError):
        return error

    code: int | None = None
    if isinstance(error, OperationFailure):
        code = error.code
        detail = _operation_failure_text(error)
    else:
        detail = str(error) or error.__class__.__name__

    if not isinstance(error, PyMongoError):
        logger.debug("Wrapping non-driver session error %s", type(error).__name__)

    return DriverError(
        ErrorKind.DRIVER_ERROR,
        render(ErrorKind.DRIVER_ERROR, detail=detail),
        original_error=error,
        code=code,
    )


def _operation_failure_text(error: OperationFailure) -> str:
    # str(OperationFailure) may carry a ", full error: {...}" suffix
    details = error.details or {}
    errmsg = details.get("errmsg")
    if isinstance(errmsg, str) and errmsg:
        return errmsg
    return str(error)
