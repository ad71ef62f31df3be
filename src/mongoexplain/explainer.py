"""
Explain executor: captured query in, server explain plan out.

Pipeline for one explain call:

    raw query ──decode──> document ──classify──> ExplainRequest
        ──policy(kind[, server version])──> rejected? raise, no explain sent
        ──build {explain: <command>, verbosity}──> session.run_command
          (finds on servers before 3.2: session.legacy_explain)
        ──> reply returned unmodified (re-encoded in the input format)

Every failure leaves as an ExplainError from mongoexplain.normalizer, so
callers can compare error text verbatim across server versions. Nothing
here retries; timeouts and reconnects are the session's business.

Usage:
    from mongoexplain import Explainer, PyMongoSession

    session = PyMongoSession.from_uri("mongodb://localhost:27017")
    explainer = Explainer(session)
    plan = explainer.explain("shop", b'{"find": "orders", "filter": {"status": "open"}}')
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, Union

import bson
from bson import json_util
from bson.codec_options import CodecOptions
from bson.errors import BSONError
from bson.son import SON

from mongoexplain.classifier import ExplainRequest, OperationKind, classify
from mongoexplain.config import Config, get_config
from mongoexplain.exceptions import ExplainError
from mongoexplain.normalizer import (
    decode_error,
    normalize,
    rejection_error,
    unknown_error,
)
from mongoexplain.policy import ExplainPolicy, RejectionReason, load_policy
from mongoexplain.session import Session
from mongoexplain.version import ServerVersion

logger = logging.getLogger(__name__)

# The explain command only takes a verbosity field from 3.0 on
VERBOSITY_CONSTRAINT = ">= 3.0"
# Servers in this range explain find commands; older ones need $explain
FIND_COMMAND_CONSTRAINT = ">= 3.2"

_JSON_INPUT_OPTIONS = json_util.JSONOptions(
    json_mode=json_util.JSONMode.RELAXED,
    document_class=SON,
)
_BSON_CODEC_OPTIONS: CodecOptions = CodecOptions(document_class=SON)

RawQuery = Union[bytes, bytearray, str, Mapping[str, Any]]


class QueryFormat(str, Enum):
    """Encoding of a raw captured query; replies use the same one."""

    JSON = "json"
    BSON = "bson"
    DOCUMENT = "document"


def decode_query(query: RawQuery) -> tuple[Any, QueryFormat]:
    """
    Decode a raw captured query.

    Bytes carrying a consistent BSON length prefix are read as BSON; other
    bytes and all strings as MongoDB Extended JSON. Mappings pass through.

    Raises:
        DecodeError: If the input cannot be parsed.
    """
    if isinstance(query, Mapping):
        return query, QueryFormat.DOCUMENT

    if isinstance(query, (bytes, bytearray)):
        data = bytes(query)
        if _looks_like_bson(data):
            try:
                return bson.decode(data, codec_options=_BSON_CODEC_OPTIONS), QueryFormat.BSON
            except (BSONError, ValueError, TypeError) as e:
                raise decode_error(str(e) or "invalid BSON") from e
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise decode_error(str(e)) from e
        return _loads_json(text), QueryFormat.JSON

    if isinstance(query, str):
        return _loads_json(query), QueryFormat.JSON

    raise decode_error(f"unsupported query type {type(query).__name__}")


def encode_reply(reply: Mapping[str, Any], fmt: QueryFormat) -> bytes:
    """Encode a reply document in the given format (documents go as JSON)."""
    if fmt is QueryFormat.BSON:
        return bson.encode(reply)
    return json_util.dumps(reply, json_options=json_util.RELAXED_JSON_OPTIONS).encode("utf-8")


def _loads_json(text: str) -> Any:
    if not text.strip():
        raise decode_error("empty query")
    try:
        return json_util.loads(text, json_options=_JSON_INPUT_OPTIONS)
    except (ValueError, TypeError, BSONError) as e:
        raise decode_error(str(e)) from e


def _looks_like_bson(data: bytes) -> bool:
    # int32 little-endian total length, trailing NUL
    return (
        len(data) >= 5
        and int.from_bytes(data[:4], "little") == len(data)
        and data[-1:] == b"\x00"
    )


class Explainer:
    """
    Explains captured queries against one connected server.

    The server version is resolved on first need (or injected) and kept for
    the lifetime of the instance. Connecting to a different server means
    building a new Explainer. Instances hold no other mutable state, so
    concurrent explain() calls are independent; the one-time version fill
    may race harmlessly.

    Rejections that hold on every server version (aggregate, geoNear,
    mapReduce, unknown commands) are decided without asking the server for
    its version, so their text does not depend on server availability.

    Example:
        >>> explainer = Explainer(session, server_version="3.2.16")
        >>> explainer.check(b'{"aggregate": "orders", "pipeline": []}')
        # raises PolicyRejectedError("Cannot explain cmd: aggregate")
    """

    def __init__(
        self,
        session: Session,
        *,
        policy: ExplainPolicy | None = None,
        config: Config | None = None,
        server_version: str | ServerVersion | None = None,
    ) -> None:
        self.session = session
        self.config = config or get_config()
        self.policy = policy or load_policy(self.config.policy_file)
        if isinstance(server_version, str):
            server_version = ServerVersion.parse(server_version)
        self._server_version: ServerVersion | None = server_version

    @property
    def server_version(self) -> ServerVersion:
        """
        Version of the connected server, fetched once.

        Raises:
            DriverError: If the session cannot report a valid version.
        """
        if self._server_version is None:
            try:
                raw = self.session.server_version()
                version = ServerVersion.parse(raw)
            except ExplainError:
                raise
            except Exception as e:
                raise normalize(e) from e
            logger.info("Connected server version %s", raw)
            self._server_version = version
        return self._server_version

    def check(self, query: RawQuery) -> ExplainRequest:
        """
        Decode, classify and apply the policy without running the explain.

        Returns:
            The request that explain() would send.

        Raises:
            DecodeError, ClassificationUnknownError, PolicyRejectedError,
            DriverError (only if the server version cannot be fetched).
        """
        document, _ = decode_query(query)
        return self._check_document(document)

    def explain_document(self, database: str, query: RawQuery) -> Mapping[str, Any]:
        """
        Explain a captured query and return the decoded server reply.

        Args:
            database: Target database; "" uses the captured namespace or
                the session default
            query: Captured query (Extended JSON, BSON or a document)

        Raises:
            ExplainError: On any failure (see mongoexplain.normalizer).
        """
        document, _ = decode_query(query)
        return self._explain(database, document)

    def explain(self, database: str, query: RawQuery) -> bytes:
        """
        Explain a captured query and return the encoded server reply.

        The reply is encoded in the input's format: BSON in, BSON out;
        Extended JSON (or a document) in, relaxed Extended JSON out. Key
        order is the server's.

        Raises:
            ExplainError: On any failure (see mongoexplain.normalizer).
        """
        document, fmt = decode_query(query)
        reply = self._explain(database, document)
        return encode_reply(reply, fmt)

    def build_command(self, request: ExplainRequest) -> SON:
        """Wrap a classified command in the explain command for this server."""
        command = SON([("explain", request.command)])
        if self.server_version.satisfies(VERBOSITY_CONSTRAINT):
            command["verbosity"] = self.config.verbosity.value
        return command

    def uses_legacy_explain(self, request: ExplainRequest) -> bool:
        """Whether a find must be explained through a $explain cursor."""
        return (
            request.kind is OperationKind.FIND
            and not self.server_version.satisfies(FIND_COMMAND_CONSTRAINT)
        )

    def _explain(self, database: str, document: Any) -> Mapping[str, Any]:
        request = self._check_document(document)
        target = database or request.database or ""
        legacy = self.uses_legacy_explain(request)
        command = None if legacy else self.build_command(request)

        logger.info(
            "Explaining %s on %s.%s",
            request.kind.value,
            target or "<default>",
            request.collection,
        )
        try:
            if command is None:
                return self.session.legacy_explain(target, request.command)
            return self.session.run_command(target, command)
        except Exception as e:
            logger.info("Explain of %s failed: %s", request.kind.value, e)
            raise normalize(e) from e

    def _check_document(self, document: Any) -> ExplainRequest:
        kind, request = classify(document)
        # Version-independent verdicts never wait on the server
        version = self.server_version if self.policy.needs_version(kind) else None
        allowed, reason = self.policy.allowed(kind, version)
        if allowed:
            return request

        raw_version = version.raw if version is not None else None
        logger.debug("Rejected %s on server %s (%s)", kind.value, raw_version, reason)
        if reason is RejectionReason.UNKNOWN or kind is OperationKind.UNKNOWN:
            raise unknown_error(request.command_name)
        raise rejection_error(
            reason.error_kind,
            request.command_name or kind.command_name,
            server_version=raw_version,
        )
