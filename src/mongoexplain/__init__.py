"""mongoexplain - Explain captured MongoDB queries across server versions."""

__version__ = "0.1.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from mongoexplain.exceptions import (
    MongoExplainError,
    ParseError,
    VersionParseError,
    ConfigurationError,
    PolicyError,
    ExplainError,
    DecodeError,
    ClassificationUnknownError,
    PolicyRejectedError,
    DriverError,
)

from mongoexplain.classifier import (
    ExplainRequest,
    OperationKind,
    classify,
)
from mongoexplain.config import (
    Config,
    Verbosity,
    get_config,
)
from mongoexplain.explainer import (
    Explainer,
    QueryFormat,
    decode_query,
)
from mongoexplain.normalizer import (
    ErrorKind,
    render,
)
from mongoexplain.policy import (
    DEFAULT_RULES,
    Decision,
    ExplainPolicy,
    PolicyRule,
    RejectionReason,
    load_policy,
)
from mongoexplain.session import (
    PyMongoSession,
    Session,
)
from mongoexplain.version import (
    ServerVersion,
    satisfies,
)

__all__ = [
    # Exception hierarchy
    "MongoExplainError",
    "ParseError",
    "VersionParseError",
    "ConfigurationError",
    "PolicyError",
    "ExplainError",
    "DecodeError",
    "ClassificationUnknownError",
    "PolicyRejectedError",
    "DriverError",
    # Core
    "Explainer",
    "classify",
    "satisfies",
    # Models
    "ExplainRequest",
    "OperationKind",
    "QueryFormat",
    "ServerVersion",
    "decode_query",
    # Policy
    "DEFAULT_RULES",
    "Decision",
    "ExplainPolicy",
    "PolicyRule",
    "RejectionReason",
    "load_policy",
    # Errors
    "ErrorKind",
    "render",
    # Session
    "PyMongoSession",
    "Session",
    # Configuration
    "Config",
    "Verbosity",
    "get_config",
    # Metadata
    "__version__",
    "__license__",
]
