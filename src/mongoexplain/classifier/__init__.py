"""Captured query classification."""

from mongoexplain.classifier.classifier import (
    classify,
    classify_command,
    legacy_find_command,
    unwrap_profile_entry,
)
from mongoexplain.classifier.models import (
    PRECEDENCE,
    ExplainRequest,
    OperationKind,
    ProfileEntry,
)

__all__ = [
    "classify",
    "classify_command",
    "legacy_find_command",
    "unwrap_profile_entry",
    "ExplainRequest",
    "OperationKind",
    "ProfileEntry",
    "PRECEDENCE",
]
