"""
Explainability policy: which operation kinds a server can explain.

The policy is a declarative table of rules keyed by operation kind and an
optional version constraint. Supporting a new server quirk is a table
edit; neither the classifier nor the executor branch on versions.

Rules are evaluated top-down and the first rule whose kind matches and
whose constraint (if any) the server satisfies decides. A kind with no
matching rule is rejected as unknown.

Usage:
    from mongoexplain.policy import ExplainPolicy
    from mongoexplain.version import ServerVersion

    policy = ExplainPolicy()
    allowed, reason = policy.allowed(OperationKind.INSERT, ServerVersion.parse("3.2.16"))
    # (False, RejectionReason.BY_VERSION)

Override file format (YAML or JSON), rules are placed ahead of defaults:
    rules:
      - kind: count
        decision: reject_by_version
        constraint: "< 3.0"
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import yaml

from mongoexplain.classifier.models import OperationKind
from mongoexplain.exceptions import PolicyError, VersionParseError
from mongoexplain.normalizer import ErrorKind
from mongoexplain.version import ServerVersion, parse_constraint

logger = logging.getLogger(__name__)


class Decision(str, Enum):
    """Outcome a policy rule prescribes."""

    ALLOW = "allow"
    REJECT_PERMANENT = "reject_permanent"
    REJECT_BY_VERSION = "reject_by_version"
    REJECT_UNKNOWN = "reject_unknown"


class RejectionReason(str, Enum):
    """Why a kind was rejected; selects the rendered error."""

    PERMANENT = "permanent"
    BY_VERSION = "by_version"
    UNKNOWN = "unknown"

    @property
    def error_kind(self) -> ErrorKind:
        return _REASON_ERROR_KINDS[self]


_REASON_ERROR_KINDS: dict[RejectionReason, ErrorKind] = {
    RejectionReason.PERMANENT: ErrorKind.POLICY_REJECTED_PERMANENT,
    RejectionReason.BY_VERSION: ErrorKind.POLICY_REJECTED_BY_VERSION,
    RejectionReason.UNKNOWN: ErrorKind.CLASSIFICATION_UNKNOWN,
}

_DECISION_REASONS: dict[Decision, RejectionReason | None] = {
    Decision.ALLOW: None,
    Decision.REJECT_PERMANENT: RejectionReason.PERMANENT,
    Decision.REJECT_BY_VERSION: RejectionReason.BY_VERSION,
    Decision.REJECT_UNKNOWN: RejectionReason.UNKNOWN,
}


@dataclass(frozen=True)
class PolicyRule:
    """
    One row of the policy table.

    Attributes:
        kind: Operation kind the rule applies to
        decision: What to do when the rule matches
        constraint: Version range the server must satisfy for the rule
            to match; None matches every version
    """

    kind: OperationKind
    decision: Decision
    constraint: str | None = None

    def __post_init__(self) -> None:
        if self.constraint is not None:
            # Fail at table construction, not at the first explain call
            parse_constraint(self.constraint)

    def matches(self, kind: OperationKind, version: ServerVersion | None) -> bool:
        """
        Check whether the rule applies.

        Raises:
            ValueError: If the rule has a constraint and no version is given.
        """
        if kind is not self.kind:
            return False
        if self.constraint is None:
            return True
        if version is None:
            raise ValueError(f"Rule for {kind.value} needs a server version")
        return version.satisfies(self.constraint)

    @property
    def reason(self) -> RejectionReason | None:
        return _DECISION_REASONS[self.decision]

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "decision": self.decision.value,
            "constraint": self.constraint,
        }


DEFAULT_RULES: tuple[PolicyRule, ...] = (
    # Servers before 3.2 explain finds through the legacy $explain cursor
    PolicyRule(OperationKind.FIND, Decision.ALLOW),
    # The explain command arrived in 3.0 covering count, group, delete
    # and update; distinct and findAndModify followed in 3.2
    PolicyRule(OperationKind.COUNT, Decision.REJECT_PERMANENT, "< 3.0"),
    PolicyRule(OperationKind.COUNT, Decision.ALLOW),
    PolicyRule(OperationKind.DISTINCT, Decision.REJECT_PERMANENT, "< 3.2"),
    PolicyRule(OperationKind.DISTINCT, Decision.ALLOW),
    PolicyRule(OperationKind.DELETE, Decision.REJECT_PERMANENT, "< 3.0"),
    PolicyRule(OperationKind.DELETE, Decision.ALLOW),
    PolicyRule(OperationKind.UPDATE, Decision.REJECT_PERMANENT, "< 3.0"),
    PolicyRule(OperationKind.UPDATE, Decision.ALLOW),
    # group was removed in 4.2
    PolicyRule(OperationKind.GROUP, Decision.REJECT_PERMANENT, "< 3.0 || >= 4.2"),
    PolicyRule(OperationKind.GROUP, Decision.ALLOW),
    PolicyRule(OperationKind.FIND_AND_MODIFY, Decision.REJECT_PERMANENT, "< 3.2"),
    PolicyRule(OperationKind.FIND_AND_MODIFY, Decision.ALLOW),
    PolicyRule(OperationKind.AGGREGATE, Decision.REJECT_PERMANENT),
    PolicyRule(OperationKind.GEO_NEAR, Decision.REJECT_PERMANENT),
    PolicyRule(OperationKind.MAP_REDUCE, Decision.REJECT_PERMANENT),
    # Pre-3.4 servers refuse every write op except update and delete
    PolicyRule(OperationKind.INSERT, Decision.REJECT_BY_VERSION, "< 3.4"),
    PolicyRule(OperationKind.INSERT, Decision.REJECT_PERMANENT),
    PolicyRule(OperationKind.UNKNOWN, Decision.REJECT_UNKNOWN),
)

# Fallback when no rule matches a kind
_NO_MATCH = Decision.REJECT_UNKNOWN


class ExplainPolicy:
    """
    Version-parameterized explainability table.

    Lookups are pure: the same (kind, version) always yields the same
    decision, and instances are never mutated after construction.
    """

    def __init__(self, rules: Iterable[PolicyRule] | None = None) -> None:
        self.rules: tuple[PolicyRule, ...] = (
            tuple(rules) if rules is not None else DEFAULT_RULES
        )

    def with_overrides(self, overrides: Iterable[PolicyRule]) -> "ExplainPolicy":
        """Return a new policy with the given rules evaluated first."""
        return ExplainPolicy((*overrides, *self.rules))

    def needs_version(self, kind: OperationKind) -> bool:
        """
        Whether the decision for ``kind`` depends on the server version.

        False when the first rule for the kind is unconstrained, so the
        decision can be made without contacting the server.
        """
        for rule in self.rules:
            if rule.kind is kind:
                return rule.constraint is not None
        return False

    def decide(
        self,
        kind: OperationKind,
        version: ServerVersion | None = None,
    ) -> PolicyRule | None:
        """Return the first matching rule, or None."""
        for rule in self.rules:
            if rule.matches(kind, version):
                return rule
        return None

    def allowed(
        self,
        kind: OperationKind,
        version: ServerVersion | None = None,
    ) -> tuple[bool, RejectionReason | None]:
        """
        Check whether a kind can be explained on a server version.

        ``version`` may be omitted when needs_version(kind) is False.

        Returns:
            (True, None) if allowed, else (False, reason).
        """
        rule = self.decide(kind, version)
        decision = rule.decision if rule is not None else _NO_MATCH
        reason = _DECISION_REASONS[decision]
        logger.debug(
            "Policy for %s on %s: %s",
            kind.value,
            version.raw if version is not None else "any version",
            decision.value,
        )
        return reason is None, reason

    def __repr__(self) -> str:
        return f"ExplainPolicy(rules={len(self.rules)})"


def load_policy_rules(path: str | Path) -> list[PolicyRule]:
    """
    Load override rules from a YAML or JSON file.

    Returns:
        Parsed rules in file order (empty if the file does not exist).

    Raises:
        PolicyError: If the file cannot be read or a rule is invalid.
    """
    policy_path = Path(path)

    if not policy_path.exists():
        logger.debug("No policy file at %s, using defaults", path)
        return []

    try:
        raw = policy_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PolicyError(f"Cannot read policy file {path}: {e}") from e

    try:
        if policy_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise PolicyError(f"Malformed policy file {path}: {e}") from e

    if data is None:
        return []
    if not isinstance(data, dict) or not isinstance(data.get("rules", []), list):
        raise PolicyError(f"Policy file {path} must contain a 'rules' list")

    return [_parse_rule(entry, path) for entry in data.get("rules", [])]


def load_policy(path: str | Path | None = None) -> ExplainPolicy:
    """Default policy, with rules from ``path`` evaluated first."""
    policy = ExplainPolicy()
    if path is None:
        return policy
    overrides = load_policy_rules(path)
    if overrides:
        logger.info("Loaded %d policy override(s) from %s", len(overrides), path)
    return policy.with_overrides(overrides)


def _parse_rule(entry: Any, path: str | Path) -> PolicyRule:
    if not isinstance(entry, dict):
        raise PolicyError(f"Policy rule in {path} is not a mapping: {entry!r}")
    try:
        kind = OperationKind(entry["kind"])
        decision = Decision(entry["decision"])
    except KeyError as e:
        raise PolicyError(f"Policy rule in {path} is missing {e}") from e
    except ValueError as e:
        raise PolicyError(f"Invalid policy rule in {path}: {e}") from e

    constraint = entry.get("constraint")
    if constraint is not None and not isinstance(constraint, str):
        raise PolicyError(f"Constraint must be a string in {path}: {constraint!r}")
    try:
        return PolicyRule(kind, decision, constraint)
    except VersionParseError as e:
        raise PolicyError(f"Invalid policy rule in {path}: {e.message}") from e
