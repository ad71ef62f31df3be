"""
Server version parsing and constraint evaluation.

MongoDB reports its build as a semantic version ("3.4.7"), but some builds
append metadata after a dash ("3.4.7-rc1", "3.2.16-enterprise") even for
releases. Everything from the first dash on is dropped before comparison.

Constraint syntax:
    "< 3.4"              single comparison (<, <=, >, >=, =, ==, !=)
    "3.4.7"              bare version means equality
    "~3.4"               patch-level range: >= 3.4, < 3.5 ("~3" is >= 3, < 4)
    "^3.0"               same major: >= 3.0, < 4 (^0.x stays within 0.x)
    "3.x", "3.4.*", "*"  wildcards
    "3.0 - 3.4.7"        inclusive range (spaces around the dash required)
    ">= 3.0, < 3.6"      comma joins clauses with AND
    "< 2.6 || >= 4.0"    double pipe joins alternatives with OR

Usage:
    from mongoexplain.version import satisfies, ServerVersion

    satisfies("< 3.4", "3.2.16")        # True
    satisfies("< 3.4", "3.4.7-rc1")     # False, evaluated as 3.4.7

    version = ServerVersion.parse("3.4.7")
    version.satisfies(">= 3.0")         # True

All functions here are pure and safe to call from any thread.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from mongoexplain.exceptions import VersionParseError

# major[.minor[.patch]], digits only, after normalization
_VERSION_RE = re.compile(r"^v?\d+(\.\d+){0,2}$")

_CLAUSE_RE = re.compile(r"^(?P<op>==|!=|<=|>=|<|>|=)?\s*(?P<version>\S+)$")
_TILDE_RE = re.compile(r"^~\s*(?P<version>\S+)$")
_CARET_RE = re.compile(r"^\^\s*(?P<version>\S+)$")
_WILDCARD_RE = re.compile(r"^v?(?:(?P<major>\d+)(?:\.(?P<minor>\d+))?\.)?[xX*]$")
_HYPHEN_RE = re.compile(r"^(?P<low>\S+)\s+-\s+(?P<high>\S+)$")


def normalize_version(version: str) -> str:
    """Drop everything from the first dash and surrounding whitespace."""
    return version.split("-", 1)[0].strip()


def parse_version(version: str) -> Version:
    """
    Parse a server version string into a comparable Version.

    Raises:
        VersionParseError: If the text is not major[.minor[.patch]].
    """
    normalized = normalize_version(version)
    if not _VERSION_RE.match(normalized):
        raise VersionParseError(
            f"Invalid server version: {version!r}",
            source=version,
        )
    try:
        return Version(normalized)
    except InvalidVersion as e:
        raise VersionParseError(
            f"Invalid server version: {version!r}",
            source=version,
        ) from e


@lru_cache(maxsize=128)
def parse_constraint(constraint: str) -> tuple[SpecifierSet, ...]:
    """
    Parse a constraint expression into OR-ed specifier sets.

    Cached: the policy table evaluates the same few expressions for
    every explain call.

    Raises:
        VersionParseError: If any clause is not valid constraint syntax.
    """
    alternatives: list[SpecifierSet] = []
    for alternative in constraint.split("||"):
        clauses = [c.strip() for c in alternative.split(",")]
        if not all(clauses):
            raise VersionParseError(
                f"Invalid version constraint: {constraint!r}",
                source=constraint,
            )
        alternatives.append(_build_specifier_set(clauses, constraint))
    return tuple(alternatives)


def _build_specifier_set(clauses: list[str], constraint: str) -> SpecifierSet:
    specifiers: list[str] = []
    for clause in clauses:
        specifiers.extend(_clause_specifiers(clause, constraint))

    try:
        return SpecifierSet(",".join(specifiers))
    except InvalidSpecifier as e:
        raise VersionParseError(
            f"Invalid version constraint: {constraint!r}",
            source=constraint,
        ) from e


def _clause_specifiers(clause: str, constraint: str) -> list[str]:
    """Translate one clause into PEP 440 specifiers."""
    hyphen = _HYPHEN_RE.match(clause)
    if hyphen is not None:
        low = _version_parts(hyphen.group("low"), constraint)
        high = _version_parts(hyphen.group("high"), constraint)
        return [f">={_join(low)}", f"<={_join(high)}"]

    wildcard = _WILDCARD_RE.match(clause)
    if wildcard is not None:
        major, minor = wildcard.group("major"), wildcard.group("minor")
        if major is None:
            return [">=0"]
        if minor is None:
            return [f"=={int(major)}.*"]
        return [f"=={int(major)}.{int(minor)}.*"]

    tilde = _TILDE_RE.match(clause)
    if tilde is not None:
        parts = _version_parts(tilde.group("version"), constraint)
        if len(parts) == 1:
            upper = [parts[0] + 1]
        else:
            upper = [parts[0], parts[1] + 1]
        return [f">={_join(parts)}", f"<{_join(upper)}"]

    caret = _CARET_RE.match(clause)
    if caret is not None:
        parts = _version_parts(caret.group("version"), constraint)
        padded = parts + [0] * (3 - len(parts))
        if padded[0] > 0 or len(parts) == 1:
            upper = [parts[0] + 1]
        elif padded[1] > 0 or len(parts) == 2:
            upper = [0, parts[1] + 1]
        else:
            upper = [0, 0, parts[2] + 1]
        return [f">={_join(parts)}", f"<{_join(upper)}"]

    match = _CLAUSE_RE.match(clause)
    if match is None:
        raise VersionParseError(
            f"Invalid version constraint: {constraint!r}",
            source=constraint,
        )
    op = match.group("op") or "=="
    if op == "=":
        op = "=="
    return [f"{op}{_join(_version_parts(match.group('version'), constraint))}"]


def _version_parts(text: str, constraint: str) -> list[int]:
    if not _VERSION_RE.match(text):
        raise VersionParseError(
            f"Invalid version constraint: {constraint!r}",
            source=constraint,
        )
    return [int(part) for part in text.lstrip("v").split(".")]


def _join(parts: list[int]) -> str:
    return ".".join(str(part) for part in parts)


def satisfies(constraint: str, version: str) -> bool:
    """
    Check whether a server version satisfies a constraint expression.

    Args:
        constraint: Range expression, e.g. "< 3.4"
        version: Server build version, e.g. "3.4.7-rc1"

    Returns:
        True if the normalized version falls inside the constraint.

    Raises:
        VersionParseError: If either argument is not valid syntax.
    """
    parsed = parse_version(version)
    return any(
        spec.contains(parsed, prereleases=True)
        for spec in parse_constraint(constraint)
    )


@dataclass(frozen=True)
class ServerVersion:
    """
    Version of the connected server, resolved once per Explainer.

    Keeps the raw build string for diagnostics; comparisons use the
    normalized form.
    """

    raw: str
    version: Version

    @classmethod
    def parse(cls, raw: str) -> "ServerVersion":
        return cls(raw=raw, version=parse_version(raw))

    @property
    def normalized(self) -> str:
        return str(self.version)

    def satisfies(self, constraint: str) -> bool:
        return any(
            spec.contains(self.version, prereleases=True)
            for spec in parse_constraint(constraint)
        )

    def __str__(self) -> str:
        return self.raw
