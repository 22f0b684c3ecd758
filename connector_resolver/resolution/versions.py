"""
Version parsing and constraint matching.

Versions are compared with ``packaging.version.Version``; a version string is
accepted as a semantic version when it has one to three numeric release
components, no epoch and no leading ``v``. Constraints are a single operator
followed by a version; ranges combining several operators are not supported.
"""

import re
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

from packaging.version import InvalidVersion, Version

from ..errors import InvalidConstraintError
from ..models import VersionConstraint


# Order matters: two-character operators before their one-character prefixes
_CONSTRAINT_PATTERNS = [
    (re.compile(r'^\*$'), '*'),
    (re.compile(r'^>=(.+)$'), '>='),
    (re.compile(r'^<=(.+)$'), '<='),
    (re.compile(r'^==(.+)$'), '=='),
    (re.compile(r'^!=(.+)$'), '!='),
    (re.compile(r'^~>(.+)$'), '~'),
    (re.compile(r'^~(.+)$'), '~'),
    (re.compile(r'^\^(.+)$'), '^'),
    (re.compile(r'^>(.+)$'), '>'),
    (re.compile(r'^<(.+)$'), '<'),
    (re.compile(r'^=(.+)$'), '=='),
    (re.compile(r'^([0-9].*)$'), '=='),  # Bare version means exact match
]


def parse_version(version: str) -> Version:
    """Parse a semantic version string.

    Raises:
        InvalidVersion: If the string is not an acceptable semantic version
    """
    if not version or not version.strip():
        raise InvalidVersion("empty version")
    text = version.strip()
    if text[0] in "vV":
        raise InvalidVersion(f"'{version}' has a leading 'v'")

    parsed = Version(text)
    if parsed.epoch != 0:
        raise InvalidVersion(f"'{version}' uses an epoch")
    if len(parsed.release) > 3:
        raise InvalidVersion(f"'{version}' has more than three release components")
    return parsed


def is_valid_version(version: str) -> bool:
    """Check whether a string parses as a semantic version."""
    try:
        parse_version(version)
        return True
    except InvalidVersion:
        return False


def _release3(version: Version) -> Tuple[int, int, int]:
    parts = list(version.release) + [0, 0, 0]
    return parts[0], parts[1], parts[2]


class VersionManager:
    """Handles version constraint parsing, matching and ordering."""

    @staticmethod
    @lru_cache(maxsize=4096)
    def parse_constraint(constraint_str: str) -> VersionConstraint:
        """Parse version constraint string (e.g., '>=1.0.0', '^2.1', '1.5', '*').

        Raises:
            InvalidConstraintError: If the constraint is malformed
        """
        if constraint_str is None:
            raise InvalidConstraintError("Version constraint is missing")

        text = constraint_str.strip()
        if not text:
            return VersionConstraint(operator='*')

        for pattern, operator in _CONSTRAINT_PATTERNS:
            match = pattern.match(text)
            if not match:
                continue
            if operator == '*':
                return VersionConstraint(operator='*')

            version = match.group(1).strip()
            if not is_valid_version(version):
                raise InvalidConstraintError(
                    f"Invalid version '{version}' in constraint '{constraint_str}'"
                )
            return VersionConstraint(operator=operator, version=version)

        raise InvalidConstraintError(f"Invalid version constraint: '{constraint_str}'")

    @staticmethod
    def satisfies(version: str, constraint: VersionConstraint) -> bool:
        """Check if version satisfies constraint. Unparseable versions never do."""
        if constraint.is_any:
            return True
        try:
            candidate = parse_version(version)
            target = parse_version(constraint.version)
        except InvalidVersion:
            return False
        return VersionManager._compare(candidate, target, constraint.operator)

    @staticmethod
    def _compare(v1: Version, v2: Version, operator: str) -> bool:
        """Compare two parsed versions."""
        if operator == '==':
            return v1 == v2
        elif operator == '!=':
            return v1 != v2
        elif operator == '>=':
            return v1 >= v2
        elif operator == '<=':
            return v1 <= v2
        elif operator == '>':
            return v1 > v2
        elif operator == '<':
            return v1 < v2
        elif operator == '~':
            # Tilde: compatible within the same minor version
            return _release3(v1)[:2] == _release3(v2)[:2] and v1 >= v2
        elif operator == '^':
            # Caret: compatible within the same major version (minor for 0.x)
            r1, r2 = _release3(v1), _release3(v2)
            if r2[0] == 0:
                return r1[:2] == r2[:2] and v1 >= v2
            return r1[0] == r2[0] and v1 >= v2
        else:
            return False

    @staticmethod
    def sort_versions(versions: Iterable[str], descending: bool = True) -> List[str]:
        """Sort version strings; unparseable versions go last in either direction."""
        valid = []
        invalid = []
        for version in versions:
            try:
                valid.append((parse_version(version), version))
            except InvalidVersion:
                invalid.append(version)

        valid.sort(key=lambda pair: (pair[0], pair[1]), reverse=descending)
        return [version for _, version in valid] + sorted(invalid)

    @staticmethod
    def is_prerelease(version: str) -> bool:
        try:
            return parse_version(version).is_prerelease
        except InvalidVersion:
            return False

    @staticmethod
    def same_version(a: str, b: str) -> bool:
        """Compare two version strings semantically, falling back to text."""
        try:
            return parse_version(a) == parse_version(b)
        except InvalidVersion:
            return a == b

    @staticmethod
    def exact_version(constraint_str: str) -> Optional[str]:
        """Return the pinned version if the constraint is an exact match."""
        constraint = VersionManager.parse_constraint(constraint_str)
        return constraint.version if constraint.is_exact else None
