"""Maven version ordering.

Versions are split on `.` and `-` and on every transition between digits and
letters. Numeric components compare numerically, qualifiers by a fixed rank:

    alpha < beta < milestone < rc < snapshot < (release) < sp < unknown

Numbers always rank above qualifiers, so `1.0.1 > 1.0-sp1 > 1.0 > 1.0-rc1`.
"""

from __future__ import annotations

import functools
import re


_TOKEN_RE = re.compile(r"\d+|[a-zA-Z]+")

_QUALIFIER_ALIASES: dict[str, str] = {
    "a": "alpha",
    "b": "beta",
    "m": "milestone",
    "cr": "rc",
    "ga": "",
    "final": "",
    "release": "",
}

_QUALIFIER_RANKS: dict[str, int] = {
    "alpha": 0,
    "beta": 1,
    "milestone": 2,
    "rc": 3,
    "snapshot": 4,
    "": 5,
    "sp": 6,
}
_UNKNOWN_RANK = len(_QUALIFIER_RANKS)

Item = int | str


def _normalize_qualifier(token: str) -> str:
    token = token.lower()
    return _QUALIFIER_ALIASES.get(token, token)


def parse_version(version: str) -> tuple[Item, ...]:
    """Decompose a version string into comparable items.

    Args:
        version: Raw version like '1.2.0-rc1'.

    Returns:
        Tuple of ints and normalized qualifier strings, without trailing nulls.
    """
    items: list[Item] = []
    for token in _TOKEN_RE.findall(version or ""):
        if token.isdigit():
            items.append(int(token))
            continue
        qualifier = _normalize_qualifier(token)
        # zeros in front of a qualifier carry no weight: 1.0-alpha == 1-alpha
        while items and items[-1] == 0:
            items.pop()
        if qualifier:
            items.append(qualifier)
    while items and items[-1] in (0, ""):
        items.pop()
    return tuple(items)


def _qualifier_key(qualifier: str) -> tuple[int, str]:
    rank = _QUALIFIER_RANKS.get(qualifier)
    if rank is None:
        return _UNKNOWN_RANK, qualifier
    return rank, ""


def _compare_items(left: Item | None, right: Item | None) -> int:
    if left is None and right is None:
        return 0
    if left is None:
        return -_compare_items(right, None)
    if isinstance(left, int):
        if right is None:
            return 0 if left == 0 else 1
        if isinstance(right, int):
            return (left > right) - (left < right)
        return 1
    # left is a qualifier
    if right is None:
        right = ""
    if isinstance(right, int):
        return -1
    lk = _qualifier_key(left)
    rk = _qualifier_key(right)
    return (lk > rk) - (lk < rk)


def compare_versions(v1: str, v2: str) -> int:
    """Compare two versions by Maven precedence.

    Returns:
        Negative if v1 < v2, zero if equal, positive if v1 > v2.
    """
    a = parse_version(v1)
    b = parse_version(v2)
    for i in range(max(len(a), len(b))):
        left = a[i] if i < len(a) else None
        right = b[i] if i < len(b) else None
        result = _compare_items(left, right)
        if result:
            return result
    return 0


@functools.total_ordering
class ArtifactVersion:
    """A version string with Maven ordering semantics."""

    def __init__(self, version: str) -> None:
        self.version = version
        self.items = parse_version(version)

    @property
    def qualifier(self) -> str | None:
        """Joined qualifier components, or None for a plain release version."""
        qualifiers = [item for item in self.items if isinstance(item, str)]
        return "-".join(qualifiers) if qualifiers else None

    @property
    def is_release(self) -> bool:
        return self.qualifier is None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactVersion):
            return NotImplemented
        return compare_versions(self.version, other.version) == 0

    def __lt__(self, other: "ArtifactVersion") -> bool:
        return compare_versions(self.version, other.version) < 0

    def __hash__(self) -> int:
        return hash(self.items)

    def __repr__(self) -> str:
        return f"ArtifactVersion({self.version!r})"

    def __str__(self) -> str:
        return self.version


def version_key(version: str) -> ArtifactVersion:
    """Sort key for version strings: `sorted(versions, key=version_key)`."""
    return ArtifactVersion(version)
