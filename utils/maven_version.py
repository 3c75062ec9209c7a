"""Maven-style version ordering used to order artifact lineage.

Versions are split into numeric and alphabetic items (``1.0-rc2`` becomes
``1, rc, 2``). Numbers outrank qualifiers, and qualifiers are ranked
alpha < beta < milestone < rc < snapshot < release < sp < anything else.
Zeros directly before a qualifier or the end are dropped, so ``1``, ``1.0``
and ``1.0.0`` compare equal, as do ``1.0-rc1`` and ``1-rc1``.
"""

from __future__ import annotations

import re
from functools import total_ordering

_TOKEN = re.compile(r"\d+|[a-z]+")

_QUALIFIER_RANKS: dict[str, int] = {
    "a": 0,
    "alpha": 0,
    "b": 1,
    "beta": 1,
    "m": 2,
    "milestone": 2,
    "rc": 3,
    "cr": 3,
    "snapshot": 4,
    "": 5,
    "ga": 5,
    "final": 5,
    "release": 5,
    "sp": 6,
}
_RELEASE_RANK = 5
_UNKNOWN_RANK = 7

ItemKey = tuple[int, int, str]

# Pads the shorter version; equivalent to a plain release qualifier.
_PAD: ItemKey = (0, _RELEASE_RANK, "")


def _item(token: str) -> ItemKey:
    if token.isdigit():
        return (1, int(token), "")
    rank = _QUALIFIER_RANKS.get(token, _UNKNOWN_RANK)
    return (0, rank, token if rank == _UNKNOWN_RANK else "")


def version_items(version: str) -> list[ItemKey]:
    items = [_item(token) for token in _TOKEN.findall(version.lower())]

    normalized: list[ItemKey] = []
    for index, item in enumerate(items):
        is_zero = item[0] == 1 and item[1] == 0
        if is_zero:
            following = items[index + 1 :]
            next_non_zero = next(
                (other for other in following if not (other[0] == 1 and other[1] == 0)),
                None,
            )
            if next_non_zero is None or next_non_zero[0] == 0:
                continue
        normalized.append(item)

    while normalized and normalized[-1] == _PAD:
        normalized.pop()
    return normalized


@total_ordering
class MavenVersion:
    """Comparable wrapper around a version string."""

    __slots__ = ("raw", "_items")

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self._items = version_items(raw)

    def _padded(self, length: int) -> list[ItemKey]:
        return self._items + [_PAD] * (length - len(self._items))

    def _compare(self, other: MavenVersion) -> int:
        length = max(len(self._items), len(other._items))
        mine, theirs = self._padded(length), other._padded(length)
        if mine == theirs:
            return 0
        return -1 if mine < theirs else 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MavenVersion):
            return NotImplemented
        return self._compare(other) == 0

    def __lt__(self, other: MavenVersion) -> bool:
        return self._compare(other) < 0

    def __hash__(self) -> int:
        return hash(tuple(self._items))

    def __repr__(self) -> str:
        return f"MavenVersion({self.raw!r})"


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 as ``left`` sorts before, equal to, or after ``right``."""
    return MavenVersion(left)._compare(MavenVersion(right))


__all__ = ["MavenVersion", "compare_versions", "version_items"]
