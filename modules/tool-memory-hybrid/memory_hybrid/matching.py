"""Fuzzy entity-name matching by edit distance."""

from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import AmbiguousMatchError


def edit_distance(a: str, b: str, limit: Optional[int] = None) -> int:
    """Levenshtein distance between a and b.

    With limit set, returns limit + 1 as soon as the distance is known to
    exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if limit is not None and len(a) - len(b) > limit:
        return limit + 1
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


@dataclass(frozen=True)
class NameMatcher:
    """Resolves a name to an existing one within max_distance edits.

    Names shorter than min_length (on either side) only match exactly;
    two-letter names are otherwise all within two edits of each other.
    """

    max_distance: int = 2
    min_length: int = 3

    def candidates(self, name: str, existing: Iterable[str]) -> list[tuple[str, int]]:
        """All existing names within threshold, closest first."""
        matches = []
        for other in existing:
            if other == name:
                matches.append((other, 0))
                continue
            if len(name) < self.min_length or len(other) < self.min_length:
                continue
            distance = edit_distance(name, other, limit=self.max_distance)
            if distance <= self.max_distance:
                matches.append((other, distance))
        return sorted(matches, key=lambda m: (m[1], m[0]))

    def resolve(self, name: str, existing: Iterable[str]) -> Optional[str]:
        """Best existing match for name, or None.

        Raises:
            AmbiguousMatchError: If several names tie for the closest match
        """
        matches = self.candidates(name, existing)
        if not matches:
            return None
        best = matches[0][1]
        tied = [other for other, distance in matches if distance == best]
        if len(tied) > 1:
            raise AmbiguousMatchError(name, tied)
        return tied[0]
