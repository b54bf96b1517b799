from __future__ import annotations

from typing import Iterable, Iterator, Optional, Sequence, Tuple

from common.types import Feature


class GeometryStore(Sequence[Feature]):
    """
    Immutable, ordered collection of Features.

    A feature's position in the store is its identity; the tile index refers
    to features only by that position. Stores are never edited, a mutation
    builds a new one.
    """

    __slots__ = ("_features",)

    def __init__(self, features: Iterable[Feature] = ()):
        self._features: Tuple[Feature, ...] = tuple(features)

    def __getitem__(self, i):  # type: ignore[override]
        return self._features[i]

    def __len__(self) -> int:
        return len(self._features)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self._features)

    def get(self, i: int) -> Optional[Feature]:
        """Feature at index `i`, or None when `i` is not valid in this store."""
        if 0 <= i < len(self._features):
            return self._features[i]
        return None

    def lines(self) -> Iterator[Tuple[int, Feature]]:
        """(index, feature) for every line feature."""
        for i, f in enumerate(self._features):
            if f.is_line:
                yield i, f

    def track_ids(self) -> Tuple[str, ...]:
        seen = dict.fromkeys(f.track_id for f in self._features)
        return tuple(seen)

    def __repr__(self) -> str:
        return f"GeometryStore(features={len(self._features)})"
