"""
Tile -> feature index.

Every vertex of every line feature is projected at each zoom 0..19 and the
feature is registered under the tile that vertex falls in. Only tiles holding
at least one vertex are recorded: a long segment between two far-apart
vertices does not register the tiles it merely crosses. The renderer therefore
may leave such a segment out of an intermediate tile. This approximate
coverage set is intentional.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Dict, FrozenSet, Iterator, List, Mapping, Set

import numpy as np

from common.geo import MAX_ZOOM, MIN_ZOOM, TILE_SIZE, lonlat_to_tile
from common.logging_setup import get_logger
from common.types import TileKey
from common.utils import Stopwatch
from tile_server.geometry_store import GeometryStore


log = get_logger(__name__)

_EMPTY: FrozenSet[int] = frozenset()


class TileIndex(Mapping[TileKey, FrozenSet[int]]):
    """Read-only mapping TileKey -> frozenset of feature indices."""

    __slots__ = ("_tiles",)

    def __init__(self, tiles: Mapping[TileKey, Set[int]] | None = None):
        self._tiles: Dict[TileKey, FrozenSet[int]] = {k: frozenset(v) for k, v in (tiles or {}).items()}

    def __getitem__(self, key: TileKey) -> FrozenSet[int]:
        return self._tiles[key]

    def __iter__(self) -> Iterator[TileKey]:
        return iter(self._tiles)

    def __len__(self) -> int:
        return len(self._tiles)

    def features_for(self, key: TileKey) -> FrozenSet[int]:
        """Feature indices touching `key`; empty when the tile holds no vertex."""
        return self._tiles.get(key, _EMPTY)

    def keys_at(self, zoom: int) -> List[TileKey]:
        return sorted((k for k in self._tiles if k.z == zoom), key=lambda k: (k.x, k.y))


def build_tile_index(
    store: GeometryStore,
    *,
    min_zoom: int = MIN_ZOOM,
    max_zoom: int = MAX_ZOOM,
    tile_size: int = TILE_SIZE,
) -> TileIndex:
    """
    Build a TileIndex from one GeometryStore.

    Per feature and zoom, vertex tiles are computed in one numpy pass and
    de-duplicated before insertion, so the cost is O(vertices x zooms).
    """
    sw = Stopwatch()
    tiles: Dict[TileKey, Set[int]] = defaultdict(set)
    for idx, feature in store.lines():
        if len(feature) == 0:
            continue
        lon, lat = feature.lon, feature.lat
        for z in range(min_zoom, max_zoom + 1):
            tx, ty = lonlat_to_tile(lon, lat, z, tile_size)
            for x, y in np.unique(np.stack([tx, ty], axis=1), axis=0):
                tiles[TileKey(z, int(x), int(y))].add(idx)

    index = TileIndex(tiles)
    log.debug("tile index built", extra={"extra": {"tiles": len(index), "ms": sw.ms}})
    return index
