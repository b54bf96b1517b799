"""
Tile service: owns the current Snapshot and coordinates mutations.

Readers take one reference to the Snapshot per request and use only that.
Mutations are serialized; each one changes the track directory, builds a
complete new Snapshot off to the side, publishes it with a single assignment
and then purges the tile cache. The whole index is rebuilt on every
add/remove, which is O(total track data) per mutation and fine for a personal
track collection.
"""
from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from common.logging_setup import get_logger
from common.types import EMPTY_BOUNDS, BoundsSummary, TileKey, features_to_meta
from common.utils import Stopwatch
from tile_server.bounds import compute_bounds
from tile_server.errors import InvalidTileCoordinate, ParseFailure
from tile_server.geometry_store import GeometryStore
from tile_server.renderer import TileRenderer
from tile_server.tile_cache import TileCache
from tile_server.tile_index import TileIndex, build_tile_index
from tile_server.tracks import TrackRepository, load_features, normalize_track_id, parse_track


log = get_logger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Everything derived from one version of the track set."""
    store: GeometryStore
    index: TileIndex
    bounds: BoundsSummary
    generation: int
    failures: Tuple[Dict[str, str], ...] = ()

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls(store=GeometryStore(), index=TileIndex(), bounds=EMPTY_BOUNDS, generation=0)


@dataclass
class UploadReport:
    added: List[str] = field(default_factory=list)
    rejected: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"added": list(self.added), "rejected": list(self.rejected)}


class TileService:
    def __init__(self, repo: TrackRepository, cache: TileCache, renderer: TileRenderer | None = None):
        self.repo = repo
        self.cache = cache
        self.renderer = renderer or TileRenderer()
        self._mutex = threading.RLock()
        self._snapshot = Snapshot.empty()
        self._generation = cache.generation
        with self._mutex:
            self._reload(resume=True)

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    # -------- reads --------

    def get_tile(self, z: int, x: int, y: int) -> bytes:
        """
        PNG bytes for tile (z, x, y): cache hit, or render and write through.

        Raises InvalidTileCoordinate / RenderFailure; cache storage errors are
        tolerated.
        """
        if not TileKey.is_valid(z, x, y):
            raise InvalidTileCoordinate(z, x, y)
        snap = self._snapshot
        key = TileKey(z, x, y)

        data = self.cache.get(key, snap.generation)
        if data is not None:
            return data
        data = self.renderer.render(z, x, y, snap.index, snap.store)
        self.cache.put(key, data, snap.generation)
        return data

    def map_info(self) -> Dict[str, Any]:
        return self._snapshot.bounds.to_dict()

    def list_tracks(self) -> List[str]:
        return self.repo.list_ids()

    def stats(self) -> Dict[str, Any]:
        snap = self._snapshot
        return {
            "generation": snap.generation,
            "features": len(snap.store),
            "tracks": len(snap.store.track_ids()),
            "index_tiles": len(snap.index),
            "parse_failures": list(snap.failures),
            "cache": self.cache.stats(),
        }

    # -------- mutations --------

    def load_all(self) -> Snapshot:
        """
        Rebuild store, index and bounds from the track directory, publish
        them as one Snapshot and purge the tile cache. If building fails the
        previous Snapshot stays.
        """
        with self._mutex:
            return self._reload()

    def add_tracks(self, files: Iterable[Tuple[str, bytes]]) -> UploadReport:
        """
        Persist uploaded GPX files. Files that are misnamed or do not parse are
        rejected and reported; the rest are stored. If anything was stored the
        snapshot is rebuilt and the cache purged.
        """
        report = UploadReport()
        with self._mutex:
            try:
                for name, data in files:
                    try:
                        track_id = normalize_track_id(name)
                        parse_track(track_id, data.decode("utf-8-sig"))
                    except (ValueError, ParseFailure) as e:
                        # UnicodeDecodeError is a ValueError
                        report.rejected.append({"name": str(name), "error": str(e)})
                        continue
                    report.added.append(self.repo.add(track_id, data))
            finally:
                # a storage error mid-batch still publishes what was written
                if report.added:
                    self._reload()
        log.info("tracks uploaded", extra={"extra": report.to_dict()})
        return report

    def remove_track(self, track_id: str) -> None:
        """Delete a stored track. Raises TrackNotFound if there is none."""
        with self._mutex:
            self.repo.remove(track_id)
            self._reload()
        log.info("track removed", extra={"extra": {"track": track_id}})

    # -------- internals --------

    def _build_snapshot(self) -> Snapshot:
        sw = Stopwatch()
        features, failures = load_features(self.repo)
        store = GeometryStore(features)
        index = build_tile_index(store)
        bounds = compute_bounds(store)
        self._generation += 1
        snapshot = Snapshot(
            store=store,
            index=index,
            bounds=bounds,
            generation=self._generation,
            failures=tuple({"track": f.track_id, "reason": f.reason} for f in failures),
        )
        meta = features_to_meta(features)
        meta.update({"generation": snapshot.generation, "index_tiles": len(index),
                     "parse_failures": len(failures), "ms": sw.ms})
        log.info("snapshot rebuilt", extra={"extra": meta})
        return snapshot

    def _source_tag(self) -> str:
        src = f"{self.repo.fingerprint()}|{self.renderer.style_tag}"
        return hashlib.sha1(src.encode()).hexdigest()

    def _reload(self, resume: bool = False) -> Snapshot:
        """
        Publish a new snapshot, then purge the cache, in that order.

        Readers that picked up the new snapshot before the purge finishes see
        a generation mismatch, so they neither read nor store old entries.
        With `resume` (startup), a cache left by a previous process is kept
        when it was rendered from the same tracks and style.
        """
        snapshot = self._build_snapshot()
        self._snapshot = snapshot
        tag = self._source_tag()
        if resume and self.cache.resume(snapshot.generation, tag):
            log.info("reusing tile cache", extra={"extra": {"generation": snapshot.generation}})
            return snapshot
        self.cache.invalidate_all(snapshot.generation, tag=tag)
        return snapshot
