"""
GPX track storage and parsing.

Tracks live as individual files in one directory; the file name is the track
identifier:

    data/tracks/
      ├─ morning-ride.gpx
      └─ commute-2024-05-01.gpx

Each non-empty track segment and each route becomes a "line" Feature;
waypoints become "other" Features (kept, never indexed or drawn).
"""
from __future__ import annotations

import hashlib
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

import gpxpy
import gpxpy.gpx

from common.logging_setup import get_logger
from common.types import LINE, OTHER, Feature
from tile_server.errors import ParseFailure, StorageFailure, TrackNotFound


log = get_logger(__name__)

TRACK_SUFFIX = ".gpx"


# -------------------------
# Parsing
# -------------------------
def _parse_gpx(track_id: str, text: str) -> gpxpy.gpx.GPX:
    try:
        return gpxpy.parse(text)
    except (gpxpy.gpx.GPXException, ValueError) as e:
        raise ParseFailure(track_id, f"invalid GPX: {e}") from e


def parse_track(track_id: str, text: str) -> List[Feature]:
    """
    Convert one GPX document into Features, in document order
    (track segments, then routes, then waypoints).

    Raises ParseFailure if the XML is malformed or holds no points at all.
    """
    gpx = _parse_gpx(track_id, text)

    features: List[Feature] = []
    for track in gpx.tracks:
        for segment in track.segments:
            coords = [(p.longitude, p.latitude) for p in segment.points]
            if coords:
                features.append(Feature(coords=coords, kind=LINE, track_id=track_id))
    for route in gpx.routes:
        coords = [(p.longitude, p.latitude) for p in route.points]
        if coords:
            features.append(Feature(coords=coords, kind=LINE, track_id=track_id))
    for wpt in gpx.waypoints:
        features.append(Feature(coords=[(wpt.longitude, wpt.latitude)], kind=OTHER, track_id=track_id))

    if not features:
        raise ParseFailure(track_id, "no coordinates found in GPX")
    return features


def activity_type(text: str) -> Optional[str]:
    """First `<type>` of the document's tracks (or routes), e.g. "cycling"."""
    gpx = _parse_gpx("<activity>", text)
    for item in list(gpx.tracks) + list(gpx.routes):
        if item.type:
            return item.type.strip()
    return None


# -------------------------
# Storage
# -------------------------
def normalize_track_id(name: str) -> str:
    """
    Validate an uploaded file name as a track identifier.
    Only a plain base name ending in .gpx is accepted.
    """
    base = Path(str(name)).name
    if not base or base != name or base.startswith(".") or not base.lower().endswith(TRACK_SUFFIX):
        raise ValueError(f"not a valid track name: {name!r}")
    return base


class TrackRepository:
    """Directory of GPX files; the source of truth for the track set."""

    def __init__(self, root: str = "data/tracks"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def list_ids(self) -> List[str]:
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_file() and p.suffix.lower() == TRACK_SUFFIX and not p.name.startswith(".")
        )

    def fingerprint(self) -> str:
        """Hash of (name, size, mtime) of every stored track."""
        h = hashlib.sha1()
        for track_id in self.list_ids():
            try:
                st = self._path(track_id).stat()
            except OSError:
                continue
            h.update(f"{track_id}\0{st.st_size}\0{st.st_mtime_ns}\n".encode())
        return h.hexdigest()

    def read(self, track_id: str) -> str:
        """Track document as text. Raises ParseFailure if it is not UTF-8."""
        path = self._path(track_id)
        try:
            return path.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseFailure(track_id, f"not valid UTF-8: {e}") from e
        except FileNotFoundError as e:
            raise TrackNotFound(track_id) from e
        except OSError as e:
            raise StorageFailure(f"cannot read track {track_id}: {e}") from e

    def add(self, name: str, data: bytes) -> str:
        """Persist (or replace) a track; returns its identifier."""
        track_id = normalize_track_id(name)
        path = self._path(track_id)
        fd, tmp = tempfile.mkstemp(prefix=f".{track_id}.", suffix=".tmp", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise StorageFailure(f"cannot write track {track_id}: {e}") from e
        return track_id

    def remove(self, track_id: str) -> None:
        try:
            self._path(track_id).unlink()
        except FileNotFoundError as e:
            raise TrackNotFound(track_id) from e
        except OSError as e:
            raise StorageFailure(f"cannot delete track {track_id}: {e}") from e

    def _path(self, track_id: str) -> Path:
        try:
            return self.root / normalize_track_id(track_id)
        except ValueError as e:
            raise TrackNotFound(track_id) from e


def load_features(repo: TrackRepository) -> Tuple[List[Feature], List[ParseFailure]]:
    """
    Parse every stored track in identifier order.

    A track that fails to parse is skipped and reported in the second list;
    the remaining tracks are still loaded.
    """
    features: List[Feature] = []
    failures: List[ParseFailure] = []
    for track_id in repo.list_ids():
        try:
            features.extend(parse_track(track_id, repo.read(track_id)))
        except ParseFailure as e:
            log.warning("skipping unparseable track", extra={"extra": {"track": track_id, "reason": e.reason}})
            failures.append(e)
    return features, failures
