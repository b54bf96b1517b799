from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple
import math

import numpy as np

from common.geo import MAX_ZOOM, MIN_ZOOM


LonLat = Tuple[float, float]

LINE = "line"
OTHER = "other"
FEATURE_KINDS = (LINE, OTHER)


@dataclass(frozen=True, slots=True)
class TileKey:
    """
    Slippy-map tile address.

    Invariant: MIN_ZOOM <= z <= MAX_ZOOM and 0 <= x, y < 2^z.
    Construction raises ValueError otherwise; use `is_valid` to test
    untrusted input without raising.
    """
    z: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if not TileKey.is_valid(self.z, self.x, self.y):
            raise ValueError(f"invalid tile coordinate z={self.z} x={self.x} y={self.y}")

    @staticmethod
    def is_valid(z: int, x: int, y: int) -> bool:
        if not all(isinstance(v, (int, np.integer)) and not isinstance(v, bool) for v in (z, x, y)):
            return False
        if not (MIN_ZOOM <= z <= MAX_ZOOM):
            return False
        n = 1 << int(z)
        return 0 <= x < n and 0 <= y < n

    @property
    def filename(self) -> str:
        """Cache file name, `{z}-{x}-{y}.png`."""
        return f"{self.z}-{self.x}-{self.y}.png"

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


@dataclass(frozen=True, slots=True)
class Feature:
    """
    One ingested geometry.

    Attributes:
        coords: (n, 2) float array of (lon, lat) vertices, read-only.
        kind: "line" (indexed and rendered) or "other" (kept, ignored).
        track_id: identifier of the track document it came from.
    """
    coords: np.ndarray = field(repr=False)
    kind: str = LINE
    track_id: str = ""

    def __post_init__(self) -> None:
        if self.kind not in FEATURE_KINDS:
            raise ValueError(f"kind must be one of {FEATURE_KINDS}")
        a = np.array(self.coords, dtype=float).reshape(-1, 2)
        a.setflags(write=False)
        object.__setattr__(self, "coords", a)

    @property
    def is_line(self) -> bool:
        return self.kind == LINE

    @property
    def lon(self) -> np.ndarray:
        return self.coords[:, 0]

    @property
    def lat(self) -> np.ndarray:
        return self.coords[:, 1]

    def __len__(self) -> int:
        return int(self.coords.shape[0])


@dataclass(frozen=True, slots=True)
class BoundsSummary:
    """
    Map centre (lat, lon) and a zoom level that roughly fits all tracks.
    `EMPTY_BOUNDS` is used when there is nothing to fit.
    """
    center: Tuple[float, float]
    zoom: int

    def __post_init__(self) -> None:
        if not all(math.isfinite(v) for v in self.center):
            raise ValueError("center must be finite")
        if not (MIN_ZOOM <= self.zoom <= MAX_ZOOM):
            raise ValueError("zoom out of range")

    def to_dict(self) -> Dict[str, Any]:
        return {"center": [float(self.center[0]), float(self.center[1])], "zoom": int(self.zoom)}


EMPTY_BOUNDS = BoundsSummary(center=(0.0, 0.0), zoom=0)


def features_to_meta(features: List[Feature]) -> Dict[str, Any]:
    """Counts safe to log."""
    lines = sum(1 for f in features if f.is_line)
    return {
        "features": len(features),
        "lines": lines,
        "vertices": int(sum(len(f) for f in features if f.is_line)),
    }
