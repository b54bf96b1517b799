from __future__ import annotations

import math

import numpy as np

from common.geo import MAX_ZOOM, MIN_ZOOM
from common.types import EMPTY_BOUNDS, BoundsSummary
from common.utils import clamp
from tile_server.geometry_store import GeometryStore


def compute_bounds(store: GeometryStore) -> BoundsSummary:
    """
    Centre and initial zoom for the viewer.

    centre = midpoint of the lat/lon bounding box of all line vertices
    zoom   = floor(8 - log2(max(lat_span, lon_span))), clamped to [0, 19]

    With no line vertices the result is EMPTY_BOUNDS (centre 0,0, zoom 0).
    A zero span (every vertex identical) maps to the maximum zoom.
    """
    coords = [f.coords for _, f in store.lines() if len(f)]
    if not coords:
        return EMPTY_BOUNDS

    pts = np.concatenate(coords, axis=0)
    lon_min, lat_min = pts.min(axis=0)
    lon_max, lat_max = pts.max(axis=0)

    center = (float(lat_min + lat_max) / 2.0, float(lon_min + lon_max) / 2.0)
    span = float(max(lat_max - lat_min, lon_max - lon_min))
    if span <= 0.0:
        return BoundsSummary(center=center, zoom=MAX_ZOOM)
    zoom = int(clamp(math.floor(8.0 - math.log2(span)), MIN_ZOOM, MAX_ZOOM))
    return BoundsSummary(center=center, zoom=zoom)
