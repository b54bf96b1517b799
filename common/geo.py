from __future__ import annotations

from typing import Tuple, Union
import math
import numpy as np


ArrayLike = Union[float, np.ndarray]

# --- Slippy-map constants ---
TILE_SIZE = 256
MIN_ZOOM = 0
MAX_ZOOM = 19
# atan(sinh(pi)) in degrees; Mercator y diverges beyond this
MAX_LATITUDE = 85.0511287798066


# -------------------------
# Guards
# -------------------------
def check_zoom(zoom: int) -> int:
    """Return `zoom` as int, raising ValueError outside MIN_ZOOM..MAX_ZOOM."""
    z = int(zoom)
    if z != zoom or not (MIN_ZOOM <= z <= MAX_ZOOM):
        raise ValueError(f"zoom must be an integer in [{MIN_ZOOM}, {MAX_ZOOM}], got {zoom!r}")
    return z


def clamp_lat(lat: ArrayLike) -> ArrayLike:
    """Clamp latitude(s) into the Web Mercator domain."""
    if isinstance(lat, np.ndarray):
        return np.clip(lat, -MAX_LATITUDE, MAX_LATITUDE)
    return float(min(MAX_LATITUDE, max(-MAX_LATITUDE, lat)))


def world_size(zoom: int, tile_size: int = TILE_SIZE) -> float:
    # World size in pixels at given zoom
    return float(tile_size * (1 << check_zoom(zoom)))


# -------------------------
# Lon/lat -> pixel / tile (spherical Web Mercator)
# -------------------------
def lonlat_to_global_pixel(
    lon: ArrayLike, lat: ArrayLike, zoom: int, tile_size: int = TILE_SIZE
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Project lon/lat (deg) to global pixel coordinates at `zoom`.

        px = (lon + 180) / 360 * 2^z * tile_size
        py = (1 - ln(tan(phi) + sec(phi)) / pi) / 2 * 2^z * tile_size

    Accepts scalars or numpy arrays (vectorised for the index builder).
    Latitude is clamped to +-MAX_LATITUDE first.
    """
    world = world_size(zoom, tile_size)
    if isinstance(lon, np.ndarray) or isinstance(lat, np.ndarray):
        lon_a = np.asarray(lon, dtype=float)
        phi = np.radians(clamp_lat(np.asarray(lat, dtype=float)))
        px = (lon_a + 180.0) / 360.0 * world
        py = (1.0 - np.log(np.tan(phi) + 1.0 / np.cos(phi)) / math.pi) / 2.0 * world
        return px, py
    phi = math.radians(clamp_lat(float(lat)))
    px = (float(lon) + 180.0) / 360.0 * world
    py = (1.0 - math.log(math.tan(phi) + 1.0 / math.cos(phi)) / math.pi) / 2.0 * world
    return px, py


def lonlat_to_tile(
    lon: ArrayLike, lat: ArrayLike, zoom: int, tile_size: int = TILE_SIZE
) -> Tuple[ArrayLike, ArrayLike]:
    """
    Tile (x, y) containing lon/lat at `zoom`: floor(global_pixel / tile_size).

    Results are clipped into [0, 2^zoom - 1]; lon=180 and the clamped latitude
    limit would otherwise land one past the last tile.
    """
    px, py = lonlat_to_global_pixel(lon, lat, zoom, tile_size)
    last = (1 << int(zoom)) - 1
    if isinstance(px, np.ndarray):
        tx = np.clip(np.floor(px / tile_size), 0, last).astype(np.int64)
        ty = np.clip(np.floor(py / tile_size), 0, last).astype(np.int64)
        return tx, ty
    tx = min(last, max(0, math.floor(px / tile_size)))
    ty = min(last, max(0, math.floor(py / tile_size)))
    return tx, ty


def tile_origin(z: int, x: int, y: int, tile_size: int = TILE_SIZE) -> Tuple[int, int]:
    """Top-left corner of tile (z, x, y) in global pixel space."""
    check_zoom(z)
    return int(x) * tile_size, int(y) * tile_size


# -------------------------
# Inverse projection
# -------------------------
def global_pixel_to_lonlat(
    px: float, py: float, zoom: int, tile_size: int = TILE_SIZE
) -> Tuple[float, float]:
    world = world_size(zoom, tile_size)
    lon = px / world * 360.0 - 180.0
    n = math.pi - 2.0 * math.pi * (py / world)
    lat = math.degrees(math.atan(math.sinh(n)))
    return lon, lat


def tile_bounds(z: int, x: int, y: int, tile_size: int = TILE_SIZE) -> Tuple[float, float, float, float]:
    """
    Geographic extent of a tile as (lon_min, lat_min, lon_max, lat_max).
    """
    x0, y0 = tile_origin(z, x, y, tile_size)
    lon_min, lat_max = global_pixel_to_lonlat(x0, y0, z, tile_size)
    lon_max, lat_min = global_pixel_to_lonlat(x0 + tile_size, y0 + tile_size, z, tile_size)
    return lon_min, lat_min, lon_max, lat_max
