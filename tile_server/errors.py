from __future__ import annotations


class TileServerError(Exception):
    """Base class for errors raised by the tile server core."""


class InvalidTileCoordinate(TileServerError, ValueError):
    """z/x/y outside the slippy-map grid (0 <= z <= 19, 0 <= x, y < 2^z)."""

    def __init__(self, z, x, y):
        super().__init__(f"invalid tile coordinate z={z} x={x} y={y}")
        self.z, self.x, self.y = z, x, y


class ParseFailure(TileServerError):
    """A track document could not be turned into geometry."""

    def __init__(self, track_id: str, reason: str):
        super().__init__(f"{track_id}: {reason}")
        self.track_id = track_id
        self.reason = reason


class RenderFailure(TileServerError):
    """The rasterizer or PNG encoder failed for one tile."""


class StorageFailure(TileServerError):
    """Reading or writing the tile cache or the track directory failed."""


class TrackNotFound(TileServerError, KeyError):
    def __init__(self, track_id: str):
        super().__init__(track_id)
        self.track_id = track_id

    def __str__(self) -> str:
        return f"track not found: {self.track_id}"
