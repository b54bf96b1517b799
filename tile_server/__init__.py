"""
Track Tile Server

- Reads GPX tracks from `data/tracks/*.gpx` into line features
- Indexes every feature vertex into slippy-map tiles (zoom 0..19)
- Renders 256px transparent PNG tiles on demand, cached in `data/tile-cache/{z}-{x}-{y}.png`
- Rebuilds everything and purges the cache whenever a track is added or removed

Entry point:
    uvicorn tile_server.server:create_app --factory --port 8000
"""
from .errors import (
    InvalidTileCoordinate,
    ParseFailure,
    RenderFailure,
    StorageFailure,
    TileServerError,
    TrackNotFound,
)
from .service import Snapshot, TileService

__all__ = [
    "InvalidTileCoordinate",
    "ParseFailure",
    "RenderFailure",
    "StorageFailure",
    "TileServerError",
    "TrackNotFound",
    "Snapshot",
    "TileService",
]
