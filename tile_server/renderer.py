from __future__ import annotations

import io
from typing import List, Sequence, Tuple

from PIL import Image, ImageDraw

from common.geo import TILE_SIZE, lonlat_to_global_pixel, tile_origin
from common.logging_setup import get_logger
from common.types import Feature, TileKey
from tile_server.errors import InvalidTileCoordinate, RenderFailure
from tile_server.geometry_store import GeometryStore
from tile_server.tile_index import TileIndex


log = get_logger(__name__)

RGBA = Tuple[int, int, int, int]

DEFAULT_STROKE_COLOR: RGBA = (255, 0, 0, 255)
DEFAULT_STROKE_WIDTH = 2
BACKGROUND: RGBA = (255, 255, 255, 0)


class TileRenderer:
    """
    Draws the features indexed under one tile onto a transparent RGBA canvas
    and returns it PNG-encoded. Pillow's ImageDraw is the rasterizer.

    Output depends only on (key, index, store), so repeated renders against
    the same snapshot are byte-identical.
    """

    def __init__(
        self,
        tile_size: int = TILE_SIZE,
        stroke_width: int = DEFAULT_STROKE_WIDTH,
        stroke_color: Sequence[int] = DEFAULT_STROKE_COLOR,
    ):
        self.tile_size = int(tile_size)
        self.stroke_width = int(stroke_width)
        self.stroke_color: RGBA = tuple(int(c) for c in stroke_color)  # type: ignore[assignment]
        if len(self.stroke_color) != 4:
            raise ValueError("stroke_color must be RGBA")

    @property
    def style_tag(self) -> str:
        """Identifies everything besides the data that changes the output."""
        return f"{self.tile_size}:{self.stroke_width}:{self.stroke_color}"

    def render(self, z: int, x: int, y: int, index: TileIndex, store: GeometryStore) -> bytes:
        """
        Render tile (z, x, y).

        Raises:
            InvalidTileCoordinate: before any work, when z/x/y is off the grid.
            RenderFailure: when drawing or PNG encoding fails.
        """
        if not TileKey.is_valid(z, x, y):
            raise InvalidTileCoordinate(z, x, y)
        key = TileKey(z, x, y)

        candidates = sorted(index.features_for(key))
        paths: List[List[Tuple[float, float]]] = []
        for idx in candidates:
            feature = store.get(idx)
            if feature is None or not feature.is_line:
                # index built against a different store; drop just this feature
                log.debug("stale feature index skipped", extra={"extra": {"tile": str(key), "feature": idx}})
                continue
            paths.append(self._tile_path(key, feature))

        try:
            return self._rasterize(paths)
        except (OSError, ValueError, TypeError, MemoryError) as e:
            log.error("render failed", extra={"extra": {"tile": str(key), "error": str(e)}})
            raise RenderFailure(f"failed to render tile {key}: {e}") from e

    # -------- internals --------

    def _tile_path(self, key: TileKey, feature: Feature) -> List[Tuple[float, float]]:
        """Feature vertices in tile-local pixel coordinates."""
        ox, oy = tile_origin(key.z, key.x, key.y, self.tile_size)
        px, py = lonlat_to_global_pixel(feature.lon, feature.lat, key.z, self.tile_size)
        return list(zip((px - ox).tolist(), (py - oy).tolist()))

    def _rasterize(self, paths: List[List[Tuple[float, float]]]) -> bytes:
        img = Image.new("RGBA", (self.tile_size, self.tile_size), BACKGROUND)
        draw = ImageDraw.Draw(img)
        r = self.stroke_width / 2.0
        for pts in paths:
            if len(pts) == 1:
                (cx, cy), = pts
                draw.ellipse([cx - r, cy - r, cx + r, cy + r], fill=self.stroke_color)
            elif pts:
                draw.line(pts, fill=self.stroke_color, width=self.stroke_width)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()
