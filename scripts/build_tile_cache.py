#!/usr/bin/env python3
"""
Pre-render the tile cache for the current track set.

Builds the same snapshot the server would, then renders every tile that holds
at least one track vertex for the requested zooms into `tiles.cache_dir`.
Run it with the server stopped. A server started afterwards keeps these tiles
as long as the tracks and the stroke style are unchanged.

Examples:
  python scripts/build_tile_cache.py --zoom 10 11 12 13 14
  python scripts/build_tile_cache.py --config config/params.yaml --zoom 0 1 2 3 --print-bounds
"""
from __future__ import annotations

import argparse
import os
import sys

# Add the project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.geo import MAX_ZOOM, MIN_ZOOM, tile_bounds
from common.logging_setup import get_logger
from tile_server.errors import RenderFailure
from tile_server.server import _load_config
from tile_server.renderer import TileRenderer
from tile_server.service import TileService
from tile_server.tile_cache import TileCache
from tile_server.tracks import TrackRepository


log = get_logger("build_tile_cache")


def build_service(P: dict) -> TileService:
    tiles_cfg = P["tiles"]
    renderer = TileRenderer(
        tile_size=int(tiles_cfg["tile_size"]),
        stroke_width=int(tiles_cfg["stroke_width"]),
        stroke_color=tiles_cfg["stroke_color"],
    )
    return TileService(TrackRepository(P["tracks"]["dir"]), TileCache(tiles_cfg["cache_dir"]), renderer)


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--config", default=None, help="YAML config (default: TRACKMAP_CONFIG or config/params.yaml)")
    ap.add_argument("--zoom", nargs="+", type=int, default=list(range(0, 13)), help="Zoom levels to render")
    ap.add_argument("--print-bounds", action="store_true", help="Print each tile's lon/lat bbox")
    args = ap.parse_args()

    bad = [z for z in args.zoom if not (MIN_ZOOM <= z <= MAX_ZOOM)]
    if bad:
        ap.error(f"zoom levels must be in [{MIN_ZOOM}, {MAX_ZOOM}]: {bad}")

    service = build_service(_load_config(args.config))
    snap = service.snapshot
    info = service.map_info()
    print(f"[ok] {len(snap.store)} features from {len(service.list_tracks())} tracks, "
          f"center={info['center']} zoom={info['zoom']}")

    rendered = failed = 0
    for z in sorted(set(args.zoom)):
        keys = snap.index.keys_at(z)
        for key in keys:
            try:
                service.get_tile(key.z, key.x, key.y)
                rendered += 1
            except RenderFailure as e:
                failed += 1
                log.error("pre-render failed", extra={"extra": {"tile": str(key), "error": str(e)}})
                continue
            if args.print_bounds:
                print(f"  {key}  bbox={tile_bounds(key.z, key.x, key.y)}")
        print(f"[ok] zoom {z}: {len(keys)} tiles")

    print(f"Rendered {rendered} tiles ({failed} failed) into {service.cache.root}")
    print("Start the server with:")
    print("  uvicorn tile_server.server:create_app --factory --port 8000")


if __name__ == "__main__":
    main()
