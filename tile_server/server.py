from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import uvicorn
import yaml
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from common.logging_setup import get_logger, setup_logging
from common.utils import iso_now_ms
from tile_server.errors import InvalidTileCoordinate, RenderFailure, StorageFailure, TrackNotFound
from tile_server.renderer import TileRenderer
from tile_server.service import TileService
from tile_server.tile_cache import TileCache
from tile_server.tracks import TrackRepository


log = get_logger(__name__)

DEFAULT_CONFIG: Dict = {
    "tracks": {"dir": "data/tracks"},
    "tiles": {"cache_dir": "data/tile-cache", "tile_size": 256, "stroke_width": 2, "stroke_color": [255, 0, 0, 255]},
    "server": {"host": "0.0.0.0", "port": 8000, "static_dir": "public"},
    "logging": {"level": "INFO"},
}


def _load_config(path: Optional[str] = None) -> Dict:
    """
    Read the YAML config (env TRACKMAP_CONFIG, else config/params.yaml).
    Missing file or missing sections fall back to DEFAULT_CONFIG.
    """
    path = path or os.environ.get("TRACKMAP_CONFIG", "config/params.yaml")
    loaded: Dict = {}
    if Path(path).exists():
        with open(path, "r") as f:
            loaded = yaml.safe_load(f) or {}
    cfg = {k: dict(v) for k, v in DEFAULT_CONFIG.items()}
    for section, values in loaded.items():
        if isinstance(values, dict):
            cfg.setdefault(section, {}).update(values)
    return cfg


def create_app(config: Optional[Dict] = None) -> FastAPI:
    P = config if config is not None else _load_config()
    setup_logging(P.get("logging", {}).get("level"), force=True)

    tiles_cfg = P.get("tiles", {})
    repo = TrackRepository(P.get("tracks", {}).get("dir", "data/tracks"))
    cache = TileCache(tiles_cfg.get("cache_dir", "data/tile-cache"))
    renderer = TileRenderer(
        tile_size=int(tiles_cfg.get("tile_size", 256)),
        stroke_width=int(tiles_cfg.get("stroke_width", 2)),
        stroke_color=tiles_cfg.get("stroke_color", [255, 0, 0, 255]),
    )
    service = TileService(repo, cache, renderer)

    app = FastAPI(title="Track Tile API", version="1.0.0")
    app.state.service = service

    # (Optional) CORS so other map pages can use the tiles
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"status": "ok", "time": iso_now_ms(), "snapshot": service.stats()}

    @app.get("/stats")
    def stats():
        return service.stats()

    @app.get("/tiles/{z}/{x}/{y}.png")
    def tile(z: int, x: int, y: int):
        """PNG tile; rendered on first request, then served from the disk cache."""
        try:
            png = service.get_tile(z, x, y)
        except InvalidTileCoordinate as e:
            raise HTTPException(status_code=400, detail=str(e))
        except RenderFailure as e:
            return JSONResponse({"error": "render_failed", "detail": str(e)}, status_code=500)
        return Response(content=png, media_type="image/png")

    @app.get("/map-info")
    def map_info():
        return service.map_info()

    @app.get("/tracks")
    def list_tracks():
        return {"tracks": service.list_tracks()}

    @app.post("/tracks")
    async def upload_tracks(files: List[UploadFile] = File(..., description="GPX files")):
        payload = []
        for f in files:
            payload.append((f.filename or "", await f.read()))
        try:
            # parsing, writes and the index rebuild block; keep them off the event loop
            report = await run_in_threadpool(service.add_tracks, payload)
        except StorageFailure as e:
            return JSONResponse({"error": "storage_failed", "detail": str(e)}, status_code=500)
        if not report.added:
            return JSONResponse({"error": "no_tracks_added", **report.to_dict()}, status_code=400)
        return report.to_dict()

    @app.delete("/tracks/{track_id}")
    def delete_track(track_id: str):
        try:
            service.remove_track(track_id)
        except TrackNotFound:
            raise HTTPException(status_code=404, detail=f"track_not_found: {track_id}")
        except StorageFailure as e:
            return JSONResponse({"error": "storage_failed", "detail": str(e)}, status_code=500)
        return {"removed": track_id}

    # Viewer page; mounted last so the API routes win
    static_dir = P.get("server", {}).get("static_dir")
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="public")

    return app


# -------- local dev entrypoint --------
if __name__ == "__main__":
    server_cfg = _load_config().get("server", {})
    uvicorn.run(
        "tile_server.server:create_app",
        factory=True,
        host=server_cfg.get("host", "0.0.0.0"),
        port=int(server_cfg.get("port", 8000)),
    )
