#!/usr/bin/env python3
"""
Integration tests for the HTTP API, driven through FastAPI's TestClient
"""

import io
import os
import sys
from unittest.mock import patch

import numpy as np
import pytest
import yaml
from fastapi.concurrency import run_in_threadpool
from fastapi.testclient import TestClient
from PIL import Image

# Add the project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from tile_server.server import _load_config, create_app
from tile_server.tracks import TrackRepository
from tests.helpers import MERIDIAN_LINE, gpx_bytes


def _config(tmp_path, static_dir=None):
    return {
        "tracks": {"dir": str(tmp_path / "tracks")},
        "tiles": {"cache_dir": str(tmp_path / "tile-cache"), "tile_size": 256,
                  "stroke_width": 2, "stroke_color": [255, 0, 0, 255]},
        "server": {"static_dir": static_dir},
        "logging": {"level": "WARNING"},
    }


@pytest.fixture
def client(tmp_path):
    TrackRepository(str(tmp_path / "tracks")).add("meridian.gpx", gpx_bytes(MERIDIAN_LINE))
    return TestClient(create_app(_config(tmp_path)))


@pytest.fixture
def empty_client(tmp_path):
    return TestClient(create_app(_config(tmp_path)))


def _upload(client, *files):
    return client.post("/tracks", files=[("files", (name, data, "application/gpx+xml")) for name, data in files])


def _painted(png: bytes) -> bool:
    return bool(np.asarray(Image.open(io.BytesIO(png)).convert("RGBA"))[:, :, 3].max() > 0)


def test_tile_png(client):
    r = client.get("/tiles/0/0/0.png")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/png"
    assert Image.open(io.BytesIO(r.content)).size == (256, 256)
    assert _painted(r.content)
    # second request is served from the cache with identical bytes
    assert client.get("/tiles/0/0/0.png").content == r.content


@pytest.mark.parametrize("path", ["/tiles/20/0/0.png", "/tiles/0/1/0.png", "/tiles/3/0/8.png", "/tiles/2/-1/0.png"])
def test_tile_out_of_range(client, path):
    r = client.get(path)
    assert r.status_code == 400


def test_tile_not_an_integer(client):
    assert client.get("/tiles/a/0/0.png").status_code == 422


def test_map_info(client):
    assert client.get("/map-info").json() == {"center": [5.0, 0.0], "zoom": 4}


def test_map_info_empty(empty_client):
    assert empty_client.get("/map-info").json() == {"center": [0.0, 0.0], "zoom": 0}
    assert empty_client.get("/tracks").json() == {"tracks": []}


def test_upload_then_delete(client):
    blank_before = client.get("/tiles/2/3/1.png").content
    assert not _painted(blank_before)

    r = _upload(client, ("east.gpx", gpx_bytes([(100.0, 40.0), (120.0, 50.0)])))
    assert r.status_code == 200
    assert r.json() == {"added": ["east.gpx"], "rejected": []}
    assert client.get("/tracks").json() == {"tracks": ["east.gpx", "meridian.gpx"]}
    assert _painted(client.get("/tiles/2/3/1.png").content)

    r = client.delete("/tracks/east.gpx")
    assert r.status_code == 200
    assert r.json() == {"removed": "east.gpx"}
    assert client.get("/tracks").json() == {"tracks": ["meridian.gpx"]}
    assert client.get("/tiles/2/3/1.png").content == blank_before


def test_upload_work_runs_in_threadpool(client):
    with patch("tile_server.server.run_in_threadpool", wraps=run_in_threadpool) as pool:
        r = _upload(client, ("east.gpx", gpx_bytes([(100.0, 40.0), (120.0, 50.0)])))
    assert r.status_code == 200
    fn, payload = pool.call_args.args
    assert fn == client.app.state.service.add_tracks
    assert [name for name, _ in payload] == ["east.gpx"]


def test_upload_partial(client):
    r = _upload(client,
                ("ok.gpx", gpx_bytes([(1.0, 1.0), (2.0, 2.0)])),
                ("broken.gpx", b"<gpx"))
    assert r.status_code == 200
    body = r.json()
    assert body["added"] == ["ok.gpx"]
    assert [x["name"] for x in body["rejected"]] == ["broken.gpx"]


def test_upload_nothing_valid(client):
    r = _upload(client, ("broken.gpx", b"<gpx"), ("notes.txt", b"hello"))
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "no_tracks_added"
    assert body["added"] == []
    assert len(body["rejected"]) == 2
    assert client.get("/tracks").json() == {"tracks": ["meridian.gpx"]}


def test_delete_missing(client):
    assert client.delete("/tracks/ghost.gpx").status_code == 404


def test_health_and_stats(client):
    client.get("/tiles/0/0/0.png")
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["snapshot"]["tracks"] == 1
    stats = client.get("/stats").json()
    assert stats["cache"]["entries"] == 1
    assert stats["generation"] == stats["cache"]["generation"]


def test_static_viewer(tmp_path):
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<html>map</html>")
    c = TestClient(create_app(_config(tmp_path, static_dir=str(public))))
    assert "map" in c.get("/").text
    # API routes still win over the static mount
    assert c.get("/map-info").status_code == 200


def test_load_config_merges_defaults(tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text(yaml.safe_dump({"tiles": {"stroke_width": 5}}))
    cfg = _load_config(str(path))
    assert cfg["tiles"]["stroke_width"] == 5
    assert cfg["tiles"]["tile_size"] == 256
    assert cfg["tracks"]["dir"] == "data/tracks"


def test_load_config_missing_file(tmp_path):
    cfg = _load_config(str(tmp_path / "nope.yaml"))
    assert cfg["server"]["port"] == 8000
