"""
Unit tests for TileRenderer
"""

import io
import os
import sys
from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.geo import lonlat_to_tile
from common.types import Feature
from tile_server.errors import InvalidTileCoordinate, RenderFailure
from tile_server.geometry_store import GeometryStore
from tile_server.renderer import TileRenderer
from tile_server.tile_index import TileIndex, build_tile_index
from tests.helpers import MERIDIAN_LINE


def _decode(png: bytes) -> Image.Image:
    return Image.open(io.BytesIO(png))


def _alpha(png: bytes) -> np.ndarray:
    return np.asarray(_decode(png).convert("RGBA"))[:, :, 3]


@pytest.fixture
def meridian():
    store = GeometryStore([Feature(coords=MERIDIAN_LINE, track_id="m.gpx")])
    return store, build_tile_index(store)


class TestTileRenderer:
    """Test cases for TileRenderer.render"""

    def test_zoom0_draws_stroke(self, meridian):
        store, index = meridian
        png = TileRenderer().render(0, 0, 0, index, store)
        img = _decode(png)
        assert img.format == "PNG"
        assert img.size == (256, 256)
        assert img.mode == "RGBA"
        alpha = _alpha(png)
        assert alpha.max() == 255
        # stroke runs along x=128 between the equator and 10N
        assert alpha[125:128, 126:131].max() > 0

    def test_stroke_colour(self, meridian):
        store, index = meridian
        rgba = np.asarray(_decode(TileRenderer().render(0, 0, 0, index, store)).convert("RGBA"))
        painted = rgba[rgba[:, :, 3] > 0]
        assert (painted[:, :3] == [255, 0, 0]).all()

    def test_zoom10_endpoint_tile_is_drawn(self, meridian):
        """The 10N end sits mid-tile on its left edge; the line runs south from it"""
        store, index = meridian
        x, y = lonlat_to_tile(0.0, 10.0, 10)
        alpha = _alpha(TileRenderer().render(10, x, y, index, store))
        assert alpha[110:250, 0:2].max() > 0
        assert alpha[0:100, :].max() == 0

    def test_unindexed_tile_is_blank(self, meridian):
        store, index = meridian
        png = TileRenderer().render(3, 0, 0, index, store)
        assert _decode(png).size == (256, 256)
        assert _alpha(png).max() == 0

    def test_empty_snapshot_renders_blank(self):
        png = TileRenderer().render(5, 10, 10, TileIndex(), GeometryStore())
        assert _alpha(png).max() == 0

    def test_deterministic(self, meridian):
        store, index = meridian
        r = TileRenderer()
        assert r.render(0, 0, 0, index, store) == r.render(0, 0, 0, index, store)
        assert TileRenderer().render(0, 0, 0, index, store) == r.render(0, 0, 0, index, store)

    @pytest.mark.parametrize("zxy", [(-1, 0, 0), (20, 0, 0), (0, 1, 0), (0, 0, 1), (4, 16, 0), (4, 0, -1)])
    def test_invalid_coordinates(self, meridian, zxy):
        store, index = meridian
        with patch.object(TileRenderer, "_rasterize") as raster:
            with pytest.raises(InvalidTileCoordinate):
                TileRenderer().render(*zxy, index, store)
            raster.assert_not_called()

    @pytest.mark.parametrize("z", [0, 1, 7, 13, 19])
    def test_grid_corners_render(self, meridian, z):
        store, index = meridian
        last = (1 << z) - 1
        for x, y in ((0, 0), (last, 0), (0, last), (last, last)):
            assert _decode(TileRenderer().render(z, x, y, index, store)).size == (256, 256)

    def test_stale_feature_index_is_skipped(self):
        """Index from a larger store rendered against a smaller one"""
        big = GeometryStore([
            Feature(coords=MERIDIAN_LINE, track_id="a.gpx"),
            Feature(coords=[(1.0, 1.0), (2.0, 2.0)], track_id="b.gpx"),
        ])
        index = build_tile_index(big)
        small = GeometryStore([Feature(coords=MERIDIAN_LINE, track_id="a.gpx")])
        r = TileRenderer()
        assert r.render(0, 0, 0, index, small) == r.render(0, 0, 0, build_tile_index(small), small)

    def test_single_vertex_line_draws_dot(self):
        store = GeometryStore([Feature(coords=[(0.0, 0.0)], track_id="p.gpx")])
        alpha = _alpha(TileRenderer().render(0, 0, 0, build_tile_index(store), store))
        assert alpha[127:130, 127:130].max() > 0

    def test_custom_tile_size(self, meridian):
        store, index = meridian
        png = TileRenderer(tile_size=512).render(0, 0, 0, index, store)
        assert _decode(png).size == (512, 512)

    def test_rasterizer_error_becomes_render_failure(self, meridian):
        store, index = meridian
        with patch.object(Image.Image, "save", side_effect=OSError("encoder broke")):
            with pytest.raises(RenderFailure):
                TileRenderer().render(0, 0, 0, index, store)

    def test_bad_colour(self):
        with pytest.raises(ValueError):
            TileRenderer(stroke_color=(255, 0, 0))
