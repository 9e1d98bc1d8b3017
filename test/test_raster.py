import math

import numpy as np
import pytest
import rasterio

import config
from basin_rusle.raster import Raster, map_algebra, read_geotiff, write_geotiff
from conftest import make_grid


def test_projected_pixel_area():
    grid = make_grid(pixel=30.0)
    assert grid.pixel_size_m() == (30.0, 30.0)
    assert grid.pixel_area_m2() == 900.0


def test_geographic_pixel_size_shrinks_with_latitude():
    equator = make_grid(pixel=0.01, crs="EPSG:4326", x0=0.0, y0=0.01)
    north = make_grid(pixel=0.01, crs="EPSG:4326", x0=0.0, y0=60.01)
    w_eq, h_eq = equator.pixel_size_m()
    w_n, h_n = north.pixel_size_m()
    assert h_eq == pytest.approx(1113.2)
    assert h_n == pytest.approx(h_eq)
    assert w_n == pytest.approx(w_eq * math.cos(math.radians(60.0)), rel=1e-3)


def test_bounds_order():
    west, south, east, north = make_grid().bounds
    assert (west, east) == (500_000.0, 501_000.0)
    assert (south, north) == (1_999_000.0, 2_000_000.0)


def test_map_algebra_ignores_float_warnings():
    r = Raster(data=np.array([[0.0, 1.0], [2.0, 4.0]]), grid=make_grid())
    out = map_algebra(lambda v: 1.0 / v, r, name="inv")
    assert np.isinf(out.data[0, 0])
    assert out.data[1, 1] == 0.25


def test_value_range_of_masked_raster():
    r = Raster(data=np.full((2, 2), np.nan), grid=make_grid())
    lo, hi = r.value_range()
    assert math.isnan(lo) and math.isnan(hi)


def test_geotiff_nodata_roundtrip(tmp_path):
    r = Raster(data=np.array([[1.5, np.nan], [3.0, 4.0]]), grid=make_grid(), name="soil_loss")
    path = write_geotiff(r, str(tmp_path / "a.tif"))

    with rasterio.open(path) as src:
        assert src.nodata == config.NODATA
        assert src.read(1)[0, 1] == config.NODATA
        assert src.descriptions[0] == "soil_loss"

    back = read_geotiff(path)
    assert back.name == "a"
    np.testing.assert_array_equal(back.data, r.data)
    assert back.grid.matches(r.grid)
