import os
import sys

import geopandas as gpd
import numpy as np
import pytest
import rasterio
from affine import Affine
from shapely.geometry import box

# Ensure project root is on the path so `import config` works
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config  # noqa: E402
from basin_rusle.raster import Grid  # noqa: E402
from basin_rusle.store import ArrayRasterStore  # noqa: E402

UTM = "EPSG:32643"
X0, Y0 = 500_000.0, 2_000_000.0
PIXEL = 500.0

BASIN_ID = 1
LEFT_ZONE, RIGHT_ZONE = 101, 102


def make_grid(shape=(2, 2), pixel=PIXEL, crs=UTM, x0=X0, y0=Y0) -> Grid:
    return Grid(shape=shape, transform=Affine(pixel, 0, x0, 0, -pixel, y0), crs=crs)


def grid_box(grid: Grid, pad: float = 0.0):
    west, south, east, north = grid.bounds
    return box(west - pad, south - pad, east + pad, north + pad)


# ── 2×2 reference inputs ─────────────────────────────────────────────────────

PRECIP_DAYS = {
    "2022-03-01": np.array([[600.0, 700.0], [400.0, 500.0]]),
    "2022-09-01": np.array([[400.0, 500.0], [400.0, 500.0]]),
    # outside [2022-01-01, 2023-01-01)
    "2023-01-01": np.array([[9e5, 9e5], [9e5, 9e5]]),
}
SOIL = np.array([[1.0, 7.0], [12.0, 99.0]])
ELEVATION = np.array([[100.0, 130.0], [100.0, 130.0]])
NIR = np.array([[0.6, 0.3], [0.9, 0.6]])
RED = np.array([[0.4, 0.1], [0.1, 0.4]])
LAND_COVER = np.array([[12.0, 5.0], [14.0, 13.0]])


def reference_scenes():
    return [
        {"date": "2022-06-01", "nir": NIR, "red": RED, "cloud_pct": 5.0},
        # too cloudy, must be ignored
        {"date": "2022-07-01", "nir": RED, "red": NIR, "cloud_pct": 60.0},
    ]


def basin_catalog(grid: Grid, ids=(BASIN_ID,)) -> gpd.GeoDataFrame:
    geom = grid_box(grid, pad=grid.transform.a / 10)
    return gpd.GeoDataFrame(
        {config.BASIN_ID_FIELD: list(ids)}, geometry=[geom] * len(ids), crs=grid.crs
    )


def subbasin_catalog(grid: Grid) -> gpd.GeoDataFrame:
    west, south, east, north = grid.bounds
    mid = (west + east) / 2
    return gpd.GeoDataFrame(
        {config.BASIN_ID_FIELD: [LEFT_ZONE, RIGHT_ZONE]},
        geometry=[box(west, south, mid, north), box(mid, south, east, north)],
        crs=grid.crs,
    )


@pytest.fixture
def grid():
    return make_grid()


@pytest.fixture
def make_store(grid):
    """Factory for the 2×2 reference store; keyword arguments replace layers."""
    def _make(**overrides):
        layers = dict(
            grid=grid,
            basins=basin_catalog(grid),
            sub_basins=subbasin_catalog(grid),
            precipitation=PRECIP_DAYS,
            soil_texture=SOIL,
            elevation=ELEVATION,
            reflectance=reference_scenes(),
            land_cover=LAND_COVER,
        )
        layers.update(overrides)
        return ArrayRasterStore(**layers)

    return _make


@pytest.fixture
def store(make_store):
    return make_store()


# ── GeoTIFF data directory ───────────────────────────────────────────────────

def write_tif(path, bands, grid: Grid, tags=None):
    bands = [np.asarray(b, dtype="float32") for b in bands]
    rows, cols = grid.shape
    with rasterio.open(
        path, "w", driver="GTiff", height=rows, width=cols, count=len(bands),
        dtype="float32", transform=grid.transform, crs=grid.crs, nodata=config.NODATA,
    ) as dst:
        for i, band in enumerate(bands, start=1):
            dst.write(band, i)
        if tags:
            dst.update_tags(**tags)


@pytest.fixture
def geo_grid():
    return make_grid(pixel=0.01, crs="EPSG:4326", x0=78.0, y0=17.0)


@pytest.fixture
def data_dir(tmp_path, geo_grid):
    root = tmp_path / "data"
    (root / "precipitation").mkdir(parents=True)
    (root / "reflectance").mkdir()

    basin_catalog(geo_grid).to_file(root / "basins.geojson", driver="GeoJSON")
    subbasin_catalog(geo_grid).to_file(root / "subbasins.geojson", driver="GeoJSON")
    write_tif(root / "elevation.tif", [ELEVATION], geo_grid)
    write_tif(root / "soil_texture.tif", [SOIL], geo_grid)
    write_tif(root / "land_cover.tif", [LAND_COVER], geo_grid)
    for day, arr in PRECIP_DAYS.items():
        write_tif(root / "precipitation" / f"{day}.tif", [arr], geo_grid)
    for scene in reference_scenes():
        write_tif(
            root / "reflectance" / f"{scene['date']}.tif",
            [scene["nir"], scene["red"]],
            geo_grid,
            tags={config.CLOUD_PROPERTY: str(scene["cloud_pct"])},
        )
    return root
