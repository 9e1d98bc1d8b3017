"""
Raster Module – Grid / Raster containers, co-registration checks, GeoTIFF I/O.

Rasters are single-band float64 arrays; masked pixels are NaN in memory and
config.NODATA on disk.
"""

import logging
import math
import os
from dataclasses import dataclass

import numpy as np
import rasterio
from affine import Affine
from rasterio.crs import CRS
from rasterio.transform import array_bounds

import config
from basin_rusle.errors import GridMismatchError

logger = logging.getLogger(__name__)

M_PER_DEG = 111_320  # metres per degree latitude


@dataclass(frozen=True)
class Grid:
    """Pixel grid shared by co-registered rasters."""

    shape: tuple
    transform: Affine
    crs: str

    @property
    def is_geographic(self) -> bool:
        return CRS.from_user_input(self.crs).is_geographic

    @property
    def bounds(self) -> tuple:
        """(west, south, east, north) in grid CRS units."""
        rows, cols = self.shape
        return array_bounds(rows, cols, self.transform)

    def pixel_size_m(self) -> tuple:
        """(width, height) of one pixel in metres."""
        width, height = abs(self.transform.a), abs(self.transform.e)
        if not self.is_geographic:
            return width, height
        # For EPSG:4326, pixel size is in degrees – convert to metres
        _, south, _, north = self.bounds
        mid_lat = (south + north) / 2
        return width * M_PER_DEG * math.cos(math.radians(mid_lat)), height * M_PER_DEG

    def pixel_area_m2(self) -> float:
        width, height = self.pixel_size_m()
        return width * height

    def matches(self, other: "Grid", tol: float = 1e-9) -> bool:
        if tuple(self.shape) != tuple(other.shape):
            return False
        if not np.allclose(tuple(self.transform)[:6], tuple(other.transform)[:6], rtol=0, atol=tol):
            return False
        return CRS.from_user_input(self.crs) == CRS.from_user_input(other.crs)


@dataclass(frozen=True)
class Raster:
    """Immutable single-band raster."""

    data: np.ndarray
    grid: Grid
    name: str = "band"

    def __post_init__(self):
        data = np.array(self.data, dtype=np.float64)
        if data.shape != tuple(self.grid.shape):
            raise GridMismatchError(
                f"{self.name}: array shape {data.shape} does not match grid {tuple(self.grid.shape)}"
            )
        data.setflags(write=False)
        object.__setattr__(self, "data", data)

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(self.data)

    def with_data(self, data: np.ndarray, name: str) -> "Raster":
        return Raster(data=data, grid=self.grid, name=name)

    def value_range(self) -> tuple:
        """(min, max) over valid pixels, (nan, nan) when fully masked."""
        if not self.valid.any():
            return math.nan, math.nan
        return float(np.nanmin(self.data)), float(np.nanmax(self.data))


def check_same_grid(*rasters: Raster) -> Grid:
    """Return the common grid, raising GridMismatchError for the first odd one out."""
    reference = rasters[0]
    for other in rasters[1:]:
        if not reference.grid.matches(other.grid):
            raise GridMismatchError(
                f"'{reference.name}' and '{other.name}' are not co-registered: "
                f"{reference.grid} vs {other.grid}"
            )
    return reference.grid


def map_algebra(fn, *rasters: Raster, name: str) -> Raster:
    """Apply a per-pixel array function to co-registered rasters."""
    grid = check_same_grid(*rasters)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        out = fn(*(r.data for r in rasters))
    return Raster(data=out, grid=grid, name=name)


def read_geotiff(path: str, band: int = 1, name: str = None) -> Raster:
    """Read one band; the file's nodata value becomes NaN."""
    with rasterio.open(path) as src:
        arr = src.read(band).astype(np.float64)
        if src.nodata is not None and not np.isnan(src.nodata):
            arr[arr == src.nodata] = np.nan
        grid = Grid(shape=arr.shape, transform=src.transform, crs=src.crs.to_string())
    return Raster(data=arr, grid=grid, name=name or os.path.splitext(os.path.basename(path))[0])


def write_geotiff(raster: Raster, path: str, dtype: str = "float32") -> str:
    """Persist a single-band GeoTIFF with config.NODATA for masked pixels."""
    filled = np.where(raster.valid, raster.data, config.NODATA).astype(dtype)
    rows, cols = raster.grid.shape
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=rows,
        width=cols,
        count=1,
        dtype=dtype,
        transform=raster.grid.transform,
        crs=raster.grid.crs,
        nodata=config.NODATA,
    ) as dst:
        dst.write(filled, 1)
        dst.set_band_description(1, raster.name)
    logger.info(f"[EXPORT] GeoTIFF saved → {path}")
    return path
