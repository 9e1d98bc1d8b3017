"""
Raster Store – the capability set the workflow borrows from a raster backend.

The factor computers only see Rasters handed out by a RasterStore, so the
backend (local arrays, Google Earth Engine) can be swapped without touching
them. Every loader returns a Raster on the store's common grid, clipped to
the AOI (pixels outside it are NaN).
"""

import glob
import logging
import os
import warnings
from abc import ABC, abstractmethod
from datetime import date

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.features import geometry_mask, rasterize

import config
from basin_rusle.errors import MissingDataError
from basin_rusle.factors import slope_from_elevation
from basin_rusle.raster import Grid, Raster, check_same_grid, read_geotiff

logger = logging.getLogger(__name__)


class RasterStore(ABC):
    """Read-only source of AOI-clipped input rasters."""

    @abstractmethod
    def basins(self, basin_id: int) -> list:
        """Every basin geometry whose identifier equals basin_id."""

    @abstractmethod
    def precipitation_sum(self, aoi, start: str, end: str) -> Raster:
        """Per-pixel precipitation total over [start, end).

        Raises MissingDataError when no record falls in the window.
        """

    @abstractmethod
    def soil_texture(self, aoi) -> Raster:
        ...

    @abstractmethod
    def elevation(self, aoi) -> Raster:
        ...

    def slope_degrees(self, aoi) -> Raster:
        """Terrain slope angle in degrees, derived from elevation."""
        return slope_from_elevation(self.elevation(aoi))

    @abstractmethod
    def reflectance(self, aoi, start: str, end: str, max_cloud_pct: float) -> tuple:
        """(nir, red) median composite of scenes below max_cloud_pct cloud cover."""

    @abstractmethod
    def land_cover(self, aoi) -> Raster:
        ...

    @abstractmethod
    def sub_basins(self, aoi) -> Raster:
        """Zone-id raster of the finer basin level (NaN outside every zone)."""

    @abstractmethod
    def aoi_mask(self, aoi) -> Raster:
        """1 on every pixel of the AOI footprint, NaN elsewhere."""


def _in_window(day: str, start: str, end: str) -> bool:
    return date.fromisoformat(start) <= date.fromisoformat(day) < date.fromisoformat(end)


def _read_layer(path: str, band: int = 1, name: str = None) -> Raster:
    try:
        return read_geotiff(path, band=band, name=name)
    except (RasterioIOError, IndexError) as e:
        raise MissingDataError(f"Cannot read raster {path}: {e}") from e


class ArrayRasterStore(RasterStore):
    """
    Local numpy backend.

    All layers are arrays on one Grid; basin catalogs are GeoDataFrames in
    (or reprojected to) the grid CRS and carry an integer id column.
    """

    def __init__(
        self,
        grid: Grid,
        basins: gpd.GeoDataFrame,
        sub_basins: gpd.GeoDataFrame = None,
        precipitation: dict = None,
        soil_texture: np.ndarray = None,
        elevation: np.ndarray = None,
        reflectance: list = None,
        land_cover: np.ndarray = None,
        id_field: str = config.BASIN_ID_FIELD,
    ):
        self.grid = grid
        self.id_field = id_field
        self._basins = self._to_grid_crs(basins)
        self._sub_basins = self._to_grid_crs(sub_basins) if sub_basins is not None else None
        self._precipitation = dict(precipitation or {})
        self._reflectance = list(reflectance or [])
        self._layers = {
            "soil_texture": soil_texture,
            "elevation": elevation,
            "land_cover": land_cover,
        }

    def _to_grid_crs(self, gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        if gdf.crs is not None and gdf.crs != self.grid.crs:
            return gdf.to_crs(self.grid.crs)
        return gdf

    # ── Clipping ────────────────────────────────────────────────────────────

    def _clip(self, arr: np.ndarray, aoi, name: str) -> Raster:
        inside = geometry_mask(
            [aoi],
            out_shape=tuple(self.grid.shape),
            transform=self.grid.transform,
            invert=True,
        )
        data = np.where(inside, np.asarray(arr, dtype=np.float64), np.nan)
        return Raster(data=data, grid=self.grid, name=name)

    def aoi_mask(self, aoi) -> Raster:
        return self._clip(np.ones(self.grid.shape), aoi, "aoi")

    def _static(self, aoi, name: str) -> Raster:
        arr = self._layers.get(name)
        if arr is None:
            raise MissingDataError(f"No '{name}' layer available")
        return self._clip(arr, aoi, name)

    # ── RasterStore ─────────────────────────────────────────────────────────

    def basins(self, basin_id: int) -> list:
        rows = self._basins[self._basins[self.id_field] == basin_id]
        return list(rows.geometry)

    def precipitation_sum(self, aoi, start: str, end: str) -> Raster:
        days = [arr for day, arr in sorted(self._precipitation.items()) if _in_window(day, start, end)]
        if not days:
            raise MissingDataError(f"No precipitation records between {start} and {end}")
        logger.debug(f"[STORE] Summing {len(days)} precipitation records")
        total = np.sum(np.stack(days).astype(np.float64), axis=0)
        return self._clip(total, aoi, "precipitation")

    def soil_texture(self, aoi) -> Raster:
        return self._static(aoi, "soil_texture")

    def elevation(self, aoi) -> Raster:
        return self._static(aoi, "elevation")

    def land_cover(self, aoi) -> Raster:
        return self._static(aoi, "land_cover")

    def slope_degrees(self, aoi) -> Raster:
        # slope on the full DEM, so pixels on the AOI edge keep both neighbours
        dem = self._layers.get("elevation")
        if dem is None:
            raise MissingDataError("No 'elevation' layer available")
        slope = slope_from_elevation(Raster(data=dem, grid=self.grid, name="elevation"))
        return self._clip(slope.data, aoi, "slope_deg")

    def reflectance(self, aoi, start: str, end: str, max_cloud_pct: float) -> tuple:
        scenes = [
            s for s in self._reflectance
            if _in_window(s["date"], start, end) and s.get("cloud_pct", 0.0) < max_cloud_pct
        ]
        if not scenes:
            raise MissingDataError(
                f"No reflectance scenes below {max_cloud_pct}% cloud between {start} and {end}"
            )
        with warnings.catch_warnings():
            # all-NaN pixels stay NaN
            warnings.simplefilter("ignore", RuntimeWarning)
            nir = np.nanmedian(np.stack([s["nir"] for s in scenes]).astype(np.float64), axis=0)
            red = np.nanmedian(np.stack([s["red"] for s in scenes]).astype(np.float64), axis=0)
        logger.debug(f"[STORE] Reflectance composite from {len(scenes)} scenes")
        return self._clip(nir, aoi, "nir"), self._clip(red, aoi, "red")

    def sub_basins(self, aoi) -> Raster:
        if self._sub_basins is None or self._sub_basins.empty:
            raise MissingDataError("No sub-basin catalog available")
        shapes = [
            (geom, float(zone_id))
            for geom, zone_id in zip(self._sub_basins.geometry, self._sub_basins[self.id_field])
            if geom is not None
        ]
        zones = rasterize(
            shapes,
            out_shape=tuple(self.grid.shape),
            transform=self.grid.transform,
            fill=config.NODATA,
            dtype="float64",
        )
        zones[zones == config.NODATA] = np.nan
        return self._clip(zones, aoi, "sub_basin")

    # ── Loading from disk ───────────────────────────────────────────────────

    @classmethod
    def from_directory(cls, data_dir: str, id_field: str = config.BASIN_ID_FIELD) -> "ArrayRasterStore":
        """
        Build a store from a data directory laid out as:

            basins.geojson              basin polygons with an id_field column
            subbasins.geojson           finer basin polygons (optional)
            elevation.tif               reference grid for every other layer
            soil_texture.tif            USDA texture class codes
            land_cover.tif              MODIS LC_Type1 codes
            precipitation/<date>.tif    one file per ISO date
            reflectance/<date>.tif      band 1 NIR, band 2 red; optional
                                        CLOUDY_PIXEL_PERCENTAGE tag

        Every raster must share the elevation grid.
        """
        def path(*parts):
            return os.path.join(data_dir, *parts)

        basins_path = path("basins.geojson")
        if not os.path.exists(basins_path):
            raise MissingDataError(f"Basin catalog not found: {basins_path}")

        elevation_path = path("elevation.tif")
        if not os.path.exists(elevation_path):
            raise MissingDataError(f"Reference elevation raster not found: {elevation_path}")
        elevation = _read_layer(elevation_path, name="elevation")
        grid = elevation.grid

        def load(name):
            p = path(f"{name}.tif")
            if not os.path.exists(p):
                return None
            layer = _read_layer(p, name=name)
            check_same_grid(elevation, layer)
            return layer.data

        precipitation = {}
        for p in sorted(glob.glob(path("precipitation", "*.tif"))):
            layer = _read_layer(p)
            check_same_grid(elevation, layer)
            precipitation[layer.name] = layer.data

        reflectance = []
        for p in sorted(glob.glob(path("reflectance", "*.tif"))):
            nir = _read_layer(p, band=1, name="nir")
            red = _read_layer(p, band=2, name="red")
            check_same_grid(elevation, nir)
            with rasterio.open(p) as src:
                cloud = float(src.tags().get(config.CLOUD_PROPERTY, 0.0))
            reflectance.append({
                "date": os.path.splitext(os.path.basename(p))[0],
                "nir": nir.data,
                "red": red.data,
                "cloud_pct": cloud,
            })

        sub_path = path("subbasins.geojson")
        sub_basins = gpd.read_file(sub_path) if os.path.exists(sub_path) else None

        logger.info(
            f"[STORE] Loaded {data_dir}: grid {grid.shape}, "
            f"{len(precipitation)} precipitation records, {len(reflectance)} reflectance scenes"
        )
        return cls(
            grid=grid,
            basins=gpd.read_file(basins_path),
            sub_basins=sub_basins,
            precipitation=precipitation,
            soil_texture=load("soil_texture"),
            elevation=elevation.data,
            reflectance=reflectance,
            land_cover=load("land_cover"),
            id_field=id_field,
        )
