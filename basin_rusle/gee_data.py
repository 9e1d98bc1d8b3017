"""
GEE Data Module – Earth Engine authentication and the Earth Engine RasterStore.

Collection filtering, cloud screening, compositing and resampling run on
Earth Engine; each product is then materialised as a local GeoTIFF at
config.EXPORT_SCALE so every factor shares one grid.
"""

import logging
import os
import tempfile

import ee
import geemap
import numpy as np

import config
from basin_rusle.errors import MissingDataError
from basin_rusle.raster import Raster, read_geotiff
from basin_rusle.store import RasterStore

logger = logging.getLogger(__name__)


def initialize_ee(project_id: str = config.GEE_PROJECT_ID) -> None:
    """Authenticate (if needed) and initialise Earth Engine."""
    try:
        ee.Initialize(project=project_id)
    except Exception:
        ee.Authenticate()
        ee.Initialize(project=project_id)
    logger.info(f"[GEE] Initialised with project: {project_id}")


def _require(collection, what: str) -> int:
    """Server-side record count; MissingDataError when the filter matched nothing."""
    count = collection.size().getInfo()
    if count == 0:
        raise MissingDataError(f"No {what} records for the requested filter")
    logger.info(f"[GEE] {what}: {count} records")
    return count


class EarthEngineStore(RasterStore):
    """RasterStore backed by Google Earth Engine catalog assets."""

    def __init__(
        self,
        scale: float = config.EXPORT_SCALE,
        crs: str = config.CRS,
        land_cover_until: str = config.DEFAULT_END_DATE,
    ):
        self.scale = scale
        self.crs = crs
        self.land_cover_until = land_cover_until

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _resample(self, image: ee.Image) -> ee.Image:
        """Average a fine image (e.g. 30 m SRTM) down to the common scale."""
        return (
            image
            .reduceResolution(reducer=ee.Reducer.mean(), maxPixels=1024)
            .reproject(crs=self.crs, scale=self.scale)
        )

    def _to_raster(self, image: ee.Image, aoi: ee.Geometry, name: str) -> Raster:
        """Download a single-band image over the AOI as a Raster."""
        image = image.toDouble().clip(aoi)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, f"{name}.tif")
            geemap.ee_export_image(
                image,
                filename=path,
                scale=self.scale,
                region=aoi,
                crs=self.crs,
                file_per_band=False,
                unmask_value=config.NODATA,
                verbose=False,
            )
            if not os.path.exists(path):
                raise MissingDataError(f"Earth Engine download of '{name}' produced no file")
            raster = read_geotiff(path, name=name)

        data = np.where(raster.data == config.NODATA, np.nan, raster.data)
        logger.info(f"[GEE] {name} downloaded – shape {data.shape}")
        return raster.with_data(data, name)

    # ── RasterStore ─────────────────────────────────────────────────────────

    def basins(self, basin_id: int) -> list:
        fc = ee.FeatureCollection(config.BASIN_ASSET).filter(
            ee.Filter.eq(config.BASIN_ID_FIELD, basin_id)
        )
        count = fc.size().getInfo()
        features = fc.toList(max(count, 1))
        return [ee.Feature(features.get(i)).geometry() for i in range(count)]

    def precipitation_sum(self, aoi, start: str, end: str) -> Raster:
        precip = (
            ee.ImageCollection(config.PRECIP_ASSET)
            .filterDate(start, end)
            .filterBounds(aoi)
            .select(config.PRECIP_BAND)
        )
        _require(precip, "precipitation")
        return self._to_raster(precip.sum(), aoi, "precipitation")

    def soil_texture(self, aoi) -> Raster:
        soil = ee.Image(config.SOIL_ASSET).select(config.SOIL_BAND)
        return self._to_raster(soil, aoi, "soil_texture")

    def elevation(self, aoi) -> Raster:
        dem = ee.Image(config.DEM_ASSET).select(config.DEM_BAND)
        return self._to_raster(self._resample(dem), aoi, "elevation")

    def slope_degrees(self, aoi) -> Raster:
        slope = ee.Terrain.slope(ee.Image(config.DEM_ASSET).select(config.DEM_BAND))
        return self._to_raster(self._resample(slope), aoi, "slope_deg")

    def reflectance(self, aoi, start: str, end: str, max_cloud_pct: float) -> tuple:
        scenes = (
            ee.ImageCollection(config.S2_ASSET)
            .filterDate(start, end)
            .filterBounds(aoi)
            .filter(ee.Filter.lt(config.CLOUD_PROPERTY, max_cloud_pct))
        )
        _require(scenes, "Sentinel-2 scene")
        composite = scenes.median()
        nir = self._to_raster(composite.select(config.NIR_BAND), aoi, "nir")
        red = self._to_raster(composite.select(config.RED_BAND), aoi, "red")
        return nir, red

    def land_cover(self, aoi) -> Raster:
        # most recent annual map that starts before the window closes
        lulc = (
            ee.ImageCollection(config.LULC_ASSET)
            .filterDate("2001-01-01", self.land_cover_until)
            .select(config.LULC_BAND)
        )
        _require(lulc, "land cover")
        latest = lulc.sort("system:time_start", False).first()
        return self._to_raster(ee.Image(latest), aoi, "land_cover")

    def aoi_mask(self, aoi) -> Raster:
        return self._to_raster(ee.Image.constant(1), aoi, "aoi")

    def sub_basins(self, aoi) -> Raster:
        zones = ee.FeatureCollection(config.SUBBASIN_ASSET).filterBounds(aoi)
        _require(zones, "sub-basin")
        zone_image = zones.reduceToImage([config.BASIN_ID_FIELD], ee.Reducer.first())
        return self._to_raster(zone_image, aoi, "sub_basin")
