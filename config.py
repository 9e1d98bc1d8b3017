"""
Configuration constants for the Basin Soil Loss (RUSLE) workflow.

Model: A(x) = R(x) × K(x) × LS(x) × C(x) × P(x)   [t · ha⁻¹ · yr⁻¹]
  R  = 0.363 · P_sum + 79                 (rainfall erosivity)
  K  = texture-class lookup               (soil erodibility)
  LS = (0.76 + 0.53·S + 0.076·S²)·√(L/22.13)
  C  = exp(−2·NDVI / (1 − NDVI)), rescaled to [0, 1]
  P  = land-cover × slope rule table      (support practice)

Per-run options live in RunConfig at the bottom of this file; everything
above it is a default.
"""

import math
import os
from dataclasses import dataclass
from datetime import date

# ── Google Earth Engine ──────────────────────────────────────────────────────
GEE_PROJECT_ID = os.environ.get("GEE_PROJECT_ID", "basin-rusle")

# ── Area of Interest (HydroSHEDS basins) ────────────────────────────────────
BASIN_ASSET = "WWF/HydroSHEDS/v1/Basins/hybas_6"
SUBBASIN_ASSET = "WWF/HydroSHEDS/v1/Basins/hybas_8"
BASIN_ID_FIELD = "HYBAS_ID"
DEFAULT_BASIN_ID = 4061034830

# ── Data Sources (GEE asset IDs) ────────────────────────────────────────────
PRECIP_ASSET = "UCSB-CHG/CHIRPS/DAILY"
PRECIP_BAND = "precipitation"
SOIL_ASSET = "OpenLandMap/SOL/SOL_TEXTURE-CLASS_USDA-TT_M/v02"
SOIL_BAND = "b0"
DEM_ASSET = "USGS/SRTMGL1_003"
DEM_BAND = "elevation"
S2_ASSET = "COPERNICUS/S2_SR_HARMONIZED"
NIR_BAND = "B8"
RED_BAND = "B4"
CLOUD_PROPERTY = "CLOUDY_PIXEL_PERCENTAGE"
MAX_CLOUD_PCT = 10
FACTOR_WORKERS = 5
LULC_ASSET = "MODIS/061/MCD12Q1"
LULC_BAND = "LC_Type1"

# ── Analysis window (half-open: start inclusive, end exclusive) ─────────────
DEFAULT_START_DATE = "2022-01-01"
DEFAULT_END_DATE = "2023-01-01"

# ── Processing ───────────────────────────────────────────────────────────────
EXPORT_SCALE = 500       # metres – common grid for every factor
CRS = "EPSG:4326"
MAX_PIXELS = 1e13
NODATA = -9999.0

# ── R factor ────────────────────────────────────────────────────────────────
R_SLOPE = 0.363
R_INTERCEPT = 79.0

# ── K factor (USDA texture class → erodibility, t·ha·h / ha·MJ·mm) ──────────
K_FACTORS = {
    1: 0.0288,   # clay
    2: 0.0341,   # silty clay
    3: 0.0360,   # sandy clay
    4: 0.0394,   # clay loam
    5: 0.0423,   # silty clay loam
    6: 0.0264,   # sandy clay loam
    7: 0.0394,   # loam
    8: 0.0499,   # silty loam
    9: 0.0500,   # sandy loam
    10: 0.0450,  # silt
    11: 0.0170,  # loamy sand
    12: 0.0053,  # sand
}
K_DEFAULT = 0.0

# ── LS factor ───────────────────────────────────────────────────────────────
SLOPE_LENGTH_M = 500.0
LS_UNIT_PLOT_LENGTH = 22.13

# ── C factor ────────────────────────────────────────────────────────────────
# "observed": rescale to the AOI's own min/max (varies with AOI composition)
# "theoretical": divide by e, the largest raw C over NDVI ∈ [-1, 1)
C_NORMALIZATION = "observed"
C_NORMALIZATIONS = ("observed", "theoretical")
C_THEORETICAL_MAX = math.e

# ── P factor (MODIS LC_Type1 × slope %, first match wins) ───────────────────
# (land-cover codes, slope_min, slope_max, P) – slope bounds are [min, max)
CROPLAND_CODES = (12, 14)
P_RULES = (
    (tuple(range(1, 11)), 0.0, math.inf, 0.8),    # forests, shrubs, savannas, grass
    ((11, 13, 15, 16, 17), 0.0, math.inf, 1.0),   # wetland, urban, snow, barren, water
    (CROPLAND_CODES, 0.0, 2.0, 0.6),
    (CROPLAND_CODES, 2.0, 5.0, 0.5),
    (CROPLAND_CODES, 5.0, 8.0, 0.5),
    (CROPLAND_CODES, 8.0, 12.0, 0.6),
    (CROPLAND_CODES, 12.0, 16.0, 0.7),
    (CROPLAND_CODES, 16.0, 20.0, 0.8),
    (CROPLAND_CODES, 20.0, 25.0, 0.9),
    (CROPLAND_CODES, 25.0, math.inf, 1.0),
)
P_DEFAULT = 1.0

# ── Erosion Classification (t/ha/yr, intervals are [low, high)) ─────────────
EROSION_BREAKPOINTS = (5.0, 10.0, 20.0, 40.0)
EROSION_LABELS = ("Slight", "Moderate", "High", "Severe", "Very severe")
EROSION_COLORS = ("#1a9850", "#a6d96a", "#fee08b", "#f46d43", "#a50026")

# ── Output Paths ────────────────────────────────────────────────────────────
OUTPUT_DIR = "output"
SOIL_LOSS_GEOTIFF = "soil_loss.tif"
CLASS_GEOTIFF = "erosion_class.tif"
CLASS_AREA_CSV = "class_area.csv"
SUBBASIN_CSV = "subbasin_soil_loss.csv"
SOIL_LOSS_MAP_HTML = "soil_loss_map.html"
PIE_CHART_PNG = "erosion_class_pie.png"
REPORT_JSON = "rusle_report.json"

AMBIGUITY_POLICIES = ("raise", "first")


@dataclass(frozen=True)
class RunConfig:
    """Every option of one pipeline run."""

    basin_id: int = DEFAULT_BASIN_ID
    start_date: str = DEFAULT_START_DATE
    end_date: str = DEFAULT_END_DATE
    slope_length: float = SLOPE_LENGTH_M
    breakpoints: tuple = EROSION_BREAKPOINTS
    class_labels: tuple = EROSION_LABELS
    class_colors: tuple = EROSION_COLORS
    c_normalization: str = C_NORMALIZATION
    max_cloud_pct: float = MAX_CLOUD_PCT
    on_ambiguous_basin: str = "raise"
    parallel: bool = True
    max_workers: int = FACTOR_WORKERS
    output_dir: str = OUTPUT_DIR

    def validate(self) -> "RunConfig":
        """Raise ValueError on the first inconsistent option."""
        try:
            start = date.fromisoformat(self.start_date)
            end = date.fromisoformat(self.end_date)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid date window {self.start_date!r}..{self.end_date!r}: {e}") from e
        if start >= end:
            raise ValueError(f"start_date {self.start_date} must precede end_date {self.end_date}")

        if not self.slope_length > 0:
            raise ValueError(f"slope_length must be positive, got {self.slope_length}")

        bps = list(self.breakpoints)
        if not bps or bps[0] < 0 or any(hi <= lo for lo, hi in zip(bps, bps[1:])):
            raise ValueError(f"breakpoints must be non-negative and strictly increasing, got {bps}")

        n_classes = len(bps) + 1
        if len(self.class_labels) != n_classes or len(self.class_colors) != n_classes:
            raise ValueError(
                f"{len(bps)} breakpoints need {n_classes} labels and colours, "
                f"got {len(self.class_labels)} labels / {len(self.class_colors)} colours"
            )

        if self.c_normalization not in C_NORMALIZATIONS:
            raise ValueError(f"c_normalization must be one of {C_NORMALIZATIONS}")
        if self.on_ambiguous_basin not in AMBIGUITY_POLICIES:
            raise ValueError(f"on_ambiguous_basin must be one of {AMBIGUITY_POLICIES}")
        if not 0 <= self.max_cloud_pct <= 100:
            raise ValueError(f"max_cloud_pct must lie in [0, 100], got {self.max_cloud_pct}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        return self

    def as_params(self) -> dict:
        """JSON-friendly view for reports."""
        return {
            "basin_id": self.basin_id,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "slope_length_m": self.slope_length,
            "breakpoints": list(self.breakpoints),
            "class_labels": list(self.class_labels),
            "c_normalization": self.c_normalization,
            "max_cloud_pct": self.max_cloud_pct,
        }
