"""
Factor Module – the five RUSLE factor rasters (R, K, LS, C, P).

Each factor is a pure function of AOI-clipped input rasters; masked input
pixels stay masked. Lookup tables (K, P) are data in config.py, evaluated
here without branching per code.
"""

import logging
import math
from typing import NamedTuple

import numpy as np

import config
from basin_rusle.raster import Raster, map_algebra

logger = logging.getLogger(__name__)


# ── R: rainfall erosivity ───────────────────────────────────────────────────

def r_factor(precipitation: Raster) -> Raster:
    """R = 0.363 · P + 79, P being the precipitation total over the window."""
    r = map_algebra(
        lambda p: config.R_SLOPE * p + config.R_INTERCEPT,
        precipitation,
        name="R",
    )
    lo, hi = r.value_range()
    logger.info(f"[FACTOR] R computed – range [{lo:.2f}, {hi:.2f}]")
    return r


# ── K: soil erodibility ─────────────────────────────────────────────────────

def k_factor(soil_texture: Raster, table: dict = None, default: float = None) -> Raster:
    """
    Map every texture class code to its erodibility coefficient.

    Codes missing from the table get `default`; masked pixels stay masked.
    """
    table = config.K_FACTORS if table is None else table
    default = config.K_DEFAULT if default is None else default

    def _lookup(codes):
        out = np.full(codes.shape, default, dtype=np.float64)
        for code, k in table.items():
            out[codes == code] = k
        out[np.isnan(codes)] = np.nan
        return out

    k = map_algebra(_lookup, soil_texture, name="K")
    lo, hi = k.value_range()
    logger.info(f"[FACTOR] K computed – range [{lo:.4f}, {hi:.4f}]")
    return k


# ── LS: slope length & steepness ────────────────────────────────────────────

def slope_from_elevation(dem: Raster) -> Raster:
    """
    Slope angle (degrees) from a DEM by central finite differences
    (one-sided on the grid edges), pixel spacing in metres.
    """
    dx_m, dy_m = dem.grid.pixel_size_m()
    rows, cols = dem.grid.shape

    def _slope(z):
        dzdy = np.gradient(z, dy_m, axis=0) if rows > 1 else np.zeros_like(z)
        dzdx = np.gradient(z, dx_m, axis=1) if cols > 1 else np.zeros_like(z)
        return np.degrees(np.arctan(np.hypot(dzdx, dzdy)))

    slope = map_algebra(_slope, dem, name="slope_deg")
    lo, hi = slope.value_range()
    logger.info(f"[FACTOR] Slope derived from DEM – range [{lo:.2f}°, {hi:.2f}°]")
    return slope


def slope_percent(slope_deg: Raster) -> Raster:
    """Slope percent = 100 · tan(angle), angle converted to radians first."""
    return map_algebra(lambda s: 100.0 * np.tan(np.deg2rad(s)), slope_deg, name="slope_pct")


def ls_factor(slope_pct: Raster, slope_length: float = config.SLOPE_LENGTH_M) -> Raster:
    """LS = (0.76 + 0.53·S + 0.076·S²) · √(L / 22.13)."""
    length_term = math.sqrt(slope_length / config.LS_UNIT_PLOT_LENGTH)
    ls = map_algebra(
        lambda s: (0.76 + 0.53 * s + 0.076 * s ** 2) * length_term,
        slope_pct,
        name="LS",
    )
    lo, hi = ls.value_range()
    logger.info(f"[FACTOR] LS computed (L={slope_length:.0f} m) – range [{lo:.3f}, {hi:.3f}]")
    return ls


# ── C: cover management ─────────────────────────────────────────────────────

def ndvi(nir: Raster, red: Raster) -> Raster:
    """
    NDVI = (NIR − Red) / (NIR + Red), clipped to [-1, 1].

    Pixels with NIR + Red = 0 or NDVI = 1 are masked: C is undefined there.
    """
    def _ndvi(n, r):
        total = n + r
        out = np.where(total != 0, (n - r) / np.where(total != 0, total, 1.0), np.nan)
        out = np.clip(out, -1.0, 1.0)
        out[out >= 1.0] = np.nan
        return out

    return map_algebra(_ndvi, nir, red, name="NDVI")


def c_factor(ndvi_raster: Raster, normalization: str = config.C_NORMALIZATION) -> Raster:
    """
    C = exp(−2·NDVI / (1 − NDVI)), rescaled to [0, 1].

    "observed" rescales with the raster's own min/max, so min → 0 and
    max → 1; a constant raster falls back to "theoretical", which divides by
    the largest attainable raw C (e).
    """
    if normalization not in config.C_NORMALIZATIONS:
        raise ValueError(f"Unknown C normalization '{normalization}'")

    raw = map_algebra(lambda v: np.exp(-2.0 * v / (1.0 - v)), ndvi_raster, name="C_raw")
    c_min, c_max = raw.value_range()

    if normalization == "observed" and c_max > c_min:
        c = map_algebra(lambda v: (v - c_min) / (c_max - c_min), raw, name="C")
    else:
        if normalization == "observed":
            logger.warning("[FACTOR] C range is degenerate – using theoretical normalisation")
        c = map_algebra(lambda v: np.clip(v / config.C_THEORETICAL_MAX, 0.0, 1.0), raw, name="C")

    lo, hi = c.value_range()
    logger.info(f"[FACTOR] C computed ({normalization}) – range [{lo:.4f}, {hi:.4f}]")
    return c


# ── P: support practice ─────────────────────────────────────────────────────

class PracticeRule(NamedTuple):
    """P value for land-cover codes on slopes in [slope_min, slope_max)."""

    codes: tuple
    slope_min: float
    slope_max: float
    value: float

    def matches(self, lulc: np.ndarray, slope: np.ndarray) -> np.ndarray:
        return np.isin(lulc, self.codes) & (slope >= self.slope_min) & (slope < self.slope_max)


def practice_rules(rules=None) -> list:
    return [PracticeRule(tuple(codes), lo, hi, value) for codes, lo, hi, value in (rules or config.P_RULES)]


def p_factor(land_cover: Raster, slope_pct: Raster, rules=None, default: float = None) -> Raster:
    """Evaluate the ordered (land cover, slope) rule table, first match wins."""
    table = practice_rules(rules)
    default = config.P_DEFAULT if default is None else default

    def _rules(lulc, slope):
        out = np.full(lulc.shape, np.nan)
        unset = np.ones(lulc.shape, dtype=bool)
        for rule in table:
            hit = unset & rule.matches(lulc, slope)
            out[hit] = rule.value
            unset &= ~hit
        out[unset] = default
        out[np.isnan(lulc) | np.isnan(slope)] = np.nan
        return out

    p = map_algebra(_rules, land_cover, slope_pct, name="P")
    lo, hi = p.value_range()
    logger.info(f"[FACTOR] P computed – range [{lo:.2f}, {hi:.2f}]")
    return p
