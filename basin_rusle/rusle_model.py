"""
RUSLE Model – soil loss composition and erosion classification.

Model:
    A(x) = R(x) · K(x) · LS(x) · C(x) · P(x)      [t · ha⁻¹ · yr⁻¹]

Classes are ordinal, 1 = least severe, with intervals [low, high):
    class 1:  A < b1
    class i:  b(i-1) ≤ A < b(i)
    class n:  A ≥ b(n-1)
"""

import logging

import numpy as np

import config
from basin_rusle.raster import Raster, check_same_grid, map_algebra

logger = logging.getLogger(__name__)


def compute_soil_loss(r: Raster, k: Raster, ls: Raster, c: Raster, p: Raster) -> Raster:
    """
    Pointwise product of the five factor rasters.

    Raises GridMismatchError unless all five share one grid.
    """
    check_same_grid(r, k, ls, c, p)
    soil_loss = map_algebra(
        lambda r_, k_, ls_, c_, p_: r_ * k_ * ls_ * c_ * p_,
        r, k, ls, c, p,
        name="soil_loss",
    )
    valid = soil_loss.valid
    if valid.any():
        logger.info(
            f"[MODEL] Soil loss computed – mean {np.nanmean(soil_loss.data):.3f} t/ha/yr, "
            f"max {np.nanmax(soil_loss.data):.3f} t/ha/yr"
        )
    else:
        logger.warning("[MODEL] Soil loss has no valid pixels")
    return soil_loss


def classify_soil_loss(soil_loss: Raster, breakpoints=config.EROSION_BREAKPOINTS) -> Raster:
    """Bucket soil loss into classes 1..len(breakpoints)+1; masked stays masked."""
    bins = np.asarray(breakpoints, dtype=np.float64)

    def _classify(values):
        classes = np.digitize(np.where(np.isnan(values), 0.0, values), bins, right=False) + 1.0
        return np.where(np.isnan(values), np.nan, classes)

    classified = map_algebra(_classify, soil_loss, name="erosion_class")
    logger.info(f"[MODEL] Soil loss classified – breakpoints {list(breakpoints)} (intervals [low, high))")
    return classified
