"""
Decision Support Module – class areas, sub-basin means, statistics and report.

Area is pixel count × nominal pixel area; means are arithmetic means of
valid pixels. Zones without a valid pixel report config.NODATA.
"""

import logging

import numpy as np
import pandas as pd

import config
from basin_rusle.errors import MissingDataError
from basin_rusle.raster import Raster, check_same_grid

logger = logging.getLogger(__name__)

M2_PER_HA = 10_000.0

CLASS_AREA_COLUMNS = ["class", "area_ha", "percent"]
SUBBASIN_COLUMNS = ["subbasin_id", "mean_soil_loss", "area_ha"]


def class_area_table(
    classes: Raster,
    labels=config.EROSION_LABELS,
    aoi_mask: Raster = None,
) -> pd.DataFrame:
    """
    One row per erosion class (empty classes included): class label, area in
    hectares, percentage of the AOI footprint.

    Without aoi_mask the footprint is taken to be the classified pixels. AOI
    pixels left unclassified (masked inputs) count in the footprint but in no
    class, so percentages then sum to less than 100.
    """
    valid = classes.data[classes.valid]
    if valid.size == 0:
        raise MissingDataError("Erosion class raster has no valid pixels")

    if aoi_mask is None:
        total = valid.size
    else:
        check_same_grid(classes, aoi_mask)
        total = int(np.count_nonzero(aoi_mask.valid | classes.valid))

    pixel_ha = classes.grid.pixel_area_m2() / M2_PER_HA
    rows = []
    for value, label in enumerate(labels, start=1):
        count = int(np.count_nonzero(valid == value))
        rows.append({
            "class": label,
            "area_ha": count * pixel_ha,
            "percent": count / total * 100.0,
        })

    unclassified = total - valid.size
    if unclassified:
        logger.warning(f"[DSS] {unclassified} AOI pixels have no soil loss value "
                       f"({unclassified / total * 100.0:.1f}% of the AOI)")

    table = pd.DataFrame(rows, columns=CLASS_AREA_COLUMNS)
    logger.info("[DSS] Class areas – " + ", ".join(
        f"{r['class']}: {r['percent']:.1f}%" for r in rows
    ))
    return table


def subbasin_table(soil_loss: Raster, zones: Raster) -> pd.DataFrame:
    """
    One row per sub-basin id: mean soil loss over valid pixels and zone
    footprint area in hectares.
    """
    check_same_grid(soil_loss, zones)
    pixel_ha = soil_loss.grid.pixel_area_m2() / M2_PER_HA

    zone_ids = np.unique(zones.data[zones.valid])
    rows = []
    for zone_id in zone_ids:
        in_zone = zones.data == zone_id
        values = soil_loss.data[in_zone & soil_loss.valid]
        if values.size:
            mean = float(values.mean())
        else:
            mean = config.NODATA
            logger.warning(f"[DSS] Sub-basin {int(zone_id)} has no valid pixels – reporting {config.NODATA}")
        rows.append({
            "subbasin_id": int(zone_id),
            "mean_soil_loss": mean,
            "area_ha": int(np.count_nonzero(in_zone)) * pixel_ha,
        })

    table = pd.DataFrame(rows, columns=SUBBASIN_COLUMNS)
    logger.info(f"[DSS] Sub-basin summary – {len(table)} zones")
    return table


def compute_soil_loss_statistics(soil_loss: Raster) -> dict:
    """Area and soil loss totals over the valid pixels of the AOI."""
    valid = soil_loss.data[soil_loss.valid]
    total = valid.size
    if total == 0:
        raise MissingDataError("Soil loss raster has no valid pixels")

    pixel_area_m2 = soil_loss.grid.pixel_area_m2()
    pixel_ha = pixel_area_m2 / M2_PER_HA
    stats = {
        "valid_pixels": int(total),
        "pixel_area_m2": float(pixel_area_m2),
        "total_area_ha": round(total * pixel_ha, 2),
        "min_soil_loss": round(float(valid.min()), 4),
        "mean_soil_loss": round(float(valid.mean()), 4),
        "max_soil_loss": round(float(valid.max()), 4),
        "total_soil_loss_t_per_yr": round(float(valid.sum() * pixel_ha), 2),
    }
    logger.info(f"[DSS] Soil loss stats – mean {stats['mean_soil_loss']} t/ha/yr over "
                f"{stats['total_area_ha']} ha")
    return stats


def generate_report(
    stats: dict,
    class_table: pd.DataFrame,
    subbasins: pd.DataFrame,
    params: dict = None,
) -> dict:
    """
    Structured analytical report with a plain-text summary.
    """
    report = {
        "title": "Basin Soil Loss (RUSLE) Report",
        "parameters": params or {},
        "statistics": stats,
        "class_areas": class_table.to_dict(orient="records"),
        "subbasins": subbasins.to_dict(orient="records"),
    }

    lines = [
        "═══ SOIL LOSS REPORT (RUSLE) ═══",
        "",
        f"Analysis area: {stats['total_area_ha']} ha",
        f"Mean soil loss: {stats['mean_soil_loss']} t/ha/yr",
        f"Total soil loss: {stats['total_soil_loss_t_per_yr']} t/yr",
        "",
    ]
    for row in class_table.itertuples(index=False):
        lines.append(f"• {row[0]:12s} {row.percent:5.1f}%  ({row.area_ha:.1f} ha)")

    if not subbasins.empty:
        valid = subbasins[subbasins["mean_soil_loss"] != config.NODATA]
        if not valid.empty:
            worst = valid.loc[valid["mean_soil_loss"].idxmax()]
            lines += [
                "",
                f"Sub-basins: {len(subbasins)}",
                f"  Highest mean loss: {int(worst['subbasin_id'])} "
                f"({worst['mean_soil_loss']:.2f} t/ha/yr)",
            ]

    report["summary_text"] = "\n".join(lines)
    return report
