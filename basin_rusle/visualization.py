"""
Visualization Module – Folium soil loss map with legend, class pie chart.
"""

import base64
import io
import logging

import folium
import matplotlib
import numpy as np
import pandas as pd
from folium.plugins import MiniMap
from matplotlib.colors import ListedColormap
from PIL import Image
from rasterio.warp import transform_bounds

import config
from basin_rusle.raster import Raster

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

logger = logging.getLogger(__name__)


def create_soil_loss_map(
    classes: Raster,
    out_path: str,
    labels=config.EROSION_LABELS,
    colors=config.EROSION_COLORS,
    breakpoints=config.EROSION_BREAKPOINTS,
) -> str:
    """
    Build a Folium map with:
      1. Erosion class raster overlay (one colour per class)
      2. Class legend
    Saves to out_path and returns it.
    """
    west, south, east, north = _latlon_bounds(classes)
    m = folium.Map(
        location=[(south + north) / 2, (west + east) / 2],
        zoom_start=9,
        tiles="CartoDB positron",
    )

    # ── 1. Class raster overlay ─────────────────────────────────────────────
    folium.raster_layers.ImageOverlay(
        image=_class_png(classes, colors),
        bounds=[[south, west], [north, east]],
        opacity=0.7,
        name="Soil loss (t/ha/yr)",
    ).add_to(m)

    # ── 2. Legend ───────────────────────────────────────────────────────────
    m.get_root().html.add_child(folium.Element(_legend_html(labels, colors, breakpoints)))

    # ── Extras ──────────────────────────────────────────────────────────────
    MiniMap(toggle_display=True).add_to(m)
    folium.LayerControl().add_to(m)
    m.fit_bounds([[south, west], [north, east]])

    m.save(out_path)
    logger.info(f"[VIS] Map saved → {out_path}")
    return out_path


def create_class_pie_chart(
    class_table: pd.DataFrame,
    out_path: str,
    colors=config.EROSION_COLORS,
) -> str:
    """Pie chart of class area percentages (empty classes omitted)."""
    shown = class_table["percent"] > 0
    fig, ax = plt.subplots(figsize=(6, 6))
    try:
        ax.pie(
            class_table.loc[shown, "percent"],
            labels=class_table.loc[shown, "class"],
            colors=[c for c, keep in zip(colors, shown) if keep],
            autopct="%1.1f%%",
            startangle=90,
            counterclock=False,
        )
        ax.set_title("Erosion severity – share of basin area")
        ax.axis("equal")
        fig.savefig(out_path, dpi=120, bbox_inches="tight")
    finally:
        plt.close(fig)
    logger.info(f"[VIS] Pie chart saved → {out_path}")
    return out_path


# ── Private helpers ──────────────────────────────────────────────────────────

def _latlon_bounds(raster: Raster) -> tuple:
    """(west, south, east, north) in EPSG:4326."""
    bounds = raster.grid.bounds
    if raster.grid.is_geographic:
        return bounds
    return transform_bounds(raster.grid.crs, "EPSG:4326", *bounds)


def _class_png(classes: Raster, colors) -> str:
    """Render the class raster as a base64 PNG data URI (masked pixels transparent)."""
    cmap = ListedColormap(list(colors))
    n = len(colors)
    index = np.where(classes.valid, classes.data - 1, 0).astype(int)
    rgba = cmap(np.clip(index, 0, n - 1))  # integer input indexes the colour list
    rgba[..., 3] = np.where(classes.valid, 1.0, 0.0)

    img = Image.fromarray((rgba * 255).astype(np.uint8))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    encoded = base64.b64encode(buf.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"


def _legend_html(labels, colors, breakpoints) -> str:
    edges = [None, *breakpoints, None]
    ranges = []
    for lo, hi in zip(edges, edges[1:]):
        if lo is None:
            ranges.append(f"&lt; {hi:g}")
        elif hi is None:
            ranges.append(f"&ge; {lo:g}")
        else:
            ranges.append(f"{lo:g}&ndash;{hi:g}")
    items = "".join(
        f'<div><span style="display:inline-block;width:14px;height:14px;'
        f'background:{color};margin-right:6px;"></span>{label} ({rng})</div>'
        for label, color, rng in zip(labels, colors, ranges)
    )
    return (
        '<div style="position:fixed;bottom:30px;left:30px;z-index:9999;'
        'background:white;padding:8px 12px;border:1px solid #999;font-size:13px;">'
        f"<b>Soil loss (t/ha/yr)</b>{items}</div>"
    )
