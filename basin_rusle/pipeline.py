"""
Pipeline Module – factor scheduling, soil loss run and product export.

    cfg = RunConfig(basin_id=4061034830).validate()
    result = run_pipeline(store, cfg)
    paths = export_results(result, cfg)
"""

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, CancelledError, ThreadPoolExecutor, wait
from dataclasses import dataclass

import pandas as pd

import config
from basin_rusle.aoi import resolve_basin
from basin_rusle.decision_support import (
    class_area_table,
    compute_soil_loss_statistics,
    generate_report,
    subbasin_table,
)
from basin_rusle.export import OutputStage, write_csv, write_json
from basin_rusle.factors import (
    c_factor,
    k_factor,
    ls_factor,
    ndvi,
    p_factor,
    r_factor,
    slope_percent,
)
from basin_rusle.raster import Raster, write_geotiff
from basin_rusle.rusle_model import classify_soil_loss, compute_soil_loss
from basin_rusle.store import RasterStore
from basin_rusle.visualization import create_class_pie_chart, create_soil_loss_map

logger = logging.getLogger(__name__)

FACTOR_NAMES = ("R", "K", "LS", "C", "P")


@dataclass(frozen=True)
class FactorSet:
    r: Raster
    k: Raster
    ls: Raster
    c: Raster
    p: Raster

    def as_dict(self) -> dict:
        return dict(zip(FACTOR_NAMES, (self.r, self.k, self.ls, self.c, self.p)))


@dataclass(frozen=True)
class RusleResult:
    factors: FactorSet
    soil_loss: Raster
    classes: Raster
    class_table: pd.DataFrame
    subbasins: pd.DataFrame
    stats: dict
    report: dict


# ── Factor tasks ─────────────────────────────────────────────────────────────

def _r_task(store, aoi, cfg):
    return r_factor(store.precipitation_sum(aoi, cfg.start_date, cfg.end_date))


def _k_task(store, aoi, cfg):
    return k_factor(store.soil_texture(aoi))


def _terrain_task(store, aoi, cfg):
    """(slope %, LS); slope % is shared with the P factor."""
    slope_pct = slope_percent(store.slope_degrees(aoi))
    return slope_pct, ls_factor(slope_pct, cfg.slope_length)


def _c_task(store, aoi, cfg):
    nir, red = store.reflectance(aoi, cfg.start_date, cfg.end_date, cfg.max_cloud_pct)
    return c_factor(ndvi(nir, red), cfg.c_normalization)


def _p_task(store, aoi, slope_pct_fn):
    land_cover = store.land_cover(aoi)
    return p_factor(land_cover, slope_pct_fn())


def _guarded(abort: threading.Event, name: str, task, *args):
    """Run a factor task unless an earlier one failed; a failure raises the abort flag."""
    if abort.is_set():
        raise CancelledError(f"{name} not started: an earlier factor failed")
    try:
        return task(*args)
    except BaseException:
        abort.set()
        raise


def compute_factors(store: RasterStore, aoi, cfg: config.RunConfig) -> FactorSet:
    """
    Evaluate the five factors. With cfg.parallel the loads run on a thread
    pool and the caller joins on all of them. The first failure stops every
    task that has not started yet and is re-raised.
    """
    if not cfg.parallel:
        logger.info("[PIPE] Computing factors sequentially")
        r = _r_task(store, aoi, cfg)
        k = _k_task(store, aoi, cfg)
        slope_pct, ls = _terrain_task(store, aoi, cfg)
        c = _c_task(store, aoi, cfg)
        p = _p_task(store, aoi, lambda: slope_pct)
        return FactorSet(r=r, k=k, ls=ls, c=c, p=p)

    abort = threading.Event()
    logger.info(f"[PIPE] Computing factors on {cfg.max_workers} workers")
    with ThreadPoolExecutor(max_workers=cfg.max_workers, thread_name_prefix="factor") as pool:
        # terrain goes first: P blocks on it, and the pool starts tasks in order
        terrain = pool.submit(_guarded, abort, "LS", _terrain_task, store, aoi, cfg)
        futures = {
            "R": pool.submit(_guarded, abort, "R", _r_task, store, aoi, cfg),
            "K": pool.submit(_guarded, abort, "K", _k_task, store, aoi, cfg),
            "LS": terrain,
            "C": pool.submit(_guarded, abort, "C", _c_task, store, aoi, cfg),
            "P": pool.submit(_guarded, abort, "P", _p_task, store, aoi, lambda: terrain.result()[0]),
        }
        done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)
        if any(f.exception() is not None for f in done):
            for f in pending:
                f.cancel()
            wait([f for f in futures.values() if not f.cancelled()])
            name, error = next(
                (name, f.exception()) for name, f in futures.items()
                if not f.cancelled()
                and f.exception() is not None
                and not isinstance(f.exception(), CancelledError)
            )
            logger.error(f"[PIPE] Factor {name} failed – aborting run")
            raise error

    _, ls = terrain.result()
    return FactorSet(
        r=futures["R"].result(),
        k=futures["K"].result(),
        ls=ls,
        c=futures["C"].result(),
        p=futures["P"].result(),
    )


# ── Run ──────────────────────────────────────────────────────────────────────

def run_pipeline(store: RasterStore, cfg: config.RunConfig = None) -> RusleResult:
    """AOI → factors → soil loss → classes → tables, statistics and report."""
    cfg = (cfg or config.RunConfig()).validate()

    aoi = resolve_basin(store, cfg.basin_id, cfg.on_ambiguous_basin)
    factors = compute_factors(store, aoi, cfg)

    soil_loss = compute_soil_loss(factors.r, factors.k, factors.ls, factors.c, factors.p)
    classes = classify_soil_loss(soil_loss, cfg.breakpoints)

    class_table = class_area_table(classes, cfg.class_labels, store.aoi_mask(aoi))
    subbasins = subbasin_table(soil_loss, store.sub_basins(aoi))
    stats = compute_soil_loss_statistics(soil_loss)
    report = generate_report(stats, class_table, subbasins, cfg.as_params())
    report["factor_ranges"] = {
        name: list(raster.value_range()) for name, raster in factors.as_dict().items()
    }

    logger.info(f"[PIPE] Basin {cfg.basin_id} processed")
    return RusleResult(
        factors=factors,
        soil_loss=soil_loss,
        classes=classes,
        class_table=class_table,
        subbasins=subbasins,
        stats=stats,
        report=report,
    )


def export_results(result: RusleResult, cfg: config.RunConfig = None) -> dict:
    """Write every product into cfg.output_dir, all or nothing. Returns {filename: path}."""
    cfg = cfg or config.RunConfig()
    with OutputStage(cfg.output_dir) as stage:
        write_geotiff(result.soil_loss, stage.path(config.SOIL_LOSS_GEOTIFF))
        write_geotiff(result.classes, stage.path(config.CLASS_GEOTIFF), dtype="int16")
        write_csv(result.class_table, stage.path(config.CLASS_AREA_CSV))
        write_csv(result.subbasins, stage.path(config.SUBBASIN_CSV))
        create_soil_loss_map(
            result.classes,
            stage.path(config.SOIL_LOSS_MAP_HTML),
            labels=cfg.class_labels,
            colors=cfg.class_colors,
            breakpoints=cfg.breakpoints,
        )
        create_class_pie_chart(
            result.class_table, stage.path(config.PIE_CHART_PNG), colors=cfg.class_colors
        )
        write_json(result.report, stage.path(config.REPORT_JSON))
    return stage.outputs
