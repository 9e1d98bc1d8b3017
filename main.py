#!/usr/bin/env python3
"""
main.py – CLI entry point for the Basin Soil Loss (RUSLE) workflow.

Usage:
    python main.py --basin-id 4061034830 --start 2022-01-01 --end 2023-01-01
    python main.py --backend local --data-dir data/ --basin-id 7

The pipeline:
    1. Initialise the data backend (Earth Engine or a local data directory)
    2. Resolve the basin AOI
    3. Compute R, K, LS, C, P factors (in parallel)
    4. Compose soil loss A = R·K·LS·C·P and classify erosion severity
    5. Aggregate class areas and sub-basin means
    6. Export GeoTIFFs, CSV tables, map, pie chart and report
"""

import argparse
import logging
import os
import sys

# Ensure project root is on the path so `import config` works
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import config
from basin_rusle.errors import RusleError
from basin_rusle.pipeline import export_results, run_pipeline

logger = logging.getLogger("basin_rusle")


def _breakpoints(text: str) -> tuple:
    try:
        return tuple(float(v) for v in text.split(",") if v.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"breakpoints must be comma-separated numbers, got {text!r}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Basin Soil Loss Estimation (RUSLE) with erosion severity classes",
    )
    p.add_argument("--basin-id", type=int, default=config.DEFAULT_BASIN_ID, help="Basin identifier")
    p.add_argument("--start", default=config.DEFAULT_START_DATE, help="Window start (inclusive, YYYY-MM-DD)")
    p.add_argument("--end", default=config.DEFAULT_END_DATE, help="Window end (exclusive, YYYY-MM-DD)")
    p.add_argument("--slope-length", type=float, default=config.SLOPE_LENGTH_M, help="Slope length in m")
    p.add_argument("--breakpoints", type=_breakpoints, default=config.EROSION_BREAKPOINTS,
                   help="Class breakpoints in t/ha/yr, e.g. 5,10,20,40")
    p.add_argument("--c-normalization", choices=config.C_NORMALIZATIONS, default=config.C_NORMALIZATION)
    p.add_argument("--max-cloud", type=float, default=config.MAX_CLOUD_PCT, help="Max scene cloud %%")
    p.add_argument("--on-ambiguous", choices=config.AMBIGUITY_POLICIES, default="raise",
                   help="What to do when several basins share the identifier")
    p.add_argument("--backend", choices=("gee", "local"), default="gee")
    p.add_argument("--data-dir", default=None, help="Data directory for --backend local")
    p.add_argument("--output-dir", default=config.OUTPUT_DIR)
    p.add_argument("--sequential", action="store_true", help="Compute factors one after another")
    p.add_argument("--workers", type=int, default=config.FACTOR_WORKERS, help="Factor worker threads")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def build_config(args) -> config.RunConfig:
    labels, colors = config.EROSION_LABELS, config.EROSION_COLORS
    if len(args.breakpoints) != len(config.EROSION_BREAKPOINTS):
        # Custom class count: generic labels, colours from the same ramp
        labels = tuple(f"Class {i}" for i in range(1, len(args.breakpoints) + 2))
        colors = tuple(colors[round(i * (len(colors) - 1) / max(len(labels) - 1, 1))]
                       for i in range(len(labels)))
    return config.RunConfig(
        basin_id=args.basin_id,
        start_date=args.start,
        end_date=args.end,
        slope_length=args.slope_length,
        breakpoints=tuple(args.breakpoints),
        class_labels=labels,
        class_colors=colors,
        c_normalization=args.c_normalization,
        max_cloud_pct=args.max_cloud,
        on_ambiguous_basin=args.on_ambiguous,
        parallel=not args.sequential,
        max_workers=args.workers,
        output_dir=args.output_dir,
    ).validate()


def build_store(args, cfg: config.RunConfig):
    if args.backend == "local":
        from basin_rusle.store import ArrayRasterStore

        if not args.data_dir:
            raise ValueError("--backend local requires --data-dir")
        return ArrayRasterStore.from_directory(args.data_dir)

    from basin_rusle.gee_data import EarthEngineStore, initialize_ee

    initialize_ee()
    return EarthEngineStore(land_cover_until=cfg.end_date)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    print("=" * 60)
    print("  BASIN SOIL LOSS ESTIMATION  (RUSLE)")
    print("=" * 60)
    print(f"  Basin:   {args.basin_id}")
    print(f"  Window:  {args.start} → {args.end}")
    print(f"  Backend: {args.backend}")
    print("=" * 60)

    try:
        cfg = build_config(args)

        # ── Phase 1: Backend ────────────────────────────────────────────────
        print("\n▶ Phase 1 – Data Backend")
        store = build_store(args, cfg)

        # ── Phase 2: Factors, model, aggregation ────────────────────────────
        print("\n▶ Phase 2 – RUSLE Factors, Soil Loss & Classification")
        result = run_pipeline(store, cfg)

        # ── Phase 3: Export ─────────────────────────────────────────────────
        print("\n▶ Phase 3 – Export")
        outputs = export_results(result, cfg)
    except (RusleError, ValueError) as e:
        logger.error(f"[ERROR] {type(e).__name__}: {e}")
        return 1

    print("\n" + result.report["summary_text"])
    print("\n" + "=" * 60)
    print("  ✅  Pipeline complete!")
    for filename, path in outputs.items():
        print(f"  📄  {filename:26s} → {path}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
