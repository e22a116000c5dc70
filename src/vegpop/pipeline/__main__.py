#!/usr/bin/env python3
"""vegpop.pipeline

Population-weighted aggregation CLI for vegpop.

This is one of two vegpop subsystem CLIs:
- vegpop.ingest   → check that a run's inputs exist and are readable
- vegpop.pipeline → run the population-weighted aggregation (this file)

A run is described by a YAML file (see vegpop.config.RunConfig). Command-line
flags override the `options:` block of that file.

Design notes:
- Lazy-imports the geo stack to keep CLI startup fast
- All subcommands support --dry-run for safe exploration
- Output is written only after the whole batch succeeded

Examples:
  # Full run
  python -m vegpop.pipeline run --config config/run.yaml --workers 8

  # Show which population epoch each NDVI month will use
  python -m vegpop.pipeline plan --config config/run.yaml
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from vegpop.config import (
    DEFAULT_RUN_YAML,
    RESAMPLING_METHODS,
    PipelineOptions,
    RunConfig,
    load_run_config,
)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for vegpop.pipeline."""
    ap = argparse.ArgumentParser(
        prog="vegpop.pipeline",
        description="Population-weighted NDVI aggregation to regions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_RUN_YAML,
        help=f"Path to run YAML (default: {DEFAULT_RUN_YAML})",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without reading rasters or writing files",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    # --- run ---
    run = sub.add_parser(
        "run",
        help="Aggregate every snapshot to every region and write the table",
        description="""
Run the full pipeline:
1. Load regions, reference (population) epochs and NDVI snapshot list
2. Align reference fields to the canonical grid
3. Rasterize region masks once
4. Compute per-region weights once per epoch
5. Aggregate every snapshot in parallel (fail-fast)
6. Write the sorted (year, month, region, value) table
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run.add_argument("--workers", type=int, default=None, help="Worker threads (default from config, else 4)")
    run.add_argument("--resampling", choices=RESAMPLING_METHODS, default=None, help="Resampling method")
    run.add_argument(
        "--strict-epochs",
        action="store_true",
        help="Fail on months before the first population epoch instead of clamping",
    )
    run.add_argument(
        "--renormalize",
        action="store_true",
        help="Rescale weights over cells where NDVI is defined",
    )
    run.add_argument("--overwrite", action="store_true", help="Overwrite an existing output table")
    run.add_argument("--out", type=Path, default=None, help="Output table (overrides config 'output')")

    # --- plan ---
    plan = sub.add_parser("plan", help="Show which reference epoch each snapshot uses")
    plan.add_argument("--strict-epochs", action="store_true", help="Report months that strict mode would reject")

    return ap


def _options_from_args(cfg: RunConfig, args: argparse.Namespace) -> PipelineOptions:
    opts = cfg.options
    changes = {}
    if getattr(args, "workers", None) is not None:
        changes["max_workers"] = args.workers
    if getattr(args, "resampling", None) is not None:
        changes["resampling"] = args.resampling
    if getattr(args, "strict_epochs", False):
        changes["clamp_epochs"] = False
    if getattr(args, "renormalize", False):
        changes["renormalize"] = True
    return replace(opts, **changes) if changes else opts


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_plan(cfg: RunConfig, args: argparse.Namespace) -> int:
    """Print the timestep → epoch mapping (no rasters are read)."""
    from vegpop.errors import MissingEpoch
    from vegpop.ingest.rasters import discover_snapshots
    from vegpop.weights.temporal import TemporalAligner

    options = _options_from_args(cfg, args)
    snapshots = discover_snapshots(cfg.snapshots.directory, cfg.snapshots.pattern, cfg.snapshots.glob)
    aligner = TemporalAligner({e: {} for e in cfg.reference}, clamp=options.clamp_epochs)

    print(f"Reference epochs: {aligner.epochs}")
    n_bad = 0
    for ts, path in snapshots.items():
        try:
            epoch = aligner.epoch_for(ts)
        except MissingEpoch:
            n_bad += 1
            print(f"  {ts}  ->  (no epoch)  {path.name}")
            continue
        note = "  (clamped)" if epoch > ts.epoch else ""
        print(f"  {ts}  ->  {epoch}{note}  {path.name}")
    print(f"{len(snapshots)} snapshots, {n_bad} without an epoch")
    return 0 if n_bad == 0 else 2


def _handle_run(cfg: RunConfig, args: argparse.Namespace) -> int:
    """Handle the run subcommand."""
    options = _options_from_args(cfg, args)
    out_path = args.out or cfg.output

    if out_path.exists() and not args.overwrite and not args.dry_run:
        raise SystemExit(f"Output exists (use --overwrite): {out_path}")

    # Lazy import: avoids loading rasterio/geopandas until needed
    from vegpop.ingest.rasters import discover_snapshots, load_reference_series, snapshot_loader
    from vegpop.ingest.regions import load_region_boundaries
    from vegpop.ingest.tables import write_table
    from vegpop.pipeline.orchestrator import PipelineOrchestrator

    snapshots = discover_snapshots(cfg.snapshots.directory, cfg.snapshots.pattern, cfg.snapshots.glob)
    if not snapshots:
        raise SystemExit(f"No snapshots matched {cfg.snapshots.pattern!r} in {cfg.snapshots.directory}")

    if args.dry_run:
        first, last = next(iter(snapshots)), list(snapshots)[-1]
        print("[dry-run] Would run aggregation:")
        print(f"  Regions: {cfg.regions.path} (id={cfg.regions.id_field}, name={cfg.regions.name_field})")
        print(f"  Reference epochs: {sorted(cfg.reference)}")
        print(f"  Snapshots: {len(snapshots)} ({first} .. {last})")
        print(f"  Options: {options}")
        print(f"  Output: {out_path}")
        return 0

    regions = load_region_boundaries(
        cfg.regions.path,
        cfg.regions.id_field,
        cfg.regions.name_field,
        layer=cfg.regions.layer,
        dissolve=cfg.regions.dissolve,
    )
    references = load_reference_series(cfg.reference)

    orchestrator = PipelineOrchestrator(
        snapshots={ts: snapshot_loader(p, ts) for ts, p in snapshots.items()},
        references=references,
        regions=regions,
        grid=cfg.grid_spec(),
        options=options,
    )
    points = orchestrator.run()

    diags = orchestrator.mask_builder.diagnostics + orchestrator.weight_diagnostics
    if diags:
        print(f"{len(diags)} region diagnostics (values reported as no-data):")
        for d in diags:
            print(f"  - {d}")

    write_table(points, out_path, overwrite=args.overwrite)
    return 0


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for vegpop.pipeline CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    cfg = load_run_config(args.config)

    handlers = {
        "run": _handle_run,
        "plan": _handle_plan,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(cfg, args)


if __name__ == "__main__":
    raise SystemExit(main())
