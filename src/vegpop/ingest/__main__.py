#!/usr/bin/env python3
"""vegpop.ingest

Input checks for vegpop.

This is one of two vegpop subsystem CLIs:
- vegpop.ingest   → check that a run's inputs exist and are readable (this file)
- vegpop.pipeline → run the population-weighted aggregation

Downloading raw data is out of scope: inputs are expected on disk already.
`verify` only claims presence (and, with --open, that rasters open and carry a
CRS), never correctness.

Examples:
  python -m vegpop.ingest verify --config config/run.yaml
  python -m vegpop.ingest verify --config config/run.yaml --open --json
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from vegpop.config import DEFAULT_RUN_YAML, RunConfig, load_run_config


# -----------------------------
# Verify helpers (lightweight)
# -----------------------------

def _check_raster(path: Path) -> Dict[str, Any]:
    # Lazy import: keeps CLI startup fast
    from vegpop.ingest.rasters import read_grid

    try:
        grid = read_grid(path)
    except Exception as e:  # report every unreadable file, don't stop at the first
        return {"ok": False, "reason": f"{type(e).__name__}: {e}"}
    return {"ok": True, "crs": grid.crs, "shape": list(grid.shape)}


def _unreadable(paths) -> Dict[str, str]:
    bad: Dict[str, str] = {}
    for p in paths:
        r = _check_raster(p)
        if not r["ok"]:
            bad[str(p)] = r["reason"]
    return bad


def verify_inputs(cfg: RunConfig, open_rasters: bool = False) -> List[Dict[str, Any]]:
    """One result dict per input group: regions, reference, snapshots."""
    results: List[Dict[str, Any]] = []

    results.append({
        "source": "regions",
        "ok": cfg.regions.path.exists(),
        "count": 1 if cfg.regions.path.exists() else 0,
        "sample": [str(cfg.regions.path)],
    })

    missing = [str(p) for p in cfg.reference.values() if not p.exists()]
    ref: Dict[str, Any] = {
        "source": "reference",
        "ok": not missing,
        "count": len(cfg.reference) - len(missing),
        "sample": [f"{e}: {p}" for e, p in list(cfg.reference.items())[:5]],
    }
    if missing:
        ref["reason"] = f"missing: {missing[:5]}"
    if open_rasters and not missing:
        bad = _unreadable(cfg.reference.values())
        if bad:
            ref.update(ok=False, reason=f"unreadable: {bad}")
    results.append(ref)

    snap: Dict[str, Any] = {"source": "snapshots"}
    try:
        from vegpop.ingest.rasters import discover_snapshots

        found = discover_snapshots(cfg.snapshots.directory, cfg.snapshots.pattern, cfg.snapshots.glob)
    except (FileNotFoundError, ValueError) as e:
        snap.update(ok=False, count=0, reason=str(e))
    else:
        snap.update(ok=bool(found), count=len(found), sample=[f"{ts}: {p.name}" for ts, p in list(found.items())[:5]])
        if not found:
            snap["reason"] = f"no file matched {cfg.snapshots.pattern!r}"
        elif open_rasters:
            bad = _unreadable(found.values())
            if bad:
                snap.update(ok=False, reason=f"unreadable: {list(bad)[:5]}")
    results.append(snap)
    return results


# -----------------------------
# CLI
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vegpop.ingest", description="Input checks for vegpop")
    ap.add_argument("--config", type=Path, default=DEFAULT_RUN_YAML, help=f"Path to run YAML (default: {DEFAULT_RUN_YAML})")

    sub = ap.add_subparsers(dest="command", required=True)

    ver = sub.add_parser("verify", help="Verify that configured inputs exist")
    ver.add_argument("--open", action="store_true", help="Also open every raster and check its CRS")
    ver.add_argument("--json", action="store_true", help="Emit JSON to stdout")

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    cfg = load_run_config(args.config)

    if args.command == "verify":
        results = verify_inputs(cfg, open_rasters=args.open)
        ok = all(r.get("ok") for r in results)
        if args.json:
            print(json.dumps({"ok": ok, "results": results}, indent=2))
        else:
            for r in results:
                status = "OK" if r.get("ok") else "MISSING"
                print(f"[{status}] {r['source']}")
                if "reason" in r:
                    print(f"  - reason: {r['reason']}")
                if "count" in r:
                    print(f"  - count: {r['count']}")
                for s in r.get("sample") or []:
                    print(f"    - {s}")
            print(f"Overall: {'OK' if ok else 'NOT OK'}")
        return 0 if ok else 2

    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
