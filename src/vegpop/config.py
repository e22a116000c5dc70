#!/usr/bin/env python3
"""vegpop.config

Shared configuration utilities for vegpop CLI subsystems.

This module provides common helpers used across vegpop.pipeline, vegpop.ingest, etc.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- A run YAML describes one aggregation run (inputs, options, output).
- Relative paths in a run YAML resolve against the YAML file's directory.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml


BBox = Tuple[float, float, float, float]

RESAMPLING_METHODS = ("nearest", "bilinear")


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def coerce_bbox(x: Any) -> Optional[BBox]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid or missing.
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
        except (TypeError, ValueError):
            return None
        if xmin >= xmax or ymin >= ymax:
            return None
        return (xmin, ymin, xmax, ymax)
    return None


def union_bbox(bboxes: Iterable[BBox]) -> Optional[BBox]:
    """Compute the bounding box that contains all input bboxes.

    Returns None if input is empty.
    """
    bboxes = list(bboxes)
    if not bboxes:
        return None
    xmin = min(b[0] for b in bboxes)
    ymin = min(b[1] for b in bboxes)
    xmax = max(b[2] for b in bboxes)
    ymax = max(b[3] for b in bboxes)
    return (xmin, ymin, xmax, ymax)


def format_bbox(b: BBox, precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


# -----------------------------------------------------------------------------
# Run configuration
# -----------------------------------------------------------------------------

@dataclass
class RegionsConfig:
    path: Path
    id_field: str
    name_field: str
    layer: Optional[str] = None
    dissolve: bool = True


@dataclass
class SnapshotsConfig:
    directory: Path
    pattern: str
    glob: str = "*.tif"


@dataclass
class GridConfig:
    bounds: BBox
    resolution: Tuple[float, float]
    crs: str


@dataclass
class PipelineOptions:
    """Knobs of one aggregation run.

    renormalize=False keeps the plain weighted sum over cells where both the
    field and the weights are defined; True rescales the surviving weights to
    sum to 1 first.
    """

    resampling: str = "nearest"
    max_workers: int = 4
    clamp_epochs: bool = True
    renormalize: bool = False

    def __post_init__(self) -> None:
        if self.resampling not in RESAMPLING_METHODS:
            raise ValueError(f"Unknown resampling {self.resampling!r}; expected one of {RESAMPLING_METHODS}")
        if int(self.max_workers) < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        self.max_workers = int(self.max_workers)


@dataclass
class RunConfig:
    regions: RegionsConfig
    reference: Dict[int, Path]
    snapshots: SnapshotsConfig
    output: Path
    grid: Optional[GridConfig] = None
    options: PipelineOptions = field(default_factory=PipelineOptions)

    @classmethod
    def from_yaml(cls, data: Dict[str, Any], base_dir: Path = Path(".")) -> "RunConfig":
        """Build a RunConfig from a parsed run YAML.

        Raises ValueError on structurally invalid content.
        """

        def _path(p: Any, what: str) -> Path:
            if not isinstance(p, (str, Path)) or not str(p).strip():
                raise ValueError(f"run config: '{what}' must be a path")
            p = Path(p)
            return p if p.is_absolute() else base_dir / p

        def _section(name: str, required: bool = True) -> Dict[str, Any]:
            sec = data.get(name)
            if sec is None and not required:
                return {}
            if not isinstance(sec, dict):
                raise ValueError(f"run config: '{name}:' must be a mapping")
            return sec

        reg = _section("regions")
        for key in ("path", "id_field", "name_field"):
            if key not in reg:
                raise ValueError(f"run config: regions.{key} is required")
        regions = RegionsConfig(
            path=_path(reg["path"], "regions.path"),
            id_field=str(reg["id_field"]),
            name_field=str(reg["name_field"]),
            layer=reg.get("layer"),
            dissolve=bool(reg.get("dissolve", True)),
        )

        reference = _parse_reference(_section("reference"), _path)

        snap = _section("snapshots")
        if "dir" not in snap or "pattern" not in snap:
            raise ValueError("run config: snapshots.dir and snapshots.pattern are required")
        snapshots = SnapshotsConfig(
            directory=_path(snap["dir"], "snapshots.dir"),
            pattern=str(snap["pattern"]),
            glob=str(snap.get("glob", "*.tif")),
        )

        grid = None
        g = _section("grid", required=False)
        if g:
            bbox = coerce_bbox(g.get("bounds"))
            res = g.get("resolution")
            if bbox is None:
                raise ValueError("run config: grid.bounds must be [xmin, ymin, xmax, ymax]")
            if isinstance(res, (int, float)):
                res = [res, res]
            if not isinstance(res, (list, tuple)) or len(res) != 2:
                raise ValueError("run config: grid.resolution must be a number or [xres, yres]")
            if not g.get("crs"):
                raise ValueError("run config: grid.crs is required")
            grid = GridConfig(bounds=bbox, resolution=(float(res[0]), float(res[1])), crs=str(g["crs"]))

        opts = _section("options", required=False)
        unknown = set(opts) - {"resampling", "max_workers", "clamp_epochs", "renormalize"}
        if unknown:
            raise ValueError(f"run config: unknown options {sorted(unknown)}")
        options = PipelineOptions(**opts)

        if "output" not in data:
            raise ValueError("run config: 'output' is required")

        return cls(
            regions=regions,
            reference=reference,
            snapshots=snapshots,
            output=_path(data["output"], "output"),
            grid=grid,
            options=options,
        )

    def grid_spec(self):
        """Return the configured canonical GridSpec, or None."""
        if self.grid is None:
            return None
        # Lazy import: vegpop.model imports this module
        from vegpop.model import GridSpec

        xmin, ymin, xmax, ymax = self.grid.bounds
        xres, yres = self.grid.resolution
        shape = (int(round((ymax - ymin) / yres)), int(round((xmax - xmin) / xres)))
        return GridSpec(bounds=self.grid.bounds, resolution=self.grid.resolution, shape=shape, crs=self.grid.crs)


def _parse_reference(ref: Dict[str, Any], to_path) -> Dict[int, Path]:
    """Resolve the reference (density) series to {epoch: path}.

    Accepts either:
    - `epochs: {2000: path, 2001: path}`
    - `pattern: "pop_{epoch}.tif"` with `epochs: [2000, 2001]`
    """
    epochs = ref.get("epochs")
    pattern = ref.get("pattern")
    out: Dict[int, Path] = {}
    if isinstance(epochs, dict):
        for k, v in epochs.items():
            out[int(k)] = to_path(v, f"reference.epochs.{k}")
    elif isinstance(epochs, list) and pattern:
        for e in epochs:
            try:
                rendered = str(pattern).format(epoch=int(e))
            except KeyError as exc:
                raise ValueError(f"reference.pattern has unknown placeholder: {exc.args[0]}") from exc
            out[int(e)] = to_path(rendered, "reference.pattern")
    else:
        raise ValueError("run config: reference needs 'epochs: {epoch: path}' or 'pattern' + 'epochs: [...]'")
    if not out:
        raise ValueError("run config: reference lists no epochs")
    return dict(sorted(out.items()))


def load_run_config(path: Path) -> RunConfig:
    """Load and parse a run YAML (strict, see load_yaml)."""
    data = load_yaml(path)
    return RunConfig.from_yaml(data, base_dir=path.parent)


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------

DEFAULT_RUN_YAML = Path("config/run.yaml")
