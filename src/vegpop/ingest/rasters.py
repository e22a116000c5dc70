#!/usr/bin/env python3
"""rasters.py

Read single-band GeoTIFFs into ScalarFields and discover monthly snapshots.

The file's nodata value becomes NaN. The projection identifier is taken from
the file as `CRS.to_string()` (e.g. "EPSG:4326"); files without a CRS are
rejected because every downstream check depends on it.

Required deps (typical conda geo stack): rasterio, numpy
"""

from __future__ import annotations

import re
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict

import rasterio

from vegpop.model import GridSpec, ScalarField, Timestep


def read_grid(path: Path) -> GridSpec:
    """GridSpec of a raster file without reading its pixels."""
    with rasterio.open(path) as src:
        if src.crs is None:
            raise ValueError(f"Raster has no CRS: {path}")
        return GridSpec.from_transform(src.transform, src.width, src.height, src.crs.to_string())


def load_scalar_field(path: Path, band: int = 1, label: Any = None) -> ScalarField:
    """Read one band of `path` as a float64 ScalarField."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster not found: {path}")
    with rasterio.open(path) as src:
        if src.crs is None:
            raise ValueError(f"Raster has no CRS: {path}")
        if band < 1 or band > src.count:
            raise ValueError(f"{path} has {src.count} band(s); band {band} requested")
        grid = GridSpec.from_transform(src.transform, src.width, src.height, src.crs.to_string())
        data = src.read(band).astype("float64")
        nodata = src.nodatavals[band - 1]
    return ScalarField.from_array(data, grid, nodata=nodata, label=label)


def snapshot_loader(path: Path, timestep: Timestep, band: int = 1) -> Callable[[], ScalarField]:
    """Zero-arg loader for one snapshot, to be called inside a pipeline task."""
    return partial(load_scalar_field, Path(path), band, timestep)


def discover_snapshots(directory: Path, pattern: str, glob: str = "*.tif") -> Dict[Timestep, Path]:
    """Map files in `directory` to timesteps.

    `pattern` is a regex with named groups `year` and `month`, searched in
    each file name, e.g. r"NDVI_(?P<year>\\d{4})_(?P<month>\\d{2})". Files
    that do not match are skipped; two files for one timestep is an error.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Snapshot directory not found: {directory}")
    rx = re.compile(pattern)
    if not {"year", "month"} <= set(rx.groupindex):
        raise ValueError(f"Snapshot pattern needs named groups 'year' and 'month': {pattern}")

    found: Dict[Timestep, Path] = {}
    for p in sorted(directory.glob(glob)):
        m = rx.search(p.name)
        if not m:
            continue
        ts = Timestep(int(m.group("year")), int(m.group("month")))
        if ts in found:
            raise ValueError(f"Two snapshots for {ts}: {found[ts].name}, {p.name}")
        found[ts] = p
    return dict(sorted(found.items()))


def load_reference_series(paths: Dict[int, Path], band: int = 1) -> Dict[int, ScalarField]:
    """Read the reference density series, one field per epoch."""
    out: Dict[int, ScalarField] = {}
    for epoch, p in sorted(paths.items()):
        out[int(epoch)] = load_scalar_field(p, band=band, label=int(epoch))
        print(f"[REFERENCE] epoch {epoch}: {Path(p).name}")
    return out
