#!/usr/bin/env python3
"""align.py

Bring heterogeneous fields onto one canonical grid.

Two primitives:
- crop():     clip a field to the bbox of a shape, keeping its resolution.
- resample(): sample a field onto a target GridSpec (nearest / bilinear).

Resampling is the only place resolution changes. Projections are checked,
never transformed: the source and target crs must already be identical.
"""

from __future__ import annotations

import math
from typing import Any, Union

import numpy as np
from rasterio.enums import Resampling
from rasterio.warp import reproject
from rasterio.windows import Window
from rasterio.windows import transform as window_transform

from vegpop.errors import GridMismatch
from vegpop.model import GridSpec, ScalarField, check_same_crs


# Fraction of a cell treated as "on the edge" when snapping crop windows.
_SNAP_EPS = 1e-9


def _to_resampling(method: Union[str, Resampling]) -> Resampling:
    """Convert 'nearest' / 'bilinear' to rasterio.enums.Resampling."""
    if isinstance(method, Resampling):
        if method not in (Resampling.nearest, Resampling.bilinear):
            raise ValueError(f"Unsupported resampling: {method.name}")
        return method
    if method in ("nearest", "bilinear"):
        return getattr(Resampling, method)
    raise ValueError(f"Unknown resampling {method!r}; valid: 'nearest', 'bilinear'")


def crop_window(grid: GridSpec, bounds) -> Window:
    """Window of `grid` covering `bounds`, snapped outward to cell edges.

    The window is clamped to the grid. Raises GridMismatch if nothing overlaps.
    """
    bxmin, bymin, bxmax, bymax = bounds
    gxmin, _, _, gymax = grid.bounds
    xres, yres = grid.resolution

    col0 = max(0, math.floor((bxmin - gxmin) / xres + _SNAP_EPS))
    col1 = min(grid.width, math.ceil((bxmax - gxmin) / xres - _SNAP_EPS))
    row0 = max(0, math.floor((gymax - bymax) / yres + _SNAP_EPS))
    row1 = min(grid.height, math.ceil((gymax - bymin) / yres - _SNAP_EPS))

    if col1 <= col0 or row1 <= row0:
        raise GridMismatch(f"Crop bounds {tuple(bounds)} do not overlap grid extent {grid.bounds}")
    return Window(col0, row0, col1 - col0, row1 - row0)


def crop(field: ScalarField, bounding_shape: Any) -> ScalarField:
    """Clip `field` to the bounding box of `bounding_shape`.

    `bounding_shape` is anything with `.bounds` and `.crs` (RegionBoundary,
    GridSpec, ScalarField, Extent). Cropping an already-cropped field to the
    same shape returns an identical field.
    """
    check_same_crs(field.crs, bounding_shape.crs, "crop")
    grid = field.grid
    win = crop_window(grid, bounding_shape.bounds)

    row0, col0 = int(win.row_off), int(win.col_off)
    height, width = int(win.height), int(win.width)
    if (height, width) == grid.shape:
        return field

    new_grid = GridSpec.from_transform(window_transform(win, grid.transform), width, height, grid.crs)
    values = field.values[row0:row0 + height, col0:col0 + width]
    return ScalarField(grid=new_grid, values=values, label=field.label)


def resample(
    field: ScalarField,
    target: GridSpec,
    method: Union[str, Resampling] = "nearest",
) -> ScalarField:
    """Sample `field` onto `target`.

    nearest  → value of the source cell containing each target cell centre
    bilinear → interpolation between neighbouring source cell centres

    Raises ProjectionMismatch on differing crs, GridMismatch if the field's
    extent does not cover the target's extent.
    """
    resampling = _to_resampling(method)
    check_same_crs(field.crs, target.crs, "resample")
    if not field.grid.covers(target):
        raise GridMismatch(f"Field extent {field.grid.bounds} does not cover target extent {target.bounds}")

    if field.grid.same_geometry(target):
        return ScalarField(grid=target, values=field.values, label=field.label)

    dst = np.full(target.shape, np.nan, dtype="float64")
    # reproject wants a writable, contiguous source
    src = np.ascontiguousarray(field.values, dtype="float64").copy()
    reproject(
        source=src,
        destination=dst,
        src_transform=field.grid.transform,
        src_crs=field.crs,
        src_nodata=np.nan,
        dst_transform=target.transform,
        dst_crs=target.crs,
        dst_nodata=np.nan,
        resampling=resampling,
    )
    return ScalarField(grid=target, values=dst, label=field.label)


def align(
    field: ScalarField,
    target: GridSpec,
    method: Union[str, Resampling] = "nearest",
) -> ScalarField:
    """Crop `field` to `target`'s extent, then resample if the grids still differ."""
    cropped = crop(field, target)
    if cropped.grid.same_geometry(target):
        return ScalarField(grid=target, values=cropped.values, label=field.label)
    return resample(cropped, target, method)
