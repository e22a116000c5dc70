#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
import rasterio

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from vegpop.model import GridSpec, RegionBoundary, ScalarField  # noqa: E402
from shapely.geometry import box  # noqa: E402


CRS = "EPSG:4326"


def make_grid(cols, rows, xmin=0.0, ymin=0.0, res=1.0, crs=CRS) -> GridSpec:
    return GridSpec(
        bounds=(xmin, ymin, xmin + cols * res, ymin + rows * res),
        resolution=(res, res),
        shape=(rows, cols),
        crs=crs,
    )


def make_field(values, xmin=0.0, ymin=0.0, res=1.0, crs=CRS, label=None) -> ScalarField:
    arr = np.asarray(values, dtype="float64")
    rows, cols = arr.shape
    return ScalarField(grid=make_grid(cols, rows, xmin, ymin, res, crs), values=arr, label=label)


def make_region(region_id, bounds, name=None, crs=CRS) -> RegionBoundary:
    return RegionBoundary(region_id=region_id, name=name or region_id, geometry=box(*bounds), crs=crs)


def write_field(field, path, nodata=-9999.0):
    """Write a field as a single-band float32 GeoTIFF (NaN -> nodata)."""
    data = field.values.astype("float32")
    if nodata is not None:
        data = np.where(np.isnan(data), np.float32(nodata), data)
    profile = dict(
        driver="GTiff",
        height=field.grid.height,
        width=field.grid.width,
        count=1,
        dtype="float32",
        crs=field.grid.crs,
        transform=field.grid.transform,
        nodata=nodata,
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data, 1)


@pytest.fixture
def grid4():
    return make_grid(4, 4)
