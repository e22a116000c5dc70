#!/usr/bin/env python3

from __future__ import annotations

import math

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from conftest import make_field, write_field
from vegpop.ingest.rasters import (
    discover_snapshots,
    load_scalar_field,
    read_grid,
    snapshot_loader,
)
from vegpop.ingest.regions import load_region_boundaries
from vegpop.ingest.tables import points_to_frame, write_table
from vegpop.model import TimeSeriesPoint, Timestep


def test_written_raster_reads_back_with_nan_nodata(tmp_path):
    f = make_field([[0.5, np.nan], [0.25, 1.0]], xmin=40, ymin=12, res=0.5)
    p = tmp_path / "ndvi.tif"
    write_field(f, p)
    back = load_scalar_field(p, label=Timestep(2000, 1))
    assert back.grid == f.grid
    assert back.equals(f)
    assert back.label == Timestep(2000, 1)
    assert read_grid(p) == f.grid


def test_snapshot_loader_defers_reading(tmp_path):
    p = tmp_path / "later.tif"
    load = snapshot_loader(p, Timestep(2000, 2))
    write_field(make_field([[1.0]]), p)
    assert load().label == Timestep(2000, 2)


def test_load_missing_raster(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_scalar_field(tmp_path / "nope.tif")


def test_discover_snapshots(tmp_path):
    for name in ["NDVI_2001_03.tif", "NDVI_2000_12.tif", "readme.tif", "NDVI_2001_01.txt"]:
        (tmp_path / name).write_bytes(b"")
    found = discover_snapshots(tmp_path, r"NDVI_(?P<year>\d{4})_(?P<month>\d{2})")
    assert list(found) == [Timestep(2000, 12), Timestep(2001, 3)]
    assert found[Timestep(2001, 3)].name == "NDVI_2001_03.tif"


def test_discover_snapshots_rejects_duplicates(tmp_path):
    for name in ["a_2001_03.tif", "b_2001_03.tif"]:
        (tmp_path / name).write_bytes(b"")
    with pytest.raises(ValueError):
        discover_snapshots(tmp_path, r"(?P<year>\d{4})_(?P<month>\d{2})")


def test_discover_snapshots_needs_named_groups(tmp_path):
    with pytest.raises(ValueError):
        discover_snapshots(tmp_path, r"(\d{4})_(\d{2})")


def _write_regions(path):
    gdf = gpd.GeoDataFrame(
        {
            "pcode": ["YE15", "YE11", "YE15"],
            "name_en": ["Lahj", "Ibb", "Lahj"],
        },
        geometry=[box(2, 0, 3, 2), box(0, 0, 2, 2), box(3, 0, 4, 2)],
        crs="EPSG:4326",
    )
    gdf.to_file(path, driver="GeoJSON")


def test_load_region_boundaries_dissolves_and_keeps_order(tmp_path):
    p = tmp_path / "adm.geojson"
    _write_regions(p)
    regions = load_region_boundaries(p, "pcode", "name_en")
    assert [r.region_id for r in regions] == ["YE15", "YE11"]
    assert [r.name for r in regions] == ["Lahj", "Ibb"]
    assert regions[0].bounds == pytest.approx((2.0, 0.0, 4.0, 2.0))
    assert regions[0].crs == "EPSG:4326"


def test_load_region_boundaries_without_dissolve_rejects_duplicates(tmp_path):
    p = tmp_path / "adm.geojson"
    _write_regions(p)
    with pytest.raises(ValueError):
        load_region_boundaries(p, "pcode", "name_en", dissolve=False)


def test_load_region_boundaries_missing_column(tmp_path):
    p = tmp_path / "adm.geojson"
    _write_regions(p)
    with pytest.raises(ValueError):
        load_region_boundaries(p, "ADM1_PCODE", "name_en")


def _points():
    return [TimeSeriesPoint(2000, 1, "Ibb", 0.42), TimeSeriesPoint(2000, 1, "Lahj", float("nan"))]


def test_points_to_frame():
    df = points_to_frame(_points())
    assert list(df.columns) == ["year", "month", "region", "value"]
    assert df["region"].tolist() == ["Ibb", "Lahj"]
    assert math.isnan(df["value"].iloc[1])


def test_write_table_csv(tmp_path):
    out = tmp_path / "out" / "table.csv"
    write_table(_points(), out)
    df = pd.read_csv(out)
    assert df["value"].iloc[0] == pytest.approx(0.42)
    assert df["value"].isna().iloc[1]
    with pytest.raises(SystemExit):
        write_table(_points(), out)
    write_table(_points(), out, overwrite=True)


def test_write_table_rejects_unknown_format(tmp_path):
    with pytest.raises(ValueError):
        write_table(_points(), tmp_path / "table.xlsx")
