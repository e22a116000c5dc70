#!/usr/bin/env python3

from __future__ import annotations

import json

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from conftest import make_field, write_field
from vegpop.ingest import __main__ as ingest_cli
from vegpop.pipeline import __main__ as pipeline_cli


@pytest.fixture
def project(tmp_path):
    """A tiny on-disk project: 2 regions, 2 population epochs, 3 NDVI months."""
    gpd.GeoDataFrame(
        {"pcode": ["E", "W"], "name": ["East", "West"]},
        geometry=[box(2, 0, 4, 2), box(0, 0, 2, 2)],
        crs="EPSG:4326",
    ).to_file(tmp_path / "adm.geojson", driver="GeoJSON")

    pop = np.ones((2, 4))
    write_field(make_field(pop), tmp_path / "pop" / "pop_2000.tif")
    pop2001 = pop.copy()
    pop2001[:, 0] = 3.0
    write_field(make_field(pop2001), tmp_path / "pop" / "pop_2001.tif")

    ndvi = np.array([[0.1, 0.3, 0.5, 0.7], [0.1, 0.3, 0.5, np.nan]])
    for year, month in [(1999, 12), (2000, 6), (2001, 1)]:
        write_field(make_field(ndvi), tmp_path / "ndvi" / f"NDVI_{year}_{month:02d}.tif")

    (tmp_path / "run.yaml").write_text(
        "regions: {path: adm.geojson, id_field: pcode, name_field: name}\n"
        "reference: {pattern: 'pop/pop_{epoch}.tif', epochs: [2000, 2001]}\n"
        "snapshots: {dir: ndvi, pattern: 'NDVI_(?P<year>\\d{4})_(?P<month>\\d{2})'}\n"
        "options: {max_workers: 2}\n"
        "output: out/table.csv\n"
    )
    return tmp_path


def test_run_writes_sorted_table(project):
    rc = pipeline_cli.main(["--config", str(project / "run.yaml"), "run"])
    assert rc == 0
    df = pd.read_csv(project / "out" / "table.csv")
    assert list(zip(df["year"], df["month"], df["region"])) == [
        (1999, 12, "East"),
        (1999, 12, "West"),
        (2000, 6, "East"),
        (2000, 6, "West"),
        (2001, 1, "East"),
        (2001, 1, "West"),
    ]
    # East: 4 equal weights, one NDVI cell missing, no renormalization
    assert df["value"].iloc[0] == pytest.approx((0.5 + 0.7 + 0.5) / 4)
    # West 2001: column 0 holds 3/4 of the population
    assert df["value"].iloc[5] == pytest.approx(0.375 * 0.1 * 2 + 0.125 * 0.3 * 2)


def test_run_renormalize_flag(project):
    out = project / "renorm.csv"
    pipeline_cli.main(["--config", str(project / "run.yaml"), "run", "--renormalize", "--out", str(out)])
    df = pd.read_csv(out)
    assert df["value"].iloc[0] == pytest.approx((0.5 + 0.7 + 0.5) / 3)


def test_run_refuses_to_overwrite(project):
    args = ["--config", str(project / "run.yaml"), "run"]
    pipeline_cli.main(args)
    with pytest.raises(SystemExit):
        pipeline_cli.main(args)
    assert pipeline_cli.main(args + ["--overwrite"]) == 0


def test_dry_run_writes_nothing(project, capsys):
    assert pipeline_cli.main(["--config", str(project / "run.yaml"), "--dry-run", "run"]) == 0
    assert not (project / "out").exists()
    assert "[dry-run]" in capsys.readouterr().out


def test_plan_reports_clamped_months(project, capsys):
    assert pipeline_cli.main(["--config", str(project / "run.yaml"), "plan"]) == 0
    out = capsys.readouterr().out
    assert "1999-12  ->  2000  (clamped)" in out
    assert "2001-01  ->  2001" in out
    assert pipeline_cli.main(["--config", str(project / "run.yaml"), "plan", "--strict-epochs"]) == 2


def test_verify_inputs(project, capsys):
    assert ingest_cli.main(["--config", str(project / "run.yaml"), "verify", "--open", "--json"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["ok"] is True
    assert {r["source"]: r["count"] for r in report["results"]} == {"regions": 1, "reference": 2, "snapshots": 3}


def test_verify_reports_missing_epoch(project):
    (project / "pop" / "pop_2001.tif").unlink()
    assert ingest_cli.main(["--config", str(project / "run.yaml"), "verify"]) == 2
