#!/usr/bin/env python3
"""tables.py

Output sink: turn the ordered TimeSeriesPoint sequence into a pandas
DataFrame and write it as CSV or Parquet (chosen by file suffix).
No-data values are written as empty cells (CSV) / nulls (Parquet).
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from vegpop.model import TimeSeriesPoint


COLUMNS = ["year", "month", "region", "value"]


def points_to_frame(points: Iterable[TimeSeriesPoint]) -> pd.DataFrame:
    """Tidy table, row order preserved."""
    df = pd.DataFrame([tuple(p) for p in points], columns=COLUMNS)
    return df.astype({"year": "int64", "month": "int64", "region": "object", "value": "float64"})


def write_table(points: Iterable[TimeSeriesPoint], out_path: Path, overwrite: bool = False) -> pd.DataFrame:
    out_path = Path(out_path)
    suffix = out_path.suffix.lower()
    if suffix not in (".csv", ".parquet", ".pq"):
        raise ValueError(f"Unsupported output format {suffix!r}; use .csv or .parquet")
    if out_path.exists() and not overwrite:
        raise SystemExit(f"Output exists (use --overwrite): {out_path}")

    df = points_to_frame(points)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == ".csv":
        df.to_csv(out_path, index=False)
    else:
        df.to_parquet(out_path, index=False)

    print(f"Wrote {len(df)} rows -> {out_path}")
    return df
