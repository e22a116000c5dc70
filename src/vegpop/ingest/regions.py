#!/usr/bin/env python3
"""regions.py

Read administrative boundaries (GeoPackage, shapefile, GeoJSON) into
RegionBoundary objects, in file order.

Notes:
- Boundaries are never reprojected. Their crs must match the rasters; the
  pipeline checks this and fails with ProjectionMismatch otherwise.
- Invalid geometries are repaired with make_valid; non-polygonal leftovers
  (points/lines from repair) are dropped.
- With dissolve=True, rows sharing an id are merged into one region.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import geopandas as gpd
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from vegpop.model import RegionBoundary


def _polygonal(geom: BaseGeometry) -> Optional[BaseGeometry]:
    """Keep only the polygonal part of a (possibly mixed) geometry."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    parts = [g for g in getattr(geom, "geoms", []) if isinstance(g, (Polygon, MultiPolygon))]
    polys: List[Polygon] = []
    for p in parts:
        polys.extend(p.geoms if isinstance(p, MultiPolygon) else [p])
    if not polys:
        return None
    return polys[0] if len(polys) == 1 else MultiPolygon(polys)


def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    gdf = gdf.copy()
    gdf["geometry"] = gdf.geometry.make_valid().apply(_polygonal)
    return gdf[gdf.geometry.notna()].copy()


def load_region_boundaries(
    path: Path,
    id_field: str,
    name_field: str,
    *,
    layer: Optional[str] = None,
    dissolve: bool = True,
) -> List[RegionBoundary]:
    """Read boundaries and return one RegionBoundary per region id.

    Raises:
        FileNotFoundError: missing file.
        ValueError: no CRS, missing columns, or no usable features.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Boundaries not found: {path}")

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if gdf.empty:
        raise ValueError(f"Loaded {path} but it contains zero features. Wrong file?")
    if gdf.crs is None:
        raise ValueError(f"{path} has no CRS; everything downstream depends on it.")
    missing = [c for c in (id_field, name_field) if c not in gdf.columns]
    if missing:
        raise ValueError(f"{path} is missing columns {missing}. Available: {list(gdf.columns)}")

    gdf = gdf[[id_field, name_field, "geometry"]].copy()
    gdf[id_field] = gdf[id_field].astype(str)
    gdf = _make_valid(gdf)
    if gdf.empty:
        raise ValueError(f"{path}: no polygon features left after geometry repair")

    # Keep first-appearance order of ids; it becomes the output region order.
    order = list(dict.fromkeys(gdf[id_field].tolist()))
    if dissolve:
        gdf = gdf.dissolve(by=id_field, as_index=False, aggfunc="first")
    elif gdf[id_field].duplicated().any():
        dupes = sorted(gdf.loc[gdf[id_field].duplicated(), id_field].unique().tolist())
        raise ValueError(f"Duplicate region ids without dissolve: {dupes[:10]}")

    crs = gdf.crs.to_string()
    by_id = {row[id_field]: row for _, row in gdf.iterrows()}
    regions = [
        RegionBoundary(
            region_id=rid,
            name=str(by_id[rid][name_field]),
            geometry=_polygonal(by_id[rid].geometry),
            crs=crs,
        )
        for rid in order
    ]
    print(f"[REGIONS] {len(regions)} regions from {path.name} ({crs})")
    return regions
