#!/usr/bin/env python3
"""zones.py

Rasterize region boundaries into per-region membership masks.

A cell is a member of a region when the region's polygon contains the cell
centre (rasterio's default rasterization rule, all_touched=False).

Masks are memoized per (region set, grid). The builder is safe to share
between threads: concurrent callers asking for the same key block on a
per-key lock, so the key is rasterized once and every caller receives the
same read-only mapping.
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Dict, Hashable, List, Mapping, Sequence, Tuple

import numpy as np
from rasterio.features import geometry_mask

from vegpop.errors import EmptyRegion
from vegpop.model import GridSpec, RegionBoundary, ZoneMask, check_same_crs


def region_set_key(regions: Sequence[RegionBoundary]) -> Tuple[Hashable, ...]:
    """Hashable identity of a region set (ids plus exact geometry)."""
    return tuple((r.region_id, r.geometry.wkb) for r in regions)


def rasterize_region(region: RegionBoundary, grid: GridSpec) -> ZoneMask:
    """Membership mask of one region on `grid` (centre-of-cell containment)."""
    check_same_crs(region.crs, grid.crs, f"region {region.region_id}")
    if not region.intersects(grid):
        return ZoneMask(region_id=region.region_id, grid=grid, member=np.zeros(grid.shape, dtype=bool))

    member = geometry_mask(
        [region.geometry],
        out_shape=grid.shape,
        transform=grid.transform,
        all_touched=False,
        invert=True,
    )
    return ZoneMask(region_id=region.region_id, grid=grid, member=member)


class ZoneMaskBuilder:
    """Memoizing, thread-safe builder of {region_id: ZoneMask} mappings."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._key_locks: Dict[Hashable, threading.Lock] = {}
        self._cache: Dict[Hashable, Mapping[str, ZoneMask]] = {}
        self.diagnostics: List[EmptyRegion] = []
        self.computations = 0

    def build(self, regions: Sequence[RegionBoundary], grid: GridSpec) -> Mapping[str, ZoneMask]:
        """Return the region→mask mapping for `regions` on `grid`.

        Regions that cover no cell centre get an all-non-member mask and an
        EmptyRegion diagnostic; they are not an error.
        """
        ids = [r.region_id for r in regions]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate region ids: {sorted(i for i in set(ids) if ids.count(i) > 1)}")

        key = (region_set_key(regions), grid)
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            masks = self._compute(regions, grid)
            self._cache[key] = masks
            return masks

    def _compute(self, regions: Sequence[RegionBoundary], grid: GridSpec) -> Mapping[str, ZoneMask]:
        with self._lock:
            self.computations += 1

        out: Dict[str, ZoneMask] = {}
        for region in regions:
            mask = rasterize_region(region, grid)
            if mask.is_empty:
                reason = "does not intersect grid" if not region.intersects(grid) else "covers no cell centre"
                diag = EmptyRegion(region.region_id, reason)
                with self._lock:
                    self.diagnostics.append(diag)
                print(f"  - warning: {diag}")
            out[region.region_id] = mask

        n_cells = sum(m.count for m in out.values())
        print(f"[MASKS] {len(out)} regions rasterized on {grid.height}x{grid.width} grid ({n_cells} member cells)")
        return MappingProxyType(out)
