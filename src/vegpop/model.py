#!/usr/bin/env python3
"""vegpop.model

Shared data model for the aggregation pipeline.

Nothing here does real work. These types carry grids, fields, boundaries and
results between subsystems, and own the compatibility checks every binary
operation relies on.

Conventions:
- Grids are north-up: row 0 is the northern edge.
- No-data is NaN inside a ScalarField / WeightField. File sentinels are
  converted at construction time (ScalarField.from_array).
- Arrays held by fields and masks are read-only once constructed, so they can
  be shared between worker threads without copying.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from affine import Affine
from shapely.geometry import MultiPolygon, Polygon, box
from shapely.ops import unary_union

from vegpop.config import BBox, union_bbox
from vegpop.errors import GridMismatch, ProjectionMismatch


# Cell-relative tolerance for float comparisons of bounds/resolution.
_REL_TOL = 1e-9


def same_crs(a: Optional[str], b: Optional[str]) -> bool:
    """Compare projection identifiers (case/whitespace-insensitive)."""
    if a is None or b is None:
        return a is b
    return str(a).strip().upper() == str(b).strip().upper()


def check_same_crs(a: Optional[str], b: Optional[str], context: str = "") -> None:
    if not same_crs(a, b):
        raise ProjectionMismatch(str(a), str(b), context)


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


# -----------------------------------------------------------------------------
# GridSpec
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class GridSpec:
    """Geometric sampling lattice: extent, cell size, cell counts, projection."""

    bounds: BBox
    resolution: Tuple[float, float]
    shape: Tuple[int, int]
    crs: str

    def __post_init__(self) -> None:
        xmin, ymin, xmax, ymax = (float(v) for v in self.bounds)
        xres, yres = (float(v) for v in self.resolution)
        rows, cols = (int(v) for v in self.shape)
        if xres <= 0 or yres <= 0:
            raise ValueError(f"Resolution must be positive, got {self.resolution}")
        if rows <= 0 or cols <= 0:
            raise ValueError(f"Grid shape must be positive, got {self.shape}")
        if not math.isclose(xmin + cols * xres, xmax, rel_tol=0, abs_tol=xres * 1e-6) or not math.isclose(
            ymin + rows * yres, ymax, rel_tol=0, abs_tol=yres * 1e-6
        ):
            raise ValueError(
                f"Bounds {self.bounds} do not match shape {self.shape} at resolution {self.resolution}"
            )
        object.__setattr__(self, "bounds", (xmin, ymin, xmax, ymax))
        object.__setattr__(self, "resolution", (xres, yres))
        object.__setattr__(self, "shape", (rows, cols))

    @classmethod
    def from_transform(cls, transform: Affine, width: int, height: int, crs: str) -> "GridSpec":
        """Build a GridSpec from a north-up rasterio transform."""
        if transform.b != 0 or transform.d != 0 or transform.e >= 0:
            raise GridMismatch(f"Only north-up, unrotated grids are supported: {transform}")
        xres, yres = transform.a, -transform.e
        xmin, ymax = transform.c, transform.f
        return cls(
            bounds=(xmin, ymax - height * yres, xmin + width * xres, ymax),
            resolution=(xres, yres),
            shape=(height, width),
            crs=crs,
        )

    @property
    def transform(self) -> Affine:
        xres, yres = self.resolution
        return Affine(xres, 0.0, self.bounds[0], 0.0, -yres, self.bounds[3])

    @property
    def height(self) -> int:
        return self.shape[0]

    @property
    def width(self) -> int:
        return self.shape[1]

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return (xs, ys) of cell centres; ys run north to south."""
        xres, yres = self.resolution
        xs = self.bounds[0] + (np.arange(self.width) + 0.5) * xres
        ys = self.bounds[3] - (np.arange(self.height) + 0.5) * yres
        return xs, ys

    def _tol(self) -> float:
        return max(self.resolution) * _REL_TOL

    def same_geometry(self, other: "GridSpec") -> bool:
        """True if bbox, resolution and cell counts are equal."""
        if self.shape != other.shape:
            return False
        tol = max(self._tol(), other._tol())
        return all(math.isclose(a, b, rel_tol=0, abs_tol=tol) for a, b in zip(self.bounds, other.bounds)) and all(
            math.isclose(a, b, rel_tol=_REL_TOL) for a, b in zip(self.resolution, other.resolution)
        )

    def check_compatible(self, other: "GridSpec", context: str = "") -> None:
        """Raise ProjectionMismatch / GridMismatch unless `other` is the same grid."""
        check_same_crs(self.crs, other.crs, context)
        if not self.same_geometry(other):
            where = f" ({context})" if context else ""
            raise GridMismatch(f"Incompatible grids{where}: {self} vs {other}")

    def covers(self, other: "GridSpec") -> bool:
        """True if this grid's extent contains `other`'s extent."""
        tol = max(self._tol(), other._tol())
        sx0, sy0, sx1, sy1 = self.bounds
        ox0, oy0, ox1, oy1 = other.bounds
        return ox0 >= sx0 - tol and oy0 >= sy0 - tol and ox1 <= sx1 + tol and oy1 <= sy1 + tol


@dataclass(frozen=True)
class Extent:
    """A bare bounding box with a projection: anything croppable-to."""

    bounds: BBox
    crs: str

    @classmethod
    def of(cls, shapes: Iterable[Any]) -> "Extent":
        """Union extent of objects carrying `.bounds` and `.crs` (all in one crs)."""
        shapes = list(shapes)
        if not shapes:
            raise ValueError("Cannot compute the extent of an empty collection")
        crs = shapes[0].crs
        for s in shapes[1:]:
            check_same_crs(crs, s.crs, "extent union")
        bbox = union_bbox(tuple(s.bounds) for s in shapes)
        return cls(bounds=bbox, crs=crs)  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# Fields
# -----------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ScalarField:
    """A 2-D float field on a GridSpec. NaN marks no-data.

    `label` is a Timestep for snapshots of the aggregated variable, an epoch
    (int) for the reference density series, or None.
    """

    grid: GridSpec
    values: np.ndarray
    label: Any = None

    def __post_init__(self) -> None:
        arr = np.asarray(self.values, dtype="float64")
        if arr.ndim != 2:
            raise ValueError(f"ScalarField values must be 2-D, got shape {arr.shape}")
        if arr.shape != self.grid.shape:
            raise GridMismatch(f"Array shape {arr.shape} != grid shape {self.grid.shape}")
        if arr.flags.writeable:
            arr = arr.copy()
        object.__setattr__(self, "values", _readonly(arr))

    @classmethod
    def from_array(
        cls,
        values: Any,
        grid: GridSpec,
        nodata: Optional[float] = None,
        label: Any = None,
    ) -> "ScalarField":
        """Build a field, turning the `nodata` sentinel into NaN."""
        arr = np.array(values, dtype="float64", copy=True)
        if nodata is not None and not np.isnan(nodata):
            arr[arr == nodata] = np.nan
        return cls(grid=grid, values=arr, label=label)

    @property
    def crs(self) -> str:
        return self.grid.crs

    @property
    def bounds(self) -> BBox:
        return self.grid.bounds

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(self.values)

    def with_label(self, label: Any) -> "ScalarField":
        return ScalarField(grid=self.grid, values=self.values, label=label)

    def equals(self, other: "ScalarField") -> bool:
        """Grid and values equal (NaN == NaN); labels are ignored."""
        return (
            same_crs(self.grid.crs, other.grid.crs)
            and self.grid.same_geometry(other.grid)
            and np.array_equal(self.values, other.values, equal_nan=True)
        )


# -----------------------------------------------------------------------------
# Regions, masks, weights
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class RegionBoundary:
    """An administrative unit: id, display name, polygon geometry, projection."""

    region_id: str
    name: str
    geometry: Any
    crs: str

    def __post_init__(self) -> None:
        if not isinstance(self.geometry, (Polygon, MultiPolygon)):
            raise TypeError(f"Region {self.region_id!r}: expected Polygon/MultiPolygon, got {type(self.geometry).__name__}")

    @classmethod
    def from_polygons(cls, region_id: str, name: str, polygons: Sequence[Any], crs: str) -> "RegionBoundary":
        if not polygons:
            raise ValueError(f"Region {region_id!r} has no polygons")
        geom = polygons[0] if len(polygons) == 1 else unary_union(list(polygons))
        return cls(region_id=str(region_id), name=str(name), geometry=geom, crs=crs)

    @property
    def bounds(self) -> BBox:
        return tuple(self.geometry.bounds)  # type: ignore[return-value]

    def intersects(self, grid: GridSpec) -> bool:
        return self.geometry.intersects(box(*grid.bounds))


@dataclass(frozen=True, eq=False)
class ZoneMask:
    """Boolean membership of each grid cell in one region. Read-only."""

    region_id: str
    grid: GridSpec
    member: np.ndarray

    def __post_init__(self) -> None:
        arr = np.asarray(self.member, dtype=bool)
        if arr.shape != self.grid.shape:
            raise GridMismatch(f"Mask shape {arr.shape} != grid shape {self.grid.shape}")
        if arr.flags.writeable:
            arr = arr.copy()
        object.__setattr__(self, "member", _readonly(arr))

    @property
    def is_empty(self) -> bool:
        return not bool(self.member.any())

    @property
    def count(self) -> int:
        return int(self.member.sum())


@dataclass(frozen=True, eq=False)
class WeightField:
    """Normalized per-cell weights of one region for one epoch (NaN = no-data)."""

    region_id: str
    epoch: Any
    grid: GridSpec
    values: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        arr = np.asarray(self.values, dtype="float64")
        if arr.shape != self.grid.shape:
            raise GridMismatch(f"Weight shape {arr.shape} != grid shape {self.grid.shape}")
        if arr.flags.writeable:
            arr = arr.copy()
        object.__setattr__(self, "values", _readonly(arr))

    @property
    def valid(self) -> np.ndarray:
        return ~np.isnan(self.values)

    @property
    def is_empty(self) -> bool:
        return not bool(self.valid.any())

    def total(self) -> float:
        return float(np.nansum(self.values))


# -----------------------------------------------------------------------------
# Time and results
# -----------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class Timestep:
    """A monthly snapshot time. Its epoch is the calendar year."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= int(self.month) <= 12:
            raise ValueError(f"Month out of range: {self.month}")
        object.__setattr__(self, "year", int(self.year))
        object.__setattr__(self, "month", int(self.month))

    @property
    def epoch(self) -> int:
        return self.year

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class TimeSeriesPoint(NamedTuple):
    year: int
    month: int
    region: str
    value: float
