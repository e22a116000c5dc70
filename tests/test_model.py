#!/usr/bin/env python3

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_field, make_grid, make_region
from vegpop.errors import GridMismatch, ProjectionMismatch
from vegpop.model import Extent, GridSpec, ScalarField, Timestep


def test_gridspec_rejects_inconsistent_bounds():
    with pytest.raises(ValueError):
        GridSpec(bounds=(0, 0, 4, 4), resolution=(1, 1), shape=(4, 5), crs="EPSG:4326")


def test_gridspec_rejects_nonpositive_resolution():
    with pytest.raises(ValueError):
        GridSpec(bounds=(0, 0, 4, 4), resolution=(0, 1), shape=(4, 4), crs="EPSG:4326")


def test_gridspec_from_transform_matches_transform():
    g = make_grid(3, 2, xmin=10, ymin=20, res=0.5)
    back = GridSpec.from_transform(g.transform, g.width, g.height, g.crs)
    assert back == g
    assert back.bounds == (10.0, 20.0, 11.5, 21.0)


def test_cell_centers_run_north_to_south():
    xs, ys = make_grid(2, 2).cell_centers()
    assert xs.tolist() == [0.5, 1.5]
    assert ys.tolist() == [1.5, 0.5]


def test_check_compatible_projection_first():
    a = make_grid(4, 4)
    b = make_grid(4, 4, crs="EPSG:3857")
    with pytest.raises(ProjectionMismatch):
        a.check_compatible(b)


def test_check_compatible_geometry():
    a = make_grid(4, 4)
    with pytest.raises(GridMismatch):
        a.check_compatible(make_grid(4, 4, xmin=1))
    with pytest.raises(GridMismatch):
        a.check_compatible(make_grid(8, 8, res=0.5))
    a.check_compatible(make_grid(4, 4, crs="epsg:4326"))


def test_covers():
    big = make_grid(4, 4)
    assert big.covers(make_grid(2, 2, xmin=1, ymin=1))
    assert not big.covers(make_grid(2, 2, xmin=3, ymin=1))


def test_from_array_converts_sentinel_to_nan():
    g = make_grid(2, 1)
    f = ScalarField.from_array([[1.0, -9999.0]], g, nodata=-9999.0)
    assert f.values[0, 0] == 1.0
    assert np.isnan(f.values[0, 1])
    assert f.valid.tolist() == [[True, False]]


def test_field_values_are_read_only():
    f = make_field([[1.0, 2.0]])
    with pytest.raises(ValueError):
        f.values[0, 0] = 5.0


def test_field_shape_must_match_grid():
    with pytest.raises(GridMismatch):
        ScalarField(grid=make_grid(3, 1), values=np.zeros((1, 2)))


def test_field_equals_treats_nan_as_equal():
    a = make_field([[1.0, np.nan]])
    b = make_field([[1.0, np.nan]], label="other")
    assert a.equals(b)


def test_extent_of_regions_is_union():
    ext = Extent.of([make_region("a", (0, 0, 1, 1)), make_region("b", (2, -1, 3, 0.5))])
    assert ext.bounds == (0.0, -1.0, 3.0, 1.0)
    assert ext.crs == "EPSG:4326"


def test_extent_of_mixed_projections_fails():
    with pytest.raises(ProjectionMismatch):
        Extent.of([make_region("a", (0, 0, 1, 1)), make_region("b", (0, 0, 1, 1), crs="EPSG:3857")])


def test_timestep_order_and_epoch():
    assert sorted([Timestep(2001, 1), Timestep(2000, 12), Timestep(2000, 2)]) == [
        Timestep(2000, 2),
        Timestep(2000, 12),
        Timestep(2001, 1),
    ]
    assert Timestep(2003, 7).epoch == 2003
    assert str(Timestep(2003, 7)) == "2003-07"


def test_timestep_rejects_bad_month():
    with pytest.raises(ValueError):
        Timestep(2000, 13)
