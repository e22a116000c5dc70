#!/usr/bin/env python3
"""aggregate.py

Reduce one field to one scalar per region using that region's weights.

value = sum(field[c] * weight[c]) over cells c where BOTH are defined.

Cells where only one side is defined are dropped and, by default, the
surviving weights are not rescaled, so a region with patchy field coverage
reports a value biased towards zero. Pass renormalize=True to rescale the
surviving weights to sum to 1 instead.
"""

from __future__ import annotations

import numpy as np

from vegpop.model import ScalarField, WeightField


def aggregate(field: ScalarField, weights: WeightField, renormalize: bool = False) -> float:
    """Weighted sum of `field` under `weights`; NaN if no cell has both defined."""
    field.grid.check_compatible(weights.grid, f"aggregate region {weights.region_id}")

    both = field.valid & weights.valid
    if not both.any():
        return float("nan")

    w = weights.values[both]
    v = field.values[both]
    if renormalize:
        total = w.sum()
        if total <= 0:
            return float("nan")
        w = w / total
    return float(np.dot(v, w))

