#!/usr/bin/env python3
"""compute.py

Turn a reference density field (e.g. population) plus zone masks into
per-region normalized weight fields.

For each region:
- usable cells = member cells whose reference value is defined and >= 0
- weight[cell] = value[cell] / sum(value[usable])
- every other cell is no-data (NaN)

A region with no usable mass (no usable cells, or a zero sum) gets an
all-NaN WeightField. Aggregating against it yields NaN, never an error.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from vegpop.errors import NoUsableMass
from vegpop.model import ScalarField, WeightField, ZoneMask


def region_weights(reference: ScalarField, mask: ZoneMask, epoch: Any = None) -> WeightField:
    """Normalized weights of one region. All-NaN if the region has no usable mass."""
    reference.grid.check_compatible(mask.grid, f"weights for region {mask.region_id}")

    values = reference.values
    with np.errstate(invalid="ignore"):
        usable = mask.member & ~np.isnan(values) & (values >= 0)

    out = np.full(reference.grid.shape, np.nan, dtype="float64")
    total = float(values[usable].sum()) if usable.any() else 0.0
    if total > 0:
        out[usable] = values[usable] / total
    return WeightField(region_id=mask.region_id, epoch=epoch, grid=reference.grid, values=out)


def compute_weights(
    reference: ScalarField,
    masks: Mapping[str, ZoneMask],
    epoch: Any = None,
    diagnostics: Optional[List[NoUsableMass]] = None,
) -> Mapping[str, WeightField]:
    """Weight fields for every region in `masks` against one reference field.

    `epoch` defaults to the reference field's label. Regions without usable
    mass are reported (and appended to `diagnostics` when given).
    """
    if epoch is None:
        epoch = reference.label

    out: Dict[str, WeightField] = {}
    for region_id, mask in masks.items():
        wf = region_weights(reference, mask, epoch=epoch)
        if wf.is_empty:
            diag = NoUsableMass(region_id, epoch)
            if diagnostics is not None:
                diagnostics.append(diag)
            print(f"  - warning: {diag}")
        out[region_id] = wf
    return MappingProxyType(out)


def compute_epoch_weights(
    references: Mapping[int, ScalarField],
    masks: Mapping[str, ZoneMask],
    diagnostics: Optional[List[NoUsableMass]] = None,
) -> Mapping[int, Mapping[str, WeightField]]:
    """One weight mapping per epoch, keyed and ordered by epoch."""
    out: Dict[int, Mapping[str, WeightField]] = {}
    for epoch in sorted(references):
        out[epoch] = compute_weights(references[epoch], masks, epoch=epoch, diagnostics=diagnostics)
        print(f"[WEIGHTS] epoch {epoch}: {len(masks)} regions")
    return MappingProxyType(out)
