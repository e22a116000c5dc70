#!/usr/bin/env python3
"""orchestrator.py

Drive one aggregation run from inputs to a sorted (year, month, region) table.

Stages (in order, each exactly once):
  LOADED → ALIGNED → MASKED → WEIGHTED → AGGREGATED → SORTED

A failed aggregate moves the run to FAILED; every later stage call raises
PipelineStateError, so a failed run never yields a table.

- align:     choose the canonical grid, check boundaries, align reference fields
- mask:      rasterize regions once (ZoneMaskBuilder)
- weight:    one weight mapping per reference epoch
- aggregate: per-timestep tasks on a bounded thread pool (fail-fast)
- sort:      order rows by (year, month, region declaration order)

Masks and weights are built before the parallel phase and only read by the
workers. Snapshots may be given as fields or as zero-arg loaders; a loader is
called inside its task, so at most `max_workers` snapshots are held at once.

Error policy:
- ProjectionMismatch / GridMismatch / MissingEpoch keep their type and are
  tagged with the failing timestep (and region, when known).
- Any other exception inside a task becomes TaskFailure(timestep, region).
- The first failure cancels queued tasks; no partial table is returned.
"""

from __future__ import annotations

import enum
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from vegpop.config import PipelineOptions, format_bbox
from vegpop.errors import (
    GridMismatch,
    MissingEpoch,
    NoUsableMass,
    PipelineStateError,
    ProjectionMismatch,
    TaskFailure,
)
from vegpop.geo.align import align, crop
from vegpop.geo.zones import ZoneMaskBuilder
from vegpop.model import (
    Extent,
    GridSpec,
    RegionBoundary,
    ScalarField,
    TimeSeriesPoint,
    Timestep,
    WeightField,
    ZoneMask,
    check_same_crs,
)
from vegpop.pipeline.aggregate import aggregate
from vegpop.weights.compute import compute_epoch_weights
from vegpop.weights.temporal import TemporalAligner


SnapshotSource = Union[ScalarField, Callable[[], ScalarField]]

_STRUCTURAL = (ProjectionMismatch, GridMismatch, MissingEpoch)


class Stage(enum.Enum):
    LOADED = 1
    ALIGNED = 2
    MASKED = 3
    WEIGHTED = 4
    AGGREGATED = 5
    SORTED = 6
    FAILED = 7


class PipelineOrchestrator:
    """One run of the population-weighted aggregation."""

    def __init__(
        self,
        snapshots: Mapping[Timestep, SnapshotSource],
        references: Mapping[int, ScalarField],
        regions: Sequence[RegionBoundary],
        grid: Optional[GridSpec] = None,
        options: Optional[PipelineOptions] = None,
        mask_builder: Optional[ZoneMaskBuilder] = None,
    ):
        if not snapshots:
            raise ValueError("No snapshots to aggregate")
        if not references:
            raise ValueError("No reference epochs given")
        if not regions:
            raise ValueError("No regions given")

        names = [r.name for r in regions]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Region names must be unique in the output table: {dupes}")

        self.snapshots: Dict[Timestep, SnapshotSource] = dict(sorted(snapshots.items()))
        self.references: Dict[int, ScalarField] = {int(e): f for e, f in sorted(references.items())}
        self.regions: List[RegionBoundary] = list(regions)
        self.grid = grid
        self.options = options or PipelineOptions()
        self.mask_builder = mask_builder or ZoneMaskBuilder()

        self.masks: Optional[Mapping[str, ZoneMask]] = None
        self.weights: Optional[Mapping[int, Mapping[str, WeightField]]] = None
        self.aligner: Optional[TemporalAligner] = None
        self.weight_diagnostics: List[NoUsableMass] = []
        self.points: List[TimeSeriesPoint] = []
        self.stage = Stage.LOADED

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _require(self, expected: Stage, to: Stage) -> None:
        if self.stage is not expected:
            raise PipelineStateError(f"Cannot enter {to.name}: pipeline is at {self.stage.name}, needs {expected.name}")

    def _advance(self, expected: Stage, to: Stage) -> None:
        self._require(expected, to)
        self.stage = to

    def align(self) -> GridSpec:
        self._advance(Stage.LOADED, Stage.ALIGNED)
        if self.grid is None:
            first = self.references[min(self.references)]
            self.grid = crop(first, Extent.of(self.regions)).grid

        for region in self.regions:
            check_same_crs(region.crs, self.grid.crs, f"region {region.region_id}")

        method = self.options.resampling
        self.references = {e: align(f, self.grid, method).with_label(e) for e, f in self.references.items()}

        print(
            f"[ALIGN] canonical grid {self.grid.height}x{self.grid.width} "
            f"{format_bbox(self.grid.bounds)} {self.grid.crs} (resampling={method})"
        )
        return self.grid

    def mask(self) -> Mapping[str, ZoneMask]:
        self._advance(Stage.ALIGNED, Stage.MASKED)
        self.masks = self.mask_builder.build(self.regions, self.grid)
        return self.masks

    def weight(self) -> Mapping[int, Mapping[str, WeightField]]:
        self._advance(Stage.MASKED, Stage.WEIGHTED)
        self.weights = compute_epoch_weights(self.references, self.masks, diagnostics=self.weight_diagnostics)
        self.aligner = TemporalAligner(self.weights, clamp=self.options.clamp_epochs)
        return self.weights

    def aggregate(self) -> List[TimeSeriesPoint]:
        self._require(Stage.WEIGHTED, Stage.AGGREGATED)
        order = [r.region_id for r in self.regions]
        workers = self.options.max_workers
        print(f"[AGGREGATE] {len(self.snapshots)} timesteps x {len(order)} regions on {workers} workers")

        rows: List[TimeSeriesPoint] = []
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._run_timestep, ts, src, order): ts
                for ts, src in self.snapshots.items()
            }
            try:
                for fut in as_completed(futures):
                    rows.extend(fut.result())
            except BaseException:
                for f in futures:
                    f.cancel()
                self.points = []
                self.stage = Stage.FAILED
                raise

        self.points = rows
        self.stage = Stage.AGGREGATED
        return rows

    def sort(self) -> List[TimeSeriesPoint]:
        self._advance(Stage.AGGREGATED, Stage.SORTED)
        rank = {r.name: i for i, r in enumerate(self.regions)}
        self.points = sorted(self.points, key=lambda p: (p.year, p.month, rank[p.region]))
        return self.points

    def run(self) -> List[TimeSeriesPoint]:
        """Run every remaining stage and return the sorted table."""
        if self.stage is Stage.FAILED:
            raise PipelineStateError("Pipeline failed during AGGREGATED; build a new orchestrator to retry")
        steps = [
            (Stage.LOADED, self.align),
            (Stage.ALIGNED, self.mask),
            (Stage.MASKED, self.weight),
            (Stage.WEIGHTED, self.aggregate),
            (Stage.AGGREGATED, self.sort),
        ]
        for stage, step in steps:
            if self.stage is stage:
                step()
        return self.points

    # -------------------------------------------------------------------------
    # Per-timestep task
    # -------------------------------------------------------------------------

    def _run_timestep(self, timestep: Timestep, source: SnapshotSource, order: Sequence[str]) -> List[TimeSeriesPoint]:
        names = {r.region_id: r.name for r in self.regions}
        region = None
        try:
            field = source if isinstance(source, ScalarField) else source()
            field = align(field, self.grid, self.options.resampling)
            weights = self.aligner.aligned_weights_for(timestep)

            out = []
            for region in order:
                value = aggregate(field, weights[region], renormalize=self.options.renormalize)
                out.append(TimeSeriesPoint(timestep.year, timestep.month, names[region], value))
            return out
        except _STRUCTURAL as exc:
            exc.locate(timestep, region)
            raise
        except Exception as exc:
            raise TaskFailure(timestep, region, exc) from exc
