#!/usr/bin/env python3
"""vegpop.errors

Error kinds shared across vegpop subsystems.

Two families:
- Structural errors (ProjectionMismatch, GridMismatch, MissingEpoch, TaskFailure)
  are raised and always reach the caller.
- Data-sparsity conditions (EmptyRegion, NoUsableMass) are *diagnostics*:
  they are built, reported and collected, but never raised by the pipeline.
  Downstream they show up as NaN values in the result table.

An error that surfaces inside a per-timestep task is tagged with `locate`,
so its message and attributes name the timestep (and region) it came from.
"""

from __future__ import annotations

from typing import Any, Optional


class VegpopError(Exception):
    """Base class for all vegpop errors."""

    timestep: Any = None
    region: Optional[str] = None

    def locate(self, timestep: Any, region: Optional[str] = None) -> "VegpopError":
        """Tag the error with the run position it surfaced at and return it."""
        self.timestep = timestep
        self.region = region
        where = f"timestep={timestep}"
        if region is not None:
            where += f" region={region}"
        if self.args:
            self.args = (f"{self.args[0]} [at {where}]",) + self.args[1:]
        else:
            self.args = (f"[at {where}]",)
        return self


class ProjectionMismatch(VegpopError):
    """Two grids/fields/boundaries carry different projection identifiers."""

    def __init__(self, left: str, right: str, context: str = ""):
        self.left = left
        self.right = right
        where = f" ({context})" if context else ""
        super().__init__(f"Projection mismatch{where}: {left!r} != {right!r}")


class GridMismatch(VegpopError):
    """Incompatible GridSpecs passed to an operation requiring compatibility."""


class MissingEpoch(VegpopError):
    """A timestep predates every available epoch and clamping is disabled."""


class PipelineStateError(VegpopError):
    """A pipeline stage was requested before its prerequisites ran."""


class TaskFailure(VegpopError):
    """An unexpected error inside a per-timestep task.

    The original exception is kept as ``__cause__``.
    """

    def __init__(self, timestep: Any, region: Optional[str], cause: BaseException):
        self.timestep = timestep
        self.region = region
        where = f"timestep={timestep}"
        if region is not None:
            where += f" region={region}"
        super().__init__(f"Task failed at {where}: {type(cause).__name__}: {cause}")


# -----------------------------------------------------------------------------
# Diagnostics (collected, not raised)
# -----------------------------------------------------------------------------

class EmptyRegion(VegpopError):
    """A region's boundary covers no cell of the working grid."""

    def __init__(self, region_id: str, reason: str = "does not intersect grid"):
        self.region_id = region_id
        super().__init__(f"Region {region_id!r} {reason}; mask is all non-member")


class NoUsableMass(VegpopError):
    """A region has no defined, non-zero reference mass for an epoch."""

    def __init__(self, region_id: str, epoch: Any = None):
        self.region_id = region_id
        self.epoch = epoch
        tail = f" at epoch {epoch}" if epoch is not None else ""
        super().__init__(f"Region {region_id!r} has no usable reference mass{tail}; weights are no-data")
