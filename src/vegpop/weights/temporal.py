#!/usr/bin/env python3
"""temporal.py

Map coarse-epoch weight fields (one per year) onto fine timesteps (months).

Rule: a timestep uses the greatest epoch <= its own epoch. A timestep that
predates every epoch is clamped to the earliest epoch, unless clamping is
disabled, in which case MissingEpoch is raised.
"""

from __future__ import annotations

from bisect import bisect_right
from typing import Any, List, Mapping

from vegpop.errors import MissingEpoch
from vegpop.model import Timestep, WeightField


class TemporalAligner:
    def __init__(self, epoch_weights: Mapping[int, Mapping[str, WeightField]], clamp: bool = True):
        self._weights = epoch_weights
        self._epochs: List[int] = sorted(int(e) for e in epoch_weights)
        self.clamp = clamp

    @property
    def epochs(self) -> List[int]:
        return list(self._epochs)

    def epoch_for(self, timestep: Any) -> int:
        """Epoch whose weights apply to `timestep` (a Timestep or a bare epoch int)."""
        if not self._epochs:
            raise MissingEpoch("No reference epochs available")
        target = timestep.epoch if isinstance(timestep, Timestep) else int(timestep)
        i = bisect_right(self._epochs, target)
        if i == 0:
            if not self.clamp:
                raise MissingEpoch(
                    f"Timestep {timestep} predates the earliest epoch {self._epochs[0]} (clamping disabled)"
                )
            return self._epochs[0]
        return self._epochs[i - 1]

    def aligned_weights_for(self, timestep: Any) -> Mapping[str, WeightField]:
        return self._weights[self.epoch_for(timestep)]
