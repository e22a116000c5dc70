#!/usr/bin/env python3

from __future__ import annotations

import pytest

from vegpop.errors import MissingEpoch
from vegpop.model import Timestep
from vegpop.weights.temporal import TemporalAligner


@pytest.fixture
def weights():
    # stand-in mappings; identity is what matters here
    return {2000: {"r": "w2000"}, 2001: {"r": "w2001"}, 2002: {"r": "w2002"}}


def test_timestep_before_first_epoch_clamps_to_earliest(weights):
    aligner = TemporalAligner(weights)
    assert aligner.epoch_for(Timestep(1999, 6)) == 2000
    assert aligner.aligned_weights_for(Timestep(1999, 6)) is weights[2000]


def test_timestep_in_epoch_uses_that_epoch(weights):
    aligner = TemporalAligner(weights)
    assert aligner.aligned_weights_for(Timestep(2001, 3)) is weights[2001]
    assert aligner.epoch_for(Timestep(2001, 1)) == 2001
    assert aligner.epoch_for(Timestep(2000, 12)) == 2000


def test_timestep_after_last_epoch_uses_latest(weights):
    assert TemporalAligner(weights).epoch_for(Timestep(2010, 1)) == 2002


def test_gap_in_epochs_uses_greatest_earlier():
    aligner = TemporalAligner({2000: {}, 2005: {}})
    assert aligner.epoch_for(Timestep(2004, 12)) == 2000
    assert aligner.epoch_for(Timestep(2005, 1)) == 2005


def test_strict_mode_raises_before_first_epoch(weights):
    aligner = TemporalAligner(weights, clamp=False)
    with pytest.raises(MissingEpoch):
        aligner.epoch_for(Timestep(1999, 12))
    assert aligner.epoch_for(Timestep(2000, 1)) == 2000


def test_no_epochs_at_all():
    with pytest.raises(MissingEpoch):
        TemporalAligner({}).epoch_for(Timestep(2000, 1))


def test_epochs_are_sorted():
    assert TemporalAligner({2002: {}, 2000: {}, 2001: {}}).epochs == [2000, 2001, 2002]
