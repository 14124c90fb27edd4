#!/usr/bin/env python3
"""Gain normalizer: polyphony-aware master gain."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from synth.graph import AudioGraph
from synth.mixer import MASTER_LEVEL_SCALING, Mixer, NormalizationType


@pytest.fixture
def mixer():
    return Mixer(AudioGraph(clock=lambda: 0.0))


@pytest.mark.parametrize("mode", ["logarithmic", "linear"])
@pytest.mark.parametrize("scaling", [0, 25, 75, 100])
def test_gain_never_increases_with_voice_count(mixer, mode, scaling):
    mixer.set_normalization_type(mode)
    mixer.set_voice_scaling(scaling)
    gains = [mixer.compute_gain(n) for n in range(0, 17)]
    assert all(b <= a + 1e-12 for a, b in zip(gains, gains[1:]))
    assert all(g > 0 for g in gains)


def test_known_values(mixer):
    # four slots at 0.25 sum to 1.0, so a single voice gives log2(2) == 1
    assert mixer.compute_gain(1) == pytest.approx(0.25)
    assert mixer.compute_gain(0) == mixer.compute_gain(1)

    mixer.set_normalization_type(NormalizationType.LINEAR)
    assert mixer.compute_gain(1) == pytest.approx(0.5)
    assert mixer.compute_gain(16) == pytest.approx(0.5 / 16 ** 0.75)


def test_update_master_gain_writes_both_stages(mixer):
    mixer.set_output_level(0.5)
    gain = mixer.update_master_gain(4)
    assert mixer.master_gain.gain.value == pytest.approx(gain)
    assert mixer.master_level.gain.value == pytest.approx(0.5 * MASTER_LEVEL_SCALING)
    assert mixer.master_gain.is_connected_to(mixer.master_level)


def test_levels_are_clamped_and_validated(mixer):
    mixer.set_level(0, 1.7)
    mixer.set_level(1, -1)
    assert mixer.levels[:2] == [1.0, 0.0]
    with pytest.raises(IndexError):
        mixer.set_level(4, 0.5)
    assert not mixer.set_normalization_type("cubic")
    assert mixer.normalization_type is NormalizationType.LOGARITHMIC
    mixer.set_voice_scaling(250)
    assert mixer.voice_scaling == 100
