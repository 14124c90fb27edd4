"""Oscillator levels and polyphony-aware master gain."""
import logging
import math
from enum import Enum
from typing import List, Union

from synth.voice import NUM_SLOTS

logger = logging.getLogger(__name__)


class NormalizationType(Enum):
    LOGARITHMIC = "logarithmic"
    LINEAR = "linear"


LOG_HEADROOM = 0.25      # about -12 dB
LINEAR_HEADROOM = 0.5
MASTER_LEVEL_SCALING = 0.7   # about -3 dB safety margin


class Mixer:
    """Per-slot oscillator levels, master gain normalisation and master level.

    ``master_gain`` receives the filter bank output; ``master_level`` follows
    it and applies the user's output level, independent of voice count.
    """

    def __init__(self, graph):
        self.graph = graph
        self.master_gain = graph.create_gain()
        self.master_gain.gain.value = 1.0
        self.master_level = graph.create_gain()
        self.master_level.gain.value = 1.0
        self.master_gain.connect(self.master_level)

        self.normalization_type = NormalizationType.LOGARITHMIC
        self.voice_scaling = 75
        self.levels: List[float] = [0.25] * NUM_SLOTS
        self.output_level = 1.0

    @property
    def total_level(self) -> float:
        return sum(self.levels)

    def level(self, slot: int) -> float:
        return self.levels[slot]

    def set_level(self, slot: int, value: float):
        """Set a slot level (0-1). Only voices created afterwards pick it up."""
        if not 0 <= slot < NUM_SLOTS:
            raise IndexError(f"oscillator slot out of range: {slot}")
        self.levels[slot] = max(0.0, min(1.0, float(value)))

    def set_normalization_type(self, value: Union[str, NormalizationType]) -> bool:
        try:
            self.normalization_type = NormalizationType(value)
        except ValueError:
            logger.warning("Unknown normalization type %r", value)
            return False
        return True

    def set_voice_scaling(self, value: float):
        self.voice_scaling = max(0, min(100, int(value)))

    def set_output_level(self, value: float):
        self.output_level = max(0.0, min(1.0, float(value)))

    def compute_gain(self, active_voice_count: int) -> float:
        """Master gain for a voice count; non-increasing as the count grows."""
        note_count = max(1, active_voice_count)
        exponent = self.voice_scaling / 100.0
        if self.normalization_type is NormalizationType.LOGARITHMIC:
            scale = max(1.0, note_count ** exponent)
            log_gain = math.log2(1.0 + self.total_level * scale)
            return LOG_HEADROOM / max(1.0, log_gain)
        return LINEAR_HEADROOM / max(1.0, note_count ** exponent)

    def update_master_gain(self, active_voice_count: int) -> float:
        gain = self.compute_gain(active_voice_count)
        self.master_gain.gain.value = gain
        self.master_level.gain.value = self.output_level * MASTER_LEVEL_SCALING
        return gain
