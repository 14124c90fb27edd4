"""Switchable lowpass filter bank: 6, 12 and cascaded 24 dB/octave topologies."""
import logging
import math
from enum import Enum
from typing import List, Tuple, Union

from synth.graph import AudioNode, BiquadFilterNode
from synth.pitch import format_frequency

logger = logging.getLogger(__name__)


class FilterType(Enum):
    LOWPASS6 = "lowpass6"
    LOWPASS12 = "lowpass12"
    LOWPASS24 = "lowpass24"

    @property
    def slope_db(self) -> int:
        return {"lowpass6": 6, "lowpass12": 12, "lowpass24": 24}[self.value]


BUTTERWORTH_Q = 0.707
# Stage Qs of two cascaded biquads approximating a 4-pole Butterworth response
CASCADE_Q = (0.54, 1.31)

MIN_CUTOFF = 20.0
MAX_CUTOFF = 20000.0


def parse_filter_type(value: Union[str, FilterType]) -> FilterType:
    """Accept a FilterType, its id ("lowpass24") or its slope ("24dB", "24")."""
    if isinstance(value, FilterType):
        return value
    text = str(value).strip().lower()
    for filter_type in FilterType:
        if text in (filter_type.value, f"{filter_type.slope_db}db", str(filter_type.slope_db)):
            return filter_type
    raise ValueError(f"unknown filter type: {value!r}")


class FilterBank:
    """Three always-allocated topologies sharing one cutoff/resonance surface.

    Only the current topology's input receives voices. The bank itself never
    moves voice connections: whoever switches the type must detach voices from
    the old ``input_node`` and attach them to the new one.
    """

    def __init__(self, graph, output_node: AudioNode):
        self.graph = graph
        self.lowpass6 = graph.create_biquad_filter()
        self.lowpass12 = graph.create_biquad_filter()
        self.lowpass24 = (graph.create_biquad_filter(), graph.create_biquad_filter())

        for biquad in self.all_filters:
            biquad.type = "lowpass"
            biquad.frequency.value = MAX_CUTOFF

        self._apply_preset_q()

        self.lowpass24[0].connect(self.lowpass24[1])
        self.lowpass24[1].connect(output_node)
        self.lowpass6.connect(output_node)
        self.lowpass12.connect(output_node)

        self.frequency = MAX_CUTOFF
        self.q = 0.0
        self._type = FilterType.LOWPASS24

    @property
    def type(self) -> FilterType:
        return self._type

    @property
    def input_node(self) -> BiquadFilterNode:
        return self.input_for(self._type)

    def input_for(self, filter_type: FilterType) -> BiquadFilterNode:
        if filter_type is FilterType.LOWPASS6:
            return self.lowpass6
        if filter_type is FilterType.LOWPASS12:
            return self.lowpass12
        return self.lowpass24[0]

    @property
    def all_filters(self) -> List[BiquadFilterNode]:
        return [self.lowpass6, self.lowpass12, *self.lowpass24]

    def set_type(self, new_type: Union[str, FilterType]) -> Tuple[FilterType, FilterType]:
        """Make ``new_type`` the topology that receives voice input.

        Returns:
            (old_type, new_type)

        Raises:
            ValueError: If ``new_type`` is not a known topology.
        """
        old_type = self._type
        self._type = parse_filter_type(new_type)
        return old_type, self._type

    def set_frequency(self, freq: float):
        """Write the same cutoff to all topologies so a switch never jumps."""
        self.frequency = max(MIN_CUTOFF, min(MAX_CUTOFF, float(freq)))
        for biquad in self.all_filters:
            biquad.frequency.value = self.frequency

    def set_q(self, q: float):
        self.q = max(0.0, float(q))
        if self._type is FilterType.LOWPASS24:
            self.lowpass24[0].Q.value = self.q * CASCADE_Q[0]
            self.lowpass24[1].Q.value = self.q * CASCADE_Q[1]
        else:
            self.input_node.Q.value = self.q

    def reset_q(self):
        """Drop any resonance override and restore each topology's preset Q."""
        self.q = 0.0
        self._apply_preset_q()

    def _apply_preset_q(self):
        self.lowpass6.Q.value = 0.0
        self.lowpass12.Q.value = BUTTERWORTH_Q
        self.lowpass24[0].Q.value = CASCADE_Q[0]
        self.lowpass24[1].Q.value = CASCADE_Q[1]

    @staticmethod
    def log_frequency(value: float) -> float:
        """Map a 0-100 control value onto a logarithmic 20 Hz - 20 kHz cutoff."""
        min_log = math.log2(MIN_CUTOFF)
        max_log = math.log2(MAX_CUTOFF)
        return 2.0 ** (min_log + (value / 100.0) * (max_log - min_log))

    @staticmethod
    def format_frequency(freq: float) -> str:
        return format_frequency(freq)
