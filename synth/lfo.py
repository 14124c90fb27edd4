"""Low-frequency modulation source, routable to one parameter class at a time."""
import logging
import re
import weakref
from typing import Callable, Iterable, Optional, Tuple

from synth.graph import AudioParam, WAVE_TYPES
from synth.voice import NUM_SLOTS, Voice

logger = logging.getLogger(__name__)

TARGET_NONE = "none"
TARGET_FILTER_FREQ = "filter-freq"
TARGET_FILTER_Q = "filter-q"
FILTER_TARGETS = (TARGET_FILTER_FREQ, TARGET_FILTER_Q)

VALID_TARGETS = (TARGET_NONE, *FILTER_TARGETS) + tuple(
    f"osc{slot}-{kind}" for kind in ("level", "detune") for slot in range(1, NUM_SLOTS + 1)
)

# Depth per unit of amount, by target class
FILTER_Q_DEPTH = 5.0
LEVEL_DEPTH = 0.5
DETUNE_DEPTH_CENTS = 50.0

_OSC_TARGET = re.compile(r"^osc([1-9])-(level|detune)$")


def parse_target(target_id: str) -> Tuple[str, Optional[int]]:
    """Split a target id into (kind, zero-based slot).

    >>> parse_target("osc2-detune")
    ('detune', 1)

    Raises:
        ValueError: For ids outside VALID_TARGETS.
    """
    if target_id in (TARGET_NONE, *FILTER_TARGETS):
        return target_id, None
    match = _OSC_TARGET.match(str(target_id))
    if match and int(match.group(1)) <= NUM_SLOTS:
        return match.group(2), int(match.group(1)) - 1
    raise ValueError(f"unknown modulation target: {target_id!r}")


class LFO:
    """One free-running oscillator feeding a depth stage plus a DC offset.

    Signal path: oscillator -> depth gain -> output gain <- constant offset.
    The output gain is what gets connected to target parameters. Connected
    parameters are tracked weakly: voices own their parameters, the LFO only
    remembers where it is plugged in.
    """

    def __init__(self, graph):
        self.graph = graph

        self.oscillator = graph.create_oscillator()
        self.gain_node = graph.create_gain()

        self.offset = graph.create_constant_source()
        self.offset.offset.value = 1.0
        self.offset.start()

        self.depth_gain = graph.create_gain()
        self.depth_gain.gain.value = 0.5

        self.oscillator.connect(self.depth_gain)
        self.depth_gain.connect(self.gain_node)
        self.offset.connect(self.gain_node)

        self.oscillator.type = "sine"
        self.oscillator.frequency.value = 1.0
        self.oscillator.start()

        self._target = TARGET_NONE
        self._amount = 0.5
        self.target_params: 'weakref.WeakSet[AudioParam]' = weakref.WeakSet()

        # Wired after construction, once voices and filters exist
        self._get_active_voices: Optional[Callable[[], Iterable[Voice]]] = None
        self._get_filter_bank: Optional[Callable] = None

    @property
    def target(self) -> str:
        return self._target

    @property
    def amount(self) -> float:
        return self._amount

    @property
    def depth(self) -> float:
        return self.depth_gain.gain.value

    def set_voice_accessor(self, fn: Callable[[], Iterable[Voice]]):
        self._get_active_voices = fn

    def set_filter_accessor(self, fn: Callable):
        self._get_filter_bank = fn

    def set_wave_type(self, wave_type: str) -> bool:
        if wave_type not in WAVE_TYPES:
            logger.warning("Unknown LFO waveform %r", wave_type)
            return False
        self.oscillator.type = wave_type
        return True

    def set_rate(self, hz: float):
        self.oscillator.frequency.value = max(0.0, float(hz))

    def set_amount(self, amount: float):
        self.set_target(self._target, amount)

    def reapply(self):
        """Rebuild the current routing, e.g. after the filter input changed."""
        self.set_target(self._target, self._amount)

    def set_target(self, target_id: str, amount: float) -> bool:
        """Route the modulation to a new target across all active voices.

        Every previous connection is dropped before any new one is made, so
        the old target is released cleanly even while notes are held.

        Returns:
            False if ``target_id`` is unknown (routing left untouched).

        Raises:
            TypeError, ValueError: ``amount`` is not numeric; routing is untouched.
        """
        try:
            kind, slot = parse_target(target_id)
        except ValueError:
            logger.warning("Unknown modulation target %r", target_id)
            return False
        amount = max(0.0, min(1.0, float(amount)))

        self.gain_node.disconnect()
        self.offset.connect(self.gain_node)
        self.target_params.clear()

        self._target = target_id
        self._amount = amount

        if kind == TARGET_NONE:
            self.depth_gain.gain.value = 0.0
            logger.debug("LFO routing cleared")
            return True

        if kind in FILTER_TARGETS:
            bank = self._get_filter_bank() if self._get_filter_bank else None
            if bank is None:
                return True
            if kind == TARGET_FILTER_FREQ:
                self.depth_gain.gain.value = bank.frequency * self._amount
                self._connect_param(bank.input_node.frequency)
            else:
                self.depth_gain.gain.value = FILTER_Q_DEPTH * self._amount
                self._connect_param(bank.input_node.Q)
        else:
            scale = LEVEL_DEPTH if kind == "level" else DETUNE_DEPTH_CENTS
            self.depth_gain.gain.value = scale * self._amount
            voices = self._get_active_voices() if self._get_active_voices else ()
            for voice in voices:
                self.connect_voice(voice, slot)

        logger.debug("LFO routed to %s (depth %.3f, %d params)",
                     target_id, self.depth, len(self.target_params))
        return True

    def connect_voice(self, voice: Voice, slot: int):
        """Attach a new voice's slot to the current per-oscillator routing, if any."""
        if self._target == TARGET_NONE:
            return
        unit = voice.unit(slot)
        if unit is None:
            return
        if self._target == f"osc{slot + 1}-level":
            self._connect_param(unit.gain_node.gain)
        elif self._target == f"osc{slot + 1}-detune":
            self._connect_param(unit.oscillator.detune)

    def disconnect_voice(self, voice: Voice):
        """Unplug from a voice that is being torn down."""
        for unit in voice.units:
            for param in (unit.gain_node.gain, unit.oscillator.detune):
                if self.gain_node.is_connected_to(param):
                    self.gain_node.disconnect(param)
                    self.target_params.discard(param)

    def _connect_param(self, param: AudioParam):
        if self._target != TARGET_NONE and param is not None:
            self.gain_node.connect(param)
            self.target_params.add(param)
