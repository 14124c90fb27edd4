"""ADSR automation for oscillator gain stages and filter cutoff."""
import logging
from dataclasses import dataclass, fields
from typing import Iterable

from synth.graph import BiquadFilterNode, GainNode

logger = logging.getLogger(__name__)

# Exponential ramps never reach zero; release aims here, then snaps to 0.
RELEASE_FLOOR = 0.00001
SILENCE_DELAY = 0.001

# Filter envelope sweeps up to four octaves above the base cutoff.
FILTER_SWEEP_OCTAVES = 4

SUSTAIN_EDIT_RAMP = 0.01


@dataclass
class EnvelopeParams:
    """ADSR times in milliseconds, sustain as a 0-1 ratio."""
    attack: float = 100.0
    decay: float = 200.0
    sustain: float = 0.7
    release: float = 500.0


@dataclass
class FilterEnvelopeParams(EnvelopeParams):
    amount: float = 0.5
    base_freq: float = 20000.0

    @property
    def max_freq(self) -> float:
        return self.base_freq * 2.0 ** (self.amount * FILTER_SWEEP_OCTAVES)

    @property
    def sustain_freq(self) -> float:
        return self.base_freq * 2.0 ** (self.amount * self.sustain * FILTER_SWEEP_OCTAVES)


_RATIO_FIELDS = ("sustain", "amount")


class EnvelopeEngine:
    """Schedules envelope ramps against the graph clock.

    Every application cancels what was pending on the parameter and restarts
    from its instantaneous value, so a retrigger never jumps back to zero.
    """

    def __init__(self, graph):
        self.graph = graph
        self.amp_envelope = EnvelopeParams()
        self.filter_envelope = FilterEnvelopeParams()

    def envelope(self, kind: str) -> EnvelopeParams:
        if kind in ("amp", "amplitude"):
            return self.amp_envelope
        if kind == "filter":
            return self.filter_envelope
        raise KeyError(kind)

    def set_envelope(self, kind: str, field: str, value: float) -> bool:
        """Update one envelope field.

        Args:
            kind: "amp" or "filter"
            field: attack/decay/sustain/release, plus amount/base_freq for "filter"
            value: ms for times, 0-1 for sustain and amount, Hz for base_freq

        Returns:
            True if the field was updated, False if kind or field is unknown.
        """
        try:
            params = self.envelope(kind)
        except KeyError:
            logger.warning("Unknown envelope %r", kind)
            return False
        if field not in {f.name for f in fields(params)}:
            logger.warning("Unknown %s envelope field %r", kind, field)
            return False
        try:
            value = float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric %s envelope %s: %r", kind, field, value)
            return False
        if field in _RATIO_FIELDS:
            value = max(0.0, min(1.0, value))
        else:
            value = max(0.0, value)
        setattr(params, field, value)
        return True

    def apply_amplitude(self, gain_stage: GainNode, base_level: float, is_on: bool):
        """Attack/decay towards sustain on note-on, exponential release on note-off."""
        env = self.amp_envelope
        now = self.graph.current_time
        gain = gain_stage.gain
        current = gain.value
        gain.cancel_scheduled_values(now)
        gain.set_value_at_time(current, now)

        if is_on:
            attack_end = now + env.attack / 1000.0
            gain.linear_ramp_to_value_at_time(base_level, attack_end)
            gain.linear_ramp_to_value_at_time(base_level * env.sustain, attack_end + env.decay / 1000.0)
        else:
            release_end = now + env.release / 1000.0
            gain.exponential_ramp_to_value_at_time(RELEASE_FLOOR, release_end)
            gain.set_value_at_time(0.0, release_end + SILENCE_DELAY)

    def apply_filter_envelope(self, is_on: bool, filters: Iterable[BiquadFilterNode]):
        """Sweep the cutoff of every topology, active or not, so a switch keeps the envelope."""
        env = self.filter_envelope
        now = self.graph.current_time
        attack_end = now + env.attack / 1000.0

        for biquad in filters:
            if biquad is None:
                continue
            freq = biquad.frequency
            current = freq.value
            freq.cancel_scheduled_values(now)
            freq.set_value_at_time(current, now)

            if is_on:
                freq.linear_ramp_to_value_at_time(env.max_freq, attack_end)
                freq.linear_ramp_to_value_at_time(env.sustain_freq, attack_end + env.decay / 1000.0)
            else:
                freq.linear_ramp_to_value_at_time(env.base_freq, now + env.release / 1000.0)

    def ramp_to_sustain(self, gain_stage: GainNode, base_level: float):
        """Glide a held voice to a newly edited sustain level."""
        now = self.graph.current_time
        gain = gain_stage.gain
        current = gain.value
        gain.cancel_scheduled_values(now)
        gain.set_value_at_time(current, now)
        gain.linear_ramp_to_value_at_time(base_level * self.amp_envelope.sustain, now + SUSTAIN_EDIT_RAMP)

    def amp_shape_duration(self) -> float:
        """Seconds from note-on until the amplitude envelope reaches sustain."""
        return (self.amp_envelope.attack + self.amp_envelope.decay) / 1000.0
