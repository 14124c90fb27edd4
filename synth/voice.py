"""Voice data: one sounding note made of four oscillator units."""
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from synth.graph import GainNode, OscillatorNode, WAVE_TYPES
from synth.pitch import NoteKey

NUM_SLOTS = 4

OCTAVE_MIN, OCTAVE_MAX = -2, 2


@dataclass(frozen=True)
class OscillatorSettings:
    """Per-slot oscillator settings, captured when a voice is created."""
    wave_type: str = "sine"
    octave: int = 0
    detune: float = 0.0

    def updated(self, wave_type: Optional[str] = None, octave: Optional[int] = None,
                detune: Optional[float] = None) -> 'OscillatorSettings':
        """Return a copy with the given fields changed, clamped to valid ranges.

        Raises:
            ValueError: If ``wave_type`` is not a known waveform.
        """
        changes = {}
        if wave_type is not None:
            if wave_type not in WAVE_TYPES:
                raise ValueError(f"unknown waveform: {wave_type!r}")
            changes["wave_type"] = wave_type
        if octave is not None:
            changes["octave"] = max(OCTAVE_MIN, min(OCTAVE_MAX, int(octave)))
        if detune is not None:
            changes["detune"] = float(detune)
        return replace(self, **changes)


SlotSettings = Tuple[OscillatorSettings, ...]


def default_slot_settings() -> SlotSettings:
    return tuple(OscillatorSettings() for _ in range(NUM_SLOTS))


@dataclass
class OscillatorUnit:
    slot: int
    oscillator: OscillatorNode
    gain_node: GainNode
    base_level: float
    settings: OscillatorSettings


@dataclass(eq=False)
class Voice:
    """Owns its oscillator units for the whole life of the note, release included."""
    key: NoteKey
    frequency: float
    started_at: float
    units: List[OscillatorUnit] = field(default_factory=list)
    released_at: Optional[float] = None

    def unit(self, slot: int) -> Optional[OscillatorUnit]:
        if 0 <= slot < len(self.units):
            return self.units[slot]
        return None

    @property
    def base_levels(self) -> List[float]:
        return [u.base_level for u in self.units]

    @property
    def is_releasing(self) -> bool:
        return self.released_at is not None
