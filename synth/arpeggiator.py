"""Step-sequencing arpeggiator sitting in front of the voice manager.

Disabled, it passes note events straight through. Enabled, it collects held
notes into a pool and plays them one at a time on its own clock, keeping at
most one arpeggiated note sounding.
"""
import logging
import random
from enum import Enum
from typing import List, Optional, Sequence, Set, Union

from synth.pitch import NoteKey, key_to_midi, name_from_midi, note_key
from synth.scheduler import Scheduler, TaskHandle
from synth.voice_manager import NoteTarget

logger = logging.getLogger(__name__)


class ArpPattern(Enum):
    UP = "up"
    DOWN = "down"
    UP_DOWN = "up-down"
    DOWN_UP = "down-up"
    RANDOM = "random"


# Steps per beat for each clock division
DIVISIONS = {
    "4": 1,     # quarter
    "8": 2,     # eighth
    "8t": 3,    # eighth triplet
    "16": 4,    # sixteenth
    "16t": 6,   # sixteenth triplet
    "32": 8,    # thirty-second
}
DEFAULT_DIVISION = "8"

BPM_MIN, BPM_MAX = 40.0, 240.0
OCTAVE_RANGE_MIN, OCTAVE_RANGE_MAX = 1, 4
GATE_MIN, GATE_MAX = 25.0, 100.0

MIDI_MAX = 127
# Pitch assumed for keys that are not valid note names
FALLBACK_MIDI = 60


def step_ms(bpm: float, division: str) -> float:
    """Step period in milliseconds; unknown divisions count as eighths."""
    divisor = DIVISIONS.get(division, DIVISIONS[DEFAULT_DIVISION])
    return (60000.0 / bpm) / divisor


def _pitch(key: NoteKey) -> int:
    midi = key_to_midi(key)
    return FALLBACK_MIDI if midi is None else midi


def _transpose(key: NoteKey, midi: int) -> NoteKey:
    # Keep the caller's spelling: MIDI numbers stay numbers, names stay names
    return midi if isinstance(key, int) else name_from_midi(midi)


def build_sequence(held_notes: Sequence[NoteKey], pattern: ArpPattern, octave_range: int) -> List[NoteKey]:
    """Expand held notes across octaves and order them for ``pattern``.

    ``held_notes`` must already be sorted ascending by pitch. Transpositions
    above MIDI 127 are dropped. The turnaround notes of up-down and down-up
    are not repeated.
    """
    expanded: List[NoteKey] = []
    for octave in range(octave_range):
        for key in held_notes:
            midi = _pitch(key) + octave * 12
            if midi > MIDI_MAX:
                continue
            expanded.append(key if octave == 0 else _transpose(key, midi))

    if pattern is ArpPattern.DOWN:
        expanded.reverse()
    elif pattern is ArpPattern.UP_DOWN:
        if len(expanded) > 1:
            expanded = expanded + expanded[1:-1][::-1]
    elif pattern is ArpPattern.DOWN_UP:
        expanded.reverse()
        if len(expanded) > 1:
            expanded = expanded + expanded[1:-1][::-1]
    return expanded


class Arpeggiator(NoteTarget):
    """Intercepting note target that re-times held notes.

    Args:
        voice_manager: The note target that actually makes sound
        scheduler: Supplies the step clock and gate-off timers
        rng: Random source for the random pattern
    """

    def __init__(self, voice_manager: NoteTarget, scheduler: Scheduler,
                 rng: Optional[random.Random] = None):
        self.voice_manager = voice_manager
        self.scheduler = scheduler
        self.rng = rng or random.Random()

        self.enabled = False
        self.held_notes: List[NoteKey] = []
        self.pattern = ArpPattern.UP
        self.bpm = 120.0
        self.division = DEFAULT_DIVISION
        self.octave_range = 1
        self.gate = 50.0

        self.sequence: List[NoteKey] = []
        self.current_step = 0
        self.current_note: Optional[NoteKey] = None

        self._clock: Optional[TaskHandle] = None
        self._gate_task: Optional[TaskHandle] = None
        self._generation = 0
        # Notes that went straight through while disabled
        self._passthrough: Set[NoteKey] = set()

    # --- Note target interface ---

    def start_note(self, note):
        key = note_key(note)
        if not self.enabled:
            self._passthrough.add(key)
            self.voice_manager.start_note(key)
            return

        if key in self.held_notes:
            return
        self.held_notes.append(key)
        self.held_notes.sort(key=_pitch)
        self._rebuild_and_restart()

    def stop_note(self, note):
        key = note_key(note)
        # Keys pressed before the arpeggiator was enabled still need their note-off
        was_passthrough = key in self._passthrough
        self._passthrough.discard(key)
        if not self.enabled or was_passthrough:
            self.voice_manager.stop_note(key)
        if not self.enabled or key not in self.held_notes:
            return

        self.held_notes.remove(key)
        if not self.held_notes:
            self._stop_arpeggio()
            self.sequence = []
        else:
            self._rebuild_and_restart()

    # --- Parameters ---

    @property
    def is_running(self) -> bool:
        return self._clock is not None

    @property
    def step_ms(self) -> float:
        return step_ms(self.bpm, self.division)

    @property
    def gate_ms(self) -> float:
        return self.step_ms * (self.gate / 100.0)

    @property
    def direction(self) -> int:
        """+1 if the next step rises (or repeats) in pitch, -1 if it falls."""
        if len(self.sequence) < 2 or self.pattern is ArpPattern.RANDOM:
            return 1
        previous = self.sequence[self.current_step - 1]
        upcoming = self.sequence[self.current_step]
        return 1 if _pitch(upcoming) >= _pitch(previous) else -1

    def set_enabled(self, on: bool):
        on = bool(on)
        if on == self.enabled:
            return
        self.enabled = on
        if not on:
            self.clear()
        logger.debug("Arpeggiator %s", "enabled" if on else "disabled")

    def clear(self):
        """Forget every held note and silence the arpeggio; stays enabled if it was."""
        self._stop_arpeggio()
        self.held_notes = []
        self.sequence = []

    def set_pattern(self, pattern: Union[str, ArpPattern]) -> bool:
        try:
            self.pattern = ArpPattern(pattern)
        except ValueError:
            logger.warning("Unknown arpeggiator pattern %r", pattern)
            return False
        self._rebuild_in_place()
        return True

    def set_bpm(self, bpm: float):
        self.bpm = max(BPM_MIN, min(BPM_MAX, float(bpm)))
        self._restart_timer()

    def set_division(self, division: str):
        division = str(division)
        if division not in DIVISIONS:
            logger.warning("Unknown clock division %r, using eighth notes", division)
            division = DEFAULT_DIVISION
        self.division = division
        self._restart_timer()

    def set_octave_range(self, octave_range: int):
        self.octave_range = max(OCTAVE_RANGE_MIN, min(OCTAVE_RANGE_MAX, int(octave_range)))
        self._rebuild_in_place()

    def set_gate(self, gate: float):
        """Gate in percent of a step; applies from the next step."""
        self.gate = max(GATE_MIN, min(GATE_MAX, float(gate)))

    # --- Internals ---

    def _build_sequence(self):
        self.sequence = build_sequence(self.held_notes, self.pattern, self.octave_range)

    def _clamp_step(self):
        if not self.sequence or self.current_step >= len(self.sequence):
            self.current_step = 0

    def _rebuild_in_place(self):
        if self.enabled and self.held_notes:
            self._build_sequence()
            self._clamp_step()

    def _rebuild_and_restart(self):
        self._build_sequence()
        if not self.sequence:
            return
        self._clamp_step()
        if self._clock is None:
            self._start_arpeggio()

    def _start_arpeggio(self):
        logger.debug("Arpeggio started at %.1f ms per step", self.step_ms)
        self._tick()
        self._clock = self.scheduler.call_every(self.step_ms / 1000.0, self._tick)

    def _stop_arpeggio(self):
        if self._clock is not None:
            self._clock.cancel()
            self._clock = None
        self._cancel_gate()
        if self.current_note is not None:
            self.voice_manager.stop_note(self.current_note)
            self.current_note = None
        self.current_step = 0

    def _restart_timer(self):
        # The pending gate-off of the sounding note is left alone
        if self._clock is not None:
            self._clock.cancel()
            self._clock = self.scheduler.call_every(self.step_ms / 1000.0, self._tick)

    def _cancel_gate(self):
        if self._gate_task is not None:
            self._gate_task.cancel()
            self._gate_task = None

    def _tick(self):
        if not self.sequence:
            return

        if self.current_note is not None:
            self.voice_manager.stop_note(self.current_note)
            self.current_note = None
        self._cancel_gate()

        if self.pattern is ArpPattern.RANDOM:
            note = self.rng.choice(self.sequence)
        else:
            note = self.sequence[self.current_step]
            self.current_step = (self.current_step + 1) % len(self.sequence)

        self._generation += 1
        if note in self._passthrough:
            # Still sounding under the player's own key; the step rests
            return
        self.voice_manager.start_note(note)
        self.current_note = note
        self._gate_task = self.scheduler.call_later(self.gate_ms / 1000.0, self._gate_off,
                                                    note, self._generation)

    def _gate_off(self, note: NoteKey, generation: int):
        # A newer step may already own the sounding note, even with the same key
        if generation != self._generation or self.current_note != note:
            return
        self.voice_manager.stop_note(note)
        self.current_note = None
        self._gate_task = None
