"""Voice lifecycle: creates, releases and tears down oscillator banks per note."""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple, Union

from synth.envelope import EnvelopeEngine
from synth.filter_bank import FilterBank, FilterType
from synth.graph import InvalidStateError
from synth.lfo import FILTER_TARGETS, LFO
from synth.mixer import Mixer
from synth.pitch import NoteKey, note_key, note_to_frequency
from synth.scheduler import Scheduler
from synth.voice import (
    NUM_SLOTS,
    OscillatorSettings,
    OscillatorUnit,
    SlotSettings,
    Voice,
    default_slot_settings,
)

logger = logging.getLogger(__name__)

# Oscillators stop just after the release ramp ends; the gain stage is
# unplugged a little later still.
STOP_MARGIN = 0.05
DISCONNECT_MARGIN = 0.1


class NoteTarget(ABC):
    """Anything that accepts note-on/note-off: the voice manager or the arpeggiator."""

    @abstractmethod
    def start_note(self, note):
        ...

    @abstractmethod
    def stop_note(self, note):
        ...


class VoiceManager(NoteTarget):
    """Owns the active-note table and coordinates every per-voice collaborator.

    ``active_notes`` holds a voice from ``start_note`` until ``stop_note``;
    released voices move to ``releasing_voices`` until their teardown fires.
    """

    def __init__(self, graph, scheduler: Scheduler, envelopes: EnvelopeEngine,
                 filter_bank: FilterBank, lfo: LFO, mixer: Mixer):
        self.graph = graph
        self.scheduler = scheduler
        self.envelopes = envelopes
        self.filter_bank = filter_bank
        self.lfo = lfo
        self.mixer = mixer

        self.active_notes: Dict[NoteKey, Voice] = {}
        self.releasing_voices: List[Voice] = []
        self.oscillator_settings: SlotSettings = default_slot_settings()

    @property
    def active_voice_count(self) -> int:
        return len(self.active_notes)

    def is_active(self, note) -> bool:
        return note_key(note) in self.active_notes

    def set_oscillator(self, slot: int, wave_type: Optional[str] = None,
                       octave: Optional[int] = None, detune: Optional[float] = None):
        """Change one slot's settings for voices started from now on.

        Raises:
            IndexError: If ``slot`` is outside 0-3.
            ValueError: If ``wave_type`` is unknown.
        """
        if not 0 <= slot < NUM_SLOTS:
            raise IndexError(f"oscillator slot out of range: {slot}")
        settings = list(self.oscillator_settings)
        settings[slot] = settings[slot].updated(wave_type, octave, detune)
        self.oscillator_settings = tuple(settings)

    def start_note(self, note, settings: Optional[SlotSettings] = None):
        """Create and start a voice for ``note``. No-op if the key is already active.

        Args:
            note: MIDI number or note name
            settings: Oscillator settings snapshot; defaults to the current one
        """
        key = note_key(note)
        if key in self.active_notes:
            return

        frequency = note_to_frequency(key)
        settings = settings if settings is not None else self.oscillator_settings
        levels = list(self.mixer.levels)

        voice = Voice(key=key, frequency=frequency, started_at=self.graph.current_time)
        voice.units = [
            self._create_unit(slot, frequency, settings[slot], levels[slot])
            for slot in range(NUM_SLOTS)
        ]

        for unit in voice.units:
            unit.oscillator.start()
            self.envelopes.apply_amplitude(unit.gain_node, unit.base_level, True)
            self.lfo.connect_voice(voice, unit.slot)

        self.envelopes.apply_filter_envelope(True, self.filter_bank.all_filters)

        self.active_notes[key] = voice
        self.mixer.update_master_gain(len(self.active_notes))
        logger.debug("Voice started: %s (%.2f Hz), %d active", key, frequency, len(self.active_notes))

    def stop_note(self, note):
        """Release ``note``. No-op if the key is not active.

        The key leaves the table immediately; the voice's own resources are
        torn down once the release ramp has finished.
        """
        key = note_key(note)
        voice = self.active_notes.pop(key, None)
        if voice is None:
            return

        now = self.graph.current_time
        release = self.envelopes.amp_envelope.release / 1000.0
        voice.released_at = now

        for unit in voice.units:
            self.envelopes.apply_amplitude(unit.gain_node, unit.base_level, False)
            self._stop_oscillator(unit, now + release + STOP_MARGIN)

        self.releasing_voices.append(voice)
        self.scheduler.call_later(release + DISCONNECT_MARGIN, self._teardown, voice)

        # The filter is shared: only the last voice releases its envelope
        if not self.active_notes:
            self.envelopes.apply_filter_envelope(False, self.filter_bank.all_filters)

        self.mixer.update_master_gain(len(self.active_notes))
        logger.debug("Voice released: %s, %d active", key, len(self.active_notes))

    def stop_all(self):
        """Release every active voice through the normal release path."""
        for key in list(self.active_notes):
            self.stop_note(key)

    def kill_all(self):
        """Silence and tear down every voice now, releasing ones included."""
        now = self.graph.current_time
        voices = list(self.active_notes.values()) + self.releasing_voices
        self.active_notes.clear()
        self.releasing_voices = []
        for voice in voices:
            for unit in voice.units:
                unit.gain_node.gain.cancel_scheduled_values(now)
                unit.gain_node.gain.set_value_at_time(0.0, now)
                self._stop_oscillator(unit, now)
            self._teardown(voice)
        self.mixer.update_master_gain(0)

    def switch_filter_type(self, new_type: Union[str, FilterType]) -> Tuple[FilterType, FilterType]:
        """Move every live voice from the old topology's input to the new one.

        Raises:
            ValueError: If ``new_type`` is unknown; no voice is touched in that case.
        """
        old_input = self.filter_bank.input_node
        old_type, current = self.filter_bank.set_type(new_type)
        new_input = self.filter_bank.input_node

        for voice in self._live_voices():
            for unit in voice.units:
                if unit.gain_node.is_connected_to(old_input):
                    unit.gain_node.disconnect(old_input)
                unit.gain_node.connect(new_input)

        if self.lfo.target in FILTER_TARGETS:
            self.lfo.reapply()

        logger.debug("Filter switched %s -> %s", old_type.value, current.value)
        return old_type, current

    def apply_sustain_change(self):
        """Move held voices already past attack+decay onto the new sustain level."""
        now = self.graph.current_time
        shape = self.envelopes.amp_shape_duration()
        for voice in self.active_notes.values():
            if now - voice.started_at <= shape:
                continue
            for unit in voice.units:
                self.envelopes.ramp_to_sustain(unit.gain_node, unit.base_level)

    def _live_voices(self) -> List[Voice]:
        return list(self.active_notes.values()) + self.releasing_voices

    def _create_unit(self, slot: int, frequency: float, settings: OscillatorSettings,
                     level: float) -> OscillatorUnit:
        osc = self.graph.create_oscillator()
        gain_node = self.graph.create_gain()

        osc.type = settings.wave_type
        osc.frequency.value = frequency * 2.0 ** settings.octave
        osc.detune.value = settings.detune
        osc.connect(gain_node)

        gain_node.gain.value = 0.0
        gain_node.connect(self.filter_bank.input_node)

        return OscillatorUnit(slot=slot, oscillator=osc, gain_node=gain_node,
                              base_level=level, settings=settings)

    def _stop_oscillator(self, unit: OscillatorUnit, when: float):
        try:
            unit.oscillator.stop(when)
        except InvalidStateError:
            logger.debug("Oscillator in slot %d already stopped", unit.slot)

    def _teardown(self, voice: Voice):
        # Acts only on this voice's own nodes, never on whatever now holds its key
        for unit in voice.units:
            unit.gain_node.disconnect()
        self.lfo.disconnect_voice(voice)
        if voice in self.releasing_voices:
            self.releasing_voices.remove(voice)
