"""Composition root and control surface for the synthesizer engine."""
import functools
import logging
import random
from typing import Any, Dict, List, Optional

from synth.arpeggiator import Arpeggiator
from synth.effects import EffectsChain
from synth.envelope import EnvelopeEngine
from synth.filter_bank import FilterBank
from synth.graph import AudioGraph
from synth.lfo import LFO, TARGET_FILTER_FREQ, TARGET_FILTER_Q
from synth.mixer import Mixer
from synth.scheduler import Scheduler, ThreadScheduler
from synth.voice import NUM_SLOTS
from synth.voice_manager import NoteTarget, VoiceManager

logger = logging.getLogger(__name__)

# Default parameter values; mirrors the component defaults
DEFAULT_PARAMS: Dict[str, Any] = {
    "amp_attack": 100.0,
    "amp_decay": 200.0,
    "amp_sustain": 0.7,
    "amp_release": 500.0,
    "filter_attack": 100.0,
    "filter_decay": 200.0,
    "filter_sustain": 0.7,
    "filter_release": 500.0,
    "filter_amount": 0.5,
    "filter_type": "lowpass24",
    "filter_cutoff": 20000.0,
    "filter_q": 0.0,
    "lfo_wave": "sine",
    "lfo_rate": 1.0,
    "lfo_target": "none",
    "lfo_amount": 0.5,
    "normalization_type": "logarithmic",
    "voice_scaling": 75,
    "master_level": 1.0,
    "delay_time": 0.2,
    "delay_feedback": 0.3,
    "delay_mix": 0.3,
    "reverb_size": 0.5,
    "reverb_damping": 0.5,
    "reverb_mix": 0.2,
    "arp_enabled": False,
    "arp_pattern": "up",
    "arp_bpm": 120.0,
    "arp_division": "8",
    "arp_octave_range": 1,
    "arp_gate": 50.0,
}
for _slot in range(1, NUM_SLOTS + 1):
    DEFAULT_PARAMS[f"osc{_slot}_wave"] = "sine"
    DEFAULT_PARAMS[f"osc{_slot}_octave"] = 0
    DEFAULT_PARAMS[f"osc{_slot}_detune"] = 0.0
    DEFAULT_PARAMS[f"osc{_slot}_level"] = 0.25

PARAM_KEYS = list(DEFAULT_PARAMS.keys())


def _rejects_bad_values(method):
    """Log and return False instead of raising on a malformed argument."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            result = method(self, *args, **kwargs)
        except (TypeError, ValueError) as e:
            logger.warning("%s%r rejected: %s", method.__name__, args, e)
            return False
        return True if result is None else result
    return wrapper


class Synthesizer(NoteTarget):
    """Wires the engine together and exposes the parameter-change calls.

    Input layers deliver ``note_on``/``note_off``; control surfaces call the
    ``set_*`` methods. Every entry point runs under the scheduler's control
    lock so input callbacks and timer callbacks never interleave mid-call.

    Args:
        graph: Audio graph to drive; defaults to one clocked by the scheduler
        scheduler: Task scheduler; defaults to a wall-clock ThreadScheduler
        use_arpeggiator: Install the arpeggiator in front of the voice manager
        rng: Random source for the arpeggiator's random pattern
    """

    DEFAULT_PARAMS = DEFAULT_PARAMS

    def __init__(self, graph: Optional[AudioGraph] = None, scheduler: Optional[Scheduler] = None,
                 use_arpeggiator: bool = True, rng: Optional[random.Random] = None):
        self.scheduler = scheduler or ThreadScheduler()
        self.graph = graph or AudioGraph(clock=self.scheduler.now)
        self._lock = self.scheduler.lock

        self.output = self.graph.create_gain()
        self.output.connect(self.graph.destination)

        self.mixer = Mixer(self.graph)
        self.filter_bank = FilterBank(self.graph, self.mixer.master_gain)
        self.effects = EffectsChain(self.graph, self.mixer.master_level, self.output)
        self.envelopes = EnvelopeEngine(self.graph)
        self.lfo = LFO(self.graph)
        self.voice_manager = VoiceManager(self.graph, self.scheduler, self.envelopes,
                                          self.filter_bank, self.lfo, self.mixer)
        self.arpeggiator = Arpeggiator(self.voice_manager, self.scheduler, rng)

        self.lfo.set_voice_accessor(lambda: list(self.voice_manager.active_notes.values()))
        self.lfo.set_filter_accessor(lambda: self.filter_bank)

        self.note_target: NoteTarget = self.arpeggiator if use_arpeggiator else self.voice_manager

        self.mixer.update_master_gain(0)
        logger.debug("Synthesizer initialized")

    # ── Notes ────────────────────────────────────────────────────

    def start_note(self, note):
        with self._lock:
            self.note_target.start_note(note)

    def stop_note(self, note):
        with self._lock:
            self.note_target.stop_note(note)

    note_on = start_note
    note_off = stop_note

    def all_notes_off(self):
        """Panic: stop the arpeggio and release every voice."""
        with self._lock:
            self.arpeggiator.clear()
            self.voice_manager.stop_all()

    def close(self):
        with self._lock:
            self.arpeggiator.set_enabled(False)
            self.voice_manager.kill_all()
        self.scheduler.shutdown()

    # ── Read-only state for displays ─────────────────────────────

    @property
    def active_voice_count(self) -> int:
        return self.voice_manager.active_voice_count

    @property
    def mod_target(self) -> str:
        return self.lfo.target

    @property
    def filter_type(self) -> str:
        return self.filter_bank.type.value

    @property
    def base_levels(self) -> List[float]:
        return list(self.mixer.levels)

    # ── Envelopes ────────────────────────────────────────────────

    def set_envelope(self, kind: str, field: str, value: float) -> bool:
        """Edit an envelope field; sustain/amount edits reach held notes at once."""
        with self._lock:
            if not self.envelopes.set_envelope(kind, field, value):
                return False
            if self.voice_manager.active_voice_count == 0:
                return True
            if kind == "filter" and field in ("sustain", "amount"):
                self.envelopes.apply_filter_envelope(True, self.filter_bank.all_filters)
            elif kind in ("amp", "amplitude") and field == "sustain":
                self.voice_manager.apply_sustain_change()
            return True

    # ── Filter ───────────────────────────────────────────────────

    def set_filter_type(self, filter_type: str) -> bool:
        with self._lock:
            try:
                self.voice_manager.switch_filter_type(filter_type)
            except ValueError:
                logger.warning("Unknown filter type %r", filter_type)
                return False
            return True

    @_rejects_bad_values
    def set_filter_frequency(self, hz: float) -> bool:
        with self._lock:
            self.filter_bank.set_frequency(hz)
            self.envelopes.filter_envelope.base_freq = self.filter_bank.frequency
            if self.lfo.target == TARGET_FILTER_FREQ:
                self.lfo.reapply()

    @_rejects_bad_values
    def set_filter_cutoff_control(self, value: float) -> bool:
        """Set the cutoff from a 0-100 control on a logarithmic scale."""
        return self.set_filter_frequency(FilterBank.log_frequency(max(0.0, min(100.0, float(value)))))

    @_rejects_bad_values
    def set_filter_q(self, q: float) -> bool:
        with self._lock:
            self.filter_bank.set_q(q)
            if self.lfo.target == TARGET_FILTER_Q:
                self.lfo.reapply()

    # ── Modulation ───────────────────────────────────────────────

    @_rejects_bad_values
    def set_mod_target(self, target: str) -> bool:
        with self._lock:
            return self.lfo.set_target(target, self.lfo.amount)

    @_rejects_bad_values
    def set_mod_rate(self, hz: float) -> bool:
        with self._lock:
            self.lfo.set_rate(hz)

    @_rejects_bad_values
    def set_mod_wave(self, wave_type: str) -> bool:
        with self._lock:
            return self.lfo.set_wave_type(wave_type)

    @_rejects_bad_values
    def set_mod_amount(self, amount: float) -> bool:
        with self._lock:
            self.lfo.set_amount(amount)

    # ── Oscillators and mixer ────────────────────────────────────

    @_rejects_bad_values
    def set_oscillator(self, slot: int, wave_type: Optional[str] = None,
                       octave: Optional[int] = None, detune: Optional[float] = None) -> bool:
        """Change oscillator ``slot`` (1-4) for notes started from now on."""
        with self._lock:
            try:
                self.voice_manager.set_oscillator(slot - 1, wave_type, octave, detune)
            except (IndexError, ValueError) as e:
                logger.warning("Oscillator %s not changed: %s", slot, e)
                return False
            return True

    @_rejects_bad_values
    def set_mixer_level(self, slot: int, value: float) -> bool:
        """Set oscillator ``slot`` (1-4) level; held voices keep their level."""
        with self._lock:
            try:
                self.mixer.set_level(slot - 1, value)
            except IndexError as e:
                logger.warning("Mixer level not changed: %s", e)
                return False
            self.mixer.update_master_gain(self.active_voice_count)
            return True

    @_rejects_bad_values
    def set_normalization_type(self, value: str) -> bool:
        with self._lock:
            if not self.mixer.set_normalization_type(value):
                return False
            self.mixer.update_master_gain(self.active_voice_count)
            return True

    @_rejects_bad_values
    def set_voice_scaling(self, value: float) -> bool:
        with self._lock:
            self.mixer.set_voice_scaling(value)
            self.mixer.update_master_gain(self.active_voice_count)

    @_rejects_bad_values
    def set_master_level(self, value: float) -> bool:
        with self._lock:
            self.mixer.set_output_level(value)
            self.mixer.update_master_gain(self.active_voice_count)

    # ── Effects ──────────────────────────────────────────────────

    @staticmethod
    def _apply_fields(*fields) -> bool:
        """Apply ``(name, setter, value)`` triples; a bad value skips only its own field."""
        ok = True
        for name, setter, value in fields:
            if value is None:
                continue
            try:
                result = setter(value)
            except (TypeError, ValueError) as e:
                logger.warning("%s=%r rejected: %s", name, value, e)
                ok = False
                continue
            if result is False:
                ok = False
        return ok

    def set_delay(self, time: Optional[float] = None, feedback: Optional[float] = None,
                  mix: Optional[float] = None) -> bool:
        with self._lock:
            return self._apply_fields(
                ("delay time", self.effects.set_delay_time, time),
                ("delay feedback", self.effects.set_delay_feedback, feedback),
                ("delay mix", self.effects.set_delay_mix, mix),
            )

    def set_reverb(self, size: Optional[float] = None, damping: Optional[float] = None,
                   mix: Optional[float] = None) -> bool:
        with self._lock:
            return self._apply_fields(
                ("reverb size", self.effects.set_reverb_size, size),
                ("reverb damping", self.effects.set_reverb_damping, damping),
                ("reverb mix", self.effects.set_reverb_mix, mix),
            )

    # ── Arpeggiator ──────────────────────────────────────────────

    def set_arpeggiator(self, enabled: Optional[bool] = None, pattern: Optional[str] = None,
                        bpm: Optional[float] = None, division: Optional[str] = None,
                        octave_range: Optional[int] = None, gate: Optional[float] = None) -> bool:
        with self._lock:
            arp = self.arpeggiator
            if self.note_target is not arp and enabled:
                logger.warning("Arpeggiator is not installed as the note target")
                return False
            return self._apply_fields(
                ("arp pattern", arp.set_pattern, pattern),
                ("arp bpm", arp.set_bpm, bpm),
                ("arp division", arp.set_division, division),
                ("arp octave range", arp.set_octave_range, octave_range),
                ("arp gate", arp.set_gate, gate),
                ("arp enabled", arp.set_enabled, enabled),
            )

    # ── Parameter snapshots ──────────────────────────────────────

    def get_params(self) -> Dict[str, Any]:
        """Flat snapshot of every user parameter, for persistence."""
        amp, flt = self.envelopes.amp_envelope, self.envelopes.filter_envelope
        arp = self.arpeggiator
        params: Dict[str, Any] = {
            "amp_attack": amp.attack,
            "amp_decay": amp.decay,
            "amp_sustain": amp.sustain,
            "amp_release": amp.release,
            "filter_attack": flt.attack,
            "filter_decay": flt.decay,
            "filter_sustain": flt.sustain,
            "filter_release": flt.release,
            "filter_amount": flt.amount,
            "filter_type": self.filter_type,
            "filter_cutoff": self.filter_bank.frequency,
            "filter_q": self.filter_bank.q,
            "lfo_wave": self.lfo.oscillator.type,
            "lfo_rate": self.lfo.oscillator.frequency.value,
            "lfo_target": self.lfo.target,
            "lfo_amount": self.lfo.amount,
            "normalization_type": self.mixer.normalization_type.value,
            "voice_scaling": self.mixer.voice_scaling,
            "master_level": self.mixer.output_level,
            "delay_time": self.effects.delay_node.delay_time.value,
            "delay_feedback": self.effects.delay_feedback.gain.value,
            "delay_mix": self.effects.delay_mix.gain.value,
            "reverb_size": self.effects.convolver.size,
            "reverb_damping": self.effects.convolver.damping,
            "reverb_mix": self.effects.reverb_mix.gain.value,
            "arp_enabled": arp.enabled,
            "arp_pattern": arp.pattern.value,
            "arp_bpm": arp.bpm,
            "arp_division": arp.division,
            "arp_octave_range": arp.octave_range,
            "arp_gate": arp.gate,
        }
        for slot, settings in enumerate(self.voice_manager.oscillator_settings, start=1):
            params[f"osc{slot}_wave"] = settings.wave_type
            params[f"osc{slot}_octave"] = settings.octave
            params[f"osc{slot}_detune"] = settings.detune
            params[f"osc{slot}_level"] = self.mixer.levels[slot - 1]
        return params

    def apply_params(self, params: Optional[Dict[str, Any]]):
        """Apply a (possibly partial) snapshot; missing keys take defaults."""
        merged = dict(DEFAULT_PARAMS)
        if params:
            merged.update({k: params[k] for k in PARAM_KEYS if k in params})

        for kind in ("amp", "filter"):
            for field in ("attack", "decay", "sustain", "release"):
                self.set_envelope(kind, field, merged[f"{kind}_{field}"])
        self.set_envelope("filter", "amount", merged["filter_amount"])

        self.set_filter_type(merged["filter_type"])
        self.set_filter_frequency(merged["filter_cutoff"])
        if merged["filter_q"]:
            self.set_filter_q(merged["filter_q"])
        else:
            with self._lock:
                self.filter_bank.reset_q()

        for slot in range(1, NUM_SLOTS + 1):
            self.set_oscillator(slot, merged[f"osc{slot}_wave"], merged[f"osc{slot}_octave"],
                                merged[f"osc{slot}_detune"])
            self.set_mixer_level(slot, merged[f"osc{slot}_level"])
        self.set_normalization_type(merged["normalization_type"])
        self.set_voice_scaling(merged["voice_scaling"])
        self.set_master_level(merged["master_level"])

        self.set_mod_wave(merged["lfo_wave"])
        self.set_mod_rate(merged["lfo_rate"])
        self.set_mod_amount(merged["lfo_amount"])
        self.set_mod_target(merged["lfo_target"])

        self.set_delay(merged["delay_time"], merged["delay_feedback"], merged["delay_mix"])
        self.set_reverb(merged["reverb_size"], merged["reverb_damping"], merged["reverb_mix"])

        self.set_arpeggiator(
            pattern=merged["arp_pattern"],
            bpm=merged["arp_bpm"],
            division=merged["arp_division"],
            octave_range=merged["arp_octave_range"],
            gate=merged["arp_gate"],
            enabled=merged["arp_enabled"] if self.note_target is self.arpeggiator else None,
        )
