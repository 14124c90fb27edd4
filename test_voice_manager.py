#!/usr/bin/env python3
"""Voice manager: voice lifecycle, release teardown and filter switching."""
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from synth.filter_bank import FilterType
from synth.scheduler import ManualScheduler
from synth.synthesizer import Synthesizer
from synth.voice_manager import DISCONNECT_MARGIN, STOP_MARGIN

RELEASE = 0.5


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def synth(scheduler):
    return Synthesizer(scheduler=scheduler, use_arpeggiator=False)


@pytest.fixture
def vm(synth):
    return synth.voice_manager


def test_start_is_idempotent(vm):
    vm.start_note(60)
    voice = vm.active_notes[60]
    vm.start_note(60)
    assert vm.active_voice_count == 1
    assert vm.active_notes[60] is voice


def test_stop_of_absent_note_is_a_no_op(vm, scheduler):
    vm.stop_note(61)
    vm.start_note(60)
    vm.stop_note(61)
    assert vm.active_voice_count == 1
    assert scheduler.pending() == 0


def test_voice_has_four_started_units_on_the_filter_input(vm, synth):
    vm.start_note("A4")
    voice = vm.active_notes["A4"]
    assert len(voice.units) == 4
    for unit in voice.units:
        assert unit.oscillator.is_playing
        assert unit.oscillator.frequency.value == pytest.approx(440.0)
        assert unit.gain_node.is_connected_to(synth.filter_bank.input_node)


def test_release_then_teardown(vm, synth, scheduler):
    vm.start_note(60)
    voice = vm.active_notes[60]
    assert not voice.is_releasing
    vm.stop_note(60)
    assert voice.is_releasing

    assert not vm.is_active(60)
    assert vm.releasing_voices == [voice]
    for unit in voice.units:
        assert unit.oscillator.stop_time == pytest.approx(RELEASE + STOP_MARGIN)
        assert unit.gain_node.is_connected_to(synth.filter_bank.input_node)

    scheduler.advance(RELEASE + DISCONNECT_MARGIN + 0.001)
    assert vm.releasing_voices == []
    for unit in voice.units:
        assert unit.gain_node.outputs == []
        assert not unit.oscillator.is_playing


def test_retrigger_during_release_survives_old_teardown(vm, synth, scheduler):
    vm.start_note(60)
    old = vm.active_notes[60]
    vm.stop_note(60)
    scheduler.advance(0.1)
    vm.start_note(60)
    new = vm.active_notes[60]
    assert new is not old

    scheduler.advance(RELEASE + DISCONNECT_MARGIN)
    assert vm.active_notes[60] is new
    for unit in new.units:
        assert unit.gain_node.is_connected_to(synth.filter_bank.input_node)
        assert unit.oscillator.is_playing
    assert all(unit.gain_node.outputs == [] for unit in old.units)


def test_master_gain_tracks_voice_count(vm, synth):
    mixer = synth.mixer
    vm.start_note(60)
    vm.start_note(64)
    assert mixer.master_gain.gain.value == pytest.approx(mixer.compute_gain(2))
    vm.stop_note(60)
    assert mixer.master_gain.gain.value == pytest.approx(mixer.compute_gain(1))


def test_filter_switch_moves_held_and_releasing_voices(vm, synth):
    bank = synth.filter_bank
    vm.start_note(60)
    vm.start_note(64)
    vm.stop_note(64)
    voices = vm._live_voices()
    assert len(voices) == 2

    old, new = vm.switch_filter_type("lowpass6")
    assert (old, new) == (FilterType.LOWPASS24, FilterType.LOWPASS6)
    for voice in voices:
        for unit in voice.units:
            assert unit.gain_node.is_connected_to(bank.lowpass6)
            assert not unit.gain_node.is_connected_to(bank.lowpass24[0])


def test_unknown_filter_switch_touches_nothing(vm, synth):
    vm.start_note(60)
    with pytest.raises(ValueError):
        vm.switch_filter_type("bandpass")
    unit = vm.active_notes[60].units[0]
    assert unit.gain_node.is_connected_to(synth.filter_bank.lowpass24[0])


def test_oscillator_settings_are_captured_per_voice(vm):
    vm.set_oscillator(0, "square", octave=1, detune=7)
    vm.start_note(69)
    unit = vm.active_notes[69].units[0]
    assert unit.oscillator.type == "square"
    assert unit.oscillator.frequency.value == pytest.approx(880.0)
    assert unit.oscillator.detune.value == pytest.approx(7.0)

    vm.set_oscillator(0, "sawtooth", octave=-1)
    assert unit.oscillator.type == "square"
    assert vm.oscillator_settings[0].octave == -1

    with pytest.raises(IndexError):
        vm.set_oscillator(4, "sine")
    with pytest.raises(ValueError):
        vm.set_oscillator(0, "noise")


def test_base_levels_are_frozen_at_note_on(vm, synth):
    vm.start_note(60)
    synth.mixer.set_level(0, 0.9)
    assert vm.active_notes[60].base_levels == [0.25] * 4
    vm.start_note(62)
    assert vm.active_notes[62].base_levels[0] == 0.9


def test_malformed_note_still_sounds_at_a4(vm, caplog):
    with caplog.at_level(logging.WARNING):
        vm.start_note("Q9")
    voice = vm.active_notes["Q9"]
    assert voice.frequency == pytest.approx(440.0)


def test_kill_all_after_stop_already_elapsed(vm, scheduler):
    vm.start_note(60)
    vm.start_note(64)
    vm.stop_note(60)
    scheduler.advance(RELEASE + STOP_MARGIN + 0.01)  # stopped, teardown still pending
    vm.kill_all()
    assert vm.active_voice_count == 0
    assert vm.releasing_voices == []
    scheduler.advance(1.0)
    assert vm.releasing_voices == []


def test_stop_all_releases_through_normal_path(vm, scheduler):
    for note in (60, 64, 67):
        vm.start_note(note)
    vm.stop_all()
    assert vm.active_voice_count == 0
    assert len(vm.releasing_voices) == 3
    scheduler.advance(1.0)
    assert vm.releasing_voices == []


def test_amp_sustain_edit_moves_only_voices_past_decay(vm, synth, scheduler):
    vm.start_note(60)
    scheduler.advance(0.5)
    vm.start_note(64)
    synth.envelopes.set_envelope("amp", "sustain", 0.2)
    vm.apply_sustain_change()
    scheduler.advance(0.02)

    settled = vm.active_notes[60].units[0].gain_node.gain.value
    assert settled == pytest.approx(0.25 * 0.2)
    attacking = vm.active_notes[64].units[0].gain_node.gain
    # still on its own attack ramp towards the full base level
    assert attacking.value_at(0.6) == pytest.approx(0.25)


def test_filter_envelope_releases_only_after_last_key(vm, synth, scheduler):
    env = synth.envelopes.filter_envelope
    cutoff = synth.filter_bank.input_node.frequency
    vm.start_note(60)
    vm.start_note(64)
    scheduler.advance(0.5)

    vm.stop_note(60)
    # one key still held, so the cutoff stays on the sustain plateau
    assert cutoff.value_at(2.0) == pytest.approx(env.sustain_freq)

    vm.stop_note(64)
    assert cutoff.value_at(0.5 + RELEASE) == pytest.approx(env.base_freq)
