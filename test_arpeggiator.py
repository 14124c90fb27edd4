#!/usr/bin/env python3
"""Arpeggiator: sequence building, step clock, gate and enable/disable."""
import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from synth.arpeggiator import ArpPattern, Arpeggiator, build_sequence, step_ms
from synth.scheduler import ManualScheduler
from synth.voice_manager import NoteTarget


class RecordingTarget(NoteTarget):
    """Stands in for the voice manager and tracks what is sounding."""

    def __init__(self):
        self.events = []
        self.sounding = set()
        self.max_sounding = 0

    def start_note(self, note):
        self.events.append(("on", note))
        self.sounding.add(note)
        self.max_sounding = max(self.max_sounding, len(self.sounding))

    def stop_note(self, note):
        self.events.append(("off", note))
        self.sounding.discard(note)

    def ons(self):
        return [note for kind, note in self.events if kind == "on"]


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def target():
    return RecordingTarget()


@pytest.fixture
def arp(target, scheduler):
    arp = Arpeggiator(target, scheduler, random.Random(7))
    arp.set_enabled(True)
    return arp


# ── Sequence building ────────────────────────────────────────

@pytest.mark.parametrize("pattern,expected", [
    (ArpPattern.UP, [60, 64, 67]),
    (ArpPattern.DOWN, [67, 64, 60]),
    (ArpPattern.UP_DOWN, [60, 64, 67, 64]),
    (ArpPattern.DOWN_UP, [67, 64, 60, 64]),
])
def test_patterns(pattern, expected):
    assert build_sequence([60, 64, 67], pattern, 1) == expected


def test_octave_expansion_keeps_spelling():
    assert build_sequence([60, 64, 67], ArpPattern.UP, 2) == [60, 64, 67, 72, 76, 79]
    assert build_sequence(["C4", "E4"], ArpPattern.UP, 2) == ["C4", "E4", "C5", "E5"]


def test_short_turnarounds():
    assert build_sequence([60], ArpPattern.UP_DOWN, 1) == [60]
    assert build_sequence([60, 64], ArpPattern.UP_DOWN, 1) == [60, 64]


def test_transpositions_above_midi_range_are_dropped():
    assert build_sequence([120], ArpPattern.UP, 2) == [120]


def test_step_timing():
    assert step_ms(120, "8") == pytest.approx(250.0)
    assert step_ms(120, "4") == pytest.approx(500.0)
    assert step_ms(120, "8t") == pytest.approx(500.0 / 3)
    assert step_ms(120, "32") == pytest.approx(62.5)
    assert step_ms(120, "7") == pytest.approx(250.0)


# ── Clocked playback ─────────────────────────────────────────

def test_first_note_plays_immediately_then_gates_off(arp, target, scheduler):
    arp.start_note(60)
    assert target.events == [("on", 60)]
    assert arp.gate_ms == pytest.approx(125.0)

    scheduler.advance(0.12)
    assert target.sounding == {60}
    scheduler.advance(0.01)
    assert target.events == [("on", 60), ("off", 60)]

    scheduler.advance(0.15)
    assert target.ons() == [60, 60]


def test_held_chord_plays_upwards(arp, target, scheduler):
    for note in (67, 60, 64):
        arp.start_note(note)
    assert arp.held_notes == [60, 64, 67]
    scheduler.advance(0.75)
    # the first note was the only one held when the clock started
    assert target.ons() == [67, 60, 64, 67]
    assert target.max_sounding == 1


def test_at_most_one_note_with_full_gate(arp, target, scheduler):
    arp.set_gate(100)
    arp.set_pattern("up-down")
    for note in (60, 64, 67):
        arp.start_note(note)
    scheduler.advance(2.0)
    assert target.max_sounding == 1


def test_releasing_last_key_stops_everything(arp, target, scheduler):
    arp.start_note(60)
    arp.start_note(64)
    scheduler.advance(0.3)
    arp.stop_note(60)
    arp.stop_note(64)
    assert not arp.is_running
    assert target.sounding == set()
    assert scheduler.pending() == 0
    count = len(target.events)
    scheduler.advance(2.0)
    assert len(target.events) == count


def test_disable_mid_hold_silences_and_cancels(arp, target, scheduler):
    arp.start_note(60)
    scheduler.advance(0.05)
    arp.set_enabled(False)
    assert target.events[-1] == ("off", 60)
    assert arp.held_notes == []
    assert scheduler.pending() == 0


def test_disabled_passes_notes_straight_through(target, scheduler):
    arp = Arpeggiator(target, scheduler)
    arp.start_note("C4")
    arp.stop_note("C4")
    assert target.events == [("on", "C4"), ("off", "C4")]
    assert scheduler.pending() == 0


def test_key_held_across_enable_still_gets_its_note_off(target, scheduler):
    arp = Arpeggiator(target, scheduler)
    arp.start_note(60)
    arp.set_enabled(True)
    arp.stop_note(60)
    assert target.events == [("on", 60), ("off", 60)]
    assert arp.held_notes == []


def test_stale_gate_off_never_cuts_a_newer_note(arp, target, scheduler):
    arp.set_gate(100)
    arp.start_note(60)
    arp.set_bpm(240)
    scheduler.advance(0.3)
    assert target.sounding == {60}
    assert target.events[-1] == ("on", 60)


def test_tempo_change_keeps_sequence_position(arp, target, scheduler):
    for note in (60, 64, 67):
        arp.start_note(note)
    scheduler.advance(0.25)
    assert arp.current_step == 1
    arp.set_bpm(60)
    assert arp.current_step == 1
    scheduler.advance(0.5)
    assert target.ons()[-1] == 64


def test_gate_off_survives_tempo_change(arp, target, scheduler):
    arp.start_note(60)
    arp.set_bpm(60)
    scheduler.advance(0.13)
    assert target.events[-1] == ("off", 60)
    assert target.sounding == set()
    scheduler.advance(0.4)
    assert target.ons() == [60, 60]


def test_step_rests_on_a_key_held_before_enable(target, scheduler):
    arp = Arpeggiator(target, scheduler)
    arp.start_note(60)
    arp.set_enabled(True)
    arp.set_octave_range(2)
    arp.start_note(48)
    assert arp.sequence == [48, 60]

    scheduler.advance(0.6)
    assert target.ons() == [60, 48, 48]
    assert ("off", 60) not in target.events
    assert 60 in target.sounding

    arp.stop_note(60)
    assert 60 not in target.sounding


def test_pattern_change_rebuilds_without_restarting(arp, scheduler):
    for note in (60, 64, 67):
        arp.start_note(note)
    clock = arp._clock
    arp.set_pattern("down")
    assert arp.sequence == [67, 64, 60]
    assert arp._clock is clock
    arp.set_octave_range(2)
    assert len(arp.sequence) == 6
    assert arp._clock is clock


def test_random_pattern_only_plays_held_notes(arp, target, scheduler):
    arp.set_pattern("random")
    for note in (60, 64, 67):
        arp.start_note(note)
    scheduler.advance(5.0)
    assert set(target.ons()) <= {60, 64, 67}
    assert arp.direction == 1


def test_direction_follows_pitch(arp, scheduler):
    arp.set_pattern("up-down")
    for note in (60, 64, 67):
        arp.start_note(note)
    scheduler.advance(0.5)  # stepped through 60 and 64
    assert arp.current_step == 2
    assert arp.direction == 1
    scheduler.advance(0.25)  # reached the top
    assert arp.current_step == 3
    assert arp.direction == -1


def test_parameter_clamping(arp, caplog):
    arp.set_bpm(300)
    assert arp.bpm == 240
    arp.set_bpm(10)
    assert arp.bpm == 40
    arp.set_octave_range(9)
    assert arp.octave_range == 4
    arp.set_gate(5)
    assert arp.gate == 25
    arp.set_division("5")
    assert arp.division == "8"
    assert "Unknown clock division" in caplog.text
    assert not arp.set_pattern("sideways")
    assert arp.pattern is ArpPattern.UP
