#!/usr/bin/env python3
"""Filter bank: topologies, cutoff and resonance."""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from synth.filter_bank import (
    BUTTERWORTH_Q,
    CASCADE_Q,
    FilterBank,
    FilterType,
    parse_filter_type,
)
from synth.graph import AudioGraph


@pytest.fixture
def graph():
    return AudioGraph(clock=lambda: 0.0)


@pytest.fixture
def output(graph):
    return graph.create_gain()


@pytest.fixture
def bank(graph, output):
    return FilterBank(graph, output)


def test_initial_state(bank, output):
    assert bank.type is FilterType.LOWPASS24
    assert bank.input_node is bank.lowpass24[0]
    assert bank.lowpass24[0].is_connected_to(bank.lowpass24[1])
    assert bank.lowpass24[1].is_connected_to(output)
    assert bank.lowpass6.is_connected_to(output)
    assert bank.lowpass12.is_connected_to(output)
    assert not bank.lowpass24[0].is_connected_to(output)

    assert bank.lowpass12.Q.value == pytest.approx(BUTTERWORTH_Q)
    assert bank.lowpass24[0].Q.value == pytest.approx(CASCADE_Q[0])
    assert bank.lowpass24[1].Q.value == pytest.approx(CASCADE_Q[1])
    assert all(f.frequency.value == 20000.0 for f in bank.all_filters)
    assert all(f.type == "lowpass" for f in bank.all_filters)


@pytest.mark.parametrize("text,expected", [
    ("lowpass6", FilterType.LOWPASS6),
    ("12dB", FilterType.LOWPASS12),
    ("24", FilterType.LOWPASS24),
    (FilterType.LOWPASS12, FilterType.LOWPASS12),
])
def test_parse_filter_type(text, expected):
    assert parse_filter_type(text) is expected


def test_set_type_reports_old_and_new(bank):
    assert bank.set_type("lowpass6") == (FilterType.LOWPASS24, FilterType.LOWPASS6)
    assert bank.input_node is bank.lowpass6
    with pytest.raises(ValueError):
        bank.set_type("highpass")
    assert bank.type is FilterType.LOWPASS6


def test_cutoff_is_shared_and_clamped(bank):
    bank.set_frequency(5)
    assert bank.frequency == 20.0
    bank.set_frequency(50000)
    assert bank.frequency == 20000.0
    bank.set_frequency(1234)
    assert {f.frequency.value for f in bank.all_filters} == {1234.0}


def test_resonance_per_topology(bank):
    bank.set_q(2.0)
    assert bank.lowpass24[0].Q.value == pytest.approx(2.0 * CASCADE_Q[0])
    assert bank.lowpass24[1].Q.value == pytest.approx(2.0 * CASCADE_Q[1])

    bank.set_type("lowpass12")
    bank.set_q(3.0)
    assert bank.lowpass12.Q.value == pytest.approx(3.0)

    bank.reset_q()
    assert bank.q == 0.0
    assert bank.lowpass12.Q.value == pytest.approx(BUTTERWORTH_Q)
    assert bank.lowpass24[1].Q.value == pytest.approx(CASCADE_Q[1])


def test_log_frequency_mapping():
    assert FilterBank.log_frequency(0) == pytest.approx(20.0)
    assert FilterBank.log_frequency(100) == pytest.approx(20000.0)
    assert FilterBank.log_frequency(50) == pytest.approx((20.0 * 20000.0) ** 0.5)
    assert FilterBank.format_frequency(FilterBank.log_frequency(100)) == "20.0kHz"
