"""Pitch mapping: note identifiers to MIDI numbers and frequencies."""
import logging
import re
from typing import Optional, Union

import mingus.core.notes as notes
from mingus.core.mt_exceptions import NoteFormatError

logger = logging.getLogger(__name__)

NoteKey = Union[int, str]

# MIDI note 60 = C4 (middle C)
NOTE_NAMES = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']

A4_MIDI = 69
A4_FREQUENCY = 440.0

_NAME_PATTERN = re.compile(r"^([A-Ga-g])([#b]?)(-?\d+)$")


def midi_to_frequency(midi_note: float) -> float:
    """Equal temperament, A4 = 440 Hz."""
    return A4_FREQUENCY * 2.0 ** ((midi_note - A4_MIDI) / 12.0)


def name_from_midi(midi_note: int) -> str:
    """Convert a MIDI number to a sharp-spelled name with octave (60 -> "C4")."""
    octave = (midi_note // 12) - 1
    return f"{NOTE_NAMES[midi_note % 12]}{octave}"


def midi_from_name(name: str) -> Optional[int]:
    """Parse a pitch-class + octave string ("C#4", "Db4", "a3") to a MIDI number.

    Returns:
        The MIDI number, or None if the string is not a note name.
    """
    match = _NAME_PATTERN.match(name.strip())
    if not match:
        return None
    letter, accidental, octave_str = match.groups()
    pitch_class = letter.upper() + accidental
    try:
        index = notes.note_to_int(pitch_class)
    except NoteFormatError:
        return None
    # note_to_int wraps B# and Cb into the neighbouring octave
    if pitch_class == 'B#':
        index += 12
    elif pitch_class == 'Cb':
        index -= 12
    return (int(octave_str) + 1) * 12 + index


def note_key(note) -> NoteKey:
    """Normalise a note identifier into the key used by the active-note table.

    Integers (and digit strings) are MIDI numbers. Note names are respelled in
    canonical sharp form, so "db4" and "C#4" share a key. Anything else is
    kept as its stripped string form; it still works as a key but maps to A4.
    """
    if isinstance(note, bool):
        return str(note)
    if isinstance(note, int):
        return note
    if isinstance(note, float) and note.is_integer():
        return int(note)
    text = str(note).strip()
    if text.isdigit():
        return int(text)
    midi = midi_from_name(text)
    if midi is not None:
        return name_from_midi(midi)
    return text


def key_to_midi(key: NoteKey) -> Optional[int]:
    """MIDI number for a normalised key, or None for a malformed one."""
    if isinstance(key, int):
        return key
    return midi_from_name(key)


def note_to_frequency(note) -> float:
    """Frequency in Hz for any note identifier.

    Malformed identifiers never raise: they log a warning and map to A4.
    """
    midi = key_to_midi(note_key(note))
    if midi is None:
        logger.warning("Invalid note format: %r, falling back to A4", note)
        return A4_FREQUENCY
    return midi_to_frequency(midi)


def format_frequency(freq: float) -> str:
    if freq >= 1000:
        return f"{freq / 1000:.1f}kHz"
    return f"{round(freq)}Hz"
