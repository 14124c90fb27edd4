"""Note input: MIDI messages and the computer keyboard, delivered to a note target."""
import logging
from threading import Lock
from typing import Dict, Optional, Set

import mido

from synth.voice_manager import NoteTarget

logger = logging.getLogger(__name__)


class MIDIInputHandler:
    """Reads a mido input port and forwards notes to a note target.

    Args:
        target: Receives ``start_note``/``stop_note`` with MIDI note numbers
    """

    def __init__(self, target: NoteTarget):
        self.target = target
        self.port: Optional[mido.ports.BaseInput] = None
        self.active_notes: Set[int] = set()
        self.notes_lock = Lock()

    def open_device(self, device_name: str) -> bool:
        """Open a MIDI input device.

        Args:
            device_name: Name of the MIDI device to open.

        Returns:
            True if device opened successfully, False otherwise.
        """
        self.close_device()
        try:
            self.port = mido.open_input(device_name)
        except (OSError, IOError, ImportError) as e:
            logger.error("Error opening MIDI device %r: %s", device_name, e)
            return False
        logger.info("Opened MIDI input %r", device_name)
        return True

    def close_device(self):
        """Close the port and release every note it left held."""
        if self.port:
            try:
                self.port.close()
            except (OSError, IOError) as e:
                logger.error("Error closing MIDI device: %s", e)
            finally:
                self.port = None

        with self.notes_lock:
            held = list(self.active_notes)
            self.active_notes.clear()
        for note in held:
            self.target.stop_note(note)

    def poll_messages(self) -> int:
        """Drain pending messages without blocking.

        Returns:
            Number of messages handled.
        """
        if not self.port:
            return 0
        count = 0
        for msg in self.port.iter_pending():
            self.handle_message(msg)
            count += 1
        return count

    def handle_message(self, msg: mido.Message):
        """Dispatch one message; note-on with velocity 0 counts as note-off."""
        if msg.type == 'note_on' and msg.velocity > 0:
            with self.notes_lock:
                self.active_notes.add(msg.note)
            self.target.start_note(msg.note)
        elif msg.type == 'note_off' or (msg.type == 'note_on' and msg.velocity == 0):
            with self.notes_lock:
                self.active_notes.discard(msg.note)
            self.target.stop_note(msg.note)

    def get_active_notes(self) -> Set[int]:
        with self.notes_lock:
            return self.active_notes.copy()

    def is_device_open(self) -> bool:
        return self.port is not None


# One row of white keys with the black keys above, starting at C
KEYBOARD_LAYOUT = ("a", "w", "s", "e", "d", "f", "t", "g", "y", "h", "u", "j",
                   "k", "o", "l", "p", ";", "'")
KEYBOARD_BASE_OCTAVE = 4
OCTAVE_SHIFT_MIN, OCTAVE_SHIFT_MAX = -2, 2


class ComputerKeyboard:
    """Maps typing keys to MIDI notes, C of octave 4 on 'a' by default.

    Notes are resolved at key-down and remembered, so changing the octave
    while a key is held still releases the right note.
    """

    def __init__(self, target: NoteTarget):
        self.target = target
        self.octave_shift = 0
        self._held: Dict[str, int] = {}

    def note_for_key(self, key: str) -> Optional[int]:
        try:
            index = KEYBOARD_LAYOUT.index(key.lower())
        except ValueError:
            return None
        # MIDI octave numbering puts C4 at 60
        return (KEYBOARD_BASE_OCTAVE + self.octave_shift + 1) * 12 + index

    def key_down(self, key: str) -> bool:
        """Press ``key``; returns False for unmapped keys and auto-repeat."""
        key = key.lower()
        if key in self._held:
            return False
        note = self.note_for_key(key)
        if note is None:
            return False
        self._held[key] = note
        self.target.start_note(note)
        return True

    def key_up(self, key: str) -> bool:
        note = self._held.pop(key.lower(), None)
        if note is None:
            return False
        self.target.stop_note(note)
        return True

    def shift_octave(self, delta: int) -> int:
        self.octave_shift = max(OCTAVE_SHIFT_MIN, min(OCTAVE_SHIFT_MAX, self.octave_shift + delta))
        return self.octave_shift

    def release_all(self):
        for key in list(self._held):
            self.key_up(key)
