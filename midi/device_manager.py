"""MIDI input device enumeration and selection."""
import logging
from typing import List, Optional, TYPE_CHECKING

import mido

if TYPE_CHECKING:
    from config_manager import ConfigManager

logger = logging.getLogger(__name__)


class MIDIDeviceManager:
    """Lists mido input ports and remembers the chosen one in the config."""

    def __init__(self, config_manager: 'ConfigManager' = None):
        self.config_manager = config_manager
        self.selected_device: Optional[str] = None
        self.last_error: Optional[str] = None

        if self.config_manager:
            saved_device = self.config_manager.get_selected_device()
            # Only restore a device that is still plugged in
            if saved_device and saved_device in self.get_input_devices():
                self.selected_device = saved_device

    def get_input_devices(self) -> List[str]:
        """Get list of available MIDI input devices.

        Returns:
            List of MIDI input device names, empty if the backend fails.
        """
        try:
            devices = mido.get_input_names()
        except (OSError, IOError, ImportError) as e:
            error_msg = str(e).lower()
            if "no such file" in error_msg and "snd/seq" in error_msg:
                self.last_error = "ALSA sequencer not available. Run: sudo modprobe snd-seq"
            else:
                self.last_error = f"Error: {e}"
            logger.error("Could not list MIDI inputs: %s", self.last_error)
            return []
        self.last_error = None
        return devices

    def find_device(self, name: str) -> Optional[str]:
        """Resolve an exact name, or else the first device containing ``name``."""
        devices = self.get_input_devices()
        if name in devices:
            return name
        needle = name.lower()
        for device in devices:
            if needle in device.lower():
                return device
        return None

    def select_device(self, device_name: str) -> bool:
        """Select a MIDI input device.

        Args:
            device_name: Exact or partial name of the device to select.

        Returns:
            True if a matching device was found and selected.
        """
        device = self.find_device(device_name)
        if device is None:
            logger.warning("No MIDI input matches %r", device_name)
            return False
        self.selected_device = device
        if self.config_manager:
            self.config_manager.set_selected_device(device)
        return True

    def get_selected_device(self) -> Optional[str]:
        return self.selected_device

    def has_devices(self) -> bool:
        return len(self.get_input_devices()) > 0
