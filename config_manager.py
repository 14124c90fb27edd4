"""Configuration file management."""
import json
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigManager:
    """Manages application configuration.

    Args:
        config_file: JSON file to read and write; defaults to config.json
            beside this module
    """

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else Path(__file__).parent / "config.json"
        self.config = self._load_config()

    def _load_config(self) -> dict:
        """Load configuration from file, falling back to defaults."""
        config = self._default_config()
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    loaded = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Could not read %s, using defaults: %s", self.config_file, e)
                return config
            if isinstance(loaded, dict):
                config.update(loaded)
            else:
                logger.warning("Ignoring %s: top level is not an object", self.config_file)
        return config

    def _default_config(self) -> dict:
        """Return default configuration."""
        return {
            "selected_midi_device": None,
            "synth_state": None,
            "log_level": "WARNING",
        }

    def save_config(self):
        """Save configuration to file."""
        try:
            with open(self.config_file, 'w') as f:
                json.dump(self.config, f, indent=2)
        except OSError as e:
            logger.error("Error saving config: %s", e)

    # ── MIDI device ──────────────────────────────────────────────

    def get_selected_device(self) -> Optional[str]:
        """Get the saved MIDI device."""
        return self.config.get("selected_midi_device")

    def set_selected_device(self, device_name: Optional[str]):
        """Save the selected MIDI device."""
        self.config["selected_midi_device"] = device_name
        self.save_config()

    # ── Synth state persistence ──────────────────────────────────

    def get_synth_state(self) -> Optional[dict]:
        """Return the last saved synth parameter snapshot, or None."""
        state = self.config.get("synth_state")
        return state if isinstance(state, dict) else None

    def set_synth_state(self, params: dict):
        self.config["synth_state"] = params
        self.save_config()

    # ── Logging ──────────────────────────────────────────────────

    def get_log_level(self) -> str:
        level = str(self.config.get("log_level", "WARNING")).upper()
        return level if level in LOG_LEVELS else "WARNING"

    def set_log_level(self, level: str):
        level = str(level).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {level!r}")
        self.config["log_level"] = level
        self.save_config()
