#!/usr/bin/env python3
"""Polyphonic synth engine - command line entry point."""
import argparse
import logging
import sys
import time
from typing import List, Optional

from config_manager import ConfigManager
from midi.device_manager import MIDIDeviceManager
from midi.input_handler import MIDIInputHandler
from synth.synthesizer import Synthesizer

logger = logging.getLogger("polysynth")

POLL_INTERVAL = 0.005


def setup_logging(verbose: bool = False, level: str = "WARNING"):
    """Console logging; ``verbose`` forces DEBUG."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                                           datefmt="%H:%M:%S"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level, logging.WARNING))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Polyphonic subtractive synth driven by MIDI input")
    parser.add_argument("--device", metavar="NAME", help="MIDI input to open (exact or partial name)")
    parser.add_argument("--list-devices", action="store_true", help="print MIDI inputs and exit")
    parser.add_argument("--arp", action="store_true", help="start with the arpeggiator enabled")
    parser.add_argument("--bpm", type=float, help="arpeggiator tempo (40-240)")
    parser.add_argument("--config", metavar="PATH", help="configuration file (default: config.json)")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def run(synth: Synthesizer, handler: MIDIInputHandler):
    """Poll MIDI input until interrupted."""
    try:
        while True:
            if handler.poll_messages() == 0:
                time.sleep(POLL_INTERVAL)
    except KeyboardInterrupt:
        logger.info("Interrupted")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    config = ConfigManager(args.config)
    setup_logging(args.verbose, config.get_log_level())

    device_manager = MIDIDeviceManager(config)
    if args.list_devices:
        devices = device_manager.get_input_devices()
        if not devices and device_manager.last_error:
            print(device_manager.last_error, file=sys.stderr)
            return 1
        for name in devices:
            print(name)
        return 0

    if args.device and not device_manager.select_device(args.device):
        print(f"No MIDI input matches {args.device!r}", file=sys.stderr)
        return 1
    device = device_manager.get_selected_device()
    if device is None:
        print("No MIDI device selected; use --device NAME (see --list-devices)", file=sys.stderr)
        return 1

    synth = Synthesizer()
    synth.apply_params(config.get_synth_state())
    synth.set_arpeggiator(bpm=args.bpm, enabled=True if args.arp else None)

    handler = MIDIInputHandler(synth)
    if not handler.open_device(device):
        synth.close()
        return 1

    try:
        run(synth, handler)
    finally:
        handler.close_device()
        config.set_synth_state(synth.get_params())
        synth.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
