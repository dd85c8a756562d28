#!/usr/bin/env python3
"""
Looking Glass Linux - Command Line Interface

Entry point for the lookingglass-linux package.
"""

import argparse
import json
import logging
import os
import subprocess

from lookingglass.__version__ import __version__
from lookingglass.constants import LOOKING_GLASS_PID, LOOKING_GLASS_VID
from lookingglass.errors import LookingGlassError

UDEV_RULES_PATH = "/etc/udev/rules.d/99-lookingglass.rules"


def _setup_logging(verbose=0):
    """Set up logging based on verbosity."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
        logging.getLogger('usb').setLevel(logging.WARNING)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING)


def _positive_int(text):
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="lookingglass",
        description="Read calibration from Looking Glass holographic displays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    lookingglass detect              List connected displays
    lookingglass calibration         Print each display's calibration
    lookingglass calibration --json  Same, as JSON keyed by device path
    lookingglass dump                Print the raw EEPROM configuration
    lookingglass setup-udev          Install udev rules for device access
    lookingglass config --set-backend pyusb   Save the default backend
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument(
        "--backend",
        choices=["auto", "hidapi", "pyusb"],
        help="HID backend (default: from config, else auto)"
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        metavar="MS",
        help="Per-read timeout in milliseconds (default: from config, else 10)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("detect", help="List connected displays")

    cal_parser = subparsers.add_parser("calibration", help="Read and decode calibration")
    cal_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    dump_parser = subparsers.add_parser("dump", help="Print raw configuration document")
    dump_parser.add_argument(
        "--index", "-i", type=int, default=1,
        help="Display number from 'lookingglass detect' (default: 1)"
    )

    udev_parser = subparsers.add_parser("setup-udev", help="Install udev rules for display access")
    udev_parser.add_argument("--dry-run", action="store_true", help="Print rules without installing")

    config_parser = subparsers.add_parser("config", help="Show or change saved settings")
    config_parser.add_argument(
        "--set-backend", choices=["auto", "hidapi", "pyusb"],
        help="Save the default HID backend"
    )
    config_parser.add_argument(
        "--set-timeout", type=_positive_int, metavar="MS",
        help="Save the default per-read timeout"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(args.verbose)

    if args.command == "detect":
        return detect(backend=args.backend)
    elif args.command == "calibration":
        return show_calibration(backend=args.backend, timeout_ms=args.timeout,
                                as_json=args.json)
    elif args.command == "dump":
        return dump_config(index=args.index, backend=args.backend, timeout_ms=args.timeout)
    elif args.command == "setup-udev":
        return setup_udev(dry_run=args.dry_run)
    elif args.command == "config":
        return configure(backend=args.set_backend, timeout_ms=args.set_timeout)

    return 0


def _format_candidate(candidate):
    """Format a candidate for display."""
    serial = candidate.serial_number or "no HID serial"
    product = candidate.product or "Looking Glass"
    return f"{candidate.path}  {product} [{candidate.vid_pid}] ({serial}, {candidate.backend})"


def _resolve_backend(backend):
    from lookingglass import conf
    return backend if backend is not None else conf.get_backend()


def detect(backend=None):
    """List connected displays without reading them."""
    from lookingglass.hid_transport import find_candidates

    try:
        candidates = find_candidates(
            LOOKING_GLASS_VID, LOOKING_GLASS_PID, _resolve_backend(backend),
        )
    except LookingGlassError as e:
        print(f"Error: {e}")
        return 1

    if not candidates:
        print("No Looking Glass display detected.")
        return 1

    for i, candidate in enumerate(candidates, 1):
        print(f"[{i}] {_format_candidate(candidate)}")
    return 0


def _format_calibration(cal):
    return "\n".join([
        f"    Serial      {cal.serial}",
        f"    Pitch       {cal.pitch}",
        f"    Slope       {cal.slope}",
        f"    Center      {cal.center}",
        f"    DPI         {cal.dpi}",
        f"    Resolution  {cal.screen_w}x{cal.screen_h}",
    ])


def show_calibration(backend=None, timeout_ms=None, as_json=False):
    """Read every display and print its calibration or error."""
    from lookingglass.device_detector import detect_displays

    try:
        outcomes = detect_displays(backend=backend, timeout_ms=timeout_ms)
    except LookingGlassError as e:
        print(f"Error: {e}")
        return 1

    if as_json:
        report = {}
        for candidate, outcome in outcomes.items():
            entry = {"hid_serial": candidate.serial_number}
            if outcome.ok:
                entry["calibration"] = outcome.calibration.to_dict()
            else:
                entry["error"] = {"kind": outcome.kind.value, "message": outcome.message}
            report[candidate.path] = entry
        print(json.dumps(report, indent=2))
    elif not outcomes:
        print("No Looking Glass display detected.")
    else:
        for i, (candidate, outcome) in enumerate(outcomes.items(), 1):
            print(f"[{i}] {_format_candidate(candidate)}")
            if outcome.ok:
                print(_format_calibration(outcome.calibration))
            else:
                print(f"    Error ({outcome.kind.value}): {outcome.message}")

    if not outcomes:
        return 1
    return 0 if all(o.ok for o in outcomes.values()) else 1


def dump_config(index=1, backend=None, timeout_ms=None):
    """Print the raw configuration document of one display."""
    from lookingglass import conf
    from lookingglass.device_detector import read_document
    from lookingglass.hid_transport import find_candidates, open_transport

    if timeout_ms is None:
        timeout_ms = conf.get_read_timeout_ms()

    try:
        candidates = find_candidates(
            LOOKING_GLASS_VID, LOOKING_GLASS_PID, _resolve_backend(backend),
        )
        if not candidates:
            print("No Looking Glass display detected.")
            return 1
        if index < 1 or index > len(candidates):
            print(f"Invalid display number. Use 1-{len(candidates)}")
            return 1

        # open_transport() returns an already-open transport
        transport = open_transport(candidates[index - 1])
        try:
            print(read_document(transport, timeout_ms))
        finally:
            transport.close()
        return 0
    except LookingGlassError as e:
        print(f"Error: {e}")
        return 1


def configure(backend=None, timeout_ms=None):
    """Save the given defaults, then print the effective settings."""
    from lookingglass import conf

    if backend is not None:
        conf.save_backend(backend)
        print(f"Saved backend: {backend}")
    if timeout_ms is not None:
        conf.save_read_timeout_ms(timeout_ms)
        print(f"Saved read timeout: {timeout_ms} ms")

    print(f"Config file:   {conf.CONFIG_PATH}")
    print(f"Backend:       {conf.get_backend()}")
    print(f"Read timeout:  {conf.get_read_timeout_ms()} ms")
    return 0


def build_udev_rules():
    """Render udev rules granting access to hidraw and raw USB nodes."""
    vid, pid = LOOKING_GLASS_VID, LOOKING_GLASS_PID
    return (
        "# Looking Glass holographic displays, auto-generated by lookingglass setup-udev\n"
        f'SUBSYSTEM=="hidraw", ATTRS{{idVendor}}=="{vid:04x}", '
        f'ATTRS{{idProduct}}=="{pid:04x}", MODE="0666"\n'
        f'SUBSYSTEM=="usb", ATTRS{{idVendor}}=="{vid:04x}", '
        f'ATTRS{{idProduct}}=="{pid:04x}", MODE="0666"\n'
    )


def setup_udev(dry_run=False):
    """Install udev rules so displays can be opened without root."""
    rules_content = build_udev_rules()

    if dry_run:
        print(rules_content)
        print(f"# Would write to {UDEV_RULES_PATH}")
        return 0

    if os.geteuid() != 0:
        print("Error: root required. Run with:")
        print("  sudo lookingglass setup-udev")
        print("\nOr preview first:")
        print("  lookingglass setup-udev --dry-run")
        return 1

    try:
        with open(UDEV_RULES_PATH, "w") as f:
            f.write(rules_content)
    except OSError as e:
        print(f"Error: {e}")
        return 1
    print(f"Wrote {UDEV_RULES_PATH}")

    subprocess.run(["udevadm", "control", "--reload-rules"], check=False)
    subprocess.run(["udevadm", "trigger"], check=False)
    print("\nDone. Replug your display for changes to take effect.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
