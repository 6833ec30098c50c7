"""
ovas command line: start or stop one scan, or inspect the configuration.

Usage examples:
    ovas --scan-start 2a7f... --attack myscheduler.attack:run
    ovas --scan-stop 2a7f...
    ovas -s -c /etc/openvas/openvas.conf
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Optional

from ovas import __version__
from ovas.base.config import get_config, setup_logging
from ovas.engine.lifecycle import ScanController, load_entrypoint
from ovas.errors import FATAL_ERRORS

logger = logging.getLogger("ovas")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ovas", description="Scanner process: runs or stops a single scan."
    )
    parser.add_argument("-V", "--version", action="store_true", help="Display version information")
    parser.add_argument("-c", "--config-file", metavar="FILE", help="Configuration file")
    parser.add_argument(
        "-s", "--cfg-specs", action="store_true", help="Print configuration settings"
    )
    parser.add_argument(
        "-y", "--sysconfdir", action="store_true", help="Print system configuration directory"
    )
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--scan-start", metavar="SCAN_ID", help="ID of scan to start")
    action.add_argument("--scan-stop", metavar="SCAN_ID", help="ID of scan to stop")
    parser.add_argument(
        "--attack",
        metavar="MODULE:CALLABLE",
        help="Entry point that runs the attack (defaults to the attack_entrypoint preference)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Timestamps in logs and the KB are UTC
    os.environ["TZ"] = "UTC"
    if hasattr(time, "tzset"):
        time.tzset()

    config = get_config()
    setup_logging(config)

    if args.version:
        print(f"ovas {__version__}")
        return 0

    if args.sysconfdir:
        print(config.paths.sysconf_dir)
        return 0

    controller = ScanController(config)

    if args.cfg_specs:
        prefs = controller.load_preferences(args.config_file)
        print(prefs.dump())
        return 0

    try:
        if args.scan_stop:
            outcome = controller.stop(args.scan_stop, config_file=args.config_file)
            logger.info(f"Stop of scan {args.scan_stop}: {outcome.value}")
            return 0

        if args.scan_start:
            attack = load_entrypoint(args.attack) if args.attack else None
            scan = controller.start(args.scan_start, attack=attack, config_file=args.config_file)
            logger.info(f"Scan {scan.scan_id} ended in state {scan.state.value}")
            return 0
    except FATAL_ERRORS as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1

    build_parser().print_usage(sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
