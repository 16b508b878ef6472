#!/usr/bin/env python3
"""
ferryctl - Ferry Forwarding Engine CLI

Command-line interface for checking configuration and running scripted
scenarios on the loopback world.

Usage:
    ferryctl check CONFIG          - Validate a routing config file
    ferryctl sector HEADING...     - Show sectors for headings (radians)
    ferryctl run SCENARIO          - Run a scenario file
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from ferry import __version__
from ferry.config import Config
from ferry.errors import ConfigError
from ferry.routing.direction import sector_of
from ferry.scenario import load_scenario, run_scenario


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: Optional[str], log_file: Optional[Path]) -> None:
    """Apply logging settings from a config or scenario document."""
    ferry_logger = logging.getLogger("ferry")
    if level:
        ferry_logger.setLevel(level)
    if log_file is not None:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        ferry_logger.addHandler(handler)


class FerryCtl:
    """ferryctl CLI application."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def check(self, config_path: Path) -> int:
        """Validate a routing config file."""
        try:
            config = Config.load(config_path)
            config.validate()
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        r = config.routing
        print(f"Config OK: {config.config_path}")
        print("=" * 40)
        print(f"Policy:         {r.policy.value}")
        print(f"Copies:         {r.initial_copies} ({'binary' if r.binary_mode else 'single-copy'})")
        print(f"Sectors:        {r.direction_coefficient}")
        print(f"Buffer factors: low {r.low_buffer_factor} / high {r.high_buffer_factor}")
        print(f"Mule threshold: {r.mule_buffer_threshold} bytes")
        print(f"Buffer size:    {r.buffer_size} bytes ({r.eviction_policy.value} evicted first)")
        print(f"Queue mode:     {r.queue_mode.value}")
        print(f"Message TTL:    {r.msg_ttl if r.msg_ttl is not None else 'none'}")
        return 0

    def sector(self, headings: List[float], k: int) -> int:
        """Print the sector of each heading."""
        if not 1 <= k <= 8:
            print(f"Error: k must be between 1 and 8, got {k}", file=sys.stderr)
            return 1

        print(f"{'Heading':>10}  Sector (k={k})")
        print("-" * 26)
        for heading in headings:
            print(f"{heading:>10.4f}  {sector_of(heading, k)}")
        return 0

    def run(self, scenario_path: Path, as_json: bool = False) -> int:
        """Run a scenario and print the result."""
        try:
            scenario = load_scenario(scenario_path)
            configure_logging(None if self.verbose else scenario.log_level, scenario.log_file)
            result = run_scenario(scenario)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        if as_json:
            print(json.dumps(result.to_dict(), indent=2, sort_keys=True))
            return 0

        print(f"Scenario: {scenario_path} ({result.ticks} ticks, {scenario.routing.policy.value})")
        print("=" * 60)
        print(f"Created:   {len(result.created)}")
        print(f"Rejected:  {len(result.rejected)}")
        print(f"Delivered: {len(result.delivered)} ({result.delivery_ratio:.0%})")
        print()
        print(f"{'Host':<12} {'Messages':<10} {'Copies':<24} {'Known hosts':<10}")
        print("-" * 60)

        for host, state in result.snapshot.items():
            copies = ", ".join(f"{mid[:8]}={n}" for mid, n in sorted(state["copies"].items()))
            strata = state["strata"]
            known = "-"
            if strata is not None:
                known = str(len(strata["first_hop"]) + len(strata["multi_hop"]))
            print(f"{str(host):<12} {len(state['copies']):<10} {copies or '-':<24} {known:<10}")

        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ferryctl",
        description="Ferry forwarding engine tools",
    )
    parser.add_argument("--version", action="version", version=f"ferryctl {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    p_check = sub.add_parser("check", help="Validate a routing config file")
    p_check.add_argument("config", type=Path, help="Path to TOML config")

    p_sector = sub.add_parser("sector", help="Show sectors for headings")
    p_sector.add_argument("headings", type=float, nargs="+", help="Headings in radians")
    p_sector.add_argument("-k", type=int, default=4, help="Number of sectors (1-8)")

    p_run = sub.add_parser("run", help="Run a scenario file")
    p_run.add_argument("scenario", type=Path, help="Path to TOML scenario")
    p_run.add_argument("--json", action="store_true", help="Print result as JSON")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    ctl = FerryCtl(verbose=args.verbose)

    if args.command == "check":
        return ctl.check(args.config)
    elif args.command == "sector":
        return ctl.sector(args.headings, args.k)
    elif args.command == "run":
        return ctl.run(args.scenario, as_json=args.json)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
