#!/usr/bin/env python3
"""
Scrape live-music listings from Tokyo venue websites.

Usage:
    python scrape.py --mode proven
    python scrape.py --mode weekly --max-targets 50 --max-duration-hours 2
    python scrape.py --mode test --verbose

Exit codes: 0 full success, 1 completed with failures, 2 hard failure before
any target was attempted.
"""

import argparse
import sys

from gigscraper import runner


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Scrape Tokyo venue schedules")
    parser.add_argument("--mode", choices=runner.MODES, default="proven", help="Run mode")
    parser.add_argument("--max-targets", type=int, default=None, help="Cap on targets this run")
    parser.add_argument("--max-duration-hours", type=float, default=None, help="Wall-clock budget for the run")
    parser.add_argument("--workers", type=int, default=None, help="Worker pool width")
    parser.add_argument("--verbose", action="store_true", help="Per-stage detail in the log")
    parser.add_argument("--no-r2", action="store_true", help="Skip cache download/upload")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    summary = runner.run(
        mode=args.mode,
        max_targets=args.max_targets,
        max_duration_hours=args.max_duration_hours,
        workers=args.workers,
        verbose=args.verbose,
        use_r2=False if args.no_r2 else None,
    )
    return summary.exit_code()


if __name__ == "__main__":
    sys.exit(main())
