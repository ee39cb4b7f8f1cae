"""Command-line entry point.

Example:
    acevo configs/example.yaml --seed 42 --threads 4 -v
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from acevo.config import load_config
from acevo.model import Evo
from acevo.perf import PerfMonitor
from acevo.utils import ProgressBar, Timer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acevo",
        description="Evolve actor-critic learners in a public-goods game.",
        epilog="Example: acevo configs/example.yaml --seed 42",
    )
    parser.add_argument(
        "config",
        help="YAML configuration file",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Master seed (default: from config, else fresh entropy)",
    )
    parser.add_argument(
        "--threads", type=int, default=None,
        help="Max number of worker threads (default: from config)",
    )
    parser.add_argument(
        "--out", type=str, default=None,
        help="Output population file (default: population.out_name)",
    )
    parser.add_argument(
        "--perf", action="store_true",
        help="Print a timing breakdown after the run",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log progress messages",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("%s", e)
        print("Input failed!")
        return 1

    if args.threads is not None and args.threads < 1:
        print("Input failed!")
        return 1

    evo = Evo(config, seed=args.seed, num_threads=args.threads, out_name=args.out)
    if not evo.pop_ok:
        print("Starting population not valid")
        return 1

    print(f"Number of threads: {evo.num_thrds}")
    perf = PerfMonitor(enabled=args.perf)
    timer = Timer()
    timer.start()
    bar = ProgressBar(evo.numgen)
    result = evo.run(perf=perf, progress_callback=lambda done, total: bar.update(done))
    bar.final()
    timer.stop()
    timer.display()

    if args.perf:
        print(perf.report())
    if result.out_name is not None and not result.output_written:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
