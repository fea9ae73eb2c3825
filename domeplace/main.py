"""
Command-line entry point for dome cylinder placement.

Usage:
    python -m domeplace.main run --vertices dome.npy [--episodes N] [--seed S] [--target N]
    python -m domeplace.main record --vertices dome.npy [--output episode.rrd] [--seed S]
    python -m domeplace.main run --vertices dome.npy --smoketest

The vertex file holds the surface's (N, 3) vertex positions, Z-up, either as
a .npy array or as whitespace-separated text.
"""

from __future__ import annotations

import argparse
import logging
import sys

import numpy as np

from domeplace.config import Config
from domeplace.episode import EpisodeController, describe_episode
from domeplace.surface import MeshSurface

log = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure root logging and install an excepthook.

    Unhandled exceptions are logged before the default hook prints them.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    _original_excepthook = sys.excepthook

    def _logging_excepthook(exc_type, exc_value, exc_tb):
        if not issubclass(exc_type, KeyboardInterrupt):
            logging.critical(
                "Unhandled exception", exc_info=(exc_type, exc_value, exc_tb)
            )
        _original_excepthook(exc_type, exc_value, exc_tb)

    sys.excepthook = _logging_excepthook


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="domeplace",
        description="Place cylinders on a dome surface and score their stability",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p):
        p.add_argument("--vertices", required=True, help="Surface vertex file (.npy or text)")
        p.add_argument("--seed", type=int, default=None, help="Base seed (default: random)")
        p.add_argument("--target", type=int, default=None, help="Cylinders to place per episode")
        p.add_argument("--smoketest", action="store_true", help="Fast settings, no pauses")

    run = sub.add_parser("run", help="Run headless episodes")
    add_common(run)
    run.add_argument("--episodes", type=int, default=1, help="Number of episodes")

    record = sub.add_parser("record", help="Record one episode to a Rerun file")
    add_common(record)
    record.add_argument("--output", default="episode.rrd", help="Output .rrd path")

    return parser


def _make_config(args) -> Config:
    cfg = Config.for_smoketest() if args.smoketest else Config()
    if args.target is not None:
        cfg.placement.target_count = args.target
    if args.seed is not None:
        cfg.seed = args.seed
    return cfg


def _cmd_run(args, controller: EpisodeController) -> None:
    totals = []
    for _ in range(args.episodes):
        totals.append(controller.run_episode())
        print(describe_episode(controller))
    if len(totals) > 1:
        print(f"\nMean reward over {len(totals)} episodes: {np.mean(totals):+.2f}")


def _cmd_record(args, controller: EpisodeController) -> None:
    from domeplace.rerun_logger import record_episode

    total = record_episode(controller, args.output)
    print(describe_episode(controller))
    print(f"Saved {args.output} (reward {total:+.2f})")
    print(f"  rerun {args.output}")


def main(argv=None):
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    cfg = _make_config(args)
    for key, value in cfg.to_flat_dict().items():
        log.debug(f"config {key} = {value}")

    surface = MeshSurface.from_file(args.vertices)
    controller = EpisodeController.from_config(cfg, surface)
    try:
        if args.command == "run":
            _cmd_run(args, controller)
        else:
            _cmd_record(args, controller)
    finally:
        controller.close()


if __name__ == "__main__":
    main()
