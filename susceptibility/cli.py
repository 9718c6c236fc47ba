"""
Command Line Interface
======================

    susceptibility run --config studies/landslide_example.json [--output DIR]
                       [--scheme three_class|five_class] [--no-figures]
                       [--log-level LEVEL]
    susceptibility config
"""

import argparse
import copy
import sys
from pathlib import Path

from susceptibility import config as settings
from susceptibility.pipeline import SusceptibilityPipeline
from susceptibility.utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="susceptibility",
        description="Random-forest landslide susceptibility and groundwater potential mapping"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run a study end to end")
    run.add_argument("--config", required=True, type=Path, help="Study JSON file")
    run.add_argument("--output", type=Path, default=None, help="Output directory (overrides the study file)")
    run.add_argument("--scheme", choices=sorted(settings.CLASSIFICATION_SCHEMES), default=None,
                     help="Classification scheme (overrides the profile default)")
    run.add_argument("--no-figures", action="store_true", help="Skip figure generation")
    run.add_argument("--log-level", default=settings.LOGGING['level'],
                     choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    subparsers.add_parser("config", help="Print the default configuration")
    return parser


def apply_overrides(study: dict, args: argparse.Namespace) -> dict:
    """Command-line options take precedence over the study file."""
    study = dict(study)
    if args.output is not None:
        study['output_dir'] = args.output.absolute()
    if args.scheme is not None:
        study['scheme_name'] = args.scheme
        study['scheme'] = copy.deepcopy(settings.CLASSIFICATION_SCHEMES[args.scheme])
    if args.no_figures:
        study['figures'] = False
    return study


def run_study(args: argparse.Namespace) -> int:
    # Output directory is only known once the study file is read
    logger = setup_logging(level=args.log_level, format_string=settings.LOGGING['format'])
    try:
        study = apply_overrides(settings.load_study_config(args.config), args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid study configuration: {e}")
        return 2

    logger = setup_logging(
        log_file=Path(study['output_dir']) / settings.LOGGING['file_name'],
        level=args.log_level,
        format_string=settings.LOGGING['format']
    )

    try:
        SusceptibilityPipeline(study).run()
    except (OSError, ValueError, KeyError) as e:
        logger.error(f"Run failed: {e}")
        return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "config":
        settings.print_config()
        return 0
    return run_study(args)


if __name__ == "__main__":
    sys.exit(main())
