"""Command line entry point: ``cristae-density prepare|analyze|export|summary``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cristae_density import workflow
from cristae_density.artifacts import ArtifactStore
from cristae_density.config import DEFAULT_CONFIG, ProjectConfig, load_config, with_overrides
from cristae_density.errors import ConfigurationError
from cristae_density.logger import detach_handler, get_logger, log_to_file, set_level

LOGGER = get_logger(__name__)

LOG_FILE = "cristae_density.log"


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cristae-density",
        description="Linear-intercept cristae density measurement on segmented mitochondria.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    # accepted after the sub-command too; SUPPRESS keeps a top-level -v from being reset
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS, help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    prep = subparsers.add_parser("prepare", parents=[common], help="Crop regions and compute probability maps")
    prep.add_argument("image", type=Path, help="Source TIFF image")
    prep.add_argument("catalog", type=Path, help="Region catalog (JSON)")
    prep.add_argument("model", type=Path, help="Segmentation model file")
    prep.add_argument("output", type=Path, help="Output root directory")
    prep.add_argument("--padding", type=int, default=None, help="Crop padding in pixels (default: 20)")
    prep.add_argument("--attempts", type=int, default=None, help="Attempts per region (default: 2)")
    prep.add_argument("--load-timeout", type=float, default=None, help="Model load timeout in seconds")
    prep.add_argument("--compute-timeout", type=float, default=None, help="Probability timeout in seconds")
    prep.add_argument("--config", type=Path, default=None, help="JSON config file")

    ana = subparsers.add_parser("analyze", parents=[common], help="Count cristae interactively")
    ana.add_argument("output", type=Path, help="Output root written by prepare")
    ana.add_argument("--threshold", type=float, default=None, help="Peak threshold, 8-bit range (default: 128)")
    ana.add_argument("--min-width", type=int, default=None, help="Minimum peak width in samples")
    ana.add_argument("--min-distance", type=int, default=None, help="Minimum distance between peaks")
    ana.add_argument("--start-index", type=int, default=None, help="Catalog index to start from")
    ana.add_argument("--config", type=Path, default=None, help="JSON config file")

    exp = subparsers.add_parser("export", parents=[common], help="Copy the results table")
    exp.add_argument("output", type=Path, help="Output root")
    exp.add_argument("destination", type=Path, help="Destination CSV path")

    summ = subparsers.add_parser("summary", parents=[common], help="Print result statistics")
    summ.add_argument("output", type=Path, help="Output root")
    return parser


def _base_config(args: argparse.Namespace) -> ProjectConfig:
    if getattr(args, "config", None) is not None:
        return load_config(args.config)
    return DEFAULT_CONFIG


def cmd_prepare(args: argparse.Namespace) -> int:
    config = _base_config(args)
    config = with_overrides(
        config,
        prepare=with_overrides(
            config.prepare,
            padding=args.padding,
            max_attempts=args.attempts,
            load_timeout_s=args.load_timeout,
            compute_timeout_s=args.compute_timeout,
        ),
    )
    report = workflow.prepare(args.image, args.catalog, args.model, args.output, config, log_file=LOG_FILE)
    print(report.summary_text())
    return 0


def cmd_analyze(args: argparse.Namespace) -> int:
    import matplotlib.pyplot as plt

    from cristae_density.gui_session import DialogInput
    from cristae_density.render_mpl import FigureOutput

    config = _base_config(args)
    config = with_overrides(
        config,
        counting=with_overrides(
            config.counting,
            threshold=args.threshold,
            min_width=args.min_width,
            min_distance=args.min_distance,
        ),
    )
    handler = log_to_file(args.output / LOG_FILE) if args.output.is_dir() else None
    fig, ax = plt.subplots(figsize=(7, 7))
    plt.show(block=False)
    try:
        report = workflow.analyze(
            args.output,
            DialogInput(fig),
            FigureOutput(ax),
            config,
            start_index=args.start_index,
        )
    finally:
        plt.close(fig)
        detach_handler(handler)
    print(
        f"accepted={len(report.accepted)} skipped={len(report.skipped)} "
        f"missing={len(report.missing)} finished={report.finished}"
    )
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    dest = workflow.export(args.output, args.destination)
    print(dest)
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    store = ArtifactStore(args.output)
    if not store.results_path.is_file():
        raise ConfigurationError(f"No results table in {store.root}")
    stats = workflow.open_results(args.output).summary()
    for key, value in stats.items():
        print(f"{key}: {value}")
    return 0


COMMANDS = {
    "prepare": cmd_prepare,
    "analyze": cmd_analyze,
    "export": cmd_export,
    "summary": cmd_summary,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    set_level(logging.DEBUG if args.verbose else logging.INFO)

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0
    try:
        return command(args)
    except ConfigurationError as exc:
        LOGGER.error("%s", exc.format_user_message())
        return 2
    except Exception:
        LOGGER.exception("Unexpected failure in '%s'", args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
