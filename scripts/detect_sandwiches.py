#!/usr/bin/env python
"""Detect Solana sandwiches and flag the validators that include them.

This script runs the full analysis over a parquet file of decoded swaps with
the following features:
- Per-block sandwich detection with an audit parquet of every member swap
- Delay-compensating credit smearing over each leader's preceding slots
- Two-metric hypothesis test against the cluster baseline
- Full and filtered validator reports in the fixed 14-column schema
- Markdown summary of the run

Every tunable can also be set through ``SANDWICH_*`` environment variables
(or a ``.env`` file); command line options win.

Example:
    # Basic usage
    $ python scripts/detect_sandwiches.py --input data/processed/swaps.parquet

    # With leader schedule, metadata and manual exclusions
    $ python scripts/detect_sandwiches.py \\
        --input data/processed/swaps.parquet \\
        --blocks data/processed/blocks.parquet \\
        --leader-schedule data/raw/leader_schedule_812.json --epoch 812 \\
        --metadata data/raw/validators.csv \\
        --exclusions data/manual/exclusions.csv

    # Wider smear window with geometric weights
    $ python scripts/detect_sandwiches.py -i swaps.parquet --smear-window 3 --smear-curve geometric
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Any

import pandas as pd

from sandwichsentry.config import AnalysisConfig, ProportionMethod, SmearCurve, load_config
from sandwichsentry.errors import ConfigurationError
from sandwichsentry.models import ValidatorMetadata
from sandwichsentry.pipeline import AnalysisRun, AuditLogSink, run_analysis
from sandwichsentry.processing import epoch_first_slot, expand_leader_schedule
from sandwichsentry.reporting import ExclusionList, metadata_from_frame
from sandwichsentry.validation import BlockValidator

# Configure logging with structured format
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("scripts.detect_sandwiches")


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser with comprehensive options."""
    parser = argparse.ArgumentParser(
        prog="detect_sandwiches",
        description="Detect Solana sandwiches and flag validators that include them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --input data/processed/swaps.parquet
  %(prog)s -i swaps.parquet --blocks blocks.parquet --metadata validators.csv
  %(prog)s -i swaps.parquet --leader-schedule schedule.json --epoch 812
  %(prog)s -i swaps.parquet --confidence 0.999 --method clopper-pearson --verbose
        """,
    )

    # Input options
    parser.add_argument(
        "--input",
        "-i",
        dest="input_path",
        type=str,
        default="data/processed/swaps.parquet",
        help="Decoded swaps parquet file path (default: data/processed/swaps.parquet)",
    )
    input_group = parser.add_argument_group("Input Options")
    input_group.add_argument(
        "--blocks",
        dest="blocks_path",
        type=str,
        default=None,
        help="Parquet of every observed block (slot, leader_identity), including blocks without swaps",
    )
    input_group.add_argument(
        "--leader-schedule",
        dest="schedule_path",
        type=str,
        default=None,
        help="Leader schedule JSON (identity -> epoch-relative slot indexes)",
    )
    input_group.add_argument(
        "--epoch",
        type=int,
        default=None,
        help="Epoch of the leader schedule (relative indexes start at its first slot)",
    )
    input_group.add_argument(
        "--metadata",
        dest="metadata_path",
        type=str,
        default=None,
        help="Validator metadata CSV (identity, vote_account, name)",
    )
    input_group.add_argument(
        "--exclusions",
        dest="exclusions_path",
        type=str,
        default=None,
        help="Manual exclusion CSV (identity, reason)",
    )

    # Output options
    output_group = parser.add_argument_group("Output Options")
    output_group.add_argument(
        "--sandwiches",
        dest="sandwiches_path",
        type=str,
        default="data/results/sandwiches.parquet",
        help="Sandwich audit parquet path (default: data/results/sandwiches.parquet)",
    )
    output_group.add_argument(
        "--output",
        "-o",
        dest="report_full_path",
        type=str,
        default="data/results/validator_report.parquet",
        help="Full validator report parquet path",
    )
    output_group.add_argument(
        "--filtered-output",
        dest="report_filtered_path",
        type=str,
        default="data/results/validator_report_filtered.parquet",
        help="Filtered validator report parquet path",
    )
    output_group.add_argument(
        "--report",
        "-r",
        dest="summary_path",
        type=str,
        default="data/results/DETECTION_REPORT.md",
        help="Markdown summary file path",
    )

    # Analysis options
    analysis_group = parser.add_argument_group("Analysis Options")
    analysis_group.add_argument(
        "--confidence",
        type=float,
        default=None,
        help="Two-sided confidence level for both tests (default: 0.9999)",
    )
    analysis_group.add_argument(
        "--method",
        choices=[m.value for m in ProportionMethod],
        default=None,
        help="Proportion interval estimator (default: wilson)",
    )
    analysis_group.add_argument(
        "--smear-window",
        type=int,
        default=None,
        help="Preceding own-leader slots that receive credit (default: 1)",
    )
    analysis_group.add_argument(
        "--smear-curve",
        choices=[c.value for c in SmearCurve],
        default=None,
        help="Weight curve over the smear window (default: uniform)",
    )
    analysis_group.add_argument(
        "--min-report-slots",
        type=int,
        default=None,
        help="Minimum observed slots for the filtered report (default: 50)",
    )
    analysis_group.add_argument(
        "--prefer-same-signer",
        action="store_true",
        default=None,
        help="Prefer backruns signed by the frontrunner",
    )
    analysis_group.add_argument(
        "--workers",
        "-w",
        type=int,
        default=None,
        help="Worker threads for per-block detection (default: 1)",
    )

    # Logging options
    logging_group = parser.add_argument_group("Logging Options")
    logging_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    logging_group.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress non-error output",
    )

    return parser


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging level based on arguments."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")
    elif quiet:
        logging.getLogger().setLevel(logging.WARNING)


def build_config(parsed: argparse.Namespace) -> AnalysisConfig:
    """Merge command line options over the environment configuration."""
    overrides: dict[str, Any] = {
        "confidence_level": parsed.confidence,
        "proportion_method": parsed.method,
        "smear_window": parsed.smear_window,
        "smear_curve": parsed.smear_curve,
        "min_report_slots": parsed.min_report_slots,
        "prefer_same_signer_backrun": parsed.prefer_same_signer,
        "workers": parsed.workers,
    }
    try:
        return load_config(**{k: v for k, v in overrides.items() if v is not None})
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        raise SystemExit(1) from e


def validate_input_file(path: Path) -> None:
    """Validate that input file exists and is readable."""
    if not path.exists():
        logger.error("Input file not found: %s", path)
        raise SystemExit(1)

    if not path.is_file():
        logger.error("Input path is not a file: %s", path)
        raise SystemExit(1)

    logger.info("Input file validated: %s", path)


def load_frame(path: Path) -> pd.DataFrame:
    """Load a parquet or CSV file with error handling."""
    try:
        logger.info("Loading data from %s", path)
        if path.suffix.lower() == ".csv":
            df = pd.read_csv(path)
        else:
            df = pd.read_parquet(path)
        logger.info("Loaded %d rows with %d columns", len(df), len(df.columns))
        return df
    except Exception as e:
        logger.error("Failed to load %s: %s", path, e)
        raise SystemExit(1) from e


def load_leader_schedule(path: Path, epoch: int | None) -> dict[int, str]:
    """Load a ``getLeaderSchedule`` JSON document into ``slot -> leader``."""
    try:
        schedule = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load leader schedule %s: %s", path, e)
        raise SystemExit(1) from e
    first_slot = epoch_first_slot(epoch) if epoch is not None else 0
    slot_leaders = expand_leader_schedule(schedule, first_slot=first_slot)
    logger.info("Leader schedule: %d slots for %d leaders", len(slot_leaders), len(schedule))
    return slot_leaders


def load_block_leaders(path: Path) -> dict[int, str]:
    """Load ``slot -> leader`` for every observed block."""
    frame = load_frame(path)
    missing = {"slot", "leader_identity"} - set(frame.columns)
    if missing:
        logger.error("Blocks file is missing columns: %s", ", ".join(sorted(missing)))
        raise SystemExit(1)
    frame = frame.dropna(subset=["slot", "leader_identity"])
    return {int(slot): str(leader).strip() for slot, leader in zip(frame["slot"], frame["leader_identity"])}


def save_data(df: pd.DataFrame, path: Path) -> None:
    """Save DataFrame to parquet with directory creation."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Saving %d rows to %s", len(df), path)
        df.to_parquet(path, index=False)
        logger.info("Data saved successfully")
    except Exception as e:
        logger.error("Failed to save parquet file: %s", e)
        raise SystemExit(1) from e


def save_report(report: str, path: Path) -> None:
    """Save detection report to markdown file."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(report, encoding="utf-8")
        logger.info("Report saved to %s", path)
    except Exception as e:
        logger.error("Failed to save report: %s", e)


def _short(key: str | None) -> str:
    if not key:
        return "-"
    return f"{key[:6]}...{key[-4:]}"


def generate_detection_report(run: AnalysisRun, elapsed_time: float) -> str:
    """Generate markdown report from an analysis run.

    Args:
        run: Result of :func:`run_analysis`.
        elapsed_time: Wall-clock time of the whole script in seconds.

    Returns:
        Formatted markdown string.
    """
    baseline = run.aggregation.baseline
    config = run.config
    lines = [
        "# Sandwich Detection Report",
        "",
        "## Configuration",
        "",
        f"- **Confidence Level**: {config.confidence_level:.4%}",
        f"- **Proportion Interval**: {config.proportion_method.value}",
        f"- **Smear Weights**: {', '.join(f'{w:.3f}' for w in config.weights)}",
        f"- **Minimum Report Slots**: {config.min_report_slots}",
        f"- **Processing Time**: {elapsed_time:.2f} seconds",
        "",
        "## Summary Statistics",
        "",
        f"- **Blocks Analyzed**: {baseline.total_blocks:,}",
        f"- **Blocks Rejected**: {run.validation.invalid_records:,}",
        f"- **Sandwiches Detected**: {run.sandwich_count:,}",
        f"- **Sandwich-Inclusive Blocks**: {baseline.sandwich_inclusive_blocks:,}",
        f"- **Cluster Proportion**: {baseline.proportion:.5f}",
        f"- **Sandwiches per Block**: {baseline.mean_sandwiches_per_block:.5f} "
        f"(std {baseline.std_dev_sandwiches_per_block:.5f})",
        f"- **Dropped Credit at Range Start**: {run.credit.dropped_count:.3f}",
        f"- **Validators Evaluated**: {len(run.flagging.assessments):,}",
        f"- **Validators Flagged**: {run.report.flagged_count:,}",
        f"- **Filtered Report Rows**: {len(run.report.filtered):,}",
        "",
    ]

    if run.validation.validation_errors:
        lines.extend([
            "## Rejected Blocks",
            "",
        ])
        for error in run.validation.validation_errors[:10]:
            lines.append(f"- {error}")
        if len(run.validation.validation_errors) > 10:
            lines.append(f"- ... and {len(run.validation.validation_errors) - 10} more")
        lines.append("")

    if run.report.filtered:
        lines.extend([
            "## Flagged Validators",
            "",
            "| Leader | Name | Slots | Sc | Sc_p | Sc_p lb | Sc ub |",
            "|--------|------|-------|----|------|---------|-------|",
        ])
        for record in run.report.filtered:
            lines.append(
                f"| {_short(record.identity)} | {record.name or '-'} | {record.slots:,} | "
                f"{record.sc:.4f} | {record.sc_p:.4f} | {record.sc_p_lower:.4f} | {record.sc_upper:.4f} |"
            )
        lines.append("")

    if run.report.excluded:
        lines.extend([
            "## Flagged but Excluded",
            "",
        ])
        for identity, reason in sorted(run.report.excluded.items()):
            lines.append(f"- {_short(identity)}: {reason}")
        lines.append("")

    return "\n".join(lines)


def print_summary(run: AnalysisRun, paths: list[Path], elapsed_time: float) -> None:
    """Print detection summary to console."""
    baseline = run.aggregation.baseline
    print("\n" + "=" * 60)
    print("Sandwich Detection Summary")
    print("=" * 60)
    print(f"Blocks analyzed:    {baseline.total_blocks:,}")
    print(f"Blocks rejected:    {run.validation.invalid_records:,}")
    print(f"Sandwiches found:   {run.sandwich_count:,}")
    print(f"Cluster proportion: {baseline.proportion:.5f}")
    print(f"Validators flagged: {run.report.flagged_count:,}")
    print(f"Filtered rows:      {len(run.report.filtered):,}")
    print(f"Processing time:    {elapsed_time:.2f}s")
    print("-" * 60)
    for path in paths:
        print(f"Output file:        {path}")
    print("=" * 60 + "\n")


def main() -> int:
    """Main entry point for the detection script."""
    parser = create_parser()
    parsed = parser.parse_args()

    # Setup logging
    setup_logging(parsed.verbose, parsed.quiet)
    config = build_config(parsed)

    # Resolve paths
    input_path = Path(parsed.input_path)
    sandwiches_path = Path(parsed.sandwiches_path)
    report_full_path = Path(parsed.report_full_path)
    report_filtered_path = Path(parsed.report_filtered_path)
    summary_path = Path(parsed.summary_path)

    logger.info("=" * 60)
    logger.info("Sandwich Sentry - Sandwich Detection and Validator Flagging")
    logger.info("=" * 60)

    validate_input_file(input_path)
    df = load_frame(input_path)

    leader_schedule = None
    if parsed.schedule_path:
        leader_schedule = load_leader_schedule(Path(parsed.schedule_path), parsed.epoch)
    block_leaders = load_block_leaders(Path(parsed.blocks_path)) if parsed.blocks_path else None

    metadata: dict[str, ValidatorMetadata] = {}
    if parsed.metadata_path:
        metadata = metadata_from_frame(load_frame(Path(parsed.metadata_path)))
        logger.info("Loaded metadata for %d validators", len(metadata))
    exclusions = ExclusionList()
    if parsed.exclusions_path:
        exclusions = ExclusionList.from_frame(load_frame(Path(parsed.exclusions_path)))
        logger.info("Loaded %d manual exclusions", len(exclusions))

    start_time = time.time()

    try:
        validation = BlockValidator().validate_frame(
            df,
            leader_schedule=leader_schedule,
            block_leaders=block_leaders,
        )
    except ValueError as e:
        logger.error("Cannot build blocks: %s", e)
        raise SystemExit(1) from e

    if not validation.blocks:
        logger.warning("No valid blocks to analyse")
        return 0

    sink = AuditLogSink()
    run = run_analysis(
        validation.blocks,
        config=config,
        metadata=metadata,
        exclusions=exclusions,
        sink=sink,
    )
    # rows rejected while assembling blocks never reach run_analysis
    if validation.rejected_slots:
        run = replace(run, validation=validation)

    elapsed_time = time.time() - start_time

    save_data(sink.to_dataframe(), sandwiches_path)
    save_data(run.report.full_frame(), report_full_path)
    save_data(run.report.filtered_frame(), report_filtered_path)

    report = generate_detection_report(run, elapsed_time)
    save_report(report, summary_path)

    if not parsed.quiet:
        print_summary(run, [sandwiches_path, report_full_path, report_filtered_path, summary_path], elapsed_time)

    return 0


if __name__ == "__main__":
    sys.exit(main())
