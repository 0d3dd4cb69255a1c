#!/usr/bin/env python3
"""
MetricForge — Model Comparison Script
=======================================
Builds a comparison report from the metrics CSVs written by the tracker.
The last row of each CSV (the final evaluation) stands for that model.

With ``--pairwise`` and exactly two CSVs, writes a baseline vs candidate
report instead (first CSV = baseline).

Usage:
    python scripts/compare_models.py output/metrics/vgg16_metrics_*.csv \\
        output/metrics/resnet_metrics_*.csv --names VGG16 ResNet
    python scripts/compare_models.py old.csv new.csv --pairwise
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from metricforge.errors import MetricForgeError
from metricforge.metrics.comparison import (
    generate_comparison_report,
    generate_model_comparison_report,
)
from metricforge.metrics.io import read_metrics_csv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def model_name_from_csv(path: Path) -> str:
    """``vgg16_metrics_20240101_120000.csv`` -> ``vgg16``."""
    stem = path.stem
    marker = "_metrics_"
    return stem[: stem.rindex(marker)] if marker in stem else stem


def main(argv=None):
    parser = argparse.ArgumentParser(description="MetricForge Model Comparison")
    parser.add_argument("csvs", nargs="+", help="Metrics CSV files")
    parser.add_argument("--names", nargs="+", default=None,
                        help="Model names (default: derived from file names)")
    parser.add_argument("--output", type=str,
                        default="output/metrics/model_comparison.txt")
    parser.add_argument("--pairwise", action="store_true",
                        help="Baseline vs candidate report for two CSVs")
    args = parser.parse_args(argv)

    paths = [Path(p) for p in args.csvs]
    if args.names is not None and len(args.names) != len(paths):
        parser.error(
            f"--names got {len(args.names)} names for {len(paths)} CSV files"
        )
    if args.pairwise and len(paths) != 2:
        parser.error("--pairwise needs exactly two CSV files")
    names = args.names or [model_name_from_csv(p) for p in paths]

    records = []
    for path in paths:
        try:
            rows = read_metrics_csv(path)
        except (OSError, ValueError) as e:
            logger.error(f"Cannot read {path}: {e}")
            sys.exit(1)
        if not rows:
            logger.error(f"{path} has no metrics rows")
            sys.exit(1)
        records.append(rows[-1])

    try:
        if args.pairwise:
            diff = generate_comparison_report(
                records[0], records[1], args.output,
                baseline_name=names[0], candidate_name=names[1],
            )
            print(diff.report)
        else:
            comparison = generate_model_comparison_report(
                records, names, args.output
            )
            print(comparison.report)
    except MetricForgeError as e:
        logger.error(f"Comparison failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
