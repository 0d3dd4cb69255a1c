#!/usr/bin/env python3
"""
MetricForge — Training Script
===============================
Trains a baseline classifier on pre-extracted features, tracking metrics
every N epochs, then evaluates it on the held-out split and checks it
against the configured thresholds.

Input is an ``.npz`` file with two arrays:
    features : (N, ...) float features (MFCCs, spectrogram frames, pixels)
    labels   : (N,) class indices or (N, C) one-hot rows

Usage:
    python scripts/train.py --config configs/default.yaml --data features.npz
    python scripts/train.py --properties config.properties --data features.npz
    python scripts/train.py --data speech.npz noise.npz --normalize --augment-noise 0.05
    python scripts/train.py --smoke-test
"""

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import numpy as np
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from metricforge.config import MetricForgeConfig
from metricforge.data.processing import augment_with_noise, combine, normalize
from metricforge.data.sources import LoaderSource
from metricforge.data.splitter import TrainTestSplitter
from metricforge.evaluation.evaluator import ModelEvaluator
from metricforge.metrics.tracker import MetricsTracker
from metricforge.telemetry import Telemetry
from metricforge.training.trainer import ClassifierTrainer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def load_features(path: Path) -> tuple[np.ndarray, np.ndarray]:
    """Load ``features`` and ``labels`` arrays from an .npz file."""
    if not path.exists():
        raise FileNotFoundError(f"Feature file not found: {path}")
    with np.load(path) as data:
        return data["features"].astype(np.float32), data["labels"]


def synthetic_features(
    n: int, dim: int, num_classes: int, seed: int
) -> tuple[np.ndarray, np.ndarray]:
    """Separable Gaussian blobs, one per class, for smoke testing."""
    rng = np.random.default_rng(seed)
    labels = rng.integers(0, num_classes, size=n)
    centers = rng.normal(0.0, 3.0, size=(num_classes, dim))
    features = centers[labels] + rng.normal(0.0, 1.0, size=(n, dim))
    return features.astype(np.float32), labels


def build_classifier(input_dim: int, num_classes: int, hidden: int = 64) -> nn.Module:
    """Small MLP used when no model is supplied."""
    return nn.Sequential(
        nn.Flatten(),
        nn.Linear(input_dim, hidden),
        nn.ReLU(),
        nn.Linear(hidden, num_classes),
    )


def main():
    parser = argparse.ArgumentParser(
        description="MetricForge Training",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Train on extracted MFCC features:
    python scripts/train.py --config configs/default.yaml --data mfcc.npz

    # Quick smoke test on synthetic data:
    python scripts/train.py --smoke-test
        """,
    )
    parser.add_argument("--config", type=str, default="configs/default.yaml")
    parser.add_argument("--properties", type=str, default=None,
                        help="Load a key=value properties file instead of YAML")
    parser.add_argument("--data", type=str, nargs="+", default=None,
                        help=".npz file(s) with 'features' and 'labels'; "
                             "several files are combined")
    parser.add_argument("--normalize", action="store_true",
                        help="Z-score features with training-split statistics")
    parser.add_argument("--augment-noise", type=float, default=0.0,
                        help="Add a Gaussian-noise copy of the training split "
                             "with this standard deviation")
    parser.add_argument("--smoke-test", action="store_true")
    parser.add_argument("--output-dir", type=str, default="outputs")
    parser.add_argument("--epochs", type=int, default=None)
    parser.add_argument("--progress", action="store_true",
                        help="Show progress bars during evaluation")
    args = parser.parse_args()

    # Load config
    if args.smoke_test:
        config = MetricForgeConfig.for_smoke_test()
    elif args.properties:
        config = MetricForgeConfig.from_properties_file(args.properties)
    else:
        config = MetricForgeConfig.from_yaml(args.config)
    logger.info(f"\n{config}")

    torch.manual_seed(config.training.seed)

    # Load data
    if args.data:
        features, labels = combine([load_features(Path(p)) for p in args.data])
    elif args.smoke_test:
        features, labels = synthetic_features(
            200, 16, config.model.num_classes, config.training.seed
        )
    else:
        parser.error("--data is required unless --smoke-test is given")

    splitter = TrainTestSplitter(seed=config.training.seed)
    (x_train, y_train), (x_test, y_test) = splitter.split_arrays(
        features, labels, config.training.train_ratio
    )

    if args.normalize:
        x_train, mean, std = normalize(x_train)
        x_test, _, _ = normalize(x_test, mean, std)
    if args.augment_noise > 0:
        x_train, y_train = combine([
            (x_train, y_train),
            augment_with_noise(
                x_train, y_train, args.augment_noise, seed=config.training.seed
            ),
        ])

    train_loader = DataLoader(
        TensorDataset(torch.from_numpy(x_train), torch.as_tensor(y_train)),
        batch_size=config.training.batch_size,
        shuffle=True,
    )
    test_source = LoaderSource.from_arrays(
        x_test, y_test, batch_size=config.training.batch_size
    )

    input_dim = int(np.prod(x_train.shape[1:]))
    model = build_classifier(input_dim, config.model.num_classes)

    output_dir = Path(args.output_dir)
    with Telemetry.from_config(config) as telemetry:
        tracker = MetricsTracker.from_config(
            config, test_source, telemetry=telemetry, show_progress=args.progress
        )
        trainer = ClassifierTrainer(model, config, train_loader, tracker)
        results = trainer.train(epochs=args.epochs, output_dir=str(output_dir))
        tracker.close()

    print(tracker.generate_progress_report())

    evaluator = ModelEvaluator(config, show_progress=args.progress)
    record = evaluator.evaluate(trainer.model, test_source)
    print(record.detailed_report())
    thresholds_csv = evaluator.export_optimal_thresholds()
    passed = evaluator.validate_against_thresholds(record)

    summary = {
        "model": config.model.name,
        "epochs_completed": results["epochs_completed"],
        "train_losses": results["train_losses"],
        "total_time_seconds": results["total_time_seconds"],
        "checkpoint": results["checkpoint"],
        "metrics_csv": str(tracker.metrics_path),
        "evaluation_report": str(evaluator.last_report_path),
        "optimal_thresholds": str(thresholds_csv) if thresholds_csv else None,
        "test_metrics": record.metric_values(),
        "passed_thresholds": passed,
    }
    output_dir.mkdir(parents=True, exist_ok=True)
    with open(output_dir / f"{config.model.name}_training_results.json", "w") as f:
        json.dump(summary, f, indent=2)

    logger.info(
        f"[{config.model.name}] Done: accuracy={record.accuracy:.4f}, "
        f"thresholds {'passed' if passed else 'FAILED'}"
    )
    sys.exit(0 if passed else 1)


if __name__ == "__main__":
    main()
