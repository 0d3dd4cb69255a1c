"""
MetricForge Evaluator
======================
One-shot evaluation of a trained classifier on held-out test data.

What Gets Produced:
    1. An aggregate MetricRecord (epoch 0, elapsed = evaluation time),
       with a ClassMetric per class
    2. A text report with the global metrics, the confusion matrix,
       the per-class breakdown and, for score-producing models, the
       one-vs-rest AUC and optimal threshold of each class:
           <output_dir>/<model>_evaluation_report_<yyyyMMdd_HHmmss>.txt
    3. On request, the per-class thresholds as CSV:
           <output_dir>/<model>_optimal_thresholds_<yyyyMMdd_HHmmss>.csv
    4. A threshold verdict against the configured minimums

Usage:
    >>> evaluator = ModelEvaluator(config)
    >>> record = evaluator.evaluate(model, LoaderSource(test_loader))
    >>> evaluator.export_optimal_thresholds()
    >>> evaluator.validate_against_thresholds(record)
    True
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from tqdm import tqdm

from metricforge.config import MetricForgeConfig
from metricforge.data.sources import LoaderSource, ValidationSource
from metricforge.errors import InvalidArgumentError
from metricforge.evaluation.outputs import as_model_output
from metricforge.evaluation.statistics import EvaluationStats
from metricforge.metrics.io import write_text_atomic
from metricforge.metrics.record import MetricRecord
from metricforge.metrics.thresholds import ThresholdSet, check_thresholds

logger = logging.getLogger(__name__)

THRESHOLDS_HEADER = "Class,OptimalThreshold,AUC"


def _format_auc(value: Optional[float], digits: int = 4) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


class ModelEvaluator:
    """
    Test-set evaluation and reporting for MetricForge classifiers.

    Parameters
    ----------
    config : MetricForgeConfig
        Full configuration. ``model.num_classes``, ``model.class_names``,
        ``metrics.output_dir`` and the thresholds are used.
    show_progress : bool
        Show a tqdm bar over test batches.
    """

    def __init__(self, config: MetricForgeConfig, show_progress: bool = False):
        self.config = config
        self.show_progress = show_progress
        self.thresholds = ThresholdSet.from_config(config)
        self.last_stats: Optional[EvaluationStats] = None
        self.last_report_path: Optional[Path] = None
        self._last_names: Optional[Sequence[str]] = None

    def evaluate(
        self,
        model: Any,
        source: Any,
        model_name: Optional[str] = None,
        class_names: Optional[Sequence[str]] = None,
        write_report: bool = True,
    ) -> MetricRecord:
        """
        Run the model over every batch of ``source`` once.

        Parameters
        ----------
        model : nn.Module or ModelOutput
            The trained model.
        source : ValidationSource or iterable
            Test batches of ``(features, labels)``.
        model_name : str or None
            Defaults to ``config.model.name``.
        class_names : sequence of str or None
            Defaults to ``config.model.class_names``.
        write_report : bool
            Write the evaluation report file.

        Returns
        -------
        MetricRecord
            Aggregate metrics at epoch 0.

        Raises
        ------
        UnsupportedModelError
            If ``model`` cannot be evaluated.
        MetricsExportError
            If the report cannot be written.
        """
        name = model_name or self.config.model.name
        names = class_names or self.config.model.class_names or None
        network = as_model_output(model)
        if not isinstance(source, ValidationSource):
            source = LoaderSource(source)

        logger.info(f"[{name}] Evaluating on test data...")
        stats = EvaluationStats(self.config.model.num_classes)
        start = time.perf_counter()

        source.reset()
        for features, labels in tqdm(
            self._batches(source),
            desc=f"[{name}] test",
            unit="batch",
            disable=not self.show_progress,
        ):
            stats.update(labels, network.compute_output(features))

        elapsed_millis = int((time.perf_counter() - start) * 1000)
        record = stats.to_record(0, elapsed_millis, names)
        self.last_stats = stats
        self._last_names = names

        logger.info(
            f"[{name}] Test metrics over {stats.num_samples} samples: {record}"
        )

        if write_report:
            self.last_report_path = self._write_report(name, record, stats)

        return record

    @staticmethod
    def _batches(source: ValidationSource):
        while source.has_next():
            yield source.next()

    def _write_report(
        self, name: str, record: MetricRecord, stats: EvaluationStats
    ) -> Path:
        """Write the evaluation report next to the metrics CSVs."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = (
            Path(self.config.metrics.output_dir)
            / f"{name}_evaluation_report_{timestamp}.txt"
        )

        lines = [
            f"Evaluation Report: {name}",
            "=" * 60,
            f"Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "Global Metrics",
            "-" * 60,
            stats.stats_report(),
            "",
            "Per-Class Metrics",
            "-" * 60,
        ]
        for index in sorted(record.per_class_metrics):
            metric = record.per_class_metrics[index]
            lines.append(
                f"{metric.class_name} (index {index}): "
                f"precision={metric.precision:.4f}, "
                f"recall={metric.recall:.4f}, "
                f"f1={metric.f1_score:.4f}, "
                f"TP={metric.true_positives}, FP={metric.false_positives}, "
                f"FN={metric.false_negatives}, support={metric.support}"
            )

        if stats.has_scores:
            lines += ["", "ROC (one-vs-rest)", "-" * 60]
            for index in sorted(record.per_class_metrics):
                metric = record.per_class_metrics[index]
                lines.append(
                    f"{metric.class_name} (index {index}): "
                    f"AUC={_format_auc(stats.auc(index))}, "
                    f"optimal threshold={stats.optimal_threshold(index):.4f}"
                )

        lines.append("")
        lines.append(f"Evaluation Time: {record.elapsed_millis} ms")

        written = write_text_atomic(path, "\n".join(lines) + "\n")
        logger.info(f"[{name}] Evaluation report saved to {written}")
        return written

    def export_optimal_thresholds(
        self,
        model_name: Optional[str] = None,
        stats: Optional[EvaluationStats] = None,
        class_names: Optional[Sequence[str]] = None,
    ) -> Optional[Path]:
        """
        Write one ``Class,OptimalThreshold,AUC`` row per class.

        Uses the statistics of the last ``evaluate`` call unless ``stats``
        is given. Classes are named by ``class_names`` where available and
        by index otherwise; an undefined AUC is written as ``nan``.

        Returns
        -------
        Path or None
            The CSV path, or None when the evaluated model produced no
            scores (index outputs carry no ROC information).

        Raises
        ------
        InvalidArgumentError
            If nothing has been evaluated yet.
        MetricsExportError
            If the file cannot be written.
        """
        stats = stats or self.last_stats
        if stats is None:
            raise InvalidArgumentError(
                "No evaluation to export thresholds from; call evaluate() first"
            )
        name = model_name or self.config.model.name
        if not stats.has_scores:
            logger.warning(
                f"[{name}] Model produced no scores; optimal thresholds not exported"
            )
            return None

        names = class_names or self._last_names
        rows = [THRESHOLDS_HEADER]
        for index in range(stats.num_classes):
            label = names[index] if names and index < len(names) else str(index)
            auc = stats.auc(index)
            rows.append(
                f"{label},{stats.optimal_threshold(index):.6f},"
                f"{float('nan') if auc is None else auc:.6f}"
            )

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = (
            Path(self.config.metrics.output_dir)
            / f"{name}_optimal_thresholds_{timestamp}.csv"
        )
        written = write_text_atomic(path, "\n".join(rows) + "\n")
        logger.info(f"[{name}] Optimal thresholds exported to {written}")
        return written

    def validate_against_thresholds(
        self,
        record: Optional[MetricRecord],
        model_name: Optional[str] = None,
    ) -> bool:
        """Check ``record`` against the configured thresholds."""
        return check_thresholds(
            record, self.thresholds, model_name or self.config.model.name
        )
