"""
MetricForge Metrics Tracker
============================
Hooks into a training loop and, every ``evaluation_frequency`` epochs,
runs the model over the validation data, records a ``MetricRecord`` and
re-exports the metrics CSVs.

Lifecycle:

    IDLE ──on_epoch_end──▶ TRACKING ──close()──▶ CLOSED

    - IDLE:     created, nothing recorded yet
    - TRACKING: at least one epoch reported
    - CLOSED:   final export done; further epochs are rejected

Timing:
    ``elapsed_millis`` of a record is the wall time between the previous
    evaluation (or the tracker's creation) and the start of this one, so it
    measures training, not evaluation.

Files (timestamp fixed when the tracker is created, so every export of a
run overwrites the same two files):

    <output_dir>/<model>_metrics_<yyyyMMdd_HHmmss>.csv
    <output_dir>/<model>_class_metrics_<yyyyMMdd_HHmmss>.csv

Usage:
    >>> tracker = MetricsTracker(val_source, num_classes=3,
    ...                          evaluation_frequency=2,
    ...                          output_dir="output/metrics",
    ...                          model_name="vgg16")
    >>> for epoch in range(1, epochs + 1):
    ...     train_one_epoch()
    ...     tracker.on_epoch_end(model, epoch)
    >>> tracker.close()
"""

from __future__ import annotations

import enum
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from tqdm import tqdm

from metricforge.data.sources import LoaderSource, ValidationSource
from metricforge.errors import (
    InvalidArgumentError,
    MetricsExportError,
    TrackerClosedError,
)
from metricforge.evaluation.outputs import ModelOutput, as_model_output
from metricforge.evaluation.statistics import EvaluationStats
from metricforge.metrics import io
from metricforge.metrics.record import MetricRecord
from metricforge.telemetry import Telemetry

logger = logging.getLogger(__name__)


class TrackerState(enum.Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    CLOSED = "closed"


class MetricsTracker:
    """
    Periodic evaluator and recorder of classification metrics.

    Parameters
    ----------
    validation_source : ValidationSource, iterable or None
        Where validation batches come from. Plain iterables (e.g. a
        ``DataLoader``) are wrapped in ``LoaderSource``. With ``None`` the
        tracker logs a warning at each evaluation point and records nothing.
    num_classes : int
        Number of classes the model predicts (>= 2).
    evaluation_frequency : int
        Evaluate when ``epoch % evaluation_frequency == 0``. Values <= 0 are
        treated as 1.
    output_dir : str
        Directory for the CSV files.
    model_name : str
        Prefix for output files and log lines.
    class_names : sequence of str or None
        Optional labels for the per-class metrics.
    telemetry : Telemetry or None
        Where to forward each record. Defaults to a disabled handle.
    show_progress : bool
        Show a tqdm bar over validation batches.
    """

    def __init__(
        self,
        validation_source: Any,
        num_classes: int,
        evaluation_frequency: int = 1,
        output_dir: str = "output/metrics",
        model_name: str = "model",
        class_names: Optional[Sequence[str]] = None,
        telemetry: Optional[Telemetry] = None,
        show_progress: bool = False,
    ):
        if num_classes < 2:
            raise InvalidArgumentError(
                f"num_classes must be >= 2, got {num_classes}"
            )
        if evaluation_frequency <= 0:
            logger.warning(
                f"[{model_name}] evaluation_frequency={evaluation_frequency} "
                f"is not positive; using 1"
            )
            evaluation_frequency = 1

        if validation_source is not None and not isinstance(
            validation_source, ValidationSource
        ):
            validation_source = LoaderSource(validation_source)

        self.validation_source = validation_source
        self.num_classes = num_classes
        self.evaluation_frequency = evaluation_frequency
        self.output_dir = Path(output_dir)
        self.model_name = model_name
        self.class_names = list(class_names) if class_names else None
        self.telemetry = telemetry or Telemetry.disabled()
        self.show_progress = show_progress

        self.timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.state = TrackerState.IDLE
        self._records: list[MetricRecord] = []
        self._last_evaluation = time.perf_counter()

        logger.info(
            f"[{model_name}] Metrics tracker ready: {num_classes} classes, "
            f"evaluating every {evaluation_frequency} epoch(s) -> {self.output_dir}"
        )

    @classmethod
    def from_config(
        cls,
        config,
        validation_source: Any,
        telemetry: Optional[Telemetry] = None,
        show_progress: bool = False,
    ) -> MetricsTracker:
        """Build a tracker from a ``MetricForgeConfig``."""
        return cls(
            validation_source,
            num_classes=config.model.num_classes,
            evaluation_frequency=config.metrics.evaluation_frequency,
            output_dir=config.metrics.output_dir,
            model_name=config.model.name,
            class_names=config.model.class_names or None,
            telemetry=telemetry,
            show_progress=show_progress,
        )

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def metrics_path(self) -> Path:
        return self.output_dir / f"{self.model_name}_metrics_{self.timestamp}.csv"

    @property
    def class_metrics_path(self) -> Path:
        return (
            self.output_dir
            / f"{self.model_name}_class_metrics_{self.timestamp}.csv"
        )

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    @property
    def metrics(self) -> tuple[MetricRecord, ...]:
        """All records so far, oldest first."""
        return tuple(self._records)

    def on_epoch_end(self, model: Any, epoch: int) -> Optional[MetricRecord]:
        """
        Report the end of an epoch; evaluate if it is an evaluation point.

        Parameters
        ----------
        model : nn.Module or ModelOutput
            The model being trained.
        epoch : int
            The epoch that just finished (>= 0).

        Returns
        -------
        MetricRecord or None
            The new record, or None if no evaluation ran.

        Raises
        ------
        TrackerClosedError
            If the tracker has been closed.
        InvalidArgumentError
            If ``epoch`` is negative or not after the last recorded epoch.
        UnsupportedModelError
            If ``model`` cannot be evaluated.
        """
        self._begin_epoch(epoch)

        if epoch % self.evaluation_frequency != 0:
            return None

        return self._record_epoch(model, epoch)

    def evaluate_now(self, model: Any, epoch: int) -> Optional[MetricRecord]:
        """
        Evaluate at ``epoch`` regardless of the evaluation frequency.

        Used after the last training epoch so the final record reflects the
        final weights. Same checks, return value and errors as
        ``on_epoch_end``.
        """
        self._begin_epoch(epoch)
        return self._record_epoch(model, epoch)

    def _begin_epoch(self, epoch: int) -> None:
        if self.state is TrackerState.CLOSED:
            raise TrackerClosedError(
                f"[{self.model_name}] tracker is closed; "
                f"cannot record epoch {epoch}"
            )
        if epoch < 0:
            raise InvalidArgumentError(f"epoch must be >= 0, got {epoch}")

        self.state = TrackerState.TRACKING

    def _record_epoch(self, model: Any, epoch: int) -> Optional[MetricRecord]:
        if self._records and epoch <= self._records[-1].epoch:
            raise InvalidArgumentError(
                f"[{self.model_name}] epoch {epoch} is not after the last "
                f"recorded epoch {self._records[-1].epoch}"
            )

        if self.validation_source is None:
            logger.warning(
                f"[{self.model_name}] No validation data; "
                f"skipping evaluation at epoch {epoch}"
            )
            return None

        network = as_model_output(model)
        elapsed_millis = int((time.perf_counter() - self._last_evaluation) * 1000)

        stats = self._evaluate(network, epoch)
        record = stats.to_record(epoch, elapsed_millis, self.class_names)
        self._records.append(record)
        self._last_evaluation = time.perf_counter()

        logger.info(f"[{self.model_name}] {record}")

        self.telemetry.log_record(self.model_name, record)

        try:
            self.export_metrics_to_csv()
        except MetricsExportError as e:
            logger.warning(
                f"[{self.model_name}] Metrics export failed at epoch {epoch}: {e}"
            )

        return record

    def _evaluate(self, network: ModelOutput, epoch: int) -> EvaluationStats:
        """One full pass over the validation source."""
        stats = EvaluationStats(self.num_classes)
        source = self.validation_source

        source.reset()
        progress = tqdm(
            desc=f"[{self.model_name}] eval epoch {epoch}",
            unit="batch",
            disable=not self.show_progress,
            leave=False,
        )
        try:
            while source.has_next():
                features, labels = source.next()
                stats.update(labels, network.compute_output(features))
                progress.update(1)
        finally:
            progress.close()

        if stats.num_samples == 0:
            logger.warning(
                f"[{self.model_name}] Validation source produced no samples "
                f"at epoch {epoch}"
            )
        return stats

    def get_latest_metrics(self) -> Optional[MetricRecord]:
        """The most recent record, or None before the first evaluation."""
        if not self._records:
            return None
        return self._records[-1]

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_metrics_to_csv(self) -> Optional[tuple[Path, Path]]:
        """
        Write the metrics CSV and the class-metrics CSV of the latest record.

        Returns
        -------
        (Path, Path) or None
            Paths of the two files, or None when there is nothing to export.

        Raises
        ------
        MetricsExportError
            If either file cannot be written.
        """
        if not self._records:
            logger.info(f"[{self.model_name}] No metrics to export yet")
            return None

        metrics_path = io.write_text_atomic(
            self.metrics_path, io.render_metrics_csv(self._records)
        )
        class_path = io.write_text_atomic(
            self.class_metrics_path,
            io.render_class_metrics_csv(self._records[-1]),
        )
        logger.debug(
            f"[{self.model_name}] Exported {len(self._records)} record(s) "
            f"to {metrics_path}"
        )
        return metrics_path, class_path

    def generate_progress_report(self) -> str:
        """Tab-separated table of every record so far."""
        lines = [
            f"Training Progress Report for {self.model_name}",
            "=" * 48,
            "Epoch\tAccuracy\tPrecision\tRecall\tF1 Score\tTime (ms)",
        ]
        for r in self._records:
            lines.append(
                f"{r.epoch}\t{r.accuracy:.4f}\t{r.precision:.4f}\t"
                f"{r.recall:.4f}\t{r.f1_score:.4f}\t{r.elapsed_millis}"
            )
        if not self._records:
            lines.append("(no evaluations recorded)")
        return "\n".join(lines)

    def close(self) -> None:
        """
        Run a final export and move to CLOSED.

        Export failures propagate to the caller; the tracker is closed
        either way. Closing twice is a no-op.
        """
        if self.state is TrackerState.CLOSED:
            return
        try:
            self.export_metrics_to_csv()
        finally:
            self.state = TrackerState.CLOSED
            logger.info(
                f"[{self.model_name}] Tracker closed with "
                f"{len(self._records)} record(s)"
            )

    def __enter__(self) -> MetricsTracker:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"MetricsTracker({self.model_name}, state={self.state.value}, "
            f"records={len(self._records)}, every={self.evaluation_frequency})"
        )
