"""
MetricForge Metric Records
===========================
Value types for one evaluation pass of a classifier.

A ``MetricRecord`` is a snapshot: the epoch it was taken at, the four
aggregate scores (accuracy, precision, recall, F1), how long the model
trained since the previous snapshot, and a ``ClassMetric`` for every class.

    MetricRecord(epoch=5, accuracy=0.92, ...)
        ├── ClassMetric(class_index=0, "Class-0", precision=0.95, ...)
        ├── ClassMetric(class_index=1, "Class-1", precision=0.88, ...)
        └── ...

Records are plain data. They do not check that scores lie in [0, 1];
whatever the caller stores is what comes back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


def default_class_name(class_index: int) -> str:
    """Label used for a class that has no explicit name."""
    return f"Class-{class_index}"


@dataclass(frozen=True)
class ClassMetric:
    """
    Precision, recall and F1 for a single class, plus its confusion counts.

    Parameters
    ----------
    class_index : int
        Position of the class in the model's output layer.
    class_name : str
        Human-readable label, ``"Class-<index>"`` unless one was given.
    precision, recall, f1_score : float
        Scores for this class. Zero denominators are reported as 0.
    true_positives, false_positives, false_negatives : int
        Raw counts the scores were computed from (0 when unknown).
    """
    class_index: int
    class_name: str
    precision: float
    recall: float
    f1_score: float
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0

    @property
    def support(self) -> int:
        """Number of samples whose true label is this class."""
        return self.true_positives + self.false_negatives

    def __str__(self) -> str:
        return (
            f"{self.class_name}: precision={self.precision:.4f}, "
            f"recall={self.recall:.4f}, f1={self.f1_score:.4f}"
        )


@dataclass
class MetricRecord:
    """
    Aggregate classification metrics for one evaluation pass.

    Parameters
    ----------
    epoch : int
        Epoch the evaluation ran after. 0 means "not tied to an epoch"
        (e.g. a final test-set evaluation).
    accuracy, precision, recall, f1_score : float
        Aggregate scores, nominally in [0, 1].
    elapsed_millis : int
        Milliseconds of training since the previous evaluation.
    per_class_metrics : dict[int, ClassMetric]
        One entry per class index. Use ``add_class_metric`` to fill it.
    """
    epoch: int
    accuracy: float
    precision: float
    recall: float
    f1_score: float
    elapsed_millis: int = 0
    per_class_metrics: dict[int, ClassMetric] = field(default_factory=dict)

    @property
    def training_time(self) -> int:
        """Alias of ``elapsed_millis``."""
        return self.elapsed_millis

    def add_class_metric(
        self,
        class_index: int,
        precision: float,
        recall: float,
        f1_score: float,
        class_name: Optional[str] = None,
        true_positives: int = 0,
        false_positives: int = 0,
        false_negatives: int = 0,
    ) -> ClassMetric:
        """
        Attach per-class scores to this record.

        Adding the same class index twice replaces the earlier entry.

        Returns
        -------
        ClassMetric
            The entry now stored under ``class_index``.
        """
        metric = ClassMetric(
            class_index=class_index,
            class_name=class_name or default_class_name(class_index),
            precision=precision,
            recall=recall,
            f1_score=f1_score,
            true_positives=true_positives,
            false_positives=false_positives,
            false_negatives=false_negatives,
        )
        self.per_class_metrics[class_index] = metric
        return metric

    def get_class_metric(self, class_index: int) -> Optional[ClassMetric]:
        return self.per_class_metrics.get(class_index)

    def metric_values(self) -> dict[str, float]:
        """The four aggregate scores keyed by name."""
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1": self.f1_score,
        }

    def detailed_report(self) -> str:
        """
        Multi-line, human-readable rendering of the record.

        Returns
        -------
        str
            Global scores followed by one block per class, in class order.
        """
        lines = [
            f"Metrics for Epoch {self.epoch}",
            "-" * 40,
            f"Accuracy:      {self.accuracy:.4f}",
            f"Precision:     {self.precision:.4f}",
            f"Recall:        {self.recall:.4f}",
            f"F1 Score:      {self.f1_score:.4f}",
            f"Training Time: {self.elapsed_millis} ms",
        ]
        if self.per_class_metrics:
            lines.append("")
            lines.append("Per-Class Metrics:")
            for index in sorted(self.per_class_metrics):
                metric = self.per_class_metrics[index]
                lines.append(f"  {metric.class_name} (index {index}):")
                lines.append(f"    Precision: {metric.precision:.4f}")
                lines.append(f"    Recall:    {metric.recall:.4f}")
                lines.append(f"    F1 Score:  {metric.f1_score:.4f}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return (
            f"Epoch {self.epoch}: accuracy={self.accuracy:.4f}, "
            f"precision={self.precision:.4f}, recall={self.recall:.4f}, "
            f"f1={self.f1_score:.4f}, time={self.elapsed_millis}ms"
        )
