"""
MetricForge Classification Statistics
======================================
Accumulates true labels and predictions over many batches, then reduces
them once into accuracy, precision, recall and F1.

The heavy lifting is done by scikit-learn; this class only handles the
batch-by-batch bookkeeping and the conversions from whatever a model
produces (torch tensors, one-hot labels, score matrices) to flat arrays of
class indices.

Averaging:
    Aggregate precision, recall and F1 are MACRO averages: the unweighted
    mean over every class that occurs at least once among the true labels
    or the predictions. Classes the evaluation never saw do not drag the
    average down. Any zero denominator yields 0, never an exception.

ROC:
    When the model emits scores (a C-column matrix, or one sigmoid column
    for a binary model) they are kept alongside the indices, so per-class
    one-vs-rest AUC and a Youden-optimal decision threshold are available.

Usage:
    >>> stats = EvaluationStats(num_classes=3)
    >>> for features, labels in loader:
    ...     stats.update(labels, model(features))
    >>> stats.accuracy(), stats.f1()
    >>> record = stats.to_record(epoch=5, elapsed_millis=1200)
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np
import torch
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix,
    precision_recall_fscore_support,
    roc_auc_score,
    roc_curve,
)

from metricforge.errors import InvalidArgumentError
from metricforge.metrics.record import MetricRecord

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.5


def _to_numpy(values: Any) -> np.ndarray:
    if isinstance(values, torch.Tensor):
        return values.detach().cpu().numpy()
    return np.asarray(values)


def _is_fractional(array: np.ndarray) -> bool:
    return (
        np.issubdtype(array.dtype, np.floating)
        and array.size > 0
        and not np.all(np.equal(np.mod(array, 1), 0))
    )


def to_class_indices(values: Any, threshold: float = 0.5) -> np.ndarray:
    """
    Reduce labels or model outputs to a 1-D array of class indices.

    A trailing axis of size 1 is squeezed first, so an (N, 1) column is
    handled like its (N,) counterpart. Remaining 2-D inputs (one-hot
    labels, logits, probabilities) are reduced with ``argmax`` over the
    last axis. 1-D integral values are taken as indices; 1-D fractional
    values are single-column binary scores and become ``score >= threshold``.
    """
    array = _to_numpy(values)
    if array.ndim == 2 and array.shape[1] == 1:
        array = array[:, 0]
    if array.ndim == 2:
        return array.argmax(axis=1).astype(np.int64)
    if array.ndim == 0:
        array = array.reshape(1)
    if array.ndim == 1:
        if _is_fractional(array):
            return (array >= threshold).astype(np.int64)
        return array.astype(np.int64)
    raise InvalidArgumentError(
        f"Expected 1-D class indices or a 2-D score matrix, "
        f"got shape {array.shape}"
    )


def _softmax(array: np.ndarray) -> np.ndarray:
    shifted = array - array.max(axis=1, keepdims=True)
    exp = np.exp(shifted)
    return exp / exp.sum(axis=1, keepdims=True)


def to_score_matrix(values: Any, num_classes: int) -> Optional[np.ndarray]:
    """
    Per-class scores of shape (N, num_classes), or None for index outputs.

    An (N, num_classes) float matrix is kept as probabilities, or turned
    into probabilities with a softmax when it holds logits. A single
    fractional column of a binary model is read as P(class 1) and expanded
    to ``[1 - p, p]``.
    """
    array = _to_numpy(values)
    if not np.issubdtype(array.dtype, np.floating):
        return None
    array = array.astype(np.float64)
    if array.ndim == 2 and array.shape[1] == num_classes and num_classes > 1:
        if array.size and (array.min() < 0.0 or array.max() > 1.0):
            return _softmax(array)
        return array
    if array.ndim == 2 and array.shape[1] == 1:
        array = array[:, 0]
    if array.ndim == 1 and num_classes == 2 and _is_fractional(array):
        return np.stack([1.0 - array, array], axis=1)
    return None


class EvaluationStats:
    """
    Running classification statistics for a fixed number of classes.

    Parameters
    ----------
    num_classes : int
        Number of classes the model predicts. Must be >= 2.
    """

    def __init__(self, num_classes: int):
        if num_classes < 2:
            raise InvalidArgumentError(
                f"num_classes must be >= 2, got {num_classes}"
            )
        self.num_classes = num_classes
        self._labels = list(range(num_classes))
        self._y_true: list[np.ndarray] = []
        self._y_pred: list[np.ndarray] = []
        self._y_score: list[np.ndarray] = []
        # Set once any batch arrives without scores; AUC is then undefined.
        self._scores_incomplete = False

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def update(self, labels: Any, outputs: Any) -> None:
        """
        Add one batch.

        Parameters
        ----------
        labels : tensor or array
            True classes: indices of shape (batch,) or one-hot (batch, C).
        outputs : tensor or array
            Predictions: scores of shape (batch, C), indices (batch,) or
            (batch, 1), or a single column of binary scores.

        Raises
        ------
        InvalidArgumentError
            If the batch sizes differ or an index is out of range.
        """
        y_true = to_class_indices(labels)
        y_pred = to_class_indices(outputs)
        y_score = to_score_matrix(outputs, self.num_classes)

        if y_true.shape[0] != y_pred.shape[0]:
            raise InvalidArgumentError(
                f"Batch size mismatch: {y_true.shape[0]} labels vs "
                f"{y_pred.shape[0]} predictions"
            )
        for name, values in (("label", y_true), ("prediction", y_pred)):
            if values.size and (values.min() < 0 or values.max() >= self.num_classes):
                raise InvalidArgumentError(
                    f"{name} index out of range for {self.num_classes} "
                    f"classes: [{values.min()}, {values.max()}]"
                )

        self._y_true.append(y_true)
        self._y_pred.append(y_pred)
        if y_score is None:
            self._scores_incomplete = True
        else:
            self._y_score.append(y_score)

    def reset(self) -> None:
        self._y_true.clear()
        self._y_pred.clear()
        self._y_score.clear()
        self._scores_incomplete = False

    @classmethod
    def from_confusion_matrix(cls, matrix: Any) -> EvaluationStats:
        """
        Build statistics from a square confusion matrix.

        ``matrix[i][j]`` counts samples whose true class is ``i`` and whose
        predicted class is ``j``.

        Raises
        ------
        InvalidArgumentError
            If the matrix is not square or holds negative counts.
        """
        matrix = np.asarray(matrix, dtype=np.int64)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidArgumentError(
                f"Confusion matrix must be square, got shape {matrix.shape}"
            )
        if (matrix < 0).any():
            raise InvalidArgumentError("Confusion matrix counts must be >= 0")

        stats = cls(matrix.shape[0])
        rows, cols = np.nonzero(matrix)
        counts = matrix[rows, cols]
        stats._y_true.append(np.repeat(rows, counts).astype(np.int64))
        stats._y_pred.append(np.repeat(cols, counts).astype(np.int64))
        stats._scores_incomplete = True
        return stats

    # ------------------------------------------------------------------
    # Reductions
    # ------------------------------------------------------------------

    @property
    def num_samples(self) -> int:
        return int(sum(len(batch) for batch in self._y_true))

    def _arrays(self) -> tuple[np.ndarray, np.ndarray]:
        if not self._y_true:
            empty = np.zeros(0, dtype=np.int64)
            return empty, empty
        return np.concatenate(self._y_true), np.concatenate(self._y_pred)

    def _present_classes(self) -> list[int]:
        y_true, y_pred = self._arrays()
        return sorted(set(y_true.tolist()) | set(y_pred.tolist()))

    def confusion_matrix(self) -> np.ndarray:
        """(num_classes, num_classes) matrix, rows = true, columns = predicted."""
        y_true, y_pred = self._arrays()
        if y_true.size == 0:
            return np.zeros((self.num_classes, self.num_classes), dtype=np.int64)
        return confusion_matrix(y_true, y_pred, labels=self._labels)

    def accuracy(self) -> float:
        y_true, y_pred = self._arrays()
        if y_true.size == 0:
            return 0.0
        return float(accuracy_score(y_true, y_pred))

    def _scores(self, class_index: Optional[int]) -> tuple[float, float, float]:
        y_true, y_pred = self._arrays()
        if y_true.size == 0:
            return 0.0, 0.0, 0.0

        if class_index is not None:
            if not 0 <= class_index < self.num_classes:
                raise InvalidArgumentError(
                    f"class_index {class_index} out of range for "
                    f"{self.num_classes} classes"
                )
            p, r, f, _ = precision_recall_fscore_support(
                y_true, y_pred, labels=[class_index],
                average=None, zero_division=0,
            )
            return float(p[0]), float(r[0]), float(f[0])

        p, r, f, _ = precision_recall_fscore_support(
            y_true, y_pred, labels=self._present_classes(),
            average="macro", zero_division=0,
        )
        return float(p), float(r), float(f)

    def precision(self, class_index: Optional[int] = None) -> float:
        """Precision of one class, or the macro average when no index is given."""
        return self._scores(class_index)[0]

    def recall(self, class_index: Optional[int] = None) -> float:
        """Recall of one class, or the macro average when no index is given."""
        return self._scores(class_index)[1]

    def f1(self, class_index: Optional[int] = None) -> float:
        """F1 of one class, or the macro average when no index is given."""
        return self._scores(class_index)[2]

    def true_positives(self, class_index: int) -> int:
        return int(self.confusion_matrix()[class_index, class_index])

    def false_positives(self, class_index: int) -> int:
        column = self.confusion_matrix()[:, class_index]
        return int(column.sum() - column[class_index])

    def false_negatives(self, class_index: int) -> int:
        row = self.confusion_matrix()[class_index, :]
        return int(row.sum() - row[class_index])

    # ------------------------------------------------------------------
    # ROC (one-vs-rest, needs score outputs)
    # ------------------------------------------------------------------

    @property
    def has_scores(self) -> bool:
        """True when every batch so far came with per-class scores."""
        return bool(self._y_score) and not self._scores_incomplete

    def _roc_inputs(self, class_index: int) -> Optional[tuple[np.ndarray, np.ndarray]]:
        if not 0 <= class_index < self.num_classes:
            raise InvalidArgumentError(
                f"class_index {class_index} out of range for "
                f"{self.num_classes} classes"
            )
        if not self.has_scores:
            return None
        y_true, _ = self._arrays()
        positives = (y_true == class_index).astype(np.int64)
        # ROC needs both positives and negatives for this class
        if positives.size == 0 or positives.min() == positives.max():
            return None
        return positives, np.concatenate(self._y_score)[:, class_index]

    def auc(self, class_index: int) -> Optional[float]:
        """
        One-vs-rest ROC AUC of a class.

        Returns None when no scores were recorded, or when the class has no
        positive or no negative samples.
        """
        inputs = self._roc_inputs(class_index)
        if inputs is None:
            return None
        return float(roc_auc_score(*inputs))

    def optimal_threshold(self, class_index: int) -> float:
        """
        Score threshold that maximises Youden's J (TPR - FPR) for a class.

        Falls back to 0.5 whenever the ROC curve is undefined.
        """
        inputs = self._roc_inputs(class_index)
        if inputs is None:
            return DEFAULT_THRESHOLD
        fpr, tpr, thresholds = roc_curve(*inputs)
        finite = np.isfinite(thresholds)
        if not finite.any():
            return DEFAULT_THRESHOLD
        youden = np.where(finite, tpr - fpr, -np.inf)
        return float(thresholds[int(np.argmax(youden))])

    def to_record(
        self,
        epoch: int,
        elapsed_millis: int = 0,
        class_names: Optional[Sequence[str]] = None,
    ) -> MetricRecord:
        """
        Snapshot the current statistics as a ``MetricRecord``.

        Every class index ``0..num_classes-1`` gets a ``ClassMetric``,
        including classes the evaluation never saw (all zeros).

        Parameters
        ----------
        epoch : int
            Epoch to stamp on the record.
        elapsed_millis : int
            Training time since the previous evaluation.
        class_names : sequence of str or None
            Optional labels, indexed by class.
        """
        y_true, y_pred = self._arrays()
        accuracy = self.accuracy()
        precision, recall, f1 = self._scores(None)

        record = MetricRecord(
            epoch=epoch,
            accuracy=accuracy,
            precision=precision,
            recall=recall,
            f1_score=f1,
            elapsed_millis=elapsed_millis,
        )

        matrix = self.confusion_matrix()
        if y_true.size:
            per_p, per_r, per_f, _ = precision_recall_fscore_support(
                y_true, y_pred, labels=self._labels,
                average=None, zero_division=0,
            )
        else:
            per_p = per_r = per_f = np.zeros(self.num_classes)

        for index in self._labels:
            name = None
            if class_names is not None and index < len(class_names):
                name = class_names[index]
            tp = int(matrix[index, index])
            record.add_class_metric(
                index,
                float(per_p[index]),
                float(per_r[index]),
                float(per_f[index]),
                class_name=name,
                true_positives=tp,
                false_positives=int(matrix[:, index].sum()) - tp,
                false_negatives=int(matrix[index, :].sum()) - tp,
            )
        return record

    def stats_report(self) -> str:
        """Plain-text summary with the confusion matrix."""
        matrix = self.confusion_matrix()
        width = max(5, len(str(int(matrix.max()))) + 1)
        header = " " * 8 + "".join(f"{j:>{width}d}" for j in self._labels)
        lines = [
            f"Examples:  {self.num_samples}",
            f"Accuracy:  {self.accuracy():.4f}",
            f"Precision: {self.precision():.4f}",
            f"Recall:    {self.recall():.4f}",
            f"F1 Score:  {self.f1():.4f}",
            "",
            "Confusion Matrix (rows = actual, columns = predicted):",
            header,
        ]
        for i in self._labels:
            lines.append(
                f"{i:>6d}  " + "".join(f"{int(matrix[i, j]):>{width}d}" for j in self._labels)
            )
        return "\n".join(lines)
