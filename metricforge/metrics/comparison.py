"""
MetricForge Comparison Reporter
================================
Text reports that put several models, or two runs of the same model,
side by side.

Multi-model report:

    | Model     | Accuracy | Precision | Recall | F1-Score |
    |-----------|----------|-----------|--------|----------|
    | VGG16     |   0.9200 |    0.8900 | 0.9100 |   0.9000 |
    | ResNet    |   0.9400 |    0.9200 | 0.9000 |   0.9100 |

    Best per metric:
      Best Accuracy: ResNet (0.9400)
      ...

Ties go to the model listed first.

Baseline vs candidate report: per-metric ``candidate - baseline`` with an
"improved" flag (strictly positive difference), then the same for every
class present in both records.

All values are printed with 4 decimals; differences carry a sign.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from metricforge.errors import InvalidArgumentError, NothingToCompareError
from metricforge.metrics.io import write_text_atomic
from metricforge.metrics.record import MetricRecord

logger = logging.getLogger(__name__)

# (attribute on MetricRecord / ClassMetric, key, column label)
_METRICS = (
    ("accuracy", "accuracy", "Accuracy"),
    ("precision", "precision", "Precision"),
    ("recall", "recall", "Recall"),
    ("f1_score", "f1", "F1-Score"),
)
_CLASS_METRICS = _METRICS[1:]


# =============================================================================
# Multi-model comparison
# =============================================================================

@dataclass
class ModelComparison:
    """
    Result of comparing several models.

    Attributes
    ----------
    names : list[str]
        Model names, in input order.
    records : list[MetricRecord]
        One record per model, in input order.
    best : dict[str, int]
        For each of "accuracy", "precision", "recall", "f1", the index of
        the best model (first one wins ties).
    report : str
        The text written to ``path``.
    path : Path
        Where the report was written.
    """
    names: list[str]
    records: list[MetricRecord]
    best: dict[str, int]
    report: str
    path: Path

    def best_name(self, metric: str) -> str:
        return self.names[self.best[metric]]


def _best_indices(records: Sequence[MetricRecord]) -> dict[str, int]:
    best = {}
    for attr, key, _ in _METRICS:
        best_index = 0
        for i in range(1, len(records)):
            if getattr(records[i], attr) > getattr(records[best_index], attr):
                best_index = i
        best[key] = best_index
    return best


def _render_table(names: Sequence[str], rows: Sequence[Sequence[str]]) -> list[str]:
    headers = ["Model"] + [label for _, _, label in _METRICS]
    widths = [len(h) for h in headers]
    widths[0] = max([widths[0]] + [len(n) for n in names])
    for row in rows:
        for j, cell in enumerate(row, start=1):
            widths[j] = max(widths[j], len(cell))

    def line(cells: Sequence[str]) -> str:
        first = cells[0].ljust(widths[0])
        rest = [c.rjust(w) for c, w in zip(cells[1:], widths[1:])]
        return "| " + " | ".join([first] + rest) + " |"

    out = ["| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |"]
    out.append("|" + "|".join("-" * (w + 2) for w in widths) + "|")
    for name, row in zip(names, rows):
        out.append(line([name, *row]))
    return out


def generate_model_comparison_report(
    records: Sequence[MetricRecord],
    names: Sequence[str],
    output_path: str | Path,
) -> ModelComparison:
    """
    Compare several models and write a text report.

    Parameters
    ----------
    records : sequence of MetricRecord
        One record per model (typically each model's final evaluation).
    names : sequence of str
        Model names, aligned with ``records``.
    output_path : str or Path
        Report file. Parent directories are created.

    Returns
    -------
    ModelComparison
        The best model per metric plus the rendered report.

    Raises
    ------
    InvalidArgumentError
        If the two sequences differ in length or contain None.
    NothingToCompareError
        If both sequences are empty. No file is written.
    MetricsExportError
        If the report cannot be written.
    """
    if records is None or names is None:
        raise InvalidArgumentError("records and names must not be None")
    records = list(records)
    names = [str(n) if n is not None else None for n in names]

    if len(records) != len(names):
        raise InvalidArgumentError(
            f"Got {len(records)} records but {len(names)} model names"
        )
    if not records:
        raise NothingToCompareError("No models to compare")
    for i, (record, name) in enumerate(zip(records, names)):
        if record is None or name is None:
            raise InvalidArgumentError(f"Entry {i} has no record or no name")

    best = _best_indices(records)

    rows = [
        [f"{getattr(r, attr):.4f}" for attr, _, _ in _METRICS] for r in records
    ]
    lines = ["Model Comparison Report", "=" * 23, ""]
    lines.extend(_render_table(names, rows))
    lines.append("")
    lines.append("Best per metric:")
    for attr, key, label in _METRICS:
        winner = best[key]
        lines.append(
            f"  Best {label}: {names[winner]} "
            f"({getattr(records[winner], attr):.4f})"
        )
    report = "\n".join(lines) + "\n"

    path = write_text_atomic(output_path, report)
    logger.info(
        f"Comparison of {len(records)} models written to {path} "
        f"(best accuracy: {names[best['accuracy']]})"
    )
    return ModelComparison(names, records, best, report, path)


# =============================================================================
# Baseline vs candidate
# =============================================================================

@dataclass(frozen=True)
class MetricDelta:
    """One metric in a baseline/candidate comparison."""
    baseline: float
    candidate: float

    @property
    def difference(self) -> float:
        return self.candidate - self.baseline

    @property
    def improved(self) -> bool:
        return self.difference > 0


@dataclass
class ComparisonDiff:
    """
    Result of comparing two records.

    Attributes
    ----------
    deltas : dict[str, MetricDelta]
        Keyed by "accuracy", "precision", "recall", "f1".
    class_deltas : dict[int, dict[str, MetricDelta]]
        For each class index present in both records, keyed by
        "precision", "recall", "f1".
    report : str
        The text written to ``path``.
    path : Path
        Where the report was written.
    """
    deltas: dict[str, MetricDelta]
    class_deltas: dict[int, dict[str, MetricDelta]] = field(default_factory=dict)
    report: str = ""
    path: Optional[Path] = None

    @property
    def improved_metrics(self) -> list[str]:
        return [name for name, delta in self.deltas.items() if delta.improved]


def _delta_line(label: str, delta: MetricDelta, indent: str = "  ") -> str:
    marker = "improved" if delta.improved else (
        "unchanged" if delta.difference == 0 else "regressed"
    )
    return (
        f"{indent}{label + ':':<11}{delta.baseline:.4f} -> "
        f"{delta.candidate:.4f} ({delta.difference:+.4f}, {marker})"
    )


def generate_comparison_report(
    baseline: MetricRecord,
    candidate: MetricRecord,
    output_path: str | Path,
    baseline_name: str = "baseline",
    candidate_name: str = "candidate",
) -> ComparisonDiff:
    """
    Compare a candidate record against a baseline and write a text report.

    Parameters
    ----------
    baseline, candidate : MetricRecord
        The two evaluations to compare.
    output_path : str or Path
        Report file. Parent directories are created.
    baseline_name, candidate_name : str
        Labels used in the report.

    Returns
    -------
    ComparisonDiff
        Per-metric and per-class differences.

    Raises
    ------
    InvalidArgumentError
        If either record is None.
    MetricsExportError
        If the report cannot be written.
    """
    if baseline is None or candidate is None:
        raise InvalidArgumentError("baseline and candidate must not be None")

    deltas = {
        key: MetricDelta(getattr(baseline, attr), getattr(candidate, attr))
        for attr, key, _ in _METRICS
    }

    shared = sorted(
        set(baseline.per_class_metrics) & set(candidate.per_class_metrics)
    )
    class_deltas = {}
    for index in shared:
        b = baseline.per_class_metrics[index]
        c = candidate.per_class_metrics[index]
        class_deltas[index] = {
            key: MetricDelta(getattr(b, attr), getattr(c, attr))
            for attr, key, _ in _CLASS_METRICS
        }

    lines = [
        "Model Comparison Report",
        "=" * 23,
        f"Baseline:  {baseline_name} (epoch {baseline.epoch})",
        f"Candidate: {candidate_name} (epoch {candidate.epoch})",
        "",
        "Global metrics:",
    ]
    for _, key, label in _METRICS:
        lines.append(_delta_line(label, deltas[key]))

    if class_deltas:
        lines.append("")
        lines.append("Per-class metrics:")
        for index in shared:
            name = candidate.per_class_metrics[index].class_name
            lines.append(f"  {name} (index {index}):")
            for _, key, label in _CLASS_METRICS:
                lines.append(_delta_line(label, class_deltas[index][key], "    "))

    improved = [label for _, key, label in _METRICS if deltas[key].improved]
    lines.append("")
    lines.append(
        f"Improved: {', '.join(improved)}" if improved else "Improved: none"
    )
    report = "\n".join(lines) + "\n"

    path = write_text_atomic(output_path, report)
    logger.info(
        f"Comparison {baseline_name} vs {candidate_name} written to {path}"
    )
    return ComparisonDiff(deltas, class_deltas, report, path)
