"""
MetricForge Threshold Validator
================================
Quality gate for a trained model: every aggregate metric must reach its
minimum.

    record:     accuracy 0.92  precision 0.89  recall 0.91  f1 0.90
    thresholds: accuracy 0.95  precision 0.70  recall 0.70  f1 0.70
                ─────────────
                fails: accuracy (0.9200) is below threshold (0.9500)

Comparisons are inclusive: a value exactly equal to its threshold passes.
Every failing dimension is logged on its own line before the verdict is
returned.

Usage:
    >>> thresholds = ThresholdSet.from_config(config)
    >>> if not check_thresholds(record, thresholds):
    ...     raise SystemExit("model below quality bar")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from metricforge.errors import ConfigError
from metricforge.metrics.record import MetricRecord

if TYPE_CHECKING:
    from metricforge.config import MetricForgeConfig, ThresholdConfig

logger = logging.getLogger(__name__)

METRIC_NAMES = ("accuracy", "precision", "recall", "f1")


@dataclass(frozen=True)
class ThresholdSet:
    """
    Minimum acceptable accuracy, precision, recall and F1.

    All four default to 0.7 and must lie in [0, 1].
    """
    accuracy: float = 0.7
    precision: float = 0.7
    recall: float = 0.7
    f1: float = 0.7

    def __post_init__(self):
        for name in METRIC_NAMES:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(
                    f"threshold {name} must be in [0, 1], got {value}",
                    key=f"metrics.threshold.{name}",
                )

    @classmethod
    def from_config(
        cls, config: Union[MetricForgeConfig, ThresholdConfig]
    ) -> ThresholdSet:
        """Build from a master config or its ``thresholds`` section."""
        section = getattr(config, "thresholds", config)
        return cls(
            accuracy=section.accuracy,
            precision=section.precision,
            recall=section.recall,
            f1=section.f1,
        )

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in METRIC_NAMES}


@dataclass(frozen=True)
class ThresholdCheck:
    """Outcome for one metric."""
    metric: str
    value: float
    threshold: float

    @property
    def passed(self) -> bool:
        return self.value >= self.threshold

    def describe(self) -> str:
        relation = "meets" if self.passed else "is below"
        return (
            f"{self.metric} ({self.value:.4f}) {relation} "
            f"threshold ({self.threshold:.4f})"
        )


@dataclass(frozen=True)
class ThresholdReport:
    """Per-metric outcomes of one threshold validation."""
    checks: tuple[ThresholdCheck, ...]

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failures(self) -> tuple[ThresholdCheck, ...]:
        return tuple(check for check in self.checks if not check.passed)

    def __bool__(self) -> bool:
        return self.passed


def evaluate_thresholds(
    record: MetricRecord, thresholds: ThresholdSet
) -> ThresholdReport:
    """
    Compare each aggregate metric of ``record`` with its threshold.

    Returns
    -------
    ThresholdReport
        One ``ThresholdCheck`` per metric, in accuracy/precision/recall/f1
        order.
    """
    values = record.metric_values()
    limits = thresholds.as_dict()
    return ThresholdReport(tuple(
        ThresholdCheck(name, values[name], limits[name]) for name in METRIC_NAMES
    ))


def check_thresholds(
    record: Optional[MetricRecord],
    thresholds: ThresholdSet,
    model_name: Optional[str] = None,
) -> bool:
    """
    True when every aggregate metric of ``record`` meets its threshold.

    Each failing metric is logged at WARNING. A missing record fails the
    check (logged) rather than raising.

    Parameters
    ----------
    record : MetricRecord or None
        Metrics to validate.
    thresholds : ThresholdSet
        Minimum values.
    model_name : str or None
        Prefix for log lines.
    """
    prefix = f"[{model_name}] " if model_name else ""
    if record is None:
        logger.warning(f"{prefix}No metrics to validate; threshold check fails")
        return False

    report = evaluate_thresholds(record, thresholds)
    for check in report.failures:
        logger.warning(f"{prefix}{check.describe()}")

    if report.passed:
        logger.info(f"{prefix}All metrics meet their thresholds")
    return report.passed
