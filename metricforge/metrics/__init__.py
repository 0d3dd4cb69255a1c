"""
metricforge.metrics — Records, Tracking, Thresholds & Comparison
=================================================================
This subpackage holds everything that records and judges classifier
quality over a training run.

Components:
    - record.py      — MetricRecord / ClassMetric value types
    - tracker.py     — MetricsTracker: periodic evaluation + CSV export
    - thresholds.py  — ThresholdSet and check_thresholds quality gate
    - comparison.py  — Multi-model and baseline/candidate text reports
    - io.py          — CSV layouts and atomic file writes

Information Flow:
    model + validation data → MetricsTracker (every N epochs)
        → MetricRecord per evaluation
        → <model>_metrics_<ts>.csv, <model>_class_metrics_<ts>.csv
    final MetricRecord → check_thresholds → pass / fail
    final MetricRecords of several models → comparison report

``tracker`` is imported from its module directly
(``from metricforge.metrics.tracker import MetricsTracker``).
"""

from metricforge.metrics.record import ClassMetric, MetricRecord
from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
from metricforge.metrics.comparison import (
    generate_comparison_report,
    generate_model_comparison_report,
)
