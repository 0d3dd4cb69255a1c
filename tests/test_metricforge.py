#!/usr/bin/env python3
"""
Tests for MetricForge records, statistics, tracking, thresholds,
comparison reports, splitting, configuration and training.

Run all tests:
    python -m pytest tests/ -v --tb=short

Run one group:
    python -m pytest tests/test_metricforge.py -v -k TestMetricsTracker
"""

import logging
import sys
import threading
from pathlib import Path

import numpy as np
import pytest
import torch
import torch.nn as nn

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


class EchoClassifier(nn.Module):
    """Predicts the class stored in feature column 0."""

    def __init__(self, num_classes: int):
        super().__init__()
        self.num_classes = num_classes
        self.scale = nn.Parameter(torch.ones(1))

    def forward(self, x):
        onehot = nn.functional.one_hot(x[:, 0].long(), self.num_classes)
        return onehot.float() * self.scale


class TwoHeadClassifier(nn.Module):
    """Returns (embedding, logits) like a multi-output network."""

    def __init__(self, num_classes: int):
        super().__init__()
        self.echo = EchoClassifier(num_classes)

    def forward(self, x):
        return x * 2, self.echo(x)


def make_record(epoch, accuracy, precision, recall, f1, elapsed=0):
    from metricforge.metrics.record import MetricRecord
    return MetricRecord(
        epoch=epoch, accuracy=accuracy, precision=precision,
        recall=recall, f1_score=f1, elapsed_millis=elapsed,
    )


def echo_source(predictions, labels):
    """A one-batch validation source whose model output equals ``predictions``."""
    from metricforge.data.sources import LoaderSource
    features = torch.tensor(predictions, dtype=torch.float32).unsqueeze(1)
    return LoaderSource([(features, torch.tensor(labels))])


# =============================================================================
# Record Tests
# =============================================================================

class TestMetricRecord:
    """Tests for MetricRecord and ClassMetric."""

    def test_add_class_metric_default_name(self):
        record = make_record(1, 0.9, 0.8, 0.7, 0.75)
        metric = record.add_class_metric(3, 0.5, 0.6, 0.55)
        assert metric.class_name == "Class-3"
        assert record.get_class_metric(3) is metric

    def test_add_class_metric_last_write_wins(self):
        record = make_record(1, 0.9, 0.8, 0.7, 0.75)
        record.add_class_metric(0, 0.1, 0.1, 0.1)
        record.add_class_metric(0, 0.9, 0.8, 0.85)
        assert len(record.per_class_metrics) == 1
        assert record.per_class_metrics[0].precision == 0.9

    def test_training_time_alias(self):
        record = make_record(2, 0.9, 0.8, 0.7, 0.75, elapsed=1532)
        assert record.training_time == 1532 == record.elapsed_millis

    def test_values_not_range_checked(self):
        """Out-of-range scores are stored as given."""
        record = make_record(1, 1.5, -0.2, 0.5, 0.5)
        assert record.accuracy == 1.5
        assert record.precision == -0.2

    def test_class_metric_is_frozen(self):
        from dataclasses import FrozenInstanceError
        record = make_record(1, 0.9, 0.8, 0.7, 0.75)
        metric = record.add_class_metric(0, 0.5, 0.5, 0.5)
        with pytest.raises(FrozenInstanceError):
            metric.precision = 1.0

    def test_detailed_report_lists_classes(self):
        record = make_record(4, 0.92, 0.89, 0.91, 0.90)
        record.add_class_metric(0, 0.95, 0.88, 0.91, class_name="silence")
        record.add_class_metric(1, 0.85, 0.93, 0.89)
        report = record.detailed_report()
        assert "Metrics for Epoch 4" in report
        assert "Accuracy:      0.9200" in report
        assert "silence (index 0)" in report
        assert "Class-1 (index 1)" in report


# =============================================================================
# Statistics Tests
# =============================================================================

class TestEvaluationStats:
    """Tests for the sklearn-backed statistics accumulator."""

    def test_basic_metrics(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        stats.update(np.array([0, 0, 1, 1]), np.array([0, 1, 1, 1]))

        assert stats.accuracy() == pytest.approx(0.75)
        assert stats.precision(0) == pytest.approx(1.0)
        assert stats.recall(0) == pytest.approx(0.5)
        assert stats.f1(0) == pytest.approx(2 / 3)
        assert stats.precision(1) == pytest.approx(2 / 3)
        assert stats.recall(1) == pytest.approx(1.0)
        assert stats.precision() == pytest.approx((1.0 + 2 / 3) / 2)
        assert stats.recall() == pytest.approx(0.75)

    def test_accumulates_across_batches(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        stats.update(np.array([0, 0]), np.array([0, 1]))
        stats.update(np.array([1, 1]), np.array([1, 1]))
        assert stats.num_samples == 4
        assert stats.accuracy() == pytest.approx(0.75)

    def test_score_matrix_and_one_hot_inputs(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(3)
        labels = torch.tensor([[1, 0, 0], [0, 0, 1]])
        outputs = torch.tensor([[0.9, 0.05, 0.05], [0.1, 0.7, 0.2]])
        stats.update(labels, outputs)
        matrix = stats.confusion_matrix()
        assert matrix[0, 0] == 1
        assert matrix[2, 1] == 1

    def test_zero_denominators_report_zero(self):
        """A class that never appears gets zeros and is left out of the average."""
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(3)
        stats.update(np.array([0, 0, 0]), np.array([0, 0, 0]))
        assert stats.precision(2) == 0.0
        assert stats.recall(2) == 0.0
        assert stats.f1(2) == 0.0
        assert stats.precision() == pytest.approx(1.0)
        assert stats.f1() == pytest.approx(1.0)

    def test_empty_stats_are_zero(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        assert stats.accuracy() == 0.0
        assert stats.f1() == 0.0
        record = stats.to_record(epoch=1)
        assert len(record.per_class_metrics) == 2

    def test_from_confusion_matrix(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats.from_confusion_matrix([[5, 1], [2, 2]])
        assert stats.accuracy() == pytest.approx(0.7)
        assert stats.precision(0) == pytest.approx(5 / 7)
        assert stats.recall(0) == pytest.approx(5 / 6)
        assert stats.precision(1) == pytest.approx(2 / 3)
        assert stats.recall(1) == pytest.approx(0.5)
        assert stats.true_positives(0) == 5
        assert stats.false_positives(0) == 2
        assert stats.false_negatives(0) == 1

    def test_to_record_covers_every_class(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(4)
        stats.update(np.array([0, 1]), np.array([0, 1]))
        record = stats.to_record(3, 120, class_names=["a", "b", "c", "d"])
        assert sorted(record.per_class_metrics) == [0, 1, 2, 3]
        assert record.per_class_metrics[2].class_name == "c"
        assert record.per_class_metrics[0].true_positives == 1
        assert record.epoch == 3
        assert record.elapsed_millis == 120

    def test_out_of_range_label_rejected(self):
        from metricforge.errors import InvalidArgumentError
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        with pytest.raises(InvalidArgumentError, match="out of range"):
            stats.update(np.array([0, 5]), np.array([0, 1]))

    def test_needs_two_classes(self):
        from metricforge.errors import InvalidArgumentError
        from metricforge.evaluation.statistics import EvaluationStats
        with pytest.raises(InvalidArgumentError):
            EvaluationStats(1)

    def test_column_of_class_indices(self):
        """(N, 1) index columns are squeezed, not argmax'd to zeros."""
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(3)
        stats.update(torch.tensor([[2], [1], [2]]), torch.tensor([2, 1, 2]))
        assert stats.accuracy() == pytest.approx(1.0)

        stats = EvaluationStats(3)
        stats.update(torch.tensor([2, 1, 0]), torch.tensor([[2], [1], [2]]))
        assert stats.accuracy() == pytest.approx(2 / 3)
        assert stats.confusion_matrix()[0, 2] == 1

    def test_single_sigmoid_column_is_binary(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        outputs = torch.tensor([[0.9], [0.2], [0.6], [0.4]])
        stats.update(torch.tensor([1, 0, 1, 1]), outputs)
        assert stats.accuracy() == pytest.approx(0.75)
        assert stats.false_negatives(1) == 1
        assert stats.has_scores
        assert stats.auc(1) == pytest.approx(1.0)

    def test_auc_and_optimal_threshold(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        scores = np.array([[0.9, 0.1], [0.6, 0.4], [0.35, 0.65], [0.2, 0.8]])
        stats.update(np.array([0, 0, 1, 1]), scores)
        assert stats.auc(0) == pytest.approx(1.0)
        assert stats.auc(1) == pytest.approx(1.0)
        assert stats.optimal_threshold(1) == pytest.approx(0.65)
        assert stats.optimal_threshold(0) == pytest.approx(0.6)

    def test_auc_partial_ranking(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        # class-1 scores: negatives 0.1, 0.7; positives 0.4, 0.8
        scores = np.array([[0.9, 0.1], [0.3, 0.7], [0.6, 0.4], [0.2, 0.8]])
        stats.update(np.array([0, 0, 1, 1]), scores)
        assert stats.auc(1) == pytest.approx(0.75)

    def test_logits_are_ranked_like_probabilities(self):
        from metricforge.evaluation.statistics import EvaluationStats
        stats = EvaluationStats(2)
        logits = torch.tensor([[2.0, -1.0], [1.0, 0.0], [0.0, 1.0], [-1.0, 2.0]])
        stats.update(torch.tensor([0, 0, 1, 1]), logits)
        assert stats.auc(1) == pytest.approx(1.0)
        assert 0.0 < stats.optimal_threshold(1) < 1.0

    def test_auc_undefined_without_scores_or_negatives(self):
        from metricforge.evaluation.statistics import DEFAULT_THRESHOLD, EvaluationStats
        stats = EvaluationStats(2)
        stats.update(np.array([0, 1]), np.array([0, 1]))
        assert not stats.has_scores
        assert stats.auc(0) is None
        assert stats.optimal_threshold(0) == DEFAULT_THRESHOLD

        stats = EvaluationStats(2)
        stats.update(np.array([1, 1]), np.array([[0.2, 0.8], [0.4, 0.6]]))
        assert stats.has_scores
        assert stats.auc(1) is None
        assert EvaluationStats.from_confusion_matrix([[1, 0], [0, 1]]).auc(0) is None


# =============================================================================
# Model Output Tests
# =============================================================================

class TestModelOutputs:
    """Tests for StandardNetwork / GraphNetwork."""

    def test_standard_network(self):
        from metricforge.evaluation.outputs import as_model_output, StandardNetwork
        network = as_model_output(EchoClassifier(3))
        assert isinstance(network, StandardNetwork)
        scores = network.compute_output(torch.tensor([[2.0], [0.0]]))
        assert scores.argmax(dim=1).tolist() == [2, 0]

    def test_graph_network_tuple_output(self):
        from metricforge.evaluation.outputs import GraphNetwork
        network = GraphNetwork(TwoHeadClassifier(3), output_key=1)
        scores = network.compute_output(torch.tensor([[1.0]]))
        assert scores.shape == (1, 3)
        assert scores.argmax(dim=1).item() == 1

    def test_standard_network_rejects_multi_output(self):
        from metricforge.errors import UnsupportedModelError
        from metricforge.evaluation.outputs import StandardNetwork
        network = StandardNetwork(TwoHeadClassifier(2))
        with pytest.raises(UnsupportedModelError, match="GraphNetwork"):
            network.compute_output(torch.tensor([[1.0]]))

    def test_graph_network_missing_key(self):
        from metricforge.errors import UnsupportedModelError
        from metricforge.evaluation.outputs import GraphNetwork
        network = GraphNetwork(TwoHeadClassifier(2), output_key="logits")
        with pytest.raises(UnsupportedModelError):
            network.compute_output(torch.tensor([[1.0]]))

    def test_non_module_rejected_at_construction(self):
        from metricforge.errors import UnsupportedModelError
        from metricforge.evaluation.outputs import as_model_output
        with pytest.raises(UnsupportedModelError):
            as_model_output("not a model")
        with pytest.raises(TypeError):
            as_model_output(42)

    def test_training_mode_restored(self):
        from metricforge.evaluation.outputs import as_model_output
        model = EchoClassifier(2)
        model.train()
        as_model_output(model).compute_output(torch.tensor([[1.0]]))
        assert model.training


# =============================================================================
# Tracker Tests
# =============================================================================

class TestMetricsTracker:
    """Tests for periodic evaluation, state and CSV export."""

    def _tracker(self, tmp_path, frequency=1, source=None, **kwargs):
        from metricforge.metrics.tracker import MetricsTracker
        if source is None:
            source = echo_source([0, 1, 1, 1], [0, 0, 1, 1])
        return MetricsTracker(
            source, num_classes=2, evaluation_frequency=frequency,
            output_dir=str(tmp_path / "metrics"), model_name="echo", **kwargs,
        )

    def test_evaluation_metrics(self, tmp_path):
        tracker = self._tracker(tmp_path)
        record = tracker.on_epoch_end(EchoClassifier(2), 1)
        assert record is not None
        assert record.epoch == 1
        assert record.accuracy == pytest.approx(0.75)
        assert record.precision == pytest.approx((1.0 + 2 / 3) / 2)
        assert sorted(record.per_class_metrics) == [0, 1]
        assert record.elapsed_millis >= 0

    def test_frequency(self, tmp_path):
        tracker = self._tracker(tmp_path, frequency=2)
        model = EchoClassifier(2)
        results = [tracker.on_epoch_end(model, epoch) for epoch in range(1, 6)]
        assert [r is not None for r in results] == [False, True, False, True, False]
        assert [r.epoch for r in tracker.metrics] == [2, 4]

    def test_non_positive_frequency_treated_as_one(self, tmp_path):
        tracker = self._tracker(tmp_path, frequency=0)
        assert tracker.evaluation_frequency == 1

    def test_state_transitions(self, tmp_path):
        from metricforge.errors import TrackerClosedError
        from metricforge.metrics.tracker import TrackerState
        tracker = self._tracker(tmp_path, frequency=5)
        assert tracker.state is TrackerState.IDLE
        tracker.on_epoch_end(EchoClassifier(2), 1)
        assert tracker.state is TrackerState.TRACKING
        tracker.close()
        assert tracker.state is TrackerState.CLOSED
        with pytest.raises(TrackerClosedError):
            tracker.on_epoch_end(EchoClassifier(2), 2)
        with pytest.raises(RuntimeError):
            tracker.on_epoch_end(EchoClassifier(2), 3)

    def test_rejects_negative_and_repeated_epochs(self, tmp_path):
        from metricforge.errors import InvalidArgumentError
        tracker = self._tracker(tmp_path)
        model = EchoClassifier(2)
        with pytest.raises(InvalidArgumentError):
            tracker.on_epoch_end(model, -1)
        tracker.on_epoch_end(model, 3)
        with pytest.raises(InvalidArgumentError, match="not after"):
            tracker.on_epoch_end(model, 3)
        with pytest.raises(InvalidArgumentError):
            tracker.on_epoch_end(model, 2)
        assert len(tracker.metrics) == 1

    def test_latest_metrics(self, tmp_path):
        tracker = self._tracker(tmp_path)
        assert tracker.get_latest_metrics() is None
        tracker.on_epoch_end(EchoClassifier(2), 1)
        tracker.on_epoch_end(EchoClassifier(2), 2)
        assert tracker.get_latest_metrics().epoch == 2

    def test_source_rewound_for_each_evaluation(self, tmp_path):
        source = echo_source([0, 1], [0, 1])
        tracker = self._tracker(tmp_path, source=source)
        first = tracker.on_epoch_end(EchoClassifier(2), 1)
        assert first.accuracy == pytest.approx(1.0)
        second = tracker.on_epoch_end(EchoClassifier(2), 2)
        assert second.accuracy == pytest.approx(1.0)

    def test_loader_iterated_once_per_evaluation(self, tmp_path):
        """No iterator (and no DataLoader workers) outside evaluation passes."""
        from metricforge.data.sources import LoaderSource

        class CountingBatches:
            def __init__(self, batches):
                self.batches = batches
                self.iterations = 0

            def __iter__(self):
                self.iterations += 1
                return iter(self.batches)

        features = torch.tensor([[0.0], [1.0]])
        batches = CountingBatches([(features, torch.tensor([0, 1]))])
        source = LoaderSource(batches)
        assert batches.iterations == 0

        tracker = self._tracker(tmp_path, source=source)
        assert batches.iterations == 0
        tracker.on_epoch_end(EchoClassifier(2), 1)
        assert batches.iterations == 1
        tracker.on_epoch_end(EchoClassifier(2), 2)
        assert batches.iterations == 2

    def test_evaluate_now_ignores_frequency(self, tmp_path):
        from metricforge.errors import InvalidArgumentError, TrackerClosedError
        tracker = self._tracker(tmp_path, frequency=3)
        model = EchoClassifier(2)
        assert tracker.on_epoch_end(model, 2) is None
        record = tracker.evaluate_now(model, 2)
        assert record.epoch == 2
        assert [r.epoch for r in tracker.metrics] == [2]
        with pytest.raises(InvalidArgumentError, match="not after"):
            tracker.evaluate_now(model, 2)
        tracker.close()
        with pytest.raises(TrackerClosedError):
            tracker.evaluate_now(model, 5)

    def test_missing_source_skips_evaluation(self, tmp_path, caplog):
        from metricforge.metrics.tracker import MetricsTracker
        tracker = MetricsTracker(
            None, num_classes=2, output_dir=str(tmp_path), model_name="none",
        )
        with caplog.at_level(logging.WARNING):
            assert tracker.on_epoch_end(EchoClassifier(2), 1) is None
        assert "No validation data" in caplog.text

    def test_csv_export_and_round_trip(self, tmp_path):
        from metricforge.metrics.io import (
            CLASS_METRICS_HEADER, METRICS_HEADER, read_metrics_csv,
        )
        tracker = self._tracker(tmp_path)
        model = EchoClassifier(2)
        tracker.on_epoch_end(model, 1)
        tracker.on_epoch_end(model, 2)

        metrics_path, class_path = tracker.export_metrics_to_csv()
        assert metrics_path.name.startswith("echo_metrics_")
        assert class_path.name.startswith("echo_class_metrics_")

        lines = metrics_path.read_text().splitlines()
        assert lines[0] == METRICS_HEADER
        assert len(lines) == 3

        class_lines = class_path.read_text().splitlines()
        assert class_lines[0] == CLASS_METRICS_HEADER
        assert class_lines[1].startswith("0,1.000000,0.500000,")

        loaded = read_metrics_csv(metrics_path)
        assert [r.epoch for r in loaded] == [1, 2]
        for original, parsed in zip(tracker.metrics, loaded):
            assert parsed.accuracy == pytest.approx(original.accuracy, abs=1e-6)
            assert parsed.precision == pytest.approx(original.precision, abs=1e-6)
            assert parsed.recall == pytest.approx(original.recall, abs=1e-6)
            assert parsed.f1_score == pytest.approx(original.f1_score, abs=1e-6)
            assert parsed.elapsed_millis == original.elapsed_millis

    def test_same_files_rewritten_each_evaluation(self, tmp_path):
        tracker = self._tracker(tmp_path)
        tracker.on_epoch_end(EchoClassifier(2), 1)
        tracker.on_epoch_end(EchoClassifier(2), 2)
        csvs = sorted(p.name for p in (tmp_path / "metrics").glob("*.csv"))
        assert len(csvs) == 2
        assert not list((tmp_path / "metrics").glob("*.tmp"))

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_exported_files_follow_umask(self, tmp_path):
        import os
        import stat
        old_umask = os.umask(0o022)
        try:
            tracker = self._tracker(tmp_path)
            tracker.on_epoch_end(EchoClassifier(2), 1)
            paths = tracker.export_metrics_to_csv()
        finally:
            os.umask(old_umask)
        for path in paths:
            assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_empty_tracker_exports_nothing(self, tmp_path):
        tracker = self._tracker(tmp_path)
        assert tracker.export_metrics_to_csv() is None
        assert not (tmp_path / "metrics").exists()

    def test_export_failure_swallowed_in_epoch_hook(self, tmp_path, caplog):
        from metricforge.errors import MetricsExportError
        from metricforge.metrics.tracker import MetricsTracker
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        tracker = MetricsTracker(
            echo_source([0, 1], [0, 1]), num_classes=2,
            output_dir=str(blocker / "metrics"), model_name="blocked",
        )

        with caplog.at_level(logging.WARNING):
            record = tracker.on_epoch_end(EchoClassifier(2), 1)
        assert record is not None
        assert "export failed" in caplog.text

        with pytest.raises(MetricsExportError) as excinfo:
            tracker.export_metrics_to_csv()
        assert isinstance(excinfo.value.__cause__, OSError)

    def test_close_surfaces_export_failure(self, tmp_path):
        from metricforge.errors import MetricsExportError
        from metricforge.metrics.tracker import MetricsTracker, TrackerState
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        tracker = MetricsTracker(
            echo_source([0, 1], [0, 1]), num_classes=2,
            output_dir=str(blocker / "out"), model_name="blocked",
        )
        tracker.on_epoch_end(EchoClassifier(2), 1)
        with pytest.raises(MetricsExportError):
            tracker.close()
        assert tracker.state is TrackerState.CLOSED

    def test_progress_report(self, tmp_path):
        tracker = self._tracker(tmp_path)
        tracker.on_epoch_end(EchoClassifier(2), 1)
        report = tracker.generate_progress_report()
        assert "Training Progress Report for echo" in report
        assert "1\t0.7500\t" in report

    def test_from_config(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.metrics.tracker import MetricsTracker
        config = MetricForgeConfig.for_smoke_test(str(tmp_path / "m"))
        tracker = MetricsTracker.from_config(config, [])
        assert tracker.model_name == "smoke"
        assert tracker.num_classes == 2
        assert tracker.output_dir == tmp_path / "m"


# =============================================================================
# Threshold Tests
# =============================================================================

class TestThresholds:
    """Tests for the threshold quality gate."""

    def test_passes_default_thresholds(self):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        record = make_record(10, 0.92, 0.89, 0.91, 0.90)
        assert check_thresholds(record, ThresholdSet()) is True

    def test_fails_and_logs_dimension(self, caplog):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        record = make_record(10, 0.92, 0.89, 0.91, 0.90)
        with caplog.at_level(logging.WARNING):
            passed = check_thresholds(record, ThresholdSet(accuracy=0.95))
        assert passed is False
        assert "accuracy (0.9200) is below threshold (0.9500)" in caplog.text
        assert "precision" not in caplog.text

    def test_every_failing_dimension_logged(self, caplog):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        record = make_record(1, 0.5, 0.5, 0.9, 0.9)
        with caplog.at_level(logging.WARNING):
            check_thresholds(record, ThresholdSet())
        assert "accuracy (0.5000)" in caplog.text
        assert "precision (0.5000)" in caplog.text
        assert "recall" not in caplog.text

    def test_equal_value_passes(self):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        record = make_record(1, 0.7, 0.7, 0.7, 0.7)
        assert check_thresholds(record, ThresholdSet()) is True

    def test_raising_threshold_never_flips_fail_to_pass(self):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        record = make_record(1, 0.8, 0.75, 0.72, 0.71)
        previous = True
        for level in np.linspace(0.0, 1.0, 21):
            t = float(level)
            passed = check_thresholds(record, ThresholdSet(t, t, t, t))
            assert not (passed and not previous)
            previous = passed

    def test_dominating_record_passes_when_dominated_one_does(self):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        rng = np.random.default_rng(7)
        checked = 0
        for _ in range(200):
            base = rng.uniform(0.0, 1.0, size=4)
            better = np.minimum(base + rng.uniform(0.0, 0.3, size=4), 1.0)
            t = ThresholdSet(*(float(v) for v in rng.uniform(0.0, 0.8, size=4)))
            worse_record = make_record(1, *(float(v) for v in base))
            better_record = make_record(1, *(float(v) for v in better))
            if check_thresholds(worse_record, t):
                checked += 1
                assert check_thresholds(better_record, t)
        assert checked > 0

    def test_none_record_fails_without_raising(self, caplog):
        from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
        with caplog.at_level(logging.WARNING):
            assert check_thresholds(None, ThresholdSet()) is False
        assert "No metrics" in caplog.text

    def test_threshold_out_of_range(self):
        from metricforge.errors import ConfigError
        from metricforge.metrics.thresholds import ThresholdSet
        with pytest.raises(ConfigError):
            ThresholdSet(accuracy=1.5)

    def test_report_failures(self):
        from metricforge.metrics.thresholds import ThresholdSet, evaluate_thresholds
        report = evaluate_thresholds(
            make_record(1, 0.6, 0.9, 0.9, 0.65), ThresholdSet()
        )
        assert not report
        assert [c.metric for c in report.failures] == ["accuracy", "f1"]

    def test_from_config(self):
        from metricforge.config import MetricForgeConfig
        from metricforge.metrics.thresholds import ThresholdSet
        config = MetricForgeConfig.from_properties({"test.min.f1": "0.85"})
        thresholds = ThresholdSet.from_config(config)
        assert thresholds.f1 == 0.85
        assert thresholds.accuracy == 0.7


# =============================================================================
# Comparison Tests
# =============================================================================

class TestComparisonReports:
    """Tests for multi-model and baseline/candidate reports."""

    def _models(self):
        return (
            [
                make_record(10, 0.92, 0.89, 0.91, 0.90),
                make_record(10, 0.94, 0.92, 0.90, 0.91),
                make_record(10, 0.88, 0.87, 0.89, 0.88),
            ],
            ["VGG16", "ResNet", "MobileNet"],
        )

    def test_best_per_metric(self, tmp_path):
        from metricforge.metrics.comparison import generate_model_comparison_report
        records, names = self._models()
        result = generate_model_comparison_report(
            records, names, tmp_path / "reports" / "comparison.txt"
        )
        assert result.best == {"accuracy": 1, "precision": 1, "recall": 0, "f1": 1}
        assert result.best_name("recall") == "VGG16"

        text = (tmp_path / "reports" / "comparison.txt").read_text()
        assert "| Model" in text and "F1-Score" in text
        assert "Best Accuracy: ResNet (0.9400)" in text
        assert "Best Recall: VGG16 (0.9100)" in text
        assert "MobileNet" in text

    def test_tie_goes_to_first(self, tmp_path):
        from metricforge.metrics.comparison import generate_model_comparison_report
        same = [make_record(1, 0.9, 0.9, 0.9, 0.9), make_record(1, 0.9, 0.9, 0.9, 0.9)]
        result = generate_model_comparison_report(same, ["a", "b"], tmp_path / "r.txt")
        assert set(result.best.values()) == {0}

    def test_empty_inputs(self, tmp_path):
        from metricforge.errors import InvalidArgumentError, NothingToCompareError
        from metricforge.metrics.comparison import generate_model_comparison_report
        path = tmp_path / "r.txt"
        with pytest.raises(NothingToCompareError):
            generate_model_comparison_report([], [], path)
        assert not path.exists()
        assert not issubclass(NothingToCompareError, InvalidArgumentError)

    def test_mismatched_lengths(self, tmp_path):
        from metricforge.errors import InvalidArgumentError, NothingToCompareError
        from metricforge.metrics.comparison import generate_model_comparison_report
        records, names = self._models()
        path = tmp_path / "r.txt"
        with pytest.raises(InvalidArgumentError) as excinfo:
            generate_model_comparison_report(records, names[:2], path)
        assert not isinstance(excinfo.value, NothingToCompareError)
        with pytest.raises(InvalidArgumentError):
            generate_model_comparison_report([], ["lonely"], path)
        assert not path.exists()

    def test_none_entry_rejected(self, tmp_path):
        from metricforge.errors import InvalidArgumentError
        from metricforge.metrics.comparison import generate_model_comparison_report
        with pytest.raises(InvalidArgumentError):
            generate_model_comparison_report(
                [make_record(1, 0.9, 0.9, 0.9, 0.9), None], ["a", "b"],
                tmp_path / "r.txt",
            )

    def test_unwritable_path(self, tmp_path):
        from metricforge.errors import MetricsExportError
        from metricforge.metrics.comparison import generate_model_comparison_report
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        records, names = self._models()
        with pytest.raises(MetricsExportError):
            generate_model_comparison_report(records, names, blocker / "r.txt")

    def test_baseline_vs_candidate(self, tmp_path):
        from metricforge.metrics.comparison import generate_comparison_report
        baseline = make_record(10, 0.92, 0.89, 0.91, 0.90)
        candidate = make_record(10, 0.94, 0.92, 0.90, 0.91)
        baseline.add_class_metric(0, 0.9, 0.8, 0.85)
        baseline.add_class_metric(1, 0.7, 0.7, 0.7)
        candidate.add_class_metric(0, 0.95, 0.8, 0.87)
        candidate.add_class_metric(2, 0.5, 0.5, 0.5)

        diff = generate_comparison_report(
            baseline, candidate, tmp_path / "diff.txt", "VGG16", "ResNet"
        )
        assert diff.deltas["accuracy"].difference == pytest.approx(0.02)
        assert diff.deltas["accuracy"].improved
        assert diff.deltas["recall"].difference == pytest.approx(-0.01)
        assert not diff.deltas["recall"].improved
        assert diff.improved_metrics == ["accuracy", "precision", "f1"]
        assert list(diff.class_deltas) == [0]
        assert not diff.class_deltas[0]["recall"].improved

        text = (tmp_path / "diff.txt").read_text()
        assert "+0.0200" in text
        assert "-0.0100" in text
        assert "Class-0 (index 0)" in text
        assert "index 2" not in text

    def test_baseline_none_rejected(self, tmp_path):
        from metricforge.errors import InvalidArgumentError
        from metricforge.metrics.comparison import generate_comparison_report
        with pytest.raises(InvalidArgumentError):
            generate_comparison_report(
                None, make_record(1, 0.9, 0.9, 0.9, 0.9), tmp_path / "d.txt"
            )


# =============================================================================
# Splitter Tests
# =============================================================================

class TestTrainTestSplitter:
    """Tests for the seeded train/test splitter."""

    def test_sizes_disjoint_and_complete(self):
        from metricforge.data.splitter import TrainTestSplitter
        train, test = TrainTestSplitter(seed=42).split(list(range(10)), 0.8)
        assert len(train) == 8
        assert len(test) == 2
        assert set(train).isdisjoint(test)
        assert sorted(train + test) == list(range(10))

    def test_round_half_up(self):
        from metricforge.data.splitter import TrainTestSplitter
        assert TrainTestSplitter.train_size(5, 0.5) == 3
        assert TrainTestSplitter.train_size(7, 0.8) == 6
        train, test = TrainTestSplitter().split(list("abcde"), 0.5)
        assert (len(train), len(test)) == (3, 2)

    def test_deterministic_with_seed(self):
        from metricforge.data.splitter import TrainTestSplitter
        data = list(range(50))
        first = TrainTestSplitter(seed=7).split(data, 0.7)
        second = TrainTestSplitter(seed=7).split(data, 0.7)
        assert first == second

    def test_unseeded_split_still_complete(self):
        from metricforge.data.splitter import TrainTestSplitter
        train, test = TrainTestSplitter(seed=None).split(list(range(20)), 0.5)
        assert sorted(train + test) == list(range(20))

    @pytest.mark.parametrize("ratio", [0.0, 1.0, -0.1, 1.5])
    def test_invalid_ratio(self, ratio):
        from metricforge.errors import InvalidArgumentError
        from metricforge.data.splitter import TrainTestSplitter
        with pytest.raises(InvalidArgumentError):
            TrainTestSplitter().split(list(range(10)), ratio)

    def test_degenerate_datasets_rejected(self):
        from metricforge.errors import InvalidArgumentError
        from metricforge.data.splitter import TrainTestSplitter
        splitter = TrainTestSplitter()
        with pytest.raises(InvalidArgumentError, match="at least 2"):
            splitter.split([1], 0.5)
        with pytest.raises(InvalidArgumentError):
            splitter.split([], 0.5)
        with pytest.raises(InvalidArgumentError, match="non-empty"):
            splitter.split([1, 2], 0.1)
        with pytest.raises(InvalidArgumentError, match="non-empty"):
            splitter.split([1, 2, 3], 0.9)

    def test_torch_dataset_gives_subsets(self):
        from torch.utils.data import Subset, TensorDataset
        from metricforge.data.splitter import TrainTestSplitter
        dataset = TensorDataset(torch.arange(10).float(), torch.arange(10))
        train, test = TrainTestSplitter().split(dataset, 0.8)
        assert isinstance(train, Subset) and isinstance(test, Subset)
        assert len(train) == 8 and len(test) == 2
        assert set(train.indices).isdisjoint(test.indices)

    def test_split_arrays_keeps_pairs_aligned(self):
        from metricforge.data.splitter import TrainTestSplitter
        features = np.arange(20).reshape(10, 2)
        labels = np.arange(10)
        (x_tr, y_tr), (x_te, y_te) = TrainTestSplitter().split_arrays(
            features, labels, 0.8
        )
        assert x_tr.shape == (8, 2) and x_te.shape == (2, 2)
        assert np.array_equal(x_tr[:, 0] // 2, y_tr)
        assert np.array_equal(x_te[:, 0] // 2, y_te)


# =============================================================================
# Dataset Processing Tests
# =============================================================================

class TestDatasetProcessing:
    """Tests for normalize / combine / augment_with_noise."""

    def test_normalize_zero_mean_unit_std(self):
        from metricforge.data.processing import normalize
        features = np.array([[1.0, 10.0], [3.0, 10.0], [5.0, 10.0]])
        normalized, mean, std = normalize(features)
        assert np.allclose(normalized.mean(axis=0), 0.0, atol=1e-6)
        assert np.allclose(normalized[:, 0].std(), 1.0, atol=1e-6)
        # constant feature: centred, not divided by ~0
        assert np.allclose(normalized[:, 1], 0.0)
        assert std[1] == 1.0
        assert features[0, 0] == 1.0

    def test_normalize_with_training_statistics(self):
        from metricforge.data.processing import normalize
        _, mean, std = normalize(np.array([[0.0], [2.0]]))
        test, _, _ = normalize(np.array([[3.0]]), mean, std)
        assert test[0, 0] == pytest.approx(2.0)

    def test_normalize_rejects_half_statistics(self):
        from metricforge.data.processing import normalize
        from metricforge.errors import InvalidArgumentError
        with pytest.raises(InvalidArgumentError, match="together"):
            normalize(np.ones((2, 2)), mean=np.zeros(2))

    def test_combine(self):
        from metricforge.data.processing import combine
        x, y = combine([
            (np.zeros((2, 3)), np.array([0, 1])),
            (np.ones((1, 3)), np.array([1])),
        ])
        assert x.shape == (3, 3)
        assert y.tolist() == [0, 1, 1]

    def test_combine_rejects_empty_and_mismatched(self):
        from metricforge.data.processing import combine
        from metricforge.errors import InvalidArgumentError
        with pytest.raises(InvalidArgumentError, match="No datasets"):
            combine([])
        with pytest.raises(InvalidArgumentError, match="disagree"):
            combine([(np.zeros((2, 3)), np.array([0]))])
        with pytest.raises(InvalidArgumentError, match="shape"):
            combine([
                (np.zeros((1, 3)), np.array([0])),
                (np.zeros((1, 4)), np.array([0])),
            ])

    def test_augment_with_noise(self):
        from metricforge.data.processing import augment_with_noise
        features = np.zeros((500, 4), dtype=np.float32)
        labels = np.arange(500) % 2
        noisy, noisy_labels = augment_with_noise(features, labels, 0.1, seed=1)
        assert noisy.shape == features.shape
        assert np.all(features == 0.0)
        assert noisy.std() == pytest.approx(0.1, rel=0.1)
        assert noisy_labels.tolist() == labels.tolist()
        assert noisy_labels is not labels

        again, _ = augment_with_noise(features, labels, 0.1, seed=1)
        assert np.array_equal(noisy, again)

    def test_negative_noise_rejected(self):
        from metricforge.data.processing import augment_with_noise
        from metricforge.errors import InvalidArgumentError
        with pytest.raises(InvalidArgumentError):
            augment_with_noise(np.zeros((2, 2)), np.zeros(2), -0.1)


# =============================================================================
# Comparison Script Tests
# =============================================================================

def load_compare_script():
    import importlib.util
    path = Path(__file__).resolve().parent.parent / "scripts" / "compare_models.py"
    module_spec = importlib.util.spec_from_file_location("compare_models", path)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


class TestCompareModelsScript:
    """Tests for scripts/compare_models.py argument and input handling."""

    def _csv(self, tmp_path, name, accuracy):
        from metricforge.metrics.io import render_metrics_csv
        path = tmp_path / f"{name}_metrics_20240101_120000.csv"
        path.write_text(render_metrics_csv([
            make_record(1, accuracy, 0.8, 0.8, 0.8, elapsed=100),
        ]))
        return str(path)

    def test_pairwise_report(self, tmp_path):
        script = load_compare_script()
        out = tmp_path / "diff.txt"
        script.main([
            self._csv(tmp_path, "old", 0.80), self._csv(tmp_path, "new", 0.85),
            "--pairwise", "--output", str(out),
        ])
        text = out.read_text()
        assert "old" in text and "new" in text

    def test_names_must_match_csvs(self, tmp_path):
        script = load_compare_script()
        csvs = [self._csv(tmp_path, "a", 0.8), self._csv(tmp_path, "b", 0.9)]
        with pytest.raises(SystemExit) as excinfo:
            script.main(csvs + ["--pairwise", "--names", "only"])
        assert excinfo.value.code == 2

    def test_bad_csv_exits_with_error(self, tmp_path, caplog):
        script = load_compare_script()
        bad = tmp_path / "bad.csv"
        bad.write_text("not,a,metrics,file\n")
        with caplog.at_level(logging.ERROR):
            with pytest.raises(SystemExit) as excinfo:
                script.main([str(bad), self._csv(tmp_path, "ok", 0.8)])
        assert excinfo.value.code == 1
        assert "Cannot read" in caplog.text

    def test_missing_csv_exits_with_error(self, tmp_path):
        script = load_compare_script()
        with pytest.raises(SystemExit) as excinfo:
            script.main([str(tmp_path / "nope.csv"), self._csv(tmp_path, "ok", 0.8)])
        assert excinfo.value.code == 1


# =============================================================================
# Config Tests
# =============================================================================

class TestConfig:
    """Tests for the configuration system."""

    def test_default_config_loads(self):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig()
        config.validate()
        assert config.training.batch_size == 32
        assert config.training.epochs == 100
        assert config.training.train_ratio == 0.8
        assert config.metrics.output_dir == "output/metrics"
        assert config.metrics.evaluation_frequency == 1
        assert config.thresholds.accuracy == 0.7

    def test_smoke_test_config(self):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig.for_smoke_test()
        config.validate()
        assert config.training.device == "cpu"

    def test_from_properties_strings(self):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig.from_properties({
            "training.batch.size": "64",
            "training.epochs": "20",
            "training.train.test.split": "0.75",
            "metrics.evaluation.frequency": "5",
            "metrics.threshold.accuracy": "0.9",
            "model.class.names": "silence, speech, music",
            "model.num.classes": "3",
            "telemetry.enabled": "false",
            "unrelated.key": "ignored",
        })
        assert config.training.batch_size == 64
        assert config.training.epochs == 20
        assert config.training.train_ratio == 0.75
        assert config.metrics.evaluation_frequency == 5
        assert config.thresholds.accuracy == 0.9
        assert config.model.class_names == ["silence", "speech", "music"]

    def test_train_ratio_alias(self):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig.from_properties({"training.train.ratio": "0.6"})
        assert config.training.train_ratio == 0.6

    def test_legacy_threshold_keys(self):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig.from_properties({
            "test.min.accuracy": "0.8",
            "test.min.recall": "0.6",
            "metrics.threshold.recall": "0.65",
        })
        assert config.thresholds.accuracy == 0.8
        assert config.thresholds.recall == 0.65

    def test_malformed_number_names_key(self):
        from metricforge.config import MetricForgeConfig
        from metricforge.errors import ConfigError
        with pytest.raises(ConfigError, match="training.batch.size") as excinfo:
            MetricForgeConfig.from_properties({"training.batch.size": "lots"})
        assert excinfo.value.key == "training.batch.size"
        with pytest.raises(ValueError):
            MetricForgeConfig.from_properties({"metrics.threshold.f1": "high"})

    def test_invalid_values_rejected(self):
        from metricforge.config import MetricForgeConfig
        from metricforge.errors import ConfigError
        with pytest.raises(ConfigError):
            MetricForgeConfig.from_properties({"training.train.test.split": "1.0"})
        with pytest.raises(ConfigError, match="num_classes"):
            MetricForgeConfig.from_properties({"model.num.classes": "1"})
        with pytest.raises(ConfigError):
            MetricForgeConfig.from_properties({"metrics.threshold.accuracy": "2"})

    def test_reference_resolution(self):
        from metricforge.config import MetricForgeConfig, resolve_references
        config = MetricForgeConfig.from_properties({
            "base.dir": "/data/run",
            "out.dir": "${base.dir}/out",
            "metrics.output.dir": "${out.dir}/metrics",
        })
        assert config.metrics.output_dir == "/data/run/out/metrics"

        resolved = resolve_references({"a": "${missing}/x"})
        assert resolved["a"] == "${missing}/x"

    def test_reference_cycle(self):
        from metricforge.config import resolve_references
        from metricforge.errors import ConfigError
        with pytest.raises(ConfigError, match="cycle"):
            resolve_references({"a": "${b}", "b": "${a}"})

    def test_nested_yaml(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        path = tmp_path / "nested.yaml"
        path.write_text(
            "training:\n"
            "  batch:\n"
            "    size: 16\n"
            "  epochs: 3\n"
            "metrics:\n"
            "  output.dir: out/m\n"
            "model:\n"
            "  name: vgg16\n"
        )
        config = MetricForgeConfig.from_yaml(path)
        assert config.training.batch_size == 16
        assert config.training.epochs == 3
        assert config.metrics.output_dir == "out/m"
        assert config.model.name == "vgg16"

    def test_shipped_default_yaml(self):
        from metricforge.config import MetricForgeConfig
        path = Path(__file__).resolve().parent.parent / "configs" / "default.yaml"
        config = MetricForgeConfig.from_yaml(path)
        assert config.metrics.output_dir == "output/metrics"
        assert config.telemetry.log_dir == "output/tensorboard"
        assert config.training.train_ratio == 0.8
        assert config.model.num_classes == 2

    def test_yaml_round_trip(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        config = MetricForgeConfig.for_smoke_test()
        config.model.class_names = ["yes", "no"]

        yaml_path = tmp_path / "test_config.yaml"
        config.to_yaml(yaml_path)

        loaded = MetricForgeConfig.from_yaml(yaml_path)
        assert loaded.to_dict() == config.to_dict()

    def test_empty_yaml(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.errors import ConfigError
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="empty"):
            MetricForgeConfig.from_yaml(path)

    def test_properties_file(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        path = tmp_path / "config.properties"
        path.write_text(
            "# training\n"
            "training.epochs=7\n"
            "! legacy comment\n"
            "model.name = resnet\n"
            "metrics.output.dir: out\n"
        )
        config = MetricForgeConfig.from_properties_file(path)
        assert config.training.epochs == 7
        assert config.model.name == "resnet"
        assert config.metrics.output_dir == "out"


# =============================================================================
# Error Tests
# =============================================================================

class TestErrors:
    """Tests for the error hierarchy."""

    def test_hierarchy(self):
        from metricforge import errors
        for cls in (
            errors.ConfigError, errors.InvalidArgumentError,
            errors.NothingToCompareError, errors.MetricsExportError,
            errors.TrackerClosedError, errors.UnsupportedModelError,
        ):
            assert issubclass(cls, errors.MetricForgeError)
        assert issubclass(errors.ConfigError, ValueError)
        assert issubclass(errors.TrackerClosedError, RuntimeError)
        assert issubclass(errors.UnsupportedModelError, TypeError)
        assert not issubclass(errors.MetricsExportError, OSError)


# =============================================================================
# Evaluator, Telemetry & Trainer Tests
# =============================================================================

def make_blobs(n=120, seed=0):
    """Two well-separated Gaussian blobs in 4 dimensions."""
    rng = np.random.default_rng(seed)
    labels = rng.integers(0, 2, size=n)
    centers = np.array([[-3.0] * 4, [3.0] * 4])
    features = centers[labels] + rng.normal(0.0, 0.5, size=(n, 4))
    return features.astype(np.float32), labels


class TestModelEvaluator:
    """Tests for one-shot evaluation and its report."""

    def test_evaluate_writes_report(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.evaluation.evaluator import ModelEvaluator
        config = MetricForgeConfig.for_smoke_test(str(tmp_path))
        config.model.name = "echo"
        evaluator = ModelEvaluator(config)

        record = evaluator.evaluate(
            EchoClassifier(2), echo_source([0, 1, 1, 1], [0, 0, 1, 1])
        )
        assert record.epoch == 0
        assert record.accuracy == pytest.approx(0.75)

        path = evaluator.last_report_path
        assert path.name.startswith("echo_evaluation_report_")
        text = path.read_text()
        assert "Confusion Matrix" in text
        assert "Class-1 (index 1)" in text
        assert "support=2" in text
        assert "ROC (one-vs-rest)" in text
        assert "AUC=0.7500" in text

        assert evaluator.validate_against_thresholds(record) is True

    def test_graph_network_evaluation(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.evaluation.evaluator import ModelEvaluator
        from metricforge.evaluation.outputs import GraphNetwork
        config = MetricForgeConfig.for_smoke_test(str(tmp_path))
        record = ModelEvaluator(config).evaluate(
            GraphNetwork(TwoHeadClassifier(2), output_key=1),
            echo_source([0, 1], [0, 1]),
            write_report=False,
        )
        assert record.accuracy == pytest.approx(1.0)

    def test_export_optimal_thresholds(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.data.sources import LoaderSource
        from metricforge.evaluation.evaluator import THRESHOLDS_HEADER, ModelEvaluator
        config = MetricForgeConfig.for_smoke_test(str(tmp_path))
        config.model.class_names = ["silence", "speech"]
        evaluator = ModelEvaluator(config)

        scores = torch.tensor([[0.9, 0.1], [0.6, 0.4], [0.35, 0.65], [0.2, 0.8]])
        source = LoaderSource([(scores, torch.tensor([0, 0, 1, 1]))])
        evaluator.evaluate(nn.Identity(), source, write_report=False)

        path = evaluator.export_optimal_thresholds()
        assert path.name.startswith("smoke_optimal_thresholds_")
        assert path.read_text().splitlines() == [
            THRESHOLDS_HEADER,
            "silence,0.600000,1.000000",
            "speech,0.650000,1.000000",
        ]

    def test_optimal_thresholds_need_scores(self, tmp_path):
        from metricforge.config import MetricForgeConfig
        from metricforge.data.sources import LoaderSource
        from metricforge.errors import InvalidArgumentError
        from metricforge.evaluation.evaluator import ModelEvaluator
        evaluator = ModelEvaluator(MetricForgeConfig.for_smoke_test(str(tmp_path)))
        with pytest.raises(InvalidArgumentError, match="evaluate"):
            evaluator.export_optimal_thresholds()

        indices = torch.tensor([0, 1, 1])
        source = LoaderSource([(indices, torch.tensor([0, 1, 0]))])
        evaluator.evaluate(nn.Identity(), source, write_report=False)
        assert evaluator.export_optimal_thresholds() is None
        assert not list(tmp_path.glob("*_optimal_thresholds_*"))

    """Tests for the TensorBoard handle."""

    def test_disabled_is_noop(self):
        from metricforge.config import MetricForgeConfig
        from metricforge.telemetry import Telemetry
        telemetry = Telemetry.from_config(MetricForgeConfig())
        assert not telemetry.enabled
        telemetry.log_record("m", make_record(1, 0.9, 0.9, 0.9, 0.9))
        telemetry.close()

    def test_enabled_writes_events(self, tmp_path):
        pytest.importorskip("tensorboard")
        from metricforge.telemetry import Telemetry
        with Telemetry(str(tmp_path / "tb")) as telemetry:
            record = make_record(1, 0.9, 0.8, 0.7, 0.75)
            record.add_class_metric(0, 0.9, 0.8, 0.85)
            telemetry.log_record("vgg16", record)
            telemetry.log_scalar("vgg16", "train/loss", 0.5, 1)
        events = list((tmp_path / "tb" / "vgg16").glob("events.out.tfevents.*"))
        assert events


class TestClassifierTrainer:
    """Smoke tests for the training loop."""

    def _setup(self, tmp_path, epochs=3, frequency=1):
        from torch.utils.data import DataLoader, TensorDataset
        from metricforge.config import MetricForgeConfig
        from metricforge.data.sources import LoaderSource
        from metricforge.data.splitter import TrainTestSplitter
        from metricforge.metrics.tracker import MetricsTracker

        torch.manual_seed(0)
        config = MetricForgeConfig.for_smoke_test(str(tmp_path / "metrics"))
        config.training.epochs = epochs
        config.metrics.evaluation_frequency = frequency

        features, labels = make_blobs()
        (x_tr, y_tr), (x_te, y_te) = TrainTestSplitter(seed=0).split_arrays(
            features, labels, config.training.train_ratio
        )
        loader = DataLoader(
            TensorDataset(torch.from_numpy(x_tr), torch.from_numpy(y_tr)),
            batch_size=config.training.batch_size, shuffle=True,
        )
        tracker = MetricsTracker.from_config(
            config, LoaderSource.from_arrays(x_te, y_te)
        )
        model = nn.Sequential(nn.Linear(4, 16), nn.ReLU(), nn.Linear(16, 2))
        return config, model, loader, tracker

    def test_train_tracks_every_epoch(self, tmp_path):
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path)
        trainer = ClassifierTrainer(model, config, loader, tracker)
        results = trainer.train(output_dir=str(tmp_path / "ckpt"))

        assert results["epochs_completed"] == 3
        assert not results["cancelled"]
        assert [r.epoch for r in tracker.metrics] == [1, 2, 3]
        assert results["final_metrics"] is tracker.get_latest_metrics()
        assert results["passed_thresholds"] is True
        assert Path(results["checkpoint"]).exists()
        assert tracker.metrics_path.exists()

    def test_learns_separable_data(self, tmp_path):
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path, epochs=10, frequency=5)
        ClassifierTrainer(model, config, loader, tracker).train(output_dir=None)
        assert [r.epoch for r in tracker.metrics] == [5, 10]
        assert tracker.get_latest_metrics().accuracy > 0.9

    def test_final_epoch_evaluated_when_off_frequency(self, tmp_path):
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path, epochs=5, frequency=2)
        results = ClassifierTrainer(model, config, loader, tracker).train(output_dir=None)
        assert [r.epoch for r in tracker.metrics] == [2, 4, 5]
        assert results["final_metrics"].epoch == 5
        assert results["final_metrics"] is tracker.get_latest_metrics()

    def test_epoch_loss_sent_to_telemetry(self, tmp_path):
        from metricforge.telemetry import Telemetry
        from metricforge.training.trainer import ClassifierTrainer

        class RecordingTelemetry(Telemetry):
            def __init__(self):
                super().__init__(None)
                self.scalars = []

            def log_scalar(self, model_name, tag, value, step):
                self.scalars.append((model_name, tag, step))

        config, model, loader, tracker = self._setup(tmp_path)
        telemetry = RecordingTelemetry()
        trainer = ClassifierTrainer(model, config, loader, tracker, telemetry=telemetry)
        trainer.train(output_dir=None)
        assert telemetry.scalars == [("smoke", "train/loss", e) for e in (1, 2, 3)]

    def test_cancel_before_start(self, tmp_path):
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path)
        stop = threading.Event()
        stop.set()
        trainer = ClassifierTrainer(model, config, loader, tracker, stop_event=stop)
        results = trainer.train(output_dir=None)
        assert results["cancelled"]
        assert results["epochs_completed"] == 0
        assert results["final_metrics"] is None
        assert results["passed_thresholds"] is False

    def test_cancel_between_epochs(self, tmp_path):
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path, epochs=5)
        trainer = ClassifierTrainer(model, config, loader, tracker)

        original = tracker.on_epoch_end

        def stop_after_two(m, epoch):
            record = original(m, epoch)
            if epoch == 2:
                trainer.stop()
            return record

        tracker.on_epoch_end = stop_after_two
        results = trainer.train(output_dir=None)
        assert results["epochs_completed"] == 2
        assert results["cancelled"]

    def test_frozen_model_rejected(self, tmp_path):
        from metricforge.errors import InvalidArgumentError
        from metricforge.training.trainer import ClassifierTrainer
        config, model, loader, tracker = self._setup(tmp_path)
        for p in model.parameters():
            p.requires_grad = False
        with pytest.raises(InvalidArgumentError, match="trainable"):
            ClassifierTrainer(model, config, loader, tracker)


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
