"""
MetricForge Telemetry
======================
Optional TensorBoard export of recorded metrics.

A ``Telemetry`` handle is created once per process and handed to every
tracker that should report through it. It owns one ``SummaryWriter`` per
model name, under ``<log_dir>/<model name>/``, created the first time that
model logs a record.

A disabled handle accepts every call and does nothing, so callers never
need to branch on whether telemetry is on.

Usage:
    >>> telemetry = Telemetry.from_config(config)
    >>> tracker = MetricsTracker(..., telemetry=telemetry)
    >>> ...
    >>> telemetry.close()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from metricforge.metrics.record import MetricRecord

if TYPE_CHECKING:
    from metricforge.config import MetricForgeConfig

logger = logging.getLogger(__name__)


class Telemetry:
    """
    Per-process TensorBoard writer registry.

    Parameters
    ----------
    log_dir : str or None
        Root directory for event files. ``None`` disables telemetry.
    """

    def __init__(self, log_dir: Optional[str] = None):
        self.log_dir = Path(log_dir) if log_dir else None
        self._writers = {}

    @classmethod
    def disabled(cls) -> Telemetry:
        return cls(None)

    @classmethod
    def from_config(cls, config: MetricForgeConfig) -> Telemetry:
        if not config.telemetry.enabled:
            return cls.disabled()
        return cls(config.telemetry.log_dir)

    @property
    def enabled(self) -> bool:
        return self.log_dir is not None

    def _writer(self, model_name: str):
        writer = self._writers.get(model_name)
        if writer is None:
            from torch.utils.tensorboard import SummaryWriter

            run_dir = self.log_dir / model_name
            writer = SummaryWriter(log_dir=str(run_dir))
            self._writers[model_name] = writer
            logger.info(f"[{model_name}] TensorBoard logging to {run_dir}")
        return writer

    def log_record(self, model_name: str, record: MetricRecord) -> None:
        """Write the record's aggregate and per-class scores at its epoch."""
        if not self.enabled:
            return
        writer = self._writer(model_name)
        step = record.epoch
        for name, value in record.metric_values().items():
            writer.add_scalar(f"metrics/{name}", value, step)
        writer.add_scalar("metrics/elapsed_ms", record.elapsed_millis, step)
        for index, metric in record.per_class_metrics.items():
            writer.add_scalar(f"class_{index}/precision", metric.precision, step)
            writer.add_scalar(f"class_{index}/recall", metric.recall, step)
            writer.add_scalar(f"class_{index}/f1", metric.f1_score, step)
        writer.flush()

    def log_scalar(self, model_name: str, tag: str, value: float, step: int) -> None:
        """Write an arbitrary scalar (e.g. training loss)."""
        if not self.enabled:
            return
        self._writer(model_name).add_scalar(tag, value, step)

    def close(self) -> None:
        for name, writer in self._writers.items():
            writer.close()
            logger.debug(f"[{name}] TensorBoard writer closed")
        self._writers.clear()

    def __enter__(self) -> Telemetry:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        state = str(self.log_dir) if self.enabled else "disabled"
        return f"Telemetry({state}, writers={len(self._writers)})"
