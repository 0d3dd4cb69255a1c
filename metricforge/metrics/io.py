"""
MetricForge Metrics I/O
========================
CSV layouts and atomic file writing shared by the tracker and reporters.

Metrics CSV (one row per evaluation):
    Epoch,Accuracy,Precision,Recall,F1Score,TrainingTime(ms)
    5,0.920000,0.890000,0.910000,0.900000,1532.00

Class metrics CSV (one row per class of the latest evaluation):
    Class,Precision,Recall,F1Score
    0,0.950000,0.880000,0.913700

Every file is written to a temporary sibling first and then renamed over
the target, so a reader never sees a half-written file.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

from metricforge.errors import MetricsExportError
from metricforge.metrics.record import MetricRecord

logger = logging.getLogger(__name__)

METRICS_HEADER = "Epoch,Accuracy,Precision,Recall,F1Score,TrainingTime(ms)"
CLASS_METRICS_HEADER = "Class,Precision,Recall,F1Score"


def format_metrics_row(record: MetricRecord) -> str:
    return (
        f"{record.epoch:d},{record.accuracy:.6f},{record.precision:.6f},"
        f"{record.recall:.6f},{record.f1_score:.6f},"
        f"{float(record.elapsed_millis):.2f}"
    )


def render_metrics_csv(records: Iterable[MetricRecord]) -> str:
    lines = [METRICS_HEADER]
    lines.extend(format_metrics_row(r) for r in records)
    return "\n".join(lines) + "\n"


def render_class_metrics_csv(record: MetricRecord) -> str:
    lines = [CLASS_METRICS_HEADER]
    for index in sorted(record.per_class_metrics):
        m = record.per_class_metrics[index]
        lines.append(
            f"{index:d},{m.precision:.6f},{m.recall:.6f},{m.f1_score:.6f}"
        )
    return "\n".join(lines) + "\n"


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_text_atomic(path: str | Path, text: str) -> Path:
    """
    Write ``text`` to ``path`` via a temporary file and an atomic rename.

    Parent directories are created as needed. The file gets the usual
    ``0o666 & ~umask`` permissions.

    Raises
    ------
    MetricsExportError
        If the directory cannot be created or the file cannot be written.
        The original ``OSError`` is chained.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            # mkstemp creates 0600; give the file the mode open() would
            os.chmod(tmp_name, 0o666 & ~_current_umask())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise MetricsExportError(f"Could not write {path}: {e}", path=str(path)) from e
    return path


def read_metrics_csv(path: str | Path) -> list[MetricRecord]:
    """
    Parse a metrics CSV written by the tracker back into records.

    Per-class metrics live in a separate file and are not restored.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the header does not match the metrics layout or a row is
        malformed.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None or ",".join(header) != METRICS_HEADER:
            raise ValueError(f"{path} is not a metrics CSV (header: {header})")

        records = []
        for row in reader:
            if not row:
                continue
            if len(row) < 6:
                raise ValueError(
                    f"{path}:{reader.line_num}: expected 6 columns, got {len(row)}"
                )
            records.append(MetricRecord(
                epoch=int(row[0]),
                accuracy=float(row[1]),
                precision=float(row[2]),
                recall=float(row[3]),
                f1_score=float(row[4]),
                elapsed_millis=int(round(float(row[5]))),
            ))
    return records
