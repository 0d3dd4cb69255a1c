"""
MetricForge Errors
==================
Every failure raised by MetricForge derives from ``MetricForgeError``, so a
caller can catch the whole family in one place, or pick out a single kind.

Most kinds also subclass the matching builtin (``ValueError``,
``RuntimeError``, ``TypeError``) so that code written against plain Python
exceptions keeps working.

Kinds:
    - ConfigError            — a configuration value is missing or malformed
    - InvalidArgumentError   — a caller passed an argument that can never work
    - NothingToCompareError  — a comparison was requested over zero models
    - MetricsExportError     — a CSV or report could not be written
    - TrackerClosedError     — a closed tracker was asked to do more work
    - UnsupportedModelError  — the object handed in is not a usable model

Degenerate-but-legal situations (an empty tracker, a missing record handed to
the threshold check) are NOT errors: those return ``None`` / ``False``.
"""

from __future__ import annotations


class MetricForgeError(Exception):
    """Base class for all MetricForge failures."""


class ConfigError(MetricForgeError, ValueError):
    """
    A configuration value could not be parsed or is out of range.

    Parameters
    ----------
    message : str
        Human-readable description.
    key : str or None
        The property key that failed, when there is one.
    """

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class InvalidArgumentError(MetricForgeError, ValueError):
    """An argument violates the contract of the operation it was passed to."""


class NothingToCompareError(MetricForgeError, ValueError):
    """A comparison report was requested for an empty list of models."""


class MetricsExportError(MetricForgeError):
    """
    Writing a metrics CSV or a text report failed.

    The underlying ``OSError`` is always chained as ``__cause__``.

    Parameters
    ----------
    message : str
        Human-readable description.
    path : str or None
        The file that could not be written.
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class TrackerClosedError(MetricForgeError, RuntimeError):
    """The metrics tracker was used after ``close()``."""


class UnsupportedModelError(MetricForgeError, TypeError):
    """The object is not a model MetricForge knows how to evaluate."""
