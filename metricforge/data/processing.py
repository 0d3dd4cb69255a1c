"""
MetricForge Dataset Processing
===============================
Small NumPy helpers for assembling feature datasets before splitting:

    normalize           — per-feature z-score (statistics reusable on test data)
    combine             — concatenate several (features, labels) datasets
    augment_with_noise  — Gaussian-noise copy of a dataset

Every helper returns new arrays; inputs are never modified.

Usage:
    >>> x_train, mean, std = normalize(x_train)
    >>> x_test, _, _ = normalize(x_test, mean, std)
    >>> x, y = combine([(x_a, y_a), (x_b, y_b)])
    >>> x_noisy, y_noisy = augment_with_noise(x, y, noise_level=0.05, seed=42)
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import numpy as np

from metricforge.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

# Features whose std is below this are left unscaled (only centred).
MIN_STD = 1e-6


def normalize(
    features: Any,
    mean: Optional[np.ndarray] = None,
    std: Optional[np.ndarray] = None,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Z-score every feature over the sample axis.

    Parameters
    ----------
    features : array-like
        Shape (N, ...). Statistics are taken over axis 0.
    mean, std : ndarray or None
        Precomputed statistics (e.g. from the training split). Both must be
        given together; when omitted they are computed from ``features``.

    Returns
    -------
    (normalized, mean, std)
        ``std`` has near-constant features replaced by 1.
    """
    features = np.asarray(features, dtype=np.float32)
    if features.ndim == 0 or features.shape[0] == 0:
        raise InvalidArgumentError("Cannot normalize an empty feature array")
    if (mean is None) != (std is None):
        raise InvalidArgumentError("mean and std must be given together")

    if mean is None:
        mean = features.mean(axis=0)
        std = features.std(axis=0)
        std = np.where(std < MIN_STD, 1.0, std).astype(np.float32)

    return (features - mean) / std, mean, std


def combine(datasets: Sequence[tuple[Any, Any]]) -> tuple[np.ndarray, np.ndarray]:
    """
    Concatenate ``(features, labels)`` pairs along the sample axis.

    Raises
    ------
    InvalidArgumentError
        If ``datasets`` is empty, a pair disagrees on N, or the feature
        shapes differ.
    """
    if not datasets:
        raise InvalidArgumentError("No datasets to combine")

    features, labels = [], []
    for i, (x, y) in enumerate(datasets):
        x, y = np.asarray(x), np.asarray(y)
        if x.shape[0] != y.shape[0]:
            raise InvalidArgumentError(
                f"Dataset {i}: features and labels disagree on N: "
                f"{x.shape[0]} vs {y.shape[0]}"
            )
        if features and x.shape[1:] != features[0].shape[1:]:
            raise InvalidArgumentError(
                f"Dataset {i}: feature shape {x.shape[1:]} does not match "
                f"{features[0].shape[1:]}"
            )
        features.append(x)
        labels.append(y)

    combined = np.concatenate(features), np.concatenate(labels)
    logger.info(
        f"Combined {len(datasets)} datasets into {combined[0].shape[0]} samples"
    )
    return combined


def augment_with_noise(
    features: Any,
    labels: Any,
    noise_level: float,
    seed: Optional[int] = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Copy of the dataset with ``N(0, noise_level²)`` noise added to features.

    Labels are copied unchanged. Combine the result with the original to
    double the training set.
    """
    if noise_level < 0:
        raise InvalidArgumentError(
            f"noise_level must be >= 0, got {noise_level}"
        )
    features = np.asarray(features, dtype=np.float32)
    rng = np.random.default_rng(seed)
    noise = rng.normal(0.0, noise_level, size=features.shape).astype(np.float32)
    return features + noise, np.array(labels, copy=True)
