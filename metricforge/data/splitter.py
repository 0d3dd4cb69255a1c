"""
MetricForge Train/Test Splitter
================================
Shuffles a dataset once and cuts it into a training split and a test split.

    10 samples, ratio 0.8, seed 42:
        shuffle → [7, 1, 5, 0, 3, 9, 2, 8, 4, 6]
        train   = first round(10 × 0.8) = 8 indices
        test    = remaining 2 indices

Guarantees:
    - The two splits are disjoint and together cover every sample.
    - Same seed + same N + same ratio = same split, on every run.
    - Neither split is ever empty: a dataset that is too small for the
      requested ratio is rejected instead of silently producing an empty
      test (or training) set.

The train size is ``floor(N × ratio + 0.5)`` (round half up).

Usage:
    >>> splitter = TrainTestSplitter(seed=42)
    >>> train_ds, test_ds = splitter.split(dataset, 0.8)
    >>> (x_tr, y_tr), (x_te, y_te) = splitter.split_arrays(x, y, 0.8)
"""

from __future__ import annotations

import logging
import math
import random
from typing import Any, Optional

import numpy as np
from torch.utils.data import Dataset, Subset

from metricforge.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


class TrainTestSplitter:
    """
    Seeded shuffle-and-cut splitter.

    Parameters
    ----------
    seed : int or None
        Seed for the shuffle. ``None`` draws a fresh, nondeterministic
        shuffle on every call.
    """

    def __init__(self, seed: Optional[int] = 42):
        self.seed = seed

    @staticmethod
    def train_size(n: int, train_ratio: float) -> int:
        """Number of samples that go to the training split."""
        return int(math.floor(n * train_ratio + 0.5))

    def split_indices(
        self, n: int, train_ratio: float
    ) -> tuple[list[int], list[int]]:
        """
        Shuffle ``range(n)`` and cut it at the training size.

        Parameters
        ----------
        n : int
            Number of samples.
        train_ratio : float
            Fraction of samples for training, strictly between 0 and 1.

        Returns
        -------
        (list[int], list[int])
            Training indices and test indices.

        Raises
        ------
        InvalidArgumentError
            If the ratio is outside (0, 1), ``n < 2``, or the cut would
            leave either split empty.
        """
        if not 0.0 < train_ratio < 1.0:
            raise InvalidArgumentError(
                f"train_ratio must be strictly between 0 and 1, got {train_ratio}"
            )
        if n < 2:
            raise InvalidArgumentError(
                f"Cannot split a dataset of {n} sample(s); need at least 2"
            )

        n_train = self.train_size(n, train_ratio)
        if n_train == 0 or n_train == n:
            raise InvalidArgumentError(
                f"train_ratio {train_ratio} on {n} samples gives "
                f"{n_train} training / {n - n_train} test samples; "
                f"both splits must be non-empty"
            )

        indices = list(range(n))
        rng = random.Random(self.seed)
        rng.shuffle(indices)

        logger.info(
            f"Split {n} samples: {n_train} train / {n - n_train} test "
            f"(ratio={train_ratio}, seed={self.seed})"
        )
        return indices[:n_train], indices[n_train:]

    def split(self, dataset: Any, train_ratio: float) -> tuple[Any, Any]:
        """
        Split a sized, indexable dataset.

        Parameters
        ----------
        dataset : Dataset or Sequence
            A ``torch.utils.data.Dataset`` with ``__len__``, or any
            sequence (list, tuple, ...).
        train_ratio : float
            Fraction of samples for training.

        Returns
        -------
        (train, test)
            Two ``Subset``s for torch datasets, otherwise two lists.
        """
        try:
            n = len(dataset)
        except TypeError as e:
            raise InvalidArgumentError(
                f"Dataset of type {type(dataset).__name__} has no length"
            ) from e

        train_idx, test_idx = self.split_indices(n, train_ratio)

        if isinstance(dataset, Dataset):
            return Subset(dataset, train_idx), Subset(dataset, test_idx)
        return [dataset[i] for i in train_idx], [dataset[i] for i in test_idx]

    def split_arrays(
        self,
        features: Any,
        labels: Any,
        train_ratio: float,
    ) -> tuple[tuple[np.ndarray, np.ndarray], tuple[np.ndarray, np.ndarray]]:
        """
        Split paired feature and label arrays with one shared shuffle.

        Returns
        -------
        ((train_features, train_labels), (test_features, test_labels))
        """
        features = np.asarray(features)
        labels = np.asarray(labels)
        if features.shape[0] != labels.shape[0]:
            raise InvalidArgumentError(
                f"features and labels disagree on N: "
                f"{features.shape[0]} vs {labels.shape[0]}"
            )

        train_idx, test_idx = self.split_indices(features.shape[0], train_ratio)
        train_idx = np.asarray(train_idx, dtype=np.int64)
        test_idx = np.asarray(test_idx, dtype=np.int64)
        return (
            (features[train_idx], labels[train_idx]),
            (features[test_idx], labels[test_idx]),
        )

    def __repr__(self) -> str:
        return f"TrainTestSplitter(seed={self.seed})"

