"""
MetricForge Validation Sources
===============================
The tracker and evaluator read validation data through a tiny resettable
iterator protocol:

    source.reset()
    while source.has_next():
        features, labels = source.next()

``LoaderSource`` adapts any re-iterable batch producer (normally a
``torch.utils.data.DataLoader``) to that protocol.

Usage:
    >>> source = LoaderSource(DataLoader(val_dataset, batch_size=32))
    >>> source = LoaderSource.from_arrays(features, labels, batch_size=32)
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, Optional, Protocol, runtime_checkable

import numpy as np
import torch
from torch.utils.data import DataLoader, TensorDataset

from metricforge.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


@runtime_checkable
class ValidationSource(Protocol):
    """Resettable stream of ``(features, labels)`` batches."""

    def has_next(self) -> bool: ...

    def next(self) -> tuple[Any, Any]: ...

    def reset(self) -> None: ...


class LoaderSource:
    """
    Wraps a re-iterable of ``(features, labels)`` batches.

    Parameters
    ----------
    loader : Iterable
        Anything that yields batches afresh on every ``iter()`` call,
        e.g. a ``DataLoader`` or a list of tensor pairs.
    """

    def __init__(self, loader: Iterable):
        self.loader = loader
        self._iterator: Optional[Iterator] = None
        self._pending: Optional[tuple[Any, Any]] = None

    def reset(self) -> None:
        """Rewind to the first batch. The iterator is rebuilt on the next read."""
        self._iterator = None
        self._pending = None

    def has_next(self) -> bool:
        if self._pending is not None:
            return True
        if self._iterator is None:
            self._iterator = iter(self.loader)
        try:
            self._pending = next(self._iterator)
        except StopIteration:
            return False
        return True

    def next(self) -> tuple[Any, Any]:
        if not self.has_next():
            raise StopIteration("Validation source is exhausted; call reset()")
        batch, self._pending = self._pending, None
        features, labels = batch
        return features, labels

    def __len__(self) -> int:
        return len(self.loader)

    @classmethod
    def from_arrays(
        cls,
        features: Any,
        labels: Any,
        batch_size: int = 32,
    ) -> LoaderSource:
        """
        Build a source over in-memory arrays.

        Parameters
        ----------
        features : array-like
            Shape (N, ...) float features.
        labels : array-like
            Shape (N,) class indices or (N, C) one-hot rows.
        batch_size : int
            Batch size of the underlying ``DataLoader``.
        """
        features = torch.as_tensor(np.asarray(features), dtype=torch.float32)
        labels = torch.as_tensor(np.asarray(labels))
        if features.shape[0] != labels.shape[0]:
            raise InvalidArgumentError(
                f"features and labels disagree on N: "
                f"{features.shape[0]} vs {labels.shape[0]}"
            )
        loader = DataLoader(
            TensorDataset(features, labels),
            batch_size=batch_size,
            shuffle=False,
        )
        return cls(loader)
