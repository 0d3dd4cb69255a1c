"""
MetricForge Model Outputs
==========================
A small, closed set of wrappers that know how to get class scores out of
a model.

Two shapes of network show up in practice:

    StandardNetwork — ``module(features)`` returns the score tensor.
        Typical of a plain CNN over spectrograms or images.

    GraphNetwork    — ``module(features)`` returns several outputs
        (tuple, list or dict), and one of them is the classification
        head. Typical of multi-head or feature-extracting backbones.

Anything else is rejected when the wrapper is built, not in the middle of
an evaluation pass.

Usage:
    >>> model = as_model_output(my_cnn)                 # StandardNetwork
    >>> model = GraphNetwork(backbone, output_key="logits")
    >>> scores = model.compute_output(features)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Union

import torch
import torch.nn as nn

from metricforge.errors import UnsupportedModelError

logger = logging.getLogger(__name__)


class ModelOutput(ABC):
    """
    Common interface: run a model in inference mode and return scores.

    Parameters
    ----------
    module : nn.Module
        The wrapped PyTorch model.
    """

    def __init__(self, module: nn.Module):
        if not isinstance(module, nn.Module):
            raise UnsupportedModelError(
                f"Expected a torch.nn.Module, got {type(module).__name__}"
            )
        self.module = module

    @property
    def device(self) -> torch.device:
        """Device of the first parameter (CPU for parameter-free modules)."""
        for param in self.module.parameters():
            return param.device
        return torch.device("cpu")

    @torch.no_grad()
    def compute_output(self, features: torch.Tensor) -> torch.Tensor:
        """
        Forward ``features`` in eval mode and return the score tensor.

        The module's previous train/eval mode is restored afterwards.
        """
        was_training = self.module.training
        self.module.eval()
        try:
            raw = self.module(features.to(self.device))
            return self._select(raw)
        finally:
            self.module.train(was_training)

    @abstractmethod
    def _select(self, raw: Any) -> torch.Tensor:
        """Pick the classification scores out of the raw forward result."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({type(self.module).__name__})"


class StandardNetwork(ModelOutput):
    """A module whose forward pass returns the score tensor directly."""

    def _select(self, raw: Any) -> torch.Tensor:
        if not isinstance(raw, torch.Tensor):
            raise UnsupportedModelError(
                f"{type(self.module).__name__} returned "
                f"{type(raw).__name__}, expected a tensor. "
                f"Wrap it in GraphNetwork to pick one output."
            )
        return raw


class GraphNetwork(ModelOutput):
    """
    A module whose forward pass returns several outputs.

    Parameters
    ----------
    module : nn.Module
        The wrapped model.
    output_key : int or str
        Which output holds the class scores: an index into a tuple/list
        result, or a key into a dict result. Defaults to the first output.
    """

    def __init__(self, module: nn.Module, output_key: Union[int, str] = 0):
        super().__init__(module)
        self.output_key = output_key

    def _select(self, raw: Any) -> torch.Tensor:
        if isinstance(raw, torch.Tensor):
            return raw
        try:
            selected = raw[self.output_key]
        except (KeyError, IndexError, TypeError) as e:
            raise UnsupportedModelError(
                f"{type(self.module).__name__} output has no entry "
                f"{self.output_key!r}"
            ) from e
        if not isinstance(selected, torch.Tensor):
            raise UnsupportedModelError(
                f"Output {self.output_key!r} of {type(self.module).__name__} "
                f"is {type(selected).__name__}, expected a tensor"
            )
        return selected


def as_model_output(model: Any) -> ModelOutput:
    """
    Wrap ``model`` in the matching ``ModelOutput`` variant.

    Existing wrappers pass through; bare modules become ``StandardNetwork``.

    Raises
    ------
    UnsupportedModelError
        If ``model`` is neither a wrapper nor an ``nn.Module``.
    """
    if isinstance(model, ModelOutput):
        return model
    if isinstance(model, nn.Module):
        return StandardNetwork(model)
    raise UnsupportedModelError(
        f"Cannot evaluate object of type {type(model).__name__}; "
        f"expected a torch.nn.Module"
    )
