"""
MetricForge
===========
Metrics and evaluation tracking for audio and image classifier training.

This package provides the bookkeeping that sits around a training loop:
    1. Recording per-epoch and per-class classification metrics
    2. Tracking evaluations at a configurable epoch frequency, with CSV export
    3. Gating a trained model against minimum quality thresholds
    4. Comparing several models (or two runs of one model) in text reports
    5. Splitting datasets into reproducible train/test partitions

The models themselves (CNNs over spectrograms, image classifiers, etc.)
are plain PyTorch modules supplied by the caller.

Quick Start:
    >>> from metricforge.config import MetricForgeConfig
    >>> config = MetricForgeConfig.from_yaml("configs/default.yaml")
    >>> print(config)

Subpackages:
    - metricforge.metrics    — Records, tracker, thresholds, comparison reports
    - metricforge.data       — Train/test splitting and validation data sources
    - metricforge.evaluation — Classification statistics and model evaluation
    - metricforge.training   — Classifier training loop wired to the tracker
"""

__version__ = "0.1.0"
__author__ = "Aditya"
