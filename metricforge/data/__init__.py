"""
metricforge.data — Splitting, Processing & Validation Sources
==============================================================
Components:
    - splitter.py   — TrainTestSplitter: seeded, reproducible train/test split
    - processing.py — normalize / combine / augment_with_noise for feature arrays
    - sources.py    — LoaderSource: resettable validation batches for the tracker
"""

from metricforge.data.splitter import TrainTestSplitter
from metricforge.data.processing import augment_with_noise, combine, normalize
from metricforge.data.sources import LoaderSource, ValidationSource
