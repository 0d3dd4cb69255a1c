"""
MetricForge — Setup Script
===========================
Installs MetricForge as a local editable package so that all internal
imports (e.g. `from metricforge.metrics.tracker import MetricsTracker`)
work seamlessly from any script or notebook.

Usage:
    cd /path/to/metricforge
    pip install -e .
    pip install -e ".[dev]"          # + pytest and tensorboard
"""

from setuptools import setup, find_packages

setup(
    name="metricforge",
    version="0.1.0",
    author="Aditya",
    description=(
        "MetricForge: metrics tracking, threshold validation and comparison "
        "reports for audio and image classifier training"
    ),
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["metricforge", "metricforge.*"]),
    python_requires=">=3.10",
    install_requires=[
        "torch>=2.1.0",
        "numpy>=1.24.0",
        "tqdm>=4.65.0",
        "pyyaml>=6.0",
        "scikit-learn>=1.3.0",
    ],
    extras_require={
        "tensorboard": ["tensorboard>=2.14.0"],
        "dev": ["pytest>=7.0", "tensorboard>=2.14.0"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
