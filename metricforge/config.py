"""
MetricForge Configuration System
=================================
Centralized configuration for every MetricForge component using Python
dataclasses. Batch sizes, split ratios, output paths, evaluation cadence
and quality thresholds all live here.

Configuration arrives as flat, dotted property keys (the same keys a
``config.properties`` file would carry). YAML files may spell them either
flat or nested; nested mappings are flattened before parsing:

    training:                          training.batch.size: 64
      batch:                  ==       metrics.output.dir: out/metrics
        size: 64
    metrics:
      output:
        dir: out/metrics

Values may reference other keys with ``${other.key}``. References are
resolved recursively; a reference to a key that does not exist is left
in place untouched.

Usage:
    # Load from YAML file:
    >>> config = MetricForgeConfig.from_yaml("configs/default.yaml")

    # Load from a properties mapping:
    >>> config = MetricForgeConfig.from_properties({"training.epochs": "20"})

    # Create programmatically:
    >>> config = MetricForgeConfig(
    ...     training=TrainingConfig(epochs=20),
    ...     metrics=MetricsConfig(output_dir="out/metrics"),
    ... )

    # Access nested values:
    >>> config.training.batch_size         # 32
    >>> config.thresholds.accuracy         # 0.7
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import torch
import yaml

from metricforge.errors import ConfigError

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"\$\{([^}]+)\}")
_MAX_REFERENCE_DEPTH = 16


# =============================================================================
# Training Configuration
# =============================================================================

@dataclass
class TrainingConfig:
    """
    Hyperparameters for the training process.

    Parameters
    ----------
    batch_size : int
        Number of samples per mini-batch (``training.batch.size``).

    epochs : int
        Number of full passes over the training split (``training.epochs``).

    train_ratio : float
        Fraction of the dataset assigned to the training split
        (``training.train.test.split``, alias ``training.train.ratio``).
        Must lie strictly between 0 and 1.

    learning_rate : float
        Step size for the optimizer (``training.learning.rate``).

    seed : int
        Random seed for the split shuffle and for torch
        (``training.seed``). Same seed = same split.

    device : str
        "auto", "cpu", "mps" or "cuda" (``training.device``).

    log_every : int
        Log the running loss every N optimizer steps (``training.log.every``).
        0 disables step logging.
    """
    batch_size: int = 32
    epochs: int = 100
    train_ratio: float = 0.8
    learning_rate: float = 1e-3
    seed: int = 42
    device: str = "auto"
    log_every: int = 10

    def validate(self) -> None:
        """Validate training parameters."""
        if self.batch_size < 1:
            raise ConfigError(
                f"batch_size must be >= 1, got {self.batch_size}",
                key="training.batch.size",
            )
        if self.epochs < 1:
            raise ConfigError(
                f"epochs must be >= 1, got {self.epochs}",
                key="training.epochs",
            )
        if not 0.0 < self.train_ratio < 1.0:
            raise ConfigError(
                f"train_ratio must be in (0, 1), got {self.train_ratio}",
                key="training.train.test.split",
            )
        if self.learning_rate <= 0:
            raise ConfigError(
                f"learning_rate must be positive, got {self.learning_rate}",
                key="training.learning.rate",
            )
        if self.log_every < 0:
            raise ConfigError(
                f"log_every must be >= 0, got {self.log_every}",
                key="training.log.every",
            )

    def resolve_device(self) -> torch.device:
        """
        Auto-detect the best available device.

        Priority: CUDA > MPS (Apple Silicon) > CPU

        Returns
        -------
        torch.device
            The resolved device.
        """
        if self.device != "auto":
            return torch.device(self.device)

        if torch.cuda.is_available():
            logger.info("Using CUDA device (GPU detected)")
            return torch.device("cuda")
        elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.info("Using MPS device (Apple Silicon detected)")
            return torch.device("mps")
        else:
            logger.info("Using CPU device")
            return torch.device("cpu")


# =============================================================================
# Metrics Configuration
# =============================================================================

@dataclass
class MetricsConfig:
    """
    Where and how often the tracker records metrics.

    Parameters
    ----------
    output_dir : str
        Directory for metrics CSVs and text reports (``metrics.output.dir``).

    evaluation_frequency : int
        Evaluate every N epochs (``metrics.evaluation.frequency``).
    """
    output_dir: str = "output/metrics"
    evaluation_frequency: int = 1

    def validate(self) -> None:
        """Validate metrics parameters."""
        if self.evaluation_frequency < 1:
            raise ConfigError(
                f"evaluation_frequency must be >= 1, "
                f"got {self.evaluation_frequency}",
                key="metrics.evaluation.frequency",
            )
        if not self.output_dir:
            raise ConfigError(
                "output_dir must not be empty", key="metrics.output.dir"
            )


# =============================================================================
# Threshold Configuration
# =============================================================================

@dataclass
class ThresholdConfig:
    """
    Minimum acceptable values for the four aggregate metrics.

    Each one is read from ``metrics.threshold.<name>`` and falls back to the
    legacy ``test.min.<name>`` key when the primary key is absent.
    """
    accuracy: float = 0.7
    precision: float = 0.7
    recall: float = 0.7
    f1: float = 0.7

    def validate(self) -> None:
        """Validate that every threshold lies in [0, 1]."""
        for name in ("accuracy", "precision", "recall", "f1"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(
                    f"threshold {name} must be in [0, 1], got {value}",
                    key=f"metrics.threshold.{name}",
                )


# =============================================================================
# Model Configuration
# =============================================================================

@dataclass
class ModelConfig:
    """
    Identity of the classifier being trained.

    Parameters
    ----------
    name : str
        Model name, used to namespace every output file (``model.name``).

    num_classes : int
        Number of output classes (``model.num.classes``). A classifier
        needs at least two.

    class_names : list[str]
        Optional human-readable labels, one per class index
        (``model.class.names``, comma-separated in properties files).
    """
    name: str = "model"
    num_classes: int = 2
    class_names: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Validate model identity."""
        if not self.name:
            raise ConfigError("model name must not be empty", key="model.name")
        if self.num_classes < 2:
            raise ConfigError(
                f"num_classes must be >= 2, got {self.num_classes}",
                key="model.num.classes",
            )
        if self.class_names and len(self.class_names) != self.num_classes:
            raise ConfigError(
                f"got {len(self.class_names)} class names for "
                f"{self.num_classes} classes",
                key="model.class.names",
            )


# =============================================================================
# Telemetry Configuration
# =============================================================================

@dataclass
class TelemetryConfig:
    """
    TensorBoard export settings.

    Parameters
    ----------
    enabled : bool
        Write scalars for every recorded evaluation (``telemetry.enabled``).

    log_dir : str
        Root directory for event files, one subdirectory per model
        (``telemetry.dir``).
    """
    enabled: bool = False
    log_dir: str = "output/tensorboard"

    def validate(self) -> None:
        """Validate telemetry parameters."""
        if self.enabled and not self.log_dir:
            raise ConfigError(
                "telemetry.dir must be set when telemetry is enabled",
                key="telemetry.dir",
            )


# =============================================================================
# Property parsing helpers
# =============================================================================

def _parse_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key}: expected an integer, got {value!r}", key=key)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigError(
            f"{key}: expected an integer, got {value!r}", key=key
        ) from e


def _parse_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key}: expected a number, got {value!r}", key=key)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError as e:
        raise ConfigError(
            f"{key}: expected a number, got {value!r}", key=key
        ) from e


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "on", "1"):
        return True
    if text in ("false", "no", "off", "0"):
        return False
    raise ConfigError(f"{key}: expected a boolean, got {value!r}", key=key)


def _parse_str(key: str, value: Any) -> str:
    return str(value).strip()


def _parse_list(key: str, value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value]
    return [part.strip() for part in str(value).split(",") if part.strip()]


# (property keys in priority order, section, attribute, parser)
_PROPERTY_TABLE: list[tuple[tuple[str, ...], str, str, Callable[[str, Any], Any]]] = [
    (("training.batch.size",), "training", "batch_size", _parse_int),
    (("training.epochs",), "training", "epochs", _parse_int),
    (("training.train.test.split", "training.train.ratio"),
     "training", "train_ratio", _parse_float),
    (("training.learning.rate",), "training", "learning_rate", _parse_float),
    (("training.seed",), "training", "seed", _parse_int),
    (("training.device",), "training", "device", _parse_str),
    (("training.log.every",), "training", "log_every", _parse_int),
    (("metrics.output.dir",), "metrics", "output_dir", _parse_str),
    (("metrics.evaluation.frequency",),
     "metrics", "evaluation_frequency", _parse_int),
    (("metrics.threshold.accuracy", "test.min.accuracy"),
     "thresholds", "accuracy", _parse_float),
    (("metrics.threshold.precision", "test.min.precision"),
     "thresholds", "precision", _parse_float),
    (("metrics.threshold.recall", "test.min.recall"),
     "thresholds", "recall", _parse_float),
    (("metrics.threshold.f1", "test.min.f1"),
     "thresholds", "f1", _parse_float),
    (("model.name",), "model", "name", _parse_str),
    (("model.num.classes",), "model", "num_classes", _parse_int),
    (("model.class.names",), "model", "class_names", _parse_list),
    (("telemetry.enabled",), "telemetry", "enabled", _parse_bool),
    (("telemetry.dir",), "telemetry", "log_dir", _parse_str),
]


def flatten_mapping(raw: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """
    Flatten nested mappings into dotted property keys.

    ``{"training": {"batch": {"size": 32}}}`` becomes
    ``{"training.batch.size": 32}``. Keys that already contain dots are kept
    as they are, so flat and nested spellings can be mixed in one file.
    """
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_mapping(value, full_key))
        else:
            flat[full_key] = value
    return flat


def resolve_references(properties: Mapping[str, Any]) -> dict[str, Any]:
    """
    Expand ``${key}`` references in string values.

    References are resolved recursively, so a value may point at another
    value that itself contains references. A reference to an unknown key
    is left as-is.

    Raises
    ------
    ConfigError
        If references form a cycle.
    """

    def expand(key: str, value: Any, depth: int) -> Any:
        if not isinstance(value, str) or "${" not in value:
            return value
        if depth > _MAX_REFERENCE_DEPTH:
            raise ConfigError(
                f"{key}: property references nest too deeply "
                f"(cycle?): {value!r}",
                key=key,
            )

        def substitute(match: re.Match) -> str:
            ref = match.group(1)
            if ref not in properties:
                return match.group(0)
            return str(expand(ref, properties[ref], depth + 1))

        return _REFERENCE.sub(substitute, value)

    return {key: expand(key, value, 0) for key, value in properties.items()}


def load_properties(path: str | Path) -> dict[str, str]:
    """
    Read a ``key=value`` properties file.

    Blank lines and lines starting with ``#`` or ``!`` are ignored; the
    separator may be ``=`` or ``:``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Properties file not found: {path}")

    properties: dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line[0] in "#!":
                continue
            match = re.match(r"([^=:\s]+)\s*[=:]\s*(.*)$", line)
            if match is None:
                raise ConfigError(
                    f"{path}:{line_no}: cannot parse property line {line!r}"
                )
            properties[match.group(1)] = match.group(2)
    return properties


# =============================================================================
# Master Configuration
# =============================================================================

@dataclass
class MetricForgeConfig:
    """
    Master configuration combining all sub-configurations.

    This is the single source of truth for a training run. Pass this
    object to any MetricForge component and it will extract the
    settings it needs.

    Usage:
        # From YAML file:
        >>> config = MetricForgeConfig.from_yaml("configs/default.yaml")

        # Programmatic:
        >>> config = MetricForgeConfig()
        >>> config.validate()

        # Save:
        >>> config.to_yaml("configs/my_run.yaml")
    """
    training: TrainingConfig = field(default_factory=TrainingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    def validate(self) -> None:
        """
        Validate all sub-configurations.

        Raises
        ------
        ConfigError
            If any parameter is invalid.
        """
        self.training.validate()
        self.metrics.validate()
        self.thresholds.validate()
        self.model.validate()
        self.telemetry.validate()

        logger.info(
            f"Config validated: model={self.model.name} "
            f"({self.model.num_classes} classes), "
            f"epochs={self.training.epochs}, "
            f"eval every {self.metrics.evaluation_frequency} epoch(s), "
            f"device={self.training.device}"
        )

    @classmethod
    def from_properties(
        cls,
        properties: Mapping[str, Any],
        validate: bool = True,
    ) -> MetricForgeConfig:
        """
        Build a configuration from flat dotted property keys.

        Unknown keys are ignored. Missing keys keep their defaults.

        Parameters
        ----------
        properties : Mapping[str, Any]
            Property values, either strings (as read from a properties
            file) or already-typed values (as read from YAML).
        validate : bool
            Run ``validate()`` on the result.

        Returns
        -------
        MetricForgeConfig
            Parsed configuration.

        Raises
        ------
        ConfigError
            If a value fails to parse (the error names the key) or is
            out of range.
        """
        resolved = resolve_references(properties)
        config = cls()

        for keys, section, attr, parse in _PROPERTY_TABLE:
            for key in keys:
                if key in resolved and resolved[key] is not None:
                    setattr(getattr(config, section), attr, parse(key, resolved[key]))
                    break

        if validate:
            config.validate()
        return config

    @classmethod
    def from_properties_file(cls, path: str | Path) -> MetricForgeConfig:
        """Load configuration from a ``key=value`` properties file."""
        return cls.from_properties(load_properties(path))

    @classmethod
    def from_yaml(cls, path: str | Path) -> MetricForgeConfig:
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        path : str or Path
            Path to the YAML configuration file.

        Returns
        -------
        MetricForgeConfig
            Loaded and validated configuration.

        Raises
        ------
        FileNotFoundError
            If the YAML file does not exist.
        ConfigError
            If the file is empty, is not a mapping, or holds bad values.
        yaml.YAMLError
            If the YAML file is malformed.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(
                f"Config file not found: {path}. "
                f"Create one from configs/default.yaml as a template."
            )

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if raw is None:
            raise ConfigError(f"Config file is empty: {path}")
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Config file must hold a mapping: {path}")

        return cls.from_properties(flatten_mapping(raw))

    def to_properties(self) -> dict[str, Any]:
        """Convert to flat dotted property keys (primary spellings only)."""
        properties = {}
        for keys, section, attr, _ in _PROPERTY_TABLE:
            value = getattr(getattr(self, section), attr)
            if isinstance(value, list):
                if not value:
                    continue
                value = ",".join(value)
            properties[keys[0]] = value
        return properties

    def to_yaml(self, path: str | Path) -> None:
        """
        Save configuration to a YAML file as flat dotted keys.

        Creates parent directories if they don't exist.

        Parameters
        ----------
        path : str or Path
            Output YAML file path.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.to_properties(),
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )

        logger.info(f"Config saved to {path}")

    def to_dict(self) -> dict:
        """Convert to nested dictionary."""
        return asdict(self)

    @classmethod
    def for_smoke_test(cls, output_dir: Optional[str] = None) -> MetricForgeConfig:
        """
        Create a minimal configuration for quick smoke testing.

        Small batches, a couple of epochs and CPU only, so a full
        train/evaluate cycle finishes in seconds.

        Parameters
        ----------
        output_dir : str or None
            Where metrics should land. Defaults to ``output_smoke/metrics``.

        Returns
        -------
        MetricForgeConfig
            Smoke-test configuration.
        """
        return cls(
            training=TrainingConfig(
                batch_size=8,
                epochs=2,
                train_ratio=0.8,
                learning_rate=1e-2,
                seed=42,
                device="cpu",
                log_every=0,
            ),
            metrics=MetricsConfig(
                output_dir=output_dir or "output_smoke/metrics",
                evaluation_frequency=1,
            ),
            thresholds=ThresholdConfig(
                accuracy=0.0, precision=0.0, recall=0.0, f1=0.0,
            ),
            model=ModelConfig(name="smoke", num_classes=2),
            telemetry=TelemetryConfig(enabled=False),
        )

    def __repr__(self) -> str:
        """Pretty-print the configuration."""
        t = self.thresholds
        lines = [
            "MetricForgeConfig(",
            f"  Model:      {self.model.name} ({self.model.num_classes} classes)",
            f"  Training:   lr={self.training.learning_rate}, "
            f"batch_size={self.training.batch_size}, "
            f"epochs={self.training.epochs}, "
            f"train_ratio={self.training.train_ratio}",
            f"  Metrics:    every {self.metrics.evaluation_frequency} epoch(s) "
            f"-> {self.metrics.output_dir}",
            f"  Thresholds: acc>={t.accuracy}, prec>={t.precision}, "
            f"rec>={t.recall}, f1>={t.f1}",
            f"  Device:     {self.training.device}",
            ")",
        ]
        return "\n".join(lines)
