"""
MetricForge Classifier Trainer
===============================
A plain supervised training loop for audio/image classifiers, wired to a
MetricsTracker so that every epoch is reported and every N-th epoch is
evaluated.

What This Handles:
    - Forward pass + cross-entropy loss (index or one-hot labels)
    - AdamW optimizer steps and gradient clipping
    - Loss logging every ``log_every`` steps
    - ``tracker.on_epoch_end(model, epoch)`` after each epoch (1-based)
    - Cooperative cancellation between epochs via a threading.Event
    - Checkpointing at the end of training
    - Epoch loss forwarded to TensorBoard when telemetry is enabled
    - A final evaluation of the last epoch (when it was not an evaluation
      point) and a threshold verdict on it

Usage:
    >>> tracker = MetricsTracker.from_config(config, val_loader)
    >>> trainer = ClassifierTrainer(model, config, train_loader, tracker)
    >>> results = trainer.train(output_dir="outputs")
    >>> results["passed_thresholds"]
    True
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

import torch
import torch.nn as nn
from torch.utils.data import DataLoader

from metricforge.config import MetricForgeConfig
from metricforge.errors import InvalidArgumentError
from metricforge.metrics.thresholds import ThresholdSet, check_thresholds
from metricforge.metrics.tracker import MetricsTracker
from metricforge.telemetry import Telemetry

logger = logging.getLogger(__name__)


class ClassifierTrainer:
    """
    Epoch loop for a classification model.

    Parameters
    ----------
    model : nn.Module
        The classifier. Its forward pass must return class scores of
        shape (batch, num_classes).

    config : MetricForgeConfig
        Full configuration object.

    train_loader : DataLoader
        Training batches of ``(features, labels)``.

    tracker : MetricsTracker or None
        Receives ``on_epoch_end`` after each epoch. If None, training
        runs without metrics.

    name : str or None
        Run name for logs and checkpoints. Defaults to ``config.model.name``.

    stop_event : threading.Event or None
        When set (from any thread), training stops after the current epoch.

    max_grad_norm : float
        Gradient clipping norm. 0 disables clipping.

    telemetry : Telemetry or None
        Receives the average loss of each epoch as ``train/loss``.
        Defaults to the tracker's telemetry handle, or a disabled one.
    """

    def __init__(
        self,
        model: nn.Module,
        config: MetricForgeConfig,
        train_loader: DataLoader,
        tracker: Optional[MetricsTracker] = None,
        name: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
        max_grad_norm: float = 1.0,
        telemetry: Optional[Telemetry] = None,
    ):
        self.config = config
        self.name = name or config.model.name
        self.device = config.training.resolve_device()
        self.model = model.to(self.device)
        self.train_loader = train_loader
        self.tracker = tracker
        self.stop_event = stop_event or threading.Event()
        self.max_grad_norm = max_grad_norm
        if telemetry is None:
            telemetry = tracker.telemetry if tracker is not None else Telemetry.disabled()
        self.telemetry = telemetry

        self.criterion = nn.CrossEntropyLoss()

        trainable_params = [p for p in model.parameters() if p.requires_grad]
        if not trainable_params:
            raise InvalidArgumentError(
                "No trainable parameters found. Did you freeze the "
                "whole model?"
            )

        self.optimizer = torch.optim.AdamW(
            trainable_params,
            lr=config.training.learning_rate,
        )

        self.global_step = 0

        logger.info(
            f"Trainer '{self.name}' initialized on {self.device} "
            f"with {sum(p.numel() for p in trainable_params) / 1e6:.2f}M "
            f"trainable parameters"
        )

    def stop(self) -> None:
        """Request a stop after the current epoch."""
        self.stop_event.set()

    def train(
        self,
        epochs: Optional[int] = None,
        output_dir: Optional[str] = "outputs",
    ) -> dict:
        """
        Run the training loop.

        Parameters
        ----------
        epochs : int or None
            Number of epochs. Defaults to ``config.training.epochs``.
        output_dir : str or None
            Where to save the final checkpoint. None skips checkpointing.

        Returns
        -------
        dict
            Training results containing:
            - train_losses: average loss per completed epoch
            - epochs_completed: number of epochs actually run
            - cancelled: True if stopped via ``stop()`` / ``stop_event``
            - final_metrics: MetricRecord of the last completed epoch (or None)
            - passed_thresholds: threshold verdict on ``final_metrics``
            - total_time_seconds: wall time
            - total_steps: optimizer steps taken
            - checkpoint: path of the saved checkpoint (or None)
        """
        epochs = epochs if epochs is not None else self.config.training.epochs
        if epochs < 1:
            raise InvalidArgumentError(f"epochs must be >= 1, got {epochs}")

        logger.info(
            f"[{self.name}] Starting training: {epochs} epochs, "
            f"{len(self.train_loader)} steps/epoch"
        )

        start_time = time.time()
        results = {
            "train_losses": [],
            "epochs_completed": 0,
            "cancelled": False,
            "final_metrics": None,
            "passed_thresholds": False,
            "total_time_seconds": 0,
            "total_steps": 0,
            "checkpoint": None,
        }

        for epoch in range(1, epochs + 1):
            if self.stop_event.is_set():
                results["cancelled"] = True
                logger.info(f"[{self.name}] Training cancelled before epoch {epoch}")
                break

            epoch_loss = self._train_epoch(epoch, epochs)
            results["train_losses"].append(epoch_loss)
            results["epochs_completed"] = epoch
            self.telemetry.log_scalar(self.name, "train/loss", epoch_loss, epoch)

            if self.tracker is not None:
                self.tracker.on_epoch_end(self.model, epoch)

            logger.info(
                f"[{self.name}] Epoch {epoch}/{epochs}: "
                f"train_loss={epoch_loss:.4f}"
            )

        total_time = time.time() - start_time
        results["total_time_seconds"] = total_time
        results["total_steps"] = self.global_step

        if self.tracker is not None:
            last_epoch = results["epochs_completed"]
            final = self.tracker.get_latest_metrics()
            if last_epoch > 0 and (final is None or final.epoch != last_epoch):
                logger.info(
                    f"[{self.name}] Epoch {last_epoch} was not evaluated; "
                    f"running final evaluation"
                )
                final = self.tracker.evaluate_now(self.model, last_epoch) or final
            results["final_metrics"] = final
            results["passed_thresholds"] = check_thresholds(
                final, ThresholdSet.from_config(self.config), self.name
            )

        if output_dir is not None:
            results["checkpoint"] = self._save_checkpoint(output_dir, "final")

        logger.info(
            f"[{self.name}] Training complete in {total_time:.1f}s "
            f"({results['epochs_completed']} epochs)"
        )
        return results

    def _train_epoch(self, epoch: int, total_epochs: int) -> float:
        """
        Run one training epoch.

        Returns
        -------
        float
            Average training loss for this epoch.
        """
        self.model.train()
        total_loss = 0.0
        n_batches = 0
        log_every = self.config.training.log_every

        for features, labels in self.train_loader:
            features = features.to(self.device)
            labels = labels.to(self.device)
            # One-hot rows → class indices
            if labels.dim() == 2:
                labels = labels.argmax(dim=1)

            logits = self.model(features)
            loss = self.criterion(logits, labels.long())

            self.optimizer.zero_grad()
            loss.backward()
            if self.max_grad_norm > 0:
                torch.nn.utils.clip_grad_norm_(
                    self.model.parameters(), self.max_grad_norm
                )
            self.optimizer.step()
            self.global_step += 1

            total_loss += loss.item()
            n_batches += 1

            if log_every > 0 and self.global_step % log_every == 0:
                logger.info(
                    f"[{self.name}] epoch={epoch}/{total_epochs}, "
                    f"step={self.global_step}, "
                    f"loss={total_loss / n_batches:.4f}"
                )

        return total_loss / max(n_batches, 1)

    def _save_checkpoint(self, output_dir: str, tag: str) -> str:
        """
        Save a training checkpoint.

        Parameters
        ----------
        output_dir : str
            Directory to save to.
        tag : str
            Checkpoint identifier (e.g. "final").
        """
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        path = os.path.join(output_dir, f"checkpoint_{self.name}_{tag}.pt")
        checkpoint = {
            "global_step": self.global_step,
            "model_state_dict": self.model.state_dict(),
            "optimizer_state_dict": self.optimizer.state_dict(),
            "num_classes": self.config.model.num_classes,
            "class_names": self.config.model.class_names,
        }
        torch.save(checkpoint, path)
        logger.info(f"[{self.name}] Checkpoint saved: {path}")
        return path
